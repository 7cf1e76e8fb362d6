import pytest
from unittest.mock import MagicMock, patch

import main
from core.errors import NetworkError, NotFound
from core.models import Event, PlaybookTypeDetail, Project, ReleaseStatus, Scan, ScannerInfo, Summary


@pytest.fixture
def config():
    return {
        "host": "https://kondukto.example.com",
        "token": "test_token",
        "insecure": False,
        "verbose": False,
        "timeout": None,
        "polling": {"scan_interval": 0, "release_interval": 0},
    }


@pytest.fixture
def cli_client(config):
    client = MagicMock()
    with patch("main.check_update", return_value=(False, main.VERSION)), \
            patch("main.resolve_config", return_value=config), \
            patch("main.build_client", return_value=client):
        yield client


def release(status, **categories):
    return ReleaseStatus(
        status=status,
        categories={name.upper(): PlaybookTypeDetail(*value) for name, value in categories.items()},
    )


class TestMain:

    def test_version(self, capsys):
        assert main.main(["version"]) == 0
        assert main.VERSION in capsys.readouterr().out

    def test_missing_host(self, config):
        config["host"] = ""
        with patch("main.check_update", return_value=(False, main.VERSION)), \
                patch("main.resolve_config", return_value=config):
            assert main.main(["healthcheck"]) == 1

    def test_healthcheck(self, cli_client):
        assert main.main(["healthcheck"]) == 0
        cli_client.health_check.assert_called_once()
        cli_client.transport.close.assert_called_once()

    def test_network_error_exit_code(self, cli_client):
        cli_client.health_check.side_effect = NetworkError("failed to do request: refused")

        assert main.main(["healthcheck"]) == 4

    def test_interrupted(self, cli_client):
        cli_client.health_check.side_effect = KeyboardInterrupt

        assert main.main(["healthcheck"]) == 130

    def test_release_fails(self, cli_client):
        cli_client.release_status.return_value = release("fail", sast=("fail", "s1"))

        assert main.main(["release", "-p", "web"]) == 1

    def test_release_restricted_passes(self, cli_client):
        cli_client.release_status.return_value = release("fail", sast=("fail", "s1"), dast=("pass", "s2"))

        assert main.main(["release", "-p", "web", "--dast"]) == 0

    def test_release_undefined(self, cli_client):
        cli_client.release_status.return_value = release("undefined")

        assert main.main(["release", "-p", "web", "--sast"]) == 0

    def test_exit_code_override(self, cli_client):
        cli_client.release_status.return_value = release("fail", sast=("fail", "s1"))

        assert main.main(["--exit-code", "0", "release", "-p", "web"]) == 0

    def test_project_not_available(self, cli_client):
        cli_client.is_available.return_value = False

        assert main.main(["project", "available", "-r", "org/repo", "-a", "github"]) == 3

    def test_scan_async(self, cli_client):
        cli_client.start_scan.return_value = "e1"

        assert main.main(["scan", "-s", "s1", "--async"]) == 0
        cli_client.get_scan_status.assert_not_called()

    def test_scan_finished_breaks_on_threshold(self, cli_client):
        # Arrange
        cli_client.start_scan.return_value = "e1"
        cli_client.get_scan_status.return_value = Event(id="e1", status=6, active=0, scan_id="s2")
        cli_client.find_scan_by_id.return_value = Scan(id="s2", project="p1", summary=Summary(critical=2))

        # Act
        code = main.main(["scan", "-s", "s1", "--threshold-crit", "1"])

        # Assert
        assert code == 1
        cli_client.release_status.assert_not_called()

    def test_scan_by_project_and_tool(self, cli_client):
        # Arrange
        cli_client.find_active_scanner.return_value = ScannerInfo(id="t1", type="sast", slug="semgrep")
        cli_client.find_project.return_value = Project(id="p1", name="web")
        cli_client.list_scans.return_value = [Scan(id="s1", tool="semgrep")]
        cli_client.start_scan.return_value = "e1"
        cli_client.get_scan_status.return_value = Event(id="e1", status=6, active=0, scan_id="s2")
        cli_client.find_scan_by_id.return_value = Scan(id="s2", project="p1", branch="main")
        cli_client.release_status.return_value = release("fail", sast=("pass", "s2"), dast=("fail", "s3"))

        # Act
        code = main.main(["scan", "-p", "web", "-t", "semgrep", "--break-by-scanner-type"])

        # Assert
        assert code == 0
        cli_client.start_scan.assert_called_once_with("s1")
        cli_client.release_status.assert_called_once_with("p1", "main")

    def test_scan_requires_target(self, cli_client):
        assert main.main(["scan", "-b", "main"]) == 1

    def test_scan_restarts_scan_of_given_branch(self, cli_client):
        # Arrange
        cli_client.find_active_scanner.return_value = ScannerInfo(id="t1", type="sast", slug="semgrep")
        cli_client.find_project.return_value = Project(id="p1", name="web")
        cli_client.list_scans.return_value = [
            Scan(id="s_main", tool="semgrep", branch="main", meta_data="v2"),
            Scan(id="s_feat", tool="semgrep", branch="feature", meta_data="v2"),
        ]
        cli_client.start_scan.return_value = "e1"

        # Act
        code = main.main(["scan", "-p", "web", "-t", "semgrep", "-b", "feature", "-m", "v2", "--async"])

        # Assert
        assert code == 0
        cli_client.list_scans.assert_called_once_with(
            "web", {"tool": "semgrep", "branch": "feature", "meta_data": "v2"},
        )
        cli_client.start_scan.assert_called_once_with("s_feat")

    def test_scan_id_breaks_by_type_of_scan(self, cli_client):
        # Arrange
        cli_client.start_scan.return_value = "e1"
        cli_client.get_scan_status.return_value = Event(id="e1", status=6, active=0, scan_id="s1")
        cli_client.find_scan_by_id.return_value = Scan(
            id="s1", project="p1", branch="main", tool="semgrep", scanner_type="sast",
        )
        cli_client.release_status.return_value = release("fail", sast=("pass", "s1"), dast=("fail", "s3"))

        # Act
        code = main.main(["scan", "-s", "s1", "--break-by-scanner-type"])

        # Assert
        assert code == 0
        cli_client.find_active_scanner.assert_not_called()

    def test_scan_id_looks_up_scanner_type(self, cli_client):
        cli_client.start_scan.return_value = "e1"
        cli_client.get_scan_status.return_value = Event(id="e1", status=6, active=0, scan_id="s1")
        cli_client.find_scan_by_id.return_value = Scan(id="s1", project="p1", branch="main", tool="zap")
        cli_client.find_active_scanner.return_value = ScannerInfo(id="t2", type="dast", slug="zap")
        cli_client.release_status.return_value = release("fail", sast=("fail", "s4"), dast=("fail", "s1"))

        assert main.main(["scan", "-s", "s1", "--break-by-scanner-type"]) == 1
        cli_client.find_active_scanner.assert_called_once_with("zap")

    def test_break_by_scanner_type_without_release_category_passes(self, cli_client):
        # Arrange
        cli_client.find_active_scanner.return_value = ScannerInfo(id="t3", type="mast", slug="mobsf")
        cli_client.find_project.return_value = Project(id="p1", name="web")
        cli_client.list_scans.return_value = [Scan(id="s1", tool="mobsf")]
        cli_client.start_scan.return_value = "e1"
        cli_client.get_scan_status.return_value = Event(id="e1", status=6, active=0, scan_id="s1")
        cli_client.find_scan_by_id.return_value = Scan(id="s1", project="p1", branch="main", tool="mobsf")

        # Act
        code = main.main(["scan", "-p", "web", "-t", "mobsf", "--break-by-scanner-type"])

        # Assert
        assert code == 0
        cli_client.release_status.assert_not_called()

    def test_pull_request_scan_restarts_with_options(self, cli_client):
        # Arrange
        cli_client.find_active_scanner.return_value = ScannerInfo(id="t1", type="sast", slug="semgrep")
        cli_client.find_project.return_value = Project(id="p1", name="web")
        cli_client.find_scan.return_value = Scan(id="s1", tool="semgrep")
        cli_client.start_scan.return_value = "e1"

        # Act
        code = main.main([
            "scan", "-p", "web", "-t", "semgrep", "-b", "feature", "-M", "main",
            "--override", "--pr-number", "42", "--async",
        ])

        # Assert
        assert code == 0
        scan_id, options = cli_client.start_scan.call_args[0]
        assert scan_id == "s1"
        assert (options["from"], options["to"], options["pr_number"]) == ("feature", "main", "42")
        assert options["override_old_analyze"] is True

    @pytest.mark.parametrize("argv", [
        ["scan", "-p", "web", "-t", "semgrep", "--override"],
        ["scan", "-p", "web", "-t", "semgrep", "--pr-number", "3"],
        ["scan", "-p", "web", "-t", "semgrep", "-M", "main", "--pr-number", "3", "--no-decoration"],
    ])
    def test_invalid_pull_request_flags(self, cli_client, argv):
        cli_client.find_active_scanner.return_value = ScannerInfo(id="t1", type="sast", slug="semgrep")

        assert main.main(argv) == 1
        cli_client.find_project.assert_not_called()

    def test_scan_creates_missing_project(self, cli_client):
        # Arrange
        cli_client.find_active_scanner.return_value = ScannerInfo(id="t1", type="sast", slug="semgrep")
        cli_client.find_project.side_effect = NotFound("no projects were found")
        cli_client.create_project.return_value = Project(id="p9", name="web")
        cli_client.list_scans.return_value = [Scan(id="s1", tool="semgrep")]
        cli_client.start_scan.return_value = "e1"

        # Act
        code = main.main([
            "scan", "-r", "https://github.com/org/web", "-t", "semgrep", "--create-project",
            "-A", "github", "-T", "appsec", "-l", "backend, api", "--feature-branch-retention", "30",
            "--scope-included-paths", "services/web", "--async",
        ])

        # Assert
        assert code == 0
        detail = cli_client.create_project.call_args[0][0]
        assert detail.source.url == "https://github.com/org/web"
        assert detail.source.id == ""
        assert detail.source.tool == "github"
        assert detail.source.path_scope.included_paths == "services/web"
        assert detail.team.name == "appsec"
        assert [label.name for label in detail.labels] == ["backend", "api"]
        assert detail.feature_branch_retention == 30
        cli_client.list_scans.assert_called_once_with("web", {"tool": "semgrep"})

    def test_scan_missing_project_without_create_flag(self, cli_client):
        cli_client.find_active_scanner.return_value = ScannerInfo(id="t1", type="sast", slug="semgrep")
        cli_client.find_project.side_effect = NotFound("no projects were found")

        assert main.main(["scan", "-p", "web", "-t", "semgrep"]) == 5
        cli_client.create_project.assert_not_called()

    def test_create_project_rejects_name_and_repo(self, cli_client):
        cli_client.find_active_scanner.return_value = ScannerInfo(id="t1", type="sast", slug="semgrep")
        cli_client.find_project.side_effect = NotFound("no projects were found")

        code = main.main([
            "scan", "-r", "org/web", "--project-name", "web", "-t", "semgrep", "--create-project",
        ])

        assert code == 1
        cli_client.create_project.assert_not_called()

    def test_project_create_repo_id(self, cli_client):
        cli_client.create_project.return_value = Project(id="p3", name="web")

        code = main.main(["project", "create", "-r", "org/web", "-a", "github", "--fork-source", "develop"])

        assert code == 0
        detail = cli_client.create_project.call_args[0][0]
        assert (detail.source.id, detail.source.url) == ("org/web", "")
        assert detail.fork_source_branch == "develop"

    def test_unknown_scanner_exit_code(self, cli_client):
        cli_client.find_active_scanner.side_effect = NotFound("unknown, disabled or inactive tool name [nope]")

        assert main.main(["scan", "-p", "web", "-t", "nope"]) == 5

    def test_protocol_violation_exit_code(self, cli_client):
        cli_client.start_scan.return_value = "e1"
        cli_client.get_scan_status.return_value = Event(id="e1", status=2, active=7)

        assert main.main(["scan", "-s", "s1"]) == 6
