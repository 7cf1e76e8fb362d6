#!/usr/bin/env python3

import argparse
import sys
from typing import List, Optional
from urllib.parse import urlparse

from core.client import KonduktoClient
from core.errors import (
    EXIT_ERROR,
    EXIT_INTERRUPTED,
    EXIT_NEGATIVE,
    EXIT_SUCCESS,
    CertificateError,
    InvalidParams,
    KonduktoError,
    NetworkError,
    NotFound,
    ReleaseCriteriaError,
    ScanFailed,
)
from core.lifecycle import ScanLifecycleController
from core.models import (
    RELEASE_CATEGORIES,
    Label,
    PathScope,
    Project,
    ProjectDetail,
    ProjectSource,
    Scan,
    ScannerInfo,
    Team,
)
from core.release import ReleaseGateEvaluator, Verdict
from core.thresholds import Thresholds, check_thresholds
from core.transport import Transport
from utils.config import ClientConfig, resolve_config
from utils.logger import setup_logger
from utils.update_check import check_update

VERSION = "v1.0.0"

ALM_TOOLS = (
    "azureserver", "azurecloud", "bitbucket", "bitbucketserver", "github",
    "gitlabcloud", "gitlabonprem", "git", "githubenterprise",
)

SCAN_SUMMARY_HEADERS = ["NAME", "ID", "BRANCH", "META", "TOOL", "CRIT", "HIGH", "MED", "LOW", "SCORE", "DATE"]


class Exit(Exception):
    """Terminate the command with a message and an exit code."""

    def __init__(self, code: int, message: str = ""):
        super().__init__(message)
        self.code = code
        self.message = message


def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="kdt",
        description="Command line interface to interact with Kondukto",
    )
    parser.add_argument("--config", type=str, default=None, help="config file (default is $HOME/.kdt.yaml)")
    parser.add_argument("--host", type=str, default=None, help="Kondukto server host")
    parser.add_argument("--token", type=str, default=None, help="Kondukto API token")
    parser.add_argument("--insecure", action="store_true", help="skip TLS verification and use insecure http client")
    parser.add_argument("-v", "--verbose", action="store_true", help="more logs")
    parser.add_argument("--exit-code", type=int, default=None, help="override the exit code")

    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("version", help="prints version number of KDT")
    commands.add_parser("healthcheck", help="checks the connection and the API token")

    scan = commands.add_parser("scan", help="base command for starting scans")
    scan.add_argument("-p", "--project", type=str, default="", help="kondukto project id or name")
    scan.add_argument("-r", "--repo-id", type=str, default="", help="URL or ID of ALM repository")
    scan.add_argument("-t", "--tool", type=str, default="", help="tool name")
    scan.add_argument("-s", "--scan-id", type=str, default="", help="scan id")
    scan.add_argument("-b", "--branch", type=str, default="", help="branch")
    scan.add_argument("-m", "--meta", type=str, default="", help="meta data")
    scan.add_argument("--env", type=str, default="", help="application environment")
    scan.add_argument("--params", action="append", default=[], help="custom parameters for scan as key:value")
    scan.add_argument("--async", dest="async_mode", action="store_true", help="does not block build process")
    scan.add_argument("--timeout", type=int, default=0,
                      help="minutes to wait for scan to finish. scan will continue async if duration exceeds limit")
    scan.add_argument("--release-timeout", type=int, default=5,
                      help="minutes to wait for release criteria check to finish")
    scan.add_argument("--break-by-scanner-type", action="store_true",
                      help="breaks pipeline if only scanner type matches with the given scanner's type")
    scan.add_argument("-M", "--merge-target", type=str, default="",
                      help="target branch name for pull request scans")
    scan.add_argument("--override", action="store_true",
                      help="overrides the old analyzed results for the source branch of the PR scan")
    scan.add_argument("--pr-number", type=str, default="", help="pull request number to decorate")
    scan.add_argument("--no-decoration", action="store_true", help="disables the PR decoration of the PR scan")
    scan.add_argument("--create-project", action="store_true",
                      help="creates a new project when no project is found with the given parameters")
    scan.add_argument("--project-name", type=str, default="", help="name of the project [create-project]")
    scan.add_argument("-A", "--alm-tool", type=str, default="", help="ALM tool name [create-project]")
    _add_project_arguments(scan)
    _add_threshold_arguments(scan)

    status = commands.add_parser("status", help="base command for querying project status")
    status.add_argument("-p", "--project", type=str, default="", help="project name or id")
    status.add_argument("-b", "--branch", type=str, default="", help="project branch name")
    status.add_argument("-e", "--event", type=str, default="", help="event id")
    _add_threshold_arguments(status)

    release = commands.add_parser("release", help="show if project passes release criteria")
    release.add_argument("-p", "--project", type=str, required=True, help="project name or id")
    release.add_argument("-b", "--branch", type=str, default="", help="branch name")
    for category in ("sast", "dast", "pentest", "iast", "sca", "cs", "iac"):
        release.add_argument(f"--{category}", action="store_true", help=f"{category} criteria status")
    release.add_argument("--wait", action="store_true", help="wait while release status is being calculated")
    release.add_argument("--release-timeout", type=int, default=5,
                         help="minutes to wait for release criteria check to finish")

    listing = commands.add_parser("list", help="base command for lists")
    list_commands = listing.add_subparsers(dest="list_command", required=True)
    list_projects = list_commands.add_parser("projects", help="lists projects in Kondukto")
    list_projects.add_argument("name", nargs="?", default="", help="project name filter")
    list_projects.add_argument("-a", "--alm", type=str, default="", help="ALM repository filter")
    list_scans = list_commands.add_parser("scans", help="list scans of a project")
    list_scans.add_argument("-p", "--project", type=str, required=True, help="project name or id")
    list_scans.add_argument("-b", "--branch", type=str, default="", help="branch name")
    list_commands.add_parser("scanners", help="lists active scanners in Kondukto")

    project = commands.add_parser("project", help="base command for projects")
    project_commands = project.add_subparsers(dest="project_command", required=True)
    available = project_commands.add_parser("available", help="check if a project is available on Kondukto")
    available.add_argument("-r", "--repo-id", type=str, required=True, help="repository id")
    available.add_argument("-a", "--alm-tool", type=str, required=True, choices=ALM_TOOLS, help="ALM tool name")
    create = project_commands.add_parser("create", help="creates a new project")
    create.add_argument("-n", "--name", type=str, default="", help="project name")
    create.add_argument("-r", "--repo-id", type=str, default="", help="URL or ID of ALM repository")
    create.add_argument("-a", "--alm-tool", type=str, default="", help="ALM tool name")
    _add_project_arguments(create)
    create.add_argument("--override", action="store_true", help="create with a suffix if the project exists")
    create.add_argument("--overwrite", action="store_true", help="overwrite the project if it exists")

    return parser.parse_args(argv)


def _add_project_arguments(parser: argparse.ArgumentParser):
    parser.add_argument("-T", "--team", type=str, default="", help="project team name")
    parser.add_argument("-l", "--labels", type=str, default="", help="comma separated label names")
    parser.add_argument("--default-branch", type=str, default="main", help="default branch of the project")
    parser.add_argument("--disable-clone", action="store_true", help="disables the clone operation")
    parser.add_argument("--fork-source", type=str, default="", help="source branch of fork scans")
    parser.add_argument("--feature-branch-retention", type=int, default=0,
                        help="retention in days for deleting feature branches")
    parser.add_argument("--feature-branch-infinite-retention", action="store_true",
                        help="never delete feature branches, overrides --feature-branch-retention")
    parser.add_argument("--scope-include-empty", action="store_true",
                        help="include SAST, SCA and IAC vulnerabilities with no path in this project")
    parser.add_argument("--scope-included-paths", type=str, default="",
                        help="comma separated list of mono-repo paths that belong to this project")
    parser.add_argument("--scope-included-files", type=str, default="",
                        help="comma separated list of file names to check alongside the paths")


def _add_threshold_arguments(parser: argparse.ArgumentParser):
    parser.add_argument("--threshold-risk", action="store_true", help="set risk score of last scan as threshold")
    parser.add_argument("--threshold-crit", type=int, default=None, help="threshold for critical vulnerabilities")
    parser.add_argument("--threshold-high", type=int, default=None, help="threshold for high vulnerabilities")
    parser.add_argument("--threshold-med", type=int, default=None, help="threshold for medium vulnerabilities")
    parser.add_argument("--threshold-low", type=int, default=None, help="threshold for low vulnerabilities")


def thresholds_from_args(args: argparse.Namespace) -> Thresholds:
    return Thresholds(
        critical=args.threshold_crit,
        high=args.threshold_high,
        medium=args.threshold_med,
        low=args.threshold_low,
        risk=args.threshold_risk,
    )


def build_client(config: ClientConfig) -> KonduktoClient:
    transport = Transport(config)
    try:
        transport.ping()
    except CertificateError:
        raise
    except KonduktoError as e:
        logger.debug(f"ping failed: {e}")
    return KonduktoClient(transport)


def print_scan_summary(scan: Scan):
    logger.pretty_table(SCAN_SUMMARY_HEADERS, [scan.summary_row()])
    if scan.link:
        logger.info(f"UI link: {scan.link}")


def report_verdict(evaluator: ReleaseGateEvaluator, verdict: Verdict, verbose: bool):
    if verdict.passed:
        return
    if verbose:
        for category, scan in evaluator.describe_failures(verdict):
            logger.warning(f"[!] project does not pass release criteria due to [{category}] failure")
            if scan is not None:
                print_scan_summary(scan)
    raise ReleaseCriteriaError(verdict.message())


def project_detail_from_args(args: argparse.Namespace, name: str, repo_id: str,
                             override: bool = False, overwrite: bool = False) -> ProjectDetail:
    source = ProjectSource(
        tool=args.alm_tool,
        clone_disabled=args.disable_clone,
        path_scope=PathScope(
            include_empty=args.scope_include_empty,
            included_paths=args.scope_included_paths,
            included_files=args.scope_included_files,
        ),
    )
    parsed = urlparse(repo_id)
    if parsed.scheme and parsed.netloc:
        source.url = repo_id
    else:
        source.id = repo_id

    return ProjectDetail(
        name=name,
        source=source,
        team=Team(name=args.team),
        labels=[Label(name=label.strip()) for label in args.labels.split(",") if label.strip()],
        override=override,
        overwrite=overwrite,
        default_branch=args.default_branch,
        fork_source_branch=args.fork_source,
        feature_branch_retention=args.feature_branch_retention,
        feature_branch_no_retention=args.feature_branch_infinite_retention,
    )


def find_or_create_project(args: argparse.Namespace, client: KonduktoClient) -> Project:
    """Resolve the scan's project, creating it when --create-project allows."""
    if not (args.project or args.repo_id or args.project_name):
        raise InvalidParams("missing a required flag(repo or project) to get project detail")

    name = args.project_name if (args.repo_id or args.project_name) else args.project
    try:
        return client.find_project(name, args.repo_id)
    except NotFound:
        if not args.create_project:
            raise NotFound("no projects were found according to the given parameters")

    if not (args.repo_id or args.project_name):
        raise InvalidParams("missing a required repo or project-name flag to create a project")
    if args.repo_id and args.project_name:
        raise InvalidParams("both repo and project-name flags cannot be used together")

    logger.info("no projects were found, creating a new project")
    project = client.create_project(project_detail_from_args(args, args.project_name, args.repo_id))
    logger.info(f"project [{project.name}] created")
    return project


def release_scanner_type(client: KonduktoClient, scan: Scan, scanner: Optional[ScannerInfo]) -> str:
    if scanner is not None:
        return scanner.type
    if scan.scanner_type:
        return scan.scanner_type
    return client.find_active_scanner(scan.tool).type


def start_scan(args: argparse.Namespace, client: KonduktoClient, controller: ScanLifecycleController,
               scanner: Optional[ScannerInfo]) -> str:
    if args.override and not args.merge_target:
        raise InvalidParams("overriding PR analysis requires a merge target")
    if args.pr_number and not args.merge_target:
        raise InvalidParams("pr-number flag requires a merge target")
    if args.no_decoration and args.pr_number:
        raise InvalidParams("no-decoration flag cannot be used with pr-number flag")

    if args.scan_id:
        return controller.start_by_scan_id(args.scan_id)

    if not (args.project or args.repo_id or args.project_name) or scanner is None:
        raise Exit(EXIT_ERROR, "either a scan id or a project and a tool are required to start a scan")

    project = find_or_create_project(args, client)
    if args.merge_target:
        return controller.start_pull_request(
            project, scanner, args.tool, args.branch, args.merge_target,
            override=args.override,
            pr_number=args.pr_number,
            no_decoration=args.no_decoration,
            raw_params=args.params,
            meta=args.meta,
            environment=args.env,
        )
    return controller.start_for_project(
        project, scanner, args.tool, args.params, branch=args.branch, meta=args.meta, environment=args.env,
    )


def cmd_scan(args, client: KonduktoClient, config) -> int:
    controller = ScanLifecycleController(client, poll_interval=config["polling"]["scan_interval"])

    scanner = None
    if args.tool:
        scanner = client.find_active_scanner(args.tool)

    event_id = start_scan(args, client, controller, scanner)

    result = controller.run(event_id, async_mode=args.async_mode, timeout_minutes=args.timeout)
    if not result.finished:
        logger.pretty_table(["EVENT ID"], [[event_id]])
        if args.async_mode:
            raise Exit(EXIT_SUCCESS, "scan has been started with async parameter, exiting.")
        raise Exit(EXIT_SUCCESS, "scan continues in the background")

    scan = client.find_scan_by_id(result.scan_id)
    print_scan_summary(scan)

    check_thresholds(scan, thresholds_from_args(args), client)

    categories = None
    if args.break_by_scanner_type:
        scanner_type = release_scanner_type(client, scan, scanner)
        if scanner_type.upper() not in RELEASE_CATEGORIES:
            logger.debug(f"scanner type [{scanner_type}] has no release criteria, skipping the release check")
            raise Exit(EXIT_SUCCESS, "scan passed security tests successfully")
        categories = [scanner_type]

    evaluator = ReleaseGateEvaluator(client, poll_interval=config["polling"]["release_interval"])
    verdict = evaluator.evaluate(
        scan.project, categories, branch=scan.branch, wait=True, timeout=args.release_timeout * 60,
    )
    report_verdict(evaluator, verdict, args.verbose)

    raise Exit(EXIT_SUCCESS, "scan passed security tests successfully")


def cmd_status(args, client: KonduktoClient, config) -> int:
    if args.event:
        event = client.get_scan_status(args.event)
        logger.pretty_table(["EventID", "Event Status", "UI Link"], [[event.id, event.status_text, event.link]])
        raise Exit(EXIT_SUCCESS, f"event [{args.event}] status: {event.status_text}")

    if not args.project:
        raise Exit(EXIT_ERROR, "a project or an event id is required")

    search = {"branch": args.branch} if args.branch else None
    scans = client.list_scans(args.project, search)
    if not scans:
        raise Exit(EXIT_ERROR, "no scans found")

    latest = scans[0]
    for scan in scans:
        if scan.date is not None and (latest.date is None or scan.date > latest.date):
            latest = scan

    detail = client.find_scan_by_id(latest.id)
    print_scan_summary(detail)

    check_thresholds(detail, thresholds_from_args(args), client)
    raise Exit(EXIT_SUCCESS, "scan passed security tests successfully")


def cmd_release(args, client: KonduktoClient, config) -> int:
    evaluator = ReleaseGateEvaluator(client, poll_interval=config["polling"]["release_interval"])
    categories = [c for c in ("sast", "dast", "pentest", "iast", "sca", "cs", "iac") if getattr(args, c)]

    verdict = evaluator.evaluate(
        args.project, categories, branch=args.branch, wait=args.wait, timeout=args.release_timeout * 60,
    )
    if verdict.undefined:
        raise Exit(EXIT_SUCCESS, verdict.message())

    release = verdict.release
    headers = ["STATUS", "SAST", "DAST", "PENTEST", "IAST", "SCA", "CS", "IAC"]
    row = [release.status] + [release.category(name).status for name in headers[1:]]
    logger.pretty_table(headers, [row])

    report_verdict(evaluator, verdict, args.verbose)
    raise Exit(EXIT_SUCCESS, verdict.message())


def cmd_list(args, client: KonduktoClient, config) -> int:
    if args.list_command == "projects":
        projects = client.list_projects(args.name, args.alm)
        if not projects:
            raise Exit(EXIT_ERROR, "no projects found")
        logger.pretty_table(
            ["NAME", "ID", "DEFAULT BRANCH", "TEAM", "LABELS", "UI LINK"],
            [p.fields_as_row() for p in projects],
        )
    elif args.list_command == "scans":
        search = {"branch": args.branch} if args.branch else None
        scans = client.list_scans(args.project, search)
        if not scans:
            raise Exit(EXIT_ERROR, "no scans found with the project id/name")
        logger.pretty_table(SCAN_SUMMARY_HEADERS, [s.summary_row() for s in scans])
    else:
        scanners = client.list_active_scanners()
        if not scanners:
            raise Exit(EXIT_ERROR, "no active scanners found")
        logger.pretty_table(
            ["NAME", "ID", "TYPE", "LABELS"],
            [[s.display_name or s.slug, s.id, s.type, ",".join(s.labels)] for s in scanners],
        )
    return EXIT_SUCCESS


def cmd_project(args, client: KonduktoClient, config) -> int:
    if args.project_command == "available":
        client.health_check()
        if client.is_available(args.repo_id, args.alm_tool):
            raise Exit(EXIT_SUCCESS, "[+] project is available")
        raise Exit(EXIT_NEGATIVE, "[-] project is not available")

    if not args.name and not args.repo_id:
        raise Exit(EXIT_ERROR, "a project name or a repository id is required")
    detail = project_detail_from_args(args, args.name, args.repo_id, override=args.override,
                                      overwrite=args.overwrite)
    project = client.create_project(detail)
    logger.pretty_table(["NAME", "ID", "DEFAULT BRANCH", "TEAM", "LABELS", "UI LINK"], [project.fields_as_row()])
    raise Exit(EXIT_SUCCESS, "project created successfully")


def cmd_healthcheck(args, client: KonduktoClient, config) -> int:
    client.health_check()
    raise Exit(EXIT_SUCCESS, "[+] connection and API token are valid")


COMMANDS = {
    "scan": cmd_scan,
    "status": cmd_status,
    "release": cmd_release,
    "list": cmd_list,
    "project": cmd_project,
    "healthcheck": cmd_healthcheck,
}


def _exit_code(args: argparse.Namespace, code: int) -> int:
    if args.exit_code is not None:
        logger.info(f"overriding exit code [{code}] as [{args.exit_code}]")
        return args.exit_code
    return code


def run(args: argparse.Namespace) -> int:
    if args.command == "version":
        print(f"KDT Kondukto Client {VERSION}")
        return EXIT_SUCCESS

    updated, latest = check_update(VERSION)
    if updated:
        logger.highlight(f"A new version of KDT {latest} is available")

    config = resolve_config(
        args.config,
        {"host": args.host, "token": args.token, "insecure": args.insecure, "verbose": args.verbose},
    )
    client_config = ClientConfig.from_dict(config)
    client = build_client(client_config)

    try:
        return COMMANDS[args.command](args, client, config)
    finally:
        client.transport.close()


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_arguments(argv)
    logger.set_level("DEBUG" if args.verbose else "INFO")

    try:
        code = run(args)
    except Exit as e:
        if e.message:
            if e.code == EXIT_SUCCESS:
                logger.success(e.message)
            else:
                logger.error(e.message)
        code = e.code
    except ScanFailed as e:
        logger.error(str(e))
        code = e.exit_code
    except NetworkError as e:
        logger.error(f"could not connect to Kondukto: {e}")
        code = e.exit_code
    except KonduktoError as e:
        logger.error(str(e))
        code = e.exit_code
    except KeyboardInterrupt:
        logger.warning("interrupted")
        code = EXIT_INTERRUPTED

    return _exit_code(args, code)


def cli():
    sys.exit(main())


logger = setup_logger("INFO")

if __name__ == "__main__":
    cli()
