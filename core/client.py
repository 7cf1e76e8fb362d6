from typing import Any, Dict, List, Optional

from core.errors import DecodingError, KonduktoError, NotFound, UpstreamError
from core.models import (
    Event,
    NewScan,
    Project,
    ProjectDetail,
    ReleaseStatus,
    ResultSet,
    Scan,
    ScannerInfo,
    Scanparams,
    ScanparamsDetail,
)
from core.transport import Transport
from utils.logger import get_logger

HTTP_OK = 200
HTTP_CREATED = 201


class KonduktoClient:
    """Typed operations over the Kondukto REST API."""

    def __init__(self, transport: Transport):
        self.transport = transport
        self.logger = get_logger()

    # Projects

    def list_projects(self, name: str = "", alm: str = "") -> List[Project]:
        self.logger.debug("retrieving project list...")
        response = self.transport.get("/api/v2/projects", params={"name": name, "alm": alm})
        if response.status_code != HTTP_OK:
            raise UpstreamError(f"HTTP response not OK: {response.status_code}", response.status_code)
        return [Project.from_dict(p) for p in _as_list(response.field("projects"), "projects")]

    def find_project_by_name(self, name: str) -> Project:
        """
        Return the project whose name matches exactly.

        Names are only unique per ALM tool; the first exact match returned by
        the server wins.
        """
        projects = self.list_projects(name)
        matches = [p for p in projects if p.name == name]
        if not matches:
            raise NotFound(f"project not found: {name}")
        if len(matches) > 1:
            self.logger.debug(f"{len(matches)} projects named [{name}] found, using [{matches[0].id}]")
        return matches[0]

    def find_project(self, id_or_name: str = "", alm: str = "") -> Project:
        """
        Resolve a project by id, exact name or ALM repository.

        Ambiguous names follow the same rule as find_project_by_name: the
        first exact match wins. A single non-matching result is the server's
        own resolution (by id or repository) and is accepted as is.
        """
        if not id_or_name and not alm:
            raise NotFound("missing project id, name or repository")
        projects = self.list_projects(id_or_name, alm)
        if id_or_name:
            for project in projects:
                if project.id == id_or_name:
                    return project
            for project in projects:
                if project.name == id_or_name:
                    return project
        if len(projects) == 1:
            return projects[0]
        if not projects:
            raise NotFound(f"no projects were found for [{id_or_name or alm}]")
        raise KonduktoError(f"multiple projects found for [{id_or_name or alm}], none matches exactly")

    def create_project(self, detail: ProjectDetail) -> Project:
        self.logger.debug("creating a project")
        response = self.transport.post("/api/v2/projects", detail.to_dict())
        return Project.from_dict(response.field("project"))

    def is_available(self, repo_id: str, alm_tool: str) -> bool:
        response = self.transport.get(f"/api/v2/projects/check/{alm_tool}/{repo_id}")
        if response.status_code != HTTP_OK:
            raise UpstreamError(f"HTTP response not OK: {response.status_code}", response.status_code)
        return bool(response.field("exist", False))

    def release_status(self, project: str, branch: str = "") -> ReleaseStatus:
        if not project:
            raise NotFound("missing project id or name")
        params = {"branch": branch} if branch else None
        response = self.transport.get(f"/api/v2/projects/{project}/release", params=params)
        if response.status_code != HTTP_OK:
            raise UpstreamError(f"HTTP response not OK: {response.status_code}", response.status_code)
        return ReleaseStatus.from_dict(response.data)

    # Scans

    def list_scans(self, project: str, search: Optional[Dict[str, Any]] = None) -> List[Scan]:
        self.logger.debug(f"retrieving scans of the project: {project}")
        response = self.transport.get(f"/api/v1/projects/{project}/scans", params=search)
        if response.status_code != HTTP_OK:
            raise UpstreamError(f"HTTP response not OK: {response.status_code}", response.status_code)
        return [Scan.from_dict(s) for s in _as_list(response.field("data"), "scans")]

    def find_scan(self, project: str, search: Dict[str, Any]) -> Scan:
        scans = self.list_scans(project, dict(search, limit=1))
        if not scans:
            raise NotFound("scan not found")
        return scans[0]

    def find_scan_by_id(self, scan_id: str) -> Scan:
        response = self.transport.get(f"/api/v1/scans/{scan_id}")
        if response.status_code != HTTP_OK:
            raise UpstreamError(f"HTTP response not OK: {response.status_code}", response.status_code)
        return Scan.from_dict(response.data)

    def get_last_results(self, scan_id: str) -> Dict[str, ResultSet]:
        response = self.transport.get(f"/api/v1/scans/{scan_id}/last_results")
        if response.status_code != HTTP_OK:
            raise UpstreamError(f"HTTP response not OK: {response.status_code}", response.status_code)
        if not isinstance(response.data, dict):
            raise DecodingError("last results must be a JSON object")
        return {key: ResultSet.from_dict(value) for key, value in response.data.items() if value is not None}

    def start_scan(self, scan_id: str, options: Optional[Dict[str, Any]] = None) -> str:
        """Re-run an existing scan and return the id of the event tracking it."""
        self.logger.debug(f"starting scan by scan_id [{scan_id}]")
        if options is None:
            response = self.transport.get(f"/api/v1/scans/{scan_id}/restart")
        else:
            response = self.transport.post(f"/api/v1/scans/{scan_id}/restart_with_option", options)

        if response.status_code != HTTP_CREATED:
            raise UpstreamError(f"HTTP response not OK: {response.status_code}", response.status_code)

        event_id = response.field("event", "")
        if not event_id:
            raise UpstreamError("event not found", response.status_code)
        return event_id

    def create_new_scan(self, scan: NewScan) -> str:
        self.logger.debug("creating new scan with given parameters")
        response = self.transport.post("/api/v2/scans/create", scan.to_dict())
        event_id = response.field("event_id", "")
        if not event_id:
            raise UpstreamError("event not found", response.status_code)
        return event_id

    def get_scan_status(self, event_id: str) -> Event:
        response = self.transport.get(f"/api/v2/events/{event_id}/status")
        if response.status_code != HTTP_OK:
            raise UpstreamError(f"HTTP response not OK: {response.status_code}", response.status_code)
        return Event.from_dict(response.data)

    # Scan parameters and scanners

    def find_scanparams(self, project: str, search: Dict[str, Any]) -> Scanparams:
        self.logger.debug("retrieving scanparams")
        if not project:
            raise NotFound("missing project identifier")
        response = self.transport.get(f"/api/v2/projects/{project}/scanparams", params=search)
        scanparams = _as_list(response.field("scanparams"), "scanparams")
        if not response.field("total", 0) or not scanparams:
            raise NotFound("scanparams not found")
        return Scanparams.from_dict(scanparams[0])

    def create_scanparams(self, project_id: str, detail: ScanparamsDetail) -> Scanparams:
        self.logger.debug("creating a scanparams")
        response = self.transport.post(f"/api/v2/projects/{project_id}/scanparams", detail.to_dict())
        return Scanparams.from_dict(response.field("scanparams"))

    def list_active_scanners(self, name: str = "", types: str = "", labels: str = "") -> List[ScannerInfo]:
        self.logger.debug("retrieving active scanners")
        response = self.transport.get(
            "/api/v1/scanners/active",
            params={"name": name, "types": types, "labels": labels},
        )
        if response.status_code != HTTP_OK:
            raise UpstreamError(f"HTTP response not OK: {response.status_code}", response.status_code)
        return [ScannerInfo.from_dict(s) for s in _as_list(response.field("active_scanners"), "scanners")]

    def find_active_scanner(self, name: str) -> ScannerInfo:
        """Return the active scanner with the given name, refusing disabled ones."""
        self.logger.debug(f"validating given tool name [{name}]")
        scanners = self.list_active_scanners(name=name)
        if not scanners:
            raise NotFound(
                f"unknown, disabled or inactive tool name [{name}]. "
                "Run `kdt list scanners` to see the supported active scanner's list."
            )
        scanner = scanners[0]
        if scanner.disabled:
            raise NotFound(f"the scanner [{name}] is disabled on the Kondukto")
        return scanner

    def health_check(self) -> None:
        self.transport.get("/api/v2/health/check", decode=False)


def _as_list(value: Any, what: str) -> List[Any]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise DecodingError(f"expected a list of {what}, got {type(value).__name__}")
    return value
