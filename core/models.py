from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from core.errors import DecodingError
from core.params import ParamTree

RELEASE_CATEGORIES = ("SAST", "DAST", "PENTEST", "IAST", "SCA", "CS", "IAC")

RELEASE_STATUS_FAIL = "fail"
RELEASE_STATUS_UNDEFINED = "undefined"
RELEASE_PROGRESS_IN_PROGRESS = "in_progress"

SCANNER_LABEL_AGENT = "agent"
SCANNER_LABEL_CREATABLE_ON_TOOL = "creatable-on-tool"
RESCAN_ONLY_LABELS = ("bind", SCANNER_LABEL_AGENT, "template")


def _as_dict(data: Any, what: str) -> Dict[str, Any]:
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise DecodingError(f"expected a JSON object for {what}, got {type(data).__name__}")
    return data


def _count(data: Dict[str, Any], key: str) -> int:
    value = data.get(key) or 0
    if isinstance(value, bool) or not isinstance(value, int):
        raise DecodingError(f"{key} must be an integer, got {value!r}")
    if value < 0:
        raise DecodingError(f"{key} must not be negative, got {value}")
    return value


def _parse_date(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (TypeError, ValueError) as e:
        raise DecodingError(f"invalid date {value!r}: {e}") from e


def _html_link(data: Dict[str, Any]) -> str:
    return (data.get("links") or {}).get("html", "")


@dataclass
class Team:
    name: str = ""
    id: str = ""

    @classmethod
    def from_dict(cls, data: Any) -> "Team":
        data = _as_dict(data, "team")
        return cls(name=data.get("name", ""), id=data.get("id", ""))

    def to_dict(self) -> Dict[str, Any]:
        payload = {"name": self.name}
        if self.id:
            payload["id"] = self.id
        return payload


@dataclass
class Label:
    name: str = ""
    id: str = ""

    @classmethod
    def from_dict(cls, data: Any) -> "Label":
        data = _as_dict(data, "label")
        return cls(name=data.get("name", ""), id=data.get("id", ""))

    def to_dict(self) -> Dict[str, Any]:
        payload = {"name": self.name}
        if self.id:
            payload["id"] = self.id
        return payload


@dataclass
class Project:
    id: str = ""
    name: str = ""
    default_branch: str = ""
    team: Team = field(default_factory=Team)
    labels: List[Label] = field(default_factory=list)
    link: str = ""

    @classmethod
    def from_dict(cls, data: Any) -> "Project":
        data = _as_dict(data, "project")
        return cls(
            id=data.get("id", ""),
            name=data.get("name", ""),
            default_branch=data.get("default_branch", ""),
            team=Team.from_dict(data.get("team")),
            labels=[Label.from_dict(label) for label in data.get("labels") or []],
            link=_html_link(data),
        )

    def labels_as_string(self) -> str:
        return ",".join(label.name for label in self.labels)

    def fields_as_row(self) -> List[str]:
        return [self.name, self.id, self.default_branch, self.team.name, self.labels_as_string(), self.link]


@dataclass
class PathScope:
    include_empty: bool = False
    included_paths: str = ""
    included_files: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "include_empty": self.include_empty,
            "included_paths": self.included_paths,
            "included_files": self.included_files,
        }


@dataclass
class ProjectSource:
    tool: str = ""
    id: str = ""
    url: str = ""
    clone_disabled: bool = False
    path_scope: PathScope = field(default_factory=PathScope)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tool": self.tool,
            "id": self.id,
            "url": self.url,
            "clone_disabled": self.clone_disabled,
            "path_scope": self.path_scope.to_dict(),
        }


@dataclass
class ProjectDetail:
    """Payload used to create a project."""

    name: str
    source: ProjectSource = field(default_factory=ProjectSource)
    team: Team = field(default_factory=Team)
    labels: List[Label] = field(default_factory=list)
    override: bool = False
    overwrite: bool = False
    default_branch: str = "main"
    fork_source_branch: str = ""
    feature_branch_retention: int = 0
    feature_branch_no_retention: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "source": self.source.to_dict(),
            "team": self.team.to_dict(),
            "labels": [label.to_dict() for label in self.labels],
            "override": self.override,
            "overwrite": self.overwrite,
            "default_branch": self.default_branch,
            "fork_source_branch": self.fork_source_branch,
            "feature_branch_retention": self.feature_branch_retention,
            "feature_branch_no_retention": self.feature_branch_no_retention,
        }


@dataclass
class Summary:
    critical: int = 0
    high: int = 0
    medium: int = 0
    low: int = 0
    info: int = 0

    @classmethod
    def from_dict(cls, data: Any) -> "Summary":
        data = _as_dict(data, "summary")
        return cls(
            critical=_count(data, "critical"),
            high=_count(data, "high"),
            medium=_count(data, "medium"),
            low=_count(data, "low"),
            info=_count(data, "info"),
        )


@dataclass
class Scan:
    id: str = ""
    name: str = ""
    branch: str = ""
    scan_type: str = ""
    meta_data: str = ""
    tool: str = ""
    date: Optional[datetime] = None
    project: str = ""
    scanner_type: str = ""
    score: int = 0
    summary: Summary = field(default_factory=Summary)
    link: str = ""

    @classmethod
    def from_dict(cls, data: Any) -> "Scan":
        data = _as_dict(data, "scan")
        return cls(
            id=data.get("id", ""),
            name=data.get("name", ""),
            branch=data.get("branch", ""),
            scan_type=data.get("scan_type", ""),
            meta_data=data.get("meta_data", ""),
            tool=data.get("tool", ""),
            date=_parse_date(data.get("date")),
            project=data.get("project", ""),
            scanner_type=data.get("scanner_type", ""),
            score=_count(data, "score"),
            summary=Summary.from_dict(data.get("summary")),
            link=_html_link(data),
        )

    def date_as_string(self) -> str:
        return self.date.isoformat() if self.date else ""

    def summary_row(self) -> List[str]:
        s = self.summary
        return [
            self.name, self.id, self.branch, self.meta_data, self.tool,
            str(s.critical), str(s.high), str(s.medium), str(s.low), str(self.score),
            self.date_as_string(),
        ]


@dataclass
class ResultSet:
    score: int = 0
    summary: Summary = field(default_factory=Summary)

    @classmethod
    def from_dict(cls, data: Any) -> "ResultSet":
        data = _as_dict(data, "result set")
        return cls(score=_count(data, "score"), summary=Summary.from_dict(data.get("summary")))


@dataclass
class Event:
    id: str = ""
    status: int = 0
    active: int = 0
    scan_id: str = ""
    status_text: str = ""
    message: str = ""
    link: str = ""

    @classmethod
    def from_dict(cls, data: Any) -> "Event":
        data = _as_dict(data, "event")
        status, active = data.get("status", 0), data.get("active", 0)
        for key, value in (("status", status), ("active", active)):
            if isinstance(value, bool) or not isinstance(value, int):
                raise DecodingError(f"event {key} must be an integer, got {value!r}")
        return cls(
            id=data.get("id", ""),
            status=status,
            active=active,
            scan_id=data.get("scan_id", ""),
            status_text=data.get("status_text", ""),
            message=data.get("message", ""),
            link=_html_link(data),
        )


@dataclass
class PlaybookTypeDetail:
    status: str = ""
    scan_id: str = ""

    @classmethod
    def from_dict(cls, data: Any) -> "PlaybookTypeDetail":
        data = _as_dict(data, "release criteria")
        return cls(status=data.get("status", ""), scan_id=data.get("scan_id", ""))


@dataclass
class ReleaseStatus:
    status: str = RELEASE_STATUS_UNDEFINED
    progress_status: str = ""
    categories: Dict[str, PlaybookTypeDetail] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Any) -> "ReleaseStatus":
        data = _as_dict(data, "release status")
        return cls(
            status=data.get("status", RELEASE_STATUS_UNDEFINED),
            progress_status=data.get("progress_status", ""),
            categories={
                name: PlaybookTypeDetail.from_dict(data.get(name.lower()))
                for name in RELEASE_CATEGORIES
            },
        )

    def category(self, name: str) -> PlaybookTypeDetail:
        return self.categories.get(name.upper(), PlaybookTypeDetail())


@dataclass
class Custom:
    type: int = 0
    params: ParamTree = field(default_factory=ParamTree)

    @classmethod
    def from_dict(cls, data: Any) -> "Custom":
        data = _as_dict(data, "custom")
        return cls(type=data.get("type", 0), params=ParamTree.from_value(data.get("params") or {}))

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "params": self.params.to_value()}


@dataclass
class Scanparams:
    id: str = ""
    branch: str = ""
    bind_name: str = ""
    custom: Optional[Custom] = None

    @classmethod
    def from_dict(cls, data: Any) -> "Scanparams":
        data = _as_dict(data, "scanparams")
        custom = data.get("custom")
        return cls(
            id=data.get("id", ""),
            branch=data.get("branch", ""),
            bind_name=data.get("bind_name", ""),
            custom=Custom.from_dict(custom) if custom is not None else None,
        )


@dataclass
class ScanparamsDetail:
    """Payload used to store a new scan configuration for a project."""

    tool_id: str
    project_id: str
    branch: str = ""
    meta_data: str = ""
    agent_id: str = ""
    custom: Custom = field(default_factory=Custom)
    scan_type: str = "kdt"
    environment: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tool": {"id": self.tool_id},
            "project": {"id": self.project_id},
            "agent": {"id": self.agent_id} if self.agent_id else {},
            "branch": self.branch,
            "meta_data": self.meta_data,
            "scan_type": self.scan_type,
            "custom": self.custom.to_dict(),
            "environment": self.environment,
        }


@dataclass
class PRInfo:
    """Pull request branches of a scan, sent when a new PR scan is created."""

    target: str = ""
    pr_number: str = ""
    no_decoration: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": bool(self.target),
            "target": self.target,
            "pr_number": self.pr_number,
            "no_decoration": self.no_decoration,
        }


@dataclass
class NewScan:
    """Payload used to create a scan from a stored configuration."""

    project: str
    tool_id: str
    branch: str = ""
    meta_data: str = ""
    scanparams_id: str = ""
    custom: Custom = field(default_factory=Custom)
    environment: str = ""
    pr: Optional[PRInfo] = None

    def to_dict(self) -> Dict[str, Any]:
        payload = {
            "project": self.project,
            "tool_id": self.tool_id,
            "branch": self.branch,
            "meta_data": self.meta_data,
            "custom": self.custom.to_dict(),
            "environment": self.environment,
        }
        if self.scanparams_id:
            payload["scanparams_id"] = self.scanparams_id
        if self.pr is not None:
            payload["pr"] = self.pr.to_dict()
        return payload


@dataclass
class RestartOptions:
    """Options for re-running a scan as a pull request analysis."""

    source_branch: str
    target_branch: str
    override_old_analyze: bool = False
    pr_number: str = ""
    no_decoration: bool = False
    custom: Custom = field(default_factory=Custom)
    environment: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "from": self.source_branch,
            "to": self.target_branch,
            "override_old_analyze": self.override_old_analyze,
            "pr_number": self.pr_number,
            "no_decoration": self.no_decoration,
            "custom": self.custom.to_dict(),
            "environment": self.environment,
        }


@dataclass
class ScannerParam:
    type: str = "string"
    optional: bool = True
    default_value: str = ""
    description: str = ""

    @classmethod
    def from_dict(cls, data: Any) -> "ScannerParam":
        data = _as_dict(data, "scanner param")
        return cls(
            type=data.get("type", "string"),
            optional=bool(data.get("optional", False)),
            default_value=data.get("default_value", ""),
            description=data.get("description", ""),
        )


@dataclass
class ScannerInfo:
    id: str = ""
    type: str = ""
    slug: str = ""
    display_name: str = ""
    labels: List[str] = field(default_factory=list)
    custom_type: int = 0
    disabled: bool = False
    params: Dict[str, ScannerParam] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Any) -> "ScannerInfo":
        data = _as_dict(data, "scanner")
        return cls(
            id=data.get("id", ""),
            type=data.get("type", ""),
            slug=data.get("slug", ""),
            display_name=data.get("display_name", ""),
            labels=list(data.get("labels") or []),
            custom_type=data.get("custom_type", 0),
            disabled=bool(data.get("disabled", False)),
            params={
                key: ScannerParam.from_dict(value)
                for key, value in (data.get("params") or {}).items()
            },
        )

    def has_label(self, label: str) -> bool:
        return label in self.labels

    def is_rescan_only(self) -> bool:
        """Scanners bound to an existing configuration can only re-run earlier scans."""
        if self.has_label(SCANNER_LABEL_CREATABLE_ON_TOOL):
            return False
        return any(label in RESCAN_ONLY_LABELS for label in self.labels)

    def required_params(self) -> List[str]:
        return [key for key, param in self.params.items() if not param.optional]
