"""
Scan lifecycle: start a scan on the Kondukto side and follow its event until
the server reports a terminal state.
"""

import time
from typing import Any, Callable, Dict, List, Optional

from core.client import KonduktoClient
from core.errors import InvalidParams, NotFound, ProtocolViolation, ScanFailed
from core.models import (
    Custom,
    Event,
    NewScan,
    PRInfo,
    Project,
    RestartOptions,
    Scan,
    ScannerInfo,
    ScanparamsDetail,
)
from core.params import ParamTree, parse_param_value
from utils.logger import get_logger

# Event.status values as sent by the server
EVENT_STATUS_FAILED = -1
EVENT_STATUS_WAITING = 0
EVENT_STATUS_STARTING = 1
EVENT_STATUS_RUNNING = 2
EVENT_STATUS_RETRIEVING_RESULTS = 3
EVENT_STATUS_ANALYZING = 4
EVENT_STATUS_NOTIFYING = 5
EVENT_STATUS_FINISHED = 6

# Event.active values
EVENT_FAILED = -1
EVENT_INACTIVE = 0
EVENT_ACTIVE = 1

DEFAULT_POLL_INTERVAL = 10  # seconds

WAIT_FINISHED = "finished"
WAIT_DETACHED = "detached"
WAIT_ASYNC = "async"


class WaitResult:
    """Outcome of following a scan event."""

    def __init__(self, outcome: str, event: Optional[Event] = None):
        self.outcome = outcome
        self.event = event

    @property
    def finished(self) -> bool:
        return self.outcome == WAIT_FINISHED

    @property
    def scan_id(self) -> str:
        return self.event.scan_id if self.event else ""


def select_scan_for_tool(scans: List[Scan], tool: str, branch: str = "", meta: str = "") -> Scan:
    """
    Pick the scan of ``tool`` to re-run.

    Scans on another branch or with other meta data are skipped when those are
    given. The list is walked from the end and every match overwrites the
    previous one, so the match kept is the one closest to the head of the list.
    """
    selected = None
    for scan in reversed(scans):
        if scan.tool != tool:
            continue
        if branch and scan.branch != branch:
            continue
        if meta and scan.meta_data != meta:
            continue
        selected = scan
    if selected is None:
        raise NotFound(f"no scans found for the tool [{tool}]")
    return selected


def _search(**filters) -> Dict[str, Any]:
    return {key: value for key, value in filters.items() if value not in ("", None)}


class ScanLifecycleController:
    def __init__(self, client: KonduktoClient, poll_interval: float = DEFAULT_POLL_INTERVAL,
                 sleep: Callable[[float], None] = time.sleep,
                 clock: Callable[[], float] = time.monotonic):
        self.client = client
        self.poll_interval = poll_interval
        self.sleep = sleep
        self.clock = clock
        self.logger = get_logger()

    def start_by_scan_id(self, scan_id: str) -> str:
        event_id = self.client.start_scan(scan_id)
        self.logger.debug(f"scan [{scan_id}] restarted with event [{event_id}]")
        return event_id

    def start_by_project_tool(self, project: str, tool: str, branch: str = "", meta: str = "",
                              environment: str = "") -> str:
        search = _search(tool=tool, branch=branch, meta_data=meta, environment=environment)
        scans = self.client.list_scans(project, search)
        scan = select_scan_for_tool(scans, tool, branch, meta)
        self.logger.info(f"a completed scan [{scan.id}] found with the same parameters, restarting")
        return self.start_by_scan_id(scan.id)

    def start_for_project(self, project: Project, scanner: ScannerInfo, tool: str,
                          raw_params: List[str] = (), branch: str = "", meta: str = "",
                          environment: str = "") -> str:
        """
        Start a scan of ``scanner`` on ``project``.

        Without custom parameters a completed scan with the same branch, meta
        data and environment is re-run. Otherwise, or when there is none, a
        new scan is created from stored or new scan parameters.
        """
        if not raw_params:
            try:
                return self.start_by_project_tool(project.name, tool, branch, meta, environment)
            except NotFound as e:
                self.logger.debug(f"failed to get completed scans: {e}, trying to get scanparams")
        return self.start_with_params(project, scanner, raw_params, branch=branch, meta=meta,
                                      environment=environment)

    def start_with_params(self, project: Project, scanner: ScannerInfo, raw_params: List[str],
                          branch: str = "", meta: str = "", environment: str = "") -> str:
        """
        Start a new scan from stored or new scan parameters.

        Stored scan parameters matching the tool and branch are reused and
        their custom values fill in whatever the command line did not set;
        otherwise a new scanparams record is created first. Rescan-only
        scanners refuse to create one without custom parameters.
        """
        search = _search(tool_id=scanner.id, branch=branch, meta_data=meta, environment=environment)
        search["limit"] = 1
        try:
            existing = self.client.find_scanparams(project.name, search)
        except NotFound:
            existing = None
            self.logger.debug("no scanparams found with the same parameters")

        stored = existing.custom.params if existing and existing.custom else None
        custom = _custom(scanner, raw_params, stored)

        scan = NewScan(
            project=project.name,
            tool_id=scanner.id,
            branch=branch,
            meta_data=meta,
            custom=custom,
            environment=environment,
        )

        if existing is not None:
            self.logger.debug(f"a scanparams [{existing.id}] found with the same parameters")
            scan.scanparams_id = existing.id
            return self.client.create_new_scan(scan)

        if scanner.is_rescan_only() and not raw_params:
            self.logger.debug(f"scanner tool [{scanner.slug}] is only allowing rescans")
            raise NotFound("no scans found for given project and tool configuration")

        self.logger.info("creating a new scanparams")
        created = self.client.create_scanparams(project.id, ScanparamsDetail(
            tool_id=scanner.id,
            project_id=project.id,
            branch=branch,
            meta_data=meta,
            custom=custom,
            environment=environment,
        ))
        scan.scanparams_id = created.id
        if created.custom is not None:
            scan.custom = created.custom

        self.logger.info("creating a new scan")
        return self.client.create_new_scan(scan)

    def start_pull_request(self, project: Project, scanner: ScannerInfo, tool: str, branch: str,
                           merge_target: str, override: bool = False, pr_number: str = "",
                           no_decoration: bool = False, raw_params: List[str] = (), meta: str = "",
                           environment: str = "") -> str:
        """
        Start a pull request analysis of ``branch`` against ``merge_target``.

        A completed scan of the tool is re-run with the PR branches as restart
        options. Without one, stored PR scan parameters are reused or a new PR
        scan is created.
        """
        if not branch:
            raise InvalidParams("missing branch field")
        if not merge_target:
            raise InvalidParams("missing merge target")

        custom = _custom(scanner, raw_params)
        try:
            scan = self.client.find_scan(project.name, _search(
                tool=tool, meta_data=meta, environment=environment,
            ))
        except NotFound as e:
            self.logger.debug(f"failed to get completed scans: {e}, trying to get scanparams")
        else:
            options = RestartOptions(
                source_branch=branch,
                target_branch=merge_target,
                override_old_analyze=override,
                pr_number=pr_number,
                no_decoration=no_decoration,
                custom=custom,
                environment=environment,
            )
            self.logger.info(f"a completed scan [{scan.id}] found, restarting it as a PR scan")
            return self.client.start_scan(scan.id, options.to_dict())

        search = _search(tool_id=scanner.id, branch=branch, meta_data=meta, target=merge_target,
                         environment=environment)
        search.update(pr=True, limit=1)
        try:
            existing = self.client.find_scanparams(project.name, search)
        except NotFound:
            existing = None
            self.logger.debug("no PR scanparams found with the same parameters")

        if existing is not None:
            return self.client.create_new_scan(NewScan(
                project=project.name, tool_id=scanner.id, scanparams_id=existing.id, custom=custom,
            ))

        if scanner.is_rescan_only() and not raw_params:
            self.logger.debug(f"scanner tool [{scanner.slug}] is only allowing rescans")
            raise NotFound("no scans found for given project, tool and PR configuration")

        self.logger.info("creating a new PR scan")
        return self.client.create_new_scan(NewScan(
            project=project.name,
            tool_id=scanner.id,
            branch=branch,
            meta_data=meta,
            custom=custom,
            environment=environment,
            pr=PRInfo(target=merge_target, pr_number=pr_number, no_decoration=no_decoration),
        ))

        self.logger.info("creating a new scanparams")
        created = self.client.create_scanparams(project.id, ScanparamsDetail(
            tool_id=scanner.id,
            project_id=project.id,
            branch=branch,
            meta_data=meta,
            custom=custom,
            environment=environment,
        ))
        scan.scanparams_id = created.id
        if created.custom is not None:
            scan.custom = created.custom

        self.logger.info("creating a new scan")
        return self.client.create_new_scan(scan)

    def wait(self, event_id: str, timeout_minutes: int = 0) -> WaitResult:
        """
        Poll the event until the scan finishes.

        Raises ScanFailed when the server marks the event failed and
        ProtocolViolation on an unknown activity value. Errors from the
        status call are not retried.
        """
        start = self.clock()
        timeout = timeout_minutes * 60
        last_status = None

        while True:
            event = self.client.get_scan_status(event_id)

            if event.active == EVENT_FAILED:
                raise ScanFailed(f"Scan failed. Reason: {event.message}")

            if event.active == EVENT_INACTIVE:
                if event.status == EVENT_STATUS_FINISHED:
                    self.logger.success("scan finished successfully")
                    return WaitResult(WAIT_FINISHED, event)
                self.logger.debug(f"event is inactive with status [{event.status_text or event.status}]")
            elif event.active == EVENT_ACTIVE:
                if timeout and self.clock() - start > timeout:
                    self.logger.info("scan duration exceeds timeout, it will continue running async in the background")
                    return WaitResult(WAIT_DETACHED, event)
                if event.status != last_status:
                    self.logger.info(f"scan status is [{event.status_text}]")
                    last_status = event.status
                else:
                    self.logger.debug(f"event status is [{event.status_text}]")
            else:
                raise ProtocolViolation(f"unknown event status: {event.active}")

            self.sleep(self.poll_interval)

    def run(self, event_id: str, async_mode: bool = False, timeout_minutes: int = 0) -> WaitResult:
        if async_mode:
            return WaitResult(WAIT_ASYNC)
        return self.wait(event_id, timeout_minutes)


def parse_raw_params(raw_params: List[str]) -> Dict[str, str]:
    pairs = {}
    for item in raw_params:
        key, sep, value = item.partition(":")
        if not sep or not key:
            raise InvalidParams(f"invalid params flag [{item}], the flag should be a pair of [key:value]")
        pairs[key] = value
    return pairs


def build_custom_params(scanner: ScannerInfo, raw_params: List[str],
                        stored: Optional[ParamTree] = None) -> ParamTree:
    """Type the given key:value pairs by the scanner schema and fill in defaults."""
    if not scanner.params:
        raise InvalidParams(f"the scanner tool [{scanner.display_name}] does not allow custom parameter")

    pairs = parse_raw_params(raw_params)
    if len(scanner.required_params()) > len(pairs):
        raise InvalidParams(f"missing parameters for the scanner tool [{scanner.display_name}]")

    tree = ParamTree()
    for key, raw in pairs.items():
        param = scanner.params.get(key)
        if param is None:
            raise InvalidParams(f"params key [{key}] is not allowed by the scanner tool")
        tree.set_path(key, parse_param_value(param.type, raw))

    if stored is not None:
        tree.merge_missing(stored)

    for key, param in scanner.params.items():
        if tree.has_path(key) or not param.default_value:
            continue
        tree.set_path(key, parse_param_value(param.type, param.default_value))

    return tree


def _custom(scanner: ScannerInfo, raw_params: List[str], stored: Optional[ParamTree] = None) -> Custom:
    if not raw_params:
        return Custom(type=scanner.custom_type)
    return Custom(type=scanner.custom_type, params=build_custom_params(scanner, raw_params, stored))
