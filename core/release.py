import time
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from core.client import KonduktoClient
from core.errors import UpstreamError
from core.models import (
    RELEASE_CATEGORIES,
    RELEASE_PROGRESS_IN_PROGRESS,
    RELEASE_STATUS_FAIL,
    RELEASE_STATUS_UNDEFINED,
    ReleaseStatus,
    Scan,
)
from utils.logger import get_logger

DEFAULT_RELEASE_INTERVAL = 5  # seconds
DEFAULT_RELEASE_TIMEOUT = 5 * 60  # seconds


class Verdict:
    """Pass/fail decision of the release gate."""

    def __init__(self, release: ReleaseStatus, failing: Optional[Dict[str, str]] = None,
                 ignored: Optional[Dict[str, str]] = None):
        self.release = release
        self.failing = failing or {}
        self.ignored = ignored or {}

    @property
    def passed(self) -> bool:
        return not self.failing

    @property
    def undefined(self) -> bool:
        return self.release.status == RELEASE_STATUS_UNDEFINED

    @property
    def failing_categories(self) -> List[str]:
        return list(self.failing.keys())

    def message(self) -> str:
        if self.undefined:
            return "project has no release criteria"
        if self.passed:
            return "project passes release criteria"
        return f"project does not pass release criteria due to [{', '.join(self.failing_categories)}] failure"


def normalize_categories(categories: Optional[Iterable[str]]) -> List[str]:
    normalized = []
    for category in categories or []:
        name = category.strip().upper()
        if name not in RELEASE_CATEGORIES:
            raise ValueError(f"unknown release category [{category}], expected one of {', '.join(RELEASE_CATEGORIES)}")
        if name not in normalized:
            normalized.append(name)
    return normalized


def decide(release: ReleaseStatus, enabled_categories: Optional[Iterable[str]] = None) -> Verdict:
    """Compute the verdict for an already fetched release status."""
    if release.status == RELEASE_STATUS_UNDEFINED:
        return Verdict(release)

    failing = {
        name: release.category(name).scan_id
        for name in RELEASE_CATEGORIES
        if release.category(name).status == RELEASE_STATUS_FAIL
    }

    enabled = normalize_categories(enabled_categories)
    if not enabled:
        return Verdict(release, failing)

    restricted = {name: scan_id for name, scan_id in failing.items() if name in enabled}
    ignored = {name: scan_id for name, scan_id in failing.items() if name not in enabled}
    return Verdict(release, restricted, ignored)


class ReleaseGateEvaluator:
    """Read-only check of a project's release criteria."""

    def __init__(self, client: KonduktoClient, poll_interval: float = DEFAULT_RELEASE_INTERVAL,
                 sleep: Callable[[float], None] = time.sleep,
                 clock: Callable[[], float] = time.monotonic):
        self.client = client
        self.poll_interval = poll_interval
        self.sleep = sleep
        self.clock = clock
        self.logger = get_logger()

    def fetch(self, project: str, branch: str = "", wait: bool = False,
              timeout: float = DEFAULT_RELEASE_TIMEOUT) -> ReleaseStatus:
        release = self.client.release_status(project, branch)
        if not wait:
            return release

        deadline = self.clock() + timeout
        while release.progress_status == RELEASE_PROGRESS_IN_PROGRESS:
            if self.clock() >= deadline:
                raise UpstreamError(f"timeout [{timeout}s] exceeded while waiting for release status")
            self.logger.debug(
                f"Release status is still in progress for project [{project}] on branch [{branch}]. "
                f"Waiting for {self.poll_interval} seconds..."
            )
            self.sleep(self.poll_interval)
            release = self.client.release_status(project, branch)
        return release

    def evaluate(self, project: str, enabled_categories: Optional[Iterable[str]] = None,
                 branch: str = "", wait: bool = False,
                 timeout: float = DEFAULT_RELEASE_TIMEOUT) -> Verdict:
        release = self.fetch(project, branch, wait, timeout)
        verdict = decide(release, enabled_categories)
        for name in verdict.ignored:
            self.logger.debug(f"[{name}] fails release criteria but is not part of the evaluated categories")
        return verdict

    def describe_failures(self, verdict: Verdict) -> List[Tuple[str, Optional[Scan]]]:
        """Fetch the scans behind each failing category."""
        details = []
        for name, scan_id in verdict.failing.items():
            scan = self.client.find_scan_by_id(scan_id) if scan_id else None
            details.append((name, scan))
        return details
