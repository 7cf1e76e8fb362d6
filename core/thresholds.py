from typing import Optional

from core.client import KonduktoClient
from core.errors import ThresholdError
from core.models import Scan


class Thresholds:
    """Maximum vulnerability counts a scan may report, None disables a check."""

    def __init__(self, critical: Optional[int] = None, high: Optional[int] = None,
                 medium: Optional[int] = None, low: Optional[int] = None, risk: bool = False):
        self.critical = critical
        self.high = high
        self.medium = medium
        self.low = low
        self.risk = risk

    @property
    def enabled(self) -> bool:
        return self.risk or any(v is not None for v in (self.critical, self.high, self.medium, self.low))


def check_thresholds(scan: Scan, thresholds: Thresholds, client: Optional[KonduktoClient] = None) -> None:
    if not thresholds.enabled:
        return

    if thresholds.risk:
        if client is None:
            raise ThresholdError("risk score threshold requires a client to fetch previous results")
        results = client.get_last_results(scan.id)
        last, previous = results.get("last"), results.get("previous")
        if last is None or previous is None:
            raise ThresholdError("missing score records")
        if last.score > previous.score:
            raise ThresholdError("risk score of the scan is higher than last scan's")

    checks = (
        ("critical", scan.summary.critical, thresholds.critical),
        ("high", scan.summary.high, thresholds.high),
        ("medium", scan.summary.medium, thresholds.medium),
        ("low", scan.summary.low, thresholds.low),
    )
    for severity, count, limit in checks:
        if limit is not None and count > limit:
            raise ThresholdError(f"number of vulnerabilities with {severity} severity is higher than threshold")
