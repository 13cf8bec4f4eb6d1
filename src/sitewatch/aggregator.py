"""
Uptime statistics over a window of check results.

Inputs may arrive in any order; everything here sorts or groups explicitly.
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable, Optional

from sitewatch.models.check_result import CheckResult
from sitewatch.timeutils import as_utc, utcnow

DEFAULT_INCIDENT_LIMIT = 25


def uptime_percent(up: int, total: int) -> float:
    # No data is not evidence of downtime.
    if total == 0:
        return 100.0
    return up / total * 100


@dataclass
class UptimeSummary:
    site_id: str
    total_checks: int = 0
    up_checks: int = 0
    down_checks: int = 0
    uptime_percent: float = 100.0
    avg_response_ms: Optional[int] = None
    min_response_ms: Optional[int] = None
    max_response_ms: Optional[int] = None
    incidents: list[CheckResult] = field(default_factory=list)


@dataclass
class HourlyBucket:
    hour: int  # 0 = oldest, hours - 1 = current
    start: datetime
    total: int
    up: int
    percentage: float
    status: str  # up, partial, down


def summarize(
    site_id: str,
    results: Iterable[CheckResult],
    incident_limit: int = DEFAULT_INCIDENT_LIMIT,
) -> UptimeSummary:
    results = list(results)
    up = sum(1 for r in results if r.status == "up")
    down = sum(1 for r in results if r.status == "down")
    total = len(results)

    times = [r.response_time_ms for r in results if r.response_time_ms is not None]

    incidents = sorted(
        (r for r in results if r.status == "down"),
        key=lambda r: as_utc(r.checked_at),
        reverse=True,
    )[:incident_limit]

    return UptimeSummary(
        site_id=site_id,
        total_checks=total,
        up_checks=up,
        down_checks=down,
        uptime_percent=uptime_percent(up, total),
        avg_response_ms=round(sum(times) / len(times)) if times else None,
        min_response_ms=min(times) if times else None,
        max_response_ms=max(times) if times else None,
        incidents=incidents,
    )


def bucket_status(percentage: float) -> str:
    if percentage >= 100:
        return "up"
    if percentage <= 0:
        return "down"
    return "partial"


def hourly_buckets(
    results: Iterable[CheckResult],
    now: Optional[datetime] = None,
    hours: int = 24,
) -> list[HourlyBucket]:
    """
    Group results into ``hours`` rolling one-hour buckets ending at ``now``.

    Bucket boundaries are measured in UTC from ``now`` (a result 90 minutes
    old lands in the bucket one hour back), so they do not depend on the
    server's or the viewer's timezone. Empty buckets count as fully up.
    """
    now = as_utc(now) if now else utcnow()
    window_start = now - timedelta(hours=hours)
    counts = [[0, 0] for _ in range(hours)]  # [total, up]

    for r in sorted(results, key=lambda r: as_utc(r.checked_at)):
        checked_at = as_utc(r.checked_at)
        if checked_at <= window_start or checked_at > now:
            continue
        hours_ago = int((now - checked_at) // timedelta(hours=1))
        index = hours - 1 - min(hours_ago, hours - 1)
        counts[index][0] += 1
        if r.status == "up":
            counts[index][1] += 1

    buckets = []
    for i, (total, up) in enumerate(counts):
        pct = uptime_percent(up, total)
        buckets.append(
            HourlyBucket(
                hour=i,
                start=now - timedelta(hours=hours - i),
                total=total,
                up=up,
                percentage=round(pct, 2),
                status=bucket_status(pct),
            )
        )
    return buckets
