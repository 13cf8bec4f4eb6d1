"""
Uptime reports across one or more sites, with CSV export.
"""
import csv
import io
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from sitewatch.aggregator import DEFAULT_INCIDENT_LIMIT, UptimeSummary, summarize
from sitewatch.errors import SiteNotFoundError, ValidationError
from sitewatch.models.site import Site
from sitewatch.storage import CheckResultStore, validate_site_id
from sitewatch.timeutils import as_utc, utcnow

logger = logging.getLogger("sitewatch.reports")

SUMMARY_HEADER = [
    "Site", "Date Range", "Uptime %", "Total Checks", "Up", "Down",
    "Avg Response (ms)", "Min Response (ms)", "Max Response (ms)",
]
INCIDENT_HEADER = ["Site", "Timestamp", "Status Code", "Response Time (ms)", "Error Message"]


@dataclass
class SiteReport:
    site: Site
    summary: UptimeSummary


@dataclass
class IncidentRow:
    site_id: str
    site_url: str
    checked_at: datetime
    status_code: Optional[int]
    response_time_ms: Optional[int]
    error_message: Optional[str]


@dataclass
class Report:
    date_range_days: int
    generated_at: datetime
    sites: list[SiteReport] = field(default_factory=list)

    def incident_rows(self) -> list[IncidentRow]:
        rows = []
        for entry in self.sites:
            for incident in entry.summary.incidents:
                rows.append(
                    IncidentRow(
                        site_id=entry.site.id,
                        site_url=entry.site.url,
                        checked_at=as_utc(incident.checked_at),
                        status_code=incident.status_code,
                        response_time_ms=incident.response_time_ms,
                        error_message=incident.error_message,
                    )
                )
        return rows


class ReportBuilder:
    def __init__(
        self,
        store: CheckResultStore,
        incident_limit: int = DEFAULT_INCIDENT_LIMIT,
        max_days: int = 90,
    ):
        self.store = store
        self.incident_limit = incident_limit
        self.max_days = max_days

    async def build(
        self,
        owner_id: str,
        site_ids: list[str],
        date_range_days: int,
        now: Optional[datetime] = None,
    ) -> Report:
        if not 1 <= date_range_days <= self.max_days:
            raise ValidationError(f"Date range must be between 1 and {self.max_days} days")

        now = now or utcnow()
        since = now - timedelta(days=date_range_days)
        report = Report(date_range_days=date_range_days, generated_at=now)

        for raw_id in site_ids:
            site_id = validate_site_id(raw_id)
            site = await self.store.get_site(site_id, owner_id=owner_id)
            if site is None:
                logger.warning(f"Report requested for unknown or foreign site {site_id}")
                raise SiteNotFoundError(site_id)

            results = await self.store.query(site_id, since=since, until=now)
            report.sites.append(
                SiteReport(site=site, summary=summarize(site_id, results, self.incident_limit))
            )

        return report


def _na(value) -> str:
    return "N/A" if value is None else str(value)


def render_csv(report: Report) -> str:
    """Summary table, a blank line, then the incident table."""
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")

    writer.writerow(SUMMARY_HEADER)
    for entry in report.sites:
        s = entry.summary
        writer.writerow([
            entry.site.url,
            f"{report.date_range_days} days",
            f"{s.uptime_percent:.2f}",
            s.total_checks,
            s.up_checks,
            s.down_checks,
            _na(s.avg_response_ms),
            _na(s.min_response_ms),
            _na(s.max_response_ms),
        ])

    writer.writerow([])
    writer.writerow(INCIDENT_HEADER)
    for row in report.incident_rows():
        writer.writerow([
            row.site_url,
            row.checked_at.isoformat(),
            _na(row.status_code),
            _na(row.response_time_ms),
            _na(row.error_message),
        ])

    return buf.getvalue()
