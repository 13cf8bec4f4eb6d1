from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from sitewatch.aggregator import HourlyBucket, UptimeSummary
from sitewatch.cache import CachedStatus
from sitewatch.models.check_result import CheckResult
from sitewatch.timeutils import as_utc


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --- Checks ---

class CheckResponse(CamelModel):
    site_id: str
    status: str
    response_time_ms: Optional[int] = None
    status_code: Optional[int] = None
    error: Optional[str] = None
    ssl_valid: Optional[bool] = None
    checked_at: datetime

    @classmethod
    def from_check(cls, check: CheckResult) -> "CheckResponse":
        return cls(
            site_id=check.site_id,
            status=check.status,
            response_time_ms=check.response_time_ms,
            status_code=check.status_code,
            error=check.error_message,
            ssl_valid=check.ssl_valid,
            checked_at=as_utc(check.checked_at),
        )


class RateLimitedResponse(CamelModel):
    detail: str
    next_check_allowed: datetime


class BulkCheckResponse(BaseModel):
    success: bool = True
    total: int
    up: int
    down: int
    errors: int


# --- Status ---

class SiteStatusResponse(CamelModel):
    site_id: str
    status: str  # up, down, unknown
    status_code: Optional[int] = None
    response_time_ms: Optional[int] = None
    last_check_at: Optional[datetime] = None
    error: Optional[str] = None

    @classmethod
    def from_cached(cls, site_id: str, cached: Optional[CachedStatus]) -> "SiteStatusResponse":
        if cached is None:
            return cls(site_id=site_id, status="unknown")
        return cls(
            site_id=site_id,
            status=cached.status,
            status_code=cached.status_code,
            response_time_ms=cached.response_ms,
            last_check_at=cached.last_check_at,
            error=cached.error,
        )


# --- Uptime ---

class IncidentResponse(CamelModel):
    id: str
    site_id: str
    checked_at: datetime
    status_code: Optional[int] = None
    response_time_ms: Optional[int] = None
    error_message: Optional[str] = None

    @classmethod
    def from_check(cls, check: CheckResult) -> "IncidentResponse":
        return cls(
            id=check.id,
            site_id=check.site_id,
            checked_at=as_utc(check.checked_at),
            status_code=check.status_code,
            response_time_ms=check.response_time_ms,
            error_message=check.error_message,
        )


class UptimeSummaryResponse(CamelModel):
    site_id: str
    total_checks: int
    up_checks: int
    down_checks: int
    uptime_percent: float
    avg_response_time_ms: Optional[int] = None
    min_response_time_ms: Optional[int] = None
    max_response_time_ms: Optional[int] = None
    incidents: list[IncidentResponse]

    @classmethod
    def from_summary(cls, summary: UptimeSummary) -> "UptimeSummaryResponse":
        return cls(
            site_id=summary.site_id,
            total_checks=summary.total_checks,
            up_checks=summary.up_checks,
            down_checks=summary.down_checks,
            uptime_percent=round(summary.uptime_percent, 2),
            avg_response_time_ms=summary.avg_response_ms,
            min_response_time_ms=summary.min_response_ms,
            max_response_time_ms=summary.max_response_ms,
            incidents=[IncidentResponse.from_check(i) for i in summary.incidents],
        )


class HourlyBucketResponse(CamelModel):
    hour: int
    start: datetime
    total: int
    up: int
    percentage: float
    status: str

    @classmethod
    def from_bucket(cls, bucket: HourlyBucket) -> "HourlyBucketResponse":
        return cls(**vars(bucket))


# --- Reports ---

class SiteReportResponse(CamelModel):
    site_id: str
    name: str
    url: str
    summary: UptimeSummaryResponse


class ReportResponse(CamelModel):
    date_range_days: int
    generated_at: datetime
    sites: list[SiteReportResponse]
    incidents: list[IncidentResponse]
