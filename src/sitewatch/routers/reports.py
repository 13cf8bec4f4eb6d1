from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from sitewatch.auth import get_current_owner
from sitewatch.config import get_settings
from sitewatch.database import get_db
from sitewatch.errors import ValidationError
from sitewatch.reports import Report, ReportBuilder, render_csv
from sitewatch.schemas import (
    IncidentResponse,
    ReportResponse,
    SiteReportResponse,
    UptimeSummaryResponse,
)
from sitewatch.storage import CheckResultStore

router = APIRouter(prefix="/api/reports", tags=["reports"])
settings = get_settings()


async def _build(owner_id: str, site_ids: str, days: int, db: AsyncSession) -> Report:
    ids = [s.strip() for s in site_ids.split(",") if s.strip()]
    if not ids:
        raise ValidationError("At least one site id is required")
    builder = ReportBuilder(
        CheckResultStore(db),
        incident_limit=settings.incident_report_limit,
        max_days=settings.max_report_days,
    )
    return await builder.build(owner_id, ids, days)


@router.get("", response_model=ReportResponse)
async def get_report(
    site_ids: str = Query(..., description="Comma-separated site ids"),
    days: int = 7,
    owner_id: str = Depends(get_current_owner),
    db: AsyncSession = Depends(get_db),
):
    report = await _build(owner_id, site_ids, days, db)
    return ReportResponse(
        date_range_days=report.date_range_days,
        generated_at=report.generated_at,
        sites=[
            SiteReportResponse(
                site_id=entry.site.id,
                name=entry.site.name,
                url=entry.site.url,
                summary=UptimeSummaryResponse.from_summary(entry.summary),
            )
            for entry in report.sites
        ],
        incidents=[
            IncidentResponse.from_check(incident)
            for entry in report.sites
            for incident in entry.summary.incidents
        ],
    )


@router.get("/export")
async def export_report(
    site_ids: str = Query(..., description="Comma-separated site ids"),
    days: int = 7,
    owner_id: str = Depends(get_current_owner),
    db: AsyncSession = Depends(get_db),
):
    report = await _build(owner_id, site_ids, days, db)
    filename = f"uptime-report-{report.generated_at.strftime('%Y-%m-%d')}.csv"
    return Response(
        content=render_csv(report),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
