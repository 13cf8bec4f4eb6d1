from datetime import timedelta

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from sitewatch.aggregator import hourly_buckets, summarize
from sitewatch.auth import get_current_owner
from sitewatch.config import get_settings
from sitewatch.database import get_db
from sitewatch.errors import SiteNotFoundError
from sitewatch.schemas import HourlyBucketResponse, UptimeSummaryResponse
from sitewatch.storage import CheckResultStore, validate_site_id
from sitewatch.timeutils import utcnow

router = APIRouter(prefix="/api/sites", tags=["uptime"])
settings = get_settings()


async def _owned_site_id(site_id: str, owner_id: str, store: CheckResultStore) -> str:
    site_id = validate_site_id(site_id)
    if await store.get_site(site_id, owner_id=owner_id) is None:
        raise SiteNotFoundError(site_id)
    return site_id


@router.get("/{site_id}/uptime", response_model=UptimeSummaryResponse)
async def get_uptime_summary(
    site_id: str,
    hours: int = Query(24, ge=1, le=24 * 90),
    owner_id: str = Depends(get_current_owner),
    db: AsyncSession = Depends(get_db),
):
    store = CheckResultStore(db)
    site_id = await _owned_site_id(site_id, owner_id, store)

    now = utcnow()
    results = await store.query(site_id, since=now - timedelta(hours=hours), until=now)
    summary = summarize(site_id, results, settings.incident_report_limit)
    return UptimeSummaryResponse.from_summary(summary)


@router.get("/{site_id}/uptime/hourly", response_model=list[HourlyBucketResponse])
async def get_hourly_uptime(
    site_id: str,
    owner_id: str = Depends(get_current_owner),
    db: AsyncSession = Depends(get_db),
):
    store = CheckResultStore(db)
    site_id = await _owned_site_id(site_id, owner_id, store)

    now = utcnow()
    results = await store.query(site_id, since=now - timedelta(hours=24), until=now)
    return [HourlyBucketResponse.from_bucket(b) for b in hourly_buckets(results, now=now)]
