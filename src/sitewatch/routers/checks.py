from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from sitewatch.auth import get_current_owner, verify_cron_secret
from sitewatch.checker import CheckService, check_active_sites
from sitewatch.core import MonitoringCore, get_core
from sitewatch.database import get_db
from sitewatch.errors import SiteNotFoundError
from sitewatch.schemas import (
    BulkCheckResponse,
    CheckResponse,
    RateLimitedResponse,
    SiteStatusResponse,
)
from sitewatch.storage import validate_site_id

router = APIRouter(prefix="/api", tags=["checks"])


def get_check_service(
    db: AsyncSession = Depends(get_db),
    core: MonitoringCore = Depends(get_core),
) -> CheckService:
    return CheckService(db, core.prober, core.cache, core.settings)


@router.post(
    "/sites/{site_id}/check",
    response_model=CheckResponse,
    responses={429: {"model": RateLimitedResponse}},
)
async def check_now(
    site_id: str,
    owner_id: str = Depends(get_current_owner),
    service: CheckService = Depends(get_check_service),
):
    outcome = await service.check_site(site_id, owner_id=owner_id)
    return CheckResponse.from_check(outcome.check)


@router.post(
    "/cron/uptime",
    response_model=BulkCheckResponse,
    dependencies=[Depends(verify_cron_secret)],
)
async def cron_uptime(core: MonitoringCore = Depends(get_core)):
    counts = await check_active_sites(core.prober, core.cache, core.settings)
    return BulkCheckResponse(**counts)


@router.get("/sites/{site_id}/status", response_model=SiteStatusResponse)
async def site_status(
    site_id: str,
    owner_id: str = Depends(get_current_owner),
    service: CheckService = Depends(get_check_service),
):
    site_id = validate_site_id(site_id)
    site = await service.store.get_site(site_id, owner_id=owner_id)
    if site is None:
        raise SiteNotFoundError(site_id)
    cached = await service.current_status(site_id)
    return SiteStatusResponse.from_cached(site_id, cached)


@router.get("/status", response_model=list[SiteStatusResponse])
async def public_statuses(
    site_ids: str = Query(..., description="Comma-separated site ids"),
    service: CheckService = Depends(get_check_service),
):
    """
    Public batched status read. Order follows ``site_ids``.

    Only active sites report a status; unknown or paused ids read as "unknown".
    """
    ids = [validate_site_id(s) for s in site_ids.split(",") if s.strip()]
    active = await service.store.active_site_ids(ids)
    visible = [site_id for site_id in ids if site_id in active]
    statuses = dict(zip(visible, await service.current_statuses(visible)))
    return [SiteStatusResponse.from_cached(site_id, statuses.get(site_id)) for site_id in ids]
