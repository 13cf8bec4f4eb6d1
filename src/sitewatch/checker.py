"""
Check engine: gate, probe, store and cache one site check, plus the bulk
variant used by the cron trigger and the status read paths.
"""
import asyncio
import logging
from collections import Counter
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from sitewatch.cache import CachedStatus, StatusCache
from sitewatch.config import Settings
from sitewatch.database import get_session_factory
from sitewatch.errors import InvalidURLError, SiteNotFoundError, StorageError
from sitewatch.models.check_result import CheckResult
from sitewatch.models.site import Site
from sitewatch.prober import Prober
from sitewatch.rate_limit import RateLimiter
from sitewatch.storage import CheckResultStore, validate_site_id

logger = logging.getLogger("sitewatch.checker")


@dataclass
class CheckOutcome:
    site: Site
    check: CheckResult


class CheckService:
    def __init__(
        self,
        db: AsyncSession,
        prober: Prober,
        cache: StatusCache,
        settings: Settings,
    ):
        self.store = CheckResultStore(db)
        self.prober = prober
        self.cache = cache
        self.settings = settings
        self.rate_limiter = RateLimiter(self.store, settings.rate_limit_window_seconds)

    async def check_site(
        self,
        site_id: str,
        owner_id: Optional[str] = None,
        enforce_rate_limit: bool = True,
        timeout: Optional[float] = None,
    ) -> CheckOutcome:
        """Run one check for a site and record it. Raises RateLimitExceeded when gated."""
        site_id = validate_site_id(site_id)
        site = await self.store.get_site(site_id, owner_id=owner_id)
        if site is None:
            raise SiteNotFoundError(site_id)

        if enforce_rate_limit:
            await self.rate_limiter.enforce(site_id)

        if timeout is None:
            timeout = self.settings.manual_check_timeout
        probe = await self.prober.check(site.url, timeout)
        check = await self.record(site, probe)
        return CheckOutcome(site=site, check=check)

    async def record(self, site: Site, probe) -> CheckResult:
        check = await self.store.append(site.id, probe)
        await self.store.mark_checked(site, probe.status, probe.checked_at)
        await self.store.commit()
        # Cache only after the result is durable.
        await self.cache.put(site.id, CachedStatus.from_check(check), self.settings.status_cache_ttl)
        return check

    async def current_status(self, site_id: str) -> Optional[CachedStatus]:
        site_id = validate_site_id(site_id)
        return await self.cache.get_with_fallback(
            site_id,
            lambda: self._latest_from_db(site_id),
            self.settings.cache_fallback_ttl,
        )

    async def current_statuses(self, site_ids: list[str]) -> list[Optional[CachedStatus]]:
        """Batched status read, aligned to ``site_ids``; cache misses fall back to storage."""
        site_ids = [validate_site_id(s) for s in site_ids]
        statuses = await self.cache.get_many(site_ids)
        for i, cached in enumerate(statuses):
            if cached is None:
                statuses[i] = await self.current_status(site_ids[i])
        return statuses

    async def _latest_from_db(self, site_id: str) -> Optional[CachedStatus]:
        check = await self.store.latest(site_id)
        return CachedStatus.from_check(check) if check else None


async def check_active_sites(
    prober: Prober,
    cache: StatusCache,
    settings: Settings,
    timeout: Optional[float] = None,
    session_factory: Optional[async_sessionmaker] = None,
) -> dict[str, int]:
    """
    Check every active site concurrently, bounded by ``max_concurrent_checks``.

    Each site is recorded in its own session. A failure for one site is logged
    and counted under ``errors`` while the others still run. There is no rate
    limiting on this path.
    """
    session_factory = session_factory or get_session_factory()
    async with session_factory() as db:
        sites = await CheckResultStore(db).active_sites()
        targets = [(s.id, s.url) for s in sites]

    if timeout is None:
        timeout = settings.scheduled_check_timeout
    semaphore = asyncio.Semaphore(settings.max_concurrent_checks)
    counts: Counter = Counter()

    async def run(site_id: str, url: str) -> None:
        async with semaphore:
            try:
                probe = await prober.check(url, timeout)
            except InvalidURLError as e:
                logger.error(f"Skipping site {site_id}: {e}")
                counts["errors"] += 1
                return
            except Exception:
                logger.exception(f"Check failed for site {site_id}")
                counts["errors"] += 1
                return
            async with session_factory() as db:
                service = CheckService(db, prober, cache, settings)
                try:
                    site = await service.store.get_site(site_id)
                    if site is None:
                        return
                    await service.record(site, probe)
                except StorageError:
                    counts["errors"] += 1
                    return
                except Exception:
                    logger.exception(f"Recording check failed for site {site_id}")
                    counts["errors"] += 1
                    return
            counts[probe.status] += 1

    await asyncio.gather(*(run(site_id, url) for site_id, url in targets))
    logger.info(
        f"Checked {len(targets)} active site(s): {counts['up']} up, "
        f"{counts['down']} down, {counts['errors']} error(s)"
    )
    return {
        "total": len(targets),
        "up": counts["up"],
        "down": counts["down"],
        "errors": counts["errors"],
    }
