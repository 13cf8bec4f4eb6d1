"""
Per-site check rate limit: at most one accepted check per window.

The window is derived from stored check results, so it holds across processes
without any extra shared state. It is not a precise scheduler.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sitewatch.errors import RateLimitExceeded
from sitewatch.storage import CheckResultStore
from sitewatch.timeutils import as_utc, utcnow

logger = logging.getLogger("sitewatch.rate_limit")


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    next_check_allowed: Optional[datetime] = None


class RateLimiter:
    def __init__(self, store: CheckResultStore, window_seconds: int = 60):
        self.store = store
        self.window = timedelta(seconds=window_seconds)

    async def allow(self, site_id: str, now: Optional[datetime] = None) -> RateLimitDecision:
        now = now or utcnow()
        recent = await self.store.latest(site_id, since=now - self.window)
        if recent is None:
            return RateLimitDecision(allowed=True)
        return RateLimitDecision(
            allowed=False,
            next_check_allowed=as_utc(recent.checked_at) + self.window,
        )

    async def enforce(self, site_id: str, now: Optional[datetime] = None) -> None:
        decision = await self.allow(site_id, now)
        if not decision.allowed:
            logger.info(
                f"Rate limited check for site {site_id} until "
                f"{decision.next_check_allowed.isoformat()}"
            )
            raise RateLimitExceeded(site_id, decision.next_check_allowed)
