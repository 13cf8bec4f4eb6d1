"""
Process-wide monitoring components with explicit start/close.

One ``MonitoringCore`` is built per application and kept on ``app.state``.
Routes reach it through ``get_core``; nothing here is a module global.
"""
import logging
from typing import Optional

from fastapi import Request

from sitewatch.cache import StatusCache, create_backend
from sitewatch.config import Settings
from sitewatch.prober import Prober
from sitewatch.scheduler import CheckScheduler
from sitewatch.security import UrlGuard

logger = logging.getLogger("sitewatch.core")


class MonitoringCore:
    def __init__(
        self,
        settings: Settings,
        prober: Optional[Prober] = None,
        cache: Optional[StatusCache] = None,
    ):
        self.settings = settings
        self.prober = prober or Prober(
            timeout=settings.manual_check_timeout,
            user_agent=settings.user_agent,
            guard=UrlGuard(
                allowed_ports=settings.allowed_ports,
                allow_private=settings.allow_private_targets,
            ),
            max_redirects=settings.max_redirects,
        )
        self.cache = cache or StatusCache(
            create_backend(settings.cache_url),
            default_ttl=settings.status_cache_ttl,
            fallback_ttl=settings.cache_fallback_ttl,
        )
        self.scheduler = CheckScheduler(self)

    async def start(self) -> None:
        if self.settings.scheduler_enabled:
            self.scheduler.start()
        backend = "redis" if self.settings.cache_url else "memory"
        logger.info(f"Monitoring core started ({backend} status cache)")

    async def close(self) -> None:
        self.scheduler.stop()
        await self.prober.close()
        await self.cache.close()
        logger.info("Monitoring core stopped")


def get_core(request: Request) -> MonitoringCore:
    return request.app.state.core
