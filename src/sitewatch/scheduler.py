"""
APScheduler integration: an optional periodic trigger for bulk checks.

This only calls ``check_active_sites`` on a fixed interval. Per-site timing,
retries and fan-out across workers are not its job.
"""
import logging
from typing import TYPE_CHECKING

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from sitewatch.checker import check_active_sites

if TYPE_CHECKING:
    from sitewatch.core import MonitoringCore

logger = logging.getLogger("sitewatch.scheduler")

JOB_ID = "check_active_sites"


class CheckScheduler:
    def __init__(self, core: "MonitoringCore"):
        self.core = core
        self._scheduler = AsyncIOScheduler()

    @property
    def running(self) -> bool:
        return self._scheduler.running

    def start(self) -> None:
        """Schedule the bulk check job and start the scheduler."""
        interval = self.core.settings.check_interval_seconds
        self._scheduler.add_job(
            self.run_once,
            trigger=IntervalTrigger(seconds=interval),
            id=JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self._scheduler.start()
        logger.info(f"Scheduler started (every {interval}s)")

    async def run_once(self) -> dict[str, int]:
        return await check_active_sites(
            self.core.prober, self.core.cache, self.core.settings
        )

    def stop(self) -> None:
        """Shut down the scheduler."""
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
