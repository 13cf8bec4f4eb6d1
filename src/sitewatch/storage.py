"""
Durable storage for sites and check results.

Check results are append-only here. Retention/deletion belongs to an external
policy, so there is no delete path.
"""
import logging
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from sitewatch.errors import InvalidSiteIdError, StorageError
from sitewatch.models.check_result import CheckResult
from sitewatch.models.site import Site
from sitewatch.prober import ProbeResult

logger = logging.getLogger("sitewatch.storage")


def validate_site_id(site_id: str) -> str:
    """Site ids are UUIDs; return the canonical form or raise InvalidSiteIdError."""
    try:
        return str(uuid.UUID(str(site_id).strip()))
    except ValueError as e:
        raise InvalidSiteIdError(site_id) from e


class CheckResultStore:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_site(self, site_id: str, owner_id: Optional[str] = None) -> Optional[Site]:
        stmt = select(Site).where(Site.id == site_id)
        if owner_id is not None:
            stmt = stmt.where(Site.owner_id == owner_id)
        return await self._scalar(stmt, "load site")

    async def active_sites(self) -> list[Site]:
        stmt = select(Site).where(Site.is_active == True)  # noqa: E712
        try:
            result = await self.db.execute(stmt)
        except SQLAlchemyError as e:
            raise self._failed("list active sites", e) from e
        return list(result.scalars().all())

    async def active_site_ids(self, site_ids: list[str]) -> set[str]:
        """The subset of ``site_ids`` that exist and are active."""
        if not site_ids:
            return set()
        stmt = select(Site.id).where(Site.id.in_(site_ids), Site.is_active == True)  # noqa: E712
        try:
            result = await self.db.execute(stmt)
        except SQLAlchemyError as e:
            raise self._failed("load active site ids", e) from e
        return set(result.scalars().all())

    async def append(self, site_id: str, probe: ProbeResult) -> CheckResult:
        check = CheckResult(
            site_id=site_id,
            status=probe.status,
            status_code=probe.status_code,
            response_time_ms=probe.response_time_ms,
            error_message=probe.error,
            ssl_valid=probe.ssl_valid,
            checked_at=probe.checked_at,
        )
        self.db.add(check)
        try:
            await self.db.flush()
        except SQLAlchemyError as e:
            raise self._failed("append check result", e) from e
        return check

    async def mark_checked(self, site: Site, status: str, checked_at: datetime) -> None:
        site.status = status
        site.last_checked_at = checked_at

    async def commit(self) -> None:
        try:
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise self._failed("commit", e) from e

    async def query(
        self,
        site_id: str,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        limit: Optional[int] = None,
        newest_first: bool = True,
    ) -> list[CheckResult]:
        stmt = select(CheckResult).where(CheckResult.site_id == site_id)
        if since is not None:
            stmt = stmt.where(CheckResult.checked_at >= since)
        if until is not None:
            stmt = stmt.where(CheckResult.checked_at <= until)
        order = CheckResult.checked_at.desc() if newest_first else CheckResult.checked_at.asc()
        stmt = stmt.order_by(order)
        if limit is not None:
            stmt = stmt.limit(limit)
        try:
            result = await self.db.execute(stmt)
        except SQLAlchemyError as e:
            raise self._failed("query check results", e) from e
        return list(result.scalars().all())

    async def latest(self, site_id: str, since: Optional[datetime] = None) -> Optional[CheckResult]:
        rows = await self.query(site_id, since=since, limit=1, newest_first=True)
        return rows[0] if rows else None

    async def _scalar(self, stmt, action: str):
        try:
            result = await self.db.execute(stmt)
        except SQLAlchemyError as e:
            raise self._failed(action, e) from e
        return result.scalar_one_or_none()

    @staticmethod
    def _failed(action: str, error: Exception) -> StorageError:
        logger.error(f"Storage failure during {action}: {error}")
        return StorageError(f"Failed to {action}")
