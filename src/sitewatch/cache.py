"""
Status cache: latest known status per site with a bounded lifetime.

The cache is advisory. A miss means "ask durable storage", never "status
unknown", and a broken backend behaves like an empty cache.
"""
import asyncio
import logging
import time
from datetime import datetime
from typing import Awaitable, Callable, Optional

import pydantic
from pydantic import BaseModel
from redis import asyncio as aioredis
from redis.exceptions import RedisError

from sitewatch.models.check_result import CheckResult
from sitewatch.timeutils import as_utc

logger = logging.getLogger("sitewatch.cache")


class CachedStatus(BaseModel):
    site_id: str
    ok: bool
    status_code: Optional[int] = None
    response_ms: Optional[int] = None
    last_check_at: datetime
    error: Optional[str] = None

    @classmethod
    def from_check(cls, check: CheckResult) -> "CachedStatus":
        return cls(
            site_id=check.site_id,
            ok=check.status == "up",
            status_code=check.status_code,
            response_ms=check.response_time_ms,
            last_check_at=as_utc(check.checked_at),
            error=check.error_message,
        )

    @property
    def status(self) -> str:
        return "up" if self.ok else "down"


def status_key(site_id: str) -> str:
    return f"site:{site_id}:status:v1"


class CacheUnavailable(Exception):
    pass


class MemoryCacheBackend:
    """In-process TTL store. Expired entries are dropped lazily on read."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._data: dict[str, tuple[float, str]] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> Optional[str]:
        async with self._lock:
            return self._read(key)

    async def mget(self, keys: list[str]) -> list[Optional[str]]:
        async with self._lock:
            return [self._read(k) for k in keys]

    async def set(self, key: str, value: str, ttl: int) -> None:
        async with self._lock:
            self._data[key] = (self._clock() + ttl, value)

    async def ttl(self, key: str) -> Optional[float]:
        async with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            return max(entry[0] - self._clock(), 0.0)

    async def clear(self) -> None:
        async with self._lock:
            self._data.clear()

    async def close(self) -> None:
        await self.clear()

    def _read(self, key: str) -> Optional[str]:
        entry = self._data.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if expires_at <= self._clock():
            del self._data[key]
            return None
        return value


class RedisCacheBackend:
    def __init__(self, url: str, client: Optional[aioredis.Redis] = None):
        self._redis = client or aioredis.Redis.from_url(url, decode_responses=True)

    async def get(self, key: str) -> Optional[str]:
        try:
            return await self._redis.get(key)
        except (RedisError, OSError) as e:
            raise CacheUnavailable(str(e)) from e

    async def mget(self, keys: list[str]) -> list[Optional[str]]:
        if not keys:
            return []
        try:
            return await self._redis.mget(keys)
        except (RedisError, OSError) as e:
            raise CacheUnavailable(str(e)) from e

    async def set(self, key: str, value: str, ttl: int) -> None:
        try:
            await self._redis.set(key, value, ex=ttl)
        except (RedisError, OSError) as e:
            raise CacheUnavailable(str(e)) from e

    async def ttl(self, key: str) -> Optional[float]:
        try:
            remaining = await self._redis.ttl(key)
        except (RedisError, OSError) as e:
            raise CacheUnavailable(str(e)) from e
        return float(remaining) if remaining is not None and remaining >= 0 else None

    async def close(self) -> None:
        await self._redis.aclose()


def create_backend(cache_url: Optional[str]):
    if cache_url:
        return RedisCacheBackend(cache_url)
    return MemoryCacheBackend()


class StatusCache:
    def __init__(self, backend, default_ttl: int = 900, fallback_ttl: int = 120):
        self.backend = backend
        self.default_ttl = default_ttl
        self.fallback_ttl = fallback_ttl

    async def close(self) -> None:
        await self.backend.close()

    async def put(self, site_id: str, status: CachedStatus, ttl: Optional[int] = None) -> None:
        """Store ``status`` for ``site_id``, replacing any previous entry."""
        if ttl is None:
            ttl = self.default_ttl
        try:
            await self.backend.set(status_key(site_id), status.model_dump_json(), ttl)
        except CacheUnavailable as e:
            logger.warning(f"Status cache write failed for site {site_id}: {e}")

    async def get(self, site_id: str) -> Optional[CachedStatus]:
        try:
            raw = await self.backend.get(status_key(site_id))
        except CacheUnavailable as e:
            logger.warning(f"Status cache read failed for site {site_id}: {e}")
            return None
        return self._decode(raw)

    async def get_many(self, site_ids: list[str]) -> list[Optional[CachedStatus]]:
        """One batched lookup. The result is aligned to ``site_ids``; misses are None."""
        try:
            raws = await self.backend.mget([status_key(s) for s in site_ids])
        except CacheUnavailable as e:
            logger.warning(f"Status cache batch read failed: {e}")
            return [None] * len(site_ids)
        return [self._decode(raw) for raw in raws]

    async def get_with_fallback(
        self,
        site_id: str,
        pull_from_db: Callable[[], Awaitable[Optional[CachedStatus]]],
        fallback_ttl: Optional[int] = None,
    ) -> Optional[CachedStatus]:
        """
        Return the cached status, or load it with ``pull_from_db`` on a miss.

        A loaded value is written back with the short fallback TTL so a burst
        of misses after expiry does not keep hitting the database. Concurrent
        misses may still each call ``pull_from_db`` once.
        """
        cached = await self.get(site_id)
        if cached is not None:
            return cached

        status = await pull_from_db()
        if status is not None:
            if fallback_ttl is None:
                fallback_ttl = self.fallback_ttl
            await self.put(site_id, status, fallback_ttl)
        return status

    @staticmethod
    def _decode(raw: Optional[str]) -> Optional[CachedStatus]:
        if raw is None:
            return None
        try:
            return CachedStatus.model_validate_json(raw)
        except pydantic.ValidationError:
            logger.warning("Discarding unreadable status cache entry")
            return None
