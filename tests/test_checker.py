"""Tests for the check engine, rate limiting, result storage and status reads."""
import uuid
from datetime import timedelta

import httpx
import pytest
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from sitewatch.cache import CachedStatus
from sitewatch.checker import CheckService, check_active_sites
from sitewatch.errors import InvalidSiteIdError, RateLimitExceeded, SiteNotFoundError, StorageError
from sitewatch.models.check_result import CheckResult
from sitewatch.models.site import Site
from sitewatch.prober import ProbeResult
from sitewatch.rate_limit import RateLimiter
from sitewatch.storage import CheckResultStore
from sitewatch.timeutils import as_utc, utcnow

from tests.conftest import OTHER_OWNER_ID, OWNER_ID, create_site, test_session_factory


def sequential(settings):
    # One shared in-memory connection in tests; keep sessions from interleaving.
    return settings.model_copy(update={"max_concurrent_checks": 1})


@pytest.mark.asyncio
async def test_check_site_success(web, prober, cache, settings):
    """A successful check stores the result, updates the site and caches it."""
    site = await create_site("https://example.com")
    web.respond("example.com", 200)

    async with test_session_factory() as db:
        service = CheckService(db, prober, cache, settings)
        outcome = await service.check_site(site.id, owner_id=OWNER_ID)

    assert outcome.check.status == "up"
    assert outcome.check.ssl_valid is True

    async with test_session_factory() as db:
        result = await db.execute(select(CheckResult).where(CheckResult.site_id == site.id))
        check = result.scalar_one()
        assert check.status == "up"
        assert check.status_code == 200
        assert check.response_time_ms is not None

        stored_site = (await db.execute(select(Site).where(Site.id == site.id))).scalar_one()
        assert stored_site.status == "up"
        assert stored_site.last_checked_at is not None

    cached = await cache.get(site.id)
    assert cached is not None
    assert cached.ok is True
    assert cached.status_code == 200


@pytest.mark.asyncio
async def test_check_site_failure_is_recorded(web, prober, cache, settings):
    site = await create_site("http://example.com")
    web.respond("example.com", 503)

    async with test_session_factory() as db:
        outcome = await CheckService(db, prober, cache, settings).check_site(site.id)

    assert outcome.check.status == "down"
    assert outcome.check.status_code == 503
    assert outcome.check.ssl_valid is None
    assert outcome.site.status == "down"
    assert (await cache.get(site.id)).ok is False


@pytest.mark.asyncio
async def test_check_site_rate_limited(web, prober, cache, settings):
    """A second check inside the window is rejected with first check + window."""
    site = await create_site("https://example.com")
    web.respond("example.com", 200)

    async with test_session_factory() as db:
        service = CheckService(db, prober, cache, settings)
        first = await service.check_site(site.id)
        with pytest.raises(RateLimitExceeded) as exc_info:
            await service.check_site(site.id)

    expected = as_utc(first.check.checked_at) + timedelta(seconds=settings.rate_limit_window_seconds)
    assert exc_info.value.next_check_allowed == expected
    assert len(web.requests) == 1


@pytest.mark.asyncio
async def test_check_site_rate_limit_can_be_skipped(web, prober, cache, settings):
    site = await create_site("https://example.com")
    web.respond("example.com", 200)

    async with test_session_factory() as db:
        service = CheckService(db, prober, cache, settings)
        await service.check_site(site.id)
        await service.check_site(site.id, enforce_rate_limit=False)

    async with test_session_factory() as db:
        rows = await CheckResultStore(db).query(site.id)
        assert len(rows) == 2


@pytest.mark.asyncio
async def test_check_site_wrong_owner(prober, cache, settings):
    site = await create_site(owner_id=OWNER_ID)
    async with test_session_factory() as db:
        with pytest.raises(SiteNotFoundError):
            await CheckService(db, prober, cache, settings).check_site(site.id, owner_id=OTHER_OWNER_ID)


@pytest.mark.asyncio
async def test_check_site_invalid_id(prober, cache, settings):
    async with test_session_factory() as db:
        with pytest.raises(InvalidSiteIdError):
            await CheckService(db, prober, cache, settings).check_site("not-a-uuid")


@pytest.mark.asyncio
async def test_rate_limiter_allows_after_window():
    site = await create_site()
    now = utcnow()

    async with test_session_factory() as db:
        store = CheckResultStore(db)
        await store.append(site.id, ProbeResult(status="up", status_code=200, checked_at=now))
        await store.commit()

        limiter = RateLimiter(store, window_seconds=60)
        blocked = await limiter.allow(site.id, now=now + timedelta(seconds=30))
        allowed = await limiter.allow(site.id, now=now + timedelta(seconds=61))

    assert blocked.allowed is False
    assert blocked.next_check_allowed == now + timedelta(seconds=60)
    assert allowed.allowed is True
    assert allowed.next_check_allowed is None


@pytest.mark.asyncio
async def test_rate_limiter_unchecked_site_allowed():
    site = await create_site()
    async with test_session_factory() as db:
        decision = await RateLimiter(CheckResultStore(db)).allow(site.id)
    assert decision.allowed is True


@pytest.mark.asyncio
async def test_current_status_falls_back_to_db(prober, cache, settings):
    site = await create_site()
    now = utcnow()
    async with test_session_factory() as db:
        store = CheckResultStore(db)
        await store.append(site.id, ProbeResult(status="down", error="timeout", checked_at=now - timedelta(minutes=5)))
        await store.append(site.id, ProbeResult(status="up", status_code=200, response_time_ms=90, checked_at=now))
        await store.commit()

    async with test_session_factory() as db:
        status = await CheckService(db, prober, cache, settings).current_status(site.id)

    assert status.ok is True
    assert status.response_ms == 90
    # Repopulated from storage
    assert await cache.get(site.id) == status


@pytest.mark.asyncio
async def test_current_status_never_checked(prober, cache, settings):
    site = await create_site()
    async with test_session_factory() as db:
        status = await CheckService(db, prober, cache, settings).current_status(site.id)
    assert status is None
    assert await cache.get(site.id) is None


@pytest.mark.asyncio
async def test_current_statuses_mixes_cache_and_db(prober, cache, settings):
    cached_site = await create_site("https://a.example.com", name="A")
    db_site = await create_site("https://b.example.com", name="B")
    unchecked = await create_site("https://c.example.com", name="C")

    now = utcnow()
    async with test_session_factory() as db:
        store = CheckResultStore(db)
        check = await store.append(cached_site.id, ProbeResult(status="up", status_code=200, checked_at=now))
        await store.append(db_site.id, ProbeResult(status="down", error="timeout", checked_at=now))
        await store.commit()
        await cache.put(cached_site.id, CachedStatus.from_check(check))

    async with test_session_factory() as db:
        statuses = await CheckService(db, prober, cache, settings).current_statuses(
            [unchecked.id, db_site.id, cached_site.id]
        )

    assert len(statuses) == 3
    assert statuses[0] is None
    assert statuses[1].ok is False
    assert statuses[1].error == "timeout"
    assert statuses[2].ok is True


@pytest.mark.asyncio
async def test_check_active_sites(web, prober, cache, settings):
    up_site = await create_site("https://up.example.com", name="Up")
    down_site = await create_site("https://down.example.com", name="Down")
    await create_site("https://paused.example.com", name="Paused", is_active=False)
    web.respond("up.example.com", 200)
    web.fail("down.example.com", httpx.ConnectError("refused"))

    counts = await check_active_sites(
        prober, cache, sequential(settings), session_factory=test_session_factory
    )

    assert counts == {"total": 2, "up": 1, "down": 1, "errors": 0}
    assert {r.url.host for r in web.requests} == {"up.example.com", "down.example.com"}
    assert (await cache.get(up_site.id)).ok is True
    assert (await cache.get(down_site.id)).ok is False


@pytest.mark.asyncio
async def test_check_active_sites_skips_invalid_url(web, prober, cache, settings):
    await create_site("ftp://files.example.com", name="FTP")
    good = await create_site("https://example.com")
    web.respond("example.com", 200)

    counts = await check_active_sites(
        prober, cache, sequential(settings), session_factory=test_session_factory
    )

    assert counts["errors"] == 1
    assert counts["up"] == 1
    assert (await cache.get(good.id)).ok is True


@pytest.mark.asyncio
async def test_check_active_sites_contains_per_site_failures(web, prober, cache, settings, monkeypatch):
    """One site blowing up is counted as an error; the rest of the sweep still runs."""
    await create_site("http://127.0.0.1:99999/", name="Bad port")
    await create_site("https://broken.example.com", name="Broken")
    good = await create_site("https://example.com")
    web.respond("example.com", 200)

    check = prober.check

    async def flaky_check(url, timeout=None):
        if "broken" in url:
            raise RuntimeError("unexpected failure")
        return await check(url, timeout)

    monkeypatch.setattr(prober, "check", flaky_check)

    counts = await check_active_sites(
        prober, cache, sequential(settings), session_factory=test_session_factory
    )

    assert counts == {"total": 3, "up": 1, "down": 0, "errors": 2}
    assert (await cache.get(good.id)).ok is True


@pytest.mark.asyncio
async def test_check_active_sites_counts_storage_failures(web, prober, cache, settings, monkeypatch):
    site = await create_site("https://example.com")
    web.respond("example.com", 200)

    async def failing_flush(self, *args, **kwargs):
        raise SQLAlchemyError("disk I/O error")

    monkeypatch.setattr(AsyncSession, "flush", failing_flush)

    counts = await check_active_sites(
        prober, cache, sequential(settings), session_factory=test_session_factory
    )

    assert counts == {"total": 1, "up": 0, "down": 0, "errors": 1}
    assert await cache.get(site.id) is None


@pytest.mark.asyncio
async def test_store_failure_raises_storage_error(monkeypatch):
    site = await create_site()

    async def failing_flush(self, *args, **kwargs):
        raise SQLAlchemyError("disk I/O error")

    monkeypatch.setattr(AsyncSession, "flush", failing_flush)

    async with test_session_factory() as db:
        with pytest.raises(StorageError):
            await CheckResultStore(db).append(site.id, ProbeResult(status="up", status_code=200))


@pytest.mark.asyncio
async def test_active_site_ids_filters_paused_and_unknown():
    active = await create_site("https://a.example.com", name="A")
    paused = await create_site("https://b.example.com", name="B", is_active=False)

    async with test_session_factory() as db:
        ids = await CheckResultStore(db).active_site_ids([active.id, paused.id, str(uuid.uuid4())])

    assert ids == {active.id}
