import sys
import os

# Ensure src directory is in Python path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

import httpx
import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker

from sitewatch.auth import create_access_token
from sitewatch.cache import MemoryCacheBackend, StatusCache
from sitewatch.config import get_settings
from sitewatch.core import MonitoringCore
from sitewatch.database import Base, get_db
from sitewatch.main import app
from sitewatch.models.site import Site
from sitewatch.prober import Prober
from sitewatch.security import UrlGuard


# Use in-memory SQLite for tests
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

test_engine = create_async_engine(TEST_DATABASE_URL, echo=False)
test_session_factory = async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)

OWNER_ID = "owner-1"
OTHER_OWNER_ID = "owner-2"
PUBLIC_ADDRESS = "93.184.216.34"


@pytest_asyncio.fixture(autouse=True)
async def setup_db():
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


async def override_get_db():
    async with test_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


app.dependency_overrides[get_db] = override_get_db


class FakeWeb:
    """Routes fake HTTP traffic by host for ``httpx.MockTransport``."""

    def __init__(self):
        self.handlers = {}
        self.requests: list[httpx.Request] = []

    def respond(self, host: str, status_code: int = 200, get_status_code: int | None = None):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "GET" and get_status_code is not None:
                return httpx.Response(get_status_code)
            return httpx.Response(status_code)
        self.handlers[host] = handler

    def redirect(self, host: str, location: str, status_code: int = 302):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(status_code, headers={"Location": location})
        self.handlers[host] = handler

    def fail(self, host: str, exc: Exception):
        def handler(request: httpx.Request):
            raise exc
        self.handlers[host] = handler

    def hang(self, host: str, seconds: float = 5):
        async def handler(request: httpx.Request) -> httpx.Response:
            import asyncio
            await asyncio.sleep(seconds)
            return httpx.Response(200)
        self.handlers[host] = handler

    def __call__(self, request: httpx.Request):
        self.requests.append(request)
        handler = self.handlers.get(request.url.host)
        if handler is None:
            raise httpx.ConnectError("Name or service not known", request=request)
        return handler(request)


def make_guard(addresses: dict[str, str] | None = None, **kwargs) -> UrlGuard:
    """A guard whose DNS answers come from ``addresses``; other hosts look public."""
    addresses = addresses or {}

    async def resolve(host: str, port: int) -> list[str]:
        return [addresses.get(host, PUBLIC_ADDRESS)]

    return UrlGuard(resolver=resolve, **kwargs)


@pytest.fixture
def web() -> FakeWeb:
    return FakeWeb()


@pytest.fixture
def settings():
    return get_settings()


@pytest_asyncio.fixture
async def prober(web: FakeWeb):
    p = Prober(timeout=15, transport=httpx.MockTransport(web), guard=make_guard())
    yield p
    await p.close()


@pytest.fixture
def cache() -> StatusCache:
    return StatusCache(MemoryCacheBackend(), default_ttl=900, fallback_ttl=120)


@pytest_asyncio.fixture
async def core(settings, prober, cache):
    core = MonitoringCore(settings, prober=prober, cache=cache)
    app.state.core = core
    yield core
    core.scheduler.stop()


@pytest_asyncio.fixture
async def client(core):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest_asyncio.fixture
async def authenticated_client(client: AsyncClient):
    """Client carrying a token for OWNER_ID."""
    token = create_access_token({"sub": OWNER_ID})
    client.cookies.set("access_token", token)
    return client


async def create_site(
    url: str = "https://example.com",
    name: str = "Example",
    owner_id: str = OWNER_ID,
    is_active: bool = True,
) -> Site:
    async with test_session_factory() as db:
        site = Site(owner_id=owner_id, name=name, url=url, is_active=is_active)
        db.add(site)
        await db.commit()
        await db.refresh(site)
        return site
