"""
HTTP reachability probe: one request against one URL, classified as up or down.

Reachability failures never raise. They come back as ``down`` results with an
error description. Only a malformed URL raises (``InvalidURLError``).
A URL that targets a private address or a disallowed port raises
``BlockedURLError``; a redirect to one ends the check as ``down``.
"""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional
from urllib.parse import urlsplit

import httpx

from sitewatch.errors import BlockedURLError, InvalidURLError
from sitewatch.security import UrlGuard
from sitewatch.timeutils import utcnow

logger = logging.getLogger("sitewatch.prober")

# Servers that refuse HEAD answer with one of these; retry with GET.
HEAD_REJECTED_STATUSES = {405, 501}
MAX_REDIRECTS = 3


@dataclass
class ProbeResult:
    status: str  # up, down
    status_code: Optional[int] = None
    response_time_ms: Optional[int] = None
    error: Optional[str] = None
    ssl_valid: Optional[bool] = None
    checked_at: datetime = field(default_factory=utcnow)

    @property
    def is_up(self) -> bool:
        return self.status == "up"


def validate_url(url: str) -> str:
    if not isinstance(url, str) or not url.strip():
        raise InvalidURLError(str(url), "URL is empty")
    url = url.strip()
    try:
        parts = urlsplit(url)
        parts.port  # raises ValueError when out of range
    except ValueError as e:
        raise InvalidURLError(url, str(e)) from e
    if parts.scheme not in ("http", "https"):
        raise InvalidURLError(url, "URL must start with http:// or https://")
    if not parts.hostname:
        raise InvalidURLError(url, "URL has no host")
    return url


def classify_status_code(status_code: int) -> str:
    return "up" if 200 <= status_code < 400 else "down"


class Prober:
    """Runs HTTP checks over a shared ``httpx.AsyncClient``."""

    def __init__(
        self,
        timeout: float = 15,
        user_agent: str = "SiteWatch-Monitor/1.0",
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.monotonic,
        guard: Optional[UrlGuard] = None,
        max_redirects: int = MAX_REDIRECTS,
    ):
        self.timeout = timeout
        self._clock = clock
        self.guard = guard or UrlGuard()
        self._client = httpx.AsyncClient(
            follow_redirects=True,
            max_redirects=max_redirects,
            event_hooks={"request": [self._guard_request]},
            headers={"User-Agent": user_agent},
            verify=True,
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def check(self, url: str, timeout: Optional[float] = None) -> ProbeResult:
        """Probe ``url`` once. ``timeout`` bounds the whole check, retries included."""
        url = validate_url(url)
        await self.guard.check(url)
        timeout = self.timeout if timeout is None else timeout
        is_https = urlsplit(url).scheme == "https"

        start = self._clock()
        try:
            response = await asyncio.wait_for(self._request(url, timeout), timeout)
        except (asyncio.TimeoutError, httpx.TimeoutException):
            return self._failure(url, "timeout", is_https)
        except BlockedURLError as e:
            return self._failure(url, f"Redirect blocked: {e.reason}", is_https)
        except httpx.TooManyRedirects:
            return self._failure(url, "Too many redirects", is_https)
        except httpx.ConnectError as e:
            return self._failure(url, f"Connection failed: {str(e)[:200]}", is_https)
        except httpx.RequestError as e:
            return self._failure(url, f"Request error: {str(e)[:200]}", is_https)
        except Exception as e:
            logger.exception(f"Unexpected error checking {url}")
            return self._failure(url, f"Check failed: {str(e)[:200]}", is_https)
        elapsed = self._clock() - start

        status_code = response.status_code
        check_status = classify_status_code(status_code)
        result = ProbeResult(
            status=check_status,
            status_code=status_code,
            response_time_ms=round(elapsed * 1000),
            error=None if check_status == "up" else f"HTTP {status_code}",
            ssl_valid=(check_status == "up") if is_https else None,
        )
        logger.log(
            logging.INFO if result.is_up else logging.WARNING,
            f"{url} is {check_status.upper()} ({status_code}, {result.response_time_ms}ms)",
        )
        return result

    async def _guard_request(self, request: httpx.Request) -> None:
        # Runs for every hop, redirects included.
        await self.guard.check(str(request.url))

    async def _request(self, url: str, timeout: float) -> httpx.Response:
        request_timeout = httpx.Timeout(timeout)
        response = await self._client.head(url, timeout=request_timeout)
        if response.status_code in HEAD_REJECTED_STATUSES:
            logger.debug(f"{url} rejected HEAD with {response.status_code}, retrying with GET")
            response = await self._client.get(url, timeout=request_timeout)
        return response

    def _failure(self, url: str, error: str, is_https: bool) -> ProbeResult:
        logger.warning(f"{url} is DOWN - {error}")
        return ProbeResult(
            status="down",
            error=error,
            ssl_valid=False if is_https else None,
        )
