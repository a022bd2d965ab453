"""
Plain HTTP executor: aiohttp GET with no script execution.
"""

from __future__ import annotations

import asyncio
import time
from typing import Dict, Optional

import aiohttp
import structlog
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential, wait_random

from adaptivecrawl.config.config import StaticFetchSettings
from adaptivecrawl.errors import FetchTimeoutError, NetworkError
from adaptivecrawl.models import RawPage
from adaptivecrawl.strategies.base import FetchOptions

logger = structlog.get_logger(__name__)

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)

DEFAULT_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
    "Upgrade-Insecure-Requests": "1",
}

TRANSIENT_STATUSES = frozenset({429, 502, 503, 504})


class _TransientStatus(Exception):
    def __init__(self, status: int, headers: Dict[str, str]) -> None:
        super().__init__(f"HTTP {status}")
        self.status = status
        self.headers = headers


def describe_status(status: int) -> str:
    if status == 403:
        return "Access forbidden (403). The website has blocked scraping."
    if status == 404:
        return "Page not found (404)."
    if status == 429:
        return "Rate limited (429): too many requests."
    if status >= 500:
        return f"Server error ({status}). The website is experiencing issues."
    return f"HTTP {status}"


class StaticExecutor:
    """Fastest method; fails on pages that need JavaScript to render."""

    name = "static"

    def __init__(
        self,
        settings: Optional[StaticFetchSettings] = None,
        *,
        session: Optional[aiohttp.ClientSession] = None,
        backoff_base: float = 1.0,
    ) -> None:
        self.settings = settings or StaticFetchSettings()
        self.backoff_base = backoff_base
        self._session = session
        self._owns_session = session is None
        self._lock = asyncio.Lock()

    async def _get_session(self) -> aiohttp.ClientSession:
        async with self._lock:
            if self._session is None or self._session.closed:
                self._session = aiohttp.ClientSession(
                    connector=aiohttp.TCPConnector(limit=0, ttl_dns_cache=30, enable_cleanup_closed=True)
                )
                self._owns_session = True
            return self._session

    def _wait(self):  # type: ignore[no-untyped-def]
        # 1s, 2s, 4s... plus up to 20% jitter
        return wait_exponential(multiplier=self.backoff_base, max=8 * max(self.backoff_base, 0.001)) + wait_random(
            0, 0.2 * self.backoff_base
        )

    async def fetch(self, url: str, options: FetchOptions) -> RawPage:
        session = await self._get_session()
        headers = {**DEFAULT_HEADERS, "User-Agent": options.user_agent or DEFAULT_USER_AGENT}
        headers.update(options.request_headers())
        cookies = {c["name"]: c["value"] for c in options.request_cookies() if "name" in c and "value" in c}
        start = time.monotonic()

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.settings.max_retries + 1),
                wait=self._wait(),
                retry=retry_if_exception_type(_TransientStatus),
                reraise=True,
            ):
                with attempt:
                    if attempt.retry_state.attempt_number > 1:
                        logger.info("Retrying static fetch", url=url, attempt=attempt.retry_state.attempt_number)
                    page = await self._request(session, url, headers, cookies, options.timeout)
        except _TransientStatus as e:
            raise NetworkError(describe_status(e.status), url=url, status=e.status, headers=e.headers) from e
        except asyncio.TimeoutError as e:
            raise FetchTimeoutError(f"Request timed out after {options.timeout:.0f}s", url=url) from e
        except aiohttp.ClientError as e:
            raise NetworkError(f"Connection failed: {e}", url=url) from e

        page.timing_ms = (time.monotonic() - start) * 1000
        return page

    async def _request(
        self,
        session: aiohttp.ClientSession,
        url: str,
        headers: Dict[str, str],
        cookies: Dict[str, str],
        timeout: float,
    ) -> RawPage:
        async with session.get(
            url,
            headers=headers,
            cookies=cookies or None,
            timeout=aiohttp.ClientTimeout(total=timeout),
            allow_redirects=True,
            max_redirects=5,
        ) as response:
            response_headers = {k: v for k, v in response.headers.items()}
            if response.status in TRANSIENT_STATUSES:
                raise _TransientStatus(response.status, response_headers)
            if response.status >= 400:
                raise NetworkError(describe_status(response.status), url=url, status=response.status)

            body = await response.read()
            if len(body) > self.settings.max_body_bytes:
                logger.warning("Truncating oversized body", url=url, size=len(body))
                body = body[: self.settings.max_body_bytes]
            try:
                html = body.decode(response.charset or "utf-8", errors="replace")
            except LookupError:
                html = body.decode("utf-8", errors="replace")
            return RawPage(
                url=url,
                final_url=str(response.url),
                status=response.status,
                html=html,
                headers=response_headers,
                method=self.name,
            )

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
