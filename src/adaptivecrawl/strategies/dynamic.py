"""
Rendered-browser executor: headless Chromium navigation returning the live DOM.
"""

from __future__ import annotations

import time
from typing import Any, Dict

import structlog
from playwright.async_api import BrowserContext, Page
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt

from adaptivecrawl.errors import BrowserCrashError, FetchTimeoutError, NetworkError
from adaptivecrawl.models import RawPage
from adaptivecrawl.strategies.base import FetchOptions
from adaptivecrawl.strategies.browser import BrowserPool, is_crash, to_playwright_cookies
from adaptivecrawl.strategies.static import describe_status

logger = structlog.get_logger(__name__)


class DynamicExecutor:
    """Waits for network idle (bounded by the request timeout) before reading the DOM."""

    name = "dynamic"
    wait_until = "networkidle"

    def __init__(self, pool: BrowserPool, settle_ms: int = 1000) -> None:
        self.pool = pool
        self.settle_ms = settle_ms

    async def fetch(self, url: str, options: FetchOptions) -> RawPage:
        start = time.monotonic()
        try:
            # A crashed browser gets exactly one more try with a fresh context
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(2),
                retry=retry_if_exception_type(BrowserCrashError),
                reraise=True,
            ):
                with attempt:
                    if attempt.retry_state.attempt_number > 1:
                        logger.warning("Retrying after browser crash", url=url, method=self.name)
                    page = await self._fetch_once(url, options)
        except BrowserCrashError as e:
            raise NetworkError(f"Browser crashed twice: {e.reason}", url=url) from e
        page.timing_ms = (time.monotonic() - start) * 1000
        return page

    def navigation_timeout_ms(self, options: FetchOptions) -> float:
        return options.timeout * 1000 * (2 if options.rate_limited else 1)

    def context_options(self, url: str, options: FetchOptions) -> Dict[str, Any]:
        context_options: Dict[str, Any] = {
            "viewport": {"width": 1920, "height": 1080},
            "ignore_https_errors": True,
        }
        if options.user_agent:
            context_options["user_agent"] = options.user_agent
        headers = options.request_headers()
        if headers:
            context_options["extra_http_headers"] = headers
        return context_options

    async def prepare_context(self, context: BrowserContext, url: str, options: FetchOptions) -> None:
        cookies = to_playwright_cookies(options.request_cookies(), url)
        if cookies:
            await context.add_cookies(cookies)

    async def after_navigation(self, page: Page, context: BrowserContext, url: str, options: FetchOptions) -> None:
        if self.settle_ms:
            await page.wait_for_timeout(self.settle_ms)

    async def on_success(self, context: BrowserContext, url: str, page: RawPage) -> None:
        """Hook for subclasses that persist browser state."""

    async def _fetch_once(self, url: str, options: FetchOptions) -> RawPage:
        async with self.pool.context(**self.context_options(url, options)) as context:
            try:
                await self.prepare_context(context, url, options)
                page = await context.new_page()
                response = await page.goto(url, wait_until=self.wait_until, timeout=self.navigation_timeout_ms(options))
                status = response.status if response is not None else 200
                if status >= 400:
                    raise NetworkError(describe_status(status), url=url, status=status)
                await self.after_navigation(page, context, url, options)
                html = await page.content()
                raw = RawPage(
                    url=url,
                    final_url=page.url,
                    status=status,
                    html=html,
                    headers=dict(response.headers) if response is not None else {},
                    method=self.name,
                    cookies=list(await context.cookies()),
                )
                await self.on_success(context, url, raw)
                return raw
            except PlaywrightTimeoutError as e:
                raise FetchTimeoutError(f"Page load timed out after {options.timeout:.0f}s", url=url) from e
            except PlaywrightError as e:
                if is_crash(e):
                    raise BrowserCrashError(str(e), url=url) from e
                raise NetworkError(f"Browser navigation failed: {e}", url=url) from e

    async def close(self) -> None:
        # The pool is shared and closed by its owner
        return None
