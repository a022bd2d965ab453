"""
Shared Playwright browser with a bounded number of concurrent contexts.

Browser contexts are expensive; every executor and the authenticator check
one out through ``BrowserPool.context()`` which guarantees it is closed and
its slot released on every exit path.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional
from urllib.parse import urlparse

import structlog
from playwright.async_api import Browser, BrowserContext, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError

from adaptivecrawl.config.config import BrowserSettings
from adaptivecrawl.errors import BrowserCrashError, NetworkError
from adaptivecrawl.observability import gauge_add

logger = structlog.get_logger(__name__)

CRASH_MARKERS = ("target closed", "crash", "browser has been closed", "target page, context or browser has been closed")

BrowserLauncher = Callable[[], Awaitable[Browser]]


def is_crash(error: BaseException) -> bool:
    message = str(error).lower()
    return any(marker in message for marker in CRASH_MARKERS)


def to_playwright_cookies(cookies: List[Dict[str, Any]], url: str) -> List[Dict[str, Any]]:
    """Give every cookie the ``url`` or ``domain``+``path`` Playwright requires."""
    parsed = urlparse(url)
    origin = f"{parsed.scheme}://{parsed.netloc}"
    result = []
    for cookie in cookies:
        if "name" not in cookie or "value" not in cookie:
            continue
        entry = dict(cookie)
        if not entry.get("url") and not entry.get("domain"):
            entry["url"] = origin
        if entry.get("domain") and not entry.get("path"):
            entry["path"] = "/"
        result.append(entry)
    return result


class BrowserPool:
    """Lazily launched Chromium plus a semaphore over open contexts."""

    def __init__(self, settings: Optional[BrowserSettings] = None, launcher: Optional[BrowserLauncher] = None) -> None:
        self.settings = settings or BrowserSettings()
        self._launcher = launcher
        self._semaphore = asyncio.Semaphore(self.settings.max_browsers)
        self._lock = asyncio.Lock()
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._in_use = 0
        self._waiting = 0

    async def _launch(self) -> Browser:
        if self._launcher is not None:
            return await self._launcher()
        self._playwright = await async_playwright().start()
        browser = await self._playwright.chromium.launch(
            headless=self.settings.headless,
            args=["--disable-blink-features=AutomationControlled", "--no-sandbox"],
        )
        logger.info("Playwright browser started", headless=self.settings.headless)
        return browser

    async def _ensure_browser(self) -> Browser:
        async with self._lock:
            if self._browser is not None and not self._browser.is_connected():
                logger.warning("Browser disconnected, relaunching")
                self._browser = None
            if self._browser is None:
                self._browser = await self._launch()
            return self._browser

    async def _acquire_slot(self) -> None:
        self._waiting += 1
        try:
            await asyncio.wait_for(self._semaphore.acquire(), timeout=self.settings.slot_timeout_seconds)
        except asyncio.TimeoutError as e:
            raise NetworkError(
                f"Browser pool busy: waited {self.settings.slot_timeout_seconds:.0f}s for a slot "
                f"({self._in_use} browsers running)"
            ) from e
        finally:
            self._waiting -= 1
        self._in_use += 1
        gauge_add("browser_slots_in_use", 1)

    def _release_slot(self) -> None:
        self._in_use -= 1
        gauge_add("browser_slots_in_use", -1)
        self._semaphore.release()

    @asynccontextmanager
    async def context(self, **context_options: Any) -> AsyncIterator[BrowserContext]:
        """Check out a fresh browser context."""
        await self._acquire_slot()
        ctx: Optional[BrowserContext] = None
        try:
            browser = await self._ensure_browser()
            try:
                ctx = await browser.new_context(**context_options)
            except PlaywrightError as e:
                if is_crash(e):
                    raise BrowserCrashError(f"Could not open browser context: {e}") from e
                raise
            yield ctx
        finally:
            if ctx is not None:
                try:
                    await ctx.close()
                except PlaywrightError as e:
                    # Context already gone with a crashed browser
                    logger.debug("Browser context close failed", error=str(e))
            self._release_slot()

    def get_stats(self) -> Dict[str, int]:
        return {"running": self._in_use, "queued": self._waiting, "max_concurrent": self.settings.max_browsers}

    async def close(self) -> None:
        async with self._lock:
            if self._browser is not None:
                try:
                    await self._browser.close()
                except PlaywrightError as e:
                    logger.debug("Browser close failed", error=str(e))
                self._browser = None
            if self._playwright is not None:
                await self._playwright.stop()
                self._playwright = None
