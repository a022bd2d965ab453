"""
Test doubles for browser pages, contexts, pools and executors.

The fakes implement just the Playwright surface the crawler touches.
"""

from contextlib import asynccontextmanager
from typing import Any, Callable, Dict, List, Optional

from adaptivecrawl.errors import CrawlerError, NetworkError
from adaptivecrawl.models import RawPage
from adaptivecrawl.strategies.base import FetchOptions


class FakeResponse:
    def __init__(self, status: int = 200, headers: Optional[Dict[str, str]] = None) -> None:
        self.status = status
        self.headers = headers or {}


class FakeElement:
    def __init__(self, page: "FakePage", selector: str, text: str = "", visible: bool = True) -> None:
        self.page = page
        self.selector = selector
        self.text = text
        self.visible = visible
        self.value: Optional[str] = None

    async def fill(self, value: str) -> None:
        self.value = value
        self.page.filled[self.selector] = value

    async def click(self) -> None:
        self.page.clicked.append(self.selector)
        if self.page.on_click is not None:
            self.page.on_click(self.page, self.selector)

    async def is_visible(self) -> bool:
        return self.visible

    async def text_content(self) -> str:
        return self.text


class FakeMouse:
    def __init__(self) -> None:
        self.moves: List[tuple] = []

    async def move(self, x: float, y: float, steps: int = 1) -> None:
        self.moves.append((x, y))


class FakeKeyboard:
    def __init__(self) -> None:
        self.pressed: List[str] = []

    async def press(self, key: str) -> None:
        self.pressed.append(key)


class FakePage:
    """Page whose DOM is a dict of selector -> element."""

    def __init__(
        self,
        html: str = "<html><head><title>Fake</title></head><body></body></html>",
        *,
        status: int = 200,
        elements: Optional[Dict[str, FakeElement]] = None,
        final_url: Optional[str] = None,
        goto_error: Optional[BaseException] = None,
    ) -> None:
        self.html = html
        self.status = status
        self.elements: Dict[str, FakeElement] = elements or {}
        self.final_url = final_url
        self.goto_error = goto_error
        self.url = "about:blank"
        self.viewport_size = {"width": 1280, "height": 720}
        self.mouse = FakeMouse()
        self.keyboard = FakeKeyboard()
        self.filled: Dict[str, str] = {}
        self.clicked: List[str] = []
        self.waited_ms: List[float] = []
        self.on_click: Optional[Callable[["FakePage", str], None]] = None

    def add(self, selector: str, text: str = "", visible: bool = True) -> FakeElement:
        element = FakeElement(self, selector, text, visible)
        self.elements[selector] = element
        return element

    async def goto(self, url: str, **kwargs: Any) -> FakeResponse:
        if self.goto_error is not None:
            raise self.goto_error
        self.url = self.final_url or url
        return FakeResponse(self.status)

    async def content(self) -> str:
        return self.html

    async def query_selector(self, selector: str) -> Optional[FakeElement]:
        return self.elements.get(selector)

    async def wait_for_selector(self, selector: str, timeout: float = 0) -> FakeElement:
        from playwright.async_api import TimeoutError as PlaywrightTimeoutError

        element = self.elements.get(selector)
        if element is None:
            raise PlaywrightTimeoutError(f"Timeout waiting for {selector}")
        return element

    async def wait_for_timeout(self, ms: float) -> None:
        self.waited_ms.append(ms)

    async def evaluate(self, script: str) -> None:
        return None


class FakeContext:
    def __init__(self, page: FakePage, cookies: Optional[List[Dict[str, Any]]] = None) -> None:
        self.page = page
        self._cookies = cookies or []
        self.added_cookies: List[Dict[str, Any]] = []
        self.init_scripts: List[str] = []
        self.extra_headers: Dict[str, str] = {}
        self.closed = False

    async def new_page(self) -> FakePage:
        return self.page

    async def cookies(self) -> List[Dict[str, Any]]:
        return list(self._cookies) + list(self.added_cookies)

    async def add_cookies(self, cookies: List[Dict[str, Any]]) -> None:
        self.added_cookies.extend(cookies)

    async def add_init_script(self, script: str) -> None:
        self.init_scripts.append(script)

    async def set_extra_http_headers(self, headers: Dict[str, str]) -> None:
        self.extra_headers.update(headers)

    async def close(self) -> None:
        self.closed = True


class FakePool:
    """Stands in for ``BrowserPool``; hands out contexts over prepared pages."""

    def __init__(self, pages: List[FakePage], cookies: Optional[List[Dict[str, Any]]] = None) -> None:
        self.pages = list(pages)
        self.cookies = cookies or []
        self.contexts: List[FakeContext] = []
        self.context_options: List[Dict[str, Any]] = []
        self.closed = False

    @asynccontextmanager
    async def context(self, **options: Any):
        self.context_options.append(options)
        page = self.pages.pop(0) if len(self.pages) > 1 else self.pages[0]
        ctx = FakeContext(page, list(self.cookies))
        self.contexts.append(ctx)
        try:
            yield ctx
        finally:
            await ctx.close()

    async def close(self) -> None:
        self.closed = True


def html_page(title: str, body: str = "", links: Optional[List[str]] = None) -> str:
    anchors = "".join(f'<a href="{href}">{href}</a>' for href in links or [])
    text = body or " ".join(["Meaningful sentence about the page topic."] * 20)
    return f"<html><head><title>{title}</title></head><body><main><h1>{title}</h1><p>{text}</p>{anchors}</main></body></html>"


class ScriptedExecutor:
    """Executor returning pages from a url -> html map, or failing on demand."""

    def __init__(
        self,
        name: str,
        pages: Optional[Dict[str, str]] = None,
        *,
        error: Optional[CrawlerError] = None,
        delay: float = 0.0,
        redirects: Optional[Dict[str, List[str]]] = None,
    ) -> None:
        self.name = name
        self.pages = pages or {}
        self.error = error
        self.delay = delay
        # url -> final urls handed out one per call, then the url itself
        self.redirects = redirects or {}
        self.calls: List[str] = []
        self.options: List[FetchOptions] = []
        self.closed = False

    async def fetch(self, url: str, options: FetchOptions) -> RawPage:
        import asyncio

        self.calls.append(url)
        self.options.append(options)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        html = self.pages.get(url)
        if html is None:
            raise NetworkError("Page not found (404).", url=url, status=404)
        pending = self.redirects.get(url)
        final_url = pending.pop(0) if pending else url
        return RawPage(url=url, final_url=final_url, status=200, html=html, method=self.name)

    async def close(self) -> None:
        self.closed = True
