"""
Unit tests for the browser pool and the dynamic/stealth executors.

Playwright is replaced by the fakes in ``tests.helpers.fakes``.
"""

import random

import pytest
from playwright.async_api import Error as PlaywrightError

from adaptivecrawl.config.config import BrowserSettings
from adaptivecrawl.errors import CaptchaDetected, FetchTimeoutError, NetworkError
from adaptivecrawl.models import AuthSession
from adaptivecrawl.strategies.base import FetchOptions
from adaptivecrawl.strategies.browser import BrowserPool, to_playwright_cookies
from adaptivecrawl.strategies.dynamic import DynamicExecutor
from adaptivecrawl.strategies.fingerprints import STEALTH_INIT_SCRIPT
from adaptivecrawl.strategies.stealth import AntiBotBlocked, StealthExecutor
from tests.helpers import FakeContext, FakePage, FakePool, html_page

URL = "https://example.com/app"
RECAPTCHA_PAGE = (
    '<html><head><title>Verify</title></head><body><div class="g-recaptcha" data-sitekey="k1"></div></body></html>'
)


def stealth(pool, **kwargs):
    return StealthExecutor(pool, backoff_base=0, settle_ms=0, rng=random.Random(7), **kwargs)


@pytest.mark.unit
class TestBrowserPool:
    class FakeBrowser:
        def __init__(self):
            self.contexts = []
            self.closed = False

        def is_connected(self):
            return not self.closed

        async def new_context(self, **options):
            ctx = FakeContext(FakePage())
            self.contexts.append((options, ctx))
            return ctx

        async def close(self):
            self.closed = True

    @pytest.mark.asyncio
    async def test_context_is_closed_and_slot_released(self):
        browser = self.FakeBrowser()
        launches = []

        async def launcher():
            launches.append(1)
            return browser

        pool = BrowserPool(BrowserSettings(max_browsers=1), launcher=launcher)
        async with pool.context(locale="en-US") as ctx:
            assert pool.get_stats()["running"] == 1
        assert ctx.closed
        assert pool.get_stats()["running"] == 0

        async with pool.context():
            pass
        assert len(launches) == 1
        assert browser.contexts[0][0] == {"locale": "en-US"}

        await pool.close()
        assert browser.closed

    @pytest.mark.asyncio
    async def test_busy_pool_raises_network_error(self):
        browser = self.FakeBrowser()

        async def launcher():
            return browser

        pool = BrowserPool(BrowserSettings(max_browsers=1, slot_timeout_seconds=0.05), launcher=launcher)
        async with pool.context():
            with pytest.raises(NetworkError, match="Browser pool busy"):
                async with pool.context():
                    pass

    def test_cookies_get_url_or_path(self):
        cookies = to_playwright_cookies(
            [{"name": "a", "value": "1"}, {"name": "b", "value": "2", "domain": ".example.com"}, {"bad": True}],
            "https://example.com/x/y",
        )
        assert cookies == [
            {"name": "a", "value": "1", "url": "https://example.com"},
            {"name": "b", "value": "2", "domain": ".example.com", "path": "/"},
        ]


@pytest.mark.unit
class TestDynamicExecutor:
    @pytest.mark.asyncio
    async def test_renders_page_and_collects_cookies(self):
        page = FakePage(html_page("Rendered"), final_url="https://example.com/app/home")
        pool = FakePool([page], cookies=[{"name": "sid", "value": "s1"}])
        executor = DynamicExecutor(pool, settle_ms=250)

        raw = await executor.fetch(URL, FetchOptions(user_agent="UA/1"))

        assert raw.method == "dynamic"
        assert "<title>Rendered</title>" in raw.html
        assert raw.final_url == "https://example.com/app/home"
        assert raw.cookies == [{"name": "sid", "value": "s1"}]
        assert page.waited_ms == [250]
        assert pool.context_options[0]["user_agent"] == "UA/1"
        assert pool.contexts[0].closed

    @pytest.mark.asyncio
    async def test_auth_session_is_applied_to_context(self):
        pool = FakePool([FakePage()])
        auth = AuthSession(
            domain="example.com",
            cookies=[{"name": "token", "value": "t"}],
            headers={"Authorization": "Bearer t"},
        )
        await DynamicExecutor(pool, settle_ms=0).fetch(URL, FetchOptions(auth=auth))

        assert pool.context_options[0]["extra_http_headers"] == {"Authorization": "Bearer t"}
        assert pool.contexts[0].added_cookies == [{"name": "token", "value": "t", "url": "https://example.com"}]

    @pytest.mark.asyncio
    async def test_error_status_raises(self):
        pool = FakePool([FakePage(status=404)])
        with pytest.raises(NetworkError) as exc_info:
            await DynamicExecutor(pool).fetch(URL, FetchOptions())
        assert exc_info.value.status == 404

    @pytest.mark.asyncio
    async def test_navigation_timeout(self):
        from playwright.async_api import TimeoutError as PlaywrightTimeoutError

        pool = FakePool([FakePage(goto_error=PlaywrightTimeoutError("Timeout 30000ms exceeded"))])
        with pytest.raises(FetchTimeoutError):
            await DynamicExecutor(pool).fetch(URL, FetchOptions())

    @pytest.mark.asyncio
    async def test_crash_retried_once_then_network_error(self):
        crash = PlaywrightError("Target page, context or browser has been closed")
        pool = FakePool([FakePage(goto_error=crash)])
        with pytest.raises(NetworkError, match="Browser crashed twice"):
            await DynamicExecutor(pool).fetch(URL, FetchOptions())
        assert len(pool.contexts) == 2

    @pytest.mark.asyncio
    async def test_crash_then_success(self):
        crash = PlaywrightError("Browser has been closed")
        pool = FakePool([FakePage(goto_error=crash), FakePage(html_page("Second try"))])
        raw = await DynamicExecutor(pool, settle_ms=0).fetch(URL, FetchOptions())
        assert "Second try" in raw.html

    def test_rate_limited_doubles_navigation_timeout(self):
        executor = DynamicExecutor(FakePool([FakePage()]))
        assert executor.navigation_timeout_ms(FetchOptions(timeout=10)) == 10000
        assert executor.navigation_timeout_ms(FetchOptions(timeout=10, rate_limited=True)) == 20000


@pytest.mark.unit
class TestStealthExecutor:
    @pytest.mark.asyncio
    async def test_uses_fingerprint_and_init_script(self):
        page = FakePage(html_page("Protected content"))
        pool = FakePool([page])
        executor = stealth(pool)

        raw = await executor.fetch(URL, FetchOptions(stealth_level="maximum"))

        assert raw.method == "stealth"
        options = pool.context_options[0]
        assert options["user_agent"]
        assert "timezone_id" in options and "locale" in options
        assert "sec-ch-ua" in options["extra_http_headers"]
        assert pool.contexts[0].init_scripts == [STEALTH_INIT_SCRIPT]
        assert len(page.mouse.moves) == 5

    @pytest.mark.asyncio
    async def test_identity_is_reused_per_domain(self):
        pool = FakePool([FakePage(html_page("One")), FakePage(html_page("Two"))], cookies=[{"name": "cf", "value": "1"}])
        executor = stealth(pool)

        await executor.fetch("https://example.com/a", FetchOptions())
        await executor.fetch("https://example.com/b", FetchOptions())

        assert pool.context_options[0]["user_agent"] == pool.context_options[1]["user_agent"]
        stats = executor.get_session_stats()["example.com"]
        assert stats["requests"] == 2
        assert {"name": "cf", "value": "1", "url": "https://example.com"} in pool.contexts[1].added_cookies

    @pytest.mark.asyncio
    async def test_captcha_skip_policy_raises(self):
        pool = FakePool([FakePage(RECAPTCHA_PAGE)])
        with pytest.raises(CaptchaDetected) as exc_info:
            await stealth(pool).fetch(URL, FetchOptions(captcha_solver="skip"))
        assert exc_info.value.captcha_type == "recaptcha"

    @pytest.mark.asyncio
    async def test_service_without_key_raises(self):
        pool = FakePool([FakePage(RECAPTCHA_PAGE)])
        with pytest.raises(CaptchaDetected):
            await stealth(pool).fetch(URL, FetchOptions(captcha_solver="2captcha"))

    @pytest.mark.asyncio
    async def test_injected_solver_clears_challenge(self):
        page = FakePage(RECAPTCHA_PAGE)
        calls = []

        async def solver(live_page, challenge, options):
            calls.append((challenge.type, challenge.site_key, options.captcha_api_key))
            live_page.html = html_page("Solved")
            return True

        executor = stealth(FakePool([page]), captcha_solver=solver)
        raw = await executor.fetch(URL, FetchOptions(captcha_solver="2captcha", captcha_api_key="key"))

        assert calls == [("recaptcha", "k1", "key")]
        assert "Solved" in raw.html

    @pytest.mark.asyncio
    async def test_manual_policy_waits_then_gives_up(self):
        page = FakePage(RECAPTCHA_PAGE)
        executor = stealth(FakePool([page]), manual_wait_ms=10)
        with pytest.raises(CaptchaDetected):
            await executor.fetch(URL, FetchOptions(captcha_solver="manual"))
        assert 10 in page.waited_ms

    @pytest.mark.asyncio
    async def test_blocked_page_rotates_identity_until_attempts_run_out(self):
        blocked = "<html><head><title>Access Denied</title></head><body>Access denied</body></html>"
        pool = FakePool([FakePage(blocked)])
        executor = stealth(pool, max_attempts=3)

        with pytest.raises(AntiBotBlocked):
            await executor.fetch(URL, FetchOptions(stealth_level="basic"))

        assert len(pool.contexts) == 3
        assert "example.com" in executor.get_session_stats()

    @pytest.mark.asyncio
    async def test_error_status_not_retried(self):
        pool = FakePool([FakePage(status=503)])
        with pytest.raises(NetworkError) as exc_info:
            await stealth(pool).fetch(URL, FetchOptions())
        assert exc_info.value.status == 503
        assert len(pool.contexts) == 1
