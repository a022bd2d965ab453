"""
Authentication automator.

Header and cookie based schemes are turned into an ``AuthSession`` directly.
Form logins drive a real browser page through the login flow:

    UNAUTHENTICATED -> LOGGING_IN -> AUTHENTICATED | FAILED

A failed login is remembered per domain; later requests for that domain get
the same error back without touching the network until ``reset`` is called.
"""

from __future__ import annotations

import base64
from enum import Enum
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

import structlog
from playwright.async_api import BrowserContext, ElementHandle, Page
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from adaptivecrawl.auth.selectors import LoginSelectors
from adaptivecrawl.auth.session_store import AuthSessionStore
from adaptivecrawl.config.config import AuthConfig
from adaptivecrawl.errors import (
    AuthenticationError,
    LoginVerificationFailed,
    MissingCredentials,
    PasswordFieldNotFound,
    UsernameFieldNotFound,
)
from adaptivecrawl.models import AuthSession, utcnow
from adaptivecrawl.observability import increment
from adaptivecrawl.strategies.browser import BrowserPool, to_playwright_cookies

logger = structlog.get_logger(__name__)

EXPIRY_MARKERS = ("login", "signin", "auth")


class AuthState(Enum):
    UNAUTHENTICATED = "unauthenticated"
    LOGGING_IN = "logging_in"
    AUTHENTICATED = "authenticated"
    FAILED = "failed"


def header_session(domain: str, auth_config: AuthConfig) -> AuthSession:
    """Session for the schemes that need no browser: basic, bearer and cookie."""
    creds = auth_config.credentials
    headers: Dict[str, str] = {}
    cookies: List[Dict[str, Any]] = []

    if auth_config.type == "basic":
        if not creds.username or not creds.password:
            raise MissingCredentials("Username and password required for basic authentication")
        token = base64.b64encode(f"{creds.username}:{creds.password}".encode()).decode("ascii")
        headers["Authorization"] = f"Basic {token}"
    elif auth_config.type == "bearer":
        if not creds.token:
            raise MissingCredentials("Token required for bearer authentication")
        headers["Authorization"] = f"Bearer {creds.token}"
    elif auth_config.type == "cookie":
        if not creds.cookies:
            raise MissingCredentials("Cookies required for cookie authentication")
        cookies = [{"name": k, "value": v, "domain": domain, "path": "/"} for k, v in creds.cookies.items()]
    else:
        raise AuthenticationError(f"Unsupported authentication type: {auth_config.type}")

    return AuthSession(domain=domain, cookies=cookies, headers=headers, authenticated=True, authenticated_at=utcnow())


class Authenticator:
    """Logs into sites and hands out per-domain sessions."""

    def __init__(
        self,
        pool: Optional[BrowserPool] = None,
        store: Optional[AuthSessionStore] = None,
        selectors: Optional[LoginSelectors] = None,
        *,
        page_settle_ms: int = 2000,
        modal_settle_ms: int = 1500,
        submit_settle_ms: int = 3000,
        indicator_timeout_ms: int = 5000,
        navigation_timeout_ms: int = 30000,
    ) -> None:
        self.pool = pool
        self.store = store or AuthSessionStore()
        self.selectors = selectors or LoginSelectors()
        self.page_settle_ms = page_settle_ms
        self.modal_settle_ms = modal_settle_ms
        self.submit_settle_ms = submit_settle_ms
        self.indicator_timeout_ms = indicator_timeout_ms
        self.navigation_timeout_ms = navigation_timeout_ms
        self._states: Dict[str, AuthState] = {}
        self._failures: Dict[str, AuthenticationError] = {}

    def state(self, domain: str) -> AuthState:
        return self._states.get(domain.lower(), AuthState.UNAUTHENTICATED)

    def reset(self, domain: str) -> None:
        """Forget a failed login and any stored session so the next request logs in again."""
        domain = domain.lower()
        self._failures.pop(domain, None)
        self._states.pop(domain, None)
        self.store.remove(domain)

    # ------------------------------------------------------------------ crawl use

    async def ensure_authenticated(self, domain: str, url: str, auth_config: AuthConfig) -> Optional[AuthSession]:
        """Stored session for ``domain``, logging in first when there is none."""
        if not auth_config.enabled:
            return None
        domain = domain.lower()
        failure = self._failures.get(domain)
        if failure is not None:
            raise failure

        session = self.store.get(domain)
        if session is not None:
            return session

        async with self.store.login_lock(domain):
            # Another worker may have logged in while this one waited
            session = self.store.get(domain)
            if session is not None:
                return session
            failure = self._failures.get(domain)
            if failure is not None:
                raise failure

            self._states[domain] = AuthState.LOGGING_IN
            logger.info("Authenticating", domain=domain, auth_type=auth_config.type)
            try:
                session = await self._login(domain, url, auth_config)
            except AuthenticationError as e:
                self._states[domain] = AuthState.FAILED
                self._failures[domain] = e
                increment("auth_attempts", labels={"auth_type": auth_config.type, "outcome": "failure"})
                logger.error("Authentication failed", domain=domain, error=e.reason, error_type=type(e).__name__)
                raise

            self.store.put(session)
            self._states[domain] = AuthState.AUTHENTICATED
            increment("auth_attempts", labels={"auth_type": auth_config.type, "outcome": "success"})
            logger.info("Authentication successful", domain=domain, cookies=len(session.cookies))
            return session

    def apply_stored_auth(self, domain: str) -> Optional[AuthSession]:
        return self.store.get(domain)

    def validate_auth(self, domain: str, final_url: str, requested_url: Optional[str] = None) -> bool:
        """False, and the session dropped, when the fetch landed on a login page."""
        if self.store.get(domain) is None:
            return False
        if requested_url is not None and _looks_like_login(requested_url):
            return True
        if _looks_like_login(final_url):
            logger.info("Auth expired, redirected to login", domain=domain, final_url=final_url)
            self.store.remove(domain)
            self._states[domain.lower()] = AuthState.UNAUTHENTICATED
            return False
        return True

    async def validate_session(self, domain: str, test_url: str) -> bool:
        """Re-fetch ``test_url`` with the stored session and check it was not sent to a login page."""
        session = self.store.get(domain)
        if session is None:
            return False
        if self.pool is None:
            raise AuthenticationError("Session validation requires a browser", url=test_url)

        try:
            async with self.pool.context(ignore_https_errors=True) as context:
                if session.headers:
                    await context.set_extra_http_headers(session.headers)
                if session.cookies:
                    await context.add_cookies(to_playwright_cookies(session.cookies, test_url))
                page = await context.new_page()
                await page.goto(test_url, wait_until="networkidle", timeout=self.navigation_timeout_ms)
                final_url = page.url
        except PlaywrightError as e:
            raise AuthenticationError(f"Could not validate session: {e}", url=test_url) from e

        valid = self.validate_auth(domain, final_url, test_url)
        logger.info("Session validated", domain=domain, test_url=test_url, final_url=final_url, valid=valid)
        return valid

    async def _login(self, domain: str, url: str, auth_config: AuthConfig) -> AuthSession:
        if auth_config.type != "form":
            return header_session(domain, auth_config)
        if self.pool is None:
            raise AuthenticationError("Form authentication requires a browser", url=url)
        async with self.pool.context(ignore_https_errors=True) as context:
            page = await context.new_page()
            cookies = await self.authenticate_page(page, context, url, auth_config)
        return AuthSession(domain=domain, cookies=cookies, authenticated=True, authenticated_at=utcnow())

    # ------------------------------------------------------------------ form flow

    async def authenticate_page(
        self, page: Page, context: BrowserContext, url: str, auth_config: AuthConfig
    ) -> List[Dict[str, Any]]:
        """Run the form login on ``page`` and return the resulting cookies."""
        creds = auth_config.credentials
        if not creds.username or not creds.password:
            raise MissingCredentials("Username and password required for form authentication", url=url)
        target = creds.login_url or url

        try:
            await page.goto(target, wait_until="networkidle", timeout=self.navigation_timeout_ms)
        except PlaywrightError as e:
            raise AuthenticationError(f"Could not open login page: {e}", url=target) from e
        await page.wait_for_timeout(self.page_settle_ms)

        if await self._query(page, 'input[type="password"]') is None:
            await self._open_login_modal(page)

        username_el = await self._find_first(page, self.selectors.username_candidates(creds.username_field))
        if username_el is None:
            raise UsernameFieldNotFound("Could not find username field", url=target)
        await username_el.fill(creds.username)

        password_el = await self._find_first(page, self.selectors.password_candidates(creds.password_field))
        if password_el is None:
            raise PasswordFieldNotFound("Could not find password field", url=target)
        await password_el.fill(creds.password)

        submit_el = await self._find_first(page, self.selectors.submit_candidates(creds.submit_selector))
        if submit_el is not None:
            await submit_el.click()
        else:
            logger.debug("No submit button found, pressing Enter", url=target)
            await page.keyboard.press("Enter")
        await page.wait_for_timeout(self.submit_settle_ms)

        await self._verify(page, creds.success_indicator, target)
        return list(await context.cookies())

    async def _query(self, page: Page, selector: str) -> Optional[ElementHandle]:
        try:
            return await page.query_selector(selector)
        except PlaywrightError as e:
            # Selector syntax the engine rejects; treat as no match
            logger.debug("Selector query failed", selector=selector, error=str(e))
            return None

    async def _find_first(self, page: Page, selectors: List[str]) -> Optional[ElementHandle]:
        for selector in selectors:
            element = await self._query(page, selector)
            if element is not None:
                logger.debug("Login element matched", selector=selector)
                return element
        return None

    async def _open_login_modal(self, page: Page) -> bool:
        for trigger in self.selectors.login_triggers:
            element = await self._query(page, trigger)
            if element is None or not await element.is_visible():
                continue
            logger.debug("Clicking login trigger", selector=trigger)
            await element.click()
            await page.wait_for_timeout(self.modal_settle_ms)
            for container in self.selectors.modal_containers:
                try:
                    await page.wait_for_selector(container, timeout=3000)
                    return True
                except PlaywrightTimeoutError:
                    continue
            logger.debug("Login trigger clicked but no modal appeared", selector=trigger)
            return True
        return False

    async def _verify(self, page: Page, success_indicator: Optional[str], url: str) -> None:
        if success_indicator:
            try:
                await page.wait_for_selector(success_indicator, timeout=self.indicator_timeout_ms)
            except PlaywrightTimeoutError as e:
                raise LoginVerificationFailed(f"Success indicator not found: {success_indicator}", url=url) from e
            return

        for selector in self.selectors.error_indicators:
            element = await self._query(page, selector)
            if element is None or not await element.is_visible():
                continue
            text = ((await element.text_content()) or "").strip()
            if text:
                raise LoginVerificationFailed(f"Login failed: {text[:200]}", url=url)

    # ------------------------------------------------------------------ diagnostics

    async def test_authentication(self, url: str, auth_config: AuthConfig) -> Dict[str, Any]:
        """Run the login against ``url`` in a throwaway context, outside any crawl."""
        if self.pool is None:
            return {"success": False, "message": "No browser available", "cookies_count": 0, "final_url": None}
        domain = urlparse(url).netloc.lower()
        try:
            async with self.pool.context(ignore_https_errors=True) as context:
                page = await context.new_page()
                if auth_config.type == "form":
                    await self.authenticate_page(page, context, url, auth_config)
                elif auth_config.enabled:
                    session = header_session(domain, auth_config)
                    if session.headers:
                        await context.set_extra_http_headers(session.headers)
                    if session.cookies:
                        await context.add_cookies(to_playwright_cookies(session.cookies, url))
                await page.goto(url, timeout=self.navigation_timeout_ms)
                await page.wait_for_timeout(self.submit_settle_ms)
                cookies = await context.cookies()
                final_url = page.url
        except AuthenticationError as e:
            increment("auth_attempts", labels={"auth_type": auth_config.type, "outcome": "failure"})
            return {"success": False, "message": e.reason, "cookies_count": 0, "final_url": None}
        except PlaywrightError as e:
            return {"success": False, "message": f"Browser error: {e}", "cookies_count": 0, "final_url": None}

        redirected = _looks_like_login(final_url) and not _looks_like_login(url)
        increment("auth_attempts", labels={"auth_type": auth_config.type, "outcome": "failure" if redirected else "success"})
        return {
            "success": not redirected,
            "message": "Redirected back to login page" if redirected else "Authentication successful",
            "cookies_count": len(cookies),
            "final_url": final_url,
        }


def _looks_like_login(url: str) -> bool:
    parsed = urlparse(url)
    tail = f"{parsed.path}?{parsed.query}".lower()
    return any(marker in tail for marker in EXPIRY_MARKERS)
