"""
Stealth executor: the dynamic executor plus fingerprint randomization,
human-like pacing, anti-bot scoring and CAPTCHA handling.

Each domain keeps one browser identity (fingerprint and cookies) for
``session_ttl`` seconds so consecutive pages look like one visitor. A blocked
attempt discards that identity and retries with a fresh one.
"""

from __future__ import annotations

import random
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional
from urllib.parse import urlparse

import structlog
from playwright.async_api import BrowserContext, Page
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception_type, stop_after_attempt, wait_exponential

from adaptivecrawl.errors import BrowserCrashError, CaptchaDetected, NetworkError
from adaptivecrawl.models import RawPage
from adaptivecrawl.strategies.base import FetchOptions, blocked_reason
from adaptivecrawl.strategies.browser import BrowserPool, to_playwright_cookies
from adaptivecrawl.strategies.detection import (
    EXTREME_CONFIDENCE,
    AntiBotReport,
    CaptchaChallenge,
    detect_anti_bot,
    detect_captcha,
)
from adaptivecrawl.strategies.dynamic import DynamicExecutor
from adaptivecrawl.strategies.fingerprints import (
    STEALTH_INIT_SCRIPT,
    BrowserFingerprint,
    UserAgentRotator,
    generate_fingerprint,
)

logger = structlog.get_logger(__name__)

# Solver receives the live page and returns True once the challenge is gone
CaptchaSolver = Callable[[Page, CaptchaChallenge, FetchOptions], Awaitable[bool]]

SOLVER_SERVICES = ("2captcha", "anticaptcha")
MANUAL_SOLVE_WAIT_MS = 30_000


class AntiBotBlocked(NetworkError):
    """Protection still active after the evasive waits."""


@dataclass(frozen=True)
class Pacing:
    mouse_moves: int
    scroll: bool
    wait_scale: float


PACING = {
    "basic": Pacing(mouse_moves=1, scroll=False, wait_scale=0.5),
    "advanced": Pacing(mouse_moves=3, scroll=True, wait_scale=1.0),
    "maximum": Pacing(mouse_moves=5, scroll=True, wait_scale=2.0),
}


@dataclass
class StealthSession:
    fingerprint: BrowserFingerprint
    cookies: List[Dict[str, Any]] = field(default_factory=list)
    created_at: float = field(default_factory=time.monotonic)
    requests: int = 0


class StealthExecutor(DynamicExecutor):
    """Last-resort browser method for protected sites."""

    name = "stealth"

    def __init__(
        self,
        pool: BrowserPool,
        *,
        captcha_solver: Optional[CaptchaSolver] = None,
        session_ttl: float = 3600.0,
        max_attempts: int = 3,
        backoff_base: float = 1.0,
        settle_ms: int = 2000,
        manual_wait_ms: int = MANUAL_SOLVE_WAIT_MS,
        rng: Optional[random.Random] = None,
    ) -> None:
        super().__init__(pool, settle_ms=settle_ms)
        self.captcha_solver = captcha_solver
        self.session_ttl = session_ttl
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base
        self.manual_wait_ms = manual_wait_ms
        self._rng = rng or random.Random()
        self.rotator = UserAgentRotator(self._rng)
        self._sessions: Dict[str, StealthSession] = {}

    # ------------------------------------------------------------------ sessions

    def _session_for(self, domain: str) -> StealthSession:
        session = self._sessions.get(domain)
        if session is not None and time.monotonic() - session.created_at > self.session_ttl:
            logger.debug("Stealth session expired", domain=domain)
            session = None
        if session is None:
            session = StealthSession(fingerprint=generate_fingerprint(self.rotator, self._rng))
            self._sessions[domain] = session
        return session

    def get_session_stats(self) -> Dict[str, Dict[str, Any]]:
        now = time.monotonic()
        return {
            domain: {
                "user_agent": s.fingerprint.user_agent,
                "cookies": len(s.cookies),
                "requests": s.requests,
                "age_seconds": round(now - s.created_at, 1),
            }
            for domain, s in self._sessions.items()
        }

    # ------------------------------------------------------------------- fetch

    async def fetch(self, url: str, options: FetchOptions) -> RawPage:
        domain = urlparse(url).netloc.lower()
        start = time.monotonic()

        def rotate(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception() if retry_state.outcome else None
            logger.info(
                "Retrying stealth fetch with new fingerprint",
                url=url,
                attempt=retry_state.attempt_number,
                error=str(error),
            )
            self._sessions.pop(domain, None)

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.max_attempts),
                wait=wait_exponential(multiplier=2 * self.backoff_base),
                retry=retry_if_exception_type((AntiBotBlocked, BrowserCrashError)),
                before_sleep=rotate,
                reraise=True,
            ):
                with attempt:
                    page = await self._fetch_once(url, options)
        except BrowserCrashError as e:
            raise NetworkError(f"Browser crashed: {e.reason}", url=url) from e

        page.timing_ms = (time.monotonic() - start) * 1000
        return page

    def context_options(self, url: str, options: FetchOptions) -> Dict[str, Any]:
        session = self._session_for(urlparse(url).netloc.lower())
        context_options = dict(session.fingerprint.context_options())
        context_options["extra_http_headers"] = {**session.fingerprint.extra_headers, **options.request_headers()}
        return context_options

    async def prepare_context(self, context: BrowserContext, url: str, options: FetchOptions) -> None:
        await context.add_init_script(STEALTH_INIT_SCRIPT)
        session = self._session_for(urlparse(url).netloc.lower())
        cookies = to_playwright_cookies(session.cookies + options.request_cookies(), url)
        if cookies:
            await context.add_cookies(cookies)

    async def after_navigation(self, page: Page, context: BrowserContext, url: str, options: FetchOptions) -> None:
        pacing = PACING.get(options.stealth_level, PACING["advanced"])
        await self._human_behavior(page, pacing)

        report = await self._scan(page, context)
        if report.confidence > EXTREME_CONFIDENCE:
            logger.info("Strong bot protection, waiting it out", url=url, indicators=report.indicators)
            await page.wait_for_timeout(self._rng.uniform(2000, 5000) * pacing.wait_scale)
            await self._human_behavior(page, pacing)
            report = await self._scan(page, context)

        challenge = detect_captcha(await page.content())
        if challenge.present:
            await self._handle_captcha(page, challenge, url, options)
            report = await self._scan(page, context)

        if report.detected:
            reason = blocked_reason(await page.content())
            if reason:
                raise AntiBotBlocked(f"{reason} ({', '.join(report.indicators)})", url=url)
            logger.debug("Anti-bot indicators present but page readable", url=url, confidence=report.confidence)

        if self.settle_ms:
            await page.wait_for_timeout(self.settle_ms * pacing.wait_scale)

    async def on_success(self, context: BrowserContext, url: str, page: RawPage) -> None:
        session = self._session_for(urlparse(url).netloc.lower())
        session.cookies = list(page.cookies)
        session.requests += 1

    # ----------------------------------------------------------------- helpers

    async def _scan(self, page: Page, context: BrowserContext) -> AntiBotReport:
        html = await page.content()
        cookie_names = [c.get("name", "") for c in await context.cookies()]
        return detect_anti_bot(html, cookie_names)

    async def _human_behavior(self, page: Page, pacing: Pacing) -> None:
        viewport = page.viewport_size or {"width": 1280, "height": 720}
        for _ in range(pacing.mouse_moves):
            x = self._rng.uniform(0, viewport["width"])
            y = self._rng.uniform(0, viewport["height"])
            await page.mouse.move(x, y, steps=self._rng.randint(5, 15))
            await page.wait_for_timeout(self._rng.uniform(100, 400) * pacing.wait_scale)
        if pacing.scroll:
            await page.evaluate("window.scrollBy(0, Math.floor(document.body.scrollHeight / 3))")
            await page.wait_for_timeout(self._rng.uniform(1000, 3000) * pacing.wait_scale)
            await page.evaluate("window.scrollTo(0, 0)")

    async def _handle_captcha(self, page: Page, challenge: CaptchaChallenge, url: str, options: FetchOptions) -> None:
        policy = options.captcha_solver
        logger.warning("CAPTCHA detected", url=url, captcha_type=challenge.type, policy=policy)

        if policy == "skip":
            raise CaptchaDetected(challenge.type, url=url)
        if policy in SOLVER_SERVICES and not options.captcha_api_key:
            logger.error("CAPTCHA service configured without an API key", service=policy)
            raise CaptchaDetected(challenge.type, url=url)

        if self.captcha_solver is not None:
            solved = await self.captcha_solver(page, challenge, options)
        elif policy == "manual":
            logger.info("Waiting for manual CAPTCHA solve", url=url, wait_ms=self.manual_wait_ms)
            await page.wait_for_timeout(self.manual_wait_ms)
            solved = not detect_captcha(await page.content()).present
        else:
            solved = False

        if not solved:
            raise CaptchaDetected(challenge.type, url=url)
        logger.info("CAPTCHA solved", url=url, captcha_type=challenge.type)
