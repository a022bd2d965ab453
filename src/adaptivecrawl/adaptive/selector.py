"""
Adaptive strategy selection.

For every URL the selector ranks the enabled fetch methods by the domain's
learned success rate times a fixed preference weight, tries them in order
and feeds every outcome back into the domain profile.
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Tuple

import structlog

from adaptivecrawl.adaptive.profile_store import ProfileStore, derive_difficulty, upgrade_difficulty
from adaptivecrawl.config.config import CrawlConfig, LearningSettings
from adaptivecrawl.crawler.frontier import extract_domain
from adaptivecrawl.errors import (
    AllMethodsFailed,
    AuthenticationError,
    CaptchaDetected,
    CrawlerError,
    ExtractionError,
    FetchTimeoutError,
    NetworkError,
)
from adaptivecrawl.models import METHODS, AuthSession, ExtractedContent, RawPage, WebsiteProfile
from adaptivecrawl.observability import histogram, increment
from adaptivecrawl.strategies.base import Executor, FetchOptions, blocked_reason

if TYPE_CHECKING:
    from adaptivecrawl.auth.authenticator import Authenticator
    from adaptivecrawl.extractor.content_extractor import ContentExtractor

logger = structlog.get_logger(__name__)

LOW_QUALITY_THRESHOLD = 50
FAILURE_REASON_LIMIT = 200


def infer_signals(profile: WebsiteProfile, error: CrawlerError) -> List[str]:
    """Flag site characteristics suggested by a failed attempt."""
    chars = profile.characteristics
    reason = error.reason.lower()
    status = getattr(error, "status", None)
    flagged = []

    if status == 403 or "blocked" in reason or "forbidden" in reason:
        chars.has_anti_bot = True
        flagged.append("anti_bot")
    if status == 429 or "rate limit" in reason or "too many" in reason:
        chars.has_rate_limit = True
        flagged.append("rate_limit")
    if isinstance(error, CaptchaDetected) or "captcha" in reason:
        chars.has_captcha = True
        flagged.append("captcha")
    if isinstance(error, FetchTimeoutError) or "timeout" in reason or "javascript" in reason or "empty document" in reason:
        chars.requires_js = True
        flagged.append("requires_js")
    return flagged


class AdaptiveSelector:
    """Picks, runs and learns from fetch methods per domain."""

    def __init__(
        self,
        executors: Mapping[str, Executor],
        extractor: ContentExtractor,
        store: Optional[ProfileStore] = None,
        *,
        authenticator: Optional[Authenticator] = None,
        learning: Optional[LearningSettings] = None,
    ) -> None:
        learning = learning or LearningSettings()
        self.executors = dict(executors)
        self.extractor = extractor
        self.store = store or ProfileStore()
        self.authenticator = authenticator
        self.cap = learning.cap
        self.recent_failures_limit = learning.recent_failures_limit
        self.weights = {m: learning.weights.get(m, 0.0) for m in METHODS}

    # ------------------------------------------------------------------ ranking

    def rank_methods(self, profile: WebsiteProfile, config: CrawlConfig) -> List[str]:
        """Methods to try, best first."""
        enabled = [m for m in config.enabled_methods() if m in self.executors]
        if config.force_method or not config.enable_adaptive_scraping:
            return enabled
        return sorted(
            enabled,
            key=lambda m: profile.success_rates.get(m, 0.0) * self.weights.get(m, 0.0),
            reverse=True,
        )

    def _options_for(
        self, method: str, config: CrawlConfig, profile: WebsiteProfile, auth: Optional[AuthSession]
    ) -> FetchOptions:
        options = FetchOptions.from_config(config, auth)
        options.rate_limited = profile.characteristics.has_rate_limit
        if method == "stealth" and profile.characteristics.has_anti_bot and config.stealth_level != "basic":
            options.stealth_level = "maximum"
        return options

    # -------------------------------------------------------------------- fetch

    async def fetch_with_strategy(
        self,
        url: str,
        config: CrawlConfig,
        profile: Optional[WebsiteProfile] = None,
    ) -> Tuple[ExtractedContent, str]:
        """Fetch and extract ``url`` with the best working method.

        Raises:
            AllMethodsFailed: no enabled method produced a usable page. An
                authentication failure is carried under the ``auth`` key.
        """
        domain = extract_domain(url)
        profile = profile or self.store.get_or_create(domain)

        auth: Optional[AuthSession] = None
        if self.authenticator is not None and config.authentication.enabled:
            try:
                auth = await self.authenticator.ensure_authenticated(domain, url, config.authentication)
            except AuthenticationError as e:
                logger.error("Authentication failed", domain=domain, error=e.reason)
                raise AllMethodsFailed(url, {"auth": e}) from e

        methods = self.rank_methods(profile, config)
        logger.debug("Ranked fetch methods", url=url, methods=methods, difficulty=profile.characteristics.difficulty)
        errors: Dict[str, CrawlerError] = {}

        for index, method in enumerate(methods):
            has_fallback = index < len(methods) - 1
            options = self._options_for(method, config, profile, auth)
            start = time.monotonic()
            try:
                raw = await self.executors[method].fetch(url, options)
                if auth is not None and not self._auth_still_valid(domain, raw, url):
                    # Session expired mid-crawl: log in again and retry this method once
                    auth = await self.authenticator.ensure_authenticated(domain, url, config.authentication)
                    options = self._options_for(method, config, profile, auth)
                    raw = await self.executors[method].fetch(url, options)
                    if not self._auth_still_valid(domain, raw, url):
                        raise AuthenticationError("Authentication expired: redirected to login page", url=raw.final_url)
                content = await self._extract(raw)
                self._check_usable(raw, content, has_fallback)
            except AuthenticationError as e:
                errors[method] = e
                increment("strategy_attempts", labels={"method": method, "outcome": "failure"})
                logger.error("Authenticated fetch failed", url=url, method=method, error=e.reason)
                await self._record(profile, config, method, success=False, error=e)
                raise AllMethodsFailed(url, errors) from e
            except CrawlerError as e:
                errors[method] = e
                increment("strategy_attempts", labels={"method": method, "outcome": "failure"})
                logger.warning("Fetch method failed", url=url, method=method, error=e.reason, fallback=has_fallback)
                await self._record(profile, config, method, success=False, error=e)
                continue

            histogram("fetch_latency_seconds", time.monotonic() - start, labels={"method": method})
            increment("strategy_attempts", labels={"method": method, "outcome": "success"})
            await self._record(profile, config, method, success=True, content=content)
            return content, method

        raise AllMethodsFailed(url, errors)

    async def _extract(self, raw: RawPage) -> ExtractedContent:
        try:
            return await self.extractor.extract(raw)
        except CrawlerError:
            raise
        except Exception as e:
            raise ExtractionError(f"Content extraction failed: {e}", url=raw.url) from e

    def _auth_still_valid(self, domain: str, raw: RawPage, url: str) -> bool:
        if self.authenticator is None:
            return True
        return self.authenticator.validate_auth(domain, raw.final_url, url)

    @staticmethod
    def _check_usable(raw: RawPage, content: ExtractedContent, has_fallback: bool) -> None:
        reason = blocked_reason(raw.html)
        if reason:
            raise NetworkError(reason, url=raw.url, status=raw.status)
        if has_fallback and not content.main_text.strip() and not content.title:
            raise NetworkError("Empty document", url=raw.url, status=raw.status)

    # ----------------------------------------------------------------- learning

    async def _record(
        self,
        profile: WebsiteProfile,
        config: CrawlConfig,
        method: str,
        *,
        success: bool,
        error: Optional[CrawlerError] = None,
        content: Optional[ExtractedContent] = None,
    ) -> None:
        if not config.learning_mode:
            return
        async with self.store.lock(profile.domain):
            attempts = profile.method_attempts.get(method, 0) + 1
            profile.method_attempts[method] = attempts
            rate = profile.success_rates.get(method, 0.0)
            outcome = 1.0 if success else 0.0
            profile.success_rates[method] = rate + (outcome - rate) / min(attempts, self.cap)
            profile.total_attempts += 1

            if error is not None:
                profile.recent_failures.append(f"{method}: {error.reason}"[:FAILURE_REASON_LIMIT])
                del profile.recent_failures[: -self.recent_failures_limit]
                flagged = infer_signals(profile, error)
                if flagged:
                    logger.info("Site characteristics updated", domain=profile.domain, signals=flagged)
            elif method == "static" and content is not None and content.quality_score < LOW_QUALITY_THRESHOLD:
                profile.characteristics.requires_js = True

            chars = profile.characteristics
            chars.difficulty = upgrade_difficulty(chars.difficulty, derive_difficulty(chars))
            ranked = self.rank_methods(profile, config.model_copy(update={"force_method": None}))
            profile.optimal_strategy = ranked[0] if ranked else None
            self.store.put(profile)

    # --------------------------------------------------------------- management

    def get_profile(self, domain: str) -> Optional[WebsiteProfile]:
        return self.store.get(domain)

    def get_stats(self, domain: Optional[str] = None) -> Dict[str, Any]:
        if domain is not None:
            profile = self.store.get(domain)
            return profile.to_dict() if profile is not None else {}

        profiles = self.store.all()
        difficulty: Dict[str, int] = {}
        for profile in profiles:
            level = profile.characteristics.difficulty
            difficulty[level] = difficulty.get(level, 0) + 1
        return {
            "total_profiles": len(profiles),
            "total_attempts": sum(p.total_attempts for p in profiles),
            "difficulty_distribution": difficulty,
            "optimal_strategies": {p.domain: p.optimal_strategy for p in profiles},
            "average_success_rates": self._average_rates(profiles),
        }

    @staticmethod
    def _average_rates(profiles: List[WebsiteProfile]) -> Dict[str, float]:
        if not profiles:
            return {m: 0.0 for m in METHODS}
        return {m: round(sum(p.success_rates.get(m, 0.0) for p in profiles) / len(profiles), 4) for m in METHODS}

    def get_success_rates(self) -> Dict[str, Dict[str, float]]:
        return {p.domain: dict(p.success_rates) for p in self.store.all()}

    def clear_profile(self, domain: Optional[str] = None) -> int:
        cleared = self.store.clear(domain)
        logger.info("Cleared website profiles", domain=domain or "*", count=cleared)
        return cleared

    def export_profiles(self) -> str:
        return self.store.export_json()

    def import_profiles(self, blob: str) -> int:
        return self.store.import_json(blob)

    async def close(self) -> None:
        for executor in self.executors.values():
            await executor.close()
