"""
Error taxonomy for crawling, fetching and authentication.

Every error carries a human-readable ``reason`` that is safe to surface in
progress snapshots and ``recent_failures`` lists.
"""

from __future__ import annotations

from typing import Dict, Optional


class CrawlerError(Exception):
    """Base class for all crawler errors."""

    retryable: bool = False

    def __init__(self, reason: str, *, url: Optional[str] = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.url = url

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {"type": type(self).__name__, "reason": self.reason, "url": self.url}


class InvalidConfig(CrawlerError):
    """Crawl configuration failed validation; the session never starts."""


class SessionNotFound(CrawlerError):
    """No crawl session with the given id."""


class NetworkError(CrawlerError):
    """Transport level failure. Triggers fallback to the next method."""

    retryable = True

    def __init__(
        self,
        reason: str,
        *,
        url: Optional[str] = None,
        status: Optional[int] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        super().__init__(reason, url=url)
        self.status = status
        self.headers = headers or {}


class FetchTimeoutError(NetworkError):
    """Request or navigation exceeded the configured timeout."""


class BrowserCrashError(CrawlerError):
    """Browser page or context died underneath an executor."""

    retryable = True


class CaptchaDetected(NetworkError):
    """A CAPTCHA challenge blocked the page and the solver policy gave up."""

    def __init__(self, captcha_type: str, *, url: Optional[str] = None) -> None:
        super().__init__(f"CAPTCHA challenge detected: {captcha_type}", url=url)
        self.captcha_type = captcha_type


class RobotsDisallowedError(CrawlerError):
    """URL is disallowed by robots.txt. Skipped, not counted as a failure."""


class ExtractionError(CrawlerError):
    """Parsing a fetched page failed; the URL is recorded as failed."""


class AuthenticationError(CrawlerError):
    """Login failed; authenticated fetches for the domain stop until reconfigured."""


class MissingCredentials(AuthenticationError):
    pass


class UsernameFieldNotFound(AuthenticationError):
    pass


class PasswordFieldNotFound(AuthenticationError):
    pass


class LoginVerificationFailed(AuthenticationError):
    pass


class AllMethodsFailed(CrawlerError):
    """Every enabled fetch method failed for a URL."""

    def __init__(self, url: str, errors: Dict[str, CrawlerError]) -> None:
        summary = "; ".join(f"{method}: {err.reason}" for method, err in errors.items()) or "no methods enabled"
        super().__init__(f"All methods failed: {summary}", url=url)
        self.errors = errors

    @property
    def auth_error(self) -> Optional[AuthenticationError]:
        """First authentication error among the attempts, if any."""
        for err in self.errors.values():
            if isinstance(err, AuthenticationError):
                return err
        return None


__all__ = [
    "AllMethodsFailed",
    "AuthenticationError",
    "BrowserCrashError",
    "CaptchaDetected",
    "CrawlerError",
    "ExtractionError",
    "FetchTimeoutError",
    "InvalidConfig",
    "LoginVerificationFailed",
    "MissingCredentials",
    "NetworkError",
    "PasswordFieldNotFound",
    "RobotsDisallowedError",
    "SessionNotFound",
    "UsernameFieldNotFound",
]
