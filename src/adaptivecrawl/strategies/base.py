"""
Common contract for fetch strategy executors.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Protocol, runtime_checkable

from adaptivecrawl.models import AuthSession, RawPage

if TYPE_CHECKING:
    from adaptivecrawl.config.config import CrawlConfig

BLOCKED_TITLE_MARKERS = ("access denied", "blocked", "captcha", "attention required")

_TITLE_RE = re.compile(r"<title[^>]*>(.*?)</title>", re.IGNORECASE | re.DOTALL)


@dataclass
class FetchOptions:
    """Per-request knobs handed to an executor."""

    timeout: float = 30.0
    user_agent: Optional[str] = None
    headers: Dict[str, str] = field(default_factory=dict)
    cookies: List[Dict[str, Any]] = field(default_factory=list)
    auth: Optional[AuthSession] = None
    captcha_solver: str = "skip"
    captcha_api_key: Optional[str] = None
    stealth_level: str = "advanced"
    # Slow sites get a longer timeout for browser methods
    rate_limited: bool = False

    @classmethod
    def from_config(cls, config: CrawlConfig, auth: Optional[AuthSession] = None) -> FetchOptions:
        return cls(
            timeout=config.timeout_seconds,
            user_agent=config.user_agent,
            auth=auth,
            captcha_solver=config.captcha_solver,
            captcha_api_key=config.captcha_api_key,
            stealth_level=config.stealth_level,
        )

    def request_headers(self) -> Dict[str, str]:
        """Explicit headers merged with stored auth headers."""
        headers = dict(self.headers)
        if self.auth is not None:
            headers.update(self.auth.headers)
        return headers

    def request_cookies(self) -> List[Dict[str, Any]]:
        cookies = list(self.cookies)
        if self.auth is not None:
            cookies.extend(self.auth.cookies)
        return cookies


@runtime_checkable
class Executor(Protocol):
    """A strategy that fetches a page using one technique."""

    name: str

    async def fetch(self, url: str, options: FetchOptions) -> RawPage:
        """Fetch ``url`` and return the page.

        Raises:
            NetworkError: transport failure or error status
            FetchTimeoutError: the request exceeded ``options.timeout``
            CaptchaDetected: a challenge blocked the page
        """
        ...

    async def close(self) -> None:
        ...


def page_title(html: str) -> str:
    match = _TITLE_RE.search(html)
    return match.group(1).strip() if match else ""


def blocked_reason(html: str) -> Optional[str]:
    """Reason string when the page looks like a block/challenge page."""
    title = page_title(html).lower()
    for marker in BLOCKED_TITLE_MARKERS:
        if marker in title:
            return f"Page appears to be blocked: {title[:80]}"
    return None
