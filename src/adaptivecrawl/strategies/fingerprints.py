"""
User-agent rotation and randomized browser fingerprints for the stealth executor.
"""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

VIEWPORTS: List[Tuple[int, int]] = [(1920, 1080), (1366, 768), (1536, 864), (1440, 900), (1280, 720)]
TIMEZONES = [
    "America/New_York",
    "America/Los_Angeles",
    "Europe/London",
    "Europe/Berlin",
    "Asia/Tokyo",
    "Australia/Sydney",
]
LOCALES = ["en-US", "en-GB", "de-DE", "fr-FR", "es-ES", "ja-JP"]


class UserAgentRotator:
    """
    Pool of realistic desktop user agents, each tagged with the platform it
    claims so that client hints stay consistent with the UA string.
    """

    def __init__(self, rng: Optional[random.Random] = None) -> None:
        self._rng = rng or random.Random()
        self.agents: List[Tuple[str, str]] = [
            (
                "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) "
                "Chrome/124.0.0.0 Safari/537.36",
                "Windows",
            ),
            (
                "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) "
                "Chrome/124.0.0.0 Safari/537.36",
                "macOS",
            ),
            (
                "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) "
                "Chrome/124.0.0.0 Safari/537.36",
                "Linux",
            ),
            (
                "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) "
                "Chrome/124.0.0.0 Safari/537.36 Edg/124.0.0.0",
                "Windows",
            ),
            (
                "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) "
                "Version/17.4 Safari/605.1.15",
                "macOS",
            ),
        ]

    def get_random(self) -> Tuple[str, str]:
        """Random ``(user_agent, platform)`` pair."""
        return self._rng.choice(self.agents)

    def get_random_user_agent(self) -> str:
        return self.get_random()[0]

    def add_custom_agent(self, user_agent: str, platform: str = "Windows") -> None:
        self.agents.append((user_agent, platform))

    def get_stats(self) -> Dict[str, int]:
        return {"total_agents": len(self.agents)}


@dataclass
class BrowserFingerprint:
    user_agent: str
    platform: str
    viewport: Dict[str, int]
    timezone: str
    locale: str
    extra_headers: Dict[str, str] = field(default_factory=dict)

    def context_options(self) -> Dict[str, object]:
        """Keyword arguments for ``Browser.new_context``."""
        return {
            "user_agent": self.user_agent,
            "viewport": self.viewport,
            "timezone_id": self.timezone,
            "locale": self.locale,
            "extra_http_headers": self.extra_headers,
            "ignore_https_errors": True,
        }


def generate_fingerprint(rotator: Optional[UserAgentRotator] = None, rng: Optional[random.Random] = None) -> BrowserFingerprint:
    rng = rng or random.Random()
    rotator = rotator or UserAgentRotator(rng)
    user_agent, platform = rotator.get_random()
    width, height = rng.choice(VIEWPORTS)
    locale = rng.choice(LOCALES)
    language = locale.split("-")[0]
    headers = {
        "Accept-Language": f"{locale},{language};q=0.9",
        "sec-ch-ua": '"Chromium";v="124", "Google Chrome";v="124", "Not-A.Brand";v="99"',
        "sec-ch-ua-mobile": "?0",
        "sec-ch-ua-platform": f'"{platform}"',
        "sec-fetch-dest": "document",
        "sec-fetch-mode": "navigate",
        "sec-fetch-site": "none",
        "sec-fetch-user": "?1",
    }
    return BrowserFingerprint(
        user_agent=user_agent,
        platform=platform,
        viewport={"width": width, "height": height},
        timezone=rng.choice(TIMEZONES),
        locale=locale,
        extra_headers=headers,
    )


# Runs before any page script; hides the most common automation tells
STEALTH_INIT_SCRIPT = """
Object.defineProperty(navigator, 'webdriver', { get: () => undefined });
Object.defineProperty(navigator, 'plugins', { get: () => [1, 2, 3, 4, 5] });
Object.defineProperty(navigator, 'languages', { get: () => [navigator.language, navigator.language.split('-')[0]] });
window.chrome = window.chrome || { runtime: {} };
const originalQuery = window.navigator.permissions && window.navigator.permissions.query;
if (originalQuery) {
  window.navigator.permissions.query = (parameters) =>
    parameters.name === 'notifications'
      ? Promise.resolve({ state: Notification.permission })
      : originalQuery(parameters);
}
"""
