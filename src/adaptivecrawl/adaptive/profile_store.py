"""
Per-domain website profiles: learned success rates and site characteristics.
"""

from __future__ import annotations

import asyncio
import json
from collections import defaultdict
from typing import Any, Dict, List, Optional

import structlog

from adaptivecrawl.errors import InvalidConfig
from adaptivecrawl.models import DIFFICULTY_LEVELS, METHODS, SiteCharacteristics, WebsiteProfile, utcnow

logger = structlog.get_logger(__name__)

BASE_SCORES = {"static": 70, "dynamic": 50, "stealth": 30, "api": 20}

# (static, dynamic, stealth) adjustments per characteristic
CHARACTERISTIC_ADJUSTMENTS = {
    "has_anti_bot": (-40, -20, 30),
    "requires_js": (-30, 20, 10),
    "has_captcha": (-50, -30, 40),
    "has_rate_limit": (-20, -10, 20),
}

PROTECTED_DOMAIN_HINTS = ("cloudflare", "ddos-guard")
SPA_DOMAIN_HINTS = ("spa", "react", "angular")


def heuristic_rates(domain: str, characteristics: SiteCharacteristics) -> Dict[str, float]:
    """Initial success rates for a domain with no history, in [0, 1]."""
    scores = dict(BASE_SCORES)
    for attr, (static, dynamic, stealth) in CHARACTERISTIC_ADJUSTMENTS.items():
        if getattr(characteristics, attr):
            scores["static"] += static
            scores["dynamic"] += dynamic
            scores["stealth"] += stealth

    domain = domain.lower()
    if any(hint in domain for hint in PROTECTED_DOMAIN_HINTS):
        scores["stealth"] += 30
        scores["static"] -= 30
    if any(hint in domain for hint in SPA_DOMAIN_HINTS):
        scores["dynamic"] += 20
        scores["static"] -= 20

    return {method: max(0, min(100, score)) / 100 for method, score in scores.items()}


def derive_difficulty(characteristics: SiteCharacteristics) -> str:
    if characteristics.has_captcha and characteristics.has_anti_bot:
        return "extreme"
    count = characteristics.signal_count()
    return DIFFICULTY_LEVELS[min(count, 3)]


def upgrade_difficulty(current: str, candidate: str) -> str:
    """Difficulty never goes down until the profile is cleared."""
    return max(current, candidate, key=DIFFICULTY_LEVELS.index)


class ProfileStore:
    """
    In-memory map of domain to ``WebsiteProfile``.

    Read-modify-write cycles go through ``lock(domain)`` so concurrent workers
    on one domain never lose an update. Profiles survive across crawl sessions
    and can be exported to and imported from JSON.
    """

    def __init__(self) -> None:
        self._profiles: Dict[str, WebsiteProfile] = {}
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def lock(self, domain: str) -> asyncio.Lock:
        return self._locks[domain.lower()]

    def get(self, domain: str) -> Optional[WebsiteProfile]:
        return self._profiles.get(domain.lower())

    def get_or_create(self, domain: str) -> WebsiteProfile:
        domain = domain.lower()
        profile = self._profiles.get(domain)
        if profile is None:
            profile = WebsiteProfile(domain=domain)
            profile.success_rates = heuristic_rates(domain, profile.characteristics)
            self._profiles[domain] = profile
            logger.debug("Created website profile", domain=domain, success_rates=profile.success_rates)
        return profile

    def put(self, profile: WebsiteProfile) -> None:
        profile.last_updated = utcnow()
        self._profiles[profile.domain.lower()] = profile

    def clear(self, domain: Optional[str] = None) -> int:
        """Drop one profile, or all of them when ``domain`` is None."""
        if domain is None:
            count = len(self._profiles)
            self._profiles.clear()
            return count
        return 1 if self._profiles.pop(domain.lower(), None) is not None else 0

    def domains(self) -> List[str]:
        return sorted(self._profiles)

    def all(self) -> List[WebsiteProfile]:
        return [self._profiles[d] for d in self.domains()]

    def export_json(self) -> str:
        return json.dumps({"profiles": [p.to_dict() for p in self.all()], "exported_at": utcnow().isoformat()}, indent=2)

    def import_json(self, blob: str) -> int:
        """Load profiles from ``export_json`` output; returns how many were imported."""
        try:
            data = json.loads(blob)
        except (TypeError, ValueError) as e:
            raise InvalidConfig(f"Profile data is not valid JSON: {e}") from e

        entries: Any = data.get("profiles") if isinstance(data, dict) else data
        if not isinstance(entries, list):
            raise InvalidConfig("Profile data must be a list of profiles or an object with a 'profiles' list")

        profiles = []
        for entry in entries:
            try:
                profile = WebsiteProfile.from_dict(entry)
            except (KeyError, TypeError, ValueError) as e:
                raise InvalidConfig(f"Malformed profile entry: {e}") from e
            unknown = set(profile.success_rates) - set(METHODS)
            if unknown:
                raise InvalidConfig(f"Unknown methods in profile {profile.domain}: {sorted(unknown)}")
            profiles.append(profile)

        for profile in profiles:
            profile.domain = profile.domain.lower()
            self._profiles[profile.domain] = profile
        logger.info("Imported website profiles", count=len(profiles))
        return len(profiles)

    def __len__(self) -> int:
        return len(self._profiles)

    def __contains__(self, domain: str) -> bool:
        return domain.lower() in self._profiles
