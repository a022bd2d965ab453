"""
Unit tests for website profiles: heuristics, difficulty and JSON transfer.
"""

import json

import pytest

from adaptivecrawl.adaptive.profile_store import (
    ProfileStore,
    derive_difficulty,
    heuristic_rates,
    upgrade_difficulty,
)
from adaptivecrawl.errors import InvalidConfig
from adaptivecrawl.models import SiteCharacteristics


@pytest.mark.unit
class TestHeuristics:
    def test_unknown_site_prefers_cheap_methods(self):
        rates = heuristic_rates("example.com", SiteCharacteristics())
        assert rates == {"static": 0.7, "dynamic": 0.5, "stealth": 0.3, "api": 0.2}

    def test_anti_bot_shifts_toward_stealth(self):
        rates = heuristic_rates("example.com", SiteCharacteristics(has_anti_bot=True))
        assert rates["static"] == pytest.approx(0.3)
        assert rates["stealth"] == pytest.approx(0.6)

    def test_domain_hints(self):
        protected = heuristic_rates("cloudflare-shop.com", SiteCharacteristics())
        assert protected["stealth"] == pytest.approx(0.6)
        assert protected["static"] == pytest.approx(0.4)

        spa = heuristic_rates("my-react-app.io", SiteCharacteristics())
        assert spa["dynamic"] == pytest.approx(0.7)
        assert spa["static"] == pytest.approx(0.5)

    def test_scores_are_clamped(self):
        chars = SiteCharacteristics(has_anti_bot=True, requires_js=True, has_captcha=True, has_rate_limit=True)
        rates = heuristic_rates("cloudflare.com", chars)
        assert rates["static"] == 0.0
        assert rates["stealth"] == 1.0
        assert all(0.0 <= r <= 1.0 for r in rates.values())


@pytest.mark.unit
class TestDifficulty:
    @pytest.mark.parametrize(
        "kwargs,expected",
        [
            ({}, "easy"),
            ({"requires_js": True}, "medium"),
            ({"requires_js": True, "has_rate_limit": True}, "hard"),
            ({"has_anti_bot": True, "has_captcha": True}, "extreme"),
            ({"requires_js": True, "has_rate_limit": True, "has_anti_bot": True}, "extreme"),
        ],
    )
    def test_derive(self, kwargs, expected):
        assert derive_difficulty(SiteCharacteristics(**kwargs)) == expected

    def test_upgrade_never_downgrades(self):
        assert upgrade_difficulty("hard", "easy") == "hard"
        assert upgrade_difficulty("medium", "extreme") == "extreme"


@pytest.mark.unit
class TestProfileStore:
    def test_get_or_create_seeds_heuristics(self):
        store = ProfileStore()
        profile = store.get_or_create("Example.COM")
        assert profile.domain == "example.com"
        assert profile.success_rates["static"] == 0.7
        assert store.get_or_create("example.com") is profile
        assert "EXAMPLE.com" in store

    def test_clear_one_or_all(self):
        store = ProfileStore()
        for domain in ("a.com", "b.com", "c.com"):
            store.get_or_create(domain)
        assert store.clear("b.com") == 1
        assert store.clear("b.com") == 0
        assert store.domains() == ["a.com", "c.com"]
        assert store.clear() == 2
        assert len(store) == 0

    def test_export_import_preserves_profiles(self):
        store = ProfileStore()
        profile = store.get_or_create("example.com")
        profile.success_rates["dynamic"] = 0.95
        profile.characteristics.requires_js = True
        profile.characteristics.difficulty = "medium"
        profile.recent_failures.append("static: Empty document")
        profile.optimal_strategy = "dynamic"

        other = ProfileStore()
        assert other.import_json(store.export_json()) == 1
        imported = other.get("example.com")
        assert imported.success_rates == profile.success_rates
        assert imported.characteristics == profile.characteristics
        assert imported.recent_failures == ["static: Empty document"]
        assert imported.optimal_strategy == "dynamic"
        assert imported.last_updated == profile.last_updated

    def test_import_accepts_bare_list(self):
        store = ProfileStore()
        count = store.import_json(json.dumps([{"domain": "Shop.Example.com", "success_rates": {"static": 0.1}}]))
        assert count == 1
        assert store.get("shop.example.com").success_rates == {"static": 0.1}

    @pytest.mark.parametrize(
        "blob",
        [
            "not json",
            json.dumps({"profiles": "nope"}),
            json.dumps({"profiles": [{"success_rates": {}}]}),
            json.dumps({"profiles": [{"domain": "x.com", "success_rates": {"teleport": 1.0}}]}),
            json.dumps({"profiles": [{"domain": "x.com", "characteristics": {"unknown_flag": True}}]}),
        ],
    )
    def test_import_rejects_malformed_data(self, blob):
        store = ProfileStore()
        store.get_or_create("keep.com")
        with pytest.raises(InvalidConfig):
            store.import_json(blob)
        assert store.domains() == ["keep.com"]
