"""
Tests for crawl option validation and process-wide settings.
"""

import pytest

from adaptivecrawl.config import Settings, get_settings, load_auth_config, load_crawl_config, set_settings
from adaptivecrawl.config.config import CrawlConfig
from adaptivecrawl.errors import InvalidConfig


@pytest.mark.unit
class TestCrawlConfig:
    def test_defaults(self):
        config = load_crawl_config(None)
        assert (config.max_pages, config.max_depth, config.concurrent) == (100, 5, 3)
        assert config.delay_seconds == 1.0
        assert config.timeout_seconds == 30.0
        assert config.respect_robots
        assert config.extraction.quality_threshold == 0.7
        assert not config.authentication.enabled

    def test_camel_case_keys(self):
        config = load_crawl_config(
            {
                "maxPages": 20,
                "maxDepth": 2,
                "respectRobots": False,
                "includePatterns": ["/docs/"],
                "forceMethod": "dynamic",
                "extraction": {"dataTypes": ["product"], "qualityThreshold": 0.5},
                "authentication": {"type": "bearer", "credentials": {"token": "abc"}},
            }
        )
        assert config.max_pages == 20
        assert config.max_depth == 2
        assert not config.respect_robots
        assert config.include_patterns == ["/docs/"]
        assert config.extraction.data_types == ["product"]
        assert config.extraction.quality_threshold == 0.5
        assert config.authentication.enabled
        assert config.authentication.credentials.token == "abc"
        assert config.enabled_methods() == ["dynamic"]

    @pytest.mark.parametrize(
        "options",
        [
            {"max_pages": 0},
            {"max_pages": 10001},
            {"max_depth": 11},
            {"concurrent": 0},
            {"delay": -1},
            {"timeout": 1000},
            {"force_method": "telepathy"},
            {"include_patterns": ["(unclosed"]},
            {"extraction": {"quality_threshold": 1.5}},
            {"extraction": {"custom_selectors": {"price": "div["}}},
        ],
    )
    def test_out_of_bounds_rejected(self, options):
        with pytest.raises(InvalidConfig, match="Invalid crawl configuration"):
            load_crawl_config(options)

    def test_valid_custom_selectors_kept(self):
        config = load_crawl_config({"extraction": {"customSelectors": {"price": "span.price", "sku": "[data-sku]"}}})
        assert config.extraction.custom_selectors == {"price": "span.price", "sku": "[data-sku]"}

    def test_adaptive_means_no_forced_method(self):
        assert load_crawl_config({"forceMethod": "adaptive"}).force_method is None

    def test_enabled_methods_follow_flags(self):
        config = CrawlConfig(enable_dynamic_scraping=False, enable_api_scraping=False)
        assert config.enabled_methods() == ["static", "stealth"]

    def test_existing_config_passes_through(self, crawl_config):
        assert load_crawl_config(crawl_config) is crawl_config


@pytest.mark.unit
class TestAuthConfig:
    def test_login_url_must_be_absolute(self):
        with pytest.raises(InvalidConfig):
            load_auth_config({"type": "form", "credentials": {"loginUrl": "/login"}})

    def test_form_defaults(self):
        auth = load_auth_config({"type": "form", "credentials": {"username": "u", "password": "p"}})
        assert auth.credentials.username_field == "username"
        assert auth.credentials.password_field == "password"
        assert "submit" in auth.credentials.submit_selector

    def test_unknown_type_rejected(self):
        with pytest.raises(InvalidConfig):
            load_auth_config({"type": "oauth"})


@pytest.mark.unit
class TestSettings:
    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("ADAPTIVECRAWL_CRAWLER__USER_AGENT", "TestBot/2.0")
        monkeypatch.setenv("ADAPTIVECRAWL_BROWSER__MAX_BROWSERS", "5")
        settings = Settings()
        assert settings.crawler.user_agent == "TestBot/2.0"
        assert settings.browser.max_browsers == 5

    def test_from_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            "monitoring:\n  log_level: DEBUG\nlearning:\n  cap: 10\nstatic:\n  max_retries: 1\n",
            encoding="utf-8",
        )
        settings = Settings.from_yaml(path)
        assert settings.monitoring.log_level == "DEBUG"
        assert settings.learning.cap == 10
        assert settings.static.max_retries == 1
        assert settings.learning.weights["static"] == 1.0

    def test_empty_yaml_gives_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("", encoding="utf-8")
        assert Settings.from_yaml(path).browser.max_browsers == 3

    def test_missing_yaml(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            Settings.from_yaml(tmp_path / "absent.yaml")

    def test_get_settings_reads_config_env(self, tmp_path, monkeypatch):
        path = tmp_path / "crawl.yaml"
        path.write_text("crawler:\n  queue_max_attempts: 7\n", encoding="utf-8")
        monkeypatch.setenv("ADAPTIVECRAWL_CONFIG", str(path))
        set_settings(None)
        assert get_settings().crawler.queue_max_attempts == 7
        assert get_settings() is get_settings()
