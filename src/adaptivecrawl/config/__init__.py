from .config import (
    AuthConfig,
    AuthCredentials,
    AuthSettings,
    BrowserSettings,
    CrawlConfig,
    CrawlerSettings,
    ExtractionConfig,
    LearningSettings,
    MonitoringConfig,
    Settings,
    StaticFetchSettings,
    get_settings,
    load_auth_config,
    load_crawl_config,
    set_settings,
)

__all__ = [
    "AuthConfig",
    "AuthCredentials",
    "AuthSettings",
    "BrowserSettings",
    "CrawlConfig",
    "CrawlerSettings",
    "ExtractionConfig",
    "LearningSettings",
    "MonitoringConfig",
    "Settings",
    "StaticFetchSettings",
    "get_settings",
    "load_auth_config",
    "load_crawl_config",
    "set_settings",
]
