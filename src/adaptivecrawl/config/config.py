"""
Configuration management for AdaptiveCrawl using Pydantic.

Two layers live here:

* per-crawl models (``CrawlConfig`` and its nested auth/extraction models),
  validated at the boundary of ``Scheduler.start_crawl``;
* process-wide ``Settings`` loaded from the environment (``ADAPTIVECRAWL_``
  prefix) or a YAML file.
"""

from __future__ import annotations

import logging
import os
import re
import threading
from pathlib import Path
from typing import Any, ClassVar, Dict, List, Literal, Mapping, Optional, cast

import soupsieve
import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel
from pydantic_settings import BaseSettings, SettingsConfigDict

from adaptivecrawl.errors import InvalidConfig

log = logging.getLogger(__name__)

FetchMethod = Literal["static", "dynamic", "stealth", "api"]
AuthType = Literal["none", "basic", "form", "bearer", "cookie"]
CaptchaSolverName = Literal["manual", "2captcha", "anticaptcha", "skip"]
StealthLevel = Literal["basic", "advanced", "maximum"]

DEFAULT_SUBMIT_SELECTOR = 'input[type="submit"], button[type="submit"]'


class _CamelModel(BaseModel):
    """Accepts both snake_case and camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


# --- Per-crawl Models ---


class AuthCredentials(_CamelModel):
    username: Optional[str] = None
    password: Optional[str] = None
    token: Optional[str] = None
    cookies: Dict[str, str] = Field(default_factory=dict)
    login_url: Optional[str] = None
    username_field: str = "username"
    password_field: str = "password"
    submit_selector: str = DEFAULT_SUBMIT_SELECTOR
    success_indicator: Optional[str] = None

    @field_validator("login_url")
    @classmethod
    def validate_login_url(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not re.match(r"^https?://[^/\s]+", v):
            raise ValueError("login_url must be an absolute http(s) URL")
        return v


class AuthConfig(_CamelModel):
    """Authentication settings for a crawl or an auth test."""

    type: AuthType = "none"
    credentials: AuthCredentials = Field(default_factory=AuthCredentials)

    @property
    def enabled(self) -> bool:
        return self.type != "none"


class ExtractionConfig(_CamelModel):
    enable_structured_data: bool = True
    custom_selectors: Dict[str, str] = Field(default_factory=dict)
    data_types: List[str] = Field(default_factory=list)
    quality_threshold: float = Field(default=0.7, ge=0.0, le=1.0)

    @field_validator("custom_selectors")
    @classmethod
    def validate_custom_selectors(cls, v: Dict[str, str]) -> Dict[str, str]:
        for name, selector in v.items():
            try:
                soupsieve.compile(selector)
            except soupsieve.SelectorSyntaxError as e:
                raise ValueError(f"invalid selector for {name!r}: {e}") from e
        return v


class CrawlConfig(_CamelModel):
    """Validated configuration for a single crawl session."""

    max_pages: int = Field(default=100, ge=1, le=10000)
    max_depth: int = Field(default=5, ge=1, le=10)
    respect_robots: bool = True
    delay: int = Field(default=1000, ge=0, le=10000, description="Per-domain pacing in milliseconds.")
    concurrent: int = Field(default=3, ge=1, le=10)
    include_patterns: List[str] = Field(default_factory=list)
    exclude_patterns: List[str] = Field(default_factory=list)
    user_agent: Optional[str] = None
    timeout: int = Field(default=30000, ge=5000, le=120000, description="Per-request timeout in milliseconds.")
    authentication: AuthConfig = Field(default_factory=AuthConfig)
    extraction: ExtractionConfig = Field(default_factory=ExtractionConfig)
    force_method: Optional[FetchMethod] = None
    enable_api_scraping: bool = True
    enable_dynamic_scraping: bool = True
    enable_stealth_scraping: bool = True
    enable_adaptive_scraping: bool = True
    captcha_solver: CaptchaSolverName = "skip"
    captcha_api_key: Optional[str] = None
    stealth_level: StealthLevel = "advanced"
    learning_mode: bool = True

    @field_validator("force_method", mode="before")
    @classmethod
    def normalize_force_method(cls, v: Any) -> Any:
        # "adaptive" is accepted on input and means "let the selector decide"
        if v in ("adaptive", ""):
            return None
        return v

    @field_validator("include_patterns", "exclude_patterns")
    @classmethod
    def validate_patterns(cls, v: List[str]) -> List[str]:
        for pattern in v:
            try:
                re.compile(pattern)
            except re.error as e:
                raise ValueError(f"invalid pattern {pattern!r}: {e}") from e
        return v

    @property
    def delay_seconds(self) -> float:
        return self.delay / 1000.0

    @property
    def timeout_seconds(self) -> float:
        return self.timeout / 1000.0

    def enabled_methods(self) -> List[str]:
        """Methods the selector may use, cheapest first."""
        if self.force_method:
            return [self.force_method]
        methods = ["static"]
        if self.enable_dynamic_scraping:
            methods.append("dynamic")
        if self.enable_stealth_scraping:
            methods.append("stealth")
        if self.enable_api_scraping:
            methods.append("api")
        return methods


def load_crawl_config(data: CrawlConfig | Mapping[str, Any] | None = None) -> CrawlConfig:
    """Validate raw crawl options, raising ``InvalidConfig`` on any problem."""
    if isinstance(data, CrawlConfig):
        return data
    try:
        return CrawlConfig.model_validate(dict(data or {}))
    except ValidationError as e:
        problems = "; ".join(f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors())
        raise InvalidConfig(f"Invalid crawl configuration: {problems}") from e


def load_auth_config(data: AuthConfig | Mapping[str, Any]) -> AuthConfig:
    if isinstance(data, AuthConfig):
        return data
    try:
        return AuthConfig.model_validate(dict(data))
    except ValidationError as e:
        raise InvalidConfig(f"Invalid authentication configuration: {e.error_count()} error(s)") from e


# --- Process-wide Settings ---


class MonitoringConfig(BaseModel):
    """Configuration for logging and metrics export."""

    log_level: str = Field(default="INFO", description="Logging level (e.g., DEBUG, INFO, WARNING).")
    log_file: str | None = Field(default=None, description="Path to log file. If None, logs to console.")
    prometheus_port: int | None = Field(default=None, description="Port for Prometheus exporter. None to disable.")

    @field_validator("log_file", mode="before")
    @classmethod
    def create_parent_dir(cls, v: str | Path | None) -> str | None:
        if v is None:
            return None
        path = Path(v)
        path.parent.mkdir(parents=True, exist_ok=True)
        return str(path)


class CrawlerSettings(BaseModel):
    user_agent: str = Field(
        default="AdaptiveCrawlBot/1.0 (+https://github.com/adaptivecrawl/adaptivecrawl)",
        description="User-Agent for static fetches and robots.txt checks.",
    )
    robots_cache_ttl_seconds: int = Field(default=12 * 60 * 60, ge=0)
    max_links_per_page: int = Field(default=500, ge=1)
    queue_max_attempts: int = Field(default=3, ge=1)


class StaticFetchSettings(BaseModel):
    max_retries: int = Field(default=3, ge=0, description="Retries for 429/502/503/504 responses.")
    max_body_bytes: int = Field(default=10 * 1024 * 1024, description="Bodies above this size are truncated.")


class BrowserSettings(BaseModel):
    headless: bool = True
    max_browsers: int = Field(default=3, ge=1, description="Concurrent browser contexts across all sessions.")
    slot_timeout_seconds: float = Field(default=120.0, gt=0)
    session_ttl_seconds: int = Field(default=3600, description="Stealth fingerprint/cookie reuse window.")


class LearningSettings(BaseModel):
    cap: int = Field(default=50, ge=1, description="Upper bound of the incremental-average divisor.")
    recent_failures_limit: int = Field(default=20, ge=1)
    weights: Dict[str, float] = Field(
        default_factory=lambda: {"static": 1.0, "dynamic": 0.9, "stealth": 0.8, "api": 0.7},
        description="Cost weights used to break ranking ties toward cheaper methods.",
    )


class AuthSettings(BaseModel):
    session_ttl_seconds: int = Field(default=3600, ge=1)
    max_sessions: int = Field(default=256, ge=1)


class Settings(BaseSettings):
    project_name: str = "AdaptiveCrawl"
    version: str = "0.1.0"
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)
    crawler: CrawlerSettings = Field(default_factory=CrawlerSettings)
    static: StaticFetchSettings = Field(default_factory=StaticFetchSettings)
    browser: BrowserSettings = Field(default_factory=BrowserSettings)
    learning: LearningSettings = Field(default_factory=LearningSettings)
    auth: AuthSettings = Field(default_factory=AuthSettings)

    model_config = SettingsConfigDict(env_prefix="ADAPTIVECRAWL_", env_nested_delimiter="__", case_sensitive=False)

    @classmethod
    def from_yaml(cls, path: Path) -> Settings:
        log.debug("Loading settings from YAML file: %s", path)
        if not path.is_file():
            raise FileNotFoundError(f"Configuration file not found or is not a file: {path}")
        with open(path, "r", encoding="utf-8") as f:
            yaml_data = yaml.safe_load(f)
        if not yaml_data:
            log.warning("Configuration file is empty: %s. Using default settings.", path)
        return cls.model_validate(yaml_data or {})


def find_config_file() -> Path | None:
    env_path = os.getenv("ADAPTIVECRAWL_CONFIG")
    if env_path:
        return Path(env_path)
    current_dir = Path.cwd()
    for path in (current_dir / "config.yaml", current_dir / "config.yml"):
        if path.exists():
            return path
    return None


class _SettingsHolder:
    _settings: ClassVar[Settings | None] = None
    _lock: ClassVar[threading.Lock] = threading.Lock()


def get_settings() -> Settings:
    """Return the process-wide settings, loading them on first use."""
    if _SettingsHolder._settings is None:
        with _SettingsHolder._lock:
            if _SettingsHolder._settings is None:
                config_path = find_config_file()
                if config_path:
                    log.info("Loading settings from: %s", config_path)
                    _SettingsHolder._settings = Settings.from_yaml(config_path)
                else:
                    _SettingsHolder._settings = Settings()
    return cast(Settings, _SettingsHolder._settings)


def set_settings(settings: Settings | None) -> None:
    """Replace (or reset with ``None``) the process-wide settings."""
    with _SettingsHolder._lock:
        _SettingsHolder._settings = settings
