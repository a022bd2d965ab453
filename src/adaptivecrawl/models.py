"""
Core dataclasses shared by the scheduler, selector, executors and extractors.
"""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional
from uuid import uuid4

if TYPE_CHECKING:
    from adaptivecrawl.config.config import CrawlConfig

METHODS = ("static", "dynamic", "stealth", "api")
DIFFICULTY_LEVELS = ("easy", "medium", "hard", "extreme")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _jsonable(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


class SessionStatus(Enum):
    PENDING = "pending"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionStatus.COMPLETED, SessionStatus.FAILED)


class TaskStatus(Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class CrawlStats:
    processed_urls: int = 0
    total_urls: int = 0
    failed_urls: int = 0
    skipped_urls: int = 0
    extracted_items: int = 0
    current_url: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return _jsonable(asdict(self))


@dataclass
class CrawlSession:
    domain: str
    start_url: str
    config: CrawlConfig
    id: str = field(default_factory=lambda: uuid4().hex)
    status: SessionStatus = SessionStatus.PENDING
    stats: CrawlStats = field(default_factory=CrawlStats)
    error: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "domain": self.domain,
            "start_url": self.start_url,
            "status": self.status.value,
            "stats": self.stats.to_dict(),
            "error": self.error,
            "created_at": self.created_at.isoformat(),
            "config": self.config.model_dump(mode="json", exclude={"authentication": {"credentials"}}),
        }


@dataclass
class URLTask:
    url: str
    depth: int
    parent_url: Optional[str] = None
    priority: int = 0
    attempts: int = 0
    status: TaskStatus = TaskStatus.PENDING
    last_error: Optional[str] = None
    discovered_at: float = field(default_factory=time.monotonic)


@dataclass
class SiteCharacteristics:
    has_anti_bot: bool = False
    requires_js: bool = False
    has_rate_limit: bool = False
    has_captcha: bool = False
    difficulty: str = "easy"

    def signal_count(self) -> int:
        return sum((self.has_anti_bot, self.requires_js, self.has_rate_limit, self.has_captcha))


@dataclass
class WebsiteProfile:
    """Learned fetch behaviour for one domain."""

    domain: str
    characteristics: SiteCharacteristics = field(default_factory=SiteCharacteristics)
    success_rates: Dict[str, float] = field(default_factory=dict)
    method_attempts: Dict[str, int] = field(default_factory=lambda: {m: 0 for m in METHODS})
    total_attempts: int = 0
    recent_failures: List[str] = field(default_factory=list)
    last_updated: datetime = field(default_factory=utcnow)
    optimal_strategy: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return _jsonable(asdict(self))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> WebsiteProfile:
        characteristics = SiteCharacteristics(**data.get("characteristics", {}))
        last_updated = data.get("last_updated")
        return cls(
            domain=data["domain"],
            characteristics=characteristics,
            success_rates={k: float(v) for k, v in data.get("success_rates", {}).items()},
            method_attempts={**{m: 0 for m in METHODS}, **data.get("method_attempts", {})},
            total_attempts=int(data.get("total_attempts", 0)),
            recent_failures=list(data.get("recent_failures", [])),
            last_updated=datetime.fromisoformat(last_updated) if last_updated else utcnow(),
            optimal_strategy=data.get("optimal_strategy"),
        )


@dataclass
class AuthSession:
    domain: str
    cookies: List[Dict[str, Any]] = field(default_factory=list)
    headers: Dict[str, str] = field(default_factory=dict)
    authenticated: bool = False
    authenticated_at: Optional[datetime] = None
    last_used: float = field(default_factory=time.monotonic)


@dataclass
class RawPage:
    """What an executor returns."""

    url: str
    final_url: str
    status: int
    html: str
    headers: Dict[str, str] = field(default_factory=dict)
    timing_ms: float = 0.0
    method: str = "static"
    json_payload: Any = None
    # URL the JSON payload came from; differs from final_url when an endpoint was discovered
    api_endpoint: Optional[str] = None
    cookies: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class Heading:
    level: int
    text: str


@dataclass
class Link:
    text: str
    href: str
    internal: bool


@dataclass
class Image:
    src: str
    alt: str
    type: str = "unknown"


@dataclass
class ContentChunk:
    type: str
    selector: str
    text: str
    confidence: float


@dataclass
class ExtractedContent:
    url: str
    title: str = ""
    description: str = ""
    keywords: List[str] = field(default_factory=list)
    language: Optional[str] = None
    headings: List[Heading] = field(default_factory=list)
    links: List[Link] = field(default_factory=list)
    images: List[Image] = field(default_factory=list)
    chunks: List[ContentChunk] = field(default_factory=list)
    main_text: str = ""
    word_count: int = 0
    content_hash: str = ""
    quality_score: float = 0.0
    completeness_score: float = 0.0
    method: str = "static"
    html: str = field(default="", repr=False)
    extracted_at: datetime = field(default_factory=utcnow)

    @property
    def internal_links(self) -> List[Link]:
        return [link for link in self.links if link.internal]

    def to_dict(self, include_html: bool = False) -> Dict[str, Any]:
        data = _jsonable(asdict(self))
        if not include_html:
            data.pop("html", None)
        return data


@dataclass
class StructuredDataItem:
    url: str
    schema: str
    fields: Dict[str, Any]
    quality_score: float
    extraction_method: str = "selector"
    extracted_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return _jsonable(asdict(self))
