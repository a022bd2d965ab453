"""
AdaptiveCrawl crawler module: URL frontier, per-domain pacing and robots.txt.

The session scheduler lives in ``adaptivecrawl.crawler.scheduler``; it is not
imported here because it depends on the selector, which itself uses the
frontier helpers.
"""

from .frontier import Frontier, PatternFilter, calculate_priority, extract_domain, is_internal_url, normalize_url
from .rate_limiter import DomainRateLimiter
from .robots_parser import RobotsCache

__all__ = [
    "DomainRateLimiter",
    "Frontier",
    "PatternFilter",
    "RobotsCache",
    "calculate_priority",
    "extract_domain",
    "is_internal_url",
    "normalize_url",
]
