"""
AdaptiveCrawl - domain crawler that learns which fetch strategy works per site.
"""

from __future__ import annotations

__version__ = "0.1.0"

from .config import CrawlConfig, Settings, get_settings
from .crawler.scheduler import Scheduler

__all__ = ["__version__", "CrawlConfig", "Scheduler", "Settings", "get_settings"]
