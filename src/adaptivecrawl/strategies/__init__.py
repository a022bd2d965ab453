"""Fetch strategy executors."""

from __future__ import annotations

from typing import Dict, Optional

from adaptivecrawl.config.config import Settings
from adaptivecrawl.strategies.api import ApiExecutor
from adaptivecrawl.strategies.base import Executor, FetchOptions
from adaptivecrawl.strategies.browser import BrowserPool
from adaptivecrawl.strategies.dynamic import DynamicExecutor
from adaptivecrawl.strategies.static import StaticExecutor
from adaptivecrawl.strategies.stealth import CaptchaSolver, StealthExecutor

__all__ = [
    "ApiExecutor",
    "BrowserPool",
    "CaptchaSolver",
    "DynamicExecutor",
    "Executor",
    "FetchOptions",
    "StaticExecutor",
    "StealthExecutor",
    "build_executors",
]


def build_executors(
    settings: Settings,
    *,
    pool: Optional[BrowserPool] = None,
    captcha_solver: Optional[CaptchaSolver] = None,
) -> Dict[str, Executor]:
    """One executor per fetch method, browser methods sharing ``pool``."""
    pool = pool or BrowserPool(settings.browser)
    return {
        "static": StaticExecutor(settings.static),
        "dynamic": DynamicExecutor(pool),
        "stealth": StealthExecutor(
            pool,
            captcha_solver=captcha_solver,
            session_ttl=settings.browser.session_ttl_seconds,
        ),
        "api": ApiExecutor(),
    }
