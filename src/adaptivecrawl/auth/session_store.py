"""
Authenticated sessions per domain, evicted after a TTL or when the store is full.
"""

from __future__ import annotations

import asyncio
import time
from collections import OrderedDict, defaultdict
from typing import Dict, Optional

import structlog

from adaptivecrawl.models import AuthSession

logger = structlog.get_logger(__name__)


class AuthSessionStore:
    """
    LRU map of domain to ``AuthSession``.

    Reads never block. ``login_lock(domain)`` is held while a login runs so
    concurrent workers wait for the first login instead of starting their own.
    """

    def __init__(self, ttl_seconds: float = 3600.0, max_sessions: int = 256) -> None:
        self.ttl_seconds = ttl_seconds
        self.max_sessions = max_sessions
        self._sessions: OrderedDict[str, AuthSession] = OrderedDict()
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def login_lock(self, domain: str) -> asyncio.Lock:
        return self._locks[domain.lower()]

    def get(self, domain: str) -> Optional[AuthSession]:
        domain = domain.lower()
        session = self._sessions.get(domain)
        if session is None:
            return None
        if time.monotonic() - session.last_used > self.ttl_seconds:
            logger.info("Auth session expired", domain=domain)
            del self._sessions[domain]
            return None
        session.last_used = time.monotonic()
        self._sessions.move_to_end(domain)
        return session

    def put(self, session: AuthSession) -> None:
        domain = session.domain.lower()
        session.last_used = time.monotonic()
        self._sessions[domain] = session
        self._sessions.move_to_end(domain)
        while len(self._sessions) > self.max_sessions:
            evicted, _ = self._sessions.popitem(last=False)
            logger.debug("Auth session evicted", domain=evicted)

    def remove(self, domain: str) -> bool:
        return self._sessions.pop(domain.lower(), None) is not None

    def clear(self) -> None:
        self._sessions.clear()

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, domain: str) -> bool:
        return self.get(domain) is not None
