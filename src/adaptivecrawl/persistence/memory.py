"""
In-memory persistence, the default when no external store is configured.
"""

from __future__ import annotations

import asyncio
from copy import copy
from typing import Dict, List, Optional

from adaptivecrawl.models import CrawlSession, ExtractedContent, StructuredDataItem


class InMemoryStore:
    """Keeps everything in process memory, keyed by session id."""

    def __init__(self) -> None:
        self._sessions: Dict[str, CrawlSession] = {}
        self._content: Dict[str, List[ExtractedContent]] = {}
        self._structured: Dict[str, List[StructuredDataItem]] = {}
        self._lock = asyncio.Lock()

    async def save_content(self, session_id: str, content: ExtractedContent) -> None:
        async with self._lock:
            self._content.setdefault(session_id, []).append(content)

    async def save_structured_data(self, session_id: str, items: List[StructuredDataItem]) -> None:
        if not items:
            return
        async with self._lock:
            self._structured.setdefault(session_id, []).extend(items)

    async def save_session(self, session: CrawlSession) -> None:
        snapshot = copy(session)
        snapshot.stats = copy(session.stats)
        async with self._lock:
            self._sessions[session.id] = snapshot

    async def load_session(self, session_id: str) -> Optional[CrawlSession]:
        return self._sessions.get(session_id)

    def content(self, session_id: str) -> List[ExtractedContent]:
        return list(self._content.get(session_id, []))

    def structured_data(self, session_id: str) -> List[StructuredDataItem]:
        return list(self._structured.get(session_id, []))

    async def delete_session(self, session_id: str) -> None:
        async with self._lock:
            self._sessions.pop(session_id, None)
            self._content.pop(session_id, None)
            self._structured.pop(session_id, None)
