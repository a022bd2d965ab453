"""
Persistence interface the scheduler hands results to.
"""

from __future__ import annotations

from typing import List, Optional, Protocol

from adaptivecrawl.models import CrawlSession, ExtractedContent, StructuredDataItem


class PersistenceProtocol(Protocol):
    """Storage for crawl sessions and their extracted results."""

    async def save_content(self, session_id: str, content: ExtractedContent) -> None:
        """Store one extracted page."""
        ...

    async def save_structured_data(self, session_id: str, items: List[StructuredDataItem]) -> None:
        """Store the structured items extracted from one page."""
        ...

    async def save_session(self, session: CrawlSession) -> None:
        """Store a snapshot of the session's status and counters."""
        ...

    async def load_session(self, session_id: str) -> Optional[CrawlSession]:
        """Return a stored session, or None if it is unknown."""
        ...
