"""Where crawl results go."""

from adaptivecrawl.persistence.base import PersistenceProtocol
from adaptivecrawl.persistence.memory import InMemoryStore

__all__ = ["InMemoryStore", "PersistenceProtocol"]
