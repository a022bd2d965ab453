"""
Implements a cached parser for robots.txt files.
"""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Dict, Optional, Tuple
from urllib.robotparser import RobotFileParser

import httpx
from httpx import AsyncClient, HTTPError, HTTPStatusError

from adaptivecrawl.errors import RobotsDisallowedError

logger = logging.getLogger(__name__)

MAX_ROBOTS_BYTES = 1_000_000


class RobotsCache:
    """
    Manages fetching, parsing, and caching of robots.txt files.

    Parsed files are kept per origin for ``ttl`` seconds. A missing or
    unreachable robots.txt allows everything.
    """

    def __init__(self, client: AsyncClient | None = None, ttl: float = 12 * 60 * 60, timeout: float = 5.0):
        """
        Initializes the RobotsCache.

        Args:
            client: An optional httpx.AsyncClient instance. If not provided,
                    one is created and owned by the cache.
            ttl: Seconds a parsed robots.txt stays valid.
            timeout: Fetch timeout in seconds.
        """
        self._owns_client = client is None
        self._client = client or AsyncClient(follow_redirects=True)
        self.ttl = ttl
        self.timeout = timeout
        self._cache: Dict[str, Tuple[float, Optional[RobotFileParser]]] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    async def _fetch_robots_txt(self, origin: str) -> str | None:
        """
        Fetches ``{origin}/robots.txt``.

        Returns:
            The file content, or None if it cannot be fetched.
        """
        url = f"{origin}/robots.txt"
        try:
            response = await self._client.get(url, timeout=self.timeout)
            response.raise_for_status()
            if len(response.content) > MAX_ROBOTS_BYTES:
                logger.warning("robots.txt for %s is larger than 1MB, skipping", origin)
                return None
            return response.text
        except HTTPStatusError as e:
            if e.response.status_code == 404:
                logger.debug("No robots.txt found for %s", origin)
            else:
                logger.warning("Failed to fetch robots.txt for %s: %s", origin, e)
            return None
        except HTTPError as e:
            logger.warning("Failed to fetch robots.txt for %s: %s", origin, e)
            return None

    async def _get_parser(self, origin: str) -> Optional[RobotFileParser]:
        cached = self._cache.get(origin)
        if cached and time.monotonic() - cached[0] < self.ttl:
            return cached[1]

        if origin not in self._locks:
            self._locks[origin] = asyncio.Lock()

        async with self._locks[origin]:
            # Another coroutine may have fetched it while we waited
            cached = self._cache.get(origin)
            if cached and time.monotonic() - cached[0] < self.ttl:
                return cached[1]

            content = await self._fetch_robots_txt(origin)
            parser: Optional[RobotFileParser] = None
            if content is not None:
                parser = RobotFileParser()
                parser.set_url(f"{origin}/robots.txt")
                parser.parse(content.splitlines())
            self._cache[origin] = (time.monotonic(), parser)
            return parser

    @staticmethod
    def _origin(url: str) -> Optional[str]:
        try:
            parsed = httpx.URL(url)
        except (httpx.InvalidURL, TypeError):
            return None
        if not parsed.host:
            return None
        port = f":{parsed.port}" if parsed.port else ""
        return f"{parsed.scheme}://{parsed.host}{port}"

    async def is_allowed(self, url: str, user_agent: str) -> bool:
        """
        Checks if a user-agent is allowed to crawl a given URL.

        Args:
            url: The full URL to check.
            user_agent: The user-agent string to check against.

        Returns:
            True if crawling is allowed, False otherwise.
        """
        origin = self._origin(url)
        if origin is None:
            logger.warning("Could not parse URL for robots.txt check: %s", url)
            return False
        parser = await self._get_parser(origin)
        if parser is None:
            return True
        return parser.can_fetch(user_agent, url)

    async def check(self, url: str, user_agent: str) -> None:
        """Raise ``RobotsDisallowedError`` when robots.txt forbids ``url``."""
        if not await self.is_allowed(url, user_agent):
            raise RobotsDisallowedError(f"Disallowed by robots.txt for {user_agent}", url=url)

    async def crawl_delay(self, url: str, user_agent: str) -> Optional[float]:
        """Crawl-delay directive for the URL's origin, in seconds."""
        origin = self._origin(url)
        parser = await self._get_parser(origin) if origin else None
        if parser is None:
            return None
        delay = parser.crawl_delay(user_agent)
        return float(delay) if delay is not None else None

    async def close(self) -> None:
        """Closes the underlying HTTP client if it was created internally."""
        if self._owns_client and not self._client.is_closed:
            await self._client.aclose()
