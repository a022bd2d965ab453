"""
Per-domain request pacing.

Every request to a domain waits until at least the configured interval has
passed since the previous request to that domain. Servers can push the next
allowed request further out with ``Retry-After``.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Mapping

logger = logging.getLogger(__name__)


@dataclass
class DomainPacing:
    """Pacing state for one domain."""

    min_interval: float = 1.0
    last_request_time: float = 0.0
    forced_until: float = 0.0
    requests: int = 0
    total_wait: float = 0.0
    consecutive_errors: int = 0


class DomainRateLimiter:
    """
    Enforces a minimum interval between requests to the same domain.

    Domains are paced independently, so sessions crawling different sites
    never wait on each other.
    """

    def __init__(self, default_interval: float = 1.0, max_forced_delay: float = 300.0) -> None:
        self.default_interval = default_interval
        self.max_forced_delay = max_forced_delay
        self._domains: Dict[str, DomainPacing] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def _get_domain_lock(self, domain: str) -> asyncio.Lock:
        if domain not in self._locks:
            self._locks[domain] = asyncio.Lock()
        return self._locks[domain]

    def _get_pacing(self, domain: str) -> DomainPacing:
        if domain not in self._domains:
            self._domains[domain] = DomainPacing(min_interval=self.default_interval)
        return self._domains[domain]

    async def wait_for_domain(self, domain: str, interval: float | None = None) -> float:
        """
        Wait until a request to ``domain`` is allowed.

        Args:
            domain: Target domain
            interval: Minimum spacing for this call; defaults to the domain's setting

        Returns:
            Delay actually applied in seconds
        """
        async with self._get_domain_lock(domain):
            pacing = self._get_pacing(domain)
            spacing = pacing.min_interval if interval is None else interval
            now = time.monotonic()
            ready_at = max(pacing.last_request_time + spacing, pacing.forced_until)
            delay = max(0.0, ready_at - now) if pacing.requests else max(0.0, pacing.forced_until - now)

            if delay > 0:
                logger.debug("Pacing %s for %.2fs", domain, delay)
                await asyncio.sleep(delay)

            pacing.last_request_time = time.monotonic()
            pacing.requests += 1
            pacing.total_wait += delay
            return delay

    def update_from_response(self, domain: str, headers: Mapping[str, str]) -> None:
        """Honour ``Retry-After`` (seconds form) from a response."""
        retry_after = headers.get("Retry-After") or headers.get("retry-after")
        pacing = self._get_pacing(domain)
        pacing.consecutive_errors = 0
        if not retry_after:
            return
        try:
            seconds = min(float(retry_after), self.max_forced_delay)
        except ValueError:
            # HTTP-date form is not used for pacing
            return
        pacing.forced_until = time.monotonic() + seconds
        logger.info("Server requested %.1fs delay for %s", seconds, domain)

    def record_error(self, domain: str) -> None:
        self._get_pacing(domain).consecutive_errors += 1

    def get_domain_stats(self, domain: str) -> Dict[str, Any]:
        if domain not in self._domains:
            return {"exists": False}
        pacing = self._domains[domain]
        now = time.monotonic()
        return {
            "exists": True,
            "min_interval": pacing.min_interval,
            "requests": pacing.requests,
            "total_wait": pacing.total_wait,
            "consecutive_errors": pacing.consecutive_errors,
            "forced_delay_remaining": max(0.0, pacing.forced_until - now),
        }

