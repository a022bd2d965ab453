"""
URL frontier for a single crawl session.

Holds the priority-ordered queue of pending tasks plus the visited set. All
mutating methods are synchronous so that check-and-mark happens without an
await in between; with asyncio that makes them atomic with respect to the
session's workers.
"""

from __future__ import annotations

import heapq
import itertools
import re
from typing import Dict, Iterable, List, Optional, Pattern, Set, Tuple
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

import structlog

from adaptivecrawl.models import TaskStatus, URLTask

logger = structlog.get_logger(__name__)

TRACKING_PARAMS = frozenset({"utm_source", "utm_medium", "utm_campaign", "utm_term", "utm_content", "ref", "source"})

HIGH_VALUE_PATHS = ("/about", "/contact", "/products", "/services", "/blog")
LOW_VALUE_PATHS = ("/tag/", "/category/", "/archive/", "/page/")


def normalize_url(url: str) -> str:
    """Canonical form used as the visited-set key.

    Drops the fragment and tracking parameters, sorts the query string and
    lowercases scheme and host. Unparseable input is returned unchanged.
    """
    try:
        parsed = urlparse(url.strip())
    except ValueError:
        return url
    if not parsed.scheme or not parsed.netloc:
        return url
    query = sorted((k, v) for k, v in parse_qsl(parsed.query, keep_blank_values=True) if k not in TRACKING_PARAMS)
    path = parsed.path or "/"
    return urlunparse((parsed.scheme.lower(), parsed.netloc.lower(), path, parsed.params, urlencode(query), ""))


def is_valid_url(url: str) -> bool:
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.hostname)


def extract_domain(url: str) -> str:
    try:
        return (urlparse(url).hostname or "").lower()
    except ValueError:
        return ""


def is_internal_url(url: str, base_domain: str) -> bool:
    """True when the URL's host is ``base_domain`` or one of its subdomains."""
    host = extract_domain(url)
    if not host:
        return False
    base = base_domain.lower()
    if base.startswith("www."):
        base = base[4:]
    return host == base or host.endswith("." + base)


def calculate_priority(url: str, depth: int) -> int:
    priority = 10 - depth
    path = urlparse(url).path.lower()
    if any(marker in path for marker in HIGH_VALUE_PATHS):
        priority += 5
    if any(marker in path for marker in LOW_VALUE_PATHS):
        priority -= 3
    return priority


class PatternFilter:
    """Include/exclude regex filter. Excludes win; includes, when given, are mandatory."""

    def __init__(self, include: Iterable[str] = (), exclude: Iterable[str] = ()) -> None:
        self.include: List[Pattern[str]] = [re.compile(p) for p in include]
        self.exclude: List[Pattern[str]] = [re.compile(p) for p in exclude]

    def matches(self, url: str) -> bool:
        if any(p.search(url) for p in self.exclude):
            return False
        if self.include:
            return any(p.search(url) for p in self.include)
        return True


class Frontier:
    """Priority queue of URL tasks with a visited set."""

    def __init__(self, max_attempts: int = 3) -> None:
        self.max_attempts = max_attempts
        self._heap: List[Tuple[int, int, int, URLTask]] = []
        self._counter = itertools.count()
        self._tasks: Dict[str, URLTask] = {}
        self._visited: Set[str] = set()
        self._in_progress: Set[str] = set()

    def add(self, url: str, depth: int, parent_url: Optional[str] = None) -> Optional[URLTask]:
        """Queue a URL unless it is already known. Returns the new task or None."""
        key = normalize_url(url)
        if key in self._tasks:
            return None
        task = URLTask(url=key, depth=depth, parent_url=parent_url, priority=calculate_priority(key, depth))
        self._tasks[key] = task
        self._push(task)
        return task

    def _push(self, task: URLTask) -> None:
        heapq.heappush(self._heap, (-task.priority, task.depth, next(self._counter), task))

    def pop(self) -> Optional[URLTask]:
        """Next pending task, highest priority and shallowest first."""
        while self._heap:
            _, _, _, task = heapq.heappop(self._heap)
            if task.status is TaskStatus.PENDING:
                return task
        return None

    def requeue(self, task: URLTask) -> None:
        """Put a popped or claimed task back before it was fetched (used on stop)."""
        if task.status is TaskStatus.PROCESSING:
            self._visited.discard(task.url)
            self._in_progress.discard(task.url)
            task.attempts = max(0, task.attempts - 1)
            task.status = TaskStatus.PENDING
        if task.status is TaskStatus.PENDING:
            self._push(task)

    def mark_visited(self, task: URLTask) -> bool:
        """Claim a task for fetching. False if another worker already did."""
        if task.url in self._visited:
            return False
        self._visited.add(task.url)
        self._in_progress.add(task.url)
        task.status = TaskStatus.PROCESSING
        task.attempts += 1
        return True

    def mark_completed(self, task: URLTask) -> None:
        task.status = TaskStatus.COMPLETED
        self._in_progress.discard(task.url)

    def mark_failed(self, task: URLTask, error: str) -> None:
        task.status = TaskStatus.FAILED
        task.last_error = error
        self._in_progress.discard(task.url)

    def mark_skipped(self, task: URLTask, reason: str) -> None:
        task.status = TaskStatus.SKIPPED
        task.last_error = reason
        self._in_progress.discard(task.url)

    def is_visited(self, url: str) -> bool:
        return normalize_url(url) in self._visited

    def retry_failed(self) -> List[URLTask]:
        """Re-queue failed tasks that still have attempts left."""
        retried = []
        for task in self._tasks.values():
            if task.status is TaskStatus.FAILED and task.attempts < self.max_attempts:
                task.status = TaskStatus.PENDING
                task.last_error = None
                self._visited.discard(task.url)
                self._push(task)
                retried.append(task)
        if retried:
            logger.info("Re-queued failed URLs", count=len(retried))
        return retried

    def tasks(self, status: Optional[TaskStatus] = None) -> List[URLTask]:
        return [t for t in self._tasks.values() if status is None or t.status is status]

    @property
    def pending_count(self) -> int:
        return sum(1 for t in self._tasks.values() if t.status is TaskStatus.PENDING)

    @property
    def in_flight(self) -> int:
        return len(self._in_progress)

    def get_queue_stats(self) -> Dict[str, int]:
        stats = {status.value: 0 for status in TaskStatus}
        for task in self._tasks.values():
            stats[task.status.value] += 1
        stats["total"] = len(self._tasks)
        return stats

    def __len__(self) -> int:
        return self.pending_count
