"""
Crawl scheduler: session lifecycle, worker pool and progress reporting.

A session crawls one domain breadth first from its start URL. ``concurrent``
workers share the session's frontier; each worker claims a task, runs the
skip checks, waits for the domain's pacing slot and hands the URL to the
adaptive selector. Successful pages feed their same-domain links back into
the frontier.

Counters keep ``processed + failed <= total <= max_pages``: ``total`` grows
only when a task is enqueued, and a skipped task gives its slot back.
"""

from __future__ import annotations

import asyncio
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

import structlog
from structlog.contextvars import bound_contextvars

from adaptivecrawl.adaptive import AdaptiveSelector, ProfileStore
from adaptivecrawl.auth import Authenticator, AuthSessionStore
from adaptivecrawl.config.config import CrawlConfig, Settings, get_settings, load_crawl_config
from adaptivecrawl.crawler.frontier import Frontier, PatternFilter, extract_domain, is_internal_url, is_valid_url, normalize_url
from adaptivecrawl.crawler.rate_limiter import DomainRateLimiter
from adaptivecrawl.crawler.robots_parser import RobotsCache
from adaptivecrawl.errors import (
    AllMethodsFailed,
    AuthenticationError,
    CrawlerError,
    ExtractionError,
    InvalidConfig,
    NetworkError,
    RobotsDisallowedError,
    SessionNotFound,
)
from adaptivecrawl.extractor import ContentExtractor, StructuredExtractor
from adaptivecrawl.models import (
    CrawlSession,
    ExtractedContent,
    SessionStatus,
    StructuredDataItem,
    TaskStatus,
    URLTask,
    utcnow,
)
from adaptivecrawl.observability import gauge_add, histogram, increment
from adaptivecrawl.persistence import InMemoryStore, PersistenceProtocol
from adaptivecrawl.strategies import BrowserPool, CaptchaSolver, build_executors

logger = structlog.get_logger(__name__)


@dataclass
class _SessionRuntime:
    """Everything a running session needs besides its public record."""

    session: CrawlSession
    frontier: Frontier
    patterns: PatternFilter
    resume_event: asyncio.Event = field(default_factory=asyncio.Event)
    work_changed: asyncio.Condition = field(default_factory=asyncio.Condition)
    stopped: bool = False
    active: int = 0
    start_task: Optional[URLTask] = None
    auth_failure: Optional[AuthenticationError] = None
    content: List[ExtractedContent] = field(default_factory=list)
    structured: List[StructuredDataItem] = field(default_factory=list)
    subscribers: List[asyncio.Queue] = field(default_factory=list)
    runner: Optional[asyncio.Task] = None
    done: asyncio.Event = field(default_factory=asyncio.Event)


class Scheduler:
    """Runs crawl sessions and answers queries about them."""

    def __init__(
        self,
        selector: AdaptiveSelector,
        *,
        structured_extractor: Optional[StructuredExtractor] = None,
        persistence: Optional[PersistenceProtocol] = None,
        robots: Optional[RobotsCache] = None,
        rate_limiter: Optional[DomainRateLimiter] = None,
        settings: Optional[Settings] = None,
        browser_pool: Optional[BrowserPool] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.browser_pool = browser_pool
        self.selector = selector
        self.structured_extractor = structured_extractor or StructuredExtractor()
        self.persistence: PersistenceProtocol = persistence or InMemoryStore()
        self.robots = robots or RobotsCache(ttl=self.settings.crawler.robots_cache_ttl_seconds)
        self.rate_limiter = rate_limiter or DomainRateLimiter()
        self._sessions: Dict[str, _SessionRuntime] = {}

    @classmethod
    def create(
        cls,
        settings: Optional[Settings] = None,
        *,
        store: Optional[ProfileStore] = None,
        persistence: Optional[PersistenceProtocol] = None,
        captcha_solver: Optional[CaptchaSolver] = None,
    ) -> Scheduler:
        """Scheduler wired with the real executors, one shared browser pool and an authenticator."""
        settings = settings or get_settings()
        pool = BrowserPool(settings.browser)
        authenticator = Authenticator(
            pool,
            AuthSessionStore(settings.auth.session_ttl_seconds, settings.auth.max_sessions),
        )
        selector = AdaptiveSelector(
            build_executors(settings, pool=pool, captcha_solver=captcha_solver),
            ContentExtractor(max_links=settings.crawler.max_links_per_page),
            store,
            authenticator=authenticator,
            learning=settings.learning,
        )
        return cls(selector, persistence=persistence, settings=settings, browser_pool=pool)

    # ---------------------------------------------------------------- lifecycle

    async def start_crawl(self, start_url: str, config: CrawlConfig | Mapping[str, Any] | None = None) -> str:
        """Validate and launch a session. Returns its id.

        Raises:
            InvalidConfig: the URL is not an absolute http(s) URL or an option
                is out of bounds.
        """
        config = load_crawl_config(config)
        if not is_valid_url(start_url):
            raise InvalidConfig(f"Invalid start URL: {start_url!r}", url=start_url)

        start_url = normalize_url(start_url)
        session = CrawlSession(domain=extract_domain(start_url), start_url=start_url, config=config)
        runtime = _SessionRuntime(
            session=session,
            frontier=Frontier(max_attempts=self.settings.crawler.queue_max_attempts),
            patterns=PatternFilter(config.include_patterns, config.exclude_patterns),
        )
        runtime.resume_event.set()
        runtime.start_task = runtime.frontier.add(start_url, depth=0)
        session.stats.total_urls = 1
        self._sessions[session.id] = runtime

        await self.persistence.save_session(session)
        runtime.runner = asyncio.create_task(self._run(runtime), name=f"crawl-{session.id}")
        logger.info(
            "Crawl session created",
            session_id=session.id,
            start_url=start_url,
            max_pages=config.max_pages,
            max_depth=config.max_depth,
            concurrent=config.concurrent,
        )
        return session.id

    async def pause(self, session_id: str) -> bool:
        runtime = self._runtime(session_id)
        if runtime.session.status is not SessionStatus.RUNNING:
            return False
        runtime.resume_event.clear()
        runtime.session.status = SessionStatus.PAUSED
        self._emit(runtime, "paused")
        await self.persistence.save_session(runtime.session)
        logger.info("Crawl session paused", session_id=session_id)
        return True

    async def resume(self, session_id: str) -> bool:
        runtime = self._runtime(session_id)
        if runtime.session.status is not SessionStatus.PAUSED:
            return False
        runtime.session.status = SessionStatus.RUNNING
        runtime.resume_event.set()
        self._emit(runtime, "resumed")
        await self.persistence.save_session(runtime.session)
        logger.info("Crawl session resumed", session_id=session_id)
        return True

    async def stop(self, session_id: str) -> bool:
        """Stop dequeuing; in-flight fetches finish. Returns False if already finished."""
        runtime = self._runtime(session_id)
        if runtime.session.status.is_terminal or runtime.stopped:
            return False
        runtime.stopped = True
        runtime.resume_event.set()
        await self._notify(runtime)
        logger.info("Crawl session stop requested", session_id=session_id)
        return True

    async def wait(self, session_id: str, timeout: Optional[float] = None) -> CrawlSession:
        runtime = self._runtime(session_id)
        await asyncio.wait_for(runtime.done.wait(), timeout)
        return runtime.session

    async def delete_session(self, session_id: str) -> bool:
        runtime = self._sessions.get(session_id)
        if runtime is None:
            return False
        if not runtime.session.status.is_terminal:
            await self.stop(session_id)
            await runtime.done.wait()
        del self._sessions[session_id]
        if isinstance(self.persistence, InMemoryStore):
            await self.persistence.delete_session(session_id)
        logger.info("Crawl session deleted", session_id=session_id)
        return True

    async def retry_failed(self, session_id: str) -> int:
        """Re-queue failed URLs with attempts left; restarts a finished session."""
        runtime = self._runtime(session_id)
        retried = runtime.frontier.retry_failed()
        if not retried:
            return 0
        stats = runtime.session.stats
        stats.failed_urls -= len(retried)
        if runtime.session.status.is_terminal:
            runtime.stopped = False
            runtime.done.clear()
            runtime.resume_event.set()
            runtime.session.error = None
            runtime.runner = asyncio.create_task(self._run(runtime), name=f"crawl-{session_id}-retry")
        else:
            await self._notify(runtime)
        return len(retried)

    async def close(self) -> None:
        """Stop every session, then release executors, the browser pool and the robots client."""
        for session_id, runtime in list(self._sessions.items()):
            if not runtime.session.status.is_terminal:
                await self.stop(session_id)
        runners = [r.runner for r in self._sessions.values() if r.runner is not None]
        if runners:
            await asyncio.gather(*runners, return_exceptions=True)
        await self.selector.close()
        if self.browser_pool is not None:
            await self.browser_pool.close()
        await self.robots.close()

    # ------------------------------------------------------------------ queries

    def _runtime(self, session_id: str) -> _SessionRuntime:
        runtime = self._sessions.get(session_id)
        if runtime is None:
            raise SessionNotFound(f"Unknown crawl session: {session_id}")
        return runtime

    def get_session(self, session_id: str) -> CrawlSession:
        return self._runtime(session_id).session

    def list_sessions(self) -> List[CrawlSession]:
        return [r.session for r in self._sessions.values()]

    def get_progress(self, session_id: str) -> Dict[str, Any]:
        """Point-in-time snapshot of a session's counters."""
        runtime = self._runtime(session_id)
        session = runtime.session
        stats = session.stats.to_dict()
        done = stats["processed_urls"] + stats["failed_urls"]
        stats["progress"] = round(100.0 * done / stats["total_urls"], 2) if stats["total_urls"] else 0.0
        return {
            "session_id": session.id,
            "domain": session.domain,
            "status": session.status.value,
            "stats": stats,
            "queue": runtime.frontier.get_queue_stats(),
            "pacing": self.rate_limiter.get_domain_stats(session.domain),
            "error": session.error,
        }

    def get_queue_stats(self, session_id: str) -> Dict[str, int]:
        return self._runtime(session_id).frontier.get_queue_stats()

    def get_content(self, session_id: str, page: int = 1, limit: int = 20) -> Dict[str, Any]:
        """One page of extracted content, in crawl order."""
        content = self._runtime(session_id).content
        page = max(1, page)
        limit = max(1, limit)
        start = (page - 1) * limit
        return {
            "content": content[start : start + limit],
            "pagination": {
                "current_page": page,
                "total_pages": math.ceil(len(content) / limit),
                "total_items": len(content),
                "items_per_page": limit,
            },
        }

    def get_structured_data(
        self, session_id: str, schema: Optional[str] = None, min_quality: Optional[float] = None
    ) -> List[StructuredDataItem]:
        """Structured items, best quality first."""
        items = self._runtime(session_id).structured
        if schema is not None:
            items = [i for i in items if i.schema == schema]
        if min_quality is not None:
            items = [i for i in items if i.quality_score >= min_quality]
        return sorted(items, key=lambda i: i.quality_score, reverse=True)

    def subscribe(self, session_id: str) -> asyncio.Queue:
        """Queue receiving this session's progress events from now on."""
        runtime = self._runtime(session_id)
        queue: asyncio.Queue = asyncio.Queue()
        if runtime.session.status.is_terminal:
            queue.put_nowait(self._event(runtime, runtime.session.status.value))
        else:
            runtime.subscribers.append(queue)
        return queue

    # ------------------------------------------------------------------- events

    @staticmethod
    def _event(runtime: _SessionRuntime, kind: str, **extra: Any) -> Dict[str, Any]:
        return {
            "type": kind,
            "session_id": runtime.session.id,
            "status": runtime.session.status.value,
            "stats": runtime.session.stats.to_dict(),
            **extra,
        }

    def _emit(self, runtime: _SessionRuntime, kind: str, **extra: Any) -> None:
        event = self._event(runtime, kind, **extra)
        for queue in runtime.subscribers:
            queue.put_nowait(event)

    @staticmethod
    async def _notify(runtime: _SessionRuntime) -> None:
        async with runtime.work_changed:
            runtime.work_changed.notify_all()

    # -------------------------------------------------------------------- run

    async def _run(self, runtime: _SessionRuntime) -> None:
        session = runtime.session
        config = session.config
        session.status = SessionStatus.RUNNING
        session.stats.start_time = session.stats.start_time or utcnow()
        session.stats.end_time = None
        gauge_add("active_sessions", 1)
        self._emit(runtime, "started")

        try:
            with bound_contextvars(session_id=session.id):
                workers = [
                    asyncio.create_task(self._worker(runtime, f"worker-{i}"), name=f"crawl-{session.id}-{i}")
                    for i in range(config.concurrent)
                ]
                results = await asyncio.gather(*workers, return_exceptions=True)
                faults = [r for r in results if isinstance(r, Exception)]
                if faults:
                    raise faults[0]
        except Exception as e:
            session.status = SessionStatus.FAILED
            session.error = f"Scheduler fault: {e}"
            logger.exception("Crawl session failed", session_id=session.id)
        else:
            if self._start_url_failed(runtime):
                session.status = SessionStatus.FAILED
                session.error = runtime.start_task.last_error if runtime.start_task else "Start URL failed"
            else:
                session.status = SessionStatus.COMPLETED
        finally:
            gauge_add("active_sessions", -1)

        session.stats.current_url = None
        session.stats.end_time = utcnow()
        if runtime.stopped and session.status is SessionStatus.COMPLETED:
            self._emit(runtime, "stopped")
        self._emit(runtime, session.status.value, error=session.error)
        runtime.subscribers.clear()
        await self.persistence.save_session(session)
        runtime.done.set()
        logger.info(
            "Crawl session finished",
            session_id=session.id,
            status=session.status.value,
            processed=session.stats.processed_urls,
            failed=session.stats.failed_urls,
            skipped=session.stats.skipped_urls,
            total=session.stats.total_urls,
            error=session.error,
        )

    @staticmethod
    def _start_url_failed(runtime: _SessionRuntime) -> bool:
        task = runtime.start_task
        return (
            task is not None
            and task.status is TaskStatus.FAILED
            and runtime.session.stats.processed_urls == 0
        )

    async def _next_task(self, runtime: _SessionRuntime) -> Optional[URLTask]:
        """Claim the next task, waiting while others are in flight. None means finished."""
        while True:
            await runtime.resume_event.wait()
            if runtime.stopped:
                return None
            task = runtime.frontier.pop()
            if task is not None:
                runtime.active += 1
                return task
            async with runtime.work_changed:
                if runtime.stopped or (runtime.active == 0 and runtime.frontier.pending_count == 0):
                    runtime.work_changed.notify_all()
                    return None
                await runtime.work_changed.wait()

    async def _worker(self, runtime: _SessionRuntime, worker_id: str) -> None:
        while True:
            task = await self._next_task(runtime)
            if task is None:
                return
            try:
                if runtime.stopped:
                    runtime.frontier.requeue(task)
                    continue
                if not runtime.frontier.mark_visited(task):
                    continue
                await self._process(runtime, task, worker_id)
            finally:
                runtime.active -= 1
                await self._notify(runtime)

    async def _skip_reason(self, runtime: _SessionRuntime, task: URLTask) -> Optional[str]:
        session = runtime.session
        config = session.config
        if task.depth > config.max_depth:
            return "depth"
        if not is_internal_url(task.url, session.domain):
            return "external"
        if task.depth > 0 and not runtime.patterns.matches(task.url):
            return "pattern"
        if config.respect_robots:
            user_agent = config.user_agent or self.settings.crawler.user_agent
            try:
                await self.robots.check(task.url, user_agent)
            except RobotsDisallowedError as e:
                logger.debug("Robots disallowed", url=task.url, reason=e.reason)
                return "robots"
        return None

    async def _process(self, runtime: _SessionRuntime, task: URLTask, worker_id: str) -> None:
        session = runtime.session
        config = session.config
        stats = session.stats
        log = logger.bind(url=task.url, depth=task.depth, worker_id=worker_id)

        reason = await self._skip_reason(runtime, task)
        if reason is not None:
            runtime.frontier.mark_skipped(task, reason)
            stats.total_urls -= 1
            stats.skipped_urls += 1
            increment("pages_skipped", labels={"reason": reason})
            log.debug("URL skipped", reason=reason)
            return

        if runtime.auth_failure is not None and config.authentication.enabled:
            self._record_failure(runtime, task, runtime.auth_failure, log)
            return

        domain = extract_domain(task.url)
        interval = config.delay_seconds
        if config.respect_robots:
            crawl_delay = await self.robots.crawl_delay(task.url, config.user_agent or self.settings.crawler.user_agent)
            if crawl_delay is not None:
                interval = max(interval, crawl_delay)
        await self.rate_limiter.wait_for_domain(domain, interval)

        if runtime.stopped:
            runtime.frontier.requeue(task)
            return

        stats.current_url = task.url
        try:
            content, method = await self.selector.fetch_with_strategy(task.url, config)
        except AllMethodsFailed as e:
            auth_error = e.auth_error
            if auth_error is not None:
                runtime.auth_failure = auth_error
                self._record_failure(runtime, task, auth_error, log)
            else:
                self._apply_retry_after(domain, e)
                self.rate_limiter.record_error(domain)
                self._record_failure(runtime, task, e, log)
            return
        except CrawlerError as e:
            self._record_failure(runtime, task, e, log)
            return

        structured: List[StructuredDataItem] = []
        extracted_total = 0
        if config.extraction.enable_structured_data:
            try:
                extraction = await self.structured_extractor.extract(content, config.extraction)
            except Exception as e:
                error = ExtractionError(f"Structured extraction failed: {e}", url=task.url)
                self._record_failure(runtime, task, error, log)
                return
            structured = extraction.items
            extracted_total = extraction.extracted_total

        runtime.frontier.mark_completed(task)
        runtime.content.append(content)
        runtime.structured.extend(structured)
        stats.processed_urls += 1
        stats.extracted_items += extracted_total
        enqueued = self._enqueue_links(runtime, task, content)

        increment("pages_processed", labels={"method": method})
        histogram("content_quality", content.quality_score)
        log.info(
            "Page processed",
            method=method,
            quality=content.quality_score,
            words=content.word_count,
            links_enqueued=enqueued,
            structured_items=len(structured),
        )
        self._emit(runtime, "page_processed", url=task.url, method=method)

        await self.persistence.save_content(session.id, content)
        await self.persistence.save_structured_data(session.id, structured)
        await self.persistence.save_session(session)

    def _apply_retry_after(self, domain: str, error: AllMethodsFailed) -> None:
        for err in error.errors.values():
            if isinstance(err, NetworkError) and err.status in (429, 503) and err.headers:
                self.rate_limiter.update_from_response(domain, err.headers)

    def _enqueue_links(self, runtime: _SessionRuntime, task: URLTask, content: ExtractedContent) -> int:
        session = runtime.session
        config = session.config
        stats = session.stats
        if task.depth + 1 > config.max_depth:
            return 0
        enqueued = 0
        for link in content.internal_links:
            if stats.total_urls >= config.max_pages:
                break
            if not is_internal_url(link.href, session.domain) or not runtime.patterns.matches(link.href):
                continue
            if runtime.frontier.add(link.href, depth=task.depth + 1, parent_url=task.url) is not None:
                stats.total_urls += 1
                enqueued += 1
        return enqueued

    def _record_failure(self, runtime: _SessionRuntime, task: URLTask, error: CrawlerError, log: Any) -> None:
        runtime.frontier.mark_failed(task, error.reason)
        runtime.session.stats.failed_urls += 1
        error_type = "AuthenticationError" if isinstance(error, AuthenticationError) else type(error).__name__
        increment("pages_failed", labels={"reason": error_type})
        log.warning("Page failed", error=error.reason, error_type=type(error).__name__, attempts=task.attempts)
        self._emit(runtime, "page_failed", url=task.url, error=error.reason, error_type=error_type)
