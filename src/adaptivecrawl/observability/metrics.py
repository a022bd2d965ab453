"""
Defines and manages Prometheus metrics for the crawler.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, Optional

import psutil
from prometheus_client import REGISTRY as _PROM_REGISTRY
from prometheus_client import Counter as _OrigCounter
from prometheus_client import Gauge as _OrigGauge
from prometheus_client import Histogram as _OrigHistogram
from prometheus_client import start_http_server

if TYPE_CHECKING:
    from adaptivecrawl.config.config import MonitoringConfig


def _duplicate_safe_factory(metric_cls):
    """Return a factory that reuses an existing collector if already present."""

    def _factory(name: str, documentation: str, *args, **kwargs):  # type: ignore[no-untyped-def]
        existing = _PROM_REGISTRY._names_to_collectors.get(name)
        if existing is not None:
            return existing

        try:
            return metric_cls(name, documentation, *args, **kwargs)
        except ValueError:
            # Registration lost the race, reuse the collector that won
            return _PROM_REGISTRY._names_to_collectors[name]

    return _factory


Counter = _duplicate_safe_factory(_OrigCounter)
Gauge = _duplicate_safe_factory(_OrigGauge)
Histogram = _duplicate_safe_factory(_OrigHistogram)


def _create_metrics() -> Dict[str, Any]:
    return {
        "pages_processed": Counter(
            "adaptivecrawl_pages_processed_total",
            "Pages fetched and extracted successfully",
            ["method"],
        ),
        "pages_failed": Counter(
            "adaptivecrawl_pages_failed_total",
            "Pages that exhausted every fetch method",
            ["reason"],
        ),
        "pages_skipped": Counter(
            "adaptivecrawl_pages_skipped_total",
            "Pages skipped before fetching",
            ["reason"],
        ),
        "fetch_latency_seconds": Histogram(
            "adaptivecrawl_fetch_latency_seconds",
            "Time taken by a single executor fetch",
            ["method"],
            buckets=[0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0, 120.0],
        ),
        "strategy_attempts": Counter(
            "adaptivecrawl_strategy_attempts_total",
            "Fetch attempts per method and outcome",
            ["method", "outcome"],
        ),
        "active_sessions": Gauge(
            "adaptivecrawl_active_sessions",
            "Crawl sessions currently running",
        ),
        "auth_attempts": Counter(
            "adaptivecrawl_auth_attempts_total",
            "Authentication attempts by type and outcome",
            ["auth_type", "outcome"],
        ),
        "browser_slots_in_use": Gauge(
            "adaptivecrawl_browser_slots_in_use",
            "Browser contexts currently checked out",
        ),
        "structured_items": Counter(
            "adaptivecrawl_structured_items_total",
            "Structured data items extracted, by schema and whether they passed the quality filter",
            ["schema", "accepted"],
        ),
        "content_quality": Histogram(
            "adaptivecrawl_content_quality_score",
            "Distribution of page quality scores (0-100)",
            buckets=[10, 20, 30, 40, 50, 60, 70, 80, 90, 100],
        ),
        "process_memory_bytes": Gauge(
            "adaptivecrawl_process_memory_bytes",
            "Resident memory of the crawler process",
        ),
    }


METRICS: Dict[str, Any] = _create_metrics()


class MetricsServer:
    """Owns the optional Prometheus exporter."""

    def __init__(self, config: MonitoringConfig) -> None:
        self.config = config
        self._started = False
        self._process: Optional[psutil.Process] = None

    def start(self) -> None:
        if self.config.prometheus_port and not self._started:
            start_http_server(self.config.prometheus_port)
            self._started = True
        self._process = psutil.Process()

    def update_process_metrics(self) -> None:
        if self._process is None:
            self._process = psutil.Process()
        METRICS["process_memory_bytes"].set(self._process.memory_info().rss)

    @property
    def started(self) -> bool:
        return self._started
