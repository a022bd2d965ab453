"""
Helpers for validating metric value changes during tests.

Labelled Prometheus samples are read through the default registry so the
checks work for counters, gauges and histograms alike.
"""

from contextlib import contextmanager
from typing import Dict, Optional

from prometheus_client import REGISTRY


def sample_value(sample_name: str, labels: Optional[Dict[str, str]] = None) -> float:
    """Current value of a sample, 0.0 when it has not been observed yet."""
    return REGISTRY.get_sample_value(sample_name, labels or {}) or 0.0


@contextmanager
def metric_delta(sample_name: str, expected_delta: float = 1, labels: Optional[Dict[str, str]] = None):
    """
    Context manager asserting that a sample changes by ``expected_delta``.

    Usage:
        with metric_delta("adaptivecrawl_pages_processed_total", 1, {"method": "static"}):
            ...
    """
    initial_value = sample_value(sample_name, labels)
    yield
    actual_delta = sample_value(sample_name, labels) - initial_value
    if actual_delta != expected_delta:
        raise AssertionError(
            f"Metric {sample_name}{labels or ''} changed by {actual_delta}, expected {expected_delta}"
        )
