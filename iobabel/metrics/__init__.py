"""
iobabel Metrics Module

Prometheus-compatible metrics for monitoring.
"""

from .collector import (
    CONTENT_TYPE,
    Counter,
    Gauge,
    Histogram,
    LabeledCounter,
    MetricsCollector,
    MetricsRegistry,
)

__all__ = [
    "CONTENT_TYPE",
    "Counter",
    "Gauge",
    "Histogram",
    "LabeledCounter",
    "MetricsCollector",
    "MetricsRegistry",
]
