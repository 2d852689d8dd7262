"""
iobabel Prometheus Metrics Collector

Prometheus text exposition (format 0.0.4) rendered in-process, without
``prometheus_client``.

Metric types:
    - Counter        monotonically increasing (e.g. rpc_requests_total)
    - LabeledCounter one series per label value; callers keep the label set bounded
    - Gauge          last value set (e.g. ws_connections)
    - Histogram      cumulative latency buckets
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Tuple

CONTENT_TYPE = "text/plain; version=0.0.4; charset=utf-8"


def _escape_label(value: str) -> str:
    return value.replace("\\", "\\\\").replace("\n", "\\n").replace('"', '\\"')


def _header(name: str, help_text: str, kind: str) -> List[str]:
    lines = [f"# HELP {name} {help_text}"] if help_text else []
    lines.append(f"# TYPE {name} {kind}")
    return lines


# ---------------------------------------------------------------------------
# Metric primitives
# ---------------------------------------------------------------------------

@dataclass
class Counter:
    name: str
    help: str = ""
    _value: float = 0.0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def inc(self, amount: float = 1.0) -> None:
        if amount < 0:
            raise ValueError("Counter can only be incremented")
        with self._lock:
            self._value += amount

    @property
    def value(self) -> float:
        return self._value

    def expose(self) -> str:
        return "\n".join(_header(self.name, self.help, "counter") + [f"{self.name} {self._value}"])


@dataclass
class LabeledCounter:
    """Counter family keyed by a single label."""
    name: str
    help: str = ""
    label: str = "method"
    _values: Dict[str, float] = field(default_factory=dict, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def inc(self, label_value: str, amount: float = 1.0) -> None:
        if amount < 0:
            raise ValueError("Counter can only be incremented")
        with self._lock:
            self._values[label_value] = self._values.get(label_value, 0.0) + amount

    def value(self, label_value: str) -> float:
        return self._values.get(label_value, 0.0)

    @property
    def series_count(self) -> int:
        return len(self._values)

    def expose(self) -> str:
        lines = _header(self.name, self.help, "counter")
        with self._lock:
            lines.extend(
                f'{self.name}{{{self.label}="{_escape_label(key)}"}} {self._values[key]}'
                for key in sorted(self._values)
            )
        return "\n".join(lines)


@dataclass
class Gauge:
    name: str
    help: str = ""
    _value: float = 0.0

    def set(self, value: float) -> None:
        self._value = value

    @property
    def value(self) -> float:
        return self._value

    def expose(self) -> str:
        return "\n".join(_header(self.name, self.help, "gauge") + [f"{self.name} {self._value}"])


# Latency buckets in seconds; upstream calls dominate, so the tail is long
DEFAULT_BUCKETS: Tuple[float, ...] = (
    0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0,
)


@dataclass
class Histogram:
    name: str
    help: str = ""
    buckets: Tuple[float, ...] = DEFAULT_BUCKETS
    _cumulative: List[int] = field(default_factory=list, repr=False)
    _sum: float = 0.0
    _count: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def __post_init__(self):
        self.buckets = tuple(sorted(self.buckets))
        self._cumulative = [0] * len(self.buckets)

    def observe(self, value: float) -> None:
        with self._lock:
            self._sum += value
            self._count += 1
            for i, bound in enumerate(self.buckets):
                if value <= bound:
                    self._cumulative[i] += 1

    @property
    def count(self) -> int:
        return self._count

    def expose(self) -> str:
        lines = _header(self.name, self.help, "histogram")
        for bound, hits in zip(self.buckets, self._cumulative):
            lines.append(f'{self.name}_bucket{{le="{bound}"}} {hits}')
        lines.append(f'{self.name}_bucket{{le="+Inf"}} {self._count}')
        lines.append(f"{self.name}_sum {self._sum}")
        lines.append(f"{self.name}_count {self._count}")
        return "\n".join(lines)


class MetricsRegistry:
    """Ordered set of metrics rendered together by ``expose()``."""

    def __init__(self):
        self._metrics: Dict[str, Any] = {}

    def register(self, metric: Any) -> None:
        if metric.name in self._metrics:
            raise ValueError(f"Metric already registered: {metric.name}")
        self._metrics[metric.name] = metric

    def expose(self) -> str:
        return "\n\n".join(metric.expose() for metric in self._metrics.values()) + "\n"


# ---------------------------------------------------------------------------
# Gateway-level collector
# ---------------------------------------------------------------------------

INVALID_REQUEST_LABEL = "invalid"
# Shared label for every method name outside the method table
UNKNOWN_METHOD_LABEL = "unknown"


class MetricsCollector:
    """
    Pre-configured metrics for the gateway.

    Instantiate once at startup; the dispatcher and WebSocket manager
    update it as requests flow. Call ``expose()`` for the scrape body.
    """

    def __init__(self):
        self.registry = MetricsRegistry()

        # --- RPC metrics ---
        self.rpc_requests_total = Counter(
            "babel_rpc_requests_total",
            "Total JSON-RPC calls handled",
        )
        self.rpc_method_requests = LabeledCounter(
            "babel_rpc_method_requests_total",
            "JSON-RPC calls by method",
            label="method",
        )
        self.rpc_invalid_requests = Counter(
            "babel_rpc_invalid_requests_total",
            "Requests dropped by envelope validation",
        )
        self.rpc_unsupported_total = Counter(
            "babel_rpc_unsupported_total",
            "Calls to unknown or unsupported methods",
        )
        self.rpc_errors_total = Counter(
            "babel_rpc_errors_total",
            "Handler failures reported in the result",
        )
        self.rpc_latency = Histogram(
            "babel_rpc_latency_seconds",
            "JSON-RPC handler latency in seconds",
        )

        # --- WebSocket metrics ---
        self.ws_connections = Gauge(
            "babel_ws_connections",
            "Active WebSocket connections",
        )
        self.ws_subscriptions = Gauge(
            "babel_ws_subscriptions",
            "Active push subscriptions",
        )

        # --- System metrics ---
        self.uptime_seconds = Gauge(
            "babel_uptime_seconds",
            "Gateway uptime in seconds",
        )
        self._start_time = time.time()

        for attr_name in dir(self):
            attr = getattr(self, attr_name)
            if isinstance(attr, (Counter, LabeledCounter, Gauge, Histogram)):
                self.registry.register(attr)

    def increment_method_counter(self, label: str) -> None:
        """Count one call under ``label`` and in the global total."""
        self.rpc_method_requests.inc(label)
        self.rpc_requests_total.inc()
        if label == INVALID_REQUEST_LABEL:
            self.rpc_invalid_requests.inc()

    def update_uptime(self) -> None:
        """Refresh the uptime gauge."""
        self.uptime_seconds.set(time.time() - self._start_time)

    def expose(self) -> str:
        """
        Render all metrics in Prometheus text exposition format.

        Automatically updates uptime before rendering.
        """
        self.update_uptime()
        return self.registry.expose()
