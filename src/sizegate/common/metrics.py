"""Metrics utilities for exposing Prometheus-formatted data."""

from __future__ import annotations

import threading
from typing import Callable, Dict


class Counter:
    def __init__(self, name: str, description: str = "") -> None:
        self.name = name
        self.description = description
        self._value = 0.0
        self._lock = threading.Lock()

    def inc(self, amount: float = 1.0) -> None:
        with self._lock:
            self._value += amount

    @property
    def value(self) -> float:
        return self._value

    def render(self) -> str:
        return f"# HELP {self.name} {self.description}\n# TYPE {self.name} counter\n{self.name} {self._value}\n"


class Gauge:
    def __init__(self, name: str, description: str = "", supplier: Callable[[], float] | None = None) -> None:
        self.name = name
        self.description = description
        self._value = 0.0
        self._supplier = supplier

    def set(self, value: float) -> None:
        self._value = value

    def set_supplier(self, supplier: Callable[[], float] | None) -> None:
        self._supplier = supplier

    @property
    def value(self) -> float:
        return self._supplier() if self._supplier else self._value

    def render(self) -> str:
        return f"# HELP {self.name} {self.description}\n# TYPE {self.name} gauge\n{self.name} {self.value}\n"


class Histogram:
    def __init__(self, name: str, buckets: list[float], description: str = "") -> None:
        self.name = name
        self.description = description
        self._buckets = sorted(buckets)
        self._counts = {b: 0 for b in self._buckets}
        self._sum = 0.0
        self._count = 0
        self._lock = threading.Lock()

    def observe(self, value: float) -> None:
        with self._lock:
            self._count += 1
            self._sum += value
            for bucket in self._buckets:
                if value <= bucket:
                    self._counts[bucket] += 1

    @property
    def count(self) -> int:
        return self._count

    def render(self) -> str:
        lines = [f"# HELP {self.name} {self.description}", f"# TYPE {self.name} histogram"]
        for bucket in self._buckets:
            lines.append(f'{self.name}_bucket{{le="{bucket}"}} {self._counts[bucket]}')
        lines.append(f'{self.name}_bucket{{le="+Inf"}} {self._count}')
        lines.append(f"{self.name}_sum {self._sum}")
        lines.append(f"{self.name}_count {self._count}")
        return "\n".join(lines) + "\n"


class MetricsRegistry:
    def __init__(self) -> None:
        self._metrics: Dict[str, object] = {}

    def register(self, metric):
        self._metrics[getattr(metric, "name")] = metric
        return metric

    def render(self) -> str:
        return "\n".join(metric.render() for metric in self._metrics.values()) + "\n"


GLOBAL_REGISTRY = MetricsRegistry()

REQUEST_COUNTER = GLOBAL_REGISTRY.register(Counter("sizegate_requests_total", "Total inbound requests"))
CONTENT_REQUEST_COUNTER = GLOBAL_REGISTRY.register(
    Counter("sizegate_content_requests_total", "Inbound requests addressing content by identifier")
)
ALLOWED_COUNTER = GLOBAL_REGISTRY.register(Counter("sizegate_admission_allowed_total", "Content requests admitted"))
DENIED_COUNTER = GLOBAL_REGISTRY.register(Counter("sizegate_admission_denied_total", "Content requests over quota"))
ERROR_COUNTER = GLOBAL_REGISTRY.register(
    Counter("sizegate_admission_errors_total", "Content requests failed by data source errors")
)
CACHE_HIT_COUNTER = GLOBAL_REGISTRY.register(Counter("sizegate_decision_cache_hits_total", "Decision cache hits"))
CACHE_MISS_COUNTER = GLOBAL_REGISTRY.register(Counter("sizegate_decision_cache_misses_total", "Decision cache misses"))
CACHE_EVICTION_COUNTER = GLOBAL_REGISTRY.register(
    Counter("sizegate_decision_cache_evictions_total", "Decision cache entries evicted by capacity")
)
CACHE_ENTRIES_GAUGE = GLOBAL_REGISTRY.register(Gauge("sizegate_decision_cache_entries", "Decision cache entries"))
LOOKUP_COUNTER = GLOBAL_REGISTRY.register(Counter("sizegate_graph_lookups_total", "Graph data source lookups"))
UPSTREAM_ERROR_COUNTER = GLOBAL_REGISTRY.register(
    Counter("sizegate_upstream_errors_total", "Requests that failed to reach the upstream")
)
TRAVERSAL_LATENCY_HISTOGRAM = GLOBAL_REGISTRY.register(
    Histogram(
        "sizegate_traversal_latency_seconds",
        buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
        description="Latency of graph size traversals",
    )
)
REQUEST_LATENCY_HISTOGRAM = GLOBAL_REGISTRY.register(
    Histogram(
        "sizegate_request_latency_seconds",
        buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0],
        description="Gateway request latency",
    )
)
