"""Request counters kept by the monitor, with optional Prometheus export."""

from __future__ import annotations

import threading
from collections import defaultdict
from typing import Dict, Optional

from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest

DURATION_BUCKETS_MS = (50, 100, 200, 400, 800, 1600, 3200, 6400)


class MetricCounter:
    """Thread-safe name -> number map. Counters only grow until restart."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._values: Dict[str, float] = defaultdict(float)

    def increment(self, name: str, value: float = 1) -> None:
        try:
            amount = float(value)
        except (TypeError, ValueError):
            amount = 0.0
        with self._lock:
            self._values[name] += amount

    def set(self, name: str, value: float) -> None:
        with self._lock:
            self._values[name] = float(value)

    def get(self, name: str) -> float:
        with self._lock:
            return self._values.get(name, 0.0)

    def snapshot(self) -> Dict[str, float]:
        with self._lock:
            return dict(self._values)


class PrometheusMetrics:
    """Prometheus counters and histogram, registered in a private registry.

    Each monitor gets its own registry so several monitors (or tests) can live
    in one process without duplicate-registration errors.
    """

    def __init__(self, namespace: str = "secmon", registry: Optional[CollectorRegistry] = None) -> None:
        self.registry = registry or CollectorRegistry()
        self.requests_total = Counter(
            f"{namespace}_requests_total",
            "Total HTTP requests observed by the security monitor",
            registry=self.registry,
        )
        self.errors_total = Counter(
            f"{namespace}_errors_total",
            "Total error responses (>=400) observed by the security monitor",
            registry=self.registry,
        )
        self.status_total = Counter(
            f"{namespace}_status_code_total",
            "Responses by status code",
            ["code"],
            registry=self.registry,
        )
        self.duration_ms = Histogram(
            f"{namespace}_request_duration_ms",
            "Request duration (ms) observed by the security monitor",
            buckets=DURATION_BUCKETS_MS,
            registry=self.registry,
        )

    def observe_response(self, status_code: int, duration_ms: float) -> None:
        self.duration_ms.observe(duration_ms)
        self.status_total.labels(code=str(status_code)).inc()
        if status_code >= 400:
            self.errors_total.inc()

    def render(self) -> bytes:
        return generate_latest(self.registry)
