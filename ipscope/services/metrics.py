# ─────────────────────────────────────────────────────────────────────────────
# Service Metrics: thread-safe counters for the gate and the resolver
# ─────────────────────────────────────────────────────────────────────────────
# Counts admitted/denied requests, preflights, identity resolutions and
# reverse-DNS fallbacks. Exposed via GET /metrics and bridged into
# Prometheus by routes/prometheus.py.
#
# Thread-safe: geo lookups run in the default thread pool and the sweeper
# reports from its own task, so all mutations use a threading.Lock.
#
# Bounded: latency history uses deque(maxlen=1000), auto-evicts oldest.
# ─────────────────────────────────────────────────────────────────────────────

from __future__ import annotations

import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any


@dataclass
class ServiceMetrics:
    """Thread-safe service counters."""

    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    requests_admitted: int = 0
    requests_denied: int = 0
    preflights: int = 0
    resolutions_total: int = 0
    rdns_fallbacks: int = 0
    geo_unresolved: int = 0
    visitors_evicted: int = 0

    _latency_history: deque[float] = field(default_factory=lambda: deque(maxlen=1000), repr=False)
    _start_time: float = field(default_factory=time.time, repr=False)

    def record_admission(self, allowed: bool) -> None:
        with self._lock:
            if allowed:
                self.requests_admitted += 1
            else:
                self.requests_denied += 1

    def record_preflight(self) -> None:
        with self._lock:
            self.preflights += 1

    def record_resolution(self, latency_ms: float, rdns_fallback: bool, geo_resolved: bool) -> None:
        """Record a completed identity resolution."""
        with self._lock:
            self.resolutions_total += 1
            self._latency_history.append(latency_ms)
            if rdns_fallback:
                self.rdns_fallbacks += 1
            if not geo_resolved:
                self.geo_unresolved += 1

    def record_sweep(self, evicted: int) -> None:
        with self._lock:
            self.visitors_evicted += evicted

    def to_dict(self) -> dict[str, Any]:
        """Serialize metrics for the /metrics endpoint."""
        with self._lock:
            latencies = sorted(self._latency_history)
            n = len(latencies)
            total = self.requests_admitted + self.requests_denied
            return {
                "requests_admitted": self.requests_admitted,
                "requests_denied": self.requests_denied,
                "denial_rate": round(self.requests_denied / max(total, 1), 3),
                "preflights": self.preflights,
                "resolutions_total": self.resolutions_total,
                "rdns_fallbacks": self.rdns_fallbacks,
                "geo_unresolved": self.geo_unresolved,
                "visitors_evicted": self.visitors_evicted,
                "resolve_latency_p50_ms": round(latencies[n // 2], 1) if n else 0,
                "resolve_latency_p95_ms": round(latencies[int(n * 0.95)], 1) if n else 0,
                "uptime_seconds": int(time.time() - self._start_time),
            }
