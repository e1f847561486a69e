# ─────────────────────────────────────────────────────────────────────────────
# Admission Controller: per-client token buckets with idle eviction
# ─────────────────────────────────────────────────────────────────────────────
# One TokenBucket per client key (1 token/s, burst 10 by default). Entries
# are created on a key's first request and dropped by a periodic sweep once
# idle past the threshold; a returning client starts over with a full bucket.
#
# Thread-safe: the registry dict is guarded by a single threading.Lock held
# only for O(1) dict work. Each bucket has its own lock for token accounting,
# so allow() never holds the registry lock while touching a bucket.
# ─────────────────────────────────────────────────────────────────────────────

from __future__ import annotations

import asyncio
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field

import structlog

logger = structlog.get_logger(__name__)

Clock = Callable[[], float]

DEFAULT_RATE_PER_SECOND = 1.0
DEFAULT_BURST = 10
DEFAULT_SWEEP_INTERVAL_SECONDS = 300.0
DEFAULT_IDLE_SECONDS = 600.0


class TokenBucket:
    """Continuous-refill token bucket. Starts full."""

    def __init__(self, rate: float, burst: int, now: float) -> None:
        self.rate = rate
        self.burst = burst
        self._tokens = float(burst)
        self._last = now
        self._lock = threading.Lock()

    def _refill(self, now: float) -> None:
        elapsed = max(0.0, now - self._last)
        self._tokens = min(float(self.burst), self._tokens + elapsed * self.rate)
        self._last = max(self._last, now)

    def allow(self, now: float) -> bool:
        """Take one token if available."""
        with self._lock:
            self._refill(now)
            if self._tokens >= 1.0:
                self._tokens -= 1.0
                return True
            return False

    def tokens(self, now: float) -> float:
        """Tokens available at `now` (refills, does not consume).

        Inspection only; admission goes through allow().
        """
        with self._lock:
            self._refill(now)
            return self._tokens


@dataclass
class VisitorEntry:
    limiter: TokenBucket
    last_seen: float


@dataclass
class AdmissionController:
    """Registry of VisitorEntry by client key."""

    rate: float = DEFAULT_RATE_PER_SECOND
    burst: int = DEFAULT_BURST
    idle_seconds: float = DEFAULT_IDLE_SECONDS
    clock: Clock = field(default=time.monotonic, repr=False)

    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)
    _visitors: dict[str, VisitorEntry] = field(default_factory=dict, repr=False)

    def _visitor(self, key: str, now: float) -> TokenBucket:
        with self._lock:
            entry = self._visitors.get(key)
            if entry is None:
                entry = VisitorEntry(TokenBucket(self.rate, self.burst, now), now)
                self._visitors[key] = entry
            else:
                entry.last_seen = now
            return entry.limiter

    def allow(self, key: str) -> bool:
        """Admit one request for `key`, creating its bucket on first sight."""
        now = self.clock()
        return self._visitor(key, now).allow(now)

    def sweep(self) -> int:
        """Drop entries idle longer than idle_seconds. Returns the count removed."""
        cutoff = self.clock() - self.idle_seconds
        with self._lock:
            stale = [key for key, entry in self._visitors.items() if entry.last_seen < cutoff]
            for key in stale:
                del self._visitors[key]
            remaining = len(self._visitors)
        if stale:
            logger.info("visitors_swept", evicted=len(stale), remaining=remaining)
        return len(stale)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._visitors

    def __len__(self) -> int:
        with self._lock:
            return len(self._visitors)

    @property
    def retry_after_seconds(self) -> float:
        """Time for one token to refill."""
        return 1.0 / self.rate if self.rate > 0 else self.idle_seconds


async def sweep_forever(
    controller: AdmissionController,
    interval_seconds: float = DEFAULT_SWEEP_INTERVAL_SECONDS,
    on_sweep: Callable[[int], None] | None = None,
) -> None:
    """Sweep on a fixed interval until cancelled.

    Meant to run as a task owned by the app lifespan, which cancels it on
    shutdown.
    """
    logger.info("visitor_sweeper_started", interval_s=interval_seconds)
    try:
        while True:
            await asyncio.sleep(interval_seconds)
            evicted = controller.sweep()
            if on_sweep is not None:
                on_sweep(evicted)
    except asyncio.CancelledError:
        logger.info("visitor_sweeper_stopped", tracked=len(controller))
        raise
