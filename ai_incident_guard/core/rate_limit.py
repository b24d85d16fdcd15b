"""
In-process sliding window rate limiter.

Tracks recent request timestamps per identifier (a user id, or the project
id when no user is known) and answers whether one more request fits under a
per-minute limit. State lives in memory and is guarded by a lock, so one
limiter can be shared by the threads of a single process.
"""

import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, Optional


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of a rate limit check."""
    allowed: bool
    limit: int
    remaining: int
    retry_after_seconds: float = 0.0


class SlidingWindowRateLimiter:
    """Count hits per identifier over a rolling window."""

    def __init__(
        self,
        window_seconds: float = 60.0,
        sweep_interval: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.window_seconds = window_seconds
        self.sweep_interval = sweep_interval
        self._clock = clock
        self._hits: Dict[str, Deque[float]] = {}
        self._lock = threading.Lock()
        self._last_sweep = clock()

    def hit(self, identifier: str, limit: int) -> RateLimitDecision:
        """Record one request for ``identifier`` if it fits under ``limit``.

        Rejected requests are not recorded, so a caller that backs off
        regains capacity as old hits age out of the window.
        """
        if limit < 1:
            raise ValueError("limit must be positive")

        now = self._clock()
        with self._lock:
            if now - self._last_sweep >= self.sweep_interval:
                self._sweep_locked(now)

            hits = self._hits.setdefault(identifier, deque())
            self._evict(hits, now)

            if len(hits) >= limit:
                retry_after = max(0.0, hits[0] + self.window_seconds - now)
                return RateLimitDecision(
                    allowed=False,
                    limit=limit,
                    remaining=0,
                    retry_after_seconds=round(retry_after, 2),
                )

            hits.append(now)
            return RateLimitDecision(allowed=True, limit=limit, remaining=limit - len(hits))

    def current(self, identifier: str) -> int:
        """Number of hits for ``identifier`` still inside the window."""
        now = self._clock()
        with self._lock:
            hits = self._hits.get(identifier)
            if hits is None:
                return 0
            self._evict(hits, now)
            return len(hits)

    def sweep(self, now: Optional[float] = None) -> int:
        """Drop identifiers with no hits left in the window.

        Returns:
            Number of identifiers dropped
        """
        with self._lock:
            return self._sweep_locked(self._clock() if now is None else now)

    def _sweep_locked(self, now: float) -> int:
        idle = []
        for identifier, hits in self._hits.items():
            self._evict(hits, now)
            if not hits:
                idle.append(identifier)
        for identifier in idle:
            del self._hits[identifier]
        self._last_sweep = now
        return len(idle)

    def _evict(self, hits: Deque[float], now: float) -> None:
        cutoff = now - self.window_seconds
        while hits and hits[0] <= cutoff:
            hits.popleft()
