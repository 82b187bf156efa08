"""In-memory sliding window limiter guarding the public auth endpoints."""

from __future__ import annotations

import math
import time
from collections import deque
from dataclasses import dataclass
from threading import Lock
from typing import Deque, DefaultDict


@dataclass(frozen=True, slots=True)
class RateDecision:
    """Verdict for one attempt; ``retry_after`` is in whole seconds."""

    allowed: bool
    retry_after: int = 0


class SlidingWindowRateLimiter:
    """Thread-safe sliding window rate limiter."""

    def __init__(self, max_requests: int, window_seconds: int) -> None:
        self._max_requests = max_requests
        self._window = window_seconds
        self._events: DefaultDict[str, Deque[float]] = DefaultDict(deque)
        self._last_sweep = time.time()
        self._lock = Lock()

    def hit(self, key: str) -> RateDecision:
        """Record an attempt for ``key`` unless its window is already full."""
        now = time.time()
        with self._lock:
            if now - self._last_sweep >= self._window:
                self._sweep(now)
            queue = self._events[key]
            while queue and now - queue[0] > self._window:
                queue.popleft()
            if len(queue) >= self._max_requests:
                wait = self._window - (now - queue[0])
                return RateDecision(False, max(1, math.ceil(wait)))
            queue.append(now)
            return RateDecision(True)

    def reset(self, key: str) -> None:
        """Forget every recorded attempt for ``key``."""
        with self._lock:
            self._events.pop(key, None)

    def _sweep(self, now: float) -> None:
        # drop keys whose newest attempt has left the window; caller holds the lock
        stale = [key for key, queue in self._events.items() if not queue or now - queue[-1] > self._window]
        for key in stale:
            del self._events[key]
        self._last_sweep = now
