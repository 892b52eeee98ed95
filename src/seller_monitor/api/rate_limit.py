"""Serialising rate limiter shared by every marketplace call."""
from __future__ import annotations

import threading
import time
from collections.abc import Callable


class RateLimiter:
    """Enforces a fixed minimum delay between dispatches.

    Callers block in :meth:`acquire` while holding the lock, so concurrent
    callers are released one at a time, each at least ``min_interval`` seconds
    after the previous one.
    """

    def __init__(
        self,
        min_interval: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._min_interval = max(0.0, min_interval)
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._last_dispatch: float | None = None

    def acquire(self) -> None:
        with self._lock:
            if self._last_dispatch is not None:
                wait = self._min_interval - (self._clock() - self._last_dispatch)
                if wait > 0:
                    self._sleep(wait)
            self._last_dispatch = self._clock()
