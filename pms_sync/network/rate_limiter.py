"""Per-adapter outbound request throttle."""

from __future__ import annotations

import time
from collections import deque
from typing import Callable

import structlog

from pms_sync.metrics import rate_limit_waits

logger = structlog.get_logger(__name__)

WINDOW_SECONDS = 60.0


class RateLimiter:
    """
    Sliding-window limiter: at most ``requests_per_minute`` calls in any 60s window.

    Each adapter instance owns its limiter; instances must never be shared
    across connections. There is no internal locking because one connection's
    sync runs sequentially.

    Example:
        >>> limiter = RateLimiter(requests_per_minute=60, name="smoobu")
        >>> limiter.throttle()  # blocks only once 60 calls happened in the last minute
    """

    def __init__(
        self,
        requests_per_minute: int,
        name: str = "default",
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if requests_per_minute < 1:
            raise ValueError("requests_per_minute must be at least 1")
        self.requests_per_minute = requests_per_minute
        self.name = name
        self._clock = clock
        self._sleep = sleep
        self._timestamps: deque[float] = deque()

    def _prune(self, now: float) -> None:
        while self._timestamps and now - self._timestamps[0] >= WINDOW_SECONDS:
            self._timestamps.popleft()

    def throttle(self) -> float:
        """
        Block until a request slot is free, then consume it.

        Returns:
            float: Seconds spent waiting (0.0 when a slot was free)
        """
        waited = 0.0
        now = self._clock()
        self._prune(now)

        while len(self._timestamps) >= self.requests_per_minute:
            wait = WINDOW_SECONDS - (now - self._timestamps[0])
            if wait > 0:
                logger.debug("rate_limit_wait", limiter=self.name, wait_seconds=round(wait, 3))
                rate_limit_waits.labels(adapter=self.name).inc()
                self._sleep(wait)
                waited += wait
            now = self._clock()
            self._prune(now)

        self._timestamps.append(now)
        return waited

    @property
    def in_window(self) -> int:
        self._prune(self._clock())
        return len(self._timestamps)
