"""Rate limiting layer for outbound Zapmail calls.

Implementation: sliding window log.
    - Per key, keep the timestamps of requests made in the trailing window
    - Before a request, prune timestamps older than the window
    - If the window is full, wait until the oldest timestamp ages out
    - Then record the request

Design decisions:
    - Blocking, not rejecting. Callers never see a rate-limit error from
      this layer; they just wait.
    - In-memory only, one shared instance. Every outbound call goes
      through the same "api" key so the throttle is global.
    - Async-aware. An asyncio.Lock serialises the check-wait-record
      sequence so concurrent callers cannot over-admit a window.
"""

from __future__ import annotations

import asyncio
import time
from collections import defaultdict
from typing import Any, Awaitable, Callable

import structlog

logger = structlog.get_logger()

DEFAULT_KEY = "api"


class SlidingWindowRateLimiter:
    """At most ``max_requests`` per ``window_s`` seconds, per key.

    Args:
        max_requests: Requests admitted per trailing window
        window_s: Window length in seconds
        clock: Monotonic time source (injectable for tests)
        sleep: Awaitable sleep (injectable for tests)
    """

    def __init__(
        self,
        max_requests: int = 10,
        window_s: float = 60.0,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if max_requests < 1:
            raise ValueError("max_requests must be >= 1")
        self.max_requests = max_requests
        self.window_s = window_s
        self._clock = clock
        self._sleep = sleep
        self._windows: dict[str, list[float]] = defaultdict(list)
        self._lock: asyncio.Lock | None = None

    def _get_lock(self) -> asyncio.Lock:
        # Created lazily so the limiter can be built outside a running loop.
        if self._lock is None:
            self._lock = asyncio.Lock()
        return self._lock

    def _prune(self, key: str, now: float) -> list[float]:
        window_start = now - self.window_s
        recent = [t for t in self._windows[key] if t > window_start]
        self._windows[key] = recent
        return recent

    async def acquire(self, key: str = DEFAULT_KEY) -> float:
        """Wait (if needed) for a slot, record the request.

        Returns the number of seconds the caller was suspended.
        """
        async with self._get_lock():
            now = self._clock()
            recent = self._prune(key, now)
            waited = 0.0

            if len(recent) >= self.max_requests:
                oldest = min(recent)
                wait_time = max(0.0, self.window_s - (now - oldest))
                if wait_time > 0:
                    logger.info(
                        "rate_limit_wait",
                        key=key,
                        wait_s=round(wait_time, 3),
                        in_window=len(recent),
                    )
                    await self._sleep(wait_time)
                    waited = wait_time
                now = self._clock()
                recent = self._prune(key, now)

            recent.append(now)
            return waited

    def in_window(self, key: str = DEFAULT_KEY) -> int:
        """Requests currently counted in the window (approximate, no lock)."""
        return len(self._prune(key, self._clock()))

    @property
    def metrics(self) -> dict[str, Any]:
        """Return current limiter state for observability."""
        now = self._clock()
        return {
            "max_requests": self.max_requests,
            "window_s": self.window_s,
            "keys": {key: len(self._prune(key, now)) for key in list(self._windows)},
        }
