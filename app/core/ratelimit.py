"""Process-wide sliding-window rate limiter for outbound analyzer calls.

Every worker coroutine in the process awaits the same limiter before calling
the vision model, so the cap holds regardless of worker concurrency. There is
no per-tenant fairness: callers are admitted first-come-first-served.
"""

import asyncio
import time
from collections import deque
from collections.abc import Callable

WINDOW_SECONDS = 60.0


class SlidingWindowRateLimiter:
    """Admit at most ``max_calls`` acquisitions per rolling ``window`` seconds."""

    def __init__(
        self,
        max_calls: int,
        window: float = WINDOW_SECONDS,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], object] = asyncio.sleep,
    ) -> None:
        if max_calls < 1:
            raise ValueError("max_calls must be at least 1")
        self.max_calls = max_calls
        self.window = float(window)
        self._clock = clock
        self._sleep = sleep
        self._stamps: deque[float] = deque()
        self._lock = asyncio.Lock()

    def _evict(self, now: float) -> None:
        while self._stamps and now - self._stamps[0] >= self.window:
            self._stamps.popleft()

    def available(self) -> int:
        """Number of acquisitions that would succeed right now without waiting."""
        self._evict(self._clock())
        return self.max_calls - len(self._stamps)

    async def acquire(self) -> float:
        """Wait until a slot is free, take it, and return the seconds spent waiting."""
        waited = 0.0
        async with self._lock:
            while True:
                now = self._clock()
                self._evict(now)
                if len(self._stamps) < self.max_calls:
                    self._stamps.append(now)
                    return waited
                delay = max(self.window - (now - self._stamps[0]), 0.01)
                waited += delay
                await self._sleep(delay)
