"""Async rate limiter spacing model-call starts."""

from __future__ import annotations

import asyncio
import time


class RateLimiter:
    """Allow at most ``requests_per_minute`` call starts per minute.

    Starts are spaced evenly (60 / rpm seconds apart) rather than allowed
    in bursts. A rate of 0 or less disables limiting.
    """

    def __init__(self, requests_per_minute: int) -> None:
        self._interval = 60.0 / requests_per_minute if requests_per_minute > 0 else 0.0
        self._next_start = 0.0
        self._lock = asyncio.Lock()

    @property
    def interval(self) -> float:
        return self._interval

    async def acquire(self) -> None:
        """Wait until the next call may start."""
        if self._interval <= 0:
            return
        async with self._lock:
            now = time.monotonic()
            wait = self._next_start - now
            self._next_start = max(now, self._next_start) + self._interval
        if wait > 0:
            await asyncio.sleep(wait)
