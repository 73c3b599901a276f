"""Content KPI Engine — Async Rate Limiter.

Sliding-window limiter for requests-per-minute quotas of the reasoning
targets. The ConcurrencyLimiter bounds in-flight work; this bounds how
often a single provider is called.
"""

from __future__ import annotations

import asyncio
import time
from collections import deque

from content_kpi.utils.logger import get_logger

logger = get_logger(__name__)


class AsyncRateLimiter:
    """At most max_calls acquisitions per period_seconds.

    Attributes:
        max_calls: Calls allowed within the window.
        period: Window length in seconds.
    """

    def __init__(self, max_calls: int, period_seconds: float) -> None:
        """Initialize the rate limiter.

        Args:
            max_calls: Calls allowed per window (must be >= 1).
            period_seconds: Window length in seconds.

        Raises:
            ValueError: If max_calls < 1.
        """
        if max_calls < 1:
            raise ValueError(f"max_calls must be >= 1, got {max_calls}")
        self.max_calls = max_calls
        self.period = period_seconds
        self._timestamps: deque[float] = deque()
        self._lock = asyncio.Lock()

    def _cleanup_expired(self, now: float) -> None:
        cutoff = now - self.period
        while self._timestamps and self._timestamps[0] <= cutoff:
            self._timestamps.popleft()

    @property
    def available_slots(self) -> int:
        """Approximate free slots in the current window."""
        self._cleanup_expired(time.monotonic())
        return max(0, self.max_calls - len(self._timestamps))

    async def acquire(self) -> None:
        """Wait until a slot is free, then take it.

        Waiters are served in lock order; the lock is held while sleeping
        so later callers cannot overtake an earlier one.
        """
        async with self._lock:
            while True:
                now = time.monotonic()
                self._cleanup_expired(now)
                if len(self._timestamps) < self.max_calls:
                    self._timestamps.append(now)
                    return

                wait_time = self._timestamps[0] + self.period - now
                logger.debug(
                    "Rate limit reached (%d/%d). Waiting %.2f seconds...",
                    len(self._timestamps), self.max_calls, wait_time,
                )
                await asyncio.sleep(max(wait_time, 0.0))

    def __repr__(self) -> str:
        return f"AsyncRateLimiter(max_calls={self.max_calls}, period={self.period}s)"
