"""
Client-side throttle for promo-code attempts.

Moving window: at most ``limit`` attempts per rolling ``window_seconds``
per session key.  A rejected attempt is not counted, and the wait time is
the number of seconds until the oldest counted attempt leaves the window.
"""

from __future__ import annotations

import math
import time

from limits import RateLimitItemPerSecond
from limits.storage import MemoryStorage
from limits.strategies import MovingWindowRateLimiter


class AttemptLimiter:
    def __init__(self, limit: int = 5, window_seconds: int = 60):
        self.item = RateLimitItemPerSecond(limit, window_seconds)
        self._limiter = MovingWindowRateLimiter(MemoryStorage())

    def try_acquire(self, key: str) -> tuple[bool, int]:
        """Record one attempt for *key*.  Returns ``(allowed, retry_after)``."""
        if self._limiter.hit(self.item, key):
            return True, 0
        return False, self.retry_after(key)

    def retry_after(self, key: str) -> int:
        stats = self._limiter.get_window_stats(self.item, key)
        return max(1, math.ceil(stats[0] - time.time()))

    def clear(self, key: str) -> None:
        self._limiter.clear(self.item, key)
