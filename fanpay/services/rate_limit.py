"""Checkout rate limit: fixed window per (user, client IP), process-local.

Best-effort abuse mitigation only. Counters live in this process, reset on
restart and are not shared between instances.
"""

import math
import time
from dataclasses import dataclass
from typing import Callable

from fanpay.core.config import get_settings
from fanpay.core.exceptions import RateLimitedError


@dataclass
class _Window:
    count: int
    reset_at: float


class FixedWindowRateLimiter:
    def __init__(self, max_requests: int, window_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._windows: dict[str, _Window] = {}

    def hit(self, key: str) -> int | None:
        """Count one request. Returns None when allowed, else seconds until the window resets."""
        now = self._clock()
        rec = self._windows.get(key)
        if rec is None or rec.reset_at <= now:
            self._windows[key] = _Window(count=1, reset_at=now + self.window_seconds)
            self._evict(now)
            return None
        if rec.count >= self.max_requests:
            return max(1, math.ceil(rec.reset_at - now))
        rec.count += 1
        return None

    def check(self, key: str) -> None:
        retry_after = self.hit(key)
        if retry_after is not None:
            raise RateLimitedError(retry_after)

    def reset(self) -> None:
        self._windows.clear()

    def _evict(self, now: float) -> None:
        if len(self._windows) < 10_000:
            return
        for k in [k for k, w in self._windows.items() if w.reset_at <= now]:
            del self._windows[k]


def checkout_key(user_id: str | None, client_ip: str) -> str:
    return f"checkout:{user_id or 'anon'}:{client_ip}"


_checkout_limiter: FixedWindowRateLimiter | None = None


def get_checkout_limiter() -> FixedWindowRateLimiter:
    global _checkout_limiter
    if _checkout_limiter is None:
        s = get_settings()
        _checkout_limiter = FixedWindowRateLimiter(s.checkout_rate_max, s.checkout_rate_window_seconds)
    return _checkout_limiter
