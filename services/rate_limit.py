"""Per-client fixed-window rate limiting, in memory.

Check-and-increment happens under one lock, so concurrent requests from the
same client never admit more than ``max_requests`` per window. Buckets are
kept in LRU order and bounded by ``max_buckets``; expired buckets are swept
once per window.
"""

import math
import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass


@dataclass
class RateLimitBucket:
    client_key: str
    window_start: float
    count: int = 0


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of a rate limit check."""

    allowed: bool
    limit: int
    remaining: int
    reset_after: float

    @property
    def retry_after(self) -> int:
        """Whole seconds until the window resets (Retry-After header)."""
        return max(1, math.ceil(self.reset_after))


class RateLimiter:
    """Admit at most ``max_requests`` per ``window_ms`` for each client key."""

    def __init__(
        self,
        window_ms: int,
        max_requests: int,
        max_buckets: int = 10_000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.window = window_ms / 1000
        self.max_requests = max_requests
        self.max_buckets = max_buckets
        self._clock = clock
        self._lock = threading.Lock()
        self._buckets: OrderedDict[str, RateLimitBucket] = OrderedDict()
        self._last_sweep = clock()

    def check(self, client_key: str) -> RateLimitDecision:
        """Count the request against the client's bucket and decide."""
        now = self._clock()
        with self._lock:
            if now - self._last_sweep >= self.window:
                self._sweep(now)

            bucket = self._buckets.get(client_key)
            if bucket is None or now - bucket.window_start >= self.window:
                bucket = RateLimitBucket(client_key=client_key, window_start=now)
                self._buckets[client_key] = bucket
            self._buckets.move_to_end(client_key)
            while len(self._buckets) > self.max_buckets:
                self._buckets.popitem(last=False)

            reset_after = bucket.window_start + self.window - now
            if bucket.count >= self.max_requests:
                return RateLimitDecision(False, self.max_requests, 0, reset_after)
            bucket.count += 1
            return RateLimitDecision(
                True, self.max_requests, self.max_requests - bucket.count, reset_after
            )

    def bucket_count(self) -> int:
        with self._lock:
            return len(self._buckets)

    def _sweep(self, now: float) -> None:
        """Drop buckets whose window has expired. Caller holds the lock."""
        expired = [
            key for key, bucket in self._buckets.items() if now - bucket.window_start >= self.window
        ]
        for key in expired:
            del self._buckets[key]
        self._last_sweep = now
