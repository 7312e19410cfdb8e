"""
Rate limiting in two shapes:
- TokenBucket: outbound, one shared instance per external API. Callers await a token.
- RateLimiter: inbound, sliding-window counter per user for the ingestion API.
Both are used from the single event loop; no locks beyond an asyncio.Lock for waiters.
"""
import asyncio
import time
from collections import defaultdict, deque
from typing import Callable, Hashable


class RateLimitExceeded(Exception):
    def __init__(self, retry_after: float):
        self.retry_after = retry_after
        super().__init__(f"Rate limit exceeded. Retry after {retry_after:.0f}s")


class TokenBucket:
    """Refills `rate` tokens per second up to `burst`; `acquire` waits for one."""

    def __init__(
        self,
        rate: float,
        burst: int = 1,
        clock: Callable[[], float] = time.monotonic,
    ):
        if rate <= 0:
            raise ValueError("rate must be positive")
        self._rate = rate
        self._burst = max(1, burst)
        self._clock = clock
        self._tokens = float(self._burst)
        self._updated = clock()
        self._lock = asyncio.Lock()

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._updated)
        self._tokens = min(self._burst, self._tokens + elapsed * self._rate)
        self._updated = now

    def try_acquire(self) -> bool:
        self._refill()
        if self._tokens >= 1:
            self._tokens -= 1
            return True
        return False

    async def acquire(self) -> None:
        """Block until a token is available. Cancellation propagates to the caller."""
        async with self._lock:
            while not self.try_acquire():
                await asyncio.sleep((1 - self._tokens) / self._rate)


class RateLimiter:
    """Sliding window counter per user_id."""

    def __init__(self, max_requests: int = 60, window_seconds: int = 60):
        self._max = max_requests
        self._window = window_seconds
        self._buckets: dict[Hashable, deque[float]] = defaultdict(deque)

    def check(self, user_id: Hashable) -> None:
        """Raise RateLimitExceeded if the user is over the limit."""
        now = time.monotonic()
        window_start = now - self._window
        bucket = self._buckets[user_id]

        # Drop timestamps outside the window
        while bucket and bucket[0] < window_start:
            bucket.popleft()

        if len(bucket) >= self._max:
            oldest = bucket[0]
            retry_after = oldest - window_start
            raise RateLimitExceeded(retry_after=retry_after)

        bucket.append(now)

    def reset(self, user_id: Hashable) -> None:
        self._buckets.pop(user_id, None)
