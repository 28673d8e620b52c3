"""Rate limiting for outbound fetches and queue throughput.

TokenBucket:
    Per-key bucket refilled continuously at capacity/interval tokens per
    second. acquire() suspends until a token is available.

RateLimiterRegistry:
    Explicitly owned map of key -> TokenBucket, shared by every fetch
    worker in the process so that queue-level parallelism cannot exceed a
    source's budget.

SlidingWindowLimiter:
    At most N calls in any rolling window; used by the job runtime to cap
    jobs per minute on a queue.

Clock and sleep functions are injectable so tests never wait in real time.
"""

import asyncio
import logging
import time
from collections import deque
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[None]]


class TokenBucket:
    """Token bucket with continuous refill.

    Concurrent acquire() calls are serialized by an asyncio.Lock, so waiters
    are served in arrival order and the token count is never raced.

    Example:
        >>> bucket = TokenBucket(capacity=10, interval=60)
        >>> await bucket.acquire()  # returns immediately while tokens remain
    """

    def __init__(
        self,
        capacity: int,
        interval: float,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ):
        if capacity <= 0 or interval <= 0:
            raise ValueError("capacity and interval must be positive")
        self.capacity = capacity
        self.interval = interval
        self._rate = capacity / interval  # tokens per second
        self._clock = clock
        self._sleep = sleep
        self._tokens = float(capacity)
        self._updated = clock()
        self._lock = asyncio.Lock()

    def _refill(self) -> None:
        now = self._clock()
        elapsed = now - self._updated
        if elapsed > 0:
            self._tokens = min(float(self.capacity), self._tokens + elapsed * self._rate)
            self._updated = now

    async def acquire(self) -> float:
        """Wait for a token and take it.

        Returns:
            Seconds spent waiting
        """
        waited = 0.0
        async with self._lock:
            while True:
                self._refill()
                if self._tokens >= 1:
                    self._tokens -= 1
                    return waited
                delay = (1 - self._tokens) / self._rate
                waited += delay
                await self._sleep(delay)


class RateLimiterRegistry:
    """Per-key token buckets, created lazily with shared settings."""

    def __init__(
        self,
        capacity: int,
        interval: float,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ):
        self.capacity = capacity
        self.interval = interval
        self._clock = clock
        self._sleep = sleep
        self._buckets: dict[str, TokenBucket] = {}

    def get(self, key: str) -> TokenBucket:
        """Return the bucket for key, creating it on first use."""
        bucket = self._buckets.get(key)
        if bucket is None:
            bucket = TokenBucket(self.capacity, self.interval, self._clock, self._sleep)
            self._buckets[key] = bucket
        return bucket

    async def acquire(self, key: str) -> None:
        waited = await self.get(key).acquire()
        if waited > 0:
            logger.debug("Rate limited | key=%s waited=%.2fs", key, waited)

    def __len__(self) -> int:
        return len(self._buckets)


class SlidingWindowLimiter:
    """Allow at most max_calls within any rolling window of seconds."""

    def __init__(
        self,
        max_calls: int,
        window: float,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ):
        if max_calls <= 0 or window <= 0:
            raise ValueError("max_calls and window must be positive")
        self.max_calls = max_calls
        self.window = window
        self._clock = clock
        self._sleep = sleep
        self._calls: deque[float] = deque()
        self._lock = asyncio.Lock()

    def _evict(self, now: float) -> None:
        while self._calls and self._calls[0] <= now - self.window:
            self._calls.popleft()

    async def acquire(self) -> None:
        async with self._lock:
            while True:
                now = self._clock()
                self._evict(now)
                if len(self._calls) < self.max_calls:
                    self._calls.append(now)
                    return
                await self._sleep(self._calls[0] + self.window - now)

    def remaining(self) -> int:
        """Calls still allowed in the current window."""
        self._evict(self._clock())
        return self.max_calls - len(self._calls)
