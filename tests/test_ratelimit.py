"""Tests for token buckets and the sliding window limiter."""

import asyncio

import pytest

from ratelimit import RateLimiterRegistry, SlidingWindowLimiter, TokenBucket


class TestTokenBucket:
    def test_burst_up_to_capacity_is_immediate(self, clock):
        bucket = TokenBucket(capacity=3, interval=60, clock=clock, sleep=clock.sleep)

        async def take(n):
            return [await bucket.acquire() for _ in range(n)]

        assert asyncio.run(take(3)) == [0.0, 0.0, 0.0]
        assert clock.sleeps == []

    def test_nth_acquire_waits_for_refill(self, clock):
        # capacity 2, interval 10s: the 5th call resolves after (5-2)/2*10 = 15s
        bucket = TokenBucket(capacity=2, interval=10, clock=clock, sleep=clock.sleep)
        start = clock.now

        async def take(n):
            for _ in range(n):
                await bucket.acquire()

        asyncio.run(take(5))

        assert clock.now - start == pytest.approx(15.0)

    def test_concurrent_waiters_are_serialized(self, clock):
        bucket = TokenBucket(capacity=1, interval=1, clock=clock, sleep=clock.sleep)

        async def run():
            return await asyncio.gather(*(bucket.acquire() for _ in range(4)))

        waits = asyncio.run(run())

        assert sorted(waits) == pytest.approx([0.0, 1.0, 1.0, 1.0])
        assert clock.now - 1000.0 == pytest.approx(3.0)

    def test_invalid_settings(self):
        with pytest.raises(ValueError):
            TokenBucket(capacity=0, interval=10)


class TestRateLimiterRegistry:
    def test_buckets_are_per_key(self, clock):
        registry = RateLimiterRegistry(capacity=1, interval=60, clock=clock, sleep=clock.sleep)

        async def run():
            await registry.acquire("lemonde")
            await registry.acquire("liberation")

        asyncio.run(run())

        assert clock.sleeps == []
        assert len(registry) == 2
        assert registry.get("lemonde") is registry.get("lemonde")


class TestSlidingWindowLimiter:
    def test_blocks_until_window_slides(self, clock):
        limiter = SlidingWindowLimiter(max_calls=2, window=60, clock=clock, sleep=clock.sleep)

        async def run():
            for _ in range(3):
                await limiter.acquire()

        asyncio.run(run())

        assert clock.sleeps == [pytest.approx(60.0)]
        assert limiter.remaining() == 1
