"""Key-value cache backends for the deduplicator.

Two interchangeable backends share the Cache protocol:

RedisCache:
    redis.asyncio client; one MGET per lookup and one pipelined SETEX batch
    per write, so a batch costs a single round trip each way.

MemoryCache:
    In-process dict with expiry, used when REDIS_URL is empty and in tests.

Backend failures are raised as CacheError. Callers decide how to degrade.
"""

import logging
import time
from typing import Callable, Protocol

import redis.asyncio as redis
from redis.exceptions import RedisError

from errors import CacheError

logger = logging.getLogger(__name__)


class Cache(Protocol):
    """Minimal batch-oriented key-value interface with TTL."""

    async def get_many(self, keys: list[str]) -> list[str | None]: ...

    async def set_many(self, mapping: dict[str, str], ttl: int) -> None: ...

    async def close(self) -> None: ...


class MemoryCache:
    """Process-local cache with per-key expiry."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._data: dict[str, tuple[str, float]] = {}

    def _get(self, key: str) -> str | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires = entry
        if expires <= self._clock():
            del self._data[key]
            return None
        return value

    async def get_many(self, keys: list[str]) -> list[str | None]:
        return [self._get(k) for k in keys]

    async def set_many(self, mapping: dict[str, str], ttl: int) -> None:
        expires = self._clock() + ttl
        for key, value in mapping.items():
            self._data[key] = (value, expires)

    async def close(self) -> None:
        self._data.clear()

    def __len__(self) -> int:
        return len(self._data)


class RedisCache:
    """Redis-backed cache.

    Example:
        >>> cache = RedisCache.from_url("redis://localhost:6379/0")
        >>> await cache.set_many({"url_hash:ab12": "exists"}, ttl=604800)
    """

    def __init__(self, client: "redis.Redis"):
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisCache":
        return cls(redis.from_url(url, decode_responses=True))

    async def get_many(self, keys: list[str]) -> list[str | None]:
        if not keys:
            return []
        try:
            return await self._client.mget(keys)
        except (RedisError, OSError) as e:
            raise CacheError(f"MGET failed: {e}") from e

    async def set_many(self, mapping: dict[str, str], ttl: int) -> None:
        if not mapping:
            return
        try:
            async with self._client.pipeline(transaction=False) as pipe:
                for key, value in mapping.items():
                    pipe.setex(key, ttl, value)
                await pipe.execute()
        except (RedisError, OSError) as e:
            raise CacheError(f"SETEX pipeline failed: {e}") from e

    async def close(self) -> None:
        await self._client.aclose()


def create_cache(redis_url: str) -> Cache:
    """Build the configured cache backend."""
    if redis_url:
        logger.info("Dedup cache | backend=redis")
        return RedisCache.from_url(redis_url)
    logger.info("Dedup cache | backend=memory")
    return MemoryCache()
