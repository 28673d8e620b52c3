"""Tests for the two-tier deduplicator."""

import asyncio
from datetime import datetime, timezone

from cache import MemoryCache
from dedup import KNOWN_EXISTING, KNOWN_NEW, Deduplicator, cache_key
from errors import CacheError
from normalizer import normalize_items
from tests.helpers import make_item

NOW = datetime.now(timezone.utc)


class BrokenCache:
    """Cache whose every call fails."""

    async def get_many(self, keys):
        raise CacheError("connection refused")

    async def set_many(self, mapping, ttl):
        raise CacheError("connection refused")

    async def close(self):
        pass


def candidates(*numbers, source_id="src"):
    return normalize_items([make_item(n) for n in numbers], source_id, now=NOW).articles


class TestFilterDuplicates:
    def test_unknown_candidates_are_new_and_marked(self, db, source):
        cache = MemoryCache()
        dedup = Deduplicator(db, cache)
        batch = candidates(1, 2, source_id=source.id)

        result = asyncio.run(dedup.filter_duplicates(batch))

        assert [c.content_hash for c in result.new_articles] == [c.content_hash for c in batch]
        assert result.duplicates == []
        values = asyncio.run(cache.get_many([cache_key(c.content_hash) for c in batch]))
        assert values == [KNOWN_NEW, KNOWN_NEW]

    def test_stored_article_is_duplicate_and_cached_as_existing(self, db, source):
        cache = MemoryCache()
        dedup = Deduplicator(db, cache)
        stored, fresh = candidates(1, 2, source_id=source.id)
        db.insert_article(stored)

        result = asyncio.run(dedup.filter_duplicates([stored, fresh]))

        assert result.duplicates == [stored]
        assert result.new_articles == [fresh]
        assert asyncio.run(cache.get_many([cache_key(stored.content_hash)])) == [KNOWN_EXISTING]

    def test_round_trip_store_then_mark_then_duplicate(self, db, source):
        dedup = Deduplicator(db, MemoryCache())
        batch = candidates(1, source_id=source.id)

        async def scenario():
            first = await dedup.filter_duplicates(batch)
            db.insert_article(first.new_articles[0])
            await dedup.mark_stored([c.content_hash for c in first.new_articles])
            return first, await dedup.filter_duplicates(batch)

        first, second = asyncio.run(scenario())

        assert len(first.new_articles) == 1
        assert second.new_articles == []
        assert len(second.duplicates) == 1
        assert second.cache_hits == 1
        assert second.store_checks == 0

    def test_repeat_within_batch_is_new_once(self, db, source):
        dedup = Deduplicator(db, MemoryCache())
        batch = candidates(1, source_id=source.id) * 3

        result = asyncio.run(dedup.filter_duplicates(batch))

        assert len(result.new_articles) == 1
        assert len(result.duplicates) == 2

    def test_cache_failure_falls_back_to_store(self, db, source):
        dedup = Deduplicator(db, BrokenCache())
        stored, fresh = candidates(1, 2, source_id=source.id)
        db.insert_article(stored)

        result = asyncio.run(dedup.filter_duplicates([stored, fresh]))

        assert result.cache_degraded is True
        assert result.duplicates == [stored]
        assert result.new_articles == [fresh]
        assert dedup.stats()["cache_errors"] >= 1

    def test_store_lookup_is_batched(self, db, source):
        dedup = Deduplicator(db, MemoryCache(), batch_size=2)
        batch = candidates(1, 2, 3, 4, 5, source_id=source.id)

        result = asyncio.run(dedup.filter_duplicates(batch))

        assert result.store_checks == 3
        assert len(result.new_articles) == 5

    def test_empty_input(self, db):
        result = asyncio.run(Deduplicator(db, MemoryCache()).filter_duplicates([]))

        assert result.new_articles == [] and result.duplicates == []
