"""Two-tier deduplication of candidate articles.

Tier 1 is the key-value cache (one batch round trip), tier 2 the durable
store (bounded IN-queries for hashes the cache does not know).

Cache states per content hash:
    missing  -> unknown, ask the store
    "new"    -> confirmed absent earlier, insert pending (may be briefly stale)
    "exists" -> durably stored; written only after the store confirmed the row

The cache is advisory. Any CacheError is logged and every hash is treated
as unknown, so correctness only depends on the store's unique constraint.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable

from cache import Cache
from database import Database
from errors import CacheError
from models.article import CandidateArticle

logger = logging.getLogger(__name__)

CACHE_PREFIX = "url_hash:"
KNOWN_NEW = "new"
KNOWN_EXISTING = "exists"
DAY_SECONDS = 24 * 60 * 60


def cache_key(content_hash: str) -> str:
    return f"{CACHE_PREFIX}{content_hash}"


@dataclass
class DedupResult:
    """Outcome of one filter_duplicates call."""

    new_articles: list[CandidateArticle] = field(default_factory=list)
    duplicates: list[CandidateArticle] = field(default_factory=list)
    cache_hits: int = 0
    store_checks: int = 0
    cache_degraded: bool = False


class Deduplicator:
    """Classifies candidates as new or already seen.

    Example:
        >>> dedup = Deduplicator(db, MemoryCache())
        >>> result = await dedup.filter_duplicates(candidates)
        >>> stored = [db.insert_article(c) for c in result.new_articles]
        >>> await dedup.mark_stored([c.content_hash for c in result.new_articles])
    """

    def __init__(
        self,
        db: Database,
        cache: Cache,
        ttl_days: int = 7,
        batch_size: int = 100,
    ):
        self.db = db
        self.cache = cache
        self.ttl = ttl_days * DAY_SECONDS
        self.batch_size = batch_size
        self._totals = {"checked": 0, "duplicates": 0, "cache_hits": 0, "cache_errors": 0}

    async def _read_states(self, hashes: list[str]) -> tuple[dict[str, str | None], bool]:
        """Cache state per hash, and whether the cache answered."""
        try:
            values = await self.cache.get_many([cache_key(h) for h in hashes])
        except CacheError as e:
            self._totals["cache_errors"] += 1
            logger.warning("Dedup cache read failed, using store | hashes=%d error=%s", len(hashes), e)
            return {h: None for h in hashes}, False
        return dict(zip(hashes, values)), True

    async def _write_marks(self, marks: dict[str, str]) -> bool:
        if not marks:
            return True
        try:
            await self.cache.set_many({cache_key(h): v for h, v in marks.items()}, self.ttl)
            return True
        except CacheError as e:
            self._totals["cache_errors"] += 1
            logger.warning("Dedup cache write failed | keys=%d error=%s", len(marks), e)
            return False

    def _lookup_store(self, hashes: list[str]) -> tuple[set[str], int]:
        found: set[str] = set()
        queries = 0
        for i in range(0, len(hashes), self.batch_size):
            found |= self.db.existing_hashes(hashes[i:i + self.batch_size])
            queries += 1
        return found, queries

    async def filter_duplicates(self, candidates: list[CandidateArticle]) -> DedupResult:
        """Split candidates into new ones and duplicates.

        A hash repeated within the batch is new at most once; later
        occurrences count as duplicates. Store errors propagate.
        """
        result = DedupResult()
        unique: dict[str, CandidateArticle] = {}
        for candidate in candidates:
            if candidate.content_hash in unique:
                result.duplicates.append(candidate)
            else:
                unique[candidate.content_hash] = candidate
        if not unique:
            return result

        hashes = list(unique)
        states, cache_ok = await self._read_states(hashes)
        result.cache_degraded = not cache_ok

        existing = {h for h, s in states.items() if s == KNOWN_EXISTING}
        unknown = [h for h in hashes if states.get(h) not in (KNOWN_EXISTING, KNOWN_NEW)]
        result.cache_hits = len(hashes) - len(unknown)

        found, result.store_checks = self._lookup_store(unknown)
        existing |= found
        await self._write_marks({h: KNOWN_EXISTING if h in found else KNOWN_NEW for h in unknown})

        for h in hashes:
            if h in existing:
                result.duplicates.append(unique[h])
            else:
                result.new_articles.append(unique[h])

        self._totals["checked"] += len(candidates)
        self._totals["duplicates"] += len(result.duplicates)
        self._totals["cache_hits"] += result.cache_hits
        logger.debug(
            "Dedup done | candidates=%d new=%d duplicates=%d cache_hits=%d store_queries=%d",
            len(candidates), len(result.new_articles), len(result.duplicates),
            result.cache_hits, result.store_checks,
        )
        return result

    async def mark_stored(self, hashes: Iterable[str]) -> bool:
        """Write the terminal "exists" mark for hashes confirmed in the store."""
        return await self._write_marks({h: KNOWN_EXISTING for h in hashes})

    def stats(self) -> dict[str, int]:
        return dict(self._totals)
