"""Application wiring for the scan pipeline.

This module builds every component once per process and registers the
queue processors:

Pipeline Flow:
    1. ORCHESTRATE: a scan request selects sources and fans out fetch jobs
    2. FETCH: each fetch job fetches, normalizes and deduplicates one feed
    3. STORE: new articles are stored; keyword matches are queued for analysis
    4. CLASSIFY: the relevance agent scores each article against its topics
    5. GENERATE: articles above the generation threshold get post drafts
    6. DIGEST: the daily summary is written on request

Shared per-process state:
    - RateLimiterRegistry and CircuitBreakerRegistry, keyed by source
    - The dedup cache (Redis when REDIS_URL is set, in-process otherwise)
    - One JobRuntime with a worker per queue

Usage:
    >>> async with ScanPipeline(config) as pipeline:
    ...     pipeline.trigger_scan("full")
    ...     stats = await pipeline.drain()
"""

import asyncio
import logging
import time
from dataclasses import asdict, dataclass
from typing import Any

from agents import DigestAgent, PostGeneratorAgent, RelevanceAgent
from cache import Cache, create_cache
from config import Config
from database import Database
from dedup import Deduplicator
from feeds import FeedFetcher
from jobs import queues, triggers
from jobs.queues import ScanType
from jobs.runtime import Job, JobRuntime, JobStore
from observability.tracing import setup_tracing
from ratelimit import RateLimiterRegistry
from retry import CircuitBreakerRegistry
from workers import (
    ClassificationProcessor,
    DigestProcessor,
    PostGenerationProcessor,
    ScanOrchestrator,
    ScanTracker,
    SourceFetchProcessor,
)

logger = logging.getLogger(__name__)


@dataclass
class PipelineStats:
    """Counts from one drain of the queues.

    Attributes:
        jobs_processed: Attempts made (retries count again)
        completed: Jobs completed, per queue
        failed: Jobs failed for good, per queue
        retried: Failed attempts rescheduled, per queue
        duration: Drain time in seconds
    """

    jobs_processed: int = 0
    completed: dict[str, int] | None = None
    failed: dict[str, int] | None = None
    retried: dict[str, int] | None = None
    duration: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        d = asdict(self)
        d["duration"] = round(d["duration"], 2)
        return d


class ScanPipeline:
    """Owns the store, cache, fetcher, agents and job runtime.

    Any collaborator can be injected; the defaults come from config.
    """

    def __init__(
        self,
        config: Config,
        *,
        db: Database | None = None,
        cache: Cache | None = None,
        fetcher: FeedFetcher | None = None,
        analyzer=None,
        generator=None,
        digest_agent=None,
        job_store: JobStore | None = None,
    ):
        self.config = config
        self.db = db or Database(config.db_path)
        self.cache = cache or create_cache(config.redis_url)
        self.limiters = RateLimiterRegistry(config.source_rate_capacity, config.source_rate_interval_seconds)
        self.breakers = CircuitBreakerRegistry(config.circuit_failure_threshold, config.circuit_reset_seconds)
        self.fetcher = fetcher or FeedFetcher.from_config(config, self.limiters, self.breakers)
        self.dedup = Deduplicator(self.db, self.cache, config.dedup_cache_ttl_days, config.dedup_batch_size)

        self.runtime = JobRuntime(
            job_store or JobStore(config.db_path),
            queues.default_settings(config),
            poll_interval=config.queue_poll_seconds,
        )
        self.orchestrator = ScanOrchestrator(self.db, self.runtime, config)
        self.fetch_processor = SourceFetchProcessor(
            self.db, self.fetcher, self.dedup, self.runtime.queue(queues.CLASSIFICATION), config
        )
        self.classification_processor = ClassificationProcessor(
            self.db,
            analyzer or RelevanceAgent(config),
            self.runtime.queue(queues.CONTENT_GENERATION),
            config,
        )
        self.generation_processor = PostGenerationProcessor(self.db, generator or PostGeneratorAgent(config))
        self.digest_processor = DigestProcessor(self.db, digest_agent or DigestAgent(config))

        self.runtime.register(queues.SCAN_ORCHESTRATION, self.orchestrator.process)
        self.runtime.register(queues.SOURCE_FETCH, self.fetch_processor.process)
        self.runtime.register(queues.CLASSIFICATION, self.classification_processor.process)
        self.runtime.register(queues.CONTENT_GENERATION, self.generation_processor.process)
        self.runtime.register(queues.DAILY_DIGEST, self.digest_processor.process)
        self.runtime.subscribe(ScanTracker(self.db).handle)

        if config.enable_logfire:
            setup_tracing(config)

    # === Triggers ===

    def trigger_scan(self, scan_type: ScanType | str = ScanType.INCREMENTAL, source_id: str | None = None) -> Job:
        return triggers.trigger_scan(self.runtime, scan_type, source_id)

    def trigger_reanalysis(self, article_id: str) -> Job:
        return triggers.trigger_reanalysis(self.db, self.runtime, article_id)

    def trigger_pending_analysis(self, limit: int = 50) -> list[Job]:
        return triggers.trigger_pending_analysis(self.db, self.runtime, limit)

    def trigger_digest(self, day=None) -> Job:
        return triggers.trigger_digest(self.runtime, day)

    # === Execution ===

    async def drain(self) -> PipelineStats:
        """Process every ready job, following fan-out, then return counts."""
        start = time.time()
        before = dict(self.runtime.subscriber.counts)
        processed = await self.runtime.drain()
        after = self.runtime.subscriber.counts

        def delta(status: str) -> dict[str, int]:
            counts = {}
            for key, value in after.items():
                queue, _, key_status = key.rpartition(":")
                if key_status == status and value - before.get(key, 0):
                    counts[queue] = value - before.get(key, 0)
            return counts

        stats = PipelineStats(
            jobs_processed=processed,
            completed=delta("completed"),
            failed=delta("failed"),
            retried=delta("waiting"),
            duration=time.time() - start,
        )
        logger.info(
            "Drain done | jobs=%d duration=%.1fs failed=%s",
            stats.jobs_processed, stats.duration, stats.failed or {},
        )
        return stats

    async def run_forever(self) -> None:
        """Run all queue workers until cancelled."""
        logger.info("Workers starting | queues=%s", ", ".join(self.runtime.workers))
        try:
            await self.runtime.start()
        except asyncio.CancelledError:
            self.runtime.stop()
            logger.info("Workers stopped | counts=%s", dict(self.runtime.subscriber.counts))
            raise

    def status(self) -> dict[str, Any]:
        return {
            "store": self.db.stats(),
            "queues": self.runtime.counts(),
            "fetcher": self.fetcher.stats(),
            "dedup": self.dedup.stats(),
            "recent_scans": [
                log.model_dump(mode="json") for log in self.db.recent_scan_logs(limit=10)
            ],
        }

    async def close(self) -> None:
        """Clean up resources."""
        await self.fetcher.close()
        await self.cache.close()
        self.runtime.store.close()
        self.db.close()

    async def __aenter__(self) -> "ScanPipeline":
        return self

    async def __aexit__(self, *args) -> None:
        await self.close()


async def run_scan(config: Config, scan_type: str, source_id: str | None = None, wait: bool = False) -> dict[str, Any]:
    """Enqueue a scan and optionally drain the queues in-process."""
    async with ScanPipeline(config) as pipeline:
        job = pipeline.trigger_scan(scan_type, source_id)
        result: dict[str, Any] = {"job_id": job.id, "type": scan_type}
        if wait:
            result["stats"] = (await pipeline.drain()).to_dict()
        return result


async def run_workers(config: Config) -> None:
    async with ScanPipeline(config) as pipeline:
        await pipeline.run_forever()
