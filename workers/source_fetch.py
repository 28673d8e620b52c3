"""Per-source fetch worker.

Stages run strictly in order for one source:
    fetch -> normalize -> dedup -> store -> topic match -> enqueue classification

A failed fetch is recorded on the source and its scan log and the job
completes; the circuit breaker and the next scan handle recovery. Failures
for a single item (insert or classification enqueue) are collected and
close the scan log as partial; an article whose enqueue failed stays
pending for analyze-pending. Any other exception fails the scan log and
propagates so the job is retried; stored hashes are unique, so items
already stored are duplicates on the retry.
"""

import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime, timezone

from config import Config
from database import Database
from dedup import Deduplicator
from feeds import FeedFetcher
from jobs import queues
from jobs.queues import ClassificationJob, FetchJob
from jobs.runtime import Job, JobQueue
from matcher import check_against_topics
from models.scan import ScanStatus
from normalizer import normalize_items
from observability.logging import set_scan_context

logger = logging.getLogger(__name__)


@dataclass
class FetchJobResult:
    source_id: str
    source_name: str = ""
    fetched: int = 0
    normalized: int = 0
    new_articles: int = 0
    duplicates: int = 0
    queued: int = 0
    rejected: dict[str, int] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)
    fetch_error: str | None = None


class SourceFetchProcessor:
    """Processor for the source-fetch queue."""

    def __init__(
        self,
        db: Database,
        fetcher: FeedFetcher,
        dedup: Deduplicator,
        classification_queue: JobQueue,
        config: Config,
    ):
        self.db = db
        self.fetcher = fetcher
        self.dedup = dedup
        self.classification_queue = classification_queue
        self.config = config

    async def process(self, job: Job) -> FetchJobResult:
        payload = FetchJob.model_validate(job.payload)
        result = FetchJobResult(source_id=payload.source_id, source_name=payload.source_name)
        source = self.db.get_source(payload.source_id)
        if source is None:
            logger.warning("Source no longer exists, skipping | id=%s", payload.source_id)
            result.fetch_error = "source not found"
            return result

        log = self.db.create_scan_log(source.id, payload.scan_type)
        set_scan_context(log.id[:8])
        try:
            return await self._run(source, log.id, payload, result)
        except Exception as e:
            message = f"{type(e).__name__}: {e}"
            self.db.record_fetch_error(source.id, message)
            self.db.fail_scan_log(log.id, message)
            logger.error("Source scan failed | source=%s error=%s", source.slug, message, exc_info=True)
            raise

    async def _run(self, source, log_id: str, payload: FetchJob, result: FetchJobResult) -> FetchJobResult:
        fetched = await self.fetcher.fetch_feed(payload.feed_url or source.url, source.rate_key)
        if not fetched.success:
            result.fetch_error = fetched.error
            self.db.record_fetch_error(source.id, fetched.error or fetched.error_kind or "fetch failed")
            self.db.fail_scan_log(log_id, f"{fetched.error_kind}: {fetched.error}")
            return result

        items = fetched.feed.items
        result.fetched = len(items)
        normalized = normalize_items(
            items,
            source.id,
            max_age_days=self.config.max_article_age_days,
            now=datetime.now(timezone.utc),
        )
        result.normalized = len(normalized.articles)
        result.rejected = normalized.reasons

        deduped = await self.dedup.filter_duplicates(normalized.articles)
        result.duplicates = len(deduped.duplicates)
        topics = self.db.active_topics()

        confirmed: list[str] = []
        for candidate in deduped.new_articles:
            try:
                article = self.db.insert_article(candidate)
            except sqlite3.Error as e:
                logger.warning("Article insert failed | url=%s error=%s", candidate.url, e)
                result.errors.append(f"{candidate.url}: {e}")
                continue
            confirmed.append(candidate.content_hash)
            if article is None:
                # Stored concurrently by another worker
                result.duplicates += 1
                continue
            result.new_articles += 1

            topic_ids = check_against_topics(article, topics)
            if not topic_ids:
                continue
            try:
                queues.add_classification_job(
                    self.classification_queue,
                    ClassificationJob(
                        article_id=article.id,
                        title=article.title,
                        lede=article.lede,
                        source_name=source.name,
                        url=article.url,
                        topic_ids=sorted(topic_ids),
                    ),
                )
            except Exception as e:
                # The article stays pending; analyze-pending picks it up
                logger.error("Classification enqueue failed | article=%s error=%s", article.id[:8], e)
                result.errors.append(f"{article.url}: enqueue failed: {e}")
                continue
            result.queued += 1

        await self.dedup.mark_stored(confirmed)
        self.db.record_fetch_success(source.id)
        self.db.update_scan_counts(
            log_id,
            found=result.fetched,
            new=result.new_articles,
            analyzed=result.queued,
        )
        if result.errors:
            self.db.complete_scan_log(log_id, ScanStatus.PARTIAL, "; ".join(result.errors[:10]))
        else:
            self.db.complete_scan_log(log_id)

        logger.info(
            "Source scanned | source=%s fetched=%d normalized=%d new=%d duplicates=%d queued=%d",
            source.slug, result.fetched, result.normalized, result.new_articles,
            result.duplicates, result.queued,
        )
        return result
