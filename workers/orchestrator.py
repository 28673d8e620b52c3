"""Scan orchestration: decides which sources to fetch and fans out fetch jobs.

Scan types:
    full         every active RSS source
    incremental  sources due for a fetch, oldest first, capped per run
    targeted     exactly one source
    cleanup      retention purge, no fan-out
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from config import Config
from database import Database
from errors import SourceNotFoundError
from jobs import queues
from jobs.queues import FetchJob, ScanRequest, ScanType
from jobs.runtime import Job, JobOutcome, JobRuntime, JobStatus
from models.scan import ScanStatus
from models.source import Source, SourceType
from observability.logging import set_scan_context

logger = logging.getLogger(__name__)

PRIORITY_HIGH = 1
PRIORITY_NORMAL = 2


@dataclass
class OrchestratorResult:
    type: str
    sources_processed: int = 0
    jobs_queued: int = 0
    items_deleted: dict[str, int] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)


class ScanOrchestrator:
    """Processor for the scan-orchestration queue.

    Example:
        >>> orchestrator = ScanOrchestrator(db, runtime, config)
        >>> runtime.register(queues.SCAN_ORCHESTRATION, orchestrator.process)
    """

    def __init__(self, db: Database, runtime: JobRuntime, config: Config):
        self.db = db
        self.runtime = runtime
        self.config = config

    def _priority(self, source: Source) -> int:
        if source.category.value == self.config.priority_category:
            return PRIORITY_HIGH
        return PRIORITY_NORMAL

    def _select_sources(self, request: ScanRequest) -> list[Source]:
        if request.source_id:
            source = self.db.get_source(request.source_id)
            if source is None:
                raise SourceNotFoundError(request.source_id)
            if not source.is_active or source.type != SourceType.RSS:
                logger.warning("Targeted source is inactive or not a feed | id=%s", source.id)
                return []
            return [source]
        if request.type == ScanType.FULL:
            return self.db.active_feed_sources()
        return self.db.due_feed_sources(self.config.incremental_batch_size, datetime.now(timezone.utc))

    def _cleanup(self) -> dict[str, int]:
        now = datetime.now(timezone.utc)
        return {
            "articles": self.db.purge_old_articles(self.config.article_retention_days, now),
            "scan_logs": self.db.purge_scan_logs(self.config.scan_log_retention_days, now),
            "daily_summaries": self.db.purge_daily_summaries(self.config.summary_retention_days, now),
            "jobs": self.runtime.trim(),
        }

    async def run(self, request: ScanRequest) -> OrchestratorResult:
        """Run one orchestration and close its scan log.

        Raises:
            SourceNotFoundError: For a targeted scan of an unknown source
            Exception: Store errors during selection or cleanup propagate
                after the scan log is marked failed
        """
        result = OrchestratorResult(type=request.type.value)
        log = self.db.create_scan_log(None, request.trigger)
        set_scan_context(log.id[:8])
        logger.info("Scan started | type=%s trigger=%s", request.type.value, request.trigger.value)

        try:
            if request.type == ScanType.CLEANUP:
                result.items_deleted = self._cleanup()
                self.db.complete_scan_log(log.id)
                logger.info("Cleanup complete | deleted=%s", result.items_deleted)
                return result
            sources = self._select_sources(request)
        except Exception as e:
            self.db.fail_scan_log(log.id, f"{type(e).__name__}: {e}")
            logger.error("Scan failed | type=%s error=%s", request.type.value, e)
            raise

        fetch_queue = self.runtime.queue(queues.SOURCE_FETCH)
        for source in sources:
            result.sources_processed += 1
            payload = FetchJob(
                source_id=source.id,
                feed_url=source.url,
                source_name=source.name,
                scan_type=request.trigger,
                scan_log_id=log.id,
            )
            try:
                queues.add_fetch_job(fetch_queue, payload, priority=self._priority(source))
                result.jobs_queued += 1
            except Exception as e:
                logger.error("Fetch job enqueue failed | source=%s error=%s", source.slug, e)
                result.errors.append(f"{source.slug}: {e}")

        self.db.update_scan_counts(log.id, found=len(sources), new=result.jobs_queued)
        errors = "; ".join(result.errors) or None
        if result.jobs_queued:
            # Closed by ScanTracker once every fetch job is final
            self.db.expect_source_scans(log.id, result.jobs_queued, failed=len(result.errors), error_message=errors)
        elif errors:
            self.db.complete_scan_log(log.id, ScanStatus.PARTIAL, errors)
        else:
            self.db.complete_scan_log(log.id)
        logger.info(
            "Scan dispatched | type=%s sources=%d queued=%d errors=%d",
            request.type.value, result.sources_processed, result.jobs_queued, len(result.errors),
        )
        return result

    async def process(self, job: Job) -> OrchestratorResult:
        return await self.run(ScanRequest.model_validate(job.payload))


class ScanTracker:
    """Outcome listener closing orchestration scan logs.

    A fetch job counts once its outcome is final: completed, or failed with
    no attempts left. It counts as failed when the job failed, the fetch
    failed or some items could not be stored or queued.

    Example:
        >>> runtime.subscribe(ScanTracker(db).handle)
    """

    def __init__(self, db: Database):
        self.db = db

    def handle(self, outcome: JobOutcome) -> None:
        job = outcome.job
        if job.queue != queues.SOURCE_FETCH or not outcome.final:
            return
        log_id = job.payload.get("scan_log_id")
        if not log_id:
            return
        result = outcome.result
        failed = outcome.status == JobStatus.FAILED or bool(
            result is not None and (result.fetch_error or result.errors)
        )
        log = self.db.finish_source_scan(log_id, failed=failed)
        if log is not None and log.is_terminal:
            logger.info(
                "Scan finished | id=%s status=%s sources_failed=%d",
                log_id[:8], log.status.value, log.failed_sources,
            )
