"""Queue names, default settings, payload models and producer helpers.

Queues and what feeds them:
    scan-orchestration  <- triggers (CLI, schedule)
    source-fetch        <- orchestrator, one job per selected source
    classification      <- source-fetch, re-analysis, analyze-pending
    content-generation  <- classification, when the best score is high enough
    daily-digest        <- triggers, keyed summary-<date> so a day is summarized once
"""

from datetime import date
from enum import Enum

from pydantic import BaseModel, Field, model_validator

from config import Config
from jobs.runtime import Job, JobQueue, QueueSettings
from models.scan import ScanTrigger

SCAN_ORCHESTRATION = "scan-orchestration"
SOURCE_FETCH = "source-fetch"
CLASSIFICATION = "classification"
CONTENT_GENERATION = "content-generation"
DAILY_DIGEST = "daily-digest"

# Registration order: upstream queues first so one drain round follows the fan-out
ALL_QUEUES = (SCAN_ORCHESTRATION, SOURCE_FETCH, CLASSIFICATION, CONTENT_GENERATION, DAILY_DIGEST)

CLASSIFICATION_PRIORITY = 1
GENERATION_PRIORITY = 2


class ScanType(str, Enum):
    FULL = "full"
    INCREMENTAL = "incremental"
    TARGETED = "targeted"
    CLEANUP = "cleanup"


class ScanRequest(BaseModel):
    """Payload of a scan-orchestration job."""

    type: ScanType = ScanType.INCREMENTAL
    source_id: str | None = None
    trigger: ScanTrigger = ScanTrigger.SCHEDULED

    @model_validator(mode="after")
    def _targeted_needs_source(self) -> "ScanRequest":
        if self.type == ScanType.TARGETED and not self.source_id:
            raise ValueError("A targeted scan needs a source_id")
        return self


class FetchJob(BaseModel):
    source_id: str
    feed_url: str
    source_name: str = ""
    scan_type: ScanTrigger = ScanTrigger.SCHEDULED
    scan_log_id: str | None = None  # orchestration run waiting on this fetch


class ClassificationJob(BaseModel):
    article_id: str
    title: str
    lede: str
    source_name: str = ""
    url: str = ""
    topic_ids: list[str] = Field(default_factory=list)


class GenerationJob(BaseModel):
    article_id: str
    topic_id: str | None = None
    topic_name: str = ""
    score: float = 0.0
    potential_angle: str | None = None


class DigestJob(BaseModel):
    date: date


def default_settings(config: Config) -> dict[str, QueueSettings]:
    """Per-queue execution policy derived from configuration."""
    timeout = float(config.job_timeout_seconds)
    return {
        SCAN_ORCHESTRATION: QueueSettings(concurrency=1, attempts=1, timeout=timeout),
        SOURCE_FETCH: QueueSettings(
            concurrency=config.fetch_concurrency,
            attempts=3,
            backoff_delay=5.0,
            rate_limit=config.fetch_jobs_per_minute,
            timeout=timeout,
        ),
        CLASSIFICATION: QueueSettings(
            concurrency=config.analysis_concurrency,
            attempts=2,
            backoff_delay=10.0,
            rate_limit=config.analysis_jobs_per_minute,
            timeout=timeout,
        ),
        CONTENT_GENERATION: QueueSettings(
            concurrency=config.generation_concurrency,
            attempts=2,
            backoff_delay=10.0,
            rate_limit=config.generation_jobs_per_minute,
            timeout=timeout,
        ),
        DAILY_DIGEST: QueueSettings(concurrency=1, attempts=3, backoff_delay=30.0, timeout=timeout),
    }


def add_scan_job(queue: JobQueue, request: ScanRequest) -> Job:
    return queue.add(f"scan-{request.type.value}", request)


def add_fetch_job(queue: JobQueue, payload: FetchJob, priority: int = 2) -> Job:
    return queue.add(f"fetch-{payload.source_id}", payload, priority=priority)


def add_classification_job(queue: JobQueue, payload: ClassificationJob) -> Job:
    return queue.add(
        f"classify-{payload.article_id}", payload, priority=CLASSIFICATION_PRIORITY
    )


def add_generation_job(queue: JobQueue, payload: GenerationJob) -> Job:
    return queue.add(f"generate-{payload.article_id}", payload, priority=GENERATION_PRIORITY)


def digest_job_key(day: date) -> str:
    return f"summary-{day.isoformat()}"


def add_digest_job(queue: JobQueue, day: date) -> Job:
    """Enqueue the digest for a day; a second request for the same day is a no-op."""
    return queue.add("daily-summary", DigestJob(date=day), job_key=digest_job_key(day))
