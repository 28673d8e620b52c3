"""Durable job queues, their payloads and the manual trigger surface."""

from jobs.queues import (
    ALL_QUEUES,
    CLASSIFICATION,
    CONTENT_GENERATION,
    DAILY_DIGEST,
    SCAN_ORCHESTRATION,
    SOURCE_FETCH,
    ClassificationJob,
    DigestJob,
    FetchJob,
    GenerationJob,
    ScanRequest,
    ScanType,
    default_settings,
)
from jobs.runtime import Job, JobOutcome, JobQueue, JobRuntime, JobStatus, JobStore, QueueSettings, Worker

__all__ = [
    "ALL_QUEUES",
    "CLASSIFICATION",
    "CONTENT_GENERATION",
    "DAILY_DIGEST",
    "SCAN_ORCHESTRATION",
    "SOURCE_FETCH",
    "ClassificationJob",
    "DigestJob",
    "FetchJob",
    "GenerationJob",
    "ScanRequest",
    "ScanType",
    "default_settings",
    "Job",
    "JobOutcome",
    "JobQueue",
    "JobRuntime",
    "JobStatus",
    "JobStore",
    "QueueSettings",
    "Worker",
]
