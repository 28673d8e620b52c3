"""Scan log model."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel


class ScanStatus(str, Enum):
    """Scan log state. Every state but RUNNING is terminal."""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    PARTIAL = "partial"


class ScanTrigger(str, Enum):
    """What started the scan."""

    SCHEDULED = "scheduled"
    MANUAL = "manual"
    RETRY = "retry"


class ScanLog(BaseModel):
    """One record per orchestration run or per-source fetch.

    source_id is None for orchestration runs. An orchestration run stays
    running while pending_sources of its fetch jobs have not reached a final
    state; failed_sources counts those that failed or had item errors.
    """

    id: str
    source_id: str | None = None
    scan_type: ScanTrigger = ScanTrigger.SCHEDULED
    status: ScanStatus = ScanStatus.RUNNING
    items_found: int = 0
    items_new: int = 0
    items_analyzed: int = 0
    items_relevant: int = 0
    pending_sources: int = 0
    failed_sources: int = 0
    error_message: str | None = None
    started_at: datetime
    completed_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status != ScanStatus.RUNNING
