"""Feed source models.

A Source is a feed endpoint configured by an operator. The pipeline only
mutates it through fetch outcomes (last fetch time and error fields), which
go through the allow-listed SourceUpdate model.
"""

from datetime import datetime, timedelta, timezone
from enum import Enum

from pydantic import BaseModel, Field


class SourceType(str, Enum):
    """How a source is consumed. Only RSS sources are scanned."""

    RSS = "rss"
    SOCIAL = "social"


class SourceCategory(str, Enum):
    """Editorial category, used for scan priority."""

    NATIONAL = "national"
    REGIONAL = "regional"
    SOCIAL = "social"


class Source(BaseModel):
    """A configured feed endpoint.

    Attributes:
        id: Opaque identifier
        name: Display name
        slug: Short key, also used as the rate-limit key
        type: rss or social
        category: national, regional or social
        url: Feed URL
        fetch_interval_minutes: Minimum delay between incremental fetches
        is_active: Inactive sources are never scanned
        last_fetched_at: Last successful fetch (None = never fetched)
        error_count: Consecutive failed fetches, reset on success
        last_error: Message of the most recent failure
    """

    id: str
    name: str
    slug: str
    type: SourceType = SourceType.RSS
    category: SourceCategory = SourceCategory.NATIONAL
    url: str
    region: str | None = None
    fetch_interval_minutes: int = Field(default=60, ge=1)
    is_active: bool = True
    last_fetched_at: datetime | None = None
    error_count: int = 0
    last_error: str | None = None
    created_at: datetime | None = None

    @property
    def rate_key(self) -> str:
        """Key for the per-source rate limiter and circuit breaker."""
        return self.slug or self.id

    def is_due(self, now: datetime | None = None) -> bool:
        """Whether an incremental scan should fetch this source now."""
        if self.last_fetched_at is None:
            return True
        now = now or datetime.now(timezone.utc)
        return self.last_fetched_at <= now - timedelta(minutes=self.fetch_interval_minutes)


class SourceUpdate(BaseModel):
    """Explicit set of source fields an operator may change.

    Fields left as None are not touched. Fetch bookkeeping
    (last_fetched_at, error_count, last_error) is not part of this model;
    it only changes through Database.record_fetch_success/error.
    """

    name: str | None = None
    url: str | None = None
    category: SourceCategory | None = None
    region: str | None = None
    fetch_interval_minutes: int | None = Field(default=None, ge=1)
    is_active: bool | None = None
