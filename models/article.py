"""Article models: normalized candidates and their stored records.

Lifecycle of a stored article:
    pending -> analyzing -> relevant | irrelevant | error

A relevant or irrelevant article can be sent back to pending by an explicit
re-analysis request.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class ArticleStatus(str, Enum):
    """Classification state of a stored article."""

    PENDING = "pending"
    ANALYZING = "analyzing"
    RELEVANT = "relevant"
    IRRELEVANT = "irrelevant"
    ERROR = "error"


# States from which a re-analysis request is accepted
REANALYZABLE = frozenset({ArticleStatus.RELEVANT, ArticleStatus.IRRELEVANT})


class CandidateArticle(BaseModel):
    """A feed item after normalization, before it is stored.

    Invariants (enforced by normalizer.normalize_items):
        - title has at least 5 visible characters
        - lede has at least 30 characters
        - content_hash is the sha256 hex digest of the canonical url
    """

    source_id: str
    external_id: str
    url: str
    content_hash: str
    title: str
    lede: str
    full_text: str | None = None
    author: str | None = None
    published_at: datetime | None = None


class StoredArticle(CandidateArticle):
    """Durable article record; content_hash is globally unique."""

    id: str
    status: ArticleStatus = ArticleStatus.PENDING
    relevance_score: float | None = None
    relevance_reasoning: str | None = None
    potential_angle: str | None = None
    analyzed_at: datetime | None = None
    created_at: datetime | None = None


class ArticleUpdate(BaseModel):
    """Allow-listed article fields the pipeline may change.

    Fields left as None are not written. Use Database.mark_for_reanalysis
    to clear analysis fields; None here always means "unchanged".
    """

    status: ArticleStatus | None = None
    relevance_score: float | None = Field(default=None, ge=0.0, le=1.0)
    relevance_reasoning: str | None = None
    potential_angle: str | None = None
    analyzed_at: datetime | None = None
