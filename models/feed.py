"""Generic feed shapes produced by feeds.py and consumed by the normalizer."""

from datetime import datetime

from pydantic import BaseModel, Field


class RawItem(BaseModel):
    """One feed entry as parsed, before any validation.

    Field names follow the usual RSS/Atom vocabulary; every field is
    optional because feeds in the wild omit any of them.
    """

    guid: str | None = None
    title: str | None = None
    link: str | None = None
    published: datetime | None = None  # parsed by feedparser, UTC
    published_raw: str | None = None  # original date string
    content: str | None = None
    content_snippet: str | None = None
    summary: str | None = None
    description: str | None = None
    author: str | None = None
    categories: list[str] = Field(default_factory=list)


class Feed(BaseModel):
    """A parsed feed: metadata plus items in document order."""

    title: str = ""
    link: str = ""
    items: list[RawItem] = Field(default_factory=list)
