"""Feed item normalization into candidate articles.

Each raw item goes through an ordered series of cheap guards; the first
failing guard names the rejection reason:

    1. missing_link            no link at all
    2. missing_or_short_title  under 5 visible characters after markup stripping
    3. invalid_url             not an absolute http(s) URL
    4. insufficient_content    no lede of at least 30 characters
    5. too_old                 published before the freshness horizon

Survivors get a canonical URL, a lede (snippet > summary > description >
content, stripped and cut to 500 characters), a publish date capped at now
and a content hash (sha256 of the canonical URL).
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from email.utils import parsedate_to_datetime
from urllib.parse import urlsplit, urlunsplit

from models.article import CandidateArticle
from models.feed import RawItem
from text import clean_text, hash_url, strip_html, truncate

logger = logging.getLogger(__name__)

MIN_TITLE_LENGTH = 5
MIN_LEDE_LENGTH = 30
MAX_LEDE_LENGTH = 500
DEFAULT_MAX_AGE_DAYS = 7

DEFAULT_PORTS = {"http": 80, "https": 443}


@dataclass
class NormalizationResult:
    """Candidates that survived plus a breakdown of the rejected ones."""

    articles: list[CandidateArticle] = field(default_factory=list)
    reasons: dict[str, int] = field(default_factory=dict)

    @property
    def skipped(self) -> int:
        return sum(self.reasons.values())

    @property
    def total(self) -> int:
        return len(self.articles) + self.skipped


def canonical_url(link: str) -> str | None:
    """Normalize an absolute http(s) URL, or return None if it is not one.

    Lower-cases scheme and host, drops default ports, user info and the
    fragment, and turns an empty path into "/". Query strings are kept.
    """
    try:
        parts = urlsplit(link.strip())
        port = parts.port
    except ValueError:
        return None
    scheme = parts.scheme.lower()
    host = parts.hostname
    if scheme not in DEFAULT_PORTS or not host:
        return None
    host = host.lower()
    if ":" in host:
        host = f"[{host}]"
    netloc = host if port is None or port == DEFAULT_PORTS[scheme] else f"{host}:{port}"
    return urlunsplit((scheme, netloc, parts.path or "/", parts.query, ""))


def parse_date(value: str | None) -> datetime | None:
    """Parse an RFC 822 or ISO 8601 date string; None when unparseable."""
    if not value:
        return None
    value = value.strip()
    parsed = None
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    if parsed is None:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _lede(item: RawItem) -> str | None:
    for candidate in (item.content_snippet, item.summary, item.description, item.content):
        if not candidate:
            continue
        text = truncate(strip_html(candidate), MAX_LEDE_LENGTH)
        if len(text) >= MIN_LEDE_LENGTH:
            return text
    return None


def _normalize_one(
    item: RawItem,
    source_id: str,
    now: datetime,
    horizon: datetime,
) -> CandidateArticle | str:
    """Return a candidate, or the name of the first rule the item fails."""
    if not item.link or not item.link.strip():
        return "missing_link"

    title = strip_html(item.title)
    if len(title) < MIN_TITLE_LENGTH:
        return "missing_or_short_title"

    url = canonical_url(item.link)
    if url is None:
        return "invalid_url"

    lede = _lede(item)
    if lede is None:
        return "insufficient_content"

    published = item.published or parse_date(item.published_raw)
    if published is not None:
        if published > now:
            published = now
        elif published < horizon:
            return "too_old"

    guid = clean_text(item.guid)
    full_text = strip_html(item.content) or None
    return CandidateArticle(
        source_id=source_id,
        external_id=guid or url,
        url=url,
        content_hash=hash_url(url),
        title=title,
        lede=lede,
        full_text=full_text,
        author=clean_text(item.author) or None,
        published_at=published,
    )


def normalize_items(
    items: list[RawItem],
    source_id: str,
    max_age_days: int = DEFAULT_MAX_AGE_DAYS,
    now: datetime | None = None,
) -> NormalizationResult:
    """Convert raw feed items into candidate articles.

    Args:
        items: Raw items in feed order
        source_id: Source the items came from
        max_age_days: Freshness horizon
        now: Reference time (defaults to current UTC time)

    Returns:
        NormalizationResult with surviving candidates (feed order kept) and
        a count per rejection reason
    """
    now = now or datetime.now(timezone.utc)
    horizon = now - timedelta(days=max_age_days)
    result = NormalizationResult()
    reasons: Counter[str] = Counter()

    for item in items:
        outcome = _normalize_one(item, source_id, now, horizon)
        if isinstance(outcome, str):
            reasons[outcome] += 1
        else:
            result.articles.append(outcome)

    result.reasons = dict(reasons)
    if reasons:
        logger.debug(
            "Items rejected | source=%s skipped=%d reasons=%s",
            source_id, result.skipped, result.reasons,
        )
    return result
