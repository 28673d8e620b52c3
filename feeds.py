"""Async feed fetching and parsing.

FeedFetcher.fetch_feed retrieves one feed and returns a tagged FetchResult.
It never raises for ordinary network or format problems so a scan can
record the failure against the source and carry on.

Order of operations per fetch:
    1. per-source token bucket (RateLimiterRegistry)
    2. per-source circuit breaker (fails fast while open)
    3. HTTP GET under with_retry, with a hard aiohttp timeout
    4. feedparser parse into a Feed of RawItems

Error Handling Strategy:
    - Timeouts, connection errors, HTTP 429 and 5xx -> TransientFetchError, retried
    - Other HTTP errors and unparseable documents -> MalformedFeedError, not retried
    - SSL certificate errors retry once without verification
    - Anything else is a programming error and propagates
"""

import asyncio
import logging
import ssl
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

import aiohttp
import certifi
import feedparser

from config import Config
from errors import CircuitOpenError, MalformedFeedError, TransientFetchError
from models.feed import Feed, RawItem
from ratelimit import RateLimiterRegistry
from retry import CircuitBreakerRegistry, RetryPolicy, with_retry

logger = logging.getLogger(__name__)

USER_AGENT = "MediaScanner/1.0 (RSS reader)"

FEED_ACCEPT = "application/rss+xml, application/atom+xml, application/xml;q=0.9, text/xml;q=0.8, */*;q=0.5"

# Error kinds reported in FetchResult.error_kind
TRANSIENT = "transient"
MALFORMED = "malformed"
CIRCUIT_OPEN = "circuit_open"


def _ssl_context(verify: bool = True) -> ssl.SSLContext:
    """Create SSL context with optional certificate verification."""
    if verify:
        return ssl.create_default_context(cafile=certifi.where())
    # Fallback: disable verification for servers with cert issues
    ctx = ssl.create_default_context()
    ctx.check_hostname = False
    ctx.verify_mode = ssl.CERT_NONE
    return ctx


def _parse_date(entry: dict) -> datetime | None:
    """Publication date from feedparser's parsed time tuples, in UTC."""
    for field in ("published_parsed", "updated_parsed", "created_parsed"):
        time_tuple = entry.get(field)
        if time_tuple:
            try:
                return datetime(*time_tuple[:6], tzinfo=timezone.utc)
            except (TypeError, ValueError):
                continue
    return None


def _entry_content(entry: dict) -> str | None:
    parts = entry.get("content") or []
    for part in parts:
        value = part.get("value")
        if value:
            return value
    return None


def _to_raw_item(entry: dict) -> RawItem:
    link = entry.get("link") or None
    return RawItem(
        guid=entry.get("id") or link,
        title=entry.get("title"),
        link=link,
        published=_parse_date(entry),
        published_raw=entry.get("published") or entry.get("updated"),
        content=_entry_content(entry),
        summary=entry.get("summary"),
        description=entry.get("description"),
        author=entry.get("author"),
        categories=[t.get("term") for t in entry.get("tags", []) if t.get("term")],
    )


def parse_feed(content: bytes | str) -> Feed:
    """Parse RSS/Atom content into a Feed.

    Raises:
        MalformedFeedError: If the document is not a recognisable feed
    """
    parsed = feedparser.parse(content)
    if not parsed.entries and (parsed.bozo or not parsed.get("version")):
        reason = parsed.get("bozo_exception") or "not an RSS/Atom document"
        raise MalformedFeedError(f"Unparseable feed: {reason}")
    meta = parsed.get("feed", {})
    return Feed(
        title=meta.get("title", ""),
        link=meta.get("link", ""),
        items=[_to_raw_item(entry) for entry in parsed.entries],
    )


@dataclass
class FetchResult:
    """Outcome of one fetch_feed call.

    Exactly one of feed (success) or error/error_kind (failure) is set.
    """

    url: str
    success: bool
    feed: Feed | None = None
    error: str | None = None
    error_kind: str | None = None
    duration: float = 0.0

    @property
    def item_count(self) -> int:
        return len(self.feed.items) if self.feed else 0

    @classmethod
    def ok(cls, url: str, feed: Feed, duration: float) -> "FetchResult":
        return cls(url=url, success=True, feed=feed, duration=duration)

    @classmethod
    def failed(cls, url: str, error: str, kind: str, duration: float) -> "FetchResult":
        return cls(url=url, success=False, error=error, error_kind=kind, duration=duration)


class FeedFetcher:
    """Fetches feeds under per-source rate limits and circuit breakers.

    The limiter and breaker registries are injected so every worker in the
    process shares the same per-source state.

    Example:
        >>> async with FeedFetcher.from_config(config, limiters, breakers) as fetcher:
        ...     result = await fetcher.fetch_feed(source.url, source.rate_key)
        ...     if result.success:
        ...         print(result.item_count)
    """

    def __init__(
        self,
        limiters: RateLimiterRegistry,
        breakers: CircuitBreakerRegistry,
        policy: RetryPolicy | None = None,
        timeout: float = 30,
        session: aiohttp.ClientSession | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        max_connections: int = 20,
    ):
        self.limiters = limiters
        self.breakers = breakers
        self.policy = policy or RetryPolicy()
        self.timeout = timeout
        self._session = session
        self._owns_session = session is None
        self._sleep = sleep
        self._max_connections = max_connections
        self._fetches = 0
        self._errors = 0

    @classmethod
    def from_config(
        cls,
        config: Config,
        limiters: RateLimiterRegistry,
        breakers: CircuitBreakerRegistry,
    ) -> "FeedFetcher":
        policy = RetryPolicy(
            max_attempts=config.fetch_max_attempts,
            initial_delay=config.fetch_retry_initial_delay,
            max_delay=config.fetch_retry_max_delay,
        )
        return cls(limiters, breakers, policy=policy, timeout=config.fetch_timeout_seconds)

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(limit=self._max_connections)
            self._session = aiohttp.ClientSession(connector=connector)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()

    async def __aenter__(self) -> "FeedFetcher":
        return self

    async def __aexit__(self, *args) -> None:
        await self.close()

    async def _request(self, url: str, verify_ssl: bool = True) -> bytes:
        """Single HTTP GET, mapped onto the fetch error taxonomy."""
        session = self._get_session()
        try:
            async with session.get(
                url,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
                headers={"User-Agent": USER_AGENT, "Accept": FEED_ACCEPT},
                ssl=_ssl_context(verify_ssl),
            ) as resp:
                if resp.status == 429 or resp.status >= 500:
                    raise TransientFetchError(f"HTTP {resp.status}", status=resp.status)
                if resp.status >= 400:
                    raise MalformedFeedError(f"HTTP {resp.status}")
                return await resp.read()
        except aiohttp.ClientSSLError as e:
            if verify_ssl:
                logger.debug("Feed %s: SSL error, retrying without verification", url)
                return await self._request(url, verify_ssl=False)
            raise TransientFetchError(f"SSL verification failed: {e}") from e
        except aiohttp.InvalidURL as e:
            raise MalformedFeedError(f"Invalid feed URL: {e}") from e
        except asyncio.TimeoutError as e:
            raise TransientFetchError(f"Request timed out after {self.timeout:.0f}s") from e
        except aiohttp.ClientError as e:
            raise TransientFetchError(f"{type(e).__name__}: {e}") from e

    async def _fetch_and_parse(self, url: str) -> Feed:
        body = await with_retry(lambda: self._request(url), self.policy, sleep=self._sleep)
        return parse_feed(body)

    async def fetch_feed(self, url: str, source_key: str) -> FetchResult:
        """Fetch and parse one feed.

        Args:
            url: Feed URL
            source_key: Key for the per-source rate limiter and breaker

        Returns:
            FetchResult with the parsed feed, or the failure reason and kind
        """
        start = time.monotonic()
        self._fetches += 1
        await self.limiters.acquire(source_key)
        breaker = self.breakers.get(source_key)
        try:
            feed = await breaker.call(lambda: self._fetch_and_parse(url))
        except CircuitOpenError as e:
            return self._failure(url, source_key, str(e), CIRCUIT_OPEN, start)
        except TransientFetchError as e:
            return self._failure(url, source_key, str(e), TRANSIENT, start)
        except MalformedFeedError as e:
            return self._failure(url, source_key, str(e), MALFORMED, start)

        duration = time.monotonic() - start
        logger.debug("Feed fetched | key=%s items=%d duration=%.2fs", source_key, len(feed.items), duration)
        return FetchResult.ok(url, feed, duration)

    def _failure(self, url: str, key: str, error: str, kind: str, start: float) -> FetchResult:
        self._errors += 1
        logger.warning("Feed fetch failed | key=%s kind=%s error=%s", key, kind, error)
        return FetchResult.failed(url, error, kind, time.monotonic() - start)

    async def test_feed(self, url: str) -> dict[str, Any]:
        """Check that a URL serves a readable feed (used before adding a source)."""
        result = await self.fetch_feed(url, f"test:{url}")
        return {
            "url": url,
            "valid": result.success,
            "title": result.feed.title if result.feed else None,
            "item_count": result.item_count,
            "error": result.error,
        }

    def stats(self) -> dict[str, Any]:
        return {
            "fetches": self._fetches,
            "errors": self._errors,
            "error_rate": self._errors / self._fetches if self._fetches else 0.0,
            "open_circuits": self.breakers.open_circuits(),
        }
