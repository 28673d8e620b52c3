"""Relational store for sources, articles, topics and scan bookkeeping.

SQLite-backed. The schema is created on open with CREATE ... IF NOT EXISTS;
nothing here alters an existing table.

Database Schema:
    sources:          feed endpoints and their fetch bookkeeping
    articles:         stored articles, content_hash UNIQUE
    topics:           relevance criteria (keywords stored as JSON)
    article_topics:   one score per (article_id, topic_id)
    scan_logs:        per-run / per-source scan records
    generated_posts:  social drafts per article
    daily_summaries:  one digest per date

All timestamps are stored as Unix epoch integers (UTC).

Concurrency:
    The content_hash unique constraint is the only cross-worker ordering
    guarantee: concurrent inserts of the same hash resolve to exactly one
    row, and insert_article returns None for the losers.
"""

import json
import logging
import sqlite3
import uuid
from datetime import date, datetime, time as dtime, timedelta, timezone
from pathlib import Path
from typing import Any, Iterable

from models.article import ArticleStatus, ArticleUpdate, CandidateArticle, StoredArticle
from models.posts import GeneratedPosts, PostDrafts
from models.scan import ScanLog, ScanStatus, ScanTrigger
from models.source import Source, SourceCategory, SourceType, SourceUpdate
from models.summary import DailySummary
from models.topic import Topic, TopicRelevance

logger = logging.getLogger(__name__)

# Statuses the retention purge may delete
PURGEABLE_STATUSES = (ArticleStatus.IRRELEVANT.value, ArticleStatus.ERROR.value)


def _new_id() -> str:
    return uuid.uuid4().hex


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _ts(value: datetime | None) -> int | None:
    """Datetime -> epoch seconds (naive values are taken as UTC)."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp())


def _dt(value: int | None) -> datetime | None:
    """Epoch seconds -> aware UTC datetime."""
    if value is None:
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc)


class Database:
    """SQLite store used by every pipeline stage.

    Example:
        >>> with Database("scanner.db") as db:
        ...     source = db.add_source("Le Monde", "lemonde", "https://lemonde.fr/rss")
        ...     due = db.due_feed_sources(limit=20)
    """

    SCHEMA = """
    CREATE TABLE IF NOT EXISTS sources (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        slug TEXT NOT NULL UNIQUE,
        type TEXT NOT NULL DEFAULT 'rss',          -- rss | social
        category TEXT NOT NULL DEFAULT 'national', -- national | regional | social
        url TEXT NOT NULL,
        region TEXT,
        is_active INTEGER NOT NULL DEFAULT 1,
        fetch_interval_minutes INTEGER NOT NULL DEFAULT 60,
        last_fetched_at INTEGER,
        last_error TEXT,
        error_count INTEGER NOT NULL DEFAULT 0,
        created_at INTEGER NOT NULL
    );

    CREATE TABLE IF NOT EXISTS articles (
        id TEXT PRIMARY KEY,
        source_id TEXT NOT NULL,
        external_id TEXT NOT NULL,
        url TEXT NOT NULL,
        content_hash TEXT NOT NULL UNIQUE,
        title TEXT NOT NULL,
        lede TEXT NOT NULL,
        full_text TEXT,
        author TEXT,
        published_at INTEGER,
        status TEXT NOT NULL DEFAULT 'pending',
        relevance_score REAL,
        relevance_reasoning TEXT,
        potential_angle TEXT,
        analyzed_at INTEGER,
        created_at INTEGER NOT NULL
    );

    CREATE INDEX IF NOT EXISTS idx_articles_status_created ON articles(status, created_at);
    CREATE INDEX IF NOT EXISTS idx_articles_source ON articles(source_id);

    CREATE TABLE IF NOT EXISTS topics (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        slug TEXT NOT NULL UNIQUE,
        description TEXT NOT NULL DEFAULT '',
        keywords TEXT NOT NULL DEFAULT '[]',       -- JSON list
        ai_prompt TEXT NOT NULL DEFAULT '',
        min_relevance_score REAL NOT NULL DEFAULT 0.5,
        is_active INTEGER NOT NULL DEFAULT 1,
        is_system INTEGER NOT NULL DEFAULT 0,
        created_at INTEGER NOT NULL
    );

    CREATE TABLE IF NOT EXISTS article_topics (
        article_id TEXT NOT NULL,
        topic_id TEXT NOT NULL,
        score REAL NOT NULL,
        reasoning TEXT NOT NULL DEFAULT '',
        potential_angle TEXT,
        updated_at INTEGER NOT NULL,
        UNIQUE (article_id, topic_id)
    );

    CREATE TABLE IF NOT EXISTS scan_logs (
        id TEXT PRIMARY KEY,
        source_id TEXT,                            -- NULL for orchestration runs
        scan_type TEXT NOT NULL DEFAULT 'scheduled',
        status TEXT NOT NULL DEFAULT 'running',
        items_found INTEGER NOT NULL DEFAULT 0,
        items_new INTEGER NOT NULL DEFAULT 0,
        items_analyzed INTEGER NOT NULL DEFAULT 0,
        items_relevant INTEGER NOT NULL DEFAULT 0,
        pending_sources INTEGER NOT NULL DEFAULT 0,  -- orchestration runs: fetch jobs not yet final
        failed_sources INTEGER NOT NULL DEFAULT 0,
        error_message TEXT,
        started_at INTEGER NOT NULL,
        completed_at INTEGER
    );

    CREATE INDEX IF NOT EXISTS idx_scan_logs_started ON scan_logs(started_at);

    CREATE TABLE IF NOT EXISTS generated_posts (
        id TEXT PRIMARY KEY,
        article_id TEXT NOT NULL,
        topic_id TEXT,
        twitter TEXT NOT NULL,
        mastodon TEXT NOT NULL,
        bluesky TEXT NOT NULL,
        long_form TEXT NOT NULL DEFAULT '',
        tone TEXT NOT NULL DEFAULT '',
        hashtags TEXT NOT NULL DEFAULT '[]',       -- JSON list
        created_at INTEGER NOT NULL
    );

    CREATE TABLE IF NOT EXISTS daily_summaries (
        summary_date TEXT PRIMARY KEY,             -- YYYY-MM-DD
        content TEXT NOT NULL,
        article_ids TEXT NOT NULL DEFAULT '[]',    -- JSON list
        created_at INTEGER NOT NULL
    );
    """

    # Column allow-lists for partial updates
    SOURCE_UPDATE_COLUMNS = {
        "name": "name",
        "url": "url",
        "category": "category",
        "region": "region",
        "fetch_interval_minutes": "fetch_interval_minutes",
        "is_active": "is_active",
    }
    ARTICLE_UPDATE_COLUMNS = {
        "status": "status",
        "relevance_score": "relevance_score",
        "relevance_reasoning": "relevance_reasoning",
        "potential_angle": "potential_angle",
        "analyzed_at": "analyzed_at",
    }

    path: Path
    conn: sqlite3.Connection

    def __init__(self, path: Path | str):
        """Open (and create if needed) the database.

        Args:
            path: Path to SQLite database file
        """
        self.path = Path(path)
        self.conn = sqlite3.connect(str(self.path), timeout=30)
        self.conn.row_factory = sqlite3.Row

        # WAL mode allows concurrent readers during writes
        self.conn.execute("PRAGMA journal_mode=WAL")
        self.conn.executescript(self.SCHEMA)
        self.conn.commit()
        logger.debug("Database initialized | path=%s", self.path)

    # === Row mapping ===

    @staticmethod
    def _source(row: sqlite3.Row) -> Source:
        return Source(
            id=row["id"],
            name=row["name"],
            slug=row["slug"],
            type=SourceType(row["type"]),
            category=SourceCategory(row["category"]),
            url=row["url"],
            region=row["region"],
            is_active=bool(row["is_active"]),
            fetch_interval_minutes=row["fetch_interval_minutes"],
            last_fetched_at=_dt(row["last_fetched_at"]),
            last_error=row["last_error"],
            error_count=row["error_count"],
            created_at=_dt(row["created_at"]),
        )

    @staticmethod
    def _article(row: sqlite3.Row) -> StoredArticle:
        return StoredArticle(
            id=row["id"],
            source_id=row["source_id"],
            external_id=row["external_id"],
            url=row["url"],
            content_hash=row["content_hash"],
            title=row["title"],
            lede=row["lede"],
            full_text=row["full_text"],
            author=row["author"],
            published_at=_dt(row["published_at"]),
            status=ArticleStatus(row["status"]),
            relevance_score=row["relevance_score"],
            relevance_reasoning=row["relevance_reasoning"],
            potential_angle=row["potential_angle"],
            analyzed_at=_dt(row["analyzed_at"]),
            created_at=_dt(row["created_at"]),
        )

    @staticmethod
    def _topic(row: sqlite3.Row) -> Topic:
        return Topic(
            id=row["id"],
            name=row["name"],
            slug=row["slug"],
            description=row["description"],
            keywords=json.loads(row["keywords"]),
            ai_prompt=row["ai_prompt"],
            min_relevance_score=row["min_relevance_score"],
            is_active=bool(row["is_active"]),
            is_system=bool(row["is_system"]),
        )

    @staticmethod
    def _scan_log(row: sqlite3.Row) -> ScanLog:
        return ScanLog(
            id=row["id"],
            source_id=row["source_id"],
            scan_type=ScanTrigger(row["scan_type"]),
            status=ScanStatus(row["status"]),
            items_found=row["items_found"],
            items_new=row["items_new"],
            items_analyzed=row["items_analyzed"],
            items_relevant=row["items_relevant"],
            pending_sources=row["pending_sources"],
            failed_sources=row["failed_sources"],
            error_message=row["error_message"],
            started_at=_dt(row["started_at"]),
            completed_at=_dt(row["completed_at"]),
        )

    # === Sources ===

    def add_source(
        self,
        name: str,
        slug: str,
        url: str,
        category: SourceCategory | str = SourceCategory.NATIONAL,
        type: SourceType | str = SourceType.RSS,
        fetch_interval_minutes: int = 60,
        region: str | None = None,
        is_active: bool = True,
    ) -> Source:
        """Create a source.

        Raises:
            sqlite3.IntegrityError: If the slug is already taken
        """
        source = Source(
            id=_new_id(),
            name=name,
            slug=slug,
            url=url,
            category=SourceCategory(category),
            type=SourceType(type),
            fetch_interval_minutes=fetch_interval_minutes,
            region=region,
            is_active=is_active,
            created_at=_now(),
        )
        self.conn.execute(
            """
            INSERT INTO sources
            (id, name, slug, type, category, url, region, is_active,
             fetch_interval_minutes, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                source.id, source.name, source.slug, source.type.value,
                source.category.value, source.url, source.region,
                int(source.is_active), source.fetch_interval_minutes,
                _ts(source.created_at),
            ),
        )
        self.conn.commit()
        logger.info("Source added | id=%s slug=%s", source.id, source.slug)
        return source

    def get_source(self, source_id: str) -> Source | None:
        row = self.conn.execute("SELECT * FROM sources WHERE id = ?", (source_id,)).fetchone()
        return self._source(row) if row else None

    def list_sources(self, active_only: bool = False) -> list[Source]:
        query = "SELECT * FROM sources"
        if active_only:
            query += " WHERE is_active = 1"
        query += " ORDER BY name"
        return [self._source(r) for r in self.conn.execute(query).fetchall()]

    def active_feed_sources(self) -> list[Source]:
        """Every active RSS source (full scan selection)."""
        rows = self.conn.execute(
            "SELECT * FROM sources WHERE is_active = 1 AND type = ? ORDER BY name",
            (SourceType.RSS.value,),
        ).fetchall()
        return [self._source(r) for r in rows]

    def due_feed_sources(self, limit: int, now: datetime | None = None) -> list[Source]:
        """Active RSS sources due for an incremental fetch.

        A source is due when it was never fetched or its last fetch is at
        least fetch_interval_minutes old. Never-fetched sources come first,
        then the oldest-fetched.

        Args:
            limit: Max sources returned (burst cap)
            now: Reference time (defaults to current UTC time)
        """
        now_ts = _ts(now or _now())
        rows = self.conn.execute(
            """
            SELECT * FROM sources
            WHERE is_active = 1
              AND type = ?
              AND (last_fetched_at IS NULL
                   OR last_fetched_at <= ? - fetch_interval_minutes * 60)
            ORDER BY last_fetched_at IS NOT NULL, last_fetched_at ASC
            LIMIT ?
            """,
            (SourceType.RSS.value, now_ts, limit),
        ).fetchall()
        return [self._source(r) for r in rows]

    def update_source(self, source_id: str, update: SourceUpdate) -> bool:
        """Apply an operator update; returns whether a row changed."""
        values = update.model_dump(exclude_none=True)
        if not values:
            return False
        assignments = []
        params: list[Any] = []
        for field_name, value in values.items():
            column = self.SOURCE_UPDATE_COLUMNS[field_name]
            if hasattr(value, "value"):
                value = value.value
            if isinstance(value, bool):
                value = int(value)
            assignments.append(f"{column} = ?")
            params.append(value)
        params.append(source_id)
        cursor = self.conn.execute(
            f"UPDATE sources SET {', '.join(assignments)} WHERE id = ?", params
        )
        self.conn.commit()
        return cursor.rowcount > 0

    def record_fetch_success(self, source_id: str, when: datetime | None = None) -> None:
        """Stamp a successful fetch and reset the error streak."""
        self.conn.execute(
            """
            UPDATE sources
            SET last_fetched_at = ?, error_count = 0, last_error = NULL
            WHERE id = ?
            """,
            (_ts(when or _now()), source_id),
        )
        self.conn.commit()

    def record_fetch_error(self, source_id: str, message: str) -> None:
        """Count a failed fetch and keep its message."""
        self.conn.execute(
            "UPDATE sources SET error_count = error_count + 1, last_error = ? WHERE id = ?",
            (message[:1000], source_id),
        )
        self.conn.commit()
        logger.debug("Source error recorded | id=%s error=%s", source_id, message[:100])

    # === Articles ===

    def existing_hashes(self, hashes: Iterable[str]) -> set[str]:
        """Return which content hashes are already stored.

        Callers are expected to bound the batch size.
        """
        hashes = list(hashes)
        if not hashes:
            return set()
        placeholders = ",".join("?" * len(hashes))
        query = f"SELECT content_hash FROM articles WHERE content_hash IN ({placeholders})"
        return {row["content_hash"] for row in self.conn.execute(query, hashes).fetchall()}

    def insert_article(self, candidate: CandidateArticle) -> StoredArticle | None:
        """Store a candidate as a pending article.

        Returns:
            The stored article, or None when the content hash already exists
        """
        article_id = _new_id()
        created_at = _now()
        cursor = self.conn.execute(
            """
            INSERT INTO articles
            (id, source_id, external_id, url, content_hash, title, lede,
             full_text, author, published_at, status, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(content_hash) DO NOTHING
            """,
            (
                article_id, candidate.source_id, candidate.external_id,
                candidate.url, candidate.content_hash, candidate.title,
                candidate.lede, candidate.full_text, candidate.author,
                _ts(candidate.published_at), ArticleStatus.PENDING.value,
                _ts(created_at),
            ),
        )
        self.conn.commit()
        if cursor.rowcount != 1:
            logger.debug("Article already stored | hash=%s", candidate.content_hash[:16])
            return None
        return StoredArticle(
            id=article_id,
            created_at=created_at.replace(microsecond=0),
            **candidate.model_dump(),
        )

    def get_article(self, article_id: str) -> StoredArticle | None:
        row = self.conn.execute("SELECT * FROM articles WHERE id = ?", (article_id,)).fetchone()
        return self._article(row) if row else None

    def update_article(self, article_id: str, update: ArticleUpdate) -> bool:
        """Apply an allow-listed partial update; returns whether a row changed."""
        values = update.model_dump(exclude_none=True)
        if not values:
            return False
        assignments = []
        params: list[Any] = []
        for field_name, value in values.items():
            column = self.ARTICLE_UPDATE_COLUMNS[field_name]
            if isinstance(value, ArticleStatus):
                value = value.value
            elif isinstance(value, datetime):
                value = _ts(value)
            assignments.append(f"{column} = ?")
            params.append(value)
        params.append(article_id)
        cursor = self.conn.execute(
            f"UPDATE articles SET {', '.join(assignments)} WHERE id = ?", params
        )
        self.conn.commit()
        return cursor.rowcount > 0

    def set_article_status(self, article_id: str, status: ArticleStatus) -> bool:
        return self.update_article(article_id, ArticleUpdate(status=status))

    def save_analysis(
        self,
        article_id: str,
        best: TopicRelevance | None,
        status: ArticleStatus,
    ) -> None:
        """Store the best topic result on the article and set its final status."""
        reasoning = f"[{best.topic_name}] {best.reasoning}" if best else None
        self.conn.execute(
            """
            UPDATE articles
            SET status = ?, relevance_score = ?, relevance_reasoning = ?,
                potential_angle = ?, analyzed_at = ?
            WHERE id = ?
            """,
            (
                status.value,
                best.score if best else 0.0,
                reasoning,
                best.potential_angle if best else None,
                _ts(_now()),
                article_id,
            ),
        )
        self.conn.commit()

    def mark_for_reanalysis(self, article_id: str) -> bool:
        """Send a relevant or irrelevant article back to pending.

        Returns:
            True if the article was reset, False if it does not exist or is
            in another state
        """
        cursor = self.conn.execute(
            """
            UPDATE articles SET status = ?, analyzed_at = NULL
            WHERE id = ? AND status IN (?, ?)
            """,
            (
                ArticleStatus.PENDING.value, article_id,
                ArticleStatus.RELEVANT.value, ArticleStatus.IRRELEVANT.value,
            ),
        )
        self.conn.commit()
        return cursor.rowcount > 0

    def pending_articles(self, limit: int = 50) -> list[StoredArticle]:
        rows = self.conn.execute(
            "SELECT * FROM articles WHERE status = ? ORDER BY created_at ASC LIMIT ?",
            (ArticleStatus.PENDING.value, limit),
        ).fetchall()
        return [self._article(r) for r in rows]

    def relevant_articles_for_date(self, day: date, limit: int = 20) -> list[StoredArticle]:
        """Relevant articles stored on the given UTC day, best first."""
        start = datetime.combine(day, dtime.min, tzinfo=timezone.utc)
        end = start + timedelta(days=1)
        rows = self.conn.execute(
            """
            SELECT * FROM articles
            WHERE status = ? AND created_at >= ? AND created_at < ?
            ORDER BY relevance_score DESC, created_at ASC
            LIMIT ?
            """,
            (ArticleStatus.RELEVANT.value, _ts(start), _ts(end), limit),
        ).fetchall()
        return [self._article(r) for r in rows]

    # === Topics ===

    def add_topic(
        self,
        name: str,
        slug: str,
        keywords: list[str],
        ai_prompt: str = "",
        description: str = "",
        min_relevance_score: float = 0.5,
        is_system: bool = False,
        is_active: bool = True,
    ) -> Topic:
        """Create a topic (validated: an active topic needs keywords)."""
        topic = Topic(
            id=_new_id(),
            name=name,
            slug=slug,
            keywords=keywords,
            ai_prompt=ai_prompt,
            description=description,
            min_relevance_score=min_relevance_score,
            is_system=is_system,
            is_active=is_active,
        )
        self.conn.execute(
            """
            INSERT INTO topics
            (id, name, slug, description, keywords, ai_prompt,
             min_relevance_score, is_active, is_system, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                topic.id, topic.name, topic.slug, topic.description,
                json.dumps(topic.keywords, ensure_ascii=False), topic.ai_prompt,
                topic.min_relevance_score, int(topic.is_active),
                int(topic.is_system), _ts(_now()),
            ),
        )
        self.conn.commit()
        logger.info("Topic added | id=%s slug=%s keywords=%d", topic.id, topic.slug, len(topic.keywords))
        return topic

    def get_topic(self, topic_id: str) -> Topic | None:
        row = self.conn.execute("SELECT * FROM topics WHERE id = ?", (topic_id,)).fetchone()
        return self._topic(row) if row else None

    def get_topics(self, topic_ids: Iterable[str]) -> list[Topic]:
        ids = list(topic_ids)
        if not ids:
            return []
        placeholders = ",".join("?" * len(ids))
        rows = self.conn.execute(
            f"SELECT * FROM topics WHERE id IN ({placeholders}) ORDER BY name", ids
        ).fetchall()
        return [self._topic(r) for r in rows]

    def active_topics(self) -> list[Topic]:
        rows = self.conn.execute(
            "SELECT * FROM topics WHERE is_active = 1 ORDER BY name"
        ).fetchall()
        return [self._topic(r) for r in rows]

    def list_topics(self) -> list[Topic]:
        return [self._topic(r) for r in self.conn.execute("SELECT * FROM topics ORDER BY name")]

    def deactivate_topic(self, topic_id: str) -> bool:
        cursor = self.conn.execute("UPDATE topics SET is_active = 0 WHERE id = ?", (topic_id,))
        self.conn.commit()
        return cursor.rowcount > 0

    def delete_topic(self, topic_id: str) -> bool:
        """Delete a user topic and its results.

        Raises:
            ValueError: For system topics, which can only be deactivated
        """
        topic = self.get_topic(topic_id)
        if topic is None:
            return False
        if topic.is_system:
            raise ValueError(f"System topic '{topic.slug}' cannot be deleted, only deactivated")
        self.conn.execute("DELETE FROM article_topics WHERE topic_id = ?", (topic_id,))
        self.conn.execute("DELETE FROM topics WHERE id = ?", (topic_id,))
        self.conn.commit()
        return True

    # === Article-topic results ===

    def save_topic_results(self, article_id: str, results: list[TopicRelevance]) -> None:
        """Upsert one result per (article, topic); re-analysis overwrites."""
        now_ts = _ts(_now())
        self.conn.executemany(
            """
            INSERT INTO article_topics
            (article_id, topic_id, score, reasoning, potential_angle, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(article_id, topic_id) DO UPDATE SET
                score = excluded.score,
                reasoning = excluded.reasoning,
                potential_angle = excluded.potential_angle,
                updated_at = excluded.updated_at
            """,
            [
                (article_id, r.topic_id, r.score, r.reasoning, r.potential_angle, now_ts)
                for r in results
            ],
        )
        self.conn.commit()

    def topic_results(self, article_id: str) -> list[TopicRelevance]:
        rows = self.conn.execute(
            """
            SELECT at.*, t.name AS topic_name
            FROM article_topics at
            LEFT JOIN topics t ON t.id = at.topic_id
            WHERE at.article_id = ?
            ORDER BY at.score DESC
            """,
            (article_id,),
        ).fetchall()
        return [
            TopicRelevance(
                topic_id=r["topic_id"],
                topic_name=r["topic_name"] or "",
                score=r["score"],
                reasoning=r["reasoning"],
                potential_angle=r["potential_angle"],
            )
            for r in rows
        ]

    # === Scan logs ===

    def create_scan_log(
        self,
        source_id: str | None = None,
        scan_type: ScanTrigger = ScanTrigger.SCHEDULED,
    ) -> ScanLog:
        log = ScanLog(
            id=_new_id(),
            source_id=source_id,
            scan_type=scan_type,
            started_at=_now().replace(microsecond=0),
        )
        self.conn.execute(
            "INSERT INTO scan_logs (id, source_id, scan_type, status, started_at) VALUES (?, ?, ?, ?, ?)",
            (log.id, source_id, scan_type.value, ScanStatus.RUNNING.value, _ts(log.started_at)),
        )
        self.conn.commit()
        return log

    def get_scan_log(self, log_id: str) -> ScanLog | None:
        row = self.conn.execute("SELECT * FROM scan_logs WHERE id = ?", (log_id,)).fetchone()
        return self._scan_log(row) if row else None

    def recent_scan_logs(self, limit: int = 20) -> list[ScanLog]:
        rows = self.conn.execute(
            "SELECT * FROM scan_logs ORDER BY started_at DESC LIMIT ?", (limit,)
        ).fetchall()
        return [self._scan_log(r) for r in rows]

    def update_scan_counts(
        self,
        log_id: str,
        found: int | None = None,
        new: int | None = None,
        analyzed: int | None = None,
        relevant: int | None = None,
    ) -> bool:
        """Set counters on a running scan log; terminal logs are left alone."""
        columns = {
            "items_found": found,
            "items_new": new,
            "items_analyzed": analyzed,
            "items_relevant": relevant,
        }
        values = {k: v for k, v in columns.items() if v is not None}
        if not values:
            return False
        assignments = ", ".join(f"{k} = ?" for k in values)
        cursor = self.conn.execute(
            f"UPDATE scan_logs SET {assignments} WHERE id = ? AND status = ?",
            [*values.values(), log_id, ScanStatus.RUNNING.value],
        )
        self.conn.commit()
        return cursor.rowcount > 0

    def complete_scan_log(
        self,
        log_id: str,
        status: ScanStatus = ScanStatus.COMPLETED,
        error_message: str | None = None,
    ) -> bool:
        """Close a running scan log as completed or partial."""
        if status not in (ScanStatus.COMPLETED, ScanStatus.PARTIAL):
            raise ValueError(f"complete_scan_log does not accept status {status.value}")
        return self._close_scan_log(log_id, status, error_message)

    def fail_scan_log(self, log_id: str, error_message: str) -> bool:
        return self._close_scan_log(log_id, ScanStatus.FAILED, error_message)

    def expect_source_scans(self, log_id: str, pending: int, failed: int = 0, error_message: str | None = None) -> bool:
        """Leave an orchestration log running until `pending` fetch jobs finish.

        `failed` counts sources that already failed at dispatch; the log
        closes as partial if it is non-zero by the end.
        """
        cursor = self.conn.execute(
            """
            UPDATE scan_logs SET pending_sources = ?, failed_sources = ?, error_message = ?
            WHERE id = ? AND status = ?
            """,
            (pending, failed, error_message[:2000] if error_message else None, log_id, ScanStatus.RUNNING.value),
        )
        self.conn.commit()
        return cursor.rowcount > 0

    def finish_source_scan(self, log_id: str, failed: bool = False) -> ScanLog | None:
        """Count one fetch job of an orchestration run as final.

        The last one closes the log: partial if any source failed,
        completed otherwise.

        Returns:
            The updated log, or None if it was not waiting on sources
        """
        cursor = self.conn.execute(
            """
            UPDATE scan_logs
            SET pending_sources = pending_sources - 1, failed_sources = failed_sources + ?
            WHERE id = ? AND status = ? AND pending_sources > 0
            """,
            (int(failed), log_id, ScanStatus.RUNNING.value),
        )
        self.conn.commit()
        if cursor.rowcount == 0:
            return None
        log = self.get_scan_log(log_id)
        if log.pending_sources == 0:
            if log.failed_sources:
                message = log.error_message or f"{log.failed_sources} source scan(s) failed or had errors"
                self.complete_scan_log(log_id, ScanStatus.PARTIAL, message)
            else:
                self.complete_scan_log(log_id)
            log = self.get_scan_log(log_id)
        return log

    def _close_scan_log(self, log_id: str, status: ScanStatus, error_message: str | None) -> bool:
        cursor = self.conn.execute(
            """
            UPDATE scan_logs SET status = ?, error_message = ?, completed_at = ?
            WHERE id = ? AND status = ?
            """,
            (
                status.value,
                error_message[:2000] if error_message else None,
                _ts(_now()),
                log_id,
                ScanStatus.RUNNING.value,
            ),
        )
        self.conn.commit()
        if cursor.rowcount == 0:
            logger.warning("Scan log not running, left unchanged | id=%s status=%s", log_id, status.value)
            return False
        return True

    # === Posts and summaries ===

    def save_generated_posts(
        self,
        article_id: str,
        drafts: PostDrafts,
        topic_id: str | None = None,
    ) -> GeneratedPosts:
        posts = GeneratedPosts(
            id=_new_id(),
            article_id=article_id,
            topic_id=topic_id,
            drafts=drafts,
            created_at=_now(),
        )
        self.conn.execute(
            """
            INSERT INTO generated_posts
            (id, article_id, topic_id, twitter, mastodon, bluesky, long_form,
             tone, hashtags, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                posts.id, article_id, topic_id, drafts.twitter, drafts.mastodon,
                drafts.bluesky, drafts.long_form, drafts.tone,
                json.dumps(drafts.hashtags, ensure_ascii=False), _ts(posts.created_at),
            ),
        )
        self.conn.commit()
        return posts

    def generated_posts(self, article_id: str) -> list[GeneratedPosts]:
        rows = self.conn.execute(
            "SELECT * FROM generated_posts WHERE article_id = ? ORDER BY created_at",
            (article_id,),
        ).fetchall()
        return [
            GeneratedPosts(
                id=r["id"],
                article_id=r["article_id"],
                topic_id=r["topic_id"],
                drafts=PostDrafts(
                    twitter=r["twitter"],
                    mastodon=r["mastodon"],
                    bluesky=r["bluesky"],
                    long_form=r["long_form"],
                    tone=r["tone"],
                    hashtags=json.loads(r["hashtags"]),
                ),
                created_at=_dt(r["created_at"]),
            )
            for r in rows
        ]

    def upsert_daily_summary(self, day: date, content: str, article_ids: list[str]) -> None:
        self.conn.execute(
            """
            INSERT INTO daily_summaries (summary_date, content, article_ids, created_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(summary_date) DO UPDATE SET
                content = excluded.content,
                article_ids = excluded.article_ids,
                created_at = excluded.created_at
            """,
            (day.isoformat(), content, json.dumps(article_ids), _ts(_now())),
        )
        self.conn.commit()

    def get_daily_summary(self, day: date) -> DailySummary | None:
        row = self.conn.execute(
            "SELECT * FROM daily_summaries WHERE summary_date = ?", (day.isoformat(),)
        ).fetchone()
        if not row:
            return None
        return DailySummary(
            summary_date=date.fromisoformat(row["summary_date"]),
            content=row["content"],
            article_ids=json.loads(row["article_ids"]),
            created_at=_dt(row["created_at"]),
        )

    # === Retention ===

    def purge_old_articles(self, days: int, now: datetime | None = None) -> int:
        """Delete irrelevant/error articles older than days.

        Relevant, pending and analyzing articles are never purged.

        Returns:
            Number of articles deleted
        """
        cutoff = _ts((now or _now()) - timedelta(days=days))
        placeholders = ",".join("?" * len(PURGEABLE_STATUSES))
        where = f"status IN ({placeholders}) AND created_at < ?"
        params = [*PURGEABLE_STATUSES, cutoff]
        for child in ("article_topics", "generated_posts"):
            self.conn.execute(
                f"DELETE FROM {child} WHERE article_id IN (SELECT id FROM articles WHERE {where})",
                params,
            )
        cursor = self.conn.execute(f"DELETE FROM articles WHERE {where}", params)
        self.conn.commit()
        deleted = cursor.rowcount
        if deleted > 0:
            logger.info("Articles purged | deleted=%d days=%d", deleted, days)
        return deleted

    def purge_scan_logs(self, days: int, now: datetime | None = None) -> int:
        cutoff = _ts((now or _now()) - timedelta(days=days))
        cursor = self.conn.execute("DELETE FROM scan_logs WHERE started_at < ?", (cutoff,))
        self.conn.commit()
        return cursor.rowcount

    def purge_daily_summaries(self, days: int, now: datetime | None = None) -> int:
        cutoff = ((now or _now()) - timedelta(days=days)).date().isoformat()
        cursor = self.conn.execute("DELETE FROM daily_summaries WHERE summary_date < ?", (cutoff,))
        self.conn.commit()
        return cursor.rowcount

    # === Stats ===

    def stats(self) -> dict[str, Any]:
        """Counts for the status command."""
        by_status = {
            row["status"]: row["n"]
            for row in self.conn.execute(
                "SELECT status, COUNT(*) AS n FROM articles GROUP BY status"
            ).fetchall()
        }
        sources = self.conn.execute(
            """
            SELECT COUNT(*) AS total,
                   COALESCE(SUM(is_active), 0) AS active,
                   COALESCE(SUM(CASE WHEN error_count > 0 THEN 1 ELSE 0 END), 0) AS failing
            FROM sources
            """
        ).fetchone()
        topics = self.conn.execute(
            "SELECT COUNT(*) AS total, COALESCE(SUM(is_active), 0) AS active FROM topics"
        ).fetchone()
        return {
            "articles": sum(by_status.values()),
            "articles_by_status": by_status,
            "sources": sources["total"],
            "sources_active": sources["active"],
            "sources_failing": sources["failing"],
            "topics": topics["total"],
            "topics_active": topics["active"],
        }

    def close(self) -> None:
        self.conn.close()

    def __enter__(self) -> "Database":
        return self

    def __exit__(self, *args) -> None:
        self.close()
