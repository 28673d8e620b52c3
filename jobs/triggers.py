"""Manual trigger surface used by the CLI."""

import logging
from datetime import date, datetime, timezone

from database import Database
from errors import ArticleNotFoundError
from jobs import queues
from jobs.queues import ClassificationJob, ScanRequest, ScanType
from jobs.runtime import Job, JobRuntime
from matcher import check_against_topics
from models.article import REANALYZABLE, StoredArticle
from models.scan import ScanTrigger

logger = logging.getLogger(__name__)


def trigger_scan(
    runtime: JobRuntime,
    scan_type: ScanType | str = ScanType.INCREMENTAL,
    source_id: str | None = None,
    trigger: ScanTrigger = ScanTrigger.MANUAL,
) -> Job:
    """Enqueue an orchestration run.

    Raises:
        pydantic.ValidationError: For a targeted scan without source_id
    """
    request = ScanRequest(type=ScanType(scan_type), source_id=source_id, trigger=trigger)
    job = queues.add_scan_job(runtime.queue(queues.SCAN_ORCHESTRATION), request)
    logger.info("Scan triggered | type=%s source=%s job=%s", request.type.value, source_id or "-", job.id[:8])
    return job


def _classification_payload(db: Database, article: StoredArticle) -> ClassificationJob:
    topics = db.active_topics()
    topic_ids = check_against_topics(article, topics) or {t.id for t in topics}
    source = db.get_source(article.source_id)
    return ClassificationJob(
        article_id=article.id,
        title=article.title,
        lede=article.lede,
        source_name=source.name if source else "",
        url=article.url,
        topic_ids=sorted(topic_ids),
    )


def trigger_reanalysis(db: Database, runtime: JobRuntime, article_id: str) -> Job:
    """Send a classified article back through classification.

    Raises:
        ArticleNotFoundError: If the article does not exist
        ValueError: If the article is not relevant or irrelevant
    """
    article = db.get_article(article_id)
    if article is None:
        raise ArticleNotFoundError(article_id)
    if article.status not in REANALYZABLE or not db.mark_for_reanalysis(article_id):
        raise ValueError(
            f"Article {article_id} is {article.status.value}; only relevant or irrelevant "
            "articles can be re-analyzed"
        )
    payload = _classification_payload(db, article)
    job = queues.add_classification_job(runtime.queue(queues.CLASSIFICATION), payload)
    logger.info("Re-analysis triggered | article=%s topics=%d", article_id, len(payload.topic_ids))
    return job


def trigger_pending_analysis(db: Database, runtime: JobRuntime, limit: int = 50) -> list[Job]:
    """Enqueue classification for up to limit pending articles, oldest first."""
    queue = runtime.queue(queues.CLASSIFICATION)
    jobs = [
        queues.add_classification_job(queue, _classification_payload(db, article))
        for article in db.pending_articles(limit)
    ]
    logger.info("Pending analysis triggered | articles=%d", len(jobs))
    return jobs


def trigger_digest(runtime: JobRuntime, day: date | None = None) -> Job:
    day = day or datetime.now(timezone.utc).date()
    return queues.add_digest_job(runtime.queue(queues.DAILY_DIGEST), day)
