"""Classification worker: scores a stored article against its matched topics."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Protocol

from agents.relevance import ClassificationOutcome
from config import Config
from database import Database
from errors import ClassificationError
from jobs import queues
from jobs.queues import ClassificationJob, GenerationJob
from jobs.runtime import Job, JobQueue
from models.article import ArticleStatus, StoredArticle
from models.topic import Topic

logger = logging.getLogger(__name__)


class Analyzer(Protocol):
    async def analyze(self, title: str, lede: str, source: str, topics: list[Topic]) -> ClassificationOutcome: ...


@dataclass
class AnalysisResult:
    article_id: str
    status: str
    best_score: float = 0.0
    best_topic: str | None = None
    topics_scored: int = 0
    generation_queued: bool = False


class ClassificationProcessor:
    """Processor for the classification queue.

    Status flow: analyzing -> relevant | irrelevant, or error when anything
    fails after analysis started (the job is then retried, and the retry
    moves the article back to analyzing).
    """

    def __init__(self, db: Database, analyzer: Analyzer, generation_queue: JobQueue, config: Config):
        self.db = db
        self.analyzer = analyzer
        self.generation_queue = generation_queue
        self.config = config

    def _topics(self, topic_ids: list[str]) -> list[Topic]:
        topics = [t for t in self.db.get_topics(topic_ids) if t.is_active]
        return topics or self.db.active_topics()

    async def process(self, job: Job) -> AnalysisResult:
        payload = ClassificationJob.model_validate(job.payload)
        article = self.db.get_article(payload.article_id)
        if article is None:
            logger.warning("Article no longer exists, skipping | id=%s", payload.article_id)
            return AnalysisResult(article_id=payload.article_id, status="missing")

        self.db.set_article_status(article.id, ArticleStatus.ANALYZING)
        try:
            return await self._classify(article, payload)
        except (Exception, asyncio.CancelledError):
            self.db.set_article_status(article.id, ArticleStatus.ERROR)
            raise

    async def _classify(self, article: StoredArticle, payload: ClassificationJob) -> AnalysisResult:
        topics = self._topics(payload.topic_ids)
        if not topics:
            self.db.save_analysis(article.id, None, ArticleStatus.IRRELEVANT)
            logger.info("No active topics, article marked irrelevant | id=%s", article.id[:8])
            return AnalysisResult(article_id=article.id, status=ArticleStatus.IRRELEVANT.value)

        outcome = await self.analyzer.analyze(article.title, article.lede, payload.source_name, topics)
        if not outcome.success:
            raise ClassificationError(f"Article {article.id}: {outcome.error}")

        self.db.save_topic_results(article.id, outcome.results)
        thresholds = {t.id: t.min_relevance_score for t in topics}
        relevant = any(r.score >= thresholds.get(r.topic_id, 1.0) for r in outcome.results)
        status = ArticleStatus.RELEVANT if relevant else ArticleStatus.IRRELEVANT
        best = outcome.best
        self.db.save_analysis(article.id, best, status)

        result = AnalysisResult(
            article_id=article.id,
            status=status.value,
            best_score=best.score if best else 0.0,
            best_topic=best.topic_name if best else None,
            topics_scored=len(outcome.results),
        )
        if best is not None and best.score >= self.config.generation_threshold:
            queues.add_generation_job(
                self.generation_queue,
                GenerationJob(
                    article_id=article.id,
                    topic_id=best.topic_id,
                    topic_name=best.topic_name,
                    score=best.score,
                    potential_angle=best.potential_angle,
                ),
            )
            result.generation_queued = True

        logger.info(
            "Article classified | id=%s status=%s best=%.2f topic=%s",
            article.id[:8], status.value, result.best_score, result.best_topic or "-",
        )
        return result
