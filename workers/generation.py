"""Content generation worker: drafts posts for a relevant article."""

import logging
from dataclasses import dataclass

from database import Database
from jobs.queues import GenerationJob
from jobs.runtime import Job

logger = logging.getLogger(__name__)


@dataclass
class GenerationResult:
    article_id: str
    posts_id: str | None = None
    skipped: str | None = None


class PostGenerationProcessor:
    """Processor for the content-generation queue.

    Generation errors propagate for a job retry; the article's
    classification is never touched here.
    """

    def __init__(self, db: Database, generator):
        self.db = db
        self.generator = generator

    async def process(self, job: Job) -> GenerationResult:
        payload = GenerationJob.model_validate(job.payload)
        article = self.db.get_article(payload.article_id)
        if article is None:
            return GenerationResult(article_id=payload.article_id, skipped="article not found")

        # A retried or repeated job must not store a second set of drafts
        if any(p.topic_id == payload.topic_id for p in self.db.generated_posts(article.id)):
            return GenerationResult(article_id=article.id, skipped="already generated")

        drafts = await self.generator.generate(article, payload.topic_name, payload.potential_angle)
        posts = self.db.save_generated_posts(article.id, drafts, payload.topic_id)
        logger.info("Posts stored | article=%s topic=%s", article.id[:8], payload.topic_name or "-")
        return GenerationResult(article_id=article.id, posts_id=posts.id)
