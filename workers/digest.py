"""Daily digest worker."""

import logging
from dataclasses import dataclass

from database import Database
from jobs.queues import DigestJob
from jobs.runtime import Job

logger = logging.getLogger(__name__)

DIGEST_ARTICLE_LIMIT = 20
NO_ARTICLES_CONTENT = "No relevant articles for this day."


@dataclass
class DigestResult:
    date: str
    articles: int = 0


class DigestProcessor:
    """Processor for the daily-digest queue; upserts one row per date."""

    def __init__(self, db: Database, agent, limit: int = DIGEST_ARTICLE_LIMIT):
        self.db = db
        self.agent = agent
        self.limit = limit

    async def process(self, job: Job) -> DigestResult:
        day = DigestJob.model_validate(job.payload).date
        articles = self.db.relevant_articles_for_date(day, self.limit)
        if not articles:
            self.db.upsert_daily_summary(day, NO_ARTICLES_CONTENT, [])
            logger.info("Digest stored without articles | date=%s", day)
            return DigestResult(date=day.isoformat())

        source_names = {s.id: s.name for s in self.db.list_sources()}
        report = await self.agent.summarize(day, articles, source_names)
        self.db.upsert_daily_summary(day, report.to_text(), [a.id for a in articles])
        logger.info("Digest stored | date=%s articles=%d", day, len(articles))
        return DigestResult(date=day.isoformat(), articles=len(articles))
