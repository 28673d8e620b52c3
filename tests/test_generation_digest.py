"""Tests for post generation and the daily digest."""

import asyncio
from datetime import datetime, timezone
from types import SimpleNamespace

import pytest

from agents.post_generator import PostGeneratorAgent
from agents.summarizer import DigestAgent, fallback_digest
from errors import GenerationError
from jobs import queues
from jobs.queues import DigestJob, GenerationJob, default_settings
from jobs.runtime import JobRuntime
from models.article import ArticleStatus
from models.posts import PLATFORM_LIMITS, PostDrafts
from models.summary import DigestReport
from models.topic import TopicRelevance
from normalizer import normalize_items
from tests.helpers import FakeDigestAgent, FakeGenerator, make_item, make_job
from workers.digest import NO_ARTICLES_CONTENT, DigestProcessor
from workers.generation import PostGenerationProcessor


class StubAgent:
    def __init__(self, output=None, error=None):
        self.output = output
        self.error = error
        self.calls = []

    async def run(self, prompt, **kwargs):
        self.calls.append((prompt, kwargs))
        if self.error is not None:
            raise self.error
        usage = SimpleNamespace(requests=1, request_tokens=300, response_tokens=80)
        return SimpleNamespace(output=self.output, usage=lambda: usage)


@pytest.fixture
def article(db, source, topic):
    stored = db.insert_article(normalize_items([make_item(1)], source.id).articles[0])
    best = TopicRelevance(topic_id=topic.id, topic_name=topic.name, score=0.9, reasoning="Red tape")
    db.save_analysis(stored.id, best, ArticleStatus.RELEVANT)
    return db.get_article(stored.id)


class TestPostDrafts:
    def test_within_limits_truncates_long_drafts(self):
        drafts = PostDrafts(twitter="x" * 400, mastodon="short", bluesky="y" * 301)

        limited = drafts.within_limits()

        assert len(limited.twitter) == PLATFORM_LIMITS["twitter"]
        assert limited.twitter.endswith("…")
        assert len(limited.bluesky) == PLATFORM_LIMITS["bluesky"]
        assert limited.mastodon == "short"

    def test_drafts_within_limits_are_unchanged(self):
        drafts = PostDrafts(twitter="a", mastodon="b", bluesky="c")

        assert drafts.within_limits() is drafts


class TestPostGeneratorAgent:
    def test_generate_returns_limited_drafts(self, config, article):
        agent = PostGeneratorAgent(config)
        agent._agent = StubAgent(PostDrafts(twitter="t" * 300, mastodon="m", bluesky="b"))

        drafts = asyncio.run(agent.generate(article, "Bureaucratie", "Simplification"))

        assert len(drafts.twitter) == 280
        prompt = agent._agent.calls[0][0]
        assert "Topic: Bureaucratie" in prompt
        assert "Suggested angle: Simplification" in prompt

    def test_failure_raises_generation_error(self, config, article):
        agent = PostGeneratorAgent(config)
        agent._agent = StubAgent(error=TimeoutError("model timeout"))

        with pytest.raises(GenerationError, match="TimeoutError"):
            asyncio.run(agent.generate(article))


class TestPostGenerationProcessor:
    def job(self, article, topic):
        payload = GenerationJob(article_id=article.id, topic_id=topic.id, topic_name=topic.name, score=0.9)
        return make_job(queues.CONTENT_GENERATION, payload.model_dump(mode="json"))

    def test_stores_drafts_once_per_topic(self, db, article, topic):
        generator = FakeGenerator()
        worker = PostGenerationProcessor(db, generator)

        first = asyncio.run(worker.process(self.job(article, topic)))
        second = asyncio.run(worker.process(self.job(article, topic)))

        assert first.posts_id is not None
        assert second.skipped == "already generated"
        assert generator.calls == [article.id]
        posts = db.generated_posts(article.id)
        assert len(posts) == 1
        assert posts[0].topic_id == topic.id

    def test_generation_does_not_touch_classification(self, db, article, topic):
        asyncio.run(PostGenerationProcessor(db, FakeGenerator()).process(self.job(article, topic)))

        assert db.get_article(article.id).status == ArticleStatus.RELEVANT

    def test_missing_article_is_skipped(self, db, article, topic):
        job = self.job(article, topic)
        job.payload["article_id"] = "gone"

        result = asyncio.run(PostGenerationProcessor(db, FakeGenerator()).process(job))

        assert result.skipped == "article not found"


class TestDigestAgent:
    def test_model_output_is_returned(self, config, article):
        agent = DigestAgent(config)
        report = DigestReport(title="Journée", introduction="Intro", key_points=["Un"])
        agent._agent = StubAgent(report)
        day = datetime.now(timezone.utc).date()

        result = asyncio.run(agent.summarize(day, [article], {article.source_id: "Le Monde"}))

        assert result is report
        prompt, kwargs = agent._agent.calls[0]
        assert "[Le Monde]" in prompt
        assert kwargs["usage_limits"].request_limit == 3

    def test_model_failure_falls_back_to_title_list(self, config, article):
        agent = DigestAgent(config)
        agent._agent = StubAgent(error=RuntimeError("quota exceeded"))
        day = datetime.now(timezone.utc).date()

        result = asyncio.run(agent.summarize(day, [article]))

        assert result == fallback_digest(day, [article])
        assert result.key_points == [article.title]


class TestDigestProcessor:
    def job(self, day):
        return make_job(queues.DAILY_DIGEST, DigestJob(date=day).model_dump(mode="json"))

    def test_summarizes_relevant_articles_of_the_day(self, db, article):
        agent = FakeDigestAgent()
        day = datetime.now(timezone.utc).date()

        result = asyncio.run(DigestProcessor(db, agent).process(self.job(day)))

        assert result.articles == 1
        summary = db.get_daily_summary(day)
        assert summary.article_ids == [article.id]
        assert summary.content.startswith(f"Digest {day}")
        assert f"- {article.title}" in summary.content

    def test_day_without_articles_stores_placeholder(self, db):
        agent = FakeDigestAgent()
        day = datetime(2020, 5, 1).date()

        asyncio.run(DigestProcessor(db, agent).process(self.job(day)))

        assert db.get_daily_summary(day).content == NO_ARTICLES_CONTENT
        assert agent.calls == []

    def test_digest_job_is_keyed_per_day(self, job_store, config):
        runtime = JobRuntime(job_store, default_settings(config))
        day = datetime(2026, 1, 15).date()

        first = queues.add_digest_job(runtime.queue(queues.DAILY_DIGEST), day)
        second = queues.add_digest_job(runtime.queue(queues.DAILY_DIGEST), day)

        assert first.id == second.id
        assert first.job_key == "summary-2026-01-15"
