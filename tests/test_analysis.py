"""Tests for relevance scoring and the classification worker."""

import asyncio
import json
import sqlite3
from types import SimpleNamespace

import pytest
from pydantic_ai.messages import ModelResponse, TextPart
from pydantic_ai.models.function import AgentInfo, FunctionModel

from agents.relevance import (
    MISSING_RESULT_REASONING,
    SHORT_LEDE_SCORE,
    RawTopicJudgment,
    RelevanceAgent,
    RelevanceResponse,
    merge_topic_results,
)
from errors import ClassificationError
from jobs import queues
from jobs.queues import ClassificationJob, default_settings
from jobs.runtime import JobRuntime
from models.article import ArticleStatus
from models.topic import Topic
from normalizer import normalize_items
from tests.helpers import FakeAnalyzer, make_item, make_job
from workers.analysis import ClassificationProcessor

TOPICS = [
    Topic(id="t1", name="Bureaucratie", slug="bureaucratie", keywords=["cerfa"]),
    Topic(id="t2", name="Fiscalité", slug="fiscalite", keywords=["impôt"]),
]

LONG_LEDE = "Le gouvernement annonce la fusion de trois formulaires cerfa pour les artisans et commerçants."


class StubAgent:
    """Stands in for a pydantic-ai Agent: returns a fixed output or raises."""

    def __init__(self, output=None, error=None):
        self.output = output
        self.error = error
        self.prompts = []

    async def run(self, prompt, **kwargs):
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        usage = SimpleNamespace(requests=1, request_tokens=120, response_tokens=40)
        return SimpleNamespace(output=self.output, usage=lambda: usage)


class TestMergeTopicResults:
    def test_missing_topic_gets_zero_with_placeholder(self):
        raw = [RawTopicJudgment(topic_id="t1", relevance_score=0.8, reasoning="Direct")]

        results = merge_topic_results(TOPICS, raw)

        assert [(r.topic_id, r.score) for r in results] == [("t1", 0.8), ("t2", 0.0)]
        assert results[1].reasoning == MISSING_RESULT_REASONING

    def test_scores_are_clamped_and_unknown_ids_ignored(self):
        raw = [
            {"topic_id": "t1", "relevance_score": 1.7},
            {"topic_id": "t2", "relevance_score": -0.3},
            {"topic_id": "other", "relevance_score": 0.9},
        ]

        results = merge_topic_results(TOPICS, raw)

        assert [r.score for r in results] == [1.0, 0.0]
        assert {r.topic_id for r in results} == {"t1", "t2"}

    def test_invalid_scores_count_as_missing_and_first_valid_wins(self):
        raw = [
            {"topic_id": "t1", "relevance_score": "high"},
            {"topic_id": "t1", "relevance_score": float("nan")},
            {"topic_id": "t1", "relevance_score": 0.4, "reasoning": "first valid"},
            {"topic_id": "t1", "relevance_score": 0.9, "reasoning": "later"},
        ]

        results = merge_topic_results(TOPICS, raw)

        assert results[0].score == 0.4
        assert results[0].reasoning == "first valid"

    def test_empty_angle_becomes_none(self):
        raw = [RawTopicJudgment(topic_id="t1", relevance_score=0.5, potential_angle="")]

        assert merge_topic_results(TOPICS[:1], raw)[0].potential_angle is None


class TestRelevanceAgent:
    def test_short_lede_skips_model_call(self, config):
        agent = RelevanceAgent(config)
        stub = StubAgent(error=AssertionError("model must not be called"))
        agent._agent = stub

        outcome = asyncio.run(agent.analyze("Titre", "Trop court.", "Le Monde", TOPICS))

        assert outcome.success
        assert [r.score for r in outcome.results] == [SHORT_LEDE_SCORE, SHORT_LEDE_SCORE]
        assert stub.prompts == []

    def test_model_output_is_merged(self, config):
        agent = RelevanceAgent(config)
        agent._agent = StubAgent(
            RelevanceResponse(results=[RawTopicJudgment(topic_id="t2", relevance_score=0.7)])
        )

        outcome = asyncio.run(agent.analyze("Titre", LONG_LEDE, "Le Monde", TOPICS))

        assert outcome.success
        assert outcome.best.topic_id == "t2"
        assert [r.topic_id for r in outcome.results] == ["t1", "t2"]
        prompt = agent._agent.prompts[0]
        assert 'id: "t1"' in prompt and "Source: Le Monde" in prompt

    def test_service_failure_is_returned_not_raised(self, config):
        agent = RelevanceAgent(config)
        agent._agent = StubAgent(error=ConnectionError("503 Service Unavailable"))

        outcome = asyncio.run(agent.analyze("Titre", LONG_LEDE, "Le Monde", TOPICS))

        assert outcome.success is False
        assert "ConnectionError" in outcome.error
        assert agent.stats() == {"calls": 1, "failures": 1}

    def test_malformed_entry_for_one_topic_keeps_the_others(self, config):
        replies = []

        def reply(messages, info: AgentInfo) -> ModelResponse:
            body = {
                "results": [
                    {"topic_id": "t1", "relevance_score": 0.8, "reasoning": "Direct", "potential_angle": "Artisans"},
                    {"topic_id": "t2", "relevance_score": "n/a"},
                    "not an object",
                ]
            }
            replies.append(body)
            return ModelResponse(parts=[TextPart(content=json.dumps(body))])

        agent = RelevanceAgent(config)
        with agent.agent.override(model=FunctionModel(reply)):
            outcome = asyncio.run(agent.analyze("Titre", LONG_LEDE, "Le Monde", TOPICS))

        assert len(replies) == 1
        assert outcome.success
        first, second = outcome.results
        assert (first.topic_id, first.score, first.potential_angle) == ("t1", 0.8, "Artisans")
        assert (second.topic_id, second.score) == ("t2", 0.0)
        assert second.reasoning == MISSING_RESULT_REASONING


@pytest.fixture
def runtime(job_store, config):
    return JobRuntime(job_store, default_settings(config))


@pytest.fixture
def article(db, source):
    return db.insert_article(normalize_items([make_item(1)], source.id).articles[0])


def classify_job(article, topic_ids):
    payload = ClassificationJob(
        article_id=article.id,
        title=article.title,
        lede=article.lede,
        source_name="Le Monde",
        topic_ids=topic_ids,
    )
    return make_job(queues.CLASSIFICATION, payload.model_dump(mode="json"))


def processor(db, runtime, config, analyzer):
    return ClassificationProcessor(db, analyzer, runtime.queue(queues.CONTENT_GENERATION), config)


class TestClassificationProcessor:
    def test_relevant_article_gets_generation_job(self, db, runtime, config, article, topic):
        result = asyncio.run(
            processor(db, runtime, config, FakeAnalyzer(score=0.9)).process(classify_job(article, [topic.id]))
        )

        assert result.status == ArticleStatus.RELEVANT.value
        assert result.generation_queued is True
        stored = db.get_article(article.id)
        assert stored.status == ArticleStatus.RELEVANT
        assert stored.relevance_score == 0.9
        assert db.topic_results(article.id)[0].topic_id == topic.id
        jobs = runtime.store.list_jobs(queues.CONTENT_GENERATION)
        assert [j.payload["topic_id"] for j in jobs] == [topic.id]
        assert jobs[0].priority == queues.GENERATION_PRIORITY

    def test_relevant_below_generation_threshold(self, db, runtime, config, article, topic):
        result = asyncio.run(
            processor(db, runtime, config, FakeAnalyzer(score=0.55)).process(classify_job(article, [topic.id]))
        )

        assert result.status == ArticleStatus.RELEVANT.value
        assert result.generation_queued is False
        assert runtime.store.list_jobs(queues.CONTENT_GENERATION) == []

    def test_low_score_is_irrelevant(self, db, runtime, config, article, topic):
        result = asyncio.run(
            processor(db, runtime, config, FakeAnalyzer(score=0.2)).process(classify_job(article, [topic.id]))
        )

        assert result.status == ArticleStatus.IRRELEVANT.value
        assert db.get_article(article.id).status == ArticleStatus.IRRELEVANT

    def test_service_failure_marks_error_and_raises(self, db, runtime, config, article, topic):
        with pytest.raises(ClassificationError):
            asyncio.run(
                processor(db, runtime, config, FakeAnalyzer(fail=True)).process(classify_job(article, [topic.id]))
            )

        assert db.get_article(article.id).status == ArticleStatus.ERROR

    def test_store_failure_after_scoring_marks_error_and_raises(self, db, runtime, config, article, topic, monkeypatch):
        def locked(*args, **kwargs):
            raise sqlite3.OperationalError("database is locked")

        monkeypatch.setattr(db, "save_topic_results", locked)

        with pytest.raises(sqlite3.OperationalError):
            asyncio.run(
                processor(db, runtime, config, FakeAnalyzer(score=0.9)).process(classify_job(article, [topic.id]))
            )

        assert db.get_article(article.id).status == ArticleStatus.ERROR

    def test_generation_enqueue_failure_marks_error(self, db, runtime, config, article, topic, monkeypatch):
        def full(*args, **kwargs):
            raise sqlite3.OperationalError("disk I/O error")

        monkeypatch.setattr(runtime.queue(queues.CONTENT_GENERATION), "add", full)

        with pytest.raises(sqlite3.OperationalError):
            asyncio.run(
                processor(db, runtime, config, FakeAnalyzer(score=0.9)).process(classify_job(article, [topic.id]))
            )

        assert db.get_article(article.id).status == ArticleStatus.ERROR

    def test_unknown_topic_ids_fall_back_to_active_topics(self, db, runtime, config, article, topic):
        analyzer = FakeAnalyzer(score=0.9)

        asyncio.run(processor(db, runtime, config, analyzer).process(classify_job(article, ["deleted"])))

        assert analyzer.calls[0][1] == [topic.id]

    def test_no_active_topics_is_irrelevant_without_call(self, db, runtime, config, article):
        analyzer = FakeAnalyzer()

        result = asyncio.run(processor(db, runtime, config, analyzer).process(classify_job(article, [])))

        assert result.status == ArticleStatus.IRRELEVANT.value
        assert analyzer.calls == []

    def test_missing_article(self, db, runtime, config, article, topic):
        job = classify_job(article, [topic.id])
        job.payload["article_id"] = "gone"

        result = asyncio.run(processor(db, runtime, config, FakeAnalyzer()).process(job))

        assert result.status == "missing"
