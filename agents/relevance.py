"""Multi-topic relevance agent.

Scores one article against several topics in a single model call. Each
topic carries its own judgment prompt (Topic.ai_prompt); scores are
independent, so an article can be highly relevant to one topic and not at
all to another.

The raw model output is never trusted as-is: merge_topic_results produces
exactly one TopicRelevance per requested topic, clamps scores to [0, 1]
and drops results for topics that were not asked about.
"""

import logging
import math
import time
from dataclasses import dataclass, field
from typing import Any, Iterable

from pydantic import BaseModel, Field, field_validator

from agents.factory import create_agent, log_usage
from config import Config
from models.topic import Topic, TopicRelevance
from text import truncate

logger = logging.getLogger(__name__)

# Ledes shorter than this are not worth a model call
MIN_LEDE_FOR_ANALYSIS = 50
SHORT_LEDE_SCORE = 0.1

MISSING_RESULT_REASONING = "No valid result returned for this topic"
SHORT_LEDE_REASONING = {
    "fr": "Article sans chapeau suffisant pour analyse",
    "en": "Article lede too short for analysis",
}


RELEVANCE_PROMPTS = {
    "fr": """Tu es un analyste expert de l'actualité. Tu dois évaluer la pertinence d'un article pour PLUSIEURS thèmes, de manière indépendante.

Pour chaque thème fourni :
1. Évalue si l'article est pertinent pour ce thème précis, selon ses critères
2. Attribue un score de pertinence entre 0.0 et 1.0
3. Explique brièvement pourquoi (1-2 phrases)
4. Suggère un angle éditorial potentiel, ou laisse vide

## Calibrage des scores
- 0.8-1.0 : l'article traite directement du thème
- 0.5-0.8 : lien clair mais secondaire
- 0.2-0.5 : lien faible ou indirect
- 0.0-0.2 : sans rapport

Les scores sont indépendants d'un thème à l'autre.
Inclus un résultat pour CHAQUE thème fourni, même si le score est 0, en reprenant exactement son identifiant.""",

    "en": """You are an expert news analyst. Assess how relevant one article is to SEVERAL topics, independently.

For each topic provided:
1. Judge whether the article is relevant to that specific topic, using its criteria
2. Give a relevance score between 0.0 and 1.0
3. Briefly explain why (1-2 sentences)
4. Suggest a potential editorial angle, or leave it empty

## Score Calibration
- 0.8-1.0: the article is directly about the topic
- 0.5-0.8: clear but secondary connection
- 0.2-0.5: weak or indirect connection
- 0.0-0.2: unrelated

Scores are independent from one topic to another.
Include one result for EVERY topic provided, even when the score is 0, using its exact id.""",
}


@dataclass
class RelevanceContext:
    language: str = "fr"


class RawTopicJudgment(BaseModel):
    """One topic judgment as returned by the model.

    Fields are loosely typed: a bad entry for one topic must not fail the
    whole response. merge_topic_results rejects what cannot be used.
    """

    topic_id: Any = Field(default=None, description="Exact id of the topic being judged")
    relevance_score: Any = Field(default=None, description="Relevance between 0.0 and 1.0")
    reasoning: Any = Field(default="", description="1-2 sentence explanation")
    potential_angle: Any = Field(default="", description="Editorial angle, or empty")


class RelevanceResponse(BaseModel):
    results: list[RawTopicJudgment] = Field(
        default_factory=list,
        description="One result per topic provided",
    )

    @field_validator("results", mode="before")
    @classmethod
    def _drop_non_objects(cls, value: Any) -> Any:
        if not isinstance(value, list):
            return []
        return [e for e in value if isinstance(e, (dict, RawTopicJudgment))]


@dataclass
class ClassificationOutcome:
    """Tagged result of one analysis: results on success, error on failure."""

    success: bool
    results: list[TopicRelevance] = field(default_factory=list)
    error: str | None = None
    duration: float = 0.0

    @property
    def best(self) -> TopicRelevance | None:
        return max(self.results, key=lambda r: r.score, default=None)

    @classmethod
    def failed(cls, error: str, duration: float = 0.0) -> "ClassificationOutcome":
        return cls(success=False, error=error, duration=duration)


def _clamp(value: Any) -> float | None:
    try:
        score = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(score):
        return None
    return max(0.0, min(1.0, score))


def merge_topic_results(
    topics: list[Topic],
    raw: Iterable[RawTopicJudgment | dict[str, Any]],
) -> list[TopicRelevance]:
    """Exactly one result per requested topic, in the order of topics.

    Missing or malformed entries get score 0 and a placeholder reasoning.
    Entries for unknown topic ids are ignored; for repeated ids the first
    valid entry wins.
    """
    by_id: dict[str, TopicRelevance] = {}
    requested = {t.id: t for t in topics}
    for entry in raw:
        data = entry.model_dump() if isinstance(entry, BaseModel) else entry
        if not isinstance(data, dict):
            continue
        topic = requested.get(str(data.get("topic_id", "")))
        if topic is None or topic.id in by_id:
            continue
        score = _clamp(data.get("relevance_score", data.get("score")))
        if score is None:
            continue
        by_id[topic.id] = TopicRelevance(
            topic_id=topic.id,
            topic_name=topic.name,
            score=score,
            reasoning=str(data.get("reasoning") or ""),
            potential_angle=str(data["potential_angle"]) if data.get("potential_angle") else None,
        )
    return [
        by_id.get(t.id)
        or TopicRelevance(topic_id=t.id, topic_name=t.name, score=0.0, reasoning=MISSING_RESULT_REASONING)
        for t in topics
    ]


def _build_user_message(title: str, lede: str, source: str, topics: list[Topic]) -> str:
    lines = [
        f"Source: {source or 'Unknown'}",
        f"Title: {title}",
        f"Lede: {truncate(lede, 1000)}",
        "",
        "Topics:",
    ]
    for i, topic in enumerate(topics, 1):
        criteria = topic.ai_prompt or topic.description or ", ".join(topic.keywords)
        lines.append(f'{i}. id: "{topic.id}"')
        lines.append(f"   name: {topic.name}")
        lines.append(f"   criteria: {criteria}")
    return "\n".join(lines)


class RelevanceAgent:
    """Scores articles against topics.

    Example:
        >>> agent = RelevanceAgent(config)
        >>> outcome = await agent.analyze(title, lede, "Le Monde", topics)
        >>> if outcome.success:
        ...     print(outcome.best.score)
    """

    def __init__(self, config: Config):
        self.config = config
        self._context = RelevanceContext(language=config.language)
        self._agent = None
        self._calls = 0
        self._failures = 0

    @property
    def agent(self):
        if self._agent is None:
            self._agent = create_agent(self.config.classifier_model, RelevanceResponse, RELEVANCE_PROMPTS)
        return self._agent

    async def analyze(
        self,
        title: str,
        lede: str,
        source: str,
        topics: list[Topic],
    ) -> ClassificationOutcome:
        """Score one article against topics. Never raises for service errors."""
        start = time.monotonic()
        if not topics:
            return ClassificationOutcome(success=True)

        if len(lede or "") < MIN_LEDE_FOR_ANALYSIS:
            reasoning = SHORT_LEDE_REASONING.get(self.config.language, SHORT_LEDE_REASONING["en"])
            logger.debug("Lede too short, skipping model call | title=%s", title[:50])
            return ClassificationOutcome(
                success=True,
                results=[
                    TopicRelevance(topic_id=t.id, topic_name=t.name, score=SHORT_LEDE_SCORE, reasoning=reasoning)
                    for t in topics
                ],
            )

        self._calls += 1
        try:
            result = await self.agent.run(
                _build_user_message(title, lede, source, topics),
                deps=self._context,
            )
        except Exception as e:
            self._failures += 1
            logger.error("Relevance analysis failed for '%s...': %s", title[:50], e, exc_info=True)
            return ClassificationOutcome.failed(f"{type(e).__name__}: {e}", time.monotonic() - start)

        log_usage("Relevance analyzed", result, title=title[:40], topics=len(topics))
        results = merge_topic_results(topics, result.output.results)
        return ClassificationOutcome(success=True, results=results, duration=time.monotonic() - start)

    def stats(self) -> dict[str, int]:
        return {"calls": self._calls, "failures": self._failures}
