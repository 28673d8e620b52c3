"""Digest agent for the daily summary of relevant articles."""

import logging
from dataclasses import dataclass
from datetime import date

from pydantic_ai import UsageLimits

from agents.factory import create_agent
from config import Config
from models.article import StoredArticle
from models.summary import DigestReport

logger = logging.getLogger(__name__)


DIGEST_PROMPTS = {
    "fr": """Tu es un rédacteur de synthèse quotidienne de l'actualité.

Tu reçois les articles les plus pertinents identifiés aujourd'hui, avec leur score et l'analyse qui a justifié leur sélection. Rédige une synthèse structurée.

## Sortie (structure DigestReport)
- title : titre court et accrocheur de la journée
- introduction : 2-3 phrases qui situent les principaux faits
- key_points : 3 à 5 points clés, une phrase chacun
- conclusion : une phrase de conclusion

## Contraintes
1. N'invente ni source ni fait.
2. Style professionnel, factuel, accessible.
3. Rédige en français.""",
    "en": """You are an editor writing a daily news digest.

You receive today's most relevant articles, with their score and the analysis that selected them. Write a structured digest.

## Output (DigestReport structure)
- title: short headline for the day
- introduction: 2-3 sentences framing the main facts
- key_points: 3 to 5 key points, one sentence each
- conclusion: one closing sentence

## Constraints
1. Do not invent sources or facts.
2. Professional, factual, accessible style.
3. Write in English.""",
}


@dataclass
class DigestContext:
    language: str = "fr"


def _build_user_message(day: date, articles: list[StoredArticle], source_names: dict[str, str]) -> str:
    lines = [f"Date: {day.isoformat()}", f"Articles: {len(articles)}", ""]
    for i, article in enumerate(articles, 1):
        source = source_names.get(article.source_id, "Unknown")
        score = article.relevance_score or 0.0
        lines.append(f"{i}. [{source}] {article.title} (score: {score:.2f})")
        if article.relevance_reasoning:
            lines.append(f"   Analysis: {article.relevance_reasoning}")
    return "\n".join(lines)


def fallback_digest(day: date, articles: list[StoredArticle]) -> DigestReport:
    """Plain digest listing article titles, used when the model call fails."""
    return DigestReport(
        title=f"Daily summary {day.isoformat()}",
        introduction=f"{len(articles)} relevant articles identified.",
        key_points=[a.title for a in articles[:5]],
        conclusion="",
    )


class DigestAgent:
    """Writes the daily digest from the day's relevant articles."""

    def __init__(self, config: Config):
        self.config = config
        self._context = DigestContext(language=config.language)
        self._agent = None

    @property
    def agent(self):
        if self._agent is None:
            self._agent = create_agent(self.config.summary_model, DigestReport, DIGEST_PROMPTS)
        return self._agent

    async def summarize(
        self,
        day: date,
        articles: list[StoredArticle],
        source_names: dict[str, str] | None = None,
    ) -> DigestReport:
        """Generate the digest; falls back to a title list if the model fails."""
        message = _build_user_message(day, articles, source_names or {})
        try:
            result = await self.agent.run(
                message,
                deps=self._context,
                usage_limits=UsageLimits(request_limit=3),
            )
        except Exception as e:
            logger.error("Digest generation failed | date=%s error=%s", day, e, exc_info=True)
            return fallback_digest(day, articles)

        usage = result.usage()
        logger.info(
            "Digest generated | date=%s articles=%d input_tokens=%d output_tokens=%d",
            day,
            len(articles),
            usage.request_tokens or 0,
            usage.response_tokens or 0,
        )
        return result.output
