"""Social post drafting for relevant articles."""

import logging
from dataclasses import dataclass

from agents.factory import create_agent, log_usage
from config import Config
from errors import GenerationError
from models.article import StoredArticle
from models.posts import PostDrafts

logger = logging.getLogger(__name__)


POST_PROMPTS = {
    "fr": """Tu es un community manager expert, spécialisé dans des contenus percutants pour les réseaux sociaux en français.

## Style
- Esprit et ironie fine, jamais vulgaire
- Formulations ciselées, faciles à partager
- Toujours factuel : rien qui ne soit dans l'article

## Objectif
Transformer l'article en posts qui captent l'attention, font réagir et restent exacts.

## Contraintes par plateforme
- twitter : 280 caractères maximum, hashtags compris
- mastodon : 500 caractères maximum, ton plus posé
- bluesky : 300 caractères maximum, style conversationnel
- long_form : un paragraphe plus développé, style LinkedIn

## Sortie
- tone : informative, alert ou analysis
- hashtags : 3 à 5, sans le caractère '#'""",

    "en": """You are an expert community manager who writes engaging social media posts.

## Style
- Sharp and witty, never crude
- Polished wording that is easy to share
- Always factual: nothing that is not in the article

## Goal
Turn the article into posts that catch attention, prompt reactions and stay accurate.

## Platform Constraints
- twitter: 280 characters max, hashtags included
- mastodon: 500 characters max, calmer tone
- bluesky: 300 characters max, conversational
- long_form: one longer paragraph, LinkedIn style

## Output
- tone: informative, alert or analysis
- hashtags: 3 to 5, without the '#' character""",
}


@dataclass
class PostContext:
    language: str = "fr"


class PostGeneratorAgent:
    """Drafts platform posts; drafts over a platform limit are truncated."""

    def __init__(self, config: Config):
        self.config = config
        self._context = PostContext(language=config.language)
        self._agent = None

    @property
    def agent(self):
        if self._agent is None:
            self._agent = create_agent(self.config.generator_model, PostDrafts, POST_PROMPTS)
        return self._agent

    async def generate(
        self,
        article: StoredArticle,
        topic_name: str = "",
        potential_angle: str | None = None,
    ) -> PostDrafts:
        """Draft posts for one article.

        Raises:
            GenerationError: If the model call fails
        """
        message = f"""Title: {article.title}
Summary: {article.lede}
Topic: {topic_name or 'general'}
Suggested angle: {potential_angle or article.potential_angle or '-'}
Analysis: {article.relevance_reasoning or '-'}
URL: {article.url}"""

        try:
            result = await self.agent.run(message, deps=self._context)
        except Exception as e:
            logger.error("Post generation failed for '%s...': %s", article.title[:50], e, exc_info=True)
            raise GenerationError(f"Post generation failed: {type(e).__name__}: {e}") from e

        log_usage("Posts generated", result, article=article.id[:8])
        drafts = result.output.within_limits()
        if drafts is not result.output:
            logger.debug("Drafts truncated to platform limits | article=%s", article.id[:8])
        return drafts
