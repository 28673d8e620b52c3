"""PydanticAI agents for the media scanner.

RelevanceAgent:
    Scores an article against several topic prompts in one call.

PostGeneratorAgent:
    Drafts platform posts for relevant articles.

DigestAgent:
    Writes the daily summary of relevant articles.

Example:
    >>> from agents import RelevanceAgent
    >>> outcome = await RelevanceAgent(config).analyze(title, lede, source, topics)
"""

from agents.post_generator import PostGeneratorAgent
from agents.relevance import ClassificationOutcome, RelevanceAgent, merge_topic_results
from agents.summarizer import DigestAgent

__all__ = [
    "ClassificationOutcome",
    "DigestAgent",
    "PostGeneratorAgent",
    "RelevanceAgent",
    "merge_topic_results",
]
