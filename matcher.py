"""Keyword pre-filter deciding which candidates deserve classification.

Matching is a case-insensitive substring test of each topic keyword
against "title lede". False positives only cost one classification call;
a candidate that matches no active topic is never sent to the service.
"""

from typing import Iterable

from models.article import CandidateArticle
from models.topic import Topic


def keyword_match(text: str, keywords: Iterable[str]) -> bool:
    """Whether any keyword occurs in text (case-insensitive)."""
    haystack = text.casefold()
    return any(k and k.casefold() in haystack for k in keywords)


def check_against_topics(candidate: CandidateArticle, topics: Iterable[Topic]) -> set[str]:
    """Return the ids of active topics with at least one keyword match.

    The result is a set, so the order of topics never changes it.
    """
    text = f"{candidate.title} {candidate.lede}"
    return {
        topic.id
        for topic in topics
        if topic.is_active and topic.keywords and keyword_match(text, topic.keywords)
    }
