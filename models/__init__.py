"""Pydantic models for the media scanner.

Source / SourceUpdate:
    Feed endpoint and the fields an operator may change.

CandidateArticle / StoredArticle / ArticleUpdate:
    Normalized feed item, its durable record and allow-listed updates.

Topic / TopicRelevance:
    Relevance criterion and the score of one article against it.

ScanLog:
    Per-run or per-source scan record.

Feed / RawItem:
    Parsed feed and its entries before normalization.

PostDrafts / DigestReport:
    Structured outputs of the generation and digest agents.
"""

from models.article import ArticleStatus, ArticleUpdate, CandidateArticle, StoredArticle
from models.feed import Feed, RawItem
from models.posts import GeneratedPosts, PostDrafts
from models.scan import ScanLog, ScanStatus, ScanTrigger
from models.source import Source, SourceCategory, SourceType, SourceUpdate
from models.summary import DailySummary, DigestReport
from models.topic import Topic, TopicRelevance

__all__ = [
    "ArticleStatus",
    "ArticleUpdate",
    "CandidateArticle",
    "StoredArticle",
    "Feed",
    "RawItem",
    "GeneratedPosts",
    "PostDrafts",
    "ScanLog",
    "ScanStatus",
    "ScanTrigger",
    "Source",
    "SourceCategory",
    "SourceType",
    "SourceUpdate",
    "DailySummary",
    "DigestReport",
    "Topic",
    "TopicRelevance",
]
