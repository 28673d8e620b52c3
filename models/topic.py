"""Topic models and per-topic relevance results."""

from pydantic import BaseModel, Field, field_validator, model_validator


class Topic(BaseModel):
    """A named relevance criterion.

    Keywords drive the cheap pre-filter; ai_prompt is the judgment prompt
    sent to the classification service.
    """

    id: str
    name: str
    slug: str
    description: str = ""
    keywords: list[str] = Field(default_factory=list)
    ai_prompt: str = ""
    min_relevance_score: float = Field(default=0.5, ge=0.0, le=1.0)
    is_active: bool = True
    is_system: bool = False

    @field_validator("keywords")
    @classmethod
    def _strip_keywords(cls, v: list[str]) -> list[str]:
        return [k.strip() for k in v if k and k.strip()]

    @model_validator(mode="after")
    def _active_needs_keywords(self) -> "Topic":
        if self.is_active and not self.keywords:
            raise ValueError(f"Active topic '{self.slug}' must have at least one keyword")
        return self


class TopicRelevance(BaseModel):
    """Score of one article against one topic.

    At most one of these is stored per (article, topic) pair; re-analysis
    overwrites the previous one.
    """

    topic_id: str
    topic_name: str = ""
    score: float = Field(ge=0.0, le=1.0)
    reasoning: str = ""
    potential_angle: str | None = None
