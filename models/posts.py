"""Social post drafts produced for relevant articles."""

from datetime import datetime

from pydantic import BaseModel, Field

# Platform character limits
PLATFORM_LIMITS = {
    "twitter": 280,
    "mastodon": 500,
    "bluesky": 300,
}


class PostDrafts(BaseModel):
    """Structured output of the post generator agent."""

    twitter: str = Field(description="Post for X/Twitter, max 280 characters")
    mastodon: str = Field(description="Post for Mastodon, max 500 characters")
    bluesky: str = Field(description="Post for Bluesky, max 300 characters")
    long_form: str = Field(default="", description="Longer LinkedIn-style post")
    tone: str = Field(default="informative", description="Tone used: informative, alert, analysis")
    hashtags: list[str] = Field(default_factory=list, description="3-5 hashtags without '#'")

    def within_limits(self) -> "PostDrafts":
        """Return a copy with every short-form draft cut to its platform limit."""
        updates = {}
        for platform, limit in PLATFORM_LIMITS.items():
            text = getattr(self, platform)
            if len(text) > limit:
                updates[platform] = text[: limit - 1].rstrip() + "…"
        return self.model_copy(update=updates) if updates else self


class GeneratedPosts(BaseModel):
    """Stored post drafts for one article and topic."""

    id: str
    article_id: str
    topic_id: str | None = None
    drafts: PostDrafts
    created_at: datetime | None = None
