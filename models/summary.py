"""Daily digest models."""

from datetime import date, datetime

from pydantic import BaseModel, Field


class DigestReport(BaseModel):
    """Structured digest output for one day of relevant articles."""

    title: str = Field(description="Short headline for the day")
    introduction: str = Field(description="1-2 paragraph overview of the day")
    key_points: list[str] = Field(
        default_factory=list,
        description="3-5 key developments, one sentence each",
    )
    conclusion: str = Field(default="", description="Closing remarks or outlook")

    def to_text(self) -> str:
        """Render the digest as plain text for storage."""
        lines = [self.title, "", self.introduction]
        if self.key_points:
            lines.append("")
            lines.extend(f"- {point}" for point in self.key_points)
        if self.conclusion:
            lines.extend(["", self.conclusion])
        return "\n".join(lines)


class DailySummary(BaseModel):
    """Stored digest row, unique per date."""

    summary_date: date
    content: str
    article_ids: list[str] = Field(default_factory=list)
    created_at: datetime | None = None
