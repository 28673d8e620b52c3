"""Test doubles and builders shared by the test modules."""

from datetime import datetime, timedelta, timezone

from agents.relevance import ClassificationOutcome
from feeds import FetchResult
from jobs.runtime import Job
from models.feed import Feed, RawItem
from models.posts import PostDrafts
from models.summary import DigestReport
from models.topic import TopicRelevance


class FakeClock:
    """Clock whose sleep advances time instantly."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeFetcher:
    """Returns a canned FetchResult per URL."""

    def __init__(self, results: dict[str, FetchResult] | None = None):
        self.results = results or {}
        self.calls: list[tuple[str, str]] = []

    async def fetch_feed(self, url: str, source_key: str) -> FetchResult:
        self.calls.append((url, source_key))
        if url in self.results:
            return self.results[url]
        return FetchResult.failed(url, "HTTP 503", "transient", 0.0)

    def stats(self) -> dict:
        return {"fetches": len(self.calls)}

    async def close(self) -> None:
        pass


class FakeAnalyzer:
    """Scores every topic with the configured value, or fails."""

    def __init__(self, score: float = 0.9, fail: bool = False):
        self.score = score
        self.fail = fail
        self.calls: list[tuple[str, list[str]]] = []

    async def analyze(self, title, lede, source, topics):
        self.calls.append((title, [t.id for t in topics]))
        if self.fail:
            return ClassificationOutcome.failed("ServiceUnavailable: 503")
        return ClassificationOutcome(
            success=True,
            results=[
                TopicRelevance(
                    topic_id=t.id,
                    topic_name=t.name,
                    score=self.score,
                    reasoning="Matches the topic criteria",
                    potential_angle="Angle",
                )
                for t in topics
            ],
        )


class FakeGenerator:
    def __init__(self):
        self.calls = []

    async def generate(self, article, topic_name="", potential_angle=None):
        self.calls.append(article.id)
        return PostDrafts(
            twitter=f"{article.title} #news",
            mastodon=article.title,
            bluesky=article.title,
            hashtags=["news"],
        )


class FakeDigestAgent:
    def __init__(self):
        self.calls = []

    async def summarize(self, day, articles, source_names=None):
        self.calls.append((day, [a.id for a in articles]))
        return DigestReport(
            title=f"Digest {day}",
            introduction="Overview of the day.",
            key_points=[a.title for a in articles],
        )


def make_item(n: int = 1, **overrides) -> RawItem:
    """A raw item that passes every normalization rule."""
    data = {
        "guid": f"guid-{n}",
        "title": f"Nouvelle réforme administrative numéro {n}",
        "link": f"https://www.example.fr/article/{n}",
        "published": datetime.now(timezone.utc) - timedelta(hours=1),
        "summary": f"Le gouvernement annonce une simplification des formulaires cerfa, étape {n}.",
    }
    data.update(overrides)
    return RawItem(**data)


def make_job(queue: str, payload: dict, name: str = "test") -> Job:
    return Job(id="job-test-0001", queue=queue, name=name, payload=payload, attempts_made=1)


def feed_result(url: str, items: list[RawItem]) -> FetchResult:
    return FetchResult.ok(url, Feed(title="Feed", link=url, items=items), 0.01)

