"""Shared fixtures: temporary stores, a controllable clock and seeded rows."""

import pytest

from config import Config
from database import Database
from jobs.runtime import JobStore
from tests.helpers import FakeClock


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def config(tmp_path) -> Config:
    return Config(
        gemini_api_key="test-key",
        db_path=tmp_path / "scanner.db",
        log_dir=tmp_path / "log",
    )


@pytest.fixture
def db(config):
    database = Database(config.db_path)
    yield database
    database.close()


@pytest.fixture
def job_store(config):
    store = JobStore(config.db_path)
    yield store
    store.close()


@pytest.fixture
def source(db):
    return db.add_source(name="Le Monde", slug="lemonde", url="https://www.lemonde.fr/rss/une.xml")


@pytest.fixture
def topic(db):
    return db.add_topic(
        name="Bureaucratie",
        slug="bureaucratie",
        keywords=["cerfa", "formulaire"],
        ai_prompt="Administrative complexity and red tape",
        min_relevance_score=0.5,
    )
