"""Tests for scan orchestration."""

import asyncio
import sqlite3
from datetime import datetime, timedelta, timezone

import pytest

from errors import SourceNotFoundError
from jobs import queues
from jobs.queues import ScanRequest, ScanType, default_settings
from jobs.runtime import JobOutcome, JobRuntime, JobStatus
from models.article import ArticleStatus
from models.scan import ScanStatus
from models.source import SourceCategory
from normalizer import normalize_items
from tests.helpers import make_item
from workers.orchestrator import PRIORITY_HIGH, PRIORITY_NORMAL, ScanOrchestrator, ScanTracker
from workers.source_fetch import FetchJobResult


@pytest.fixture
def runtime(job_store, config):
    return JobRuntime(job_store, default_settings(config))


@pytest.fixture
def orchestrator(db, runtime, config):
    return ScanOrchestrator(db, runtime, config)


def fetch_jobs(runtime):
    return runtime.store.list_jobs(queues.SOURCE_FETCH)


class TestFullScan:
    def test_every_active_feed_gets_a_job_with_priority(self, db, runtime, orchestrator):
        national = db.add_source(name="National", slug="nat", url="https://nat.fr/rss")
        regional = db.add_source(
            name="Regional", slug="reg", url="https://reg.fr/rss", category=SourceCategory.REGIONAL
        )
        db.add_source(name="Off", slug="off", url="https://off.fr/rss", is_active=False)

        result = asyncio.run(orchestrator.run(ScanRequest(type=ScanType.FULL)))

        assert result.sources_processed == 2
        assert result.jobs_queued == 2
        priorities = {j.payload["source_id"]: j.priority for j in fetch_jobs(runtime)}
        assert priorities == {national.id: PRIORITY_HIGH, regional.id: PRIORITY_NORMAL}
        log = db.recent_scan_logs(1)[0]
        assert log.source_id is None
        assert log.status == ScanStatus.RUNNING
        assert (log.items_found, log.items_new, log.pending_sources) == (2, 2, 2)
        assert {j.payload["scan_log_id"] for j in fetch_jobs(runtime)} == {log.id}

    def test_enqueue_failure_is_reported_and_counted(self, db, runtime, orchestrator, monkeypatch):
        db.add_source(name="National", slug="nat", url="https://nat.fr/rss")
        broken = db.add_source(name="Broken", slug="broken", url="https://broken.fr/rss")
        fetch_queue = runtime.queue(queues.SOURCE_FETCH)
        original_add = fetch_queue.add

        def add(name, payload, **kwargs):
            if payload.source_id == broken.id:
                raise sqlite3.OperationalError("database is locked")
            return original_add(name, payload, **kwargs)

        monkeypatch.setattr(fetch_queue, "add", add)

        result = asyncio.run(orchestrator.run(ScanRequest(type=ScanType.FULL)))

        assert result.jobs_queued == 1
        assert result.errors == ["broken: database is locked"]
        log = db.recent_scan_logs(1)[0]
        assert (log.status, log.pending_sources, log.failed_sources) == (ScanStatus.RUNNING, 1, 1)

        job = fetch_jobs(runtime)[0]
        ScanTracker(db).handle(JobOutcome(job, JobStatus.COMPLETED, result=FetchJobResult(source_id="nat")))

        log = db.get_scan_log(log.id)
        assert log.status == ScanStatus.PARTIAL
        assert log.error_message == "broken: database is locked"

    def test_every_enqueue_failing_closes_partial_at_once(self, db, runtime, orchestrator, source, monkeypatch):
        def add(*args, **kwargs):
            raise sqlite3.OperationalError("disk I/O error")

        monkeypatch.setattr(runtime.queue(queues.SOURCE_FETCH), "add", add)

        result = asyncio.run(orchestrator.run(ScanRequest(type=ScanType.FULL)))

        assert result.jobs_queued == 0
        assert len(result.errors) == 1
        log = db.recent_scan_logs(1)[0]
        assert log.status == ScanStatus.PARTIAL
        assert "disk I/O error" in log.error_message


class TestIncrementalScan:
    def test_nothing_due_queues_nothing(self, db, runtime, orchestrator, source):
        db.record_fetch_success(source.id)

        result = asyncio.run(orchestrator.run(ScanRequest(type=ScanType.INCREMENTAL)))

        assert result.jobs_queued == 0
        assert fetch_jobs(runtime) == []
        assert db.recent_scan_logs(1)[0].status == ScanStatus.COMPLETED

    def test_due_sources_are_capped(self, db, runtime, config, source):
        config.incremental_batch_size = 2
        for n in range(4):
            db.add_source(name=f"Source {n}", slug=f"s{n}", url=f"https://s{n}.fr/rss")

        result = asyncio.run(ScanOrchestrator(db, runtime, config).run(ScanRequest()))

        assert result.jobs_queued == 2

    def test_stale_source_is_due_again(self, db, runtime, orchestrator, source):
        db.record_fetch_success(source.id, when=datetime.now(timezone.utc) - timedelta(hours=2))

        result = asyncio.run(orchestrator.run(ScanRequest()))

        assert result.jobs_queued == 1


class TestTargetedScan:
    def test_targets_one_source(self, db, runtime, orchestrator, source):
        db.add_source(name="Other", slug="other", url="https://other.fr/rss")

        result = asyncio.run(orchestrator.run(ScanRequest(type=ScanType.TARGETED, source_id=source.id)))

        assert result.jobs_queued == 1
        assert fetch_jobs(runtime)[0].payload["feed_url"] == source.url

    def test_unknown_source_fails_log_and_raises(self, db, orchestrator):
        with pytest.raises(SourceNotFoundError):
            asyncio.run(orchestrator.run(ScanRequest(type=ScanType.TARGETED, source_id="missing")))

        log = db.recent_scan_logs(1)[0]
        assert log.status == ScanStatus.FAILED
        assert "missing" in log.error_message

    def test_inactive_source_queues_nothing(self, db, runtime, orchestrator):
        off = db.add_source(name="Off", slug="off", url="https://off.fr/rss", is_active=False)

        result = asyncio.run(orchestrator.run(ScanRequest(type=ScanType.TARGETED, source_id=off.id)))

        assert result.jobs_queued == 0

    def test_targeted_request_needs_source(self):
        with pytest.raises(ValueError):
            ScanRequest(type=ScanType.TARGETED)


class TestCleanupScan:
    def test_cleanup_reports_deletions_and_keeps_recent_articles(self, db, orchestrator, source):
        article = db.insert_article(normalize_items([make_item(1)], source.id).articles[0])
        db.save_analysis(article.id, None, ArticleStatus.IRRELEVANT)

        result = asyncio.run(orchestrator.run(ScanRequest(type=ScanType.CLEANUP)))

        assert set(result.items_deleted) == {"articles", "scan_logs", "daily_summaries", "jobs"}
        assert result.items_deleted["articles"] == 0
        assert db.get_article(article.id) is not None
        assert db.recent_scan_logs(1)[0].status == ScanStatus.COMPLETED

    def test_process_reads_payload(self, db, runtime, orchestrator, source):
        job = runtime.queue(queues.SCAN_ORCHESTRATION).add("scan-full", ScanRequest(type=ScanType.FULL))

        result = asyncio.run(orchestrator.process(job))

        assert result.type == "full"
        assert result.jobs_queued == 1


class TestScanTracker:
    @pytest.fixture
    def dispatched(self, db, runtime, orchestrator):
        for n in range(2):
            db.add_source(name=f"Source {n}", slug=f"s{n}", url=f"https://s{n}.fr/rss")
        asyncio.run(orchestrator.run(ScanRequest(type=ScanType.FULL)))
        return db.recent_scan_logs(1)[0], fetch_jobs(runtime)

    def test_last_successful_fetch_completes_the_scan(self, db, dispatched):
        log, (first, second) = dispatched
        tracker = ScanTracker(db)

        tracker.handle(JobOutcome(first, JobStatus.COMPLETED, result=FetchJobResult(source_id="s0")))
        assert db.get_scan_log(log.id).status == ScanStatus.RUNNING

        tracker.handle(JobOutcome(second, JobStatus.COMPLETED, result=FetchJobResult(source_id="s1")))
        closed = db.get_scan_log(log.id)
        assert closed.status == ScanStatus.COMPLETED
        assert closed.pending_sources == 0

    def test_item_errors_or_final_failure_make_it_partial(self, db, dispatched):
        log, (first, second) = dispatched
        tracker = ScanTracker(db)
        with_errors = FetchJobResult(source_id="s0", errors=["https://s0.fr/a: enqueue failed: locked"])

        tracker.handle(JobOutcome(first, JobStatus.WAITING, error=RuntimeError("retry")))
        assert db.get_scan_log(log.id).pending_sources == 2

        tracker.handle(JobOutcome(first, JobStatus.COMPLETED, result=with_errors))
        tracker.handle(JobOutcome(second, JobStatus.FAILED, error=RuntimeError("timeout")))

        closed = db.get_scan_log(log.id)
        assert closed.status == ScanStatus.PARTIAL
        assert closed.failed_sources == 2

    def test_extra_outcomes_leave_a_closed_log_alone(self, db, dispatched):
        log, (first, second) = dispatched
        tracker = ScanTracker(db)
        for job in (first, second, first):
            tracker.handle(JobOutcome(job, JobStatus.COMPLETED, result=FetchJobResult(source_id="s")))

        assert db.get_scan_log(log.id).status == ScanStatus.COMPLETED
