"""Tests for the durable job store, workers and runtime."""

import asyncio

import pytest

from errors import JobTimeoutError
from jobs.runtime import JobRuntime, JobStatus, JobStore, QueueSettings, Worker


@pytest.fixture
def store(config, clock):
    job_store = JobStore(config.db_path, clock=clock)
    yield job_store
    job_store.close()


class TestJobStore:
    def test_claims_by_priority_then_age(self, store, clock):
        low, _ = store.add("q", "low", {}, priority=2)
        clock.advance(1)
        high, _ = store.add("q", "high", {}, priority=1)
        clock.advance(1)
        high_later, _ = store.add("q", "high-later", {}, priority=1)

        claimed = [store.claim("q", 60).id for _ in range(3)]

        assert claimed == [high.id, high_later.id, low.id]
        assert store.claim("q", 60) is None

    def test_claim_counts_attempt_and_locks(self, store):
        store.add("q", "job", {"x": 1})

        job = store.claim("q", 60)

        assert job.status == JobStatus.ACTIVE
        assert job.attempts_made == 1
        assert job.payload == {"x": 1}

    def test_job_key_deduplicates(self, store):
        first, created = store.add("q", "digest", {"date": "2026-01-01"}, job_key="summary-2026-01-01")
        second, created_again = store.add("q", "digest", {"date": "2026-01-01"}, job_key="summary-2026-01-01")

        assert created is True and created_again is False
        assert second.id == first.id
        assert store.counts("q")["waiting"] == 1

    def test_delayed_job_is_not_ready(self, store, clock):
        store.add("q", "later", {}, delay=30)

        assert store.claim("q", 60) is None
        clock.advance(30)
        assert store.claim("q", 60) is not None

    def test_failure_backoff_then_final_failure(self, store, clock):
        job, _ = store.add("q", "flaky", {}, max_attempts=3, backoff_delay=5)

        store.claim("q", 60)
        assert store.fail(job.id, "boom 1") == JobStatus.WAITING
        assert store.claim("q", 60) is None
        clock.advance(5)

        store.claim("q", 60)
        assert store.fail(job.id, "boom 2") == JobStatus.WAITING
        clock.advance(9)
        assert store.claim("q", 60) is None
        clock.advance(1)

        store.claim("q", 60)
        assert store.fail(job.id, "boom 3") == JobStatus.FAILED
        final = store.get(job.id)
        assert final.status == JobStatus.FAILED
        assert final.attempts_made == 3
        assert final.last_error == "boom 3"

    def test_complete_stores_result(self, store):
        job, _ = store.add("q", "ok", {})
        store.claim("q", 60)

        assert store.complete(job.id, {"queued": 3}) is True
        assert store.get(job.id).result == {"queued": 3}
        assert store.complete(job.id) is False

    def test_requeue_stalled(self, store, clock):
        retry, _ = store.add("q", "retry", {}, max_attempts=2)
        spent, _ = store.add("q", "spent", {}, max_attempts=1)
        store.claim("q", 10)
        store.claim("q", 10)
        clock.advance(11)

        assert store.requeue_stalled("q") == 2
        assert store.get(retry.id).status == JobStatus.WAITING
        assert store.get(spent.id).status == JobStatus.FAILED

    def test_trim_keeps_most_recent(self, store, clock):
        for n in range(5):
            job, _ = store.add("q", f"job-{n}", {})
            store.claim("q", 60)
            clock.advance(1)
            store.complete(job.id)

        assert store.trim("q", keep_completed=2, keep_failed=0) == 3
        assert [j.name for j in store.list_jobs("q")] == ["job-4", "job-3"]


class TestWorker:
    def test_drain_publishes_outcomes(self, store):
        seen = []

        async def processor(job):
            seen.append(job.payload["n"])
            return {"n": job.payload["n"]}

        for n in range(3):
            store.add("q", "job", {"n": n}, priority=n)

        async def run():
            outcomes = asyncio.Queue()
            worker = Worker(store, "q", processor, QueueSettings(concurrency=2), outcomes)
            processed = await worker.drain()
            return processed, [outcomes.get_nowait() for _ in range(outcomes.qsize())]

        processed, outcomes = asyncio.run(run())

        assert processed == 3
        assert sorted(seen) == [0, 1, 2]
        assert all(o.status == JobStatus.COMPLETED for o in outcomes)
        assert store.counts("q")["completed"] == 3

    def test_failure_is_rescheduled_with_error(self, store):
        async def processor(job):
            raise RuntimeError("service down")

        job, _ = store.add("q", "job", {}, max_attempts=2, backoff_delay=10)

        async def run():
            outcomes = asyncio.Queue()
            await Worker(store, "q", processor, QueueSettings(), outcomes).drain()
            return outcomes.get_nowait()

        outcome = asyncio.run(run())

        assert outcome.status == JobStatus.WAITING
        assert not outcome.final
        assert isinstance(outcome.error, RuntimeError)
        assert store.get(job.id).last_error == "RuntimeError: service down"

    def test_timeout_fails_attempt(self, store):
        async def processor(job):
            await asyncio.sleep(5)

        job, _ = store.add("q", "slow", {})

        async def run():
            outcomes = asyncio.Queue()
            await Worker(store, "q", processor, QueueSettings(timeout=0.05), outcomes).drain()
            return outcomes.get_nowait()

        outcome = asyncio.run(run())

        assert outcome.status == JobStatus.FAILED
        assert isinstance(outcome.error, JobTimeoutError)
        assert store.get(job.id).status == JobStatus.FAILED


class TestJobRuntime:
    def test_drain_follows_fan_out_across_queues(self, store):
        runtime = JobRuntime(store, {"first": QueueSettings(), "second": QueueSettings(concurrency=3)})
        second_seen = []

        async def fan_out(job):
            for n in range(3):
                runtime.queue("second").add("child", {"n": n})

        async def collect(job):
            second_seen.append(job.payload["n"])

        runtime.register("first", fan_out)
        runtime.register("second", collect)
        runtime.queue("first").add("parent", {})

        total = asyncio.run(runtime.drain())

        assert total == 4
        assert sorted(second_seen) == [0, 1, 2]
        assert runtime.subscriber.counts["first:completed"] == 1
        assert runtime.subscriber.counts["second:completed"] == 3
        assert runtime.counts()["second"]["completed"] == 3

    def test_listeners_see_every_outcome_even_if_one_breaks(self, store):
        runtime = JobRuntime(store, {"q": QueueSettings()})
        seen = []

        def broken(outcome):
            raise KeyError("scan_log_id")

        async def processor(job):
            return {"ok": job.payload["n"]}

        runtime.subscribe(broken)
        runtime.subscribe(lambda outcome: seen.append((outcome.status, outcome.result)))
        runtime.register("q", processor)
        runtime.queue("q").add("job", {"n": 1})

        asyncio.run(runtime.drain())

        assert seen == [(JobStatus.COMPLETED, {"ok": 1})]

    def test_queue_defaults_apply_to_added_jobs(self, store):
        runtime = JobRuntime(store, {"q": QueueSettings(attempts=4, backoff_delay=7)})

        job = runtime.queue("q").add("job", {"a": 1})

        assert job.max_attempts == 4
        assert job.backoff_delay == 7

    def test_start_and_stop(self, store):
        runtime = JobRuntime(store, {"q": QueueSettings()}, poll_interval=0.01)
        done = []

        async def processor(job):
            done.append(job.id)
            runtime.stop()

        runtime.register("q", processor)
        runtime.queue("q").add("job", {})

        asyncio.run(asyncio.wait_for(runtime.start(), timeout=5))

        assert len(done) == 1
