"""Durable prioritized job queues on SQLite.

JobStore:
    The jobs table. Claiming is a guarded UPDATE (status must still be
    'waiting'), so two workers never run the same attempt. A job whose lock
    expires while 'active' is considered stalled and goes back to
    'waiting' (or to 'failed' once its attempts are used up).

Worker:
    Runs a processor coroutine for claimed jobs of one queue with bounded
    concurrency, an optional jobs-per-window cap and a hard per-attempt
    timeout. Failures are rescheduled with exponential backoff
    (backoff_delay * 2^(attempt-1)) until max_attempts.

Outcomes:
    Every finished attempt is published as a JobOutcome on an asyncio.Queue.
    OutcomeLogger is the subscriber that logs them and hands them to the
    listeners registered with JobRuntime.subscribe().

Delivery is at-least-once: a job can run again after a crash or a stall,
so processors must be idempotent.
"""

import asyncio
import dataclasses
import json
import logging
import sqlite3
import time
import uuid
from collections import Counter
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable

from pydantic import BaseModel

from errors import JobTimeoutError
from observability.logging import clear_context, set_job_context
from observability.tracing import trace_operation
from ratelimit import SlidingWindowLimiter

logger = logging.getLogger(__name__)

# Extra lock time on top of the job timeout before a job counts as stalled
STALL_GRACE_SECONDS = 30.0


class JobStatus(str, Enum):
    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class Job:
    """One unit of work as stored in the jobs table."""

    id: str
    queue: str
    name: str
    payload: dict[str, Any]
    priority: int = 0
    status: JobStatus = JobStatus.WAITING
    attempts_made: int = 0
    max_attempts: int = 1
    backoff_delay: float = 0.0
    job_key: str | None = None
    run_at: float = 0.0
    last_error: str | None = None
    result: Any = None
    created_at: float = 0.0
    finished_at: float | None = None


@dataclass(frozen=True)
class QueueSettings:
    """Per-queue execution policy.

    Attributes:
        concurrency: Jobs of this queue running at once
        attempts: Default max attempts for new jobs
        backoff_delay: Base delay in seconds for exponential retry backoff
        rate_limit: Max jobs started per rate_window (None = unlimited)
        rate_window: Window for rate_limit, in seconds
        timeout: Hard timeout per attempt, in seconds
        keep_completed / keep_failed: Finished jobs kept by trim()
    """

    concurrency: int = 1
    attempts: int = 1
    backoff_delay: float = 0.0
    rate_limit: int | None = None
    rate_window: float = 60.0
    timeout: float = 300.0
    keep_completed: int = 100
    keep_failed: int = 500


def _to_jsonable(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return json.loads(json.dumps(dataclasses.asdict(value), default=str))
    return json.loads(json.dumps(value, default=str))


class JobStore:
    """SQLite persistence for all queues."""

    SCHEMA = """
    CREATE TABLE IF NOT EXISTS jobs (
        id TEXT PRIMARY KEY,
        queue TEXT NOT NULL,
        name TEXT NOT NULL,
        payload TEXT NOT NULL,
        priority INTEGER NOT NULL DEFAULT 0,       -- lower runs first
        status TEXT NOT NULL DEFAULT 'waiting',
        attempts_made INTEGER NOT NULL DEFAULT 0,
        max_attempts INTEGER NOT NULL DEFAULT 1,
        backoff_delay REAL NOT NULL DEFAULT 0,
        job_key TEXT UNIQUE,                       -- dedup key, NULL = none
        run_at REAL NOT NULL,
        locked_until REAL,
        last_error TEXT,
        result TEXT,
        created_at REAL NOT NULL,
        finished_at REAL
    );

    CREATE INDEX IF NOT EXISTS idx_jobs_ready ON jobs(queue, status, priority, run_at);
    """

    def __init__(self, path: Path | str, clock: Callable[[], float] = time.time):
        self.path = Path(path)
        self.clock = clock
        self.conn = sqlite3.connect(str(self.path), timeout=30)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA journal_mode=WAL")
        self.conn.executescript(self.SCHEMA)
        self.conn.commit()

    @staticmethod
    def _job(row: sqlite3.Row) -> Job:
        return Job(
            id=row["id"],
            queue=row["queue"],
            name=row["name"],
            payload=json.loads(row["payload"]),
            priority=row["priority"],
            status=JobStatus(row["status"]),
            attempts_made=row["attempts_made"],
            max_attempts=row["max_attempts"],
            backoff_delay=row["backoff_delay"],
            job_key=row["job_key"],
            run_at=row["run_at"],
            last_error=row["last_error"],
            result=json.loads(row["result"]) if row["result"] else None,
            created_at=row["created_at"],
            finished_at=row["finished_at"],
        )

    def add(
        self,
        queue: str,
        name: str,
        payload: dict[str, Any],
        priority: int = 0,
        max_attempts: int = 1,
        backoff_delay: float = 0.0,
        job_key: str | None = None,
        delay: float = 0.0,
    ) -> tuple[Job, bool]:
        """Insert a job.

        Returns:
            (job, created). When job_key is already taken the existing job
            is returned with created=False and nothing is inserted.
        """
        now = self.clock()
        job_id = uuid.uuid4().hex
        cursor = self.conn.execute(
            """
            INSERT INTO jobs
            (id, queue, name, payload, priority, status, max_attempts,
             backoff_delay, job_key, run_at, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(job_key) DO NOTHING
            """,
            (
                job_id, queue, name, json.dumps(payload, ensure_ascii=False),
                priority, JobStatus.WAITING.value, max(1, max_attempts),
                backoff_delay, job_key, now + delay, now,
            ),
        )
        self.conn.commit()
        if cursor.rowcount == 0:
            row = self.conn.execute("SELECT * FROM jobs WHERE job_key = ?", (job_key,)).fetchone()
            logger.debug("Job key exists, not added | queue=%s key=%s", queue, job_key)
            return self._job(row), False
        return self.get(job_id), True

    def get(self, job_id: str) -> Job | None:
        row = self.conn.execute("SELECT * FROM jobs WHERE id = ?", (job_id,)).fetchone()
        return self._job(row) if row else None

    def claim(self, queue: str, lock_seconds: float) -> Job | None:
        """Take the most urgent ready job of a queue and mark it active."""
        while True:
            now = self.clock()
            row = self.conn.execute(
                """
                SELECT id FROM jobs
                WHERE queue = ? AND status = ? AND run_at <= ?
                ORDER BY priority ASC, run_at ASC, created_at ASC
                LIMIT 1
                """,
                (queue, JobStatus.WAITING.value, now),
            ).fetchone()
            if row is None:
                return None
            cursor = self.conn.execute(
                """
                UPDATE jobs
                SET status = ?, attempts_made = attempts_made + 1, locked_until = ?
                WHERE id = ? AND status = ?
                """,
                (JobStatus.ACTIVE.value, now + lock_seconds, row["id"], JobStatus.WAITING.value),
            )
            self.conn.commit()
            if cursor.rowcount == 1:
                return self.get(row["id"])

    def complete(self, job_id: str, result: Any = None) -> bool:
        cursor = self.conn.execute(
            """
            UPDATE jobs
            SET status = ?, result = ?, finished_at = ?, locked_until = NULL, last_error = NULL
            WHERE id = ? AND status = ?
            """,
            (
                JobStatus.COMPLETED.value,
                json.dumps(_to_jsonable(result), ensure_ascii=False),
                self.clock(),
                job_id,
                JobStatus.ACTIVE.value,
            ),
        )
        self.conn.commit()
        return cursor.rowcount == 1

    def fail(self, job_id: str, error: str) -> JobStatus:
        """Record a failed attempt.

        Returns:
            WAITING if the job was rescheduled, FAILED if attempts are used up
        """
        job = self.get(job_id)
        if job is None or job.status != JobStatus.ACTIVE:
            return job.status if job else JobStatus.FAILED
        now = self.clock()
        if job.attempts_made < job.max_attempts:
            delay = job.backoff_delay * 2 ** (job.attempts_made - 1)
            self.conn.execute(
                """
                UPDATE jobs SET status = ?, run_at = ?, locked_until = NULL, last_error = ?
                WHERE id = ?
                """,
                (JobStatus.WAITING.value, now + delay, error[:4000], job_id),
            )
            status = JobStatus.WAITING
        else:
            self.conn.execute(
                """
                UPDATE jobs SET status = ?, finished_at = ?, locked_until = NULL, last_error = ?
                WHERE id = ?
                """,
                (JobStatus.FAILED.value, now, error[:4000], job_id),
            )
            status = JobStatus.FAILED
        self.conn.commit()
        return status

    def requeue_stalled(self, queue: str | None = None) -> int:
        """Recover active jobs whose lock expired.

        Stalled jobs with attempts left go back to waiting; the others fail.
        """
        now = self.clock()
        scope = "status = ? AND locked_until < ?"
        params: list[Any] = [JobStatus.ACTIVE.value, now]
        if queue is not None:
            scope += " AND queue = ?"
            params.append(queue)
        failed = self.conn.execute(
            f"""
            UPDATE jobs SET status = ?, finished_at = ?, locked_until = NULL,
                            last_error = 'stalled'
            WHERE {scope} AND attempts_made >= max_attempts
            """,
            [JobStatus.FAILED.value, now, *params],
        ).rowcount
        requeued = self.conn.execute(
            f"""
            UPDATE jobs SET status = ?, locked_until = NULL, last_error = 'stalled'
            WHERE {scope}
            """,
            [JobStatus.WAITING.value, *params],
        ).rowcount
        self.conn.commit()
        if failed or requeued:
            logger.warning("Stalled jobs recovered | queue=%s requeued=%d failed=%d", queue or "*", requeued, failed)
        return requeued + failed

    def counts(self, queue: str) -> dict[str, int]:
        counts = {s.value: 0 for s in JobStatus}
        for row in self.conn.execute(
            "SELECT status, COUNT(*) AS n FROM jobs WHERE queue = ? GROUP BY status", (queue,)
        ):
            counts[row["status"]] = row["n"]
        return counts

    def list_jobs(self, queue: str, status: JobStatus | None = None, limit: int = 50) -> list[Job]:
        query = "SELECT * FROM jobs WHERE queue = ?"
        params: list[Any] = [queue]
        if status is not None:
            query += " AND status = ?"
            params.append(status.value)
        query += " ORDER BY created_at DESC LIMIT ?"
        params.append(limit)
        return [self._job(r) for r in self.conn.execute(query, params)]

    def trim(self, queue: str, keep_completed: int, keep_failed: int) -> int:
        """Delete finished jobs beyond the most recent keep_* per status."""
        deleted = 0
        for status, keep in ((JobStatus.COMPLETED, keep_completed), (JobStatus.FAILED, keep_failed)):
            deleted += self.conn.execute(
                """
                DELETE FROM jobs WHERE queue = ? AND status = ? AND id NOT IN (
                    SELECT id FROM jobs WHERE queue = ? AND status = ?
                    ORDER BY finished_at DESC LIMIT ?
                )
                """,
                (queue, status.value, queue, status.value, keep),
            ).rowcount
        self.conn.commit()
        return deleted

    def close(self) -> None:
        self.conn.close()


@dataclass
class JobOutcome:
    """Result of one attempt, published on the completion channel.

    status is COMPLETED, WAITING (failed, retry scheduled) or FAILED (final).
    """

    job: Job
    status: JobStatus
    result: Any = None
    error: BaseException | None = None
    duration: float = 0.0

    @property
    def final(self) -> bool:
        return self.status != JobStatus.WAITING


Processor = Callable[[Job], Awaitable[Any]]


class JobQueue:
    """Producer handle for one queue."""

    def __init__(self, store: JobStore, name: str, settings: QueueSettings):
        self.store = store
        self.name = name
        self.settings = settings

    def add(
        self,
        name: str,
        payload: BaseModel | dict[str, Any],
        priority: int = 0,
        job_key: str | None = None,
        attempts: int | None = None,
        backoff_delay: float | None = None,
        delay: float = 0.0,
    ) -> Job:
        """Enqueue a job; a taken job_key returns the existing job."""
        data = payload.model_dump(mode="json") if isinstance(payload, BaseModel) else payload
        job, created = self.store.add(
            self.name,
            name,
            data,
            priority=priority,
            max_attempts=attempts if attempts is not None else self.settings.attempts,
            backoff_delay=backoff_delay if backoff_delay is not None else self.settings.backoff_delay,
            job_key=job_key,
            delay=delay,
        )
        if created:
            logger.debug("Job added | queue=%s name=%s id=%s priority=%d", self.name, name, job.id[:8], priority)
        return job

    def counts(self) -> dict[str, int]:
        return self.store.counts(self.name)


class Worker:
    """Consumes one queue.

    Example:
        >>> worker = Worker(store, "source-fetch", processor.process, settings, outcomes)
        >>> await worker.drain()   # run until no ready job is left
    """

    def __init__(
        self,
        store: JobStore,
        queue: str,
        processor: Processor,
        settings: QueueSettings,
        outcomes: asyncio.Queue | None = None,
        poll_interval: float = 1.0,
    ):
        self.store = store
        self.queue = queue
        self.processor = processor
        self.settings = settings
        self.outcomes = outcomes
        self.poll_interval = poll_interval
        self._semaphore = asyncio.Semaphore(settings.concurrency)
        self._limiter = (
            SlidingWindowLimiter(settings.rate_limit, settings.rate_window)
            if settings.rate_limit
            else None
        )
        self._tasks: set[asyncio.Task] = set()
        self._stop_event: asyncio.Event | None = None

    @property
    def lock_seconds(self) -> float:
        return self.settings.timeout + self.settings.rate_window + STALL_GRACE_SECONDS

    async def _execute(self, job: Job) -> JobOutcome:
        """Run one attempt and record it in the store."""
        set_job_context(job.id[:8])
        start = time.monotonic()
        error: BaseException | None = None
        result: Any = None
        try:
            if self._limiter is not None:
                await self._limiter.acquire()
            with trace_operation(
                f"job.{self.queue}",
                {"job_id": job.id, "job_name": job.name, "attempt": job.attempts_made},
            ):
                result = await asyncio.wait_for(self.processor(job), timeout=self.settings.timeout)
        except asyncio.TimeoutError as e:
            if time.monotonic() - start >= self.settings.timeout:
                error = JobTimeoutError(job.id, self.settings.timeout)
            else:
                error = e
        except Exception as e:
            error = e

        duration = time.monotonic() - start
        if error is None:
            self.store.complete(job.id, result)
            outcome = JobOutcome(job, JobStatus.COMPLETED, result=result, duration=duration)
        else:
            status = self.store.fail(job.id, f"{type(error).__name__}: {error}")
            outcome = JobOutcome(job, status, error=error, duration=duration)
        if self.outcomes is not None:
            self.outcomes.put_nowait(outcome)
        clear_context()
        return outcome

    def _claim_many(self, limit: int) -> list[Job]:
        jobs = []
        while len(jobs) < limit:
            job = self.store.claim(self.queue, self.lock_seconds)
            if job is None:
                break
            jobs.append(job)
        return jobs

    async def drain(self) -> int:
        """Process ready jobs until none is left; returns attempts made.

        Jobs rescheduled with a backoff delay are not ready and are left
        for a later drain or for run().
        """
        processed = 0
        while True:
            jobs = self._claim_many(self.settings.concurrency)
            if not jobs:
                return processed
            await asyncio.gather(*(self._execute(j) for j in jobs))
            processed += len(jobs)

    async def _run_one(self, job: Job) -> None:
        try:
            await self._execute(job)
        finally:
            self._semaphore.release()

    async def run(self) -> None:
        """Poll and process jobs until stop() is called."""
        self._stop_event = asyncio.Event()
        self.store.requeue_stalled(self.queue)
        last_stall_check = time.monotonic()
        logger.info(
            "Worker started | queue=%s concurrency=%d rate_limit=%s",
            self.queue, self.settings.concurrency, self.settings.rate_limit or "-",
        )

        while not self._stop_event.is_set():
            await self._semaphore.acquire()
            job = self.store.claim(self.queue, self.lock_seconds)
            if job is None:
                self._semaphore.release()
                if time.monotonic() - last_stall_check > self.lock_seconds:
                    self.store.requeue_stalled(self.queue)
                    last_stall_check = time.monotonic()
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=self.poll_interval)
                except asyncio.TimeoutError:
                    pass
                continue
            task = asyncio.create_task(self._run_one(job))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        logger.info("Worker stopped | queue=%s", self.queue)

    def stop(self) -> None:
        if self._stop_event is not None:
            self._stop_event.set()


class OutcomeLogger:
    """Completion-channel subscriber: logs each outcome, keeps counts and
    passes it on to the listeners added with JobRuntime.subscribe()."""

    def __init__(self, outcomes: asyncio.Queue):
        self.outcomes = outcomes
        self.counts: Counter[str] = Counter()
        self.listeners: list[Callable[[JobOutcome], None]] = []

    def handle(self, outcome: JobOutcome) -> None:
        job = outcome.job
        key = f"{job.queue}:{outcome.status.value}"
        self.counts[key] += 1
        if outcome.status == JobStatus.COMPLETED:
            logger.info(
                "Job completed | queue=%s name=%s id=%s duration=%.2fs",
                job.queue, job.name, job.id[:8], outcome.duration,
            )
        elif outcome.status == JobStatus.WAITING:
            logger.warning(
                "Job attempt failed, retry scheduled | queue=%s id=%s attempt=%d/%d error=%s",
                job.queue, job.id[:8], job.attempts_made, job.max_attempts, outcome.error,
            )
        else:
            logger.error(
                "Job failed | queue=%s name=%s id=%s attempts=%d error=%s",
                job.queue, job.name, job.id[:8], job.attempts_made, outcome.error,
                exc_info=outcome.error,
            )
        for listener in self.listeners:
            try:
                listener(outcome)
            except Exception as e:
                logger.error("Outcome listener failed | queue=%s id=%s error=%s", job.queue, job.id[:8], e, exc_info=True)

    def flush(self) -> int:
        """Handle every outcome already queued."""
        handled = 0
        while not self.outcomes.empty():
            self.handle(self.outcomes.get_nowait())
            self.outcomes.task_done()
            handled += 1
        return handled

    async def run(self) -> None:
        while True:
            outcome = await self.outcomes.get()
            try:
                self.handle(outcome)
            finally:
                self.outcomes.task_done()


class JobRuntime:
    """Owns the store, queues, workers and outcome subscriber."""

    def __init__(
        self,
        store: JobStore,
        settings: dict[str, QueueSettings],
        poll_interval: float = 1.0,
    ):
        self.store = store
        self.settings = settings
        self.poll_interval = poll_interval
        self.outcomes: asyncio.Queue = asyncio.Queue()
        self.subscriber = OutcomeLogger(self.outcomes)
        self.queues = {name: JobQueue(store, name, s) for name, s in settings.items()}
        self.workers: dict[str, Worker] = {}
        self._subscriber_task: asyncio.Task | None = None

    def queue(self, name: str) -> JobQueue:
        return self.queues[name]

    def subscribe(self, listener: Callable[[JobOutcome], None]) -> None:
        """Call listener with every outcome after it is logged."""
        self.subscriber.listeners.append(listener)

    def register(self, queue: str, processor: Processor) -> Worker:
        worker = Worker(
            self.store,
            queue,
            processor,
            self.settings[queue],
            outcomes=self.outcomes,
            poll_interval=self.poll_interval,
        )
        self.workers[queue] = worker
        return worker

    async def drain(self, max_rounds: int = 50) -> int:
        """Drain every registered queue until a full round does no work.

        Queues are visited in registration order, so work fanned out by an
        earlier queue is picked up in the same round.
        """
        total = 0
        for _ in range(max_rounds):
            processed = 0
            for worker in self.workers.values():
                processed += await worker.drain()
            self.subscriber.flush()
            total += processed
            if processed == 0:
                break
        return total

    async def start(self) -> None:
        """Run all workers until stop()."""
        self._subscriber_task = asyncio.create_task(self.subscriber.run())
        try:
            await asyncio.gather(*(w.run() for w in self.workers.values()))
        finally:
            self._subscriber_task.cancel()
            self.subscriber.flush()

    def stop(self) -> None:
        for worker in self.workers.values():
            worker.stop()

    def counts(self) -> dict[str, dict[str, int]]:
        return {name: q.counts() for name, q in self.queues.items()}

    def trim(self) -> int:
        return sum(
            self.store.trim(name, s.keep_completed, s.keep_failed)
            for name, s in self.settings.items()
        )
