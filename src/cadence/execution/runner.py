"""Job runner — leases jobs per queue and executes them on bounded pools.

The runner bridges the job store to registered workers. Each queue gets a
dispatch thread and a ``ThreadPoolExecutor`` sized to that queue's
concurrency limit; a dispatch thread only leases as many jobs as its pool
has free slots, so one busy queue never starves another.

Usage (programmatic)::

    from cadence.execution.runner import JobRunner

    runner = JobRunner(database, registry, queues={"notifications": 30})
    runner.start()          # non-blocking
    ...
    runner.stop(grace=30)   # waits for in-flight jobs, then abandons the rest

Usage (CLI)::

    cadence run

Attempt outcome rules:

    worker returns               → completed
    PermanentError / bad args /
      unknown kind               → failed (no retry)
    transient, attempts left     → retryable, scheduled_at = now + backoff
    transient, attempts used up  → discarded

Jobs abandoned at shutdown keep their lease and are requeued by
``rescue_expired`` once it runs out.
"""

from __future__ import annotations

import logging
import os
import platform
import signal
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from cadence.core.database import Database
from cadence.core.errors import (
    FailureClass,
    JobTimeoutError,
    ValidationError,
    classify_error,
)
from cadence.core.logging import LogContext
from cadence.core.protocols import Clock
from cadence.core.settings import CadenceSettings, get_settings
from cadence.core.timestamps import generate_ulid, utc_now

from .client import JobClient
from .contract import JobContext
from .models import AttemptOutcome, Job, JobAttempt
from .registry import WorkerRegistry
from .retry import ExponentialBackoff, RetryStrategy, retry_at
from .store import JobStore
from .timeout import TimeoutExpired, deadline_scope

logger = logging.getLogger(__name__)

LEASE_MARGIN_SECONDS = 60.0


@dataclass
class RunnerStats:
    """Aggregate counters for one runner."""

    completed: int = 0
    retried: int = 0
    failed: int = 0
    discarded: int = 0
    lease_lost: int = 0
    rescued: int = 0
    in_flight: int = 0
    uptime_seconds: float = 0
    last_poll_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "completed": self.completed,
            "retried": self.retried,
            "failed": self.failed,
            "discarded": self.discarded,
            "lease_lost": self.lease_lost,
            "rescued": self.rescued,
            "in_flight": self.in_flight,
            "uptime_seconds": round(self.uptime_seconds, 2),
            "last_poll_at": self.last_poll_at.isoformat() if self.last_poll_at else None,
        }


@dataclass
class QueueState:
    """Dispatch state of one queue."""

    name: str
    concurrency: int
    executor: ThreadPoolExecutor | None = None
    thread: threading.Thread | None = None
    in_flight: set[Future] = field(default_factory=set)
    wake: threading.Event = field(default_factory=threading.Event)
    lock: threading.Lock = field(default_factory=threading.Lock)

    def free_slots(self) -> int:
        with self.lock:
            return self.concurrency - len(self.in_flight)


class JobRunner:
    """Leases jobs from every configured queue and runs them."""

    def __init__(
        self,
        database: Database,
        registry: WorkerRegistry,
        *,
        queues: dict[str, int] | None = None,
        settings: CadenceSettings | None = None,
        client: JobClient | None = None,
        retry_strategy: RetryStrategy | None = None,
        poll_interval: float | None = None,
        default_timeout: float | None = None,
        shutdown_grace: float | None = None,
        rescue_interval: float = 30.0,
        worker_id: str | None = None,
        clock: Clock = utc_now,
    ):
        """
        Args:
            database: Shared connection pool.
            registry: Workers by kind.
            queues: Queue name → concurrency. Defaults to every queue the
                registered kinds route to, sized from *settings*.
            settings: Falls back to the process settings.
            client: Handed to workers for follow-up inserts.
            retry_strategy: Backoff for transient failures without an
                explicit ``retry_after``.
            poll_interval: Idle wait between lease attempts per queue.
            default_timeout: Deadline for workers that declare none.
            shutdown_grace: Default wait for in-flight jobs in :meth:`stop`.
            rescue_interval: Seconds between expired-lease sweeps.
            worker_id: Recorded as ``attempted_by``. Auto-generated if ``None``.
            clock: Source of "now" for leases and retries.
        """
        settings = settings or get_settings()
        self.settings = settings
        self.database = database
        self.registry = registry
        self.client = client or JobClient(database, registry)
        self.retry_strategy = retry_strategy or ExponentialBackoff()
        self.poll_interval = poll_interval or settings.poll_interval_seconds
        self.default_timeout = default_timeout or settings.job_timeout_seconds
        self.shutdown_grace = (
            shutdown_grace if shutdown_grace is not None else settings.shutdown_grace_seconds
        )
        self.rescue_interval = rescue_interval
        self.lease_seconds = registry.max_timeout(self.default_timeout) + LEASE_MARGIN_SECONDS
        self._clock = clock
        self._worker_id = worker_id or f"{platform.node() or 'cadence'}-{os.getpid()}-{generate_ulid()[-6:]}"

        if queues is None:
            names = registry.queues() or set(settings.queue_concurrency)
            queues = {name: settings.concurrency_for(name) for name in names}
        for name, limit in queues.items():
            if limit < 1:
                raise ValueError(f"concurrency for queue {name!r} must be >= 1, got {limit}")
        self._queues = {name: QueueState(name=name, concurrency=limit) for name, limit in sorted(queues.items())}

        self._shutdown = threading.Event()
        self._maintenance: threading.Thread | None = None
        self._started_at: float | None = None
        self._stats = RunnerStats()
        self._stats_lock = threading.Lock()

    @property
    def worker_id(self) -> str:
        return self._worker_id

    @property
    def queues(self) -> dict[str, int]:
        return {name: state.concurrency for name, state in self._queues.items()}

    @property
    def is_running(self) -> bool:
        return self._started_at is not None and not self._shutdown.is_set()

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    def start(self, *, install_signal_handlers: bool = True) -> None:
        """Start one dispatch thread per queue plus the lease sweeper.

        Non-blocking. SIGINT / SIGTERM stop leasing; :meth:`wait` returns
        once either arrives, and the caller then calls :meth:`stop`.
        """
        if self._started_at is not None:
            raise RuntimeError("runner already started")
        self._started_at = time.monotonic()

        for state in self._queues.values():
            state.executor = ThreadPoolExecutor(
                max_workers=state.concurrency,
                thread_name_prefix=f"cadence-{state.name}",
            )
            state.thread = threading.Thread(
                target=self._dispatch_loop,
                args=(state,),
                name=f"cadence-{state.name}-dispatch",
                daemon=True,
            )
            state.thread.start()

        self._maintenance = threading.Thread(
            target=self._maintenance_loop,
            name="cadence-lease-sweeper",
            daemon=True,
        )
        self._maintenance.start()

        if install_signal_handlers:
            try:
                signal.signal(signal.SIGINT, self._handle_signal)
                signal.signal(signal.SIGTERM, self._handle_signal)
            except (ValueError, OSError):
                logger.debug("Not on the main thread; signal handlers not installed")

        logger.info(
            "Runner %s started: %s",
            self._worker_id,
            ", ".join(f"{name}={limit}" for name, limit in self.queues.items()),
        )

    def _handle_signal(self, signum, frame):
        logger.info("Runner %s received signal %s, stopping", self._worker_id, signum)
        self.request_stop()

    def request_stop(self) -> None:
        """Stop leasing new jobs; in-flight jobs keep running."""
        self._shutdown.set()
        for state in self._queues.values():
            state.wake.set()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until a stop is requested. Returns True if one was."""
        return self._shutdown.wait(timeout)

    def stop(self, grace: float | None = None) -> int:
        """Stop leasing, wait up to ``grace`` seconds for in-flight jobs.

        Returns:
            Number of jobs still running when the grace period ended.
        """
        grace = self.shutdown_grace if grace is None else grace
        logger.info("Runner %s stopping (grace %.1fs)", self._worker_id, grace)
        self._shutdown.set()

        for state in self._queues.values():
            state.wake.set()
        for state in self._queues.values():
            if state.thread is not None:
                state.thread.join(timeout=max(self.poll_interval, 1.0) + 5.0)

        pending: set[Future] = set()
        for state in self._queues.values():
            with state.lock:
                pending.update(state.in_flight)

        not_done: set[Future] = set()
        if pending:
            _, not_done = wait(pending, timeout=grace)

        for state in self._queues.values():
            if state.executor is not None:
                state.executor.shutdown(wait=False, cancel_futures=True)

        if self._maintenance is not None:
            self._maintenance.join(timeout=5.0)

        if not_done:
            logger.warning(
                "Runner %s abandoned %d in-flight job(s); they will be rescued when their leases expire",
                self._worker_id,
                len(not_done),
            )
        logger.info(
            "Runner %s stopped (completed=%d, retried=%d, failed=%d, discarded=%d)",
            self._worker_id,
            self._stats.completed,
            self._stats.retried,
            self._stats.failed,
            self._stats.discarded,
        )
        return len(not_done)

    def get_stats(self) -> RunnerStats:
        in_flight = 0
        for state in self._queues.values():
            with state.lock:
                in_flight += len(state.in_flight)
        with self._stats_lock:
            self._stats.in_flight = in_flight
            if self._started_at is not None:
                self._stats.uptime_seconds = time.monotonic() - self._started_at
            return self._stats

    # ------------------------------------------------------------------ #
    # Dispatch
    # ------------------------------------------------------------------ #

    def _dispatch_loop(self, state: QueueState) -> None:
        while not self._shutdown.is_set():
            state.wake.clear()
            leased = 0
            free = state.free_slots()
            if free > 0:
                try:
                    leased = self._lease_and_submit(state, free)
                except Exception:
                    logger.exception("Lease failed on queue %s", state.name)
            with self._stats_lock:
                self._stats.last_poll_at = self._clock()
            if leased == 0:
                state.wake.wait(self.poll_interval)

    def _lease(self, queue: str, limit: int) -> list[Job]:
        with self.database.connection() as conn:
            return JobStore(conn, self.database.dialect).lease(
                queue,
                limit,
                lease_seconds=self.lease_seconds,
                worker_id=self._worker_id,
                now=self._clock(),
            )

    def _lease_and_submit(self, state: QueueState, free: int) -> int:
        executor = state.executor
        if executor is None:
            raise RuntimeError(f"Queue {state.name} has no executor; call start() first")
        jobs = self._lease(state.name, free)
        for job in jobs:
            future = executor.submit(self._execute, job)
            with state.lock:
                state.in_flight.add(future)
            future.add_done_callback(lambda f, s=state: self._on_done(s, f))
        if jobs:
            logger.debug("Queue %s leased %d job(s)", state.name, len(jobs))
        return len(jobs)

    @staticmethod
    def _on_done(state: QueueState, future: Future) -> None:
        with state.lock:
            state.in_flight.discard(future)
        state.wake.set()

    def run_pending(self, queues: list[str] | None = None) -> int:
        """Lease and execute due jobs inline on the calling thread.

        Each queue is leased once, up to its concurrency. Returns the number
        of jobs executed.
        """
        executed = 0
        for name in queues or list(self._queues):
            state = self._queues.get(name)
            limit = state.concurrency if state is not None else 1
            for job in self._lease(name, limit):
                self._execute(job)
                executed += 1
        return executed

    # ------------------------------------------------------------------ #
    # Execution
    # ------------------------------------------------------------------ #

    def _execute(self, job: Job) -> AttemptOutcome | None:
        """Run one leased attempt and record its outcome."""
        started_at = self._clock()
        start = time.monotonic()
        error: Exception | None = None
        try:
            self._run_worker(job)
        except Exception as exc:
            error = exc
        duration_ms = int((time.monotonic() - start) * 1000)

        try:
            return self._finalize(job, error, started_at, duration_ms)
        except Exception:
            logger.exception(
                "Could not record outcome of job %s attempt %d; the lease will expire",
                job.id,
                job.attempt,
            )
            return None

    def _run_worker(self, job: Job) -> None:
        worker = self.registry.get(job.kind)
        try:
            args = worker.args_type.model_validate(job.args)
        except PydanticValidationError as exc:
            raise ValidationError(f"Invalid args for {job.kind}: {exc}", cause=exc) from exc

        timeout = worker.timeout_seconds or self.default_timeout
        with (
            deadline_scope(timeout, job.kind) as deadline,
            LogContext(job_id=job.id, kind=job.kind, queue=job.queue, attempt=job.attempt),
        ):
            ctx = JobContext(
                job=job,
                database=self.database,
                client=self.client,
                deadline=deadline,
                worker_id=self._worker_id,
                clock=self._clock,
                settings=self.settings,
            )
            logger.debug("Job %s (%s) attempt %d started", job.id, job.kind, job.attempt)
            try:
                worker.work(job, args, ctx)
            except TimeoutExpired as exc:
                raise JobTimeoutError(str(exc), cause=exc) from exc
            if deadline.is_expired():
                raise JobTimeoutError(
                    f"{job.kind} finished {-deadline.remaining():.1f}s after its {timeout:.0f}s deadline"
                )

    def _finalize(
        self,
        job: Job,
        error: Exception | None,
        started_at: datetime,
        duration_ms: int,
    ) -> AttemptOutcome | None:
        now = self._clock()
        message = None if error is None else f"{type(error).__name__}: {error}"

        if error is None:
            outcome = AttemptOutcome.COMPLETED
        elif classify_error(error) is FailureClass.PERMANENT:
            outcome = AttemptOutcome.FAILED
        elif job.attempts_exhausted:
            outcome = AttemptOutcome.DISCARDED
        else:
            outcome = AttemptOutcome.RETRY

        with self.database.connection() as conn:
            store = JobStore(conn, self.database.dialect)
            ok = False
            if outcome is AttemptOutcome.COMPLETED:
                ok = store.complete(job, now=now)
            elif outcome is AttemptOutcome.FAILED:
                ok = store.fail(job, message or "", now=now)
            elif outcome is AttemptOutcome.DISCARDED:
                ok = store.discard(job, message or "", now=now)
            elif error is not None:
                ok = store.retry(
                    job,
                    message or "",
                    retry_at=retry_at(error, job.attempt, self.retry_strategy, now),
                    now=now,
                )
            if ok:
                store.record_attempt(
                    JobAttempt(
                        id=generate_ulid(),
                        job_id=job.id,
                        kind=job.kind,
                        queue=job.queue,
                        attempt=job.attempt,
                        outcome=outcome,
                        started_at=started_at,
                        finished_at=now,
                        duration_ms=duration_ms,
                        message=message,
                        worker_id=self._worker_id,
                    )
                )

        with self._stats_lock:
            if not ok:
                self._stats.lease_lost += 1
            elif outcome is AttemptOutcome.COMPLETED:
                self._stats.completed += 1
            elif outcome is AttemptOutcome.FAILED:
                self._stats.failed += 1
            elif outcome is AttemptOutcome.DISCARDED:
                self._stats.discarded += 1
            else:
                self._stats.retried += 1

        if not ok:
            return None
        if outcome is AttemptOutcome.COMPLETED:
            logger.info("Job %s (%s) completed in %dms", job.id, job.kind, duration_ms)
        elif outcome is AttemptOutcome.RETRY:
            logger.warning(
                "Job %s (%s) attempt %d/%d failed, will retry: %s",
                job.id,
                job.kind,
                job.attempt,
                job.max_attempts,
                message,
            )
        else:
            logger.error("Job %s (%s) %s: %s", job.id, job.kind, outcome.value, message)
        return outcome

    # ------------------------------------------------------------------ #
    # Lease sweeper
    # ------------------------------------------------------------------ #

    def _maintenance_loop(self) -> None:
        while not self._shutdown.wait(self.rescue_interval):
            try:
                self.rescue_expired()
            except Exception:
                logger.exception("Lease sweep failed")

    def rescue_expired(self) -> int:
        """Requeue jobs whose leases ran out. Returns how many were rescued."""
        with self.database.connection() as conn:
            rescued = JobStore(conn, self.database.dialect).rescue_expired(now=self._clock())
        if rescued:
            with self._stats_lock:
                self._stats.rescued += len(rescued)
        return len(rescued)


__all__ = ["JobRunner", "RunnerStats", "QueueState", "LEASE_MARGIN_SECONDS"]
