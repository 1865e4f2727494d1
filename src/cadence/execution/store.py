"""Job store — durable queue over a SQL connection.

Manifesto:
    The job table is the coordination point for every cadence process.
    Deduplication, leasing and attempt counting are all expressed as
    single guarded SQL statements, so any number of schedulers and runners
    can share one database without in-process locks or leader election.

Architecture:
    ::

        enqueue(JobInsert)        INSERT OR IGNORE  ──► partial unique index
                                                         (kind, unique_key)
                                                         WHERE state <> 'discarded'
        lease(queue, n)           SELECT due rows ORDER BY priority, scheduled_at
                                  UPDATE ... WHERE id = ? AND state IN (available, retryable)
        complete / retry /        UPDATE ... WHERE id = ? AND state = 'running'
        fail / discard                            AND attempt = ?   (lease guard)
        rescue_expired(now)       running rows whose lease ran out
        record_attempt(...)       append-only history

    The lease guard means a worker whose lease already expired cannot
    overwrite the outcome of a later attempt.

Tags:
    cadence, execution, queue, dedup, lease, repository

Doc-Types:
    api-reference
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta
from typing import Any

from cadence.core.dialect import Dialect, SQLiteDialect
from cadence.core.protocols import Connection
from cadence.core.timestamps import from_iso8601, generate_ulid, to_iso8601, utc_now

from .models import (
    AttemptOutcome,
    InsertResult,
    InvalidTransitionError,
    Job,
    JobAttempt,
    JobInsert,
    JobState,
)

logger = logging.getLogger(__name__)

_JOB_COLUMNS = (
    "id",
    "kind",
    "queue",
    "args",
    "priority",
    "state",
    "attempt",
    "max_attempts",
    "unique_key",
    "scheduled_at",
    "created_at",
    "attempted_at",
    "attempted_by",
    "leased_until",
    "finalized_at",
    "last_error",
)
_SELECT_JOB = f"SELECT {', '.join(_JOB_COLUMNS)} FROM cadence_jobs"

_ATTEMPT_COLUMNS = (
    "id",
    "job_id",
    "kind",
    "queue",
    "attempt",
    "outcome",
    "message",
    "worker_id",
    "started_at",
    "finished_at",
    "duration_ms",
)

_RUNNABLE = "('available', 'retryable')"


class JobStore:
    """Queue operations over the ``cadence_jobs`` table.

    Every write commits, matching the other repositories; callers that need
    a wider transaction pass the same connection to each repository and
    rely on the ordering of commits.
    """

    def __init__(self, conn: Connection, dialect: Dialect | None = None) -> None:
        self.conn = conn
        self.dialect: Dialect = dialect or SQLiteDialect()

    def _ph(self, count: int = 1) -> str:
        return self.dialect.placeholders(count)

    # === Enqueue ===

    def enqueue(self, insert: JobInsert, *, now: datetime | None = None) -> InsertResult:
        """Insert a job unless a live job with the same (kind, unique_key) exists.

        Returns:
            InsertResult with the new job, or the existing live job and
            ``duplicate=True`` when the dedup key was already taken.
        """
        now = now or utc_now()
        job_id = generate_ulid()
        scheduled_at = insert.scheduled_at or now

        cursor = self.conn.execute(
            self.dialect.insert_or_ignore(
                "cadence_jobs",
                [
                    "id",
                    "kind",
                    "queue",
                    "args",
                    "priority",
                    "state",
                    "attempt",
                    "max_attempts",
                    "unique_key",
                    "scheduled_at",
                    "created_at",
                ],
            ),
            (
                job_id,
                insert.kind,
                insert.opts.queue,
                json.dumps(insert.args, default=str, sort_keys=True),
                insert.opts.priority,
                JobState.AVAILABLE.value,
                0,
                insert.opts.max_attempts,
                insert.unique_key,
                to_iso8601(scheduled_at),
                to_iso8601(now),
            ),
        )
        inserted = cursor.rowcount == 1
        self.conn.commit()

        if inserted:
            logger.debug(f"Enqueued {insert.kind} job {job_id} on {insert.opts.queue}")
            return InsertResult(job=self.get(job_id))  # type: ignore[arg-type]

        existing = None
        if insert.unique_key is not None:
            existing = self.find_live(insert.kind, insert.unique_key)
        if existing is None:
            raise RuntimeError(
                f"Insert of {insert.kind} job was ignored but no live job holds key {insert.unique_key!r}"
            )
        logger.debug(f"Skipped duplicate {insert.kind} job for key {insert.unique_key}")
        return InsertResult(job=existing, duplicate=True)

    # === Reads ===

    def get(self, job_id: str) -> Job | None:
        cursor = self.conn.execute(f"{_SELECT_JOB} WHERE id = {self._ph()}", (job_id,))
        row = cursor.fetchone()
        return _row_to_job(row) if row else None

    def find_live(self, kind: str, unique_key: str) -> Job | None:
        """The non-discarded job holding ``unique_key`` for ``kind``, if any."""
        cursor = self.conn.execute(
            f"{_SELECT_JOB} WHERE kind = {self._ph()} AND unique_key = {self._ph()} "
            "AND state <> 'discarded'",
            (kind, unique_key),
        )
        row = cursor.fetchone()
        return _row_to_job(row) if row else None

    def list_jobs(
        self,
        *,
        state: JobState | None = None,
        queue: str | None = None,
        kind: str | None = None,
        limit: int = 100,
    ) -> list[Job]:
        clauses: list[str] = []
        params: list[Any] = []
        if state is not None:
            clauses.append(f"state = {self._ph()}")
            params.append(state.value)
        if queue is not None:
            clauses.append(f"queue = {self._ph()}")
            params.append(queue)
        if kind is not None:
            clauses.append(f"kind = {self._ph()}")
            params.append(kind)
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        params.append(limit)
        cursor = self.conn.execute(
            f"{_SELECT_JOB}{where} ORDER BY created_at DESC, id DESC LIMIT {self._ph()}",
            params,
        )
        return [_row_to_job(row) for row in cursor.fetchall()]

    def count_by_state(self, queue: str | None = None) -> dict[str, int]:
        if queue is None:
            cursor = self.conn.execute("SELECT state, COUNT(*) FROM cadence_jobs GROUP BY state")
        else:
            cursor = self.conn.execute(
                f"SELECT state, COUNT(*) FROM cadence_jobs WHERE queue = {self._ph()} GROUP BY state",
                (queue,),
            )
        return {row[0]: row[1] for row in cursor.fetchall()}

    # === Leasing ===

    def lease(
        self,
        queue: str,
        limit: int,
        *,
        lease_seconds: float,
        worker_id: str | None = None,
        now: datetime | None = None,
    ) -> list[Job]:
        """Claim up to ``limit`` due jobs from ``queue``, highest priority first.

        Each claim increments the attempt counter and sets ``leased_until``.
        A row claimed by another process between the SELECT and the UPDATE is
        skipped.
        """
        if limit <= 0:
            return []
        now = now or utc_now()
        now_iso = to_iso8601(now)
        leased_until = to_iso8601(now + timedelta(seconds=lease_seconds))

        cursor = self.conn.execute(
            f"SELECT id FROM cadence_jobs "
            f"WHERE queue = {self._ph()} AND state IN {_RUNNABLE} AND scheduled_at <= {self._ph()} "
            f"ORDER BY priority ASC, scheduled_at ASC, id ASC LIMIT {self._ph()}",
            (queue, now_iso, limit),
        )
        candidate_ids = [row[0] for row in cursor.fetchall()]

        claimed: list[str] = []
        for job_id in candidate_ids:
            cursor = self.conn.execute(
                f"UPDATE cadence_jobs SET state = 'running', attempt = attempt + 1, "
                f"attempted_at = {self._ph()}, attempted_by = {self._ph()}, leased_until = {self._ph()} "
                f"WHERE id = {self._ph()} AND state IN {_RUNNABLE}",
                (now_iso, worker_id, leased_until, job_id),
            )
            if cursor.rowcount == 1:
                claimed.append(job_id)
        self.conn.commit()

        jobs = [self.get(job_id) for job_id in claimed]
        result = [job for job in jobs if job is not None]
        result.sort(key=lambda j: (j.priority, j.scheduled_at, j.id))
        return result

    # === Finalization (lease-guarded) ===

    def complete(self, job: Job, *, now: datetime | None = None) -> bool:
        return self._finish(job, JobState.COMPLETED, None, now=now)

    def fail(self, job: Job, error: str, *, now: datetime | None = None) -> bool:
        return self._finish(job, JobState.FAILED, error, now=now)

    def discard(self, job: Job, error: str, *, now: datetime | None = None) -> bool:
        return self._finish(job, JobState.DISCARDED, error, now=now)

    def retry(
        self,
        job: Job,
        error: str,
        *,
        retry_at: datetime,
        now: datetime | None = None,
    ) -> bool:
        """Return a running job to the queue, runnable again at ``retry_at``."""
        cursor = self.conn.execute(
            f"UPDATE cadence_jobs SET state = 'retryable', scheduled_at = {self._ph()}, "
            f"leased_until = NULL, last_error = {self._ph()} "
            f"WHERE id = {self._ph()} AND state = 'running' AND attempt = {self._ph()}",
            (to_iso8601(retry_at), error, job.id, job.attempt),
        )
        self.conn.commit()
        return self._guarded(cursor, job, JobState.RETRYABLE)

    def _finish(
        self,
        job: Job,
        target: JobState,
        error: str | None,
        *,
        now: datetime | None,
    ) -> bool:
        now = now or utc_now()
        cursor = self.conn.execute(
            f"UPDATE cadence_jobs SET state = {self._ph()}, finalized_at = {self._ph()}, "
            f"leased_until = NULL, last_error = COALESCE({self._ph()}, last_error) "
            f"WHERE id = {self._ph()} AND state = 'running' AND attempt = {self._ph()}",
            (target.value, to_iso8601(now), error, job.id, job.attempt),
        )
        self.conn.commit()
        return self._guarded(cursor, job, target)

    @staticmethod
    def _guarded(cursor: Any, job: Job, target: JobState) -> bool:
        if cursor.rowcount == 1:
            return True
        logger.warning(
            f"Job {job.id} attempt {job.attempt} no longer holds its lease; "
            f"ignoring transition to {target.value}"
        )
        return False

    def rescue_expired(self, *, now: datetime | None = None) -> list[Job]:
        """Requeue running jobs whose lease has expired.

        Jobs with attempts left become retryable immediately; the rest are
        discarded.
        """
        now = now or utc_now()
        now_iso = to_iso8601(now)
        cursor = self.conn.execute(
            f"{_SELECT_JOB} WHERE state = 'running' AND leased_until IS NOT NULL "
            f"AND leased_until < {self._ph()}",
            (now_iso,),
        )
        expired = [_row_to_job(row) for row in cursor.fetchall()]

        rescued: list[Job] = []
        for job in expired:
            message = f"lease expired after attempt {job.attempt}"
            if job.attempts_exhausted:
                ok = self.discard(job, message, now=now)
            else:
                ok = self.retry(job, message, retry_at=now, now=now)
            if ok:
                self.record_attempt(
                    JobAttempt(
                        id=generate_ulid(),
                        job_id=job.id,
                        kind=job.kind,
                        queue=job.queue,
                        attempt=job.attempt,
                        outcome=AttemptOutcome.RESCUED,
                        started_at=job.attempted_at or now,
                        finished_at=now,
                        duration_ms=int(((now - (job.attempted_at or now)).total_seconds()) * 1000),
                        message=message,
                        worker_id=job.attempted_by,
                    )
                )
                rescued.append(job)
        if rescued:
            logger.warning(f"Rescued {len(rescued)} job(s) with expired leases")
        return rescued

    def retry_job(self, job_id: str, *, now: datetime | None = None) -> Job:
        """Operator action: make a failed or discarded job runnable again.

        Attempts are reset so the job gets its full ceiling.

        Raises:
            KeyError: If the job does not exist
            InvalidTransitionError: If the job is not failed or discarded
        """
        job = self.get(job_id)
        if job is None:
            raise KeyError(f"Job not found: {job_id}")
        if job.state not in (JobState.FAILED, JobState.DISCARDED):
            raise InvalidTransitionError(job.state.value, JobState.AVAILABLE.value)
        now = now or utc_now()
        self.conn.execute(
            f"UPDATE cadence_jobs SET state = 'available', attempt = 0, scheduled_at = {self._ph()}, "
            f"finalized_at = NULL, leased_until = NULL WHERE id = {self._ph()}",
            (to_iso8601(now), job_id),
        )
        self.conn.commit()
        logger.info(f"Job {job_id} re-queued by operator")
        return self.get(job_id)  # type: ignore[return-value]

    # === Attempt history ===

    def record_attempt(self, attempt: JobAttempt) -> None:
        self.conn.execute(
            f"INSERT INTO cadence_job_attempts ({', '.join(_ATTEMPT_COLUMNS)}) "
            f"VALUES ({self._ph(len(_ATTEMPT_COLUMNS))})",
            (
                attempt.id,
                attempt.job_id,
                attempt.kind,
                attempt.queue,
                attempt.attempt,
                attempt.outcome.value,
                attempt.message,
                attempt.worker_id,
                to_iso8601(attempt.started_at),
                to_iso8601(attempt.finished_at),
                attempt.duration_ms,
            ),
        )
        self.conn.commit()

    def list_attempts(self, job_id: str) -> list[JobAttempt]:
        cursor = self.conn.execute(
            f"SELECT {', '.join(_ATTEMPT_COLUMNS)} FROM cadence_job_attempts "
            f"WHERE job_id = {self._ph()} ORDER BY attempt ASC, finished_at ASC",
            (job_id,),
        )
        return [_row_to_attempt(row) for row in cursor.fetchall()]


def _row_to_job(row: Any) -> Job:
    data = dict(zip(_JOB_COLUMNS, tuple(row)))
    return Job(
        id=data["id"],
        kind=data["kind"],
        queue=data["queue"],
        args=json.loads(data["args"]) if data["args"] else {},
        priority=data["priority"],
        state=JobState(data["state"]),
        attempt=data["attempt"],
        max_attempts=data["max_attempts"],
        unique_key=data["unique_key"],
        scheduled_at=from_iso8601(data["scheduled_at"]),  # type: ignore[arg-type]
        created_at=from_iso8601(data["created_at"]),  # type: ignore[arg-type]
        attempted_at=from_iso8601(data["attempted_at"]),
        attempted_by=data["attempted_by"],
        leased_until=from_iso8601(data["leased_until"]),
        finalized_at=from_iso8601(data["finalized_at"]),
        last_error=data["last_error"],
    )


def _row_to_attempt(row: Any) -> JobAttempt:
    data = dict(zip(_ATTEMPT_COLUMNS, tuple(row)))
    return JobAttempt(
        id=data["id"],
        job_id=data["job_id"],
        kind=data["kind"],
        queue=data["queue"],
        attempt=data["attempt"],
        outcome=AttemptOutcome(data["outcome"]),
        message=data["message"],
        worker_id=data["worker_id"],
        started_at=from_iso8601(data["started_at"]),  # type: ignore[arg-type]
        finished_at=from_iso8601(data["finished_at"]),  # type: ignore[arg-type]
        duration_ms=data["duration_ms"],
    )


__all__ = ["JobStore"]
