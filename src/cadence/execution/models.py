"""Job queue domain models.

Defines the data structures that move through the job store:

- Job: one unit of queued work (the job envelope)
- JobInsert / InsertOpts: what callers hand to the store
- JobAttempt: append-only record of one execution attempt

State machine::

    AVAILABLE ─┐
               ├─→ RUNNING ─→ COMPLETED
    RETRYABLE ─┘      │
                      ├─→ RETRYABLE   (transient error, attempts left)
                      ├─→ FAILED      (permanent error)
                      └─→ DISCARDED   (transient error, attempts exhausted)

    FAILED / DISCARDED ─→ AVAILABLE   (operator retry)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from cadence.core.settings import DEFAULT_QUEUE

PRIORITY_HIGHEST = 1
PRIORITY_LOWEST = 4


class InvalidTransitionError(ValueError):
    """Raised when an illegal job state transition is attempted."""

    def __init__(self, current: str, target: str) -> None:
        self.current = current
        self.target = target
        super().__init__(f"Invalid job state transition: {current} → {target}")


class JobState(str, Enum):
    """Lifecycle state of a job."""

    AVAILABLE = "available"
    RUNNING = "running"
    RETRYABLE = "retryable"
    COMPLETED = "completed"
    FAILED = "failed"
    DISCARDED = "discarded"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.COMPLETED, JobState.FAILED, JobState.DISCARDED)

    @property
    def is_runnable(self) -> bool:
        return self in (JobState.AVAILABLE, JobState.RETRYABLE)


JOB_VALID_TRANSITIONS: dict[JobState, frozenset[JobState]] = {
    JobState.AVAILABLE: frozenset({JobState.RUNNING}),
    JobState.RETRYABLE: frozenset({JobState.RUNNING}),
    JobState.RUNNING: frozenset({
        JobState.COMPLETED,
        JobState.RETRYABLE,
        JobState.FAILED,
        JobState.DISCARDED,
    }),
    JobState.FAILED: frozenset({JobState.AVAILABLE}),
    JobState.DISCARDED: frozenset({JobState.AVAILABLE}),
    JobState.COMPLETED: frozenset(),
}


def validate_job_transition(current: JobState, target: JobState) -> None:
    """Raise :class:`InvalidTransitionError` if *current → target* is illegal."""
    if target not in JOB_VALID_TRANSITIONS.get(current, frozenset()):
        raise InvalidTransitionError(current.value, target.value)


class AttemptOutcome(str, Enum):
    """What happened at the end of one attempt."""

    COMPLETED = "completed"
    RETRY = "retry"
    FAILED = "failed"
    DISCARDED = "discarded"
    RESCUED = "rescued"


@dataclass(frozen=True)
class InsertOpts:
    """Per-kind defaults for where and how a job is queued."""

    queue: str = DEFAULT_QUEUE
    priority: int = 2
    max_attempts: int = 5

    def __post_init__(self) -> None:
        if not PRIORITY_HIGHEST <= self.priority <= PRIORITY_LOWEST:
            raise ValueError(
                f"priority must be between {PRIORITY_HIGHEST} and {PRIORITY_LOWEST}, got {self.priority}"
            )
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")


@dataclass
class JobInsert:
    """A fully-resolved request to enqueue one job."""

    kind: str
    args: dict[str, Any]
    opts: InsertOpts = field(default_factory=InsertOpts)
    unique_key: str | None = None
    scheduled_at: datetime | None = None


@dataclass
class Job:
    """One unit of queued work."""

    id: str
    kind: str
    queue: str
    args: dict[str, Any]
    priority: int
    state: JobState
    attempt: int
    max_attempts: int
    scheduled_at: datetime
    created_at: datetime
    unique_key: str | None = None
    attempted_at: datetime | None = None
    attempted_by: str | None = None
    leased_until: datetime | None = None
    finalized_at: datetime | None = None
    last_error: str | None = None

    @property
    def attempts_exhausted(self) -> bool:
        return self.attempt >= self.max_attempts

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind,
            "queue": self.queue,
            "args": self.args,
            "priority": self.priority,
            "state": self.state.value,
            "attempt": self.attempt,
            "max_attempts": self.max_attempts,
            "unique_key": self.unique_key,
            "scheduled_at": self.scheduled_at.isoformat(),
            "created_at": self.created_at.isoformat(),
            "attempted_at": self.attempted_at.isoformat() if self.attempted_at else None,
            "finalized_at": self.finalized_at.isoformat() if self.finalized_at else None,
            "last_error": self.last_error,
        }


@dataclass(frozen=True)
class InsertResult:
    """Result of an enqueue: the live job and whether it already existed."""

    job: Job
    duplicate: bool = False


@dataclass
class JobAttempt:
    """History row for one execution attempt (``cadence_job_attempts``)."""

    id: str
    job_id: str
    kind: str
    queue: str
    attempt: int
    outcome: AttemptOutcome
    started_at: datetime
    finished_at: datetime
    duration_ms: int
    message: str | None = None
    worker_id: str | None = None


__all__ = [
    "PRIORITY_HIGHEST",
    "PRIORITY_LOWEST",
    "InvalidTransitionError",
    "JobState",
    "JOB_VALID_TRANSITIONS",
    "validate_job_transition",
    "AttemptOutcome",
    "InsertOpts",
    "JobInsert",
    "Job",
    "InsertResult",
    "JobAttempt",
]
