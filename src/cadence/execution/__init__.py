"""Cadence Execution — durable job queue, typed workers and the runner.

WHY
───
Scheduled targets, recurring-series expansion and notification delivery
all need the same lifecycle: enqueue once, run with bounded concurrency,
retry transient failures with backoff, and keep a history of attempts.
``cadence.execution`` provides that lifecycle over one SQL table.

ARCHITECTURE
────────────
::

    JobArgs (what to run, where)       Worker (how to run it)
      │                                  │
      ▼                                  ▼
    JobClient.insert ──► JobStore ◄── JobRunner ──► WorkerRegistry
                         (cadence_jobs)   ├── one dispatch thread per queue
                                          ├── ThreadPoolExecutor per queue
                                          ├── DeadlineContext per attempt
                                          └── lease sweeper

MODULE MAP
──────────
  1. models.py    ─ Job, JobState, InsertOpts, JobAttempt
  2. store.py     ─ JobStore (dedup, lease, finalize, rescue)
  3. contract.py  ─ JobArgs, Worker, JobContext
  4. registry.py  ─ WorkerRegistry
  5. client.py    ─ JobClient
  6. retry.py     ─ backoff strategies
  7. timeout.py   ─ cooperative deadlines
  8. runner.py    ─ JobRunner
"""

from cadence.execution.client import JobClient
from cadence.execution.contract import JobArgs, JobContext, Worker
from cadence.execution.models import (
    PRIORITY_HIGHEST,
    PRIORITY_LOWEST,
    AttemptOutcome,
    InsertOpts,
    InsertResult,
    InvalidTransitionError,
    Job,
    JobAttempt,
    JobInsert,
    JobState,
)
from cadence.execution.registry import WorkerRegistry
from cadence.execution.retry import ConstantBackoff, ExponentialBackoff, NoDelay, RetryStrategy
from cadence.execution.runner import JobRunner, RunnerStats
from cadence.execution.store import JobStore
from cadence.execution.timeout import (
    DeadlineContext,
    TimeoutExpired,
    check_deadline,
    deadline_scope,
    get_current_deadline,
)

__all__ = [
    "PRIORITY_HIGHEST",
    "PRIORITY_LOWEST",
    "AttemptOutcome",
    "ConstantBackoff",
    "DeadlineContext",
    "ExponentialBackoff",
    "InsertOpts",
    "InsertResult",
    "InvalidTransitionError",
    "Job",
    "JobArgs",
    "JobAttempt",
    "JobClient",
    "JobContext",
    "JobInsert",
    "JobRunner",
    "JobState",
    "JobStore",
    "NoDelay",
    "RetryStrategy",
    "RunnerStats",
    "TimeoutExpired",
    "Worker",
    "WorkerRegistry",
    "check_deadline",
    "deadline_scope",
    "get_current_deadline",
]
