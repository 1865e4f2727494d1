"""Cadence Scheduling — cron schedules turned into execution jobs.

Backends decide WHEN to tick; SchedulerService decides WHAT is due and
enqueues it with a per-occurrence unique key; ScheduledJobExecuteWorker
runs the registered target and records a ScheduleRun.

MODULE MAP
──────────
  models.py          ─ ScheduleDefinition, ScheduleRun, TriggerReason, TargetResult
  cron.py            ─ croniter helpers (validation, due occurrences)
  repository.py      ─ ScheduleRepository, ScheduleCreate, ScheduleUpdate
  targets.py         ─ TargetRegistry (closed name → function mapping)
  worker.py          ─ ScheduledJobExecuteArgs / ScheduledJobExecuteWorker
  protocol.py        ─ SchedulerBackend protocol
  thread_backend.py  ─ ThreadSchedulerBackend
  service.py         ─ SchedulerService
"""

from cadence.scheduling.cron import due_occurrences, is_valid_cron, next_occurrence, validate_cron
from cadence.scheduling.models import (
    ScheduleDefinition,
    ScheduleRun,
    TargetContext,
    TargetResult,
    TriggerReason,
)
from cadence.scheduling.protocol import SchedulerBackend, TickCallback
from cadence.scheduling.repository import ScheduleCreate, ScheduleRepository, ScheduleUpdate
from cadence.scheduling.service import (
    SchedulerHealth,
    SchedulerService,
    SchedulerStats,
    TickResult,
    occurrence_key,
)
from cadence.scheduling.targets import TargetFunc, TargetRegistry
from cadence.scheduling.thread_backend import ThreadSchedulerBackend
from cadence.scheduling.worker import (
    SCHEDULED_JOBS_QUEUE,
    ScheduledJobExecuteArgs,
    ScheduledJobExecuteWorker,
)

__all__ = [
    "SCHEDULED_JOBS_QUEUE",
    "ScheduleCreate",
    "ScheduleDefinition",
    "ScheduleRepository",
    "ScheduleRun",
    "ScheduleUpdate",
    "ScheduledJobExecuteArgs",
    "ScheduledJobExecuteWorker",
    "SchedulerBackend",
    "SchedulerHealth",
    "SchedulerService",
    "SchedulerStats",
    "TargetContext",
    "TargetFunc",
    "TargetRegistry",
    "TargetResult",
    "ThreadSchedulerBackend",
    "TickCallback",
    "TickResult",
    "TriggerReason",
    "due_occurrences",
    "is_valid_cron",
    "next_occurrence",
    "occurrence_key",
    "validate_cron",
]
