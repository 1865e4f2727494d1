"""Worker that executes one scheduled-job occurrence.

The scheduler only enqueues; this worker does the run:

1. Load the schedule and open a ScheduleRun.
2. Resolve the target in the TargetRegistry and call it.
3. Close the run with duration and outcome, and advance ``last_run_at``.

A target that raises fails the attempt, so the job retries; the run is
still closed as failed and ``last_run_at`` still advances. A target that
returns ``success=False`` completes the job with a failed run.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import ClassVar

from cadence.core.errors import NotFoundError
from cadence.execution.contract import JobArgs, JobContext, Worker
from cadence.execution.models import InsertOpts, Job

from .models import ScheduleDefinition, ScheduleRun, TargetContext, TargetResult, TriggerReason
from .repository import ScheduleRepository
from .targets import TargetRegistry

logger = logging.getLogger(__name__)

SCHEDULED_JOBS_QUEUE = "scheduled_jobs"


class ScheduledJobExecuteArgs(JobArgs):
    """Payload of a ``scheduled_job_execute`` job."""

    kind: ClassVar[str] = "scheduled_job_execute"

    schedule_id: str
    scheduled_for: datetime
    triggered_by: TriggerReason = TriggerReason.SCHEDULED

    @classmethod
    def insert_opts(cls) -> InsertOpts:
        return InsertOpts(queue=SCHEDULED_JOBS_QUEUE, priority=2, max_attempts=3)


class ScheduledJobExecuteWorker(Worker[ScheduledJobExecuteArgs]):
    """Runs the target of a schedule and records the run."""

    args_type = ScheduledJobExecuteArgs

    def __init__(self, targets: TargetRegistry) -> None:
        self.targets = targets

    def work(self, job: Job, args: ScheduledJobExecuteArgs, ctx: JobContext) -> None:
        db = ctx.database
        with db.connection() as conn:
            repo = ScheduleRepository(conn, db.dialect)
            schedule = repo.get(args.schedule_id)
            if schedule is None:
                raise NotFoundError(f"Schedule not found: {args.schedule_id}").with_context(
                    schedule_id=args.schedule_id
                )
            run = repo.create_run(
                schedule.id,
                scheduled_for=args.scheduled_for,
                triggered_by=args.triggered_by,
                job_id=job.id,
                started_at=ctx.now(),
            )

        start = time.monotonic()
        try:
            target = self.targets.get(schedule.target)
            result = TargetResult.coerce(
                target(
                    TargetContext(
                        schedule=schedule,
                        scheduled_for=args.scheduled_for,
                        triggered_by=args.triggered_by,
                        run_id=run.id,
                        job=ctx,
                    )
                )
            )
        except Exception as exc:
            self._finish(
                ctx,
                schedule,
                run,
                args,
                TargetResult(success=False, message=f"{type(exc).__name__}: {exc}"),
                start,
            )
            raise

        self._finish(ctx, schedule, run, args, result, start)
        if result.success:
            logger.info("Schedule %s ran %s: %s", schedule.name, schedule.target, result.message or "ok")
        else:
            logger.warning("Schedule %s reported failure: %s", schedule.name, result.message)

    @staticmethod
    def _finish(
        ctx: JobContext,
        schedule: ScheduleDefinition,
        run: ScheduleRun,
        args: ScheduledJobExecuteArgs,
        result: TargetResult,
        start: float,
    ) -> None:
        duration_ms = int((time.monotonic() - start) * 1000)
        db = ctx.database
        with db.connection() as conn:
            repo = ScheduleRepository(conn, db.dialect)
            repo.complete_run(
                run.id,
                success=result.success,
                message=result.message,
                details=result.details,
                duration_ms=duration_ms,
                completed_at=ctx.now(),
            )
            # Manual runs fire outside the cron cadence and leave last_run_at alone.
            if args.triggered_by is not TriggerReason.MANUAL:
                repo.mark_last_run(schedule.id, args.scheduled_for)


__all__ = ["SCHEDULED_JOBS_QUEUE", "ScheduledJobExecuteArgs", "ScheduledJobExecuteWorker"]
