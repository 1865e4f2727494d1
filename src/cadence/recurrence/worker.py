"""Series expansion as a job kind.

An ``expand_recurring_series`` job expands one series up to its
``expand_until`` and then enqueues the next expansion of the same series
``interval`` later. The next horizon is ``now + interval + horizon``,
but always at least ``max(interval, 1 day)`` past the current one, so the
follow-up never reuses the running job's key. The chain ends when the
series stops being active or its rule has no occurrences left after the
current horizon.

The unique key is per series and horizon date, so re-enqueueing the same
roll-forward twice yields one job.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import ClassVar

from cadence.core.protocols import Connection
from cadence.core.timezones import resolve_timezone
from cadence.execution.client import JobClient
from cadence.execution.contract import JobArgs, JobContext, Worker
from cadence.execution.models import InsertOpts, InsertResult, Job

from .expander import RecurrenceExpander
from .models import SeriesStatus
from .repository import SeriesRepository
from .rules import has_occurrences_after

logger = logging.getLogger(__name__)

RECURRING_QUEUE = "recurring"


class ExpandRecurringSeriesArgs(JobArgs):
    """Payload of an ``expand_recurring_series`` job."""

    kind: ClassVar[str] = "expand_recurring_series"

    series_id: str
    expand_until: datetime

    @classmethod
    def insert_opts(cls) -> InsertOpts:
        return InsertOpts(queue=RECURRING_QUEUE, priority=2, max_attempts=10)


def expansion_key(series_id: str, expand_until: datetime) -> str:
    return f"expand_recurring_series:{series_id}:{expand_until.date().isoformat()}"


def enqueue_expansion(
    client: JobClient,
    series_id: str,
    expand_until: datetime,
    *,
    scheduled_at: datetime | None = None,
    conn: Connection | None = None,
) -> InsertResult:
    """Enqueue an expansion of ``series_id`` up to ``expand_until``."""
    return client.insert(
        ExpandRecurringSeriesArgs(series_id=series_id, expand_until=expand_until),
        unique_key=expansion_key(series_id, expand_until),
        scheduled_at=scheduled_at,
        conn=conn,
    )


class ExpandRecurringSeriesWorker(Worker[ExpandRecurringSeriesArgs]):
    """Expands a series and schedules its next roll-forward."""

    args_type = ExpandRecurringSeriesArgs
    timeout_seconds = 600.0

    def __init__(
        self,
        *,
        horizon: timedelta = timedelta(days=90),
        interval: timedelta = timedelta(hours=24),
    ) -> None:
        self.horizon = horizon
        self.interval = interval

    def work(self, job: Job, args: ExpandRecurringSeriesArgs, ctx: JobContext) -> None:
        logger.info(
            "Expanding series %s until %s (attempt %d/%d)",
            args.series_id,
            args.expand_until.date(),
            job.attempt,
            job.max_attempts,
        )
        result = RecurrenceExpander(ctx.database, ctx.client).expand(args.series_id, args.expand_until)
        if result.status is not SeriesStatus.ACTIVE:
            logger.info("Series %s not rolled forward: %s", args.series_id, result.message)
            return

        ctx.check_deadline("roll forward")
        self._roll_forward(args, ctx)

    def _roll_forward(self, args: ExpandRecurringSeriesArgs, ctx: JobContext) -> InsertResult | None:
        with ctx.database.connection() as conn:
            series = SeriesRepository(conn, ctx.database.dialect).get(args.series_id)
            if series is None or not series.is_active:
                return None

            tz = resolve_timezone(series.timezone, owner=f"series {series.id}")
            if not has_occurrences_after(series.rrule, series.dtstart, args.expand_until, tz):
                logger.info("Series %s has no occurrences after %s, not rolling forward", series.id, args.expand_until.date())
                return None

            now = ctx.now()
            step = max(self.interval, timedelta(days=1))
            next_until = max(args.expand_until + step, now + self.interval + self.horizon)
            inserted = enqueue_expansion(
                ctx.client,
                series.id,
                next_until,
                scheduled_at=now + self.interval,
                conn=conn,
            )
        if inserted.duplicate and inserted.job.id == ctx.job.id:
            logger.warning("Roll-forward of series %s collided with the running job %s", series.id, ctx.job.id)
        elif not inserted.duplicate:
            logger.info("Next expansion of series %s to %s at %s", series.id, next_until.date(), now + self.interval)
        return inserted


__all__ = [
    "RECURRING_QUEUE",
    "ExpandRecurringSeriesArgs",
    "ExpandRecurringSeriesWorker",
    "enqueue_expansion",
    "expansion_key",
]
