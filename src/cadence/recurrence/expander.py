"""Recurrence expander - materializes series occurrences into entity rows.

Manifesto:
    Expansion must be safe to run twice, to run concurrently for the same
    series, and to stop halfway. Each occurrence is handled in its own
    transaction: claim the (series, date) instance row first, then insert
    the entity inside a savepoint, then link the two. A losing claim never
    inserts an entity; a conflicting entity insert rolls back to the
    savepoint and leaves a ``conflict_skipped`` instance behind.

Tags:
    cadence, recurrence, rrule, expansion, idempotent, schema-drift

Doc-Types:
    api-reference, architecture-diagram


┌──────────────────────────────────────────────────────────────────────────────┐
│  EXPAND(series_id, expand_until)                                              │
│                                                                               │
│   series = get(series_id)                                                     │
│   status != active           ──► no-op (success)                              │
│   check_schema_drift()       ──► needs_attention + notify owner, return       │
│   bad rule / duration        ──► needs_attention, return                      │
│   tz = resolve_timezone()                                                     │
│   for occ in generate_occurrences(rule, dtstart, expand_until, tz):           │
│       date already present   ──► skip                                         │
│       claim_instance()       ──► lost? skip                                   │
│       SAVEPOINT                                                               │
│       insert_entity()        ──► IntegrityError: ROLLBACK TO,                 │
│                                   mark conflict_skipped                       │
│       RELEASE; link_instance()                                                │
│       COMMIT                                                                  │
│   advance_watermark(expand_until)          (forward-only)                     │
└──────────────────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta

from cadence.core.database import Database
from cadence.core.errors import IntervalParseError, NotFoundError, RecurrenceRuleError
from cadence.core.protocols import Connection
from cadence.core.timezones import resolve_timezone
from cadence.execution.client import JobClient
from cadence.notifications.repository import NotificationRepository
from cadence.notifications.worker import queue_notification

from .drift import ColumnInfo, check_schema_drift, load_columns
from .entities import insert_entity
from .intervals import format_time_range, parse_interval
from .models import (
    DriftIssue,
    ExceptionType,
    ExpansionResult,
    SeriesDefinition,
    SeriesStatus,
)
from .repository import SeriesRepository
from .rules import RecurrenceRule, generate_occurrences

logger = logging.getLogger(__name__)

DRIFT_TEMPLATE = "series_schema_drift"

_SAVEPOINT = "cadence_series_entity"


def is_integrity_error(exc: BaseException) -> bool:
    """True for any DB-API ``IntegrityError`` (sqlite3, psycopg, ...)."""
    return any(cls.__name__ == "IntegrityError" for cls in type(exc).__mro__)


class RecurrenceExpander:
    """Expands series against a shared database pool.

    Args:
        database: Shared connection pool
        client: When given, schema drift enqueues a notification to the
            series owner
    """

    def __init__(self, database: Database, client: JobClient | None = None) -> None:
        self.database = database
        self.client = client

    def expand(self, series_id: str, expand_until: datetime) -> ExpansionResult:
        """Materialize every occurrence of the series up to ``expand_until``.

        Raises:
            NotFoundError: If the series does not exist
        """
        with self.database.connection() as conn:
            repo = SeriesRepository(conn, self.database.dialect)
            series = repo.get(series_id)
            if series is None:
                raise NotFoundError(f"Series not found: {series_id}").with_context(series_id=series_id)

            if not series.is_active:
                logger.info(f"Series {series_id} is {series.status.value}, skipping expansion")
                return ExpansionResult(
                    series_id=series_id,
                    status=series.status,
                    message=f"series is {series.status.value}",
                )

            issues = check_schema_drift(
                conn,
                self.database.dialect,
                series.entity_table,
                series.entity_template,
                series.time_range_column,
            )
            if issues:
                return self._halt_for_drift(conn, repo, series, issues)

            try:
                rule = RecurrenceRule.parse(series.rrule)
                duration = parse_interval(series.duration)
            except (RecurrenceRuleError, IntervalParseError) as e:
                repo.set_status(series.id, SeriesStatus.NEEDS_ATTENTION, str(e))
                logger.warning(f"Series {series_id} needs attention: {e}")
                return ExpansionResult(
                    series_id=series_id,
                    status=SeriesStatus.NEEDS_ATTENTION,
                    message=str(e),
                )

            tz = resolve_timezone(series.timezone, owner=f"series {series_id}")
            occurrences = generate_occurrences(rule, series.dtstart, expand_until, tz)
            existing = repo.existing_dates(series.id)
            columns = load_columns(conn, self.database.dialect, series.entity_table)

            result = ExpansionResult(series_id=series_id, status=SeriesStatus.ACTIVE)
            for occurrence in occurrences:
                occurrence_date = occurrence.astimezone(tz).date()
                if occurrence_date in existing:
                    result.already_present += 1
                    continue
                outcome = self._materialize(
                    conn, repo, series, occurrence, occurrence_date, duration, columns
                )
                if outcome == "created":
                    result.created += 1
                elif outcome == "skipped":
                    result.skipped += 1
                else:
                    result.already_present += 1
                existing.add(occurrence_date)

            repo.advance_watermark(series.id, expand_until)
            result.expanded_until = expand_until

        logger.info(
            f"Expanded series {series_id} to {expand_until.date()}: "
            f"{result.created} created, {result.skipped} skipped (conflicts), "
            f"{result.already_present} already present"
        )
        return result

    def _materialize(
        self,
        conn: Connection,
        repo: SeriesRepository,
        series: SeriesDefinition,
        occurrence: datetime,
        occurrence_date: date,
        duration: timedelta,
        columns: dict[str, ColumnInfo],
    ) -> str:
        end = occurrence + duration
        instance_id = repo.claim_instance(
            series.id,
            occurrence_date=occurrence_date,
            occurrence_start=occurrence,
            occurrence_end=end,
            entity_table=series.entity_table,
        )
        if instance_id is None:
            conn.commit()
            return "present"

        record = dict(series.entity_template)
        record[series.time_range_column] = format_time_range(occurrence, end)

        conn.execute(f"SAVEPOINT {_SAVEPOINT}")
        try:
            entity_id = insert_entity(
                conn,
                self.database.dialect,
                series.entity_table,
                record,
                columns,
                created_by=series.created_by,
            )
        except Exception as e:
            if not is_integrity_error(e):
                raise
            conn.execute(f"ROLLBACK TO SAVEPOINT {_SAVEPOINT}")
            conn.execute(f"RELEASE SAVEPOINT {_SAVEPOINT}")
            repo.mark_instance_exception(instance_id, ExceptionType.CONFLICT_SKIPPED)
            conn.commit()
            logger.info(f"Series {series.id} occurrence {occurrence_date} conflicts, skipped: {e}")
            return "skipped"

        conn.execute(f"RELEASE SAVEPOINT {_SAVEPOINT}")
        repo.link_instance(instance_id, entity_id)
        conn.commit()
        return "created"

    def _halt_for_drift(
        self,
        conn: Connection,
        repo: SeriesRepository,
        series: SeriesDefinition,
        issues: list[DriftIssue],
    ) -> ExpansionResult:
        summary = "; ".join(str(issue) for issue in issues)
        repo.set_status(series.id, SeriesStatus.NEEDS_ATTENTION, f"Schema drift detected: {summary}")
        logger.warning(f"Schema drift in series {series.id}, pausing: {summary}")

        if series.created_by:
            self._notify_drift(conn, series, issues, summary)

        return ExpansionResult(
            series_id=series.id,
            status=SeriesStatus.NEEDS_ATTENTION,
            drift=issues,
            message=summary,
        )

    def _notify_drift(
        self,
        conn: Connection,
        series: SeriesDefinition,
        issues: list[DriftIssue],
        summary: str,
    ) -> None:
        if self.client is None:
            logger.info(f"Schema drift notification skipped for series {series.id}: no job client")
            return
        try:
            if not NotificationRepository(conn, self.database.dialect).template_exists(DRIFT_TEMPLATE):
                logger.info(f"Schema drift notification skipped: template {DRIFT_TEMPLATE!r} not configured")
                return
            queue_notification(
                self.client,
                conn,
                user_id=series.created_by,  # type: ignore[arg-type]
                template_name=DRIFT_TEMPLATE,
                entity_type="recurring_series",
                entity_id=series.id,
                entity_data={
                    "series_id": series.id,
                    "series_name": series.name,
                    "entity_table": series.entity_table,
                    "drift_issues": [str(issue) for issue in issues],
                    "drift_summary": summary,
                },
            )
        except Exception as e:
            conn.rollback()
            logger.warning(f"Schema drift notification for series {series.id} failed: {e}")
            return
        logger.info(f"Schema drift notification queued for user {series.created_by}")


__all__ = ["DRIFT_TEMPLATE", "RecurrenceExpander", "is_integrity_error"]
