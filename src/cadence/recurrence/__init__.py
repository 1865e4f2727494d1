"""Cadence Recurrence — RRULE series materialized into entity rows.

MODULE MAP
──────────
  models.py      ─ SeriesDefinition, SeriesInstance, ExpansionResult, DriftIssue
  intervals.py   ─ parse_interval, format_time_range
  rules.py       ─ RecurrenceRule, generate_occurrences (python-dateutil)
  drift.py       ─ check_schema_drift
  entities.py    ─ insert_entity / delete_entity
  repository.py  ─ SeriesRepository, SeriesCreate
  expander.py    ─ RecurrenceExpander
  worker.py      ─ ExpandRecurringSeriesArgs / ExpandRecurringSeriesWorker
"""

from cadence.recurrence.drift import ColumnInfo, check_schema_drift, load_columns
from cadence.recurrence.expander import DRIFT_TEMPLATE, RecurrenceExpander, is_integrity_error
from cadence.recurrence.intervals import format_time_range, parse_interval
from cadence.recurrence.models import (
    DriftIssue,
    ExceptionType,
    ExpansionResult,
    SeriesDefinition,
    SeriesInstance,
    SeriesStatus,
)
from cadence.recurrence.repository import SeriesCreate, SeriesRepository
from cadence.recurrence.rules import RecurrenceRule, generate_occurrences, has_occurrences_after
from cadence.recurrence.worker import (
    RECURRING_QUEUE,
    ExpandRecurringSeriesArgs,
    ExpandRecurringSeriesWorker,
    enqueue_expansion,
    expansion_key,
)

__all__ = [
    "DRIFT_TEMPLATE",
    "RECURRING_QUEUE",
    "ColumnInfo",
    "DriftIssue",
    "ExceptionType",
    "ExpandRecurringSeriesArgs",
    "ExpandRecurringSeriesWorker",
    "ExpansionResult",
    "RecurrenceExpander",
    "RecurrenceRule",
    "SeriesCreate",
    "SeriesDefinition",
    "SeriesInstance",
    "SeriesRepository",
    "SeriesStatus",
    "check_schema_drift",
    "enqueue_expansion",
    "expansion_key",
    "format_time_range",
    "generate_occurrences",
    "has_occurrences_after",
    "is_integrity_error",
    "load_columns",
    "parse_interval",
]
