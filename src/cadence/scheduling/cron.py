"""Cron evaluation using croniter.

Expressions are standard 5-field cron, evaluated in the schedule's local
timezone so that ``0 9 * * *`` in ``America/New_York`` stays 9 AM local
across daylight-saving changes. Results are returned in UTC.
"""

from __future__ import annotations

from datetime import UTC, datetime, tzinfo

from croniter import croniter

from cadence.core.errors import ValidationError
from cadence.core.timestamps import ensure_utc


def is_valid_cron(expression: str) -> bool:
    """True for a well-formed 5-field cron expression."""
    if not expression or len(expression.split()) != 5:
        return False
    return croniter.is_valid(expression)


def validate_cron(expression: str) -> None:
    """Raise :class:`ValidationError` unless ``expression`` is valid 5-field cron."""
    if not is_valid_cron(expression):
        raise ValidationError(f"invalid cron expression: {expression!r}")


def next_occurrence(expression: str, after: datetime, tz: tzinfo = UTC) -> datetime:
    """First occurrence strictly after ``after``."""
    it = croniter(expression, ensure_utc(after).astimezone(tz))
    return ensure_utc(it.get_next(datetime))


def due_occurrences(
    expression: str,
    after: datetime,
    now: datetime,
    tz: tzinfo = UTC,
) -> list[datetime]:
    """Every occurrence in ``(after, now]``, oldest first."""
    now = ensure_utc(now)
    it = croniter(expression, ensure_utc(after).astimezone(tz))
    due: list[datetime] = []
    while True:
        occurrence = ensure_utc(it.get_next(datetime))
        if occurrence > now:
            return due
        due.append(occurrence)


__all__ = ["is_valid_cron", "validate_cron", "next_occurrence", "due_occurrences"]
