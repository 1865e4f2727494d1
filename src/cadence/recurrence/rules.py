"""RRULE parsing and timezone-correct expansion.

Rules are evaluated by ``dateutil.rrule``; this module only validates the
supported subset and handles the timezone boundary:

1. ``dtstart`` and the horizon are converted to naive wall-clock time in
   the series timezone.
2. The rule is expanded on wall-clock time, so "every Monday at 14:00"
   stays 14:00 on both sides of a DST change.
3. Each result is rebuilt in the zone and converted to UTC for storage.
   A wall-clock time that falls in a spring-forward gap (02:30 on the US
   DST start day) does not exist; zoneinfo reads it with the pre-gap
   offset (``fold=0``), so that occurrence keeps its date but lands one
   hour later in local time (03:30). Ambiguous fall-back times take the
   first (daylight) reading.

A UTC ``UNTIL=...Z`` is rewritten to the equivalent local wall-clock
value before expansion, because dateutil refuses to mix a naive start
with an aware bound.

Example:
    >>> rule = RecurrenceRule.parse("FREQ=WEEKLY;BYDAY=MO;COUNT=4")
    >>> generate_occurrences(rule, datetime(2026, 1, 5, 14, tzinfo=UTC),
    ...                      datetime(2026, 3, 1, tzinfo=UTC), UTC)
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, tzinfo

from dateutil.rrule import rrule, rrulestr

from cadence.core.errors import RecurrenceRuleError
from cadence.core.timestamps import ensure_utc

SUPPORTED_PARTS = frozenset(
    {"FREQ", "INTERVAL", "BYDAY", "BYMONTHDAY", "BYSETPOS", "COUNT", "UNTIL", "BYMONTH", "WKST"}
)
SUPPORTED_FREQUENCIES = frozenset({"DAILY", "WEEKLY", "MONTHLY", "YEARLY"})

_UNTIL_FORMAT = "%Y%m%dT%H%M%S"
# Any fixed naive start is enough to make dateutil check the values.
_PROBE_START = datetime(2000, 1, 3, 9, 0)


@dataclass(frozen=True)
class RecurrenceRule:
    """A validated RRULE limited to the supported parts."""

    text: str
    parts: tuple[tuple[str, str], ...]

    @classmethod
    def parse(cls, text: str) -> RecurrenceRule:
        """Validate ``text`` (with or without an ``RRULE:`` prefix).

        Raises:
            RecurrenceRuleError: Empty rule, unsupported part or frequency,
                COUNT together with UNTIL, or a value dateutil rejects
        """
        body = (text or "").strip()
        if body.upper().startswith("RRULE:"):
            body = body[len("RRULE:"):]
        if not body:
            raise RecurrenceRuleError("recurrence rule is empty")

        parts: list[tuple[str, str]] = []
        for chunk in body.split(";"):
            if not chunk:
                continue
            key, sep, value = chunk.partition("=")
            key = key.strip().upper()
            if not sep or not value.strip():
                raise RecurrenceRuleError(f"malformed rule part {chunk!r}")
            if key not in SUPPORTED_PARTS:
                raise RecurrenceRuleError(f"unsupported rule part {key!r}")
            parts.append((key, value.strip().upper()))

        keys = [key for key, _ in parts]
        if len(keys) != len(set(keys)):
            raise RecurrenceRuleError(f"duplicate rule part in {text!r}")
        values = dict(parts)
        if values.get("FREQ") not in SUPPORTED_FREQUENCIES:
            raise RecurrenceRuleError(f"unsupported or missing FREQ in {text!r}")
        if "COUNT" in values and "UNTIL" in values:
            raise RecurrenceRuleError("COUNT and UNTIL cannot both be set")
        for key in ("INTERVAL", "COUNT"):
            if key in values and (not values[key].isdigit() or int(values[key]) < 1):
                raise RecurrenceRuleError(f"{key} must be a positive integer, got {values[key]!r}")

        rule = cls(text=";".join(f"{k}={v}" for k, v in parts), parts=tuple(parts))
        try:
            rule.build(_PROBE_START, UTC)
        except (ValueError, TypeError) as e:
            raise RecurrenceRuleError(f"invalid recurrence rule {text!r}: {e}", cause=e) from e
        return rule

    @property
    def values(self) -> dict[str, str]:
        return dict(self.parts)

    def local_text(self, tz: tzinfo) -> str:
        """Rule text with a UTC ``UNTIL`` rewritten to wall-clock time in ``tz``."""
        rendered = []
        for key, value in self.parts:
            if key == "UNTIL" and value.endswith("Z"):
                until = datetime.strptime(value[:-1], _UNTIL_FORMAT).replace(tzinfo=UTC)
                value = until.astimezone(tz).strftime(_UNTIL_FORMAT)
            rendered.append(f"{key}={value}")
        return ";".join(rendered)

    def build(self, local_start: datetime, tz: tzinfo) -> rrule:
        """dateutil rule anchored at the naive wall-clock ``local_start``."""
        return rrulestr(self.local_text(tz), dtstart=local_start)


def _coerce(rule: RecurrenceRule | str) -> RecurrenceRule:
    return rule if isinstance(rule, RecurrenceRule) else RecurrenceRule.parse(rule)


def to_local(instant: datetime, tz: tzinfo) -> datetime:
    """Naive wall-clock time of ``instant`` in ``tz``."""
    return ensure_utc(instant).astimezone(tz).replace(tzinfo=None)


def from_local(wall_clock: datetime, tz: tzinfo) -> datetime:
    """UTC instant of the wall-clock time ``wall_clock`` in ``tz``."""
    return wall_clock.replace(tzinfo=tz).astimezone(UTC)


def generate_occurrences(
    rule: RecurrenceRule | str,
    dtstart: datetime,
    until: datetime,
    tz: tzinfo = UTC,
) -> list[datetime]:
    """UTC occurrence starts in ``[dtstart, until]``, oldest first.

    A horizon before ``dtstart`` yields an empty list.
    """
    parsed = _coerce(rule)
    local_start = to_local(dtstart, tz)
    local_until = to_local(until, tz)
    if local_until < local_start:
        return []
    expanded = parsed.build(local_start, tz)
    return [from_local(occ, tz) for occ in expanded.between(local_start, local_until, inc=True)]


def has_occurrences_after(
    rule: RecurrenceRule | str,
    dtstart: datetime,
    after: datetime,
    tz: tzinfo = UTC,
) -> bool:
    """True if the rule produces any occurrence strictly after ``after``."""
    parsed = _coerce(rule)
    local_start = to_local(dtstart, tz)
    expanded = parsed.build(local_start, tz)
    local_after = to_local(after, tz)
    if local_after < local_start:
        return expanded.after(local_start, inc=True) is not None
    return expanded.after(local_after, inc=False) is not None


__all__ = [
    "RecurrenceRule",
    "SUPPORTED_PARTS",
    "generate_occurrences",
    "has_occurrences_after",
    "to_local",
    "from_local",
]
