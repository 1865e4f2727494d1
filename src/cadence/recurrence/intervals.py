"""Duration strings for series occurrences.

A series stores its occurrence length as text, usually copied from a
database interval column. Accepted forms::

    02:00:00            HH:MM:SS, optional .ffffff
    1 day 02:00:00      N day(s), optional HH:MM:SS
    PT1H30M / P1DT2H    ISO 8601 (days, hours, minutes, seconds)
    1h30m / 45s / 2d    compact units

Anything else raises ``IntervalParseError``; there is no default length.
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta

from cadence.core.errors import IntervalParseError
from cadence.core.timestamps import to_rfc3339

_CLOCK = re.compile(r"^(?P<h>\d+):(?P<m>[0-5]?\d):(?P<s>[0-5]?\d(?:\.\d{1,6})?)$")
_DAYS = re.compile(
    r"^(?P<d>\d+)\s+days?"
    r"(?:\s+(?P<h>\d+):(?P<m>[0-5]?\d):(?P<s>[0-5]?\d(?:\.\d{1,6})?))?$",
    re.IGNORECASE,
)
_ISO = re.compile(
    r"^P(?:(?P<d>\d+)D)?"
    r"(?:T(?:(?P<h>\d+)H)?(?:(?P<m>\d+)M)?(?:(?P<s>\d+(?:\.\d+)?)S)?)?$",
    re.IGNORECASE,
)
_COMPACT = re.compile(
    r"^(?:(?P<d>\d+)d)?(?:(?P<h>\d+)h)?(?:(?P<m>\d+)m)?(?:(?P<s>\d+(?:\.\d+)?)s)?$",
    re.IGNORECASE,
)


def _from_match(match: re.Match[str]) -> timedelta:
    parts = match.groupdict()
    return timedelta(
        days=int(parts.get("d") or 0),
        hours=int(parts.get("h") or 0),
        minutes=int(parts.get("m") or 0),
        seconds=float(parts.get("s") or 0),
    )


def parse_interval(text: str) -> timedelta:
    """Parse a duration string.

    Raises:
        IntervalParseError: For an unsupported format or a non-positive length
    """
    if not isinstance(text, str):
        raise IntervalParseError(repr(text), f"interval must be a string, got {type(text).__name__}")
    value = text.strip()
    if not value:
        raise IntervalParseError(text, "interval is empty")

    for pattern in (_CLOCK, _DAYS, _ISO, _COMPACT):
        match = pattern.match(value)
        # P, PT and "" match the all-optional patterns; require at least one number
        if match and any(group for group in match.groupdict().values()):
            duration = _from_match(match)
            if duration <= timedelta(0):
                raise IntervalParseError(text, f"interval must be positive: {text!r}")
            return duration

    raise IntervalParseError(text)


def format_time_range(start: datetime, end: datetime) -> str:
    """Half-open range literal ``[start,end)`` in RFC 3339 UTC."""
    return f"[{to_rfc3339(start)},{to_rfc3339(end)})"


__all__ = ["parse_interval", "format_time_range"]
