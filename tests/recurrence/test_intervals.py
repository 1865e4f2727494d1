"""Tests for duration parsing and time-range literals."""

from datetime import UTC, datetime, timedelta

import pytest

from cadence.core.errors import IntervalParseError
from cadence.recurrence.intervals import format_time_range, parse_interval


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("02:00:00", timedelta(hours=2)),
        ("00:45:30", timedelta(minutes=45, seconds=30)),
        ("01:30:00.5", timedelta(hours=1, minutes=30, seconds=0.5)),
        ("1 day", timedelta(days=1)),
        ("2 days 03:00:00", timedelta(days=2, hours=3)),
        ("PT1H30M", timedelta(hours=1, minutes=30)),
        ("P1DT2H", timedelta(days=1, hours=2)),
        ("pt45s", timedelta(seconds=45)),
        ("1h30m", timedelta(hours=1, minutes=30)),
        ("2d", timedelta(days=2)),
        ("  90m  ", timedelta(minutes=90)),
    ],
)
def test_parse_interval(text, expected):
    assert parse_interval(text) == expected


@pytest.mark.parametrize("text", ["", "   ", "two hours", "P", "PT", "1 fortnight", "00:00:00", "0h", "-01:00:00"])
def test_parse_interval_rejects(text):
    with pytest.raises(IntervalParseError) as exc_info:
        parse_interval(text)
    assert exc_info.value.retryable is False


def test_parse_interval_rejects_non_string():
    with pytest.raises(IntervalParseError):
        parse_interval(7200)


def test_error_keeps_value():
    with pytest.raises(IntervalParseError) as exc_info:
        parse_interval("soon")
    assert exc_info.value.value == "soon"


def test_format_time_range_is_half_open_utc():
    start = datetime(2026, 1, 5, 19, 0, tzinfo=UTC)
    assert format_time_range(start, start + timedelta(hours=2)) == "[2026-01-05T19:00:00Z,2026-01-05T21:00:00Z)"
