"""Tests for cron evaluation."""

from datetime import UTC, datetime
from zoneinfo import ZoneInfo

import pytest

from cadence.core.errors import ValidationError
from cadence.scheduling.cron import due_occurrences, is_valid_cron, next_occurrence, validate_cron

NEW_YORK = ZoneInfo("America/New_York")


def utc(*args):
    return datetime(*args, tzinfo=UTC)


class TestValidation:
    @pytest.mark.parametrize("expr", ["0 9 * * *", "*/15 * * * *", "0 3 * * 1-5", "30 2 1 * *"])
    def test_valid(self, expr):
        assert is_valid_cron(expr)
        validate_cron(expr)

    @pytest.mark.parametrize("expr", ["", "* * * *", "0 0 0 * * *", "61 * * * *", "every hour"])
    def test_invalid(self, expr):
        assert not is_valid_cron(expr)
        with pytest.raises(ValidationError):
            validate_cron(expr)


class TestDueOccurrences:
    def test_window_excludes_start_includes_end(self):
        due = due_occurrences("0 * * * *", utc(2026, 3, 2, 9), utc(2026, 3, 2, 12))
        assert due == [utc(2026, 3, 2, 10), utc(2026, 3, 2, 11), utc(2026, 3, 2, 12)]

    def test_nothing_due(self):
        assert due_occurrences("0 * * * *", utc(2026, 3, 2, 9, 5), utc(2026, 3, 2, 9, 55)) == []

    def test_results_are_utc(self):
        (occurrence,) = due_occurrences("0 9 * * *", utc(2026, 1, 5), utc(2026, 1, 5, 23), NEW_YORK)
        assert occurrence == utc(2026, 1, 5, 14)
        assert occurrence.tzinfo is UTC

    def test_local_time_kept_across_dst(self):
        due = due_occurrences("0 9 * * *", utc(2026, 3, 6), utc(2026, 3, 10), NEW_YORK)
        assert due == [
            utc(2026, 3, 6, 14),
            utc(2026, 3, 7, 14),
            utc(2026, 3, 8, 13),
            utc(2026, 3, 9, 13),
        ]
        assert {d.astimezone(NEW_YORK).hour for d in due} == {9}


class TestNextOccurrence:
    def test_strictly_after(self):
        assert next_occurrence("0 * * * *", utc(2026, 3, 2, 10)) == utc(2026, 3, 2, 11)

    def test_in_timezone(self):
        assert next_occurrence("0 9 * * *", utc(2026, 7, 1), NEW_YORK) == utc(2026, 7, 1, 13)
