"""Tests for RRULE validation and timezone-aware expansion."""

from datetime import UTC, datetime
from zoneinfo import ZoneInfo

import pytest

from cadence.core.errors import RecurrenceRuleError
from cadence.recurrence.rules import RecurrenceRule, generate_occurrences, has_occurrences_after

NEW_YORK = ZoneInfo("America/New_York")


def utc(*args):
    return datetime(*args, tzinfo=UTC)


class TestParse:
    def test_accepts_prefix_and_normalizes(self):
        rule = RecurrenceRule.parse("RRULE:freq=weekly;byday=mo,we")
        assert rule.text == "FREQ=WEEKLY;BYDAY=MO,WE"
        assert rule.values["BYDAY"] == "MO,WE"

    @pytest.mark.parametrize(
        "text",
        [
            "",
            "RRULE:",
            "BYDAY=MO",
            "FREQ=HOURLY",
            "FREQ=DAILY;BYHOUR=9",
            "FREQ=DAILY;COUNT=3;UNTIL=20260201T000000Z",
            "FREQ=DAILY;INTERVAL=0",
            "FREQ=DAILY;INTERVAL=two",
            "FREQ=DAILY;COUNT=-1",
            "FREQ=DAILY;FREQ=WEEKLY",
            "FREQ=DAILY;COUNT",
        ],
    )
    def test_rejects(self, text):
        with pytest.raises(RecurrenceRuleError):
            RecurrenceRule.parse(text)

    def test_until_rewritten_to_local_wall_clock(self):
        rule = RecurrenceRule.parse("FREQ=DAILY;UNTIL=20260110T000000Z")
        assert rule.local_text(NEW_YORK) == "FREQ=DAILY;UNTIL=20260109T190000"
        assert rule.local_text(UTC) == "FREQ=DAILY;UNTIL=20260110T000000"


class TestGenerateOccurrences:
    def test_weekly_count(self):
        occurrences = generate_occurrences(
            "FREQ=WEEKLY;BYDAY=MO;COUNT=4", utc(2026, 1, 5, 14), utc(2026, 3, 1)
        )
        assert occurrences == [utc(2026, 1, d, 14) for d in (5, 12, 19, 26)]

    def test_second_tuesday_of_month(self):
        occurrences = generate_occurrences(
            "FREQ=MONTHLY;BYDAY=TU;BYSETPOS=2", utc(2026, 1, 1, 10), utc(2026, 3, 31)
        )
        assert occurrences == [utc(2026, 1, 13, 10), utc(2026, 2, 10, 10), utc(2026, 3, 10, 10)]

    def test_local_time_kept_across_dst(self):
        occurrences = generate_occurrences(
            "FREQ=DAILY", utc(2026, 3, 7, 19), utc(2026, 3, 9, 23, 59), NEW_YORK
        )
        assert occurrences == [utc(2026, 3, 7, 19), utc(2026, 3, 8, 18), utc(2026, 3, 9, 18)]
        assert {o.astimezone(NEW_YORK).hour for o in occurrences} == {14}

    def test_time_in_spring_forward_gap_shifts_an_hour(self):
        # 02:30 does not exist in New York on 2026-03-08
        occurrences = generate_occurrences(
            "FREQ=DAILY", utc(2026, 3, 7, 7, 30), utc(2026, 3, 9, 12), NEW_YORK
        )
        assert occurrences == [utc(2026, 3, 7, 7, 30), utc(2026, 3, 8, 7, 30), utc(2026, 3, 9, 6, 30)]
        local = [o.astimezone(NEW_YORK) for o in occurrences]
        assert [(o.day, o.hour, o.minute) for o in local] == [(7, 2, 30), (8, 3, 30), (9, 2, 30)]

    def test_horizon_before_start(self):
        assert generate_occurrences("FREQ=DAILY", utc(2026, 5, 1), utc(2026, 4, 1)) == []

    def test_horizon_is_inclusive(self):
        occurrences = generate_occurrences("FREQ=DAILY", utc(2026, 5, 1, 9), utc(2026, 5, 3, 9))
        assert occurrences[-1] == utc(2026, 5, 3, 9)
        assert len(occurrences) == 3

    def test_utc_until_bounds_local_series(self):
        occurrences = generate_occurrences(
            "FREQ=DAILY;UNTIL=20260110T000000Z", utc(2026, 1, 5, 14), utc(2026, 2, 1), NEW_YORK
        )
        assert [o.day for o in occurrences] == [5, 6, 7, 8, 9]


class TestHasOccurrencesAfter:
    RULE = "FREQ=WEEKLY;BYDAY=MO;COUNT=2"

    def test_exhausted(self):
        assert has_occurrences_after(self.RULE, utc(2026, 1, 5, 14), utc(2026, 1, 12, 14)) is False

    def test_remaining(self):
        assert has_occurrences_after(self.RULE, utc(2026, 1, 5, 14), utc(2026, 1, 6)) is True

    def test_before_start(self):
        assert has_occurrences_after(self.RULE, utc(2026, 1, 5, 14), utc(2025, 12, 1)) is True

    def test_unbounded(self):
        assert has_occurrences_after("FREQ=YEARLY", utc(2026, 1, 5, 14), utc(2099, 1, 1)) is True
