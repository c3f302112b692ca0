"""Tests for recurring availability expansion."""

from datetime import date, time

import pytest

from clinic_booking.booking.recurrence import (
    RecurrencePattern,
    RecurrenceRule,
    expand_rule,
    find_internal_overlap,
    iter_days,
)
from clinic_booking.services.exceptions import InvalidIntervalError
from tests.factories import utc

# 2030-01-07 is a Monday
MONDAY = date(2030, 1, 7)


def weekly(**overrides) -> RecurrenceRule:
    values = {
        "start_date": MONDAY,
        "end_date": date(2030, 1, 20),
        "daily_start": time(9, 0),
        "daily_end": time(11, 0),
        "slot_minutes": 30,
        "days_of_week": frozenset({0, 2}),
        "pattern": RecurrencePattern.WEEKLY,
    }
    values.update(overrides)
    return RecurrenceRule(**values)


class TestExpandRule:
    """Tests for expand_rule."""

    def test_weekly_rule_selects_weekdays(self) -> None:
        """Mondays and Wednesdays over two weeks, four slots each."""
        intervals = expand_rule(weekly())

        assert len(intervals) == 16
        days = sorted({start.date() for start, _ in intervals})
        assert days == [
            date(2030, 1, 7),
            date(2030, 1, 9),
            date(2030, 1, 14),
            date(2030, 1, 16),
        ]

    def test_slots_are_back_to_back(self) -> None:
        intervals = expand_rule(weekly(end_date=MONDAY))

        assert intervals == [
            (utc(2030, 1, 7, 9, 0), utc(2030, 1, 7, 9, 30)),
            (utc(2030, 1, 7, 9, 30), utc(2030, 1, 7, 10, 0)),
            (utc(2030, 1, 7, 10, 0), utc(2030, 1, 7, 10, 30)),
            (utc(2030, 1, 7, 10, 30), utc(2030, 1, 7, 11, 0)),
        ]

    def test_trailing_remainder_is_dropped(self) -> None:
        """A 50 minute window holds one 30 minute slot."""
        intervals = expand_rule(weekly(end_date=MONDAY, daily_end=time(9, 50)))

        assert intervals == [(utc(2030, 1, 7, 9, 0), utc(2030, 1, 7, 9, 30))]

    def test_daily_rule_ignores_days_of_week(self) -> None:
        rule = weekly(
            end_date=date(2030, 1, 9),
            pattern=RecurrencePattern.DAILY,
            days_of_week=frozenset(),
            daily_end=time(9, 30),
        )

        intervals = expand_rule(rule)

        assert [start.day for start, _ in intervals] == [7, 8, 9]

    def test_intervals_are_utc(self) -> None:
        start, end = expand_rule(weekly(end_date=MONDAY))[0]

        assert start.utcoffset().total_seconds() == 0
        assert end.utcoffset().total_seconds() == 0

    def test_max_slots_is_enforced(self) -> None:
        with pytest.raises(InvalidIntervalError) as exc_info:
            expand_rule(weekly(), max_slots=10)

        assert "more than 10" in exc_info.value.message

    def test_rule_without_matching_days_rejected(self) -> None:
        """A Monday-only range with a Sunday-only rule yields nothing."""
        with pytest.raises(InvalidIntervalError):
            expand_rule(weekly(end_date=MONDAY, days_of_week=frozenset({6})))


class TestRuleValidation:
    """Tests for RecurrenceRule.validate."""

    def test_end_date_before_start_date(self) -> None:
        with pytest.raises(InvalidIntervalError):
            weekly(end_date=date(2030, 1, 1)).validate()

    def test_inverted_daily_window(self) -> None:
        with pytest.raises(InvalidIntervalError):
            weekly(daily_start=time(12, 0), daily_end=time(9, 0)).validate()

    def test_zero_duration(self) -> None:
        with pytest.raises(InvalidIntervalError):
            weekly(slot_minutes=0).validate()

    def test_weekly_needs_days(self) -> None:
        with pytest.raises(InvalidIntervalError):
            weekly(days_of_week=frozenset()).validate()

    def test_day_of_week_out_of_range(self) -> None:
        with pytest.raises(InvalidIntervalError):
            weekly(days_of_week=frozenset({7})).validate()


class TestHelpers:
    """Tests for day iteration and overlap detection."""

    def test_iter_days_is_inclusive(self) -> None:
        assert list(iter_days(date(2030, 1, 30), date(2030, 2, 1))) == [
            date(2030, 1, 30),
            date(2030, 1, 31),
            date(2030, 2, 1),
        ]

    def test_find_internal_overlap(self) -> None:
        first = (utc(2030, 1, 7, 9), utc(2030, 1, 7, 10))
        second = (utc(2030, 1, 7, 9, 30), utc(2030, 1, 7, 10, 30))

        assert find_internal_overlap([second, first]) == (first, second)

    def test_touching_intervals_do_not_overlap(self) -> None:
        intervals = [
            (utc(2030, 1, 7, 9), utc(2030, 1, 7, 10)),
            (utc(2030, 1, 7, 10), utc(2030, 1, 7, 11)),
        ]

        assert find_internal_overlap(intervals) is None
