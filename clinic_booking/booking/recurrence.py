"""Expansion of recurring availability rules into concrete intervals."""

from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from enum import Enum

from clinic_booking.services.exceptions import InvalidIntervalError


class RecurrencePattern(str, Enum):
    """How days are selected within the date range."""

    DAILY = "daily"
    WEEKLY = "weekly"


@dataclass(frozen=True)
class RecurrenceRule:
    """Recurring availability definition.

    Attributes:
        start_date: First calendar day (inclusive)
        end_date: Last calendar day (inclusive)
        daily_start: Start of the daily window (UTC wall time)
        daily_end: End of the daily window (UTC wall time)
        slot_minutes: Length of each generated slot
        days_of_week: Weekdays to use for weekly rules (0=Monday .. 6=Sunday)
        pattern: daily uses every day, weekly filters by ``days_of_week``
    """

    start_date: date
    end_date: date
    daily_start: time
    daily_end: time
    slot_minutes: int = 30
    days_of_week: frozenset[int] = field(default_factory=frozenset)
    pattern: RecurrencePattern = RecurrencePattern.WEEKLY

    def validate(self) -> None:
        """Check the rule is expandable.

        Raises:
            InvalidIntervalError: If dates, window or duration are inconsistent
        """
        if self.end_date < self.start_date:
            raise InvalidIntervalError("Recurrence end date must not be before its start date")
        if self.daily_end <= self.daily_start:
            raise InvalidIntervalError("Daily end time must be after daily start time")
        if self.slot_minutes <= 0:
            raise InvalidIntervalError("Slot duration must be positive")
        if self.pattern == RecurrencePattern.WEEKLY:
            if not self.days_of_week:
                raise InvalidIntervalError("Weekly recurrence needs at least one day of week")
            if any(d < 0 or d > 6 for d in self.days_of_week):
                raise InvalidIntervalError("Days of week must be between 0 (Monday) and 6 (Sunday)")

    def includes_day(self, day: date) -> bool:
        if self.pattern == RecurrencePattern.DAILY:
            return True
        return day.weekday() in self.days_of_week


def iter_days(start: date, end: date) -> Iterator[date]:
    """Yield each calendar day from ``start`` to ``end`` inclusive."""
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def expand_rule(
    rule: RecurrenceRule,
    max_slots: int | None = None,
) -> list[tuple[datetime, datetime]]:
    """Expand a rule into back-to-back UTC intervals.

    Slots fill each selected day's window from its start; a trailing
    remainder shorter than ``slot_minutes`` is dropped.

    Args:
        rule: Rule to expand
        max_slots: Reject rules generating more than this many intervals

    Returns:
        Ordered list of (start, end) tuples

    Raises:
        InvalidIntervalError: If the rule is invalid, yields nothing, or exceeds max_slots
    """
    rule.validate()
    duration = timedelta(minutes=rule.slot_minutes)
    intervals: list[tuple[datetime, datetime]] = []

    for day in iter_days(rule.start_date, rule.end_date):
        if not rule.includes_day(day):
            continue

        window_start = datetime.combine(day, rule.daily_start, tzinfo=timezone.utc)
        window_end = datetime.combine(day, rule.daily_end, tzinfo=timezone.utc)

        current = window_start
        while current + duration <= window_end:
            intervals.append((current, current + duration))
            current += duration

            if max_slots is not None and len(intervals) > max_slots:
                raise InvalidIntervalError(
                    f"Recurrence would generate more than {max_slots} slots"
                )

    if not intervals:
        raise InvalidIntervalError("Recurrence rule does not generate any slots")

    return intervals


def find_internal_overlap(
    intervals: list[tuple[datetime, datetime]],
) -> tuple[tuple[datetime, datetime], tuple[datetime, datetime]] | None:
    """Return the first pair of overlapping intervals, if any."""
    ordered = sorted(intervals)
    for previous, current in zip(ordered, ordered[1:]):
        if current[0] < previous[1]:
            return previous, current
    return None
