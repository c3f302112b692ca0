"""Composable query predicates for availability and binding checks.

Filters are built from SQLAlchemy expressions, never from SQL strings,
so each predicate can be unit-tested by compiling it and reused by the
slot store and the booking transactor alike.
"""

from datetime import date, datetime, time, timedelta, timezone

from sqlalchemy import ColumnElement, and_, select

from clinic_booking.models.scheduling import (
    Appointment,
    AppointmentStatus,
    AppointmentType,
    AvailabilitySlot,
    SlotStatus,
)


def for_provider(provider_id: int, provider_kind: str) -> ColumnElement[bool]:
    return and_(
        AvailabilitySlot.provider_id == provider_id,
        AvailabilitySlot.provider_kind == provider_kind,
    )


def is_live() -> ColumnElement[bool]:
    """Not retired by a delete."""
    return AvailabilitySlot.status == SlotStatus.ACTIVE.value


def overlaps_interval(start: datetime, end: datetime) -> ColumnElement[bool]:
    """Half-open [start, end) intersection with a slot's interval."""
    return and_(AvailabilitySlot.start_time < end, AvailabilitySlot.end_time > start)


def active_appointment_for_slot() -> ColumnElement[bool]:
    """Correlated EXISTS: a non-cancelled appointment references the slot."""
    return (
        select(Appointment.id)
        .where(
            Appointment.slot_id == AvailabilitySlot.id,
            Appointment.status != AppointmentStatus.CANCELLED,
        )
        .exists()
    )


def is_bookable() -> ColumnElement[bool]:
    """Live, marked available and not bound to a live appointment."""
    return and_(
        is_live(),
        AvailabilitySlot.is_available.is_(True),
        ~active_appointment_for_slot(),
    )


def matches_appointment_type(appointment_type: str) -> ColumnElement[bool]:
    """In-person requires a clinic; telemedicine requires none."""
    if AppointmentType(appointment_type) == AppointmentType.TELEMEDICINE:
        return AvailabilitySlot.clinic_id.is_(None)
    return AvailabilitySlot.clinic_id.is_not(None)


def on_day(day: date) -> ColumnElement[bool]:
    """Slot starts on the given UTC calendar day."""
    day_start = datetime.combine(day, time.min, tzinfo=timezone.utc)
    return and_(
        AvailabilitySlot.start_time >= day_start,
        AvailabilitySlot.start_time < day_start + timedelta(days=1),
    )


def starts_after(instant: datetime) -> ColumnElement[bool]:
    return AvailabilitySlot.start_time > instant


def contains_instant(instant: datetime) -> ColumnElement[bool]:
    return and_(AvailabilitySlot.start_time <= instant, AvailabilitySlot.end_time > instant)


def in_date_range(start_date: date, end_date: date) -> ColumnElement[bool]:
    range_start = datetime.combine(start_date, time.min, tzinfo=timezone.utc)
    range_end = datetime.combine(end_date, time.min, tzinfo=timezone.utc) + timedelta(days=1)
    return and_(
        AvailabilitySlot.start_time >= range_start,
        AvailabilitySlot.start_time < range_end,
    )
