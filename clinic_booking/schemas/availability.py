"""Pydantic schemas for availability slots."""

from datetime import date, time

from pydantic import BaseModel, Field, model_validator

from clinic_booking.booking.recurrence import RecurrencePattern, RecurrenceRule
from clinic_booking.core.config import settings
from clinic_booking.models.scheduling import ProviderKind
from clinic_booking.schemas.common import UTCDateTime


class SlotCreate(BaseModel):
    """Request to publish a single slot."""

    provider_id: int
    provider_kind: ProviderKind = ProviderKind.DOCTOR
    clinic_id: int | None = Field(
        default=None,
        description="Owning clinic; leave empty for a telemedicine slot",
    )
    start_time: UTCDateTime
    end_time: UTCDateTime
    is_available: bool = True


class RecurringSlotCreate(BaseModel):
    """Request to publish slots from a recurrence rule."""

    provider_id: int
    provider_kind: ProviderKind = ProviderKind.DOCTOR
    clinic_id: int | None = None
    pattern: RecurrencePattern = RecurrencePattern.WEEKLY
    days_of_week: list[int] = Field(
        default_factory=list,
        description="0=Monday .. 6=Sunday, used by weekly rules",
        examples=[[0, 2, 4]],
    )
    start_date: date
    end_date: date
    daily_start: time = Field(examples=["09:00"])
    daily_end: time = Field(examples=["12:00"])
    slot_minutes: int = Field(default_factory=lambda: settings.recurring_default_slot_minutes)

    def to_rule(self) -> RecurrenceRule:
        return RecurrenceRule(
            start_date=self.start_date,
            end_date=self.end_date,
            daily_start=self.daily_start,
            daily_end=self.daily_end,
            slot_minutes=self.slot_minutes,
            days_of_week=frozenset(self.days_of_week),
            pattern=self.pattern,
        )


class SlotUpdate(BaseModel):
    """Request to move a slot or change its availability."""

    start_time: UTCDateTime | None = None
    end_time: UTCDateTime | None = None
    is_available: bool | None = None

    @model_validator(mode="after")
    def check_not_empty(self) -> "SlotUpdate":
        if self.start_time is None and self.end_time is None and self.is_available is None:
            raise ValueError("Nothing to update")
        return self


class SlotRead(BaseModel):
    """Availability slot response."""

    id: int
    provider_id: int
    provider_kind: ProviderKind
    clinic_id: int | None
    start_time: UTCDateTime
    end_time: UTCDateTime
    is_available: bool
    is_telemedicine: bool

    model_config = {"from_attributes": True}


class RecurringSlotResult(BaseModel):
    """Outcome of a recurring slot creation."""

    created: int
    slots: list[SlotRead]
