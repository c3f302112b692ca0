"""Pydantic schemas for appointments."""

from decimal import Decimal

from pydantic import BaseModel, Field, model_validator

from clinic_booking.models.scheduling import (
    AppointmentStatus,
    AppointmentType,
    PaymentMethod,
    PaymentStatus,
)
from clinic_booking.schemas.common import UTCDateTime
from clinic_booking.schemas.ledger import LedgerTransactionRead


class AppointmentCreate(BaseModel):
    """Booking request.

    Give ``slot_id``, or ``start_time`` to let the doctor's earliest free
    slot covering that instant be picked.
    """

    patient_id: int | None = Field(
        default=None,
        description="Defaults to the caller when the caller is a patient",
    )
    doctor_id: int
    slot_id: int | None = None
    start_time: UTCDateTime | None = None
    type: AppointmentType = AppointmentType.IN_PERSON
    clinic_id: int | None = None
    fee: Decimal = Field(default=Decimal("0.00"), ge=0, decimal_places=2)
    payment_method: PaymentMethod = PaymentMethod.BALANCE
    reason: str | None = Field(default=None, max_length=2000)
    notes: str | None = Field(default=None, max_length=4000)

    @model_validator(mode="after")
    def check_slot_or_start(self) -> "AppointmentCreate":
        if self.slot_id is None and self.start_time is None:
            raise ValueError("Either slot_id or start_time is required")
        return self


class AppointmentCancel(BaseModel):
    reason: str | None = Field(default=None, max_length=2000)


class AppointmentCheckOut(BaseModel):
    notes: str | None = Field(default=None, max_length=4000)


class AppointmentNotes(BaseModel):
    """Replace the clinical notes; null clears them."""

    notes: str | None = Field(default=None, max_length=4000)


class AppointmentReschedule(BaseModel):
    """Move an appointment to another slot of the same doctor."""

    new_slot_id: int | None = None
    new_start_time: UTCDateTime | None = None
    clinic_id: int | None = None
    fee: Decimal | None = Field(default=None, ge=0, decimal_places=2)
    payment_method: PaymentMethod | None = None
    reason: str | None = Field(default=None, max_length=2000)

    @model_validator(mode="after")
    def check_target(self) -> "AppointmentReschedule":
        if self.new_slot_id is None and self.new_start_time is None:
            raise ValueError("Either new_slot_id or new_start_time is required")
        return self


class AppointmentRead(BaseModel):
    """Appointment response."""

    id: int
    patient_id: int
    doctor_id: int
    clinic_id: int | None
    slot_id: int
    type: AppointmentType
    status: AppointmentStatus
    reason: str | None
    notes: str | None
    fee: Decimal
    payment_method: PaymentMethod
    payment_status: PaymentStatus
    checked_in_at: UTCDateTime | None
    checked_out_at: UTCDateTime | None
    cancelled_at: UTCDateTime | None
    cancelled_by: int | None
    cancellation_reason: str | None
    rescheduled_from_id: int | None
    reschedule_count: int
    created_at: UTCDateTime

    model_config = {"from_attributes": True}


class PaymentStatusRead(BaseModel):
    """Settlement view of an appointment."""

    appointment_id: int
    fee: Decimal
    payment_method: PaymentMethod
    payment_status: PaymentStatus
    entries: list[LedgerTransactionRead]

    model_config = {"from_attributes": True}
