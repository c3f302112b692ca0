"""Scheduling models for provider availability and appointments.

Availability slots are concrete [start, end) intervals on a provider's
calendar. An appointment consumes exactly one slot; the binding is
guarded both by row locks in the booking unit and by a partial unique
index on non-cancelled appointments.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from clinic_booking.db.base import Base, TimestampMixin


class ProviderKind(str, Enum):
    """Kind of provider publishing availability."""

    DOCTOR = "doctor"
    NURSE = "nurse"
    LAB = "lab"


class SlotStatus(str, Enum):
    """Lifecycle of a slot record.

    Deleting a slot that appointment history still points at retires it
    instead of removing the row; retired slots are invisible to every
    calendar query and no longer count for overlap.
    """

    ACTIVE = "active"
    DELETED = "deleted"


class AppointmentType(str, Enum):
    """How the appointment takes place."""

    IN_PERSON = "in-person"
    TELEMEDICINE = "telemedicine"


class AppointmentStatus(str, Enum):
    """Status of an appointment."""

    BOOKED = "booked"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# Statuses after which no transition is possible
TERMINAL_STATUSES = frozenset({AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED})


class PaymentMethod(str, Enum):
    """How the appointment fee is settled."""

    BALANCE = "balance"
    CASH = "cash"


class PaymentStatus(str, Enum):
    """Settlement state of the appointment fee."""

    PAID = "paid"
    PENDING_COLLECTION = "pending_collection"
    COLLECTED = "collected"
    REFUNDED = "refunded"
    VOID = "void"


class AvailabilitySlot(Base, TimestampMixin):
    """A provider's declared block of bookable time.

    A null clinic marks a telemedicine-capable slot. The ``version``
    column is the optimistic guard used when the booking unit claims
    the slot.
    """

    __tablename__ = "availability_slots"

    provider_id: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        index=True,
    )
    provider_kind: Mapped[ProviderKind] = mapped_column(
        String(20),
        default=ProviderKind.DOCTOR,
        nullable=False,
    )
    clinic_id: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
        index=True,
    )
    start_time: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
    end_time: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
    is_available: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
    )
    status: Mapped[SlotStatus] = mapped_column(
        String(20),
        default=SlotStatus.ACTIVE.value,
        server_default=SlotStatus.ACTIVE.value,
        nullable=False,
    )
    deleted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    version: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )

    __table_args__ = (
        CheckConstraint("end_time > start_time", name="end_after_start"),
        Index(
            "ix_availability_slots_provider_window",
            "provider_id",
            "provider_kind",
            "start_time",
        ),
    )
    __mapper_args__ = {"version_id_col": version}

    @property
    def is_deleted(self) -> bool:
        return self.status == SlotStatus.DELETED

    @property
    def is_telemedicine(self) -> bool:
        """Slots without a clinic can host telemedicine appointments."""
        return self.clinic_id is None

    def __repr__(self) -> str:
        return (
            f"<AvailabilitySlot {self.id} {self.provider_kind}:{self.provider_id} "
            f"{self.start_time}-{self.end_time}>"
        )


class Appointment(Base, TimestampMixin):
    """Appointment between a patient and a doctor, bound to one slot.

    Appointments are never deleted; cancellation is a status.
    """

    __tablename__ = "appointments"

    patient_id: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        index=True,
    )
    doctor_id: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        index=True,
    )
    # Null for telemedicine
    clinic_id: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
    )
    slot_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("availability_slots.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    type: Mapped[AppointmentType] = mapped_column(
        String(20),
        nullable=False,
    )
    status: Mapped[AppointmentStatus] = mapped_column(
        String(20),
        default=AppointmentStatus.BOOKED,
        nullable=False,
        index=True,
    )
    reason: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )
    notes: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )
    # Billing
    fee: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        default=Decimal("0.00"),
        nullable=False,
    )
    payment_method: Mapped[PaymentMethod] = mapped_column(
        String(20),
        nullable=False,
    )
    payment_status: Mapped[PaymentStatus] = mapped_column(
        String(30),
        nullable=False,
    )
    # Visit timestamps
    checked_in_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    checked_out_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    # Cancellation tracking
    cancelled_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    cancelled_by: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
    )
    cancellation_reason: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )
    # Reschedule lineage
    rescheduled_from_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("appointments.id", ondelete="SET NULL"),
        nullable=True,
    )
    reschedule_count: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
    )

    __table_args__ = (
        CheckConstraint("fee >= 0", name="fee_non_negative"),
        # At most one live appointment per slot
        Index(
            "uq_appointments_active_slot",
            "slot_id",
            unique=True,
            postgresql_where=text("status <> 'cancelled'"),
            sqlite_where=text("status <> 'cancelled'"),
        ),
    )

    @property
    def is_telemedicine(self) -> bool:
        return self.type == AppointmentType.TELEMEDICINE

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def __repr__(self) -> str:
        return f"<Appointment {self.id} slot={self.slot_id} status={self.status}>"
