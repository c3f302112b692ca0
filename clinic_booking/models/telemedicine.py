"""Telemedicine session bound 1:1 to a telemedicine appointment."""

from datetime import datetime
from enum import Enum

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from clinic_booking.db.base import BaseNoId, TimestampMixin


class TelemedicineSessionStatus(str, Enum):
    """Lifecycle of a telemedicine session."""

    SCHEDULED = "scheduled"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


TERMINAL_SESSION_STATUSES = frozenset(
    {TelemedicineSessionStatus.COMPLETED, TelemedicineSessionStatus.CANCELLED}
)


class TelemedicineSession(BaseNoId, TimestampMixin):
    """Session state for a telemedicine appointment.

    Addressed only through its appointment id. Created on the first
    start call.
    """

    __tablename__ = "telemedicine_sessions"

    appointment_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("appointments.id", ondelete="CASCADE"),
        primary_key=True,
        autoincrement=False,
    )
    status: Mapped[TelemedicineSessionStatus] = mapped_column(
        String(20),
        default=TelemedicineSessionStatus.SCHEDULED,
        nullable=False,
    )
    started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    ended_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    summary: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_SESSION_STATUSES

    def __repr__(self) -> str:
        return f"<TelemedicineSession appointment={self.appointment_id} status={self.status}>"
