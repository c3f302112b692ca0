"""Pydantic schemas for request/response validation."""

from clinic_booking.schemas.appointment import (
    AppointmentCancel,
    AppointmentCheckOut,
    AppointmentCreate,
    AppointmentNotes,
    AppointmentRead,
    AppointmentReschedule,
    PaymentStatusRead,
)
from clinic_booking.schemas.availability import (
    RecurringSlotCreate,
    RecurringSlotResult,
    SlotCreate,
    SlotRead,
    SlotUpdate,
)
from clinic_booking.schemas.common import ErrorResponse
from clinic_booking.schemas.ledger import BalanceRead, DepositCreate, LedgerTransactionRead
from clinic_booking.schemas.telemedicine import (
    ParticipantRead,
    PresenceRead,
    SessionEnd,
    TelemedicineSessionRead,
)

__all__ = [
    "AppointmentCancel",
    "AppointmentCheckOut",
    "AppointmentCreate",
    "AppointmentNotes",
    "AppointmentRead",
    "AppointmentReschedule",
    "PaymentStatusRead",
    "RecurringSlotCreate",
    "RecurringSlotResult",
    "SlotCreate",
    "SlotRead",
    "SlotUpdate",
    "ErrorResponse",
    "BalanceRead",
    "DepositCreate",
    "LedgerTransactionRead",
    "ParticipantRead",
    "PresenceRead",
    "SessionEnd",
    "TelemedicineSessionRead",
]
