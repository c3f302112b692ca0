"""Database models for the clinic booking core."""

from clinic_booking.models.ledger import (
    LedgerEntryKind,
    LedgerEntryStatus,
    LedgerTransaction,
    PatientBalance,
)
from clinic_booking.models.scheduling import (
    Appointment,
    AppointmentStatus,
    AppointmentType,
    AvailabilitySlot,
    PaymentMethod,
    PaymentStatus,
    ProviderKind,
    SlotStatus,
)
from clinic_booking.models.telemedicine import (
    TelemedicineSession,
    TelemedicineSessionStatus,
)

__all__ = [
    # Scheduling
    "AvailabilitySlot",
    "ProviderKind",
    "SlotStatus",
    "Appointment",
    "AppointmentStatus",
    "AppointmentType",
    "PaymentMethod",
    "PaymentStatus",
    # Ledger
    "PatientBalance",
    "LedgerTransaction",
    "LedgerEntryKind",
    "LedgerEntryStatus",
    # Telemedicine
    "TelemedicineSession",
    "TelemedicineSessionStatus",
]
