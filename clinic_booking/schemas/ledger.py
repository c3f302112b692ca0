"""Pydantic schemas for balances and ledger entries."""

from decimal import Decimal

from pydantic import BaseModel, Field

from clinic_booking.models.ledger import LedgerEntryKind, LedgerEntryStatus
from clinic_booking.schemas.common import UTCDateTime


class BalanceRead(BaseModel):
    patient_id: int
    balance: Decimal
    currency: str


class DepositCreate(BaseModel):
    """Top-up request."""

    amount: Decimal = Field(gt=0, decimal_places=2, examples=["1000.00"])
    description: str | None = Field(default=None, max_length=500)


class LedgerTransactionRead(BaseModel):
    """Ledger entry response."""

    id: int
    patient_id: int
    kind: LedgerEntryKind
    amount: Decimal
    description: str | None
    related_appointment_id: int | None
    status: LedgerEntryStatus
    created_at: UTCDateTime

    model_config = {"from_attributes": True}
