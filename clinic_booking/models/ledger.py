"""Patient balance and its append-only transaction log."""

from decimal import Decimal
from enum import Enum

from sqlalchemy import (
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from clinic_booking.db.base import Base, BaseNoId, CreatedAtMixin, TimestampMixin


class LedgerEntryKind(str, Enum):
    """Kind of ledger entry."""

    DEPOSIT = "deposit"
    DEBIT = "debit"
    REFUND = "refund"


# Kinds that increase the balance
CREDIT_KINDS = frozenset({LedgerEntryKind.DEPOSIT, LedgerEntryKind.REFUND})


class LedgerEntryStatus(str, Enum):
    """Status of a ledger entry."""

    COMPLETED = "completed"
    PENDING = "pending"
    REVERSED = "reversed"


class PatientBalance(BaseNoId, TimestampMixin):
    """Spendable balance of one patient.

    The balance always equals the signed sum of the patient's completed
    ledger entries. The row is the serialization point for funds: it is
    locked for the duration of any unit that moves money, and ``version``
    detects writers that bypassed the lock.
    """

    __tablename__ = "patient_balances"

    patient_id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=False,
    )
    balance: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        default=Decimal("0.00"),
        nullable=False,
    )
    version: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )

    __table_args__ = (CheckConstraint("balance >= 0", name="balance_non_negative"),)
    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<PatientBalance patient={self.patient_id} balance={self.balance}>"


class LedgerTransaction(Base, CreatedAtMixin):
    """Immutable ledger entry.

    Corrections are written as new entries, never as edits.
    """

    __tablename__ = "ledger_transactions"

    patient_id: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        index=True,
    )
    kind: Mapped[LedgerEntryKind] = mapped_column(
        String(20),
        nullable=False,
        index=True,
    )
    # Always positive; the sign comes from the kind
    amount: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        nullable=False,
    )
    description: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )
    related_appointment_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("appointments.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    status: Mapped[LedgerEntryStatus] = mapped_column(
        String(20),
        default=LedgerEntryStatus.COMPLETED,
        nullable=False,
    )
    __table_args__ = (
        CheckConstraint("amount > 0", name="amount_positive"),
        Index("ix_ledger_transactions_created_at", "created_at"),
    )

    @property
    def signed_amount(self) -> Decimal:
        """Amount as it applies to the balance."""
        if self.kind in CREDIT_KINDS:
            return self.amount
        return -self.amount

    def __repr__(self) -> str:
        return f"<LedgerTransaction {self.id} {self.kind} {self.amount} patient={self.patient_id}>"
