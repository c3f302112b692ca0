"""Balance ledger: patient balances backed by an append-only log.

Ledger writes never commit on their own. ``debit`` and ``credit`` lock
the balance row, append one entry, move the balance, and flush; the
caller's atomic unit decides whether all of it survives. ``deposit`` is
the only public unit of work owned by the ledger itself.
"""

import logging
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Sequence

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from clinic_booking.core.logging import audit_logger
from clinic_booking.db.session import atomic
from clinic_booking.models.ledger import (
    CREDIT_KINDS,
    LedgerEntryKind,
    LedgerEntryStatus,
    LedgerTransaction,
    PatientBalance,
)
from clinic_booking.services.exceptions import (
    ConcurrencyConflictError,
    InsufficientFundsError,
    InvalidAmountError,
)
from clinic_booking.services.rbac import Principal

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def normalize_amount(amount: Decimal | int | str) -> Decimal:
    """Convert an amount to a positive two-decimal ``Decimal``.

    Raises:
        InvalidAmountError: If the amount is not a number, not positive,
            or has more than two decimals
    """
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError) as exc:
        raise InvalidAmountError(f"Invalid amount: {amount!r}") from exc

    if not value.is_finite() or value <= 0:
        raise InvalidAmountError("Amount must be positive")
    quantized = value.quantize(CENT, rounding=ROUND_HALF_UP)
    if quantized != value:
        raise InvalidAmountError("Amount must have at most two decimal places")
    return quantized


class BalanceLedger:
    """Owns patient balances and their transaction log."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_balance(self, patient_id: int) -> Decimal:
        """Current balance; patients without a balance row have zero."""
        result = await self.session.execute(
            select(PatientBalance.balance).where(PatientBalance.patient_id == patient_id)
        )
        balance = result.scalar_one_or_none()
        return Decimal(balance).quantize(CENT) if balance is not None else ZERO

    async def lock_balance(self, patient_id: int, create: bool = False) -> PatientBalance | None:
        """Read the balance row with an exclusive lock.

        Args:
            patient_id: Patient whose funds are touched
            create: Insert a zero balance row when none exists

        Returns:
            Locked balance row, or None when absent and ``create`` is False
        """
        result = await self.session.execute(
            select(PatientBalance)
            .where(PatientBalance.patient_id == patient_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        if row is None and create:
            row = PatientBalance(patient_id=patient_id, balance=ZERO)
            self.session.add(row)
            await self._flush()
        return row

    async def _flush(self) -> None:
        try:
            await self.session.flush()
        except StaleDataError as exc:
            raise ConcurrencyConflictError(
                "Balance was modified concurrently; retry the operation"
            ) from exc

    async def debit(
        self,
        patient_id: int,
        amount: Decimal | int | str,
        related_appointment_id: int | None = None,
        description: str | None = None,
    ) -> Decimal:
        """Append a debit entry and decrement the balance.

        Returns:
            New balance

        Raises:
            InvalidAmountError: If the amount is not a positive money value
            InsufficientFundsError: If the amount exceeds the current balance
        """
        value = normalize_amount(amount)
        row = await self.lock_balance(patient_id)
        available = Decimal(row.balance).quantize(CENT) if row is not None else ZERO

        if value > available:
            raise InsufficientFundsError(required=value, available=available)

        self.session.add(
            LedgerTransaction(
                patient_id=patient_id,
                kind=LedgerEntryKind.DEBIT.value,
                amount=value,
                description=description,
                related_appointment_id=related_appointment_id,
                status=LedgerEntryStatus.COMPLETED.value,
            )
        )
        row.balance = available - value
        await self._flush()

        logger.debug(f"Debited {value} from patient {patient_id}; balance {row.balance}")
        return row.balance

    async def credit(
        self,
        patient_id: int,
        amount: Decimal | int | str,
        related_appointment_id: int | None = None,
        kind: str = LedgerEntryKind.DEPOSIT,
        description: str | None = None,
    ) -> Decimal:
        """Append a deposit or refund entry and increment the balance.

        Returns:
            New balance

        Raises:
            InvalidAmountError: If the amount is not positive or the kind is a debit
        """
        entry_kind = LedgerEntryKind(kind)
        if entry_kind not in CREDIT_KINDS:
            raise InvalidAmountError(f"'{entry_kind.value}' is not a credit entry kind")

        value = normalize_amount(amount)
        row = await self.lock_balance(patient_id, create=True)

        self.session.add(
            LedgerTransaction(
                patient_id=patient_id,
                kind=entry_kind.value,
                amount=value,
                description=description,
                related_appointment_id=related_appointment_id,
                status=LedgerEntryStatus.COMPLETED.value,
            )
        )
        row.balance = Decimal(row.balance).quantize(CENT) + value
        await self._flush()

        logger.debug(f"Credited {value} ({entry_kind.value}) to patient {patient_id}")
        return row.balance

    async def deposit(
        self,
        patient_id: int,
        amount: Decimal | int | str,
        description: str | None = None,
        actor: Principal | None = None,
    ) -> Decimal:
        """Top up a patient's balance as its own atomic unit."""
        async with atomic(self.session):
            balance = await self.credit(
                patient_id,
                amount,
                kind=LedgerEntryKind.DEPOSIT,
                description=description or "Balance deposit",
            )

        audit_logger.log(
            action="ledger.deposit",
            actor_role=actor.role.value if actor else "system",
            actor_id=actor.id if actor else None,
            entity_type="patient_balance",
            entity_id=patient_id,
            metadata={"amount": str(normalize_amount(amount)), "balance": str(balance)},
        )
        return balance

    async def find_entries(
        self,
        related_appointment_id: int,
        kind: str | None = None,
    ) -> Sequence[LedgerTransaction]:
        """Entries linked to an appointment, oldest first."""
        query = select(LedgerTransaction).where(
            LedgerTransaction.related_appointment_id == related_appointment_id
        )
        if kind is not None:
            query = query.where(LedgerTransaction.kind == LedgerEntryKind(kind).value)

        result = await self.session.execute(query.order_by(LedgerTransaction.id))
        return result.scalars().all()

    async def list_transactions(
        self,
        patient_id: int,
        limit: int = 50,
        offset: int = 0,
    ) -> Sequence[LedgerTransaction]:
        """Transaction history of a patient, newest first."""
        result = await self.session.execute(
            select(LedgerTransaction)
            .where(LedgerTransaction.patient_id == patient_id)
            .order_by(LedgerTransaction.created_at.desc(), LedgerTransaction.id.desc())
            .limit(limit)
            .offset(offset)
        )
        return result.scalars().all()

    async def ledger_sum(self, patient_id: int) -> Decimal:
        """Signed sum of the patient's completed entries."""
        signed = case(
            (
                LedgerTransaction.kind.in_([k.value for k in CREDIT_KINDS]),
                LedgerTransaction.amount,
            ),
            else_=-LedgerTransaction.amount,
        )
        result = await self.session.execute(
            select(func.coalesce(func.sum(signed), 0)).where(
                LedgerTransaction.patient_id == patient_id,
                LedgerTransaction.status == LedgerEntryStatus.COMPLETED.value,
            )
        )
        return Decimal(str(result.scalar_one())).quantize(CENT)

    async def reconcile(self, patient_id: int) -> tuple[Decimal, Decimal]:
        """Return ``(balance, ledger_sum)``; the two must always be equal."""
        balance = await self.get_balance(patient_id)
        total = await self.ledger_sum(patient_id)
        if balance != total:
            logger.error(
                f"Ledger mismatch for patient {patient_id}: balance={balance} ledger_sum={total}"
            )
        return balance, total
