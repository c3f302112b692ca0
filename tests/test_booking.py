"""Tests for the booking transactor.

Covers:
1. Paying from the balance and losing a race for the slot
2. Insufficient funds leaving no trace
3. Appointment-type/clinic rule, including doctor clinic inference
4. Auto-selection by start time
5. Store-level guards against double booking
6. Concurrent sessions racing for one slot
7. Notifications after commit
"""

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm.exc import StaleDataError

from clinic_booking.db.base import Base
from clinic_booking.models.ledger import LedgerEntryKind
from clinic_booking.models.scheduling import (
    Appointment,
    AppointmentStatus,
    PaymentStatus,
    ProviderKind,
)
from clinic_booking.services.booking import BookingTransactor, normalize_fee
from clinic_booking.services.directory import StaticDirectory
from clinic_booking.services.exceptions import (
    InsufficientFundsError,
    InvalidAmountError,
    NotAuthorizedError,
    NotFoundError,
    SlotUnavailableError,
    TypeClinicMismatchError,
)
from clinic_booking.services.ledger import BalanceLedger
from clinic_booking.services.notifications import NotificationEvent
from clinic_booking.services.slots import SlotStore
from tests.factories import (
    CLINIC_ID,
    DOCTOR_ID,
    OTHER_CLINIC_ID,
    OTHER_DOCTOR_ID,
    PATIENT_A,
    PATIENT_B,
    utc,
)


async def book(transactor: BookingTransactor, **overrides) -> Appointment:
    values = {
        "patient_id": PATIENT_A,
        "doctor_id": DOCTOR_ID,
        "appointment_type": "in-person",
        "payment_method": "balance",
        "fee": "500.00",
        "clinic_id": CLINIC_ID,
    }
    values.update(overrides)
    return await transactor.book(**values)


async def count_appointments(session) -> int:
    result = await session.execute(select(func.count(Appointment.id)))
    return result.scalar_one()


class TestNormalizeFee:
    """Tests for fee validation."""

    def test_zero_fee_allowed(self) -> None:
        assert normalize_fee(0) == Decimal("0.00")

    @pytest.mark.parametrize("raw", ["-1", "10.001", "abc"])
    def test_invalid_fees(self, raw) -> None:
        with pytest.raises(InvalidAmountError):
            normalize_fee(raw)


class TestBalanceBooking:
    """A booking paid from the balance is one atomic unit."""

    async def test_book_and_lose_race(
        self, async_session, transactor, ledger, make_slot, fund, patient_a, patient_b
    ) -> None:
        """A pays 500 of 1000; B then finds the slot taken and keeps their money."""
        slot = await make_slot(utc(2030, 1, 7, 10), utc(2030, 1, 7, 10, 30))
        await fund(PATIENT_A, "1000.00")
        await fund(PATIENT_B, "1000.00")

        appointment = await book(transactor, slot_id=slot.id, actor=patient_a)

        assert appointment.status == AppointmentStatus.BOOKED
        assert appointment.payment_status == PaymentStatus.PAID
        assert await ledger.get_balance(PATIENT_A) == Decimal("500.00")
        assert slot.is_available is False

        debits = await ledger.find_entries(appointment.id, LedgerEntryKind.DEBIT)
        assert [d.amount for d in debits] == [Decimal("500.00")]
        assert debits[0].patient_id == PATIENT_A

        with pytest.raises(SlotUnavailableError) as exc_info:
            await book(transactor, patient_id=PATIENT_B, slot_id=slot.id, actor=patient_b)

        assert exc_info.value.message == "This time slot is no longer available."
        assert await ledger.get_balance(PATIENT_B) == Decimal("1000.00")
        assert await count_appointments(async_session) == 1
        assert await ledger.reconcile(PATIENT_A) == (Decimal("500.00"), Decimal("500.00"))

    async def test_insufficient_funds_leaves_no_trace(
        self, async_session, transactor, ledger, make_slot, fund
    ) -> None:
        slot = await make_slot(utc(2030, 1, 7, 10), utc(2030, 1, 7, 10, 30))
        await fund(PATIENT_A, "100.00")

        with pytest.raises(InsufficientFundsError) as exc_info:
            await book(transactor, slot_id=slot.id)

        assert exc_info.value.required == Decimal("500.00")
        assert exc_info.value.available == Decimal("100.00")

        await async_session.refresh(slot)
        assert slot.is_available is True
        assert await count_appointments(async_session) == 0
        assert await ledger.get_balance(PATIENT_A) == Decimal("100.00")
        assert len(await ledger.list_transactions(PATIENT_A)) == 1

    async def test_free_balance_booking_has_no_debit(
        self, transactor, ledger, make_slot
    ) -> None:
        slot = await make_slot(utc(2030, 1, 7, 10), utc(2030, 1, 7, 10, 30))

        appointment = await book(transactor, slot_id=slot.id, fee="0")

        assert appointment.payment_status == PaymentStatus.PAID
        assert await ledger.find_entries(appointment.id) == []

    async def test_cash_booking_pending_collection(
        self, transactor, ledger, make_slot
    ) -> None:
        slot = await make_slot(utc(2030, 1, 7, 10), utc(2030, 1, 7, 10, 30))

        appointment = await book(transactor, slot_id=slot.id, payment_method="cash")

        assert appointment.payment_status == PaymentStatus.PENDING_COLLECTION
        assert await ledger.get_balance(PATIENT_A) == Decimal("0.00")
        assert await ledger.find_entries(appointment.id) == []


class TestSlotChecks:
    """The slot must exist, belong to the doctor and be free."""

    async def test_missing_slot(self, transactor) -> None:
        with pytest.raises(NotFoundError):
            await book(transactor, slot_id=999, payment_method="cash")

    async def test_other_doctors_slot(self, transactor, make_slot) -> None:
        slot = await make_slot(
            utc(2030, 1, 7, 10), utc(2030, 1, 7, 10, 30), provider_id=OTHER_DOCTOR_ID
        )

        with pytest.raises(NotFoundError):
            await book(transactor, slot_id=slot.id, payment_method="cash")

    async def test_blocked_slot(self, transactor, make_slot) -> None:
        slot = await make_slot(
            utc(2030, 1, 7, 10), utc(2030, 1, 7, 10, 30), is_available=False
        )

        with pytest.raises(SlotUnavailableError):
            await book(transactor, slot_id=slot.id, payment_method="cash")

    async def test_slot_or_start_time_required(self, transactor) -> None:
        with pytest.raises(SlotUnavailableError):
            await book(transactor, payment_method="cash")

    async def test_patient_cannot_book_for_someone_else(
        self, transactor, make_slot, patient_b
    ) -> None:
        slot = await make_slot(utc(2030, 1, 7, 10), utc(2030, 1, 7, 10, 30))

        with pytest.raises(NotAuthorizedError):
            await book(transactor, slot_id=slot.id, payment_method="cash", actor=patient_b)


class TestClinicRule:
    """Appointment type and clinic must agree."""

    async def test_telemedicine_without_clinic(self, transactor, make_slot) -> None:
        slot = await make_slot(utc(2030, 1, 7, 10), utc(2030, 1, 7, 10, 30), clinic_id=None)

        appointment = await book(
            transactor,
            slot_id=slot.id,
            appointment_type="telemedicine",
            clinic_id=None,
            payment_method="cash",
        )

        assert appointment.clinic_id is None
        assert appointment.is_telemedicine is True

    async def test_telemedicine_with_clinic_rejected(
        self, async_session, transactor, make_slot
    ) -> None:
        slot = await make_slot(utc(2030, 1, 7, 10), utc(2030, 1, 7, 10, 30), clinic_id=None)

        with pytest.raises(TypeClinicMismatchError):
            await book(
                transactor,
                slot_id=slot.id,
                appointment_type="telemedicine",
                clinic_id=CLINIC_ID,
                payment_method="cash",
            )

        assert await count_appointments(async_session) == 0

    async def test_telemedicine_on_clinic_slot_rejected(self, transactor, make_slot) -> None:
        slot = await make_slot(utc(2030, 1, 7, 10), utc(2030, 1, 7, 10, 30))

        with pytest.raises(TypeClinicMismatchError):
            await book(
                transactor,
                slot_id=slot.id,
                appointment_type="telemedicine",
                clinic_id=None,
                payment_method="cash",
            )

    async def test_in_person_needs_clinic(self, transactor, make_slot, patient_a) -> None:
        slot = await make_slot(utc(2030, 1, 7, 10), utc(2030, 1, 7, 10, 30))

        with pytest.raises(TypeClinicMismatchError):
            await book(
                transactor,
                slot_id=slot.id,
                clinic_id=None,
                payment_method="cash",
                actor=patient_a,
            )

    async def test_in_person_on_telemedicine_slot_rejected(
        self, transactor, make_slot
    ) -> None:
        slot = await make_slot(utc(2030, 1, 7, 10), utc(2030, 1, 7, 10, 30), clinic_id=None)
        await make_slot(
            utc(2030, 1, 7, 10), utc(2030, 1, 7, 10, 30), provider_id=OTHER_DOCTOR_ID
        )

        with pytest.raises(TypeClinicMismatchError):
            await book(transactor, slot_id=slot.id, payment_method="cash")

    async def test_slot_in_another_clinic_rejected(self, transactor, make_slot) -> None:
        slot = await make_slot(utc(2030, 1, 7, 10), utc(2030, 1, 7, 10, 30))
        await make_slot(
            utc(2030, 1, 7, 10),
            utc(2030, 1, 7, 10, 30),
            provider_id=OTHER_DOCTOR_ID,
            clinic_id=OTHER_CLINIC_ID,
        )

        with pytest.raises(TypeClinicMismatchError):
            await book(
                transactor, slot_id=slot.id, clinic_id=OTHER_CLINIC_ID, payment_method="cash"
            )

    async def test_unknown_clinic(self, transactor, make_slot) -> None:
        slot = await make_slot(utc(2030, 1, 7, 10), utc(2030, 1, 7, 10, 30))

        with pytest.raises(NotFoundError):
            await book(transactor, slot_id=slot.id, clinic_id=777, payment_method="cash")

    async def test_doctor_clinic_inferred(self, async_session, make_slot, doctor) -> None:
        transactor = BookingTransactor(
            async_session, directory=StaticDirectory({DOCTOR_ID: [CLINIC_ID]})
        )
        slot = await make_slot(utc(2030, 1, 7, 10), utc(2030, 1, 7, 10, 30))

        appointment = await book(
            transactor, slot_id=slot.id, clinic_id=None, payment_method="cash", actor=doctor
        )

        assert appointment.clinic_id == CLINIC_ID

    async def test_doctor_clinic_ambiguous(self, async_session, make_slot, doctor) -> None:
        transactor = BookingTransactor(
            async_session,
            directory=StaticDirectory({DOCTOR_ID: [CLINIC_ID, OTHER_CLINIC_ID]}),
        )
        slot = await make_slot(utc(2030, 1, 7, 10), utc(2030, 1, 7, 10, 30))

        with pytest.raises(TypeClinicMismatchError):
            await book(
                transactor, slot_id=slot.id, clinic_id=None, payment_method="cash", actor=doctor
            )

    async def test_doctor_without_clinic(self, async_session, make_slot, doctor) -> None:
        transactor = BookingTransactor(async_session, directory=StaticDirectory())
        slot = await make_slot(utc(2030, 1, 7, 10), utc(2030, 1, 7, 10, 30))

        with pytest.raises(TypeClinicMismatchError):
            await book(
                transactor, slot_id=slot.id, clinic_id=None, payment_method="cash", actor=doctor
            )

    async def test_slot_derived_directory_infers_clinic(
        self, transactor, make_slot, doctor
    ) -> None:
        """With the default directory the doctor's clinics come from their slots."""
        slot = await make_slot(utc(2030, 1, 7, 10), utc(2030, 1, 7, 10, 30))

        appointment = await book(
            transactor, slot_id=slot.id, clinic_id=None, payment_method="cash", actor=doctor
        )

        assert appointment.clinic_id == CLINIC_ID


class TestAutoSelect:
    """Booking by start time picks the covering slot."""

    async def test_picks_covering_slot(self, transactor, make_slot) -> None:
        await make_slot(utc(2030, 1, 7, 9), utc(2030, 1, 7, 9, 30))
        second = await make_slot(utc(2030, 1, 7, 9, 30), utc(2030, 1, 7, 10))

        appointment = await book(
            transactor, start_time=utc(2030, 1, 7, 9, 40), payment_method="cash"
        )

        assert appointment.slot_id == second.id

    async def test_skips_taken_slot(self, transactor, make_slot) -> None:
        await make_slot(utc(2030, 1, 7, 9), utc(2030, 1, 7, 9, 30))
        await book(transactor, start_time=utc(2030, 1, 7, 9), payment_method="cash")

        with pytest.raises(SlotUnavailableError):
            await book(
                transactor,
                patient_id=PATIENT_B,
                start_time=utc(2030, 1, 7, 9, 10),
                payment_method="cash",
            )

    async def test_respects_appointment_type(self, transactor, make_slot) -> None:
        await make_slot(utc(2030, 1, 7, 9), utc(2030, 1, 7, 9, 30))

        with pytest.raises(SlotUnavailableError):
            await book(
                transactor,
                start_time=utc(2030, 1, 7, 9),
                appointment_type="telemedicine",
                clinic_id=None,
                payment_method="cash",
            )


class TestStoreGuards:
    """Double booking is refused by the store even if the free check is bypassed."""

    async def test_partial_unique_index(self, async_session, make_slot) -> None:
        slot = await make_slot(utc(2030, 1, 7, 9), utc(2030, 1, 7, 9, 30))
        for patient_id in (PATIENT_A, PATIENT_B):
            async_session.add(
                Appointment(
                    patient_id=patient_id,
                    doctor_id=DOCTOR_ID,
                    clinic_id=CLINIC_ID,
                    slot_id=slot.id,
                    type="in-person",
                    status="booked",
                    fee=Decimal("0.00"),
                    payment_method="cash",
                    payment_status="pending_collection",
                )
            )

        with pytest.raises(IntegrityError):
            await async_session.flush()
        await async_session.rollback()

    async def test_cancelled_history_does_not_block_slot(self, async_session, make_slot) -> None:
        slot = await make_slot(utc(2030, 1, 7, 9), utc(2030, 1, 7, 9, 30))
        for status in ("cancelled", "cancelled", "booked"):
            async_session.add(
                Appointment(
                    patient_id=PATIENT_A,
                    doctor_id=DOCTOR_ID,
                    clinic_id=CLINIC_ID,
                    slot_id=slot.id,
                    type="in-person",
                    status=status,
                    fee=Decimal("0.00"),
                    payment_method="cash",
                    payment_status="void",
                )
            )

        await async_session.commit()

        assert await count_appointments(async_session) == 3

    async def test_unique_violation_maps_to_slot_unavailable(
        self, async_session, transactor, ledger, make_slot, fund, monkeypatch
    ) -> None:
        slot = await make_slot(utc(2030, 1, 7, 9), utc(2030, 1, 7, 9, 30))
        await fund(PATIENT_B, "1000.00")
        await book(transactor, slot_id=slot.id, payment_method="cash")
        monkeypatch.setattr(transactor, "_slot_is_free", AsyncMock(return_value=True))

        with pytest.raises(SlotUnavailableError):
            await book(transactor, patient_id=PATIENT_B, slot_id=slot.id)

        assert await ledger.get_balance(PATIENT_B) == Decimal("1000.00")
        assert await count_appointments(async_session) == 1

    async def test_stale_slot_maps_to_slot_unavailable(
        self, async_session, transactor, make_slot, monkeypatch
    ) -> None:
        slot = await make_slot(utc(2030, 1, 7, 9), utc(2030, 1, 7, 9, 30))
        monkeypatch.setattr(
            async_session, "flush", AsyncMock(side_effect=StaleDataError("version mismatch"))
        )

        with pytest.raises(SlotUnavailableError):
            await book(transactor, slot_id=slot.id, payment_method="cash")

        monkeypatch.undo()
        assert await count_appointments(async_session) == 0


class TestConcurrentBooking:
    """Two sessions racing for one slot on a shared database file."""

    @pytest.fixture
    async def race_factory(self, tmp_path):
        engine = create_async_engine(
            f"sqlite+aiosqlite:///{tmp_path / 'race.db'}",
            connect_args={"timeout": 30},
        )
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)

        await engine.dispose()

    async def test_exactly_one_booking_wins(self, race_factory) -> None:
        async with race_factory() as session:
            ledger = BalanceLedger(session)
            await ledger.deposit(PATIENT_A, "1000.00")
            await ledger.deposit(PATIENT_B, "1000.00")
            slot = await SlotStore(session).create(
                provider_id=DOCTOR_ID,
                provider_kind=ProviderKind.DOCTOR,
                start_time=utc(2030, 1, 7, 9),
                end_time=utc(2030, 1, 7, 9, 30),
                clinic_id=CLINIC_ID,
            )
            slot_id = slot.id

        async with race_factory() as first, race_factory() as second:
            outcomes = await asyncio.gather(
                book(BookingTransactor(first), patient_id=PATIENT_A, slot_id=slot_id),
                book(BookingTransactor(second), patient_id=PATIENT_B, slot_id=slot_id),
                return_exceptions=True,
            )

        winners = [o for o in outcomes if isinstance(o, Appointment)]
        losers = [o for o in outcomes if isinstance(o, SlotUnavailableError)]
        assert len(winners) == 1
        assert len(losers) == 1
        winner_id = winners[0].patient_id
        loser_id = PATIENT_B if winner_id == PATIENT_A else PATIENT_A

        async with race_factory() as session:
            booked = await session.scalar(
                select(func.count()).select_from(Appointment).where(Appointment.slot_id == slot_id)
            )
            ledger = BalanceLedger(session)
            assert booked == 1
            assert await ledger.get_balance(winner_id) == Decimal("500.00")
            assert await ledger.get_balance(loser_id) == Decimal("1000.00")
            assert await ledger.reconcile(loser_id) == (Decimal("1000.00"), Decimal("1000.00"))


class TestNotifications:
    """Notifications go out after the commit and never undo it."""

    async def test_booking_notifies(self, transactor, make_slot, notifications) -> None:
        slot = await make_slot(utc(2030, 1, 7, 9), utc(2030, 1, 7, 9, 30))

        appointment = await book(transactor, slot_id=slot.id, payment_method="cash")

        assert len(notifications.sent) == 1
        sent = notifications.sent[0]
        assert sent.event == NotificationEvent.APPOINTMENT_BOOKED
        assert sent.patient_id == PATIENT_A
        assert f"#{appointment.id}" in sent.summary
        assert "2030-01-07 09:00" in sent.summary

    async def test_failed_notification_keeps_booking(
        self, async_session, make_slot
    ) -> None:
        sink = AsyncMock()
        sink.notify.side_effect = ConnectionError("mail server down")
        transactor = BookingTransactor(async_session, notifier=sink)
        slot = await make_slot(utc(2030, 1, 7, 9), utc(2030, 1, 7, 9, 30))

        appointment = await book(transactor, slot_id=slot.id, payment_method="cash")

        sink.notify.assert_awaited_once()
        assert appointment.id is not None
        assert await count_appointments(async_session) == 1

    async def test_failed_booking_sends_nothing(
        self, transactor, make_slot, notifications
    ) -> None:
        slot = await make_slot(utc(2030, 1, 7, 9), utc(2030, 1, 7, 9, 30))

        with pytest.raises(InsufficientFundsError):
            await book(transactor, slot_id=slot.id)

        assert notifications.sent == []
