"""Booking transactor.

A booking is one atomic unit: lock the slot, confirm it is still free,
apply the appointment-type/clinic rule, insert the appointment, take the
slot off the market and, for balance payments, debit the fee. Any
failure rolls back every step. Two bookers racing for one slot are
serialized on the slot row lock; the loser sees ``SlotUnavailableError``.
"""

import logging
from datetime import datetime
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from clinic_booking.booking import predicates
from clinic_booking.booking.policy import can_book_for, resolve_booking_clinic, slot_supports_type
from clinic_booking.core.config import settings
from clinic_booking.core.logging import audit_logger
from clinic_booking.db.session import atomic
from clinic_booking.models.scheduling import (
    Appointment,
    AppointmentStatus,
    AppointmentType,
    AvailabilitySlot,
    PaymentMethod,
    PaymentStatus,
    ProviderKind,
)
from clinic_booking.services.directory import ProviderDirectory, SlotDerivedDirectory
from clinic_booking.services.exceptions import (
    InvalidAmountError,
    NotAuthorizedError,
    NotFoundError,
    SlotUnavailableError,
    TypeClinicMismatchError,
)
from clinic_booking.services.ledger import CENT, BalanceLedger
from clinic_booking.services.notifications import (
    Notification,
    NotificationEvent,
    NotificationSink,
    notify_safely,
)
from clinic_booking.services.rbac import Principal
from clinic_booking.utils.time import ensure_utc

logger = logging.getLogger(__name__)


def normalize_fee(fee: Decimal | int | str) -> Decimal:
    """Fees are non-negative money values with two decimals."""
    try:
        value = Decimal(str(fee))
    except ArithmeticError as exc:
        raise InvalidAmountError(f"Invalid fee: {fee!r}") from exc
    if not value.is_finite() or value < 0:
        raise InvalidAmountError("Fee must not be negative")
    if value.quantize(CENT) != value:
        raise InvalidAmountError("Fee must have at most two decimal places")
    return value.quantize(CENT)


def booking_summary(appointment: Appointment, slot: AvailabilitySlot) -> str:
    start = ensure_utc(slot.start_time)
    return (
        f"{AppointmentType(appointment.type).value} appointment #{appointment.id} "
        f"on {start:%Y-%m-%d %H:%M} UTC, fee {appointment.fee} {settings.currency}"
    )


class BookingTransactor:
    """Turns a free slot into a booked, paid appointment."""

    def __init__(
        self,
        session: AsyncSession,
        directory: ProviderDirectory | None = None,
        notifier: NotificationSink | None = None,
    ):
        self.session = session
        self.directory = directory or SlotDerivedDirectory(session)
        self.notifier = notifier
        self.ledger = BalanceLedger(session)

    async def lock_slot(self, slot_id: int) -> AvailabilitySlot:
        """Re-read a slot under an exclusive row lock.

        Raises:
            NotFoundError: If the slot does not exist
        """
        result = await self.session.execute(
            select(AvailabilitySlot)
            .where(AvailabilitySlot.id == slot_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        slot = result.scalar_one_or_none()
        if slot is None or slot.is_deleted:
            raise NotFoundError(f"Availability slot {slot_id} not found")
        return slot

    async def lock_slots(self, slot_ids: list[int]) -> None:
        """Lock several slots in ascending id order."""
        for slot_id in sorted(set(slot_ids)):
            await self.lock_slot(slot_id)

    async def select_slot(
        self,
        doctor_id: int,
        start_time: datetime,
        appointment_type: str,
    ) -> AvailabilitySlot:
        """Pick and lock the earliest free slot of a doctor covering ``start_time``.

        Raises:
            SlotUnavailableError: If no free slot covers the instant
        """
        instant = ensure_utc(start_time)
        result = await self.session.execute(
            select(AvailabilitySlot.id)
            .where(
                predicates.for_provider(doctor_id, ProviderKind.DOCTOR.value),
                predicates.contains_instant(instant),
                predicates.is_bookable(),
                predicates.matches_appointment_type(appointment_type),
            )
            .order_by(AvailabilitySlot.start_time, AvailabilitySlot.id)
            .limit(1)
        )
        slot_id = result.scalar_one_or_none()
        if slot_id is None:
            raise SlotUnavailableError(
                f"No available slot for doctor {doctor_id} at {instant.isoformat()}"
            )
        return await self.lock_slot(slot_id)

    async def _slot_is_free(self, slot: AvailabilitySlot) -> bool:
        if not slot.is_available:
            return False
        result = await self.session.execute(
            select(Appointment.id)
            .where(
                Appointment.slot_id == slot.id,
                Appointment.status != AppointmentStatus.CANCELLED,
            )
            .limit(1)
        )
        return result.scalar_one_or_none() is None

    async def _book(
        self,
        patient_id: int,
        doctor_id: int,
        appointment_type: str,
        payment_method: str,
        fee: Decimal | int | str,
        slot_id: int | None = None,
        start_time: datetime | None = None,
        clinic_id: int | None = None,
        reason: str | None = None,
        notes: str | None = None,
        actor: Principal | None = None,
        rescheduled_from_id: int | None = None,
        reschedule_count: int = 0,
    ) -> tuple[Appointment, AvailabilitySlot]:
        """Run the booking steps inside the caller's atomic unit.

        Nothing is committed here; the caller owns the transaction.
        """
        apt_type = AppointmentType(appointment_type)
        method = PaymentMethod(payment_method)
        amount = normalize_fee(fee)

        # 1. Lock the slot row
        if slot_id is not None:
            slot = await self.lock_slot(slot_id)
        elif start_time is not None:
            slot = await self.select_slot(doctor_id, start_time, apt_type)
        else:
            raise SlotUnavailableError("A slot id or a start time is required")

        if slot.provider_id != doctor_id or slot.provider_kind != ProviderKind.DOCTOR:
            raise NotFoundError(f"Slot {slot.id} not found in doctor {doctor_id}'s calendar")

        # 2. Still free?
        if not await self._slot_is_free(slot):
            raise SlotUnavailableError()

        # 3. Appointment type and clinic
        doctor_clinics = None
        if apt_type == AppointmentType.IN_PERSON and clinic_id is None:
            doctor_clinics = await self.directory.clinics_for_doctor(doctor_id)
        decision = resolve_booking_clinic(
            apt_type,
            clinic_id,
            actor.role if actor is not None else None,
            doctor_clinics,
        )
        if (
            decision.clinic_id is not None
            and not decision.inferred
            and not await self.directory.is_clinic(decision.clinic_id)
        ):
            raise NotFoundError(f"Clinic {decision.clinic_id} not found")
        if not slot_supports_type(slot.clinic_id, apt_type):
            raise TypeClinicMismatchError(
                f"Slot {slot.id} cannot host a {apt_type.value} appointment"
            )
        if decision.clinic_id is not None and slot.clinic_id != decision.clinic_id:
            raise TypeClinicMismatchError(
                f"Slot {slot.id} belongs to clinic {slot.clinic_id}, not clinic {decision.clinic_id}"
            )

        # 4-6. Insert the appointment and take the slot
        if method == PaymentMethod.CASH:
            payment_status = PaymentStatus.PENDING_COLLECTION
        else:
            payment_status = PaymentStatus.PAID

        appointment = Appointment(
            patient_id=patient_id,
            doctor_id=doctor_id,
            clinic_id=decision.clinic_id,
            slot_id=slot.id,
            type=apt_type.value,
            status=AppointmentStatus.BOOKED.value,
            reason=reason,
            notes=notes,
            fee=amount,
            payment_method=method.value,
            payment_status=payment_status.value,
            rescheduled_from_id=rescheduled_from_id,
            reschedule_count=reschedule_count,
        )
        self.session.add(appointment)
        slot.is_available = False

        try:
            await self.session.flush()
        except (IntegrityError, StaleDataError) as exc:
            raise SlotUnavailableError() from exc

        if method == PaymentMethod.BALANCE and amount > 0:
            await self.ledger.debit(
                patient_id,
                amount,
                related_appointment_id=appointment.id,
                description=f"Payment for appointment #{appointment.id}",
            )

        return appointment, slot

    async def book(
        self,
        patient_id: int,
        doctor_id: int,
        appointment_type: str,
        payment_method: str,
        fee: Decimal | int | str,
        slot_id: int | None = None,
        start_time: datetime | None = None,
        clinic_id: int | None = None,
        reason: str | None = None,
        notes: str | None = None,
        actor: Principal | None = None,
    ) -> Appointment:
        """Book an appointment as one atomic unit.

        Either ``slot_id`` or ``start_time`` (auto-select) must be given.

        Raises:
            NotAuthorizedError: If the actor may not book for this patient/doctor
            NotFoundError: If the slot or clinic is unknown
            SlotUnavailableError: If the slot was taken or is blocked
            TypeClinicMismatchError: If the clinic does not fit the appointment type
            InsufficientFundsError: If a balance payment cannot be covered
        """
        if actor is not None and not can_book_for(actor, patient_id, doctor_id):
            raise NotAuthorizedError("You may not book this appointment")

        async with atomic(self.session):
            appointment, slot = await self._book(
                patient_id=patient_id,
                doctor_id=doctor_id,
                appointment_type=appointment_type,
                payment_method=payment_method,
                fee=fee,
                slot_id=slot_id,
                start_time=start_time,
                clinic_id=clinic_id,
                reason=reason,
                notes=notes,
                actor=actor,
            )

        audit_logger.log(
            action="appointment.booked",
            actor_role=actor.role.value if actor else "system",
            actor_id=actor.id if actor else None,
            entity_type="appointment",
            entity_id=appointment.id,
            metadata={
                "slot_id": slot.id,
                "payment_method": appointment.payment_method,
                "fee": str(appointment.fee),
            },
        )
        logger.info(f"Booked appointment {appointment.id} on slot {slot.id}")

        await notify_safely(
            self.notifier,
            Notification(
                event=NotificationEvent.APPOINTMENT_BOOKED,
                patient_id=appointment.patient_id,
                doctor_id=appointment.doctor_id,
                summary=f"Booked {booking_summary(appointment, slot)}",
            ),
        )
        return appointment
