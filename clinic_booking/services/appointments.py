"""Appointment state machine.

Check-in, check-out, cancel and reschedule. Each public operation is a
single atomic unit; cancellation releases the slot and refunds balance
payments in the same unit as the status change, and a reschedule runs
the cancellation and a fresh booking together so a failed booking
leaves the old appointment untouched.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_booking.booking.policy import (
    RESCHEDULABLE_STATUSES,
    can_cancel,
    can_check_in,
    can_check_out,
    can_edit_notes,
    can_view_appointment,
    can_view_clinic_schedule,
    check_transition,
)
from clinic_booking.core.logging import audit_logger
from clinic_booking.db.session import atomic
from clinic_booking.models.ledger import LedgerEntryKind, LedgerTransaction
from clinic_booking.models.scheduling import (
    Appointment,
    AppointmentStatus,
    AvailabilitySlot,
    PaymentMethod,
    PaymentStatus,
)
from clinic_booking.models.telemedicine import TelemedicineSession, TelemedicineSessionStatus
from clinic_booking.services.booking import BookingTransactor, booking_summary
from clinic_booking.services.directory import ProviderDirectory
from clinic_booking.services.exceptions import (
    InvalidTransitionError,
    NotAuthorizedError,
    NotFoundError,
)
from clinic_booking.services.ledger import BalanceLedger
from clinic_booking.services.notifications import (
    Notification,
    NotificationEvent,
    NotificationSink,
    notify_safely,
)
from clinic_booking.services.rbac import Principal
from clinic_booking.services.telemedicine import PresenceRegistry, presence_registry
from clinic_booking.utils.time import utc_now

logger = logging.getLogger(__name__)


@dataclass
class PaymentSummary:
    """Settlement view of one appointment."""

    appointment_id: int
    fee: Decimal
    payment_method: PaymentMethod
    payment_status: PaymentStatus
    entries: list[LedgerTransaction] = field(default_factory=list)


def _filter_schedule(query, start_date: date | None, end_date: date | None, status: str | None):
    """Limit an appointment query to slot dates in [start_date, end_date] and a status."""
    if start_date is not None:
        query = query.where(
            AvailabilitySlot.start_time >= datetime.combine(start_date, time.min, tzinfo=timezone.utc)
        )
    if end_date is not None:
        query = query.where(
            AvailabilitySlot.start_time
            < datetime.combine(end_date, time.min, tzinfo=timezone.utc) + timedelta(days=1)
        )
    if status is not None:
        query = query.where(Appointment.status == AppointmentStatus(status).value)
    return query


class AppointmentService:
    """Status transitions and queries for appointments."""

    def __init__(
        self,
        session: AsyncSession,
        directory: ProviderDirectory | None = None,
        notifier: NotificationSink | None = None,
        presence: PresenceRegistry | None = None,
    ):
        self.session = session
        self.notifier = notifier
        self.presence = presence or presence_registry
        self.transactor = BookingTransactor(session, directory=directory, notifier=notifier)
        self.ledger = BalanceLedger(session)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_appointment(
        self,
        appointment_id: int,
        actor: Principal | None = None,
    ) -> Appointment:
        """Get an appointment visible to the actor.

        Raises:
            NotFoundError: If the appointment does not exist
            NotAuthorizedError: If the actor may not see it
        """
        appointment = await self.session.get(Appointment, appointment_id)
        if appointment is None:
            raise NotFoundError(f"Appointment {appointment_id} not found")
        if actor is not None and not can_view_appointment(
            actor, appointment.patient_id, appointment.doctor_id
        ):
            raise NotAuthorizedError("You may not view this appointment")
        return appointment

    async def list_patient_appointments(
        self,
        patient_id: int,
        include_past: bool = False,
        now: datetime | None = None,
    ) -> Sequence[Appointment]:
        """A patient's appointments ordered by slot start."""
        query = (
            select(Appointment)
            .join(AvailabilitySlot, AvailabilitySlot.id == Appointment.slot_id)
            .where(Appointment.patient_id == patient_id)
            .order_by(AvailabilitySlot.start_time, Appointment.id)
        )
        if not include_past:
            query = query.where(AvailabilitySlot.end_time > (now or utc_now()))

        result = await self.session.execute(query)
        return result.scalars().all()

    async def list_doctor_appointments(
        self,
        doctor_id: int,
        start_date: date | None = None,
        end_date: date | None = None,
        status: str | None = None,
    ) -> Sequence[Appointment]:
        """A doctor's appointments, optionally limited to a date range and status."""
        query = (
            select(Appointment)
            .join(AvailabilitySlot, AvailabilitySlot.id == Appointment.slot_id)
            .where(Appointment.doctor_id == doctor_id)
            .order_by(AvailabilitySlot.start_time, Appointment.id)
        )
        query = _filter_schedule(query, start_date, end_date, status)

        result = await self.session.execute(query)
        return result.scalars().all()

    async def list_clinic_appointments(
        self,
        clinic_id: int,
        start_date: date | None = None,
        end_date: date | None = None,
        status: str | None = None,
        actor: Principal | None = None,
    ) -> Sequence[Appointment]:
        """Every appointment held at a clinic, latest slot first.

        Raises:
            NotAuthorizedError: If the actor is not a clinic or platform admin
        """
        if actor is not None and not can_view_clinic_schedule(actor):
            raise NotAuthorizedError("You may not view this clinic's schedule")

        query = (
            select(Appointment)
            .join(AvailabilitySlot, AvailabilitySlot.id == Appointment.slot_id)
            .where(Appointment.clinic_id == clinic_id)
            .order_by(AvailabilitySlot.start_time.desc(), Appointment.id.desc())
        )
        query = _filter_schedule(query, start_date, end_date, status)

        result = await self.session.execute(query)
        return result.scalars().all()

    async def get_payment_status(
        self,
        appointment_id: int,
        actor: Principal | None = None,
    ) -> PaymentSummary:
        appointment = await self.get_appointment(appointment_id, actor)
        entries = await self.ledger.find_entries(appointment.id)
        return PaymentSummary(
            appointment_id=appointment.id,
            fee=appointment.fee,
            payment_method=PaymentMethod(appointment.payment_method),
            payment_status=PaymentStatus(appointment.payment_status),
            entries=list(entries),
        )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def _lock_appointment(self, appointment_id: int) -> Appointment:
        result = await self.session.execute(
            select(Appointment)
            .where(Appointment.id == appointment_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        appointment = result.scalar_one_or_none()
        if appointment is None:
            raise NotFoundError(f"Appointment {appointment_id} not found")
        return appointment

    async def check_in(self, appointment_id: int, actor: Principal | None = None) -> Appointment:
        """booked -> in-progress.

        Raises:
            NotFoundError: If the appointment does not exist
            NotAuthorizedError: If the actor is not the patient, the doctor or staff
            InvalidTransitionError: If the appointment is not booked
        """
        async with atomic(self.session):
            appointment = await self._lock_appointment(appointment_id)
            if actor is not None and not can_check_in(
                actor, appointment.patient_id, appointment.doctor_id
            ):
                raise NotAuthorizedError("You may not check in this appointment")

            check_transition(appointment.status, AppointmentStatus.IN_PROGRESS, "check in")
            appointment.status = AppointmentStatus.IN_PROGRESS.value
            appointment.checked_in_at = utc_now()
            await self.session.flush()

        audit_logger.log(
            action="appointment.checked_in",
            actor_role=actor.role.value if actor else "system",
            actor_id=actor.id if actor else None,
            entity_type="appointment",
            entity_id=appointment.id,
        )
        return appointment

    async def check_out(
        self,
        appointment_id: int,
        actor: Principal | None = None,
        notes: str | None = None,
    ) -> Appointment:
        """in-progress -> completed. Cash pending collection becomes collected.

        ``notes``, when given, replace the appointment's clinical notes.
        """
        async with atomic(self.session):
            appointment = await self._lock_appointment(appointment_id)
            if actor is not None and not can_check_out(actor, appointment.doctor_id):
                raise NotAuthorizedError("You may not check out this appointment")

            check_transition(appointment.status, AppointmentStatus.COMPLETED, "check out")
            appointment.status = AppointmentStatus.COMPLETED.value
            appointment.checked_out_at = utc_now()
            if notes is not None:
                appointment.notes = notes
            if appointment.payment_status == PaymentStatus.PENDING_COLLECTION:
                appointment.payment_status = PaymentStatus.COLLECTED.value
            await self.session.flush()

        audit_logger.log(
            action="appointment.checked_out",
            actor_role=actor.role.value if actor else "system",
            actor_id=actor.id if actor else None,
            entity_type="appointment",
            entity_id=appointment.id,
            metadata={"payment_status": appointment.payment_status},
        )
        return appointment

    async def update_notes(
        self,
        appointment_id: int,
        notes: str | None,
        actor: Principal | None = None,
    ) -> Appointment:
        """Replace the clinical notes of an appointment in any status.

        Raises:
            NotFoundError: If the appointment does not exist
            NotAuthorizedError: If the actor is not the assigned doctor or staff
        """
        async with atomic(self.session):
            appointment = await self._lock_appointment(appointment_id)
            if actor is not None and not can_edit_notes(actor, appointment.doctor_id):
                raise NotAuthorizedError("You may not edit notes on this appointment")
            appointment.notes = notes
            await self.session.flush()

        audit_logger.log(
            action="appointment.notes_updated",
            actor_role=actor.role.value if actor else "system",
            actor_id=actor.id if actor else None,
            entity_type="appointment",
            entity_id=appointment.id,
        )
        return appointment

    async def _refund(self, appointment: Appointment) -> Decimal | None:
        """Return exactly what was debited for the appointment, once."""
        debits = await self.ledger.find_entries(appointment.id, LedgerEntryKind.DEBIT)
        if not debits:
            return None
        refunds = await self.ledger.find_entries(appointment.id, LedgerEntryKind.REFUND)
        if refunds:
            return None

        amount = sum((entry.amount for entry in debits), Decimal("0.00"))
        await self.ledger.credit(
            appointment.patient_id,
            amount,
            related_appointment_id=appointment.id,
            kind=LedgerEntryKind.REFUND,
            description=f"Refund for cancelled appointment #{appointment.id}",
        )
        return amount

    async def _cancel(
        self,
        appointment: Appointment,
        actor: Principal | None,
        reason: str | None,
    ) -> tuple[AvailabilitySlot, Decimal | None]:
        """Cancel inside the caller's unit: status, slot release, refund, session."""
        check_transition(appointment.status, AppointmentStatus.CANCELLED, "cancel")

        slot = await self.transactor.lock_slot(appointment.slot_id)

        appointment.status = AppointmentStatus.CANCELLED.value
        appointment.cancelled_at = utc_now()
        appointment.cancelled_by = actor.id if actor else None
        appointment.cancellation_reason = reason
        await self.session.flush()

        slot.is_available = True

        refunded = None
        if appointment.payment_method == PaymentMethod.BALANCE:
            refunded = await self._refund(appointment)
            if refunded is not None:
                appointment.payment_status = PaymentStatus.REFUNDED.value
            elif appointment.fee == 0:
                appointment.payment_status = PaymentStatus.VOID.value
        elif appointment.payment_status == PaymentStatus.PENDING_COLLECTION:
            appointment.payment_status = PaymentStatus.VOID.value

        telemedicine = await self.session.get(TelemedicineSession, appointment.id)
        if telemedicine is not None and not telemedicine.is_terminal:
            telemedicine.status = TelemedicineSessionStatus.CANCELLED.value
            telemedicine.ended_at = utc_now()

        await self.session.flush()
        return slot, refunded

    async def cancel(
        self,
        appointment_id: int,
        actor: Principal | None = None,
        reason: str | None = None,
    ) -> Appointment:
        """Cancel a booked or in-progress appointment.

        Releases the slot and refunds a balance payment in full.

        Raises:
            NotFoundError: If the appointment does not exist
            NotAuthorizedError: If the actor may not cancel it
            InvalidTransitionError: If it is already completed or cancelled
        """
        async with atomic(self.session):
            appointment = await self._lock_appointment(appointment_id)
            if actor is not None and not can_cancel(
                actor, appointment.patient_id, appointment.doctor_id
            ):
                raise NotAuthorizedError("You may not cancel this appointment")
            slot, refunded = await self._cancel(appointment, actor, reason)

        await self.presence.close(appointment.id)
        audit_logger.log(
            action="appointment.cancelled",
            actor_role=actor.role.value if actor else "system",
            actor_id=actor.id if actor else None,
            entity_type="appointment",
            entity_id=appointment.id,
            metadata={"refunded": str(refunded) if refunded is not None else None},
        )
        await notify_safely(
            self.notifier,
            Notification(
                event=NotificationEvent.APPOINTMENT_CANCELLED,
                patient_id=appointment.patient_id,
                doctor_id=appointment.doctor_id,
                summary=f"Cancelled {booking_summary(appointment, slot)}",
            ),
        )
        return appointment

    async def reschedule(
        self,
        appointment_id: int,
        new_slot_id: int | None = None,
        new_start_time: datetime | None = None,
        actor: Principal | None = None,
        clinic_id: int | None = None,
        fee: Decimal | int | str | None = None,
        payment_method: str | None = None,
        reason: str | None = None,
    ) -> Appointment:
        """Cancel an appointment and book its replacement as one unit.

        The new appointment keeps the patient, doctor and type, and by
        default the clinic, fee and payment method of the old one. If the
        new booking fails nothing changes.

        Returns:
            The new appointment
        """
        async with atomic(self.session):
            old = await self._lock_appointment(appointment_id)
            if actor is not None and not can_cancel(actor, old.patient_id, old.doctor_id):
                raise NotAuthorizedError("You may not reschedule this appointment")
            if old.status not in RESCHEDULABLE_STATUSES:
                raise InvalidTransitionError(
                    f"Cannot reschedule an appointment in '{AppointmentStatus(old.status).value}' status"
                )

            if new_slot_id is not None:
                await self.transactor.lock_slots([old.slot_id, new_slot_id])

            old_slot, _ = await self._cancel(old, actor, reason)
            new, new_slot = await self.transactor._book(
                patient_id=old.patient_id,
                doctor_id=old.doctor_id,
                appointment_type=old.type,
                payment_method=payment_method or old.payment_method,
                fee=fee if fee is not None else old.fee,
                slot_id=new_slot_id,
                start_time=new_start_time,
                clinic_id=clinic_id if clinic_id is not None else old.clinic_id,
                reason=old.reason,
                notes=old.notes,
                actor=actor,
                rescheduled_from_id=old.id,
                reschedule_count=old.reschedule_count + 1,
            )
            old.cancellation_reason = f"Rescheduled to appointment #{new.id}" + (
                f": {reason}" if reason else ""
            )
            await self.session.flush()

        await self.presence.close(old.id)
        audit_logger.log(
            action="appointment.rescheduled",
            actor_role=actor.role.value if actor else "system",
            actor_id=actor.id if actor else None,
            entity_type="appointment",
            entity_id=new.id,
            metadata={"from_appointment": old.id, "from_slot": old_slot.id, "to_slot": new_slot.id},
        )
        await notify_safely(
            self.notifier,
            Notification(
                event=NotificationEvent.APPOINTMENT_RESCHEDULED,
                patient_id=new.patient_id,
                doctor_id=new.doctor_id,
                summary=f"Rescheduled to {booking_summary(new, new_slot)}",
            ),
        )
        return new
