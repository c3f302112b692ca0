"""Telemedicine session binding and participant presence.

The session row is the durable record: it is created by the first
start call and completed by end. Presence (who is connected right now)
is an in-process cache keyed by appointment id; it never feeds back
into appointment or session state.
"""

import asyncio
import logging
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_booking.booking.policy import (
    can_attend_session,
    can_manage_session,
    can_view_appointment,
)
from clinic_booking.core.logging import audit_logger
from clinic_booking.db.session import atomic
from clinic_booking.models.scheduling import (
    Appointment,
    AppointmentStatus,
    AppointmentType,
    PaymentStatus,
)
from clinic_booking.models.telemedicine import TelemedicineSession, TelemedicineSessionStatus
from clinic_booking.services.exceptions import (
    InvalidTransitionError,
    NotAuthorizedError,
    NotFoundError,
)
from clinic_booking.services.rbac import Principal
from clinic_booking.utils.time import utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Participant:
    """A connected party of a telemedicine call."""

    id: int
    role: str


class PresenceRegistry:
    """Process-wide, non-durable map of appointment id to connected parties.

    Rooms are created on first join and removed when the last party
    leaves. All mutation goes through one lock.
    """

    def __init__(self) -> None:
        self._rooms: dict[int, set[Participant]] = {}
        self._lock = asyncio.Lock()

    async def join(self, appointment_id: int, participant: Participant) -> list[Participant]:
        async with self._lock:
            room = self._rooms.setdefault(appointment_id, set())
            room.add(participant)
            return sorted(room, key=lambda p: (p.role, p.id))

    async def leave(self, appointment_id: int, participant: Participant) -> list[Participant]:
        async with self._lock:
            room = self._rooms.get(appointment_id)
            if room is None:
                return []
            room.discard(participant)
            if not room:
                del self._rooms[appointment_id]
                return []
            return sorted(room, key=lambda p: (p.role, p.id))

    async def close(self, appointment_id: int) -> None:
        async with self._lock:
            self._rooms.pop(appointment_id, None)

    def participants(self, appointment_id: int) -> list[Participant]:
        return sorted(self._rooms.get(appointment_id, set()), key=lambda p: (p.role, p.id))

    def room_count(self) -> int:
        return len(self._rooms)


presence_registry = PresenceRegistry()


class TelemedicineService:
    """Start, end, join and leave telemedicine sessions."""

    def __init__(self, session: AsyncSession, presence: PresenceRegistry | None = None):
        self.session = session
        self.presence = presence or presence_registry

    async def _get_appointment(self, appointment_id: int, lock: bool = False) -> Appointment:
        query = select(Appointment).where(Appointment.id == appointment_id)
        if lock:
            query = query.with_for_update().execution_options(populate_existing=True)
        result = await self.session.execute(query)
        appointment = result.scalar_one_or_none()
        if appointment is None:
            raise NotFoundError(f"Appointment {appointment_id} not found")
        return appointment

    async def get_session(
        self,
        appointment_id: int,
        actor: Principal | None = None,
    ) -> TelemedicineSession:
        """Get the session of an appointment.

        Raises:
            NotFoundError: If the appointment or its session does not exist
        """
        appointment = await self._get_appointment(appointment_id)
        if actor is not None and not can_view_appointment(
            actor, appointment.patient_id, appointment.doctor_id
        ):
            raise NotAuthorizedError("You may not view this session")

        telemedicine = await self.session.get(TelemedicineSession, appointment_id)
        if telemedicine is None:
            raise NotFoundError(f"No telemedicine session for appointment {appointment_id}")
        return telemedicine

    async def start(
        self,
        appointment_id: int,
        actor: Principal | None = None,
    ) -> TelemedicineSession:
        """Start the session, creating it on first use.

        A booked appointment moves to in-progress with it.

        Raises:
            InvalidTransitionError: If the appointment is not a live
                telemedicine appointment or the session already started
        """
        async with atomic(self.session):
            appointment = await self._get_appointment(appointment_id, lock=True)
            if actor is not None and not can_manage_session(actor, appointment.doctor_id):
                raise NotAuthorizedError("Only the assigned doctor can start this session")

            if appointment.type != AppointmentType.TELEMEDICINE:
                raise InvalidTransitionError(
                    "Cannot start a telemedicine session for an in-person appointment"
                )
            if appointment.is_terminal:
                raise InvalidTransitionError(
                    f"Cannot start a session for a "
                    f"'{AppointmentStatus(appointment.status).value}' appointment"
                )

            telemedicine = await self.session.get(TelemedicineSession, appointment.id)
            if telemedicine is None:
                telemedicine = TelemedicineSession(
                    appointment_id=appointment.id,
                    status=TelemedicineSessionStatus.SCHEDULED.value,
                )
                self.session.add(telemedicine)

            if telemedicine.status != TelemedicineSessionStatus.SCHEDULED:
                raise InvalidTransitionError(
                    f"Session is already "
                    f"'{TelemedicineSessionStatus(telemedicine.status).value}'"
                )

            now = utc_now()
            telemedicine.status = TelemedicineSessionStatus.IN_PROGRESS.value
            telemedicine.started_at = now
            if appointment.status == AppointmentStatus.BOOKED:
                appointment.status = AppointmentStatus.IN_PROGRESS.value
                appointment.checked_in_at = now
            await self.session.flush()

        audit_logger.log(
            action="telemedicine.started",
            actor_role=actor.role.value if actor else "system",
            actor_id=actor.id if actor else None,
            entity_type="telemedicine_session",
            entity_id=appointment_id,
        )
        return telemedicine

    async def end(
        self,
        appointment_id: int,
        summary: str | None = None,
        actor: Principal | None = None,
        notes: str | None = None,
    ) -> TelemedicineSession:
        """End an in-progress session and complete its appointment.

        ``notes``, when given, replace the appointment's clinical notes.

        Raises:
            InvalidTransitionError: If the session is not in progress
        """
        async with atomic(self.session):
            appointment = await self._get_appointment(appointment_id, lock=True)
            if actor is not None and not can_manage_session(actor, appointment.doctor_id):
                raise NotAuthorizedError("Only the assigned doctor can end this session")

            telemedicine = await self.session.get(TelemedicineSession, appointment.id)
            if telemedicine is None:
                raise InvalidTransitionError("Session has not been started")
            if telemedicine.status != TelemedicineSessionStatus.IN_PROGRESS:
                raise InvalidTransitionError(
                    f"Cannot end a session in "
                    f"'{TelemedicineSessionStatus(telemedicine.status).value}' status"
                )

            now = utc_now()
            telemedicine.status = TelemedicineSessionStatus.COMPLETED.value
            telemedicine.ended_at = now
            telemedicine.summary = summary
            if notes is not None:
                appointment.notes = notes
            if appointment.status == AppointmentStatus.IN_PROGRESS:
                appointment.status = AppointmentStatus.COMPLETED.value
                appointment.checked_out_at = now
                if appointment.payment_status == PaymentStatus.PENDING_COLLECTION:
                    appointment.payment_status = PaymentStatus.COLLECTED.value
            await self.session.flush()

        await self.presence.close(appointment_id)
        audit_logger.log(
            action="telemedicine.ended",
            actor_role=actor.role.value if actor else "system",
            actor_id=actor.id if actor else None,
            entity_type="telemedicine_session",
            entity_id=appointment_id,
        )
        return telemedicine

    async def join(self, appointment_id: int, actor: Principal) -> list[Participant]:
        """Mark the actor as connected; returns everyone connected.

        Raises:
            NotAuthorizedError: If the actor is not a party of the appointment
            InvalidTransitionError: If the session is not in progress
        """
        appointment = await self._get_appointment(appointment_id)
        if not can_attend_session(actor, appointment.patient_id, appointment.doctor_id):
            raise NotAuthorizedError("You are not a participant of this session")

        telemedicine = await self.session.get(TelemedicineSession, appointment_id)
        if telemedicine is None or telemedicine.status != TelemedicineSessionStatus.IN_PROGRESS:
            raise InvalidTransitionError("Session is not in progress")

        participants = await self.presence.join(
            appointment_id, Participant(id=actor.id, role=actor.role.value)
        )
        logger.info(f"{actor.role.value} {actor.id} joined session {appointment_id}")
        return participants

    async def leave(self, appointment_id: int, actor: Principal) -> list[Participant]:
        """Mark the actor as disconnected; returns who is still connected."""
        appointment = await self._get_appointment(appointment_id)
        if not can_attend_session(actor, appointment.patient_id, appointment.doctor_id):
            raise NotAuthorizedError("You are not a participant of this session")

        participants = await self.presence.leave(
            appointment_id, Participant(id=actor.id, role=actor.role.value)
        )
        logger.info(f"{actor.role.value} {actor.id} left session {appointment_id}")
        return participants

    def participants(self, appointment_id: int) -> list[Participant]:
        return self.presence.participants(appointment_id)
