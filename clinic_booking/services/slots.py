"""Slot store: provider availability with overlap prevention.

Every write validates the half-open interval rule against all stored
slots of the same provider, whether or not those slots are currently
marked available. Recurring rules are expanded in memory and persisted
as one batch, so a single overlapping instance rejects the whole rule.
"""

import logging
from datetime import date, datetime, timedelta
from typing import Sequence

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_booking.booking import predicates
from clinic_booking.booking.policy import can_manage_slots
from clinic_booking.booking.recurrence import RecurrenceRule, expand_rule, find_internal_overlap
from clinic_booking.core.config import settings
from clinic_booking.core.logging import audit_logger
from clinic_booking.db.session import atomic
from clinic_booking.models.scheduling import (
    Appointment,
    AppointmentStatus,
    AppointmentType,
    AvailabilitySlot,
    ProviderKind,
    SlotStatus,
)
from clinic_booking.services.exceptions import (
    InvalidIntervalError,
    NotAuthorizedError,
    NotFoundError,
    OverlapError,
    SlotInUseError,
)
from clinic_booking.services.rbac import Principal
from clinic_booking.utils.time import ensure_utc, utc_now

logger = logging.getLogger(__name__)


def validate_interval(start_time: datetime, end_time: datetime) -> tuple[datetime, datetime]:
    """Normalize an interval to UTC and check its length.

    Raises:
        InvalidIntervalError: If end is not after start, or the length is
            outside the configured slot limits
    """
    start = ensure_utc(start_time)
    end = ensure_utc(end_time)
    if end <= start:
        raise InvalidIntervalError("Slot end time must be after its start time")

    length = end - start
    if length < timedelta(minutes=settings.slot_min_minutes):
        raise InvalidIntervalError(
            f"Slot must be at least {settings.slot_min_minutes} minutes long"
        )
    if length > timedelta(minutes=settings.slot_max_minutes):
        raise InvalidIntervalError(
            f"Slot must be at most {settings.slot_max_minutes} minutes long"
        )
    return start, end


class SlotStore:
    """Owns availability slot records."""

    def __init__(self, session: AsyncSession):
        self.session = session

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_slot(self, slot_id: int) -> AvailabilitySlot:
        """Get a live slot by id.

        Raises:
            NotFoundError: If the slot does not exist or was deleted
        """
        slot = await self.session.get(AvailabilitySlot, slot_id)
        if slot is None or slot.is_deleted:
            raise NotFoundError(f"Availability slot {slot_id} not found")
        return slot

    async def list_available(
        self,
        provider_id: int,
        day: date,
        appointment_type: str = AppointmentType.IN_PERSON,
        provider_kind: str = ProviderKind.DOCTOR,
        now: datetime | None = None,
    ) -> list[AvailabilitySlot]:
        """List bookable slots of a provider on one calendar day.

        Slots bound to a live appointment or marked unavailable are
        skipped, as are slots whose clinic binding does not suit the
        appointment type. Past days yield an empty list; for today only
        slots starting after ``now`` are returned.
        """
        now = ensure_utc(now) if now is not None else utc_now()
        today = now.date()
        if day < today:
            return []

        query = (
            select(AvailabilitySlot)
            .where(
                predicates.for_provider(provider_id, ProviderKind(provider_kind).value),
                predicates.on_day(day),
                predicates.is_bookable(),
                predicates.matches_appointment_type(appointment_type),
            )
            .order_by(AvailabilitySlot.start_time)
        )
        if day == today:
            query = query.where(predicates.starts_after(now))

        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def list_slots(
        self,
        provider_id: int,
        start_date: date,
        end_date: date,
        provider_kind: str = ProviderKind.DOCTOR,
    ) -> Sequence[AvailabilitySlot]:
        """List every slot of a provider in a date range, any availability."""
        if end_date < start_date:
            raise InvalidIntervalError("End date must not be before start date")

        result = await self.session.execute(
            select(AvailabilitySlot)
            .where(
                predicates.for_provider(provider_id, ProviderKind(provider_kind).value),
                predicates.in_date_range(start_date, end_date),
                predicates.is_live(),
            )
            .order_by(AvailabilitySlot.start_time)
        )
        return result.scalars().all()

    async def has_active_appointment(self, slot_id: int) -> bool:
        result = await self.session.execute(
            select(Appointment.id)
            .where(
                Appointment.slot_id == slot_id,
                Appointment.status != AppointmentStatus.CANCELLED,
            )
            .limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def find_overlapping(
        self,
        provider_id: int,
        provider_kind: str,
        start_time: datetime,
        end_time: datetime,
        exclude_slot_id: int | None = None,
    ) -> AvailabilitySlot | None:
        """Return the first stored slot intersecting ``[start_time, end_time)``."""
        query = select(AvailabilitySlot).where(
            predicates.for_provider(provider_id, ProviderKind(provider_kind).value),
            predicates.is_live(),
            predicates.overlaps_interval(start_time, end_time),
        )
        if exclude_slot_id is not None:
            query = query.where(AvailabilitySlot.id != exclude_slot_id)

        result = await self.session.execute(query.order_by(AvailabilitySlot.start_time).limit(1))
        return result.scalar_one_or_none()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _check_actor(
        self,
        actor: Principal | None,
        provider_id: int,
        provider_kind: str,
    ) -> None:
        if actor is not None and not can_manage_slots(actor, provider_id, provider_kind):
            raise NotAuthorizedError("You may only manage your own availability")

    async def lock_calendar(self, provider_id: int, provider_kind: str) -> None:
        """Serialize slot writes for one provider until the unit ends.

        The overlap check reads before it writes, so writers for one
        provider queue on a transaction-scoped advisory lock. Only
        PostgreSQL takes it; SQLite already serializes writers.
        """
        if self.session.get_bind().dialect.name != "postgresql":
            return
        key = f"availability:{ProviderKind(provider_kind).value}:{provider_id}"
        await self.session.execute(select(func.pg_advisory_xact_lock(func.hashtext(key))))

    async def _flush_slots(self) -> None:
        # The exclusion constraint on PostgreSQL rejects overlaps that slip past the check
        try:
            await self.session.flush()
        except IntegrityError as exc:
            raise OverlapError("Slot overlaps another slot of the same provider") from exc

    async def _ensure_no_overlap(
        self,
        provider_id: int,
        provider_kind: str,
        start_time: datetime,
        end_time: datetime,
        exclude_slot_id: int | None = None,
    ) -> None:
        existing = await self.find_overlapping(
            provider_id, provider_kind, start_time, end_time, exclude_slot_id
        )
        if existing is not None:
            raise OverlapError(
                f"Slot overlaps existing slot {existing.id} "
                f"({ensure_utc(existing.start_time).isoformat()} - "
                f"{ensure_utc(existing.end_time).isoformat()})"
            )

    async def create(
        self,
        provider_id: int,
        start_time: datetime,
        end_time: datetime,
        provider_kind: str = ProviderKind.DOCTOR,
        clinic_id: int | None = None,
        is_available: bool = True,
        actor: Principal | None = None,
    ) -> AvailabilitySlot:
        """Create a single slot.

        Raises:
            InvalidIntervalError: If the interval is empty, inverted or out of limits
            OverlapError: If it intersects another slot of the same provider
            NotAuthorizedError: If the actor may not manage this calendar
        """
        kind = ProviderKind(provider_kind)
        self._check_actor(actor, provider_id, kind)
        start, end = validate_interval(start_time, end_time)

        async with atomic(self.session):
            await self.lock_calendar(provider_id, kind)
            await self._ensure_no_overlap(provider_id, kind, start, end)
            slot = AvailabilitySlot(
                provider_id=provider_id,
                provider_kind=kind.value,
                clinic_id=clinic_id,
                start_time=start,
                end_time=end,
                is_available=is_available,
            )
            self.session.add(slot)
            await self._flush_slots()

        audit_logger.log(
            action="slot.created",
            actor_role=actor.role.value if actor else "system",
            actor_id=actor.id if actor else None,
            entity_type="availability_slot",
            entity_id=slot.id,
            metadata={"provider": f"{kind.value}:{provider_id}", "start": start.isoformat()},
        )
        return slot

    async def create_recurring(
        self,
        provider_id: int,
        rule: RecurrenceRule,
        provider_kind: str = ProviderKind.DOCTOR,
        clinic_id: int | None = None,
        actor: Principal | None = None,
    ) -> list[AvailabilitySlot]:
        """Expand a recurrence rule and persist every instance, or none.

        Raises:
            InvalidIntervalError: If the rule is invalid, empty or too large
            OverlapError: If any generated instance intersects a stored slot
                or another instance
        """
        kind = ProviderKind(provider_kind)
        self._check_actor(actor, provider_id, kind)

        intervals = expand_rule(rule, max_slots=settings.recurring_max_slots)
        for start, end in intervals:
            validate_interval(start, end)

        clash = find_internal_overlap(intervals)
        if clash is not None:
            raise OverlapError(
                f"Generated slots overlap each other at {clash[1][0].isoformat()}"
            )

        async with atomic(self.session):
            await self.lock_calendar(provider_id, kind)

            # One range query instead of one per instance
            first_start = intervals[0][0]
            last_end = max(end for _, end in intervals)
            result = await self.session.execute(
                select(AvailabilitySlot)
                .where(
                    predicates.for_provider(provider_id, kind.value),
                    predicates.is_live(),
                    predicates.overlaps_interval(first_start, last_end),
                )
                .order_by(AvailabilitySlot.start_time)
            )
            stored = [
                (ensure_utc(s.start_time), ensure_utc(s.end_time), s.id)
                for s in result.scalars().all()
            ]
            for start, end in intervals:
                for stored_start, stored_end, stored_id in stored:
                    if stored_start < end and stored_end > start:
                        raise OverlapError(
                            f"Generated slot {start.isoformat()} overlaps existing slot {stored_id}"
                        )

            slots = [
                AvailabilitySlot(
                    provider_id=provider_id,
                    provider_kind=kind.value,
                    clinic_id=clinic_id,
                    start_time=start,
                    end_time=end,
                    is_available=True,
                )
                for start, end in intervals
            ]
            self.session.add_all(slots)
            await self._flush_slots()

        audit_logger.log(
            action="slot.recurring_created",
            actor_role=actor.role.value if actor else "system",
            actor_id=actor.id if actor else None,
            entity_type="availability_slot",
            entity_id=None,
            metadata={
                "provider": f"{kind.value}:{provider_id}",
                "count": len(slots),
                "pattern": rule.pattern.value,
            },
        )
        logger.info(f"Created {len(slots)} recurring slots for {kind.value} {provider_id}")
        return slots

    async def _lock_slot(self, slot_id: int) -> AvailabilitySlot:
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

    async def update(
        self,
        slot_id: int,
        start_time: datetime | None = None,
        end_time: datetime | None = None,
        is_available: bool | None = None,
        actor: Principal | None = None,
    ) -> AvailabilitySlot:
        """Move a slot or flip its availability flag.

        The new interval is re-validated against every other slot of the
        provider. A slot bound to a live appointment cannot be changed.

        Raises:
            NotFoundError: If the slot does not exist
            SlotInUseError: If a non-cancelled appointment references the slot
            InvalidIntervalError: If the new interval is invalid
            OverlapError: If the new interval intersects another slot
        """
        async with atomic(self.session):
            slot = await self._lock_slot(slot_id)
            self._check_actor(actor, slot.provider_id, slot.provider_kind)

            if await self.has_active_appointment(slot.id):
                raise SlotInUseError(
                    f"Slot {slot_id} is bound to an active appointment and cannot be changed"
                )

            if start_time is not None or end_time is not None:
                start, end = validate_interval(
                    start_time if start_time is not None else slot.start_time,
                    end_time if end_time is not None else slot.end_time,
                )
                await self.lock_calendar(slot.provider_id, slot.provider_kind)
                await self._ensure_no_overlap(
                    slot.provider_id, slot.provider_kind, start, end, exclude_slot_id=slot.id
                )
                slot.start_time = start
                slot.end_time = end

            if is_available is not None:
                slot.is_available = is_available

            await self._flush_slots()

        audit_logger.log(
            action="slot.updated",
            actor_role=actor.role.value if actor else "system",
            actor_id=actor.id if actor else None,
            entity_type="availability_slot",
            entity_id=slot.id,
            metadata={
                "start": ensure_utc(slot.start_time).isoformat(),
                "end": ensure_utc(slot.end_time).isoformat(),
                "is_available": slot.is_available,
            },
        )
        return slot

    async def delete(self, slot_id: int, actor: Principal | None = None) -> SlotStatus | None:
        """Delete a slot that no live appointment is bound to.

        A slot with no appointment history is removed outright. One that
        cancelled appointments still reference is retired instead: it
        keeps its row for that history but disappears from every calendar
        query and frees its interval for new slots.

        Returns:
            ``SlotStatus.DELETED`` when the slot was retired, None when removed

        Raises:
            NotFoundError: If the slot does not exist or was already deleted
            SlotInUseError: If a non-cancelled appointment references the slot
        """
        async with atomic(self.session):
            slot = await self._lock_slot(slot_id)
            self._check_actor(actor, slot.provider_id, slot.provider_kind)

            if await self.has_active_appointment(slot.id):
                raise SlotInUseError(
                    f"Slot {slot_id} is bound to an active appointment and cannot be deleted"
                )

            result = await self.session.execute(
                select(Appointment.id).where(Appointment.slot_id == slot.id).limit(1)
            )
            if result.scalar_one_or_none() is not None:
                slot.status = SlotStatus.DELETED.value
                slot.deleted_at = utc_now()
                slot.is_available = False
                outcome = SlotStatus.DELETED
            else:
                await self.session.delete(slot)
                outcome = None
            await self.session.flush()

        audit_logger.log(
            action="slot.deleted",
            actor_role=actor.role.value if actor else "system",
            actor_id=actor.id if actor else None,
            entity_type="availability_slot",
            entity_id=slot_id,
            metadata={"retired": outcome is not None},
        )
        return outcome
