"""Provider/clinic directory collaborator.

The booking core only needs two answers from the directory: which
clinics a doctor belongs to (to infer the clinic of a doctor-initiated
in-person booking) and whether a clinic id refers to a known clinic.
"""

from typing import Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_booking.models.scheduling import AvailabilitySlot, ProviderKind


class ProviderDirectory(Protocol):
    """Read-only view of clinic membership."""

    async def clinics_for_doctor(self, doctor_id: int) -> list[int]:
        ...

    async def is_clinic(self, clinic_id: int) -> bool:
        ...


class SlotDerivedDirectory:
    """Directory inferred from published availability.

    A doctor belongs to every clinic hosting one of their slots, and a
    clinic is known once any provider publishes a slot there.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def clinics_for_doctor(self, doctor_id: int) -> list[int]:
        result = await self.session.execute(
            select(AvailabilitySlot.clinic_id)
            .where(
                AvailabilitySlot.provider_id == doctor_id,
                AvailabilitySlot.provider_kind == ProviderKind.DOCTOR,
                AvailabilitySlot.clinic_id.is_not(None),
            )
            .distinct()
            .order_by(AvailabilitySlot.clinic_id)
        )
        return [clinic_id for clinic_id in result.scalars().all()]

    async def is_clinic(self, clinic_id: int) -> bool:
        result = await self.session.execute(
            select(AvailabilitySlot.id).where(AvailabilitySlot.clinic_id == clinic_id).limit(1)
        )
        return result.scalar_one_or_none() is not None


class StaticDirectory:
    """Directory backed by explicit mappings (embedding and tests)."""

    def __init__(self, memberships: dict[int, list[int]] | None = None) -> None:
        self.memberships = {doctor: list(clinics) for doctor, clinics in (memberships or {}).items()}

    async def clinics_for_doctor(self, doctor_id: int) -> list[int]:
        return list(self.memberships.get(doctor_id, []))

    async def is_clinic(self, clinic_id: int) -> bool:
        return any(clinic_id in clinics for clinics in self.memberships.values())
