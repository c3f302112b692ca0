"""Availability endpoints: slot listing and calendar management."""

from datetime import date
from typing import Annotated

from fastapi import APIRouter, Depends, Query, Response, status

from clinic_booking.api.deps import DbSession, require_permissions
from clinic_booking.models.scheduling import AppointmentType, ProviderKind
from clinic_booking.schemas.availability import (
    RecurringSlotCreate,
    RecurringSlotResult,
    SlotCreate,
    SlotRead,
    SlotUpdate,
)
from clinic_booking.services.rbac import Permission, Principal
from clinic_booking.services.slots import SlotStore

router = APIRouter()

SlotReader = Annotated[Principal, Depends(require_permissions(Permission.SLOTS_READ))]
SlotWriter = Annotated[Principal, Depends(require_permissions(Permission.SLOTS_WRITE))]


@router.get(
    "/providers/{provider_id}/available",
    response_model=list[SlotRead],
    summary="Bookable slots of a provider on one day",
)
async def list_available_slots(
    provider_id: int,
    session: DbSession,
    principal: SlotReader,
    day: Annotated[date, Query(alias="date")],
    appointment_type: AppointmentType = AppointmentType.IN_PERSON,
    provider_kind: ProviderKind = ProviderKind.DOCTOR,
):
    store = SlotStore(session)
    return await store.list_available(provider_id, day, appointment_type, provider_kind)


@router.get(
    "/providers/{provider_id}/slots",
    response_model=list[SlotRead],
    summary="All slots of a provider in a date range",
)
async def list_provider_slots(
    provider_id: int,
    session: DbSession,
    principal: SlotReader,
    start_date: date,
    end_date: date,
    provider_kind: ProviderKind = ProviderKind.DOCTOR,
):
    store = SlotStore(session)
    return await store.list_slots(provider_id, start_date, end_date, provider_kind)


@router.post(
    "/slots",
    response_model=SlotRead,
    status_code=status.HTTP_201_CREATED,
    summary="Publish a slot",
)
async def create_slot(
    request: SlotCreate,
    session: DbSession,
    principal: SlotWriter,
):
    store = SlotStore(session)
    return await store.create(
        provider_id=request.provider_id,
        provider_kind=request.provider_kind,
        start_time=request.start_time,
        end_time=request.end_time,
        clinic_id=request.clinic_id,
        is_available=request.is_available,
        actor=principal,
    )


@router.post(
    "/slots/recurring",
    response_model=RecurringSlotResult,
    status_code=status.HTTP_201_CREATED,
    summary="Publish slots from a recurrence rule",
)
async def create_recurring_slots(
    request: RecurringSlotCreate,
    session: DbSession,
    principal: SlotWriter,
) -> RecurringSlotResult:
    store = SlotStore(session)
    slots = await store.create_recurring(
        provider_id=request.provider_id,
        rule=request.to_rule(),
        provider_kind=request.provider_kind,
        clinic_id=request.clinic_id,
        actor=principal,
    )
    return RecurringSlotResult(
        created=len(slots),
        slots=[SlotRead.model_validate(slot) for slot in slots],
    )


@router.patch(
    "/slots/{slot_id}",
    response_model=SlotRead,
    summary="Move a slot or change its availability",
)
async def update_slot(
    slot_id: int,
    request: SlotUpdate,
    session: DbSession,
    principal: SlotWriter,
):
    store = SlotStore(session)
    return await store.update(
        slot_id,
        start_time=request.start_time,
        end_time=request.end_time,
        is_available=request.is_available,
        actor=principal,
    )


@router.delete(
    "/slots/{slot_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete or retire a slot without active bookings",
)
async def delete_slot(
    slot_id: int,
    session: DbSession,
    principal: SlotWriter,
) -> Response:
    store = SlotStore(session)
    await store.delete(slot_id, actor=principal)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
