"""Telemedicine endpoints: session lifecycle and presence."""

from typing import Annotated

from fastapi import APIRouter, Body, Depends

from clinic_booking.api.deps import DbSession, Presence, require_permissions
from clinic_booking.schemas.telemedicine import (
    ParticipantRead,
    PresenceRead,
    SessionEnd,
    TelemedicineSessionRead,
)
from clinic_booking.services.rbac import Permission, Principal
from clinic_booking.services.telemedicine import TelemedicineService

router = APIRouter()

SessionManager = Annotated[
    Principal, Depends(require_permissions(Permission.TELEMEDICINE_MANAGE))
]
Attendee = Annotated[Principal, Depends(require_permissions(Permission.TELEMEDICINE_JOIN))]
Reader = Annotated[Principal, Depends(require_permissions(Permission.APPOINTMENTS_READ))]


def _session_read(telemedicine, service: TelemedicineService) -> TelemedicineSessionRead:
    return TelemedicineSessionRead(
        appointment_id=telemedicine.appointment_id,
        status=telemedicine.status,
        started_at=telemedicine.started_at,
        ended_at=telemedicine.ended_at,
        summary=telemedicine.summary,
        participants=[
            ParticipantRead.model_validate(p)
            for p in service.participants(telemedicine.appointment_id)
        ],
    )


@router.get("/{appointment_id}", response_model=TelemedicineSessionRead)
async def get_session(
    appointment_id: int,
    session: DbSession,
    principal: Reader,
    presence: Presence,
) -> TelemedicineSessionRead:
    service = TelemedicineService(session, presence)
    telemedicine = await service.get_session(appointment_id, actor=principal)
    return _session_read(telemedicine, service)


@router.post("/{appointment_id}/start", response_model=TelemedicineSessionRead)
async def start_session(
    appointment_id: int,
    session: DbSession,
    principal: SessionManager,
    presence: Presence,
) -> TelemedicineSessionRead:
    service = TelemedicineService(session, presence)
    telemedicine = await service.start(appointment_id, actor=principal)
    return _session_read(telemedicine, service)


@router.post("/{appointment_id}/end", response_model=TelemedicineSessionRead)
async def end_session(
    appointment_id: int,
    session: DbSession,
    principal: SessionManager,
    presence: Presence,
    request: Annotated[SessionEnd | None, Body()] = None,
) -> TelemedicineSessionRead:
    service = TelemedicineService(session, presence)
    telemedicine = await service.end(
        appointment_id,
        summary=request.summary if request else None,
        actor=principal,
        notes=request.notes if request else None,
    )
    return _session_read(telemedicine, service)


@router.post("/{appointment_id}/join", response_model=PresenceRead)
async def join_session(
    appointment_id: int,
    session: DbSession,
    principal: Attendee,
    presence: Presence,
) -> PresenceRead:
    service = TelemedicineService(session, presence)
    participants = await service.join(appointment_id, principal)
    return PresenceRead(
        appointment_id=appointment_id,
        participants=[ParticipantRead.model_validate(p) for p in participants],
    )


@router.post("/{appointment_id}/leave", response_model=PresenceRead)
async def leave_session(
    appointment_id: int,
    session: DbSession,
    principal: Attendee,
    presence: Presence,
) -> PresenceRead:
    service = TelemedicineService(session, presence)
    participants = await service.leave(appointment_id, principal)
    return PresenceRead(
        appointment_id=appointment_id,
        participants=[ParticipantRead.model_validate(p) for p in participants],
    )
