"""Appointment endpoints: booking and the appointment lifecycle."""

from datetime import date
from typing import Annotated

from fastapi import APIRouter, Body, Depends, HTTPException, status

from clinic_booking.api.deps import DbSession, Directory, Notifier, Presence, require_permissions
from clinic_booking.models.scheduling import AppointmentStatus
from clinic_booking.schemas.appointment import (
    AppointmentCancel,
    AppointmentCheckOut,
    AppointmentCreate,
    AppointmentNotes,
    AppointmentRead,
    AppointmentReschedule,
    PaymentStatusRead,
)
from clinic_booking.services.appointments import AppointmentService
from clinic_booking.services.booking import BookingTransactor
from clinic_booking.services.rbac import Permission, Principal, Role

router = APIRouter()

Booker = Annotated[Principal, Depends(require_permissions(Permission.APPOINTMENTS_BOOK))]
Reader = Annotated[Principal, Depends(require_permissions(Permission.APPOINTMENTS_READ))]
Manager = Annotated[Principal, Depends(require_permissions(Permission.APPOINTMENTS_MANAGE))]


@router.post(
    "",
    response_model=AppointmentRead,
    status_code=status.HTTP_201_CREATED,
    summary="Book an appointment",
)
async def book_appointment(
    request: AppointmentCreate,
    session: DbSession,
    principal: Booker,
    directory: Directory,
    notifier: Notifier,
):
    """Book a slot.

    Patients book for themselves; a doctor booking into their own
    calendar may omit the clinic of an in-person appointment.
    """
    patient_id = request.patient_id
    if patient_id is None:
        if principal.role != Role.PATIENT:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail="patient_id is required",
            )
        patient_id = principal.id

    transactor = BookingTransactor(session, directory=directory, notifier=notifier)
    return await transactor.book(
        patient_id=patient_id,
        doctor_id=request.doctor_id,
        appointment_type=request.type,
        payment_method=request.payment_method,
        fee=request.fee,
        slot_id=request.slot_id,
        start_time=request.start_time,
        clinic_id=request.clinic_id,
        reason=request.reason,
        notes=request.notes,
        actor=principal,
    )


@router.get(
    "",
    response_model=list[AppointmentRead],
    summary="List appointments",
)
async def list_appointments(
    session: DbSession,
    principal: Reader,
    include_past: bool = False,
    start_date: date | None = None,
    end_date: date | None = None,
    appointment_status: AppointmentStatus | None = None,
    patient_id: int | None = None,
    doctor_id: int | None = None,
):
    """Patients see their own appointments, doctors their own calendar.

    Staff pass ``patient_id`` or ``doctor_id``.
    """
    service = AppointmentService(session)

    if principal.role == Role.PATIENT:
        return await service.list_patient_appointments(principal.id, include_past=include_past)
    if principal.role == Role.DOCTOR:
        return await service.list_doctor_appointments(
            principal.id, start_date, end_date, appointment_status
        )

    if doctor_id is not None:
        return await service.list_doctor_appointments(
            doctor_id, start_date, end_date, appointment_status
        )
    if patient_id is not None:
        return await service.list_patient_appointments(patient_id, include_past=include_past)

    raise HTTPException(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        detail="patient_id or doctor_id is required",
    )


@router.get(
    "/clinic",
    response_model=list[AppointmentRead],
    summary="List a clinic's appointments",
)
async def list_clinic_appointments(
    clinic_id: int,
    session: DbSession,
    principal: Reader,
    start_date: date | None = None,
    end_date: date | None = None,
    appointment_status: AppointmentStatus | None = None,
):
    """Clinic and platform admins see every appointment at a clinic, latest first."""
    service = AppointmentService(session)
    return await service.list_clinic_appointments(
        clinic_id, start_date, end_date, appointment_status, actor=principal
    )


@router.get(
    "/{appointment_id}",
    response_model=AppointmentRead,
    summary="Get an appointment",
)
async def get_appointment(appointment_id: int, session: DbSession, principal: Reader):
    service = AppointmentService(session)
    return await service.get_appointment(appointment_id, actor=principal)


@router.get(
    "/{appointment_id}/payment",
    response_model=PaymentStatusRead,
    summary="Payment status of an appointment",
)
async def get_payment_status(appointment_id: int, session: DbSession, principal: Reader):
    service = AppointmentService(session)
    summary = await service.get_payment_status(appointment_id, actor=principal)
    return PaymentStatusRead.model_validate(summary)


@router.post(
    "/{appointment_id}/check-in",
    response_model=AppointmentRead,
    summary="Check in (booked -> in-progress)",
)
async def check_in(appointment_id: int, session: DbSession, principal: Manager):
    service = AppointmentService(session)
    return await service.check_in(appointment_id, actor=principal)


@router.post(
    "/{appointment_id}/check-out",
    response_model=AppointmentRead,
    summary="Check out (in-progress -> completed)",
)
async def check_out(
    appointment_id: int,
    session: DbSession,
    principal: Manager,
    request: Annotated[AppointmentCheckOut | None, Body()] = None,
):
    service = AppointmentService(session)
    return await service.check_out(
        appointment_id,
        actor=principal,
        notes=request.notes if request else None,
    )


@router.put(
    "/{appointment_id}/notes",
    response_model=AppointmentRead,
    summary="Replace an appointment's clinical notes",
)
async def update_notes(
    appointment_id: int,
    request: AppointmentNotes,
    session: DbSession,
    principal: Manager,
):
    """The assigned doctor or clinic staff may edit notes in any status."""
    service = AppointmentService(session)
    return await service.update_notes(appointment_id, request.notes, actor=principal)


@router.post(
    "/{appointment_id}/cancel",
    response_model=AppointmentRead,
    summary="Cancel an appointment",
)
async def cancel_appointment(
    appointment_id: int,
    session: DbSession,
    principal: Manager,
    notifier: Notifier,
    presence: Presence,
    request: Annotated[AppointmentCancel | None, Body()] = None,
):
    """Cancel, release the slot and refund balance payments."""
    service = AppointmentService(session, notifier=notifier, presence=presence)
    return await service.cancel(
        appointment_id,
        actor=principal,
        reason=request.reason if request else None,
    )


@router.post(
    "/{appointment_id}/reschedule",
    response_model=AppointmentRead,
    status_code=status.HTTP_201_CREATED,
    summary="Move an appointment to another slot",
)
async def reschedule_appointment(
    appointment_id: int,
    request: AppointmentReschedule,
    session: DbSession,
    principal: Manager,
    directory: Directory,
    notifier: Notifier,
    presence: Presence,
):
    """Cancel the appointment and book its replacement in one step.

    Returns the new appointment.
    """
    service = AppointmentService(
        session, directory=directory, notifier=notifier, presence=presence
    )
    return await service.reschedule(
        appointment_id,
        new_slot_id=request.new_slot_id,
        new_start_time=request.new_start_time,
        actor=principal,
        clinic_id=request.clinic_id,
        fee=request.fee,
        payment_method=request.payment_method,
        reason=request.reason,
    )
