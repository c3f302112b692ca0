"""Booking policy enforcement.

Pure rules shared by the booking transactor and the appointment state
machine: the legal status transitions, the appointment-type/clinic rule,
and which principals may act on a given appointment or calendar. Nothing
here touches the database.
"""

from dataclasses import dataclass

from clinic_booking.models.scheduling import (
    AppointmentStatus,
    AppointmentType,
    ProviderKind,
)
from clinic_booking.services.exceptions import (
    InvalidTransitionError,
    TypeClinicMismatchError,
)
from clinic_booking.services.rbac import STAFF_ROLES, Principal, Role

# Legal status moves. Reschedule is not a status: it cancels the old
# appointment and books a new one in the same unit.
ALLOWED_TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    AppointmentStatus.BOOKED: frozenset(
        {AppointmentStatus.IN_PROGRESS, AppointmentStatus.CANCELLED}
    ),
    AppointmentStatus.IN_PROGRESS: frozenset(
        {AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED}
    ),
    AppointmentStatus.COMPLETED: frozenset(),
    AppointmentStatus.CANCELLED: frozenset(),
}

# Statuses from which an appointment may be rescheduled
RESCHEDULABLE_STATUSES = frozenset({AppointmentStatus.BOOKED, AppointmentStatus.IN_PROGRESS})

# Roles that may cancel or reschedule any appointment
CANCEL_ADMIN_ROLES = frozenset({Role.CLINIC_ADMIN, Role.PLATFORM_ADMIN})


def can_transition(current: str, target: str) -> bool:
    """Check whether ``current -> target`` is a legal status move.

    Examples:
        >>> can_transition("booked", "in-progress")
        True
        >>> can_transition("completed", "cancelled")
        False
    """
    try:
        current_status = AppointmentStatus(current)
        target_status = AppointmentStatus(target)
    except ValueError:
        return False
    return target_status in ALLOWED_TRANSITIONS[current_status]


def check_transition(current: str, target: str, action: str) -> None:
    """Raise ``InvalidTransitionError`` unless ``current -> target`` is legal."""
    if not can_transition(current, target):
        raise InvalidTransitionError(
            f"Cannot {action} an appointment in '{AppointmentStatus(current).value}' status"
        )


@dataclass(frozen=True)
class ClinicDecision:
    """Outcome of the type/clinic rule for a booking request.

    Attributes:
        clinic_id: Clinic the appointment will be bound to (None for telemedicine)
        inferred: True when the clinic came from the directory, not the request
    """

    clinic_id: int | None
    inferred: bool = False


def resolve_booking_clinic(
    appointment_type: str,
    clinic_id: int | None,
    actor_role: Role | None,
    doctor_clinics: list[int] | None = None,
) -> ClinicDecision:
    """Apply the appointment-type/clinic rule.

    In-person appointments need a clinic. A doctor booking without one
    gets the single clinic the directory lists for them; zero or several
    candidates are rejected rather than guessed. Telemedicine must not
    carry a clinic.

    Args:
        appointment_type: "in-person" or "telemedicine"
        clinic_id: Clinic supplied by the caller, if any
        actor_role: Role of the caller (None for system bookings)
        doctor_clinics: Directory membership of the doctor (used for inference)

    Returns:
        ClinicDecision with the clinic to bind

    Raises:
        TypeClinicMismatchError: If the rule is violated or inference is ambiguous
    """
    apt_type = AppointmentType(appointment_type)

    if apt_type == AppointmentType.TELEMEDICINE:
        if clinic_id is not None:
            raise TypeClinicMismatchError(
                "Telemedicine appointments cannot be attached to a clinic"
            )
        return ClinicDecision(clinic_id=None)

    if clinic_id is not None:
        return ClinicDecision(clinic_id=clinic_id)

    if actor_role != Role.DOCTOR:
        raise TypeClinicMismatchError("Clinic ID is required for in-person appointments")

    candidates = sorted(set(doctor_clinics or []))
    if not candidates:
        raise TypeClinicMismatchError(
            "No clinic found for doctor; in-person appointments need a clinic"
        )
    if len(candidates) > 1:
        raise TypeClinicMismatchError(
            f"Doctor belongs to {len(candidates)} clinics; clinic ID must be given explicitly"
        )
    return ClinicDecision(clinic_id=candidates[0], inferred=True)


def slot_supports_type(slot_clinic_id: int | None, appointment_type: str) -> bool:
    """In-person needs a clinic-bound slot; telemedicine a clinic-less one."""
    if AppointmentType(appointment_type) == AppointmentType.TELEMEDICINE:
        return slot_clinic_id is None
    return slot_clinic_id is not None


# ---------------------------------------------------------------------------
# Actor rules
# ---------------------------------------------------------------------------


def can_book_for(principal: Principal, patient_id: int, doctor_id: int) -> bool:
    """Patients book for themselves, doctors into their own calendar."""
    if principal.role == Role.PATIENT:
        return principal.id == patient_id
    if principal.role == Role.DOCTOR:
        return principal.id == doctor_id
    return principal.role in CANCEL_ADMIN_ROLES


def can_view_appointment(principal: Principal, patient_id: int, doctor_id: int) -> bool:
    if principal.role == Role.PATIENT:
        return principal.id == patient_id
    if principal.role == Role.DOCTOR:
        return principal.id == doctor_id
    return principal.role in STAFF_ROLES


def can_check_in(principal: Principal, patient_id: int, doctor_id: int) -> bool:
    """The patient, the assigned doctor, or clinic staff."""
    if principal.role == Role.PATIENT:
        return principal.id == patient_id
    if principal.role == Role.DOCTOR:
        return principal.id == doctor_id
    return principal.role in STAFF_ROLES


def can_check_out(principal: Principal, doctor_id: int) -> bool:
    """The assigned doctor or clinic staff."""
    if principal.role == Role.DOCTOR:
        return principal.id == doctor_id
    return principal.role in STAFF_ROLES


def can_cancel(principal: Principal, patient_id: int, doctor_id: int) -> bool:
    """The patient, the assigned doctor, or a clinic/platform admin."""
    if principal.role == Role.PATIENT:
        return principal.id == patient_id
    if principal.role == Role.DOCTOR:
        return principal.id == doctor_id
    return principal.role in CANCEL_ADMIN_ROLES


def can_edit_notes(principal: Principal, doctor_id: int) -> bool:
    """The assigned doctor or clinic staff. Patients never edit notes."""
    if principal.role == Role.DOCTOR:
        return principal.id == doctor_id
    return principal.role in STAFF_ROLES


def can_view_clinic_schedule(principal: Principal) -> bool:
    return principal.role in CANCEL_ADMIN_ROLES


def can_manage_session(principal: Principal, doctor_id: int) -> bool:
    """Only the assigned doctor starts or ends a telemedicine session."""
    if principal.role == Role.DOCTOR:
        return principal.id == doctor_id
    return principal.role == Role.PLATFORM_ADMIN


def can_attend_session(principal: Principal, patient_id: int, doctor_id: int) -> bool:
    if principal.role == Role.PATIENT:
        return principal.id == patient_id
    if principal.role == Role.DOCTOR:
        return principal.id == doctor_id
    return False


# Provider kinds each self-managing role may publish for
_SELF_MANAGED_KINDS: dict[Role, ProviderKind] = {
    Role.DOCTOR: ProviderKind.DOCTOR,
    Role.NURSE: ProviderKind.NURSE,
}


def can_manage_slots(principal: Principal, provider_id: int, provider_kind: str) -> bool:
    """Providers manage their own calendar; schedule admins manage any.

    Lab calendars are managed by lab admins.
    """
    kind = ProviderKind(provider_kind)
    if principal.role in (Role.CLINIC_ADMIN, Role.PLATFORM_ADMIN):
        return True
    if principal.role == Role.LAB_ADMIN:
        return kind == ProviderKind.LAB
    own_kind = _SELF_MANAGED_KINDS.get(principal.role)
    return own_kind == kind and principal.id == provider_id
