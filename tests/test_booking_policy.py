"""Tests for the booking policy rules.

Covers:
1. Status transition table
2. Appointment-type/clinic rule, including doctor clinic inference
3. Actor rules for booking, check-in/out, cancellation and sessions
4. Calendar management rights
"""

import pytest

from clinic_booking.booking.policy import (
    ALLOWED_TRANSITIONS,
    can_book_for,
    can_cancel,
    can_check_in,
    can_check_out,
    can_edit_notes,
    can_manage_session,
    can_manage_slots,
    can_attend_session,
    can_transition,
    can_view_clinic_schedule,
    check_transition,
    resolve_booking_clinic,
    slot_supports_type,
)
from clinic_booking.models.scheduling import AppointmentStatus, TERMINAL_STATUSES
from clinic_booking.services.exceptions import (
    InvalidTransitionError,
    TypeClinicMismatchError,
)
from clinic_booking.services.rbac import Principal, Role


# ============================================================================
# Status transitions
# ============================================================================


class TestTransitions:
    """The appointment state machine."""

    def test_booked_to_in_progress(self) -> None:
        assert can_transition("booked", "in-progress") is True

    def test_in_progress_to_completed(self) -> None:
        assert can_transition("in-progress", "completed") is True

    def test_cancel_from_live_states(self) -> None:
        assert can_transition("booked", "cancelled") is True
        assert can_transition("in-progress", "cancelled") is True

    def test_no_skipping_check_in(self) -> None:
        """booked -> completed must go through in-progress."""
        assert can_transition("booked", "completed") is False

    def test_no_going_back(self) -> None:
        assert can_transition("in-progress", "booked") is False
        assert can_transition("completed", "in-progress") is False

    @pytest.mark.parametrize("terminal", sorted(s.value for s in TERMINAL_STATUSES))
    def test_terminal_states_have_no_exits(self, terminal: str) -> None:
        for target in AppointmentStatus:
            assert can_transition(terminal, target.value) is False

    def test_unknown_status_is_not_a_transition(self) -> None:
        assert can_transition("rescheduled", "booked") is False

    def test_table_covers_every_status(self) -> None:
        assert set(ALLOWED_TRANSITIONS) == set(AppointmentStatus)

    def test_check_transition_names_the_blocked_action(self) -> None:
        with pytest.raises(InvalidTransitionError) as exc_info:
            check_transition("completed", "in-progress", "check in")

        assert "check in" in exc_info.value.message
        assert "completed" in exc_info.value.message
        assert exc_info.value.code == "invalid_transition"


# ============================================================================
# Appointment type / clinic rule
# ============================================================================


class TestClinicRule:
    """In-person needs a clinic, telemedicine must not have one."""

    def test_in_person_with_clinic(self) -> None:
        decision = resolve_booking_clinic("in-person", 10, Role.PATIENT)

        assert decision.clinic_id == 10
        assert decision.inferred is False

    def test_in_person_without_clinic_rejected_for_patient(self) -> None:
        with pytest.raises(TypeClinicMismatchError):
            resolve_booking_clinic("in-person", None, Role.PATIENT)

    def test_in_person_without_clinic_rejected_for_system(self) -> None:
        with pytest.raises(TypeClinicMismatchError):
            resolve_booking_clinic("in-person", None, None)

    def test_telemedicine_without_clinic(self) -> None:
        decision = resolve_booking_clinic("telemedicine", None, Role.PATIENT)

        assert decision.clinic_id is None

    def test_telemedicine_with_clinic_rejected(self) -> None:
        with pytest.raises(TypeClinicMismatchError):
            resolve_booking_clinic("telemedicine", 10, Role.DOCTOR, [10])

    def test_doctor_clinic_inferred_from_single_membership(self) -> None:
        decision = resolve_booking_clinic("in-person", None, Role.DOCTOR, [10, 10])

        assert decision.clinic_id == 10
        assert decision.inferred is True

    def test_doctor_with_no_clinic_rejected(self) -> None:
        with pytest.raises(TypeClinicMismatchError):
            resolve_booking_clinic("in-person", None, Role.DOCTOR, [])

    def test_doctor_with_several_clinics_rejected(self) -> None:
        """Ambiguous membership is rejected rather than guessed."""
        with pytest.raises(TypeClinicMismatchError) as exc_info:
            resolve_booking_clinic("in-person", None, Role.DOCTOR, [10, 20])

        assert "2 clinics" in exc_info.value.message

    def test_slot_supports_type(self) -> None:
        assert slot_supports_type(10, "in-person") is True
        assert slot_supports_type(None, "in-person") is False
        assert slot_supports_type(None, "telemedicine") is True
        assert slot_supports_type(10, "telemedicine") is False


# ============================================================================
# Actor rules
# ============================================================================

PATIENT = Principal(id=100, role=Role.PATIENT)
OTHER_PATIENT = Principal(id=200, role=Role.PATIENT)
DOCTOR = Principal(id=1, role=Role.DOCTOR)
OTHER_DOCTOR = Principal(id=2, role=Role.DOCTOR)
NURSE = Principal(id=5, role=Role.NURSE)
CLINIC_ADMIN = Principal(id=900, role=Role.CLINIC_ADMIN)
LAB_ADMIN = Principal(id=901, role=Role.LAB_ADMIN)
PLATFORM_ADMIN = Principal(id=999, role=Role.PLATFORM_ADMIN)


class TestActorRules:
    """Who may act on an appointment."""

    def test_patients_book_for_themselves_only(self) -> None:
        assert can_book_for(PATIENT, 100, 1) is True
        assert can_book_for(OTHER_PATIENT, 100, 1) is False

    def test_doctors_book_into_their_own_calendar(self) -> None:
        assert can_book_for(DOCTOR, 100, 1) is True
        assert can_book_for(OTHER_DOCTOR, 100, 1) is False

    def test_nurse_cannot_book(self) -> None:
        assert can_book_for(NURSE, 100, 1) is False

    def test_check_in_allowed_for_parties_and_staff(self) -> None:
        assert can_check_in(PATIENT, 100, 1) is True
        assert can_check_in(DOCTOR, 100, 1) is True
        assert can_check_in(NURSE, 100, 1) is True
        assert can_check_in(CLINIC_ADMIN, 100, 1) is True
        assert can_check_in(OTHER_PATIENT, 100, 1) is False
        assert can_check_in(OTHER_DOCTOR, 100, 1) is False
        assert can_check_in(LAB_ADMIN, 100, 1) is False

    def test_patient_cannot_check_out(self) -> None:
        assert can_check_out(PATIENT, 1) is False
        assert can_check_out(DOCTOR, 1) is True
        assert can_check_out(NURSE, 1) is True

    def test_cancel(self) -> None:
        assert can_cancel(PATIENT, 100, 1) is True
        assert can_cancel(DOCTOR, 100, 1) is True
        assert can_cancel(CLINIC_ADMIN, 100, 1) is True
        assert can_cancel(PLATFORM_ADMIN, 100, 1) is True
        assert can_cancel(NURSE, 100, 1) is False
        assert can_cancel(OTHER_PATIENT, 100, 1) is False

    def test_notes_editable_by_doctor_and_staff(self) -> None:
        assert can_edit_notes(DOCTOR, 1) is True
        assert can_edit_notes(NURSE, 1) is True
        assert can_edit_notes(CLINIC_ADMIN, 1) is True
        assert can_edit_notes(OTHER_DOCTOR, 1) is False
        assert can_edit_notes(PATIENT, 1) is False

    def test_clinic_schedule_visible_to_admins(self) -> None:
        assert can_view_clinic_schedule(CLINIC_ADMIN) is True
        assert can_view_clinic_schedule(PLATFORM_ADMIN) is True
        assert can_view_clinic_schedule(NURSE) is False
        assert can_view_clinic_schedule(DOCTOR) is False
        assert can_view_clinic_schedule(PATIENT) is False

    def test_only_assigned_doctor_manages_session(self) -> None:
        assert can_manage_session(DOCTOR, 1) is True
        assert can_manage_session(OTHER_DOCTOR, 1) is False
        assert can_manage_session(PATIENT, 1) is False
        assert can_manage_session(PLATFORM_ADMIN, 1) is True

    def test_session_attendance(self) -> None:
        assert can_attend_session(PATIENT, 100, 1) is True
        assert can_attend_session(DOCTOR, 100, 1) is True
        assert can_attend_session(NURSE, 100, 1) is False


class TestCalendarManagement:
    """Who may publish and edit slots."""

    def test_doctor_manages_own_calendar(self) -> None:
        assert can_manage_slots(DOCTOR, 1, "doctor") is True
        assert can_manage_slots(DOCTOR, 2, "doctor") is False

    def test_doctor_cannot_publish_nurse_slots(self) -> None:
        assert can_manage_slots(DOCTOR, 1, "nurse") is False

    def test_nurse_manages_own_calendar(self) -> None:
        assert can_manage_slots(NURSE, 5, "nurse") is True
        assert can_manage_slots(NURSE, 1, "doctor") is False

    def test_lab_admin_manages_lab_calendars_only(self) -> None:
        assert can_manage_slots(LAB_ADMIN, 30, "lab") is True
        assert can_manage_slots(LAB_ADMIN, 1, "doctor") is False

    def test_admins_manage_any_calendar(self) -> None:
        assert can_manage_slots(CLINIC_ADMIN, 1, "doctor") is True
        assert can_manage_slots(PLATFORM_ADMIN, 30, "lab") is True

    def test_patient_cannot_manage_slots(self) -> None:
        assert can_manage_slots(PATIENT, 100, "doctor") is False
