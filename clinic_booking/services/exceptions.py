"""Domain errors raised by the scheduling, booking and ledger services.

Every error aborts its atomic unit. The ``code`` is stable and is what
API clients branch on; ``status_code`` is the HTTP mapping used by the
application's exception handler.
"""


class SchedulingError(Exception):
    """Base class for domain errors."""

    code = "scheduling_error"
    status_code = 400

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.__class__.__doc__ or self.code)

    @property
    def message(self) -> str:
        return str(self)


class InvalidIntervalError(SchedulingError):
    """Slot end must be strictly after its start."""

    code = "invalid_interval"
    status_code = 422


class OverlapError(SchedulingError):
    """Interval overlaps an existing slot of the same provider."""

    code = "slot_overlap"
    status_code = 409


class SlotUnavailableError(SchedulingError):
    """This time slot is no longer available."""

    code = "slot_unavailable"
    status_code = 409


class SlotInUseError(SchedulingError):
    """Slot is bound to an active appointment."""

    code = "slot_in_use"
    status_code = 409


class InsufficientFundsError(SchedulingError):
    """Balance is insufficient for this payment."""

    code = "insufficient_funds"
    status_code = 402

    def __init__(self, required=None, available=None, message: str | None = None) -> None:
        self.required = required
        self.available = available
        if message is None and required is not None:
            message = f"Insufficient balance. Required: {required}, available: {available}"
        super().__init__(message)


class InvalidTransitionError(SchedulingError):
    """Transition is not allowed from the current status."""

    code = "invalid_transition"
    status_code = 409


class TypeClinicMismatchError(SchedulingError):
    """Clinic does not match the appointment type."""

    code = "type_clinic_mismatch"
    status_code = 422


class NotFoundError(SchedulingError):
    """Requested record was not found."""

    code = "not_found"
    status_code = 404


class InvalidAmountError(SchedulingError):
    """Amount must be a positive value with at most two decimals."""

    code = "invalid_amount"
    status_code = 422


class NotAuthorizedError(SchedulingError):
    """Caller is not allowed to perform this action."""

    code = "not_authorized"
    status_code = 403


class ConcurrencyConflictError(SchedulingError):
    """Record was modified concurrently; retry the whole operation."""

    code = "concurrency_conflict"
    status_code = 409
