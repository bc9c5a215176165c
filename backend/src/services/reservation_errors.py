"""
Typed errors raised by the reservation services.

Every error carries a stable ``code`` (returned to API clients as ``type``),
a ``category`` and the HTTP status the API layer maps it to. Capacity is not
an error: a full program routes the request to the waitlist.
"""

from enum import Enum
from typing import Optional


class ErrorCategory(str, Enum):
    VALIDATION = "validation"
    AVAILABILITY = "availability"
    AUTHORIZATION = "authorization"
    NOT_FOUND = "not_found"
    CONCURRENCY = "concurrency"


class ReservationErrorCode(str, Enum):
    RESOURCE_INACTIVE = "resource_inactive"
    DURATION_OUT_OF_BOUNDS = "duration_out_of_bounds"
    TOO_FAR_IN_ADVANCE = "too_far_in_advance"
    IN_THE_PAST = "in_the_past"
    OUT_OF_WINDOW = "out_of_window"
    PARTIALLY_OUT_OF_WINDOW = "partially_out_of_window"
    DURING_CLOSURE = "during_closure"
    CONFLICT = "conflict"
    CANCELLATION_CUTOFF = "cancellation_cutoff"
    INVALID_REQUEST = "invalid_request"
    INVALID_PARTICIPANT = "invalid_participant"
    NOT_OWNER = "not_owner"
    NOT_FOUND = "not_found"
    BUSY = "busy"


class ReservationError(Exception):
    """Base class for all reservation failures."""

    code: ReservationErrorCode = ReservationErrorCode.INVALID_REQUEST
    category: ErrorCategory = ErrorCategory.VALIDATION
    status_code: int = 400
    default_message: str = "Reservation request is invalid"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    @property
    def retryable(self) -> bool:
        return self.category == ErrorCategory.CONCURRENCY

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code.value!r}, message={self.message!r})"


# Validation: rejected synchronously, no state change

class ResourceInactiveError(ReservationError):
    code = ReservationErrorCode.RESOURCE_INACTIVE
    default_message = "Resource is not active"


class DurationOutOfBoundsError(ReservationError):
    code = ReservationErrorCode.DURATION_OUT_OF_BOUNDS
    default_message = "Booking duration is outside the allowed range"


class TooFarInAdvanceError(ReservationError):
    code = ReservationErrorCode.TOO_FAR_IN_ADVANCE
    default_message = "Booking starts beyond the advance booking horizon"


class InThePastError(ReservationError):
    code = ReservationErrorCode.IN_THE_PAST
    default_message = "Cannot book a time in the past"


class CancellationCutoffError(ReservationError):
    code = ReservationErrorCode.CANCELLATION_CUTOFF
    default_message = "Cancellation cutoff has passed"


class InvalidRequestError(ReservationError):
    code = ReservationErrorCode.INVALID_REQUEST


# Availability: rejected synchronously

class OutOfWindowError(ReservationError):
    code = ReservationErrorCode.OUT_OF_WINDOW
    category = ErrorCategory.AVAILABILITY
    status_code = 409
    default_message = "Facility is not available at the requested time"


class PartiallyOutOfWindowError(ReservationError):
    code = ReservationErrorCode.PARTIALLY_OUT_OF_WINDOW
    category = ErrorCategory.AVAILABILITY
    status_code = 409
    default_message = "Requested time is outside operating hours"


class DuringClosureError(ReservationError):
    code = ReservationErrorCode.DURING_CLOSURE
    category = ErrorCategory.AVAILABILITY
    status_code = 409
    default_message = "Facility is closed during the requested time"


class ConflictError(ReservationError):
    code = ReservationErrorCode.CONFLICT
    category = ErrorCategory.AVAILABILITY
    status_code = 409
    default_message = "Time slot conflicts with an existing booking"


# Authorization (delegated ownership checks)

class InvalidParticipantError(ReservationError):
    code = ReservationErrorCode.INVALID_PARTICIPANT
    category = ErrorCategory.AUTHORIZATION
    default_message = "Participant does not exist or is inactive"


class NotOwnerError(ReservationError):
    code = ReservationErrorCode.NOT_OWNER
    category = ErrorCategory.AUTHORIZATION
    status_code = 403
    default_message = "Requester does not own this reservation"


class NotFoundError(ReservationError):
    code = ReservationErrorCode.NOT_FOUND
    category = ErrorCategory.NOT_FOUND
    status_code = 404
    default_message = "Not found"


# Concurrency: the caller should retry the whole request

class BusyError(ReservationError):
    code = ReservationErrorCode.BUSY
    category = ErrorCategory.CONCURRENCY
    status_code = 503
    default_message = "Resource is busy, please try again"
