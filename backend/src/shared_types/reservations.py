"""
Shared types for reservation arbitration.

Data classes passed between the API layer and the reservation services.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional, TYPE_CHECKING

from services.reservation_errors import ReservationErrorCode

if TYPE_CHECKING:
    from models.reservation import Reservation


RESOURCE_TYPE_FACILITY = "facility"
RESOURCE_TYPE_PROGRAM = "program"


@dataclass
class ReservationRequest:
    """
    A request to book a facility or register for a program.

    Facility bookings require start_time/end_time. Program registrations
    require participant_id and must not carry an interval; session_id scopes
    the registration to one occurrence.
    """
    resource_type: str  # "facility" or "program"
    resource_id: int
    requester_id: int
    participant_id: Optional[int] = None
    session_id: Optional[int] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    idempotency_key: Optional[str] = None
    notes: Optional[str] = None
    notify_opt_in: bool = True

    @property
    def is_facility(self) -> bool:
        return self.resource_type == RESOURCE_TYPE_FACILITY

    @property
    def scope_key(self) -> str:
        """Key of the contended set this request competes in."""
        if self.is_facility:
            return f"facility:{self.resource_id}"
        return f"program:{self.resource_id}:session:{self.session_id if self.session_id is not None else '-'}"


@dataclass
class ReservationResult:
    """Outcome of CreateReservation."""
    reservation: "Reservation"
    status: str  # "confirmed" or "waitlisted"
    position: Optional[int] = None
    replayed: bool = False  # True when an existing reservation was returned

    @property
    def reservation_id(self) -> int:
        return self.reservation.id

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reservation_id": self.reservation.id,
            "status": self.status,
            "position": self.position,
            "replayed": self.replayed,
        }


@dataclass
class CancellationResult:
    """Outcome of CancelReservation."""
    reservation: "Reservation"
    already_cancelled: bool = False
    promoted_reservation_id: Optional[int] = None


@dataclass
class AvailabilityResult:
    """Outcome of CheckAvailability: ok, or the first failing reason."""
    available: bool
    reason: Optional[ReservationErrorCode] = None
    message: Optional[str] = None

    @classmethod
    def ok(cls) -> "AvailabilityResult":
        return cls(available=True)


@dataclass
class OutboxRunStats:
    """Counts from one outbox drain."""
    selected: int = 0
    delivered: int = 0
    failed: int = 0
    abandoned: int = 0
    errors: Dict[int, str] = field(default_factory=dict)
