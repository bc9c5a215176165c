# Package initialization
# Import all models to ensure relationships are properly established
from .member import Member
from .participant import Participant
from .facility import Facility
from .availability_window import AvailabilityWindow
from .facility_closure import FacilityClosure
from .program import Program
from .program_session import ProgramSession
from .reservation import Reservation
from .waitlist_entry import WaitlistEntry
from .outbox_entry import OutboxEntry
from .reservation_reminder import ReservationReminder

__all__ = [
    "Member",
    "Participant",
    "Facility",
    "AvailabilityWindow",
    "FacilityClosure",
    "Program",
    "ProgramSession",
    "Reservation",
    "WaitlistEntry",
    "OutboxEntry",
    "ReservationReminder",
]
