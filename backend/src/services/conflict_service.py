"""
Conflict detection for facility bookings.

Bookings are half-open [start, end) intervals. The facility buffer applies
between bookings: a candidate conflicts with a confirmed booking when the
candidate expanded by the buffer on both sides overlaps it. Closures are
checked against the unexpanded candidate.
"""

import logging
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy.orm import Session

from models.facility_closure import FacilityClosure
from models.reservation import RESERVATION_KIND_FACILITY, STATUS_CONFIRMED, Reservation

logger = logging.getLogger(__name__)


class ConflictService:
    """Service for overlap checks against bookings and closures."""

    @staticmethod
    def intervals_overlap(start1: datetime, end1: datetime, start2: datetime, end2: datetime) -> bool:
        """Check if two half-open intervals overlap (touching is not overlapping)."""
        return start1 < end2 and end1 > start2

    @staticmethod
    def expand(start: datetime, end: datetime, buffer_minutes: int) -> tuple[datetime, datetime]:
        """Expand an interval by the buffer on both sides."""
        buffer = timedelta(minutes=buffer_minutes)
        return start - buffer, end + buffer

    @staticmethod
    def find_booking_conflicts(
        db: Session,
        facility_id: int,
        start: datetime,
        end: datetime,
        buffer_minutes: int = 0,
        exclude_reservation_id: Optional[int] = None
    ) -> List[Reservation]:
        """
        Confirmed bookings overlapping [start - buffer, end + buffer).

        Args:
            db: Database session
            facility_id: Facility to check
            start: Candidate start
            end: Candidate end
            buffer_minutes: Facility buffer
            exclude_reservation_id: Booking to ignore (e.g. the one being changed)

        Returns:
            Conflicting confirmed reservations (empty if none)
        """
        expanded_start, expanded_end = ConflictService.expand(start, end, buffer_minutes)
        query = db.query(Reservation).filter(
            Reservation.kind == RESERVATION_KIND_FACILITY,
            Reservation.facility_id == facility_id,
            Reservation.status == STATUS_CONFIRMED,
            Reservation.start_time < expanded_end,
            Reservation.end_time > expanded_start,
        )
        if exclude_reservation_id is not None:
            query = query.filter(Reservation.id != exclude_reservation_id)
        return query.all()

    @staticmethod
    def has_booking_conflict(
        db: Session,
        facility_id: int,
        start: datetime,
        end: datetime,
        buffer_minutes: int = 0,
        exclude_reservation_id: Optional[int] = None
    ) -> bool:
        """Whether any confirmed booking overlaps the buffer-expanded candidate."""
        return bool(ConflictService.find_booking_conflicts(
            db, facility_id, start, end, buffer_minutes, exclude_reservation_id
        ))

    @staticmethod
    def has_closure_conflict(db: Session, facility_id: int, start: datetime, end: datetime) -> bool:
        """Whether any closure overlaps the (unexpanded) candidate."""
        closure = db.query(FacilityClosure.id).filter(
            FacilityClosure.facility_id == facility_id,
            FacilityClosure.starts_at < end,
            FacilityClosure.ends_at > start,
        ).first()
        return closure is not None

    @staticmethod
    def bookings_in_range(db: Session, facility_id: int, start: datetime, end: datetime) -> List[Reservation]:
        """Confirmed bookings overlapping [start, end), for in-memory slot filtering."""
        return db.query(Reservation).filter(
            Reservation.kind == RESERVATION_KIND_FACILITY,
            Reservation.facility_id == facility_id,
            Reservation.status == STATUS_CONFIRMED,
            Reservation.start_time < end,
            Reservation.end_time > start,
        ).order_by(Reservation.start_time).all()

    @staticmethod
    def closures_in_range(db: Session, facility_id: int, start: datetime, end: datetime) -> List[FacilityClosure]:
        """Closures overlapping [start, end)."""
        return db.query(FacilityClosure).filter(
            FacilityClosure.facility_id == facility_id,
            FacilityClosure.starts_at < end,
            FacilityClosure.ends_at > start,
        ).order_by(FacilityClosure.starts_at).all()

    @staticmethod
    def slot_conflicts(
        start: datetime,
        end: datetime,
        bookings: List[Reservation],
        closures: List[FacilityClosure],
        buffer_minutes: int = 0
    ) -> bool:
        """
        Check a slot against pre-fetched bookings and closures.

        Pure function - no database queries. Uses the same rules as the
        database-backed checks.
        """
        for closure in closures:
            if ConflictService.intervals_overlap(start, end, closure.starts_at, closure.ends_at):
                return True

        expanded_start, expanded_end = ConflictService.expand(start, end, buffer_minutes)
        for booking in bookings:
            if booking.start_time is None or booking.end_time is None:
                continue
            if ConflictService.intervals_overlap(expanded_start, expanded_end, booking.start_time, booking.end_time):
                return True
        return False
