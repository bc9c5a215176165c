"""
Availability service for facility bookings.

Answers "can this interval be booked?" (CheckAvailability) and "what can be
booked?" (ListAvailableSlots) from the facility's booking rules, weekly
windows, closures and confirmed bookings. The arbiter runs the same checks
under the facility lock before committing a booking.
"""

import logging
from datetime import date, datetime, time, timedelta
from typing import List, Optional

from sqlalchemy.orm import Session

from core.constants import MAX_SLOT_QUERY_DAYS
from models.availability_window import AvailabilityWindow
from models.facility import Facility
from services.conflict_service import ConflictService
from services.reservation_errors import (
    ConflictError,
    DuringClosureError,
    DurationOutOfBoundsError,
    InThePastError,
    InvalidRequestError,
    NotFoundError,
    OutOfWindowError,
    PartiallyOutOfWindowError,
    ReservationError,
    ReservationErrorCode,
    ResourceInactiveError,
    TooFarInAdvanceError,
)
from services.time_window_service import SlotSequence, TimeWindowService
from shared_types.reservations import AvailabilityResult
from utils.datetime_utils import LOCAL_TZ, ensure_utc, format_datetime, utc_now

logger = logging.getLogger(__name__)


class AvailabilityService:
    """
    Service class for facility availability checks.

    Check order (first failure wins): inactive facility, duration bounds,
    advance-booking horizon, past start, weekly windows, closures, conflicts
    with confirmed bookings (buffer-expanded).
    """

    @staticmethod
    def get_facility(db: Session, facility_id: int, for_update: bool = False) -> Facility:
        """
        Load a facility, optionally taking a row lock.

        Raises:
            NotFoundError: If the facility does not exist
        """
        query = db.query(Facility).filter(Facility.id == facility_id)
        if for_update:
            query = query.with_for_update()
        facility = query.first()
        if facility is None:
            raise NotFoundError(f"Facility {facility_id} not found")
        return facility

    @staticmethod
    def get_windows(db: Session, facility_id: int) -> List[AvailabilityWindow]:
        return db.query(AvailabilityWindow).filter(
            AvailabilityWindow.facility_id == facility_id
        ).order_by(AvailabilityWindow.day_of_week, AvailabilityWindow.start_time).all()

    @staticmethod
    def validate_booking_rules(facility: Facility, start: datetime, end: datetime, now: datetime) -> None:
        """
        Validate the request against the facility's static booking rules.

        Pure function - no database queries.

        Raises:
            ResourceInactiveError, InvalidRequestError, DurationOutOfBoundsError,
            TooFarInAdvanceError, InThePastError
        """
        if not facility.is_active:
            raise ResourceInactiveError(f"Facility '{facility.name}' is not active")

        if end <= start:
            raise InvalidRequestError("End time must be after start time")

        duration_minutes = (end - start).total_seconds() / 60
        if duration_minutes < facility.min_booking_minutes:
            raise DurationOutOfBoundsError(
                f"Minimum booking duration is {facility.min_booking_minutes} minutes"
            )
        if duration_minutes > facility.max_booking_minutes:
            raise DurationOutOfBoundsError(
                f"Maximum booking duration is {facility.max_booking_minutes} minutes"
            )

        horizon = now + timedelta(days=facility.advance_booking_days)
        if start > horizon:
            raise TooFarInAdvanceError(
                f"Cannot book more than {facility.advance_booking_days} days in advance"
            )

        if start <= now:
            raise InThePastError()

    @staticmethod
    def validate_booking(
        db: Session,
        facility: Facility,
        start: datetime,
        end: datetime,
        now: Optional[datetime] = None,
        exclude_reservation_id: Optional[int] = None
    ) -> None:
        """
        Run every availability check for a facility booking.

        Args:
            db: Database session
            facility: Facility being booked
            start: Requested start (aware)
            end: Requested end (aware, exclusive)
            now: Current time (defaults to utc_now())
            exclude_reservation_id: Booking to ignore in the conflict check

        Raises:
            ReservationError: The first failing check, as a typed error
        """
        now = now or utc_now()
        start = ensure_utc(start)  # type: ignore[assignment]
        end = ensure_utc(end)  # type: ignore[assignment]

        AvailabilityService.validate_booking_rules(facility, start, end, now)

        windows = AvailabilityService.get_windows(db, facility.id)
        verdict = TimeWindowService.evaluate_interval(windows, start, end, LOCAL_TZ)
        if verdict == ReservationErrorCode.OUT_OF_WINDOW:
            raise OutOfWindowError(
                f"Facility is not available on {format_datetime(start)}"
            )
        if verdict == ReservationErrorCode.PARTIALLY_OUT_OF_WINDOW:
            raise PartiallyOutOfWindowError("Requested time is outside operating hours")

        if ConflictService.has_closure_conflict(db, facility.id, start, end):
            raise DuringClosureError()

        if ConflictService.has_booking_conflict(
            db, facility.id, start, end, facility.buffer_minutes, exclude_reservation_id
        ):
            raise ConflictError()

    @staticmethod
    def check_availability(
        db: Session,
        facility_id: int,
        start: datetime,
        end: datetime,
        now: Optional[datetime] = None
    ) -> AvailabilityResult:
        """
        Check whether an interval is bookable, without reserving it.

        Used by pre-submit checks. The answer can change before the booking is
        submitted; the arbiter re-runs the checks under lock.

        Args:
            db: Database session
            facility_id: Facility to check
            start: Requested start
            end: Requested end (exclusive)
            now: Current time (defaults to utc_now())

        Returns:
            AvailabilityResult with available=True, or the first failing reason

        Raises:
            NotFoundError: If the facility does not exist
        """
        facility = AvailabilityService.get_facility(db, facility_id)
        try:
            AvailabilityService.validate_booking(db, facility, start, end, now)
        except ReservationError as e:
            return AvailabilityResult(available=False, reason=e.code, message=e.message)
        return AvailabilityResult.ok()

    @staticmethod
    def list_available_slots(
        db: Session,
        facility_id: int,
        start_date: date,
        end_date: date,
        duration_minutes: Optional[int] = None,
        now: Optional[datetime] = None
    ) -> SlotSequence:
        """
        Enumerate bookable slots over an inclusive local date range.

        Slots step by the facility's minimum booking duration within each
        day's windows, start in the future and within the advance-booking
        horizon, and avoid closures and buffer-expanded confirmed bookings.
        Bookings and closures are fetched once up front; the returned
        sequence is evaluated lazily and can be iterated more than once.

        Args:
            db: Database session
            facility_id: Facility to list
            start_date: First local date
            end_date: Last local date (inclusive)
            duration_minutes: Slot length (defaults to the minimum booking duration)
            now: Current time (defaults to utc_now())

        Returns:
            SlotSequence of (start, end) UTC datetimes

        Raises:
            NotFoundError, ResourceInactiveError, InvalidRequestError,
            DurationOutOfBoundsError
        """
        now = now or utc_now()
        facility = AvailabilityService.get_facility(db, facility_id)
        if not facility.is_active:
            raise ResourceInactiveError(f"Facility '{facility.name}' is not active")

        if end_date < start_date:
            raise InvalidRequestError("end_date must not be before start_date")
        if (end_date - start_date).days + 1 > MAX_SLOT_QUERY_DAYS:
            raise InvalidRequestError(f"Date range cannot exceed {MAX_SLOT_QUERY_DAYS} days")

        duration = duration_minutes if duration_minutes is not None else facility.min_booking_minutes
        if duration < facility.min_booking_minutes or duration > facility.max_booking_minutes:
            raise DurationOutOfBoundsError(
                f"Duration must be between {facility.min_booking_minutes} and "
                f"{facility.max_booking_minutes} minutes"
            )

        range_start = datetime.combine(start_date, time.min, tzinfo=LOCAL_TZ)
        range_end = datetime.combine(end_date + timedelta(days=1), time.min, tzinfo=LOCAL_TZ)
        buffer = timedelta(minutes=facility.buffer_minutes)

        windows = AvailabilityService.get_windows(db, facility.id)
        bookings = ConflictService.bookings_in_range(db, facility.id, range_start - buffer, range_end + buffer)
        closures = ConflictService.closures_in_range(db, facility.id, range_start, range_end)
        buffer_minutes = facility.buffer_minutes

        def is_taken(slot_start: datetime, slot_end: datetime) -> bool:
            return ConflictService.slot_conflicts(slot_start, slot_end, bookings, closures, buffer_minutes)

        return SlotSequence(
            windows=windows,
            start_date=start_date,
            end_date=end_date,
            duration=timedelta(minutes=duration),
            step=timedelta(minutes=facility.min_booking_minutes),
            not_before=now,
            not_after=now + timedelta(days=facility.advance_booking_days),
            tz=LOCAL_TZ,
            exclude=is_taken,
        )
