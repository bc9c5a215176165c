"""
Reservation arbitration.

Decides, under concurrent demand, whether a request becomes a confirmed
reservation, a waitlisted one, or a typed rejection, and writes the
decision together with its outbox notification in one transaction.

Every decision for a contended key (one facility, or one program session)
runs while holding:
- the in-process keyed lock for that key, and
- a database row lock on the facility / program / session row.
The keyed lock serializes requests inside this process (and is the only
serialization on SQLite); the row lock serializes across processes on
PostgreSQL. Capacity counts and conflict checks are read only while both
are held.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional, TypeVar

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from core.constants import ARBITRATION_MAX_ATTEMPTS
from core.locks import KeyedLockRegistry, LockTimeoutError
from models.outbox_entry import OUTBOX_TYPE_CONFIRMATION, OUTBOX_TYPE_WAITLISTED
from models.reservation import (
    RESERVATION_KIND_FACILITY,
    RESERVATION_KIND_PROGRAM,
    STATUS_CANCELLED,
    STATUS_CONFIRMED,
    STATUS_WAITLISTED,
    Reservation,
)
from models.waitlist_entry import WaitlistEntry
from services.availability_service import AvailabilityService
from services.capacity_service import CapacityService
from services.outbox_service import OutboxService
from services.participant_service import ParticipantService
from services.reservation_errors import (
    BusyError,
    CancellationCutoffError,
    InvalidRequestError,
    NotFoundError,
    NotOwnerError,
)
from services.waitlist_service import WaitlistService
from shared_types.reservations import (
    RESOURCE_TYPE_FACILITY,
    RESOURCE_TYPE_PROGRAM,
    CancellationResult,
    ReservationRequest,
    ReservationResult,
)
from utils.datetime_utils import ensure_utc, utc_now

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ReservationService:
    """
    Reservation arbiter.

    Holds the keyed lock registry it serializes on, so one instance should be
    shared by every request of a process (see get_reservation_service()).
    Tests create their own instances to stay isolated.
    """

    def __init__(
        self,
        lock_registry: Optional[KeyedLockRegistry] = None,
        max_attempts: int = ARBITRATION_MAX_ATTEMPTS
    ):
        self.locks = lock_registry or KeyedLockRegistry()
        self.max_attempts = max_attempts

    # ===== Create =====

    def create_reservation(
        self,
        db: Session,
        request: ReservationRequest,
        now: Optional[datetime] = None
    ) -> ReservationResult:
        """
        Create a facility booking or a program registration.

        Facility bookings are confirmed or rejected (no facility waitlist).
        Registrations are confirmed while seats remain and waitlisted after.
        A repeated idempotency key returns the original reservation unchanged,
        and so does a second registration of a participant who already holds
        an active one in the same scope. Neither creates an outbox entry.
A key already used by another member is rejected.

        Args:
            db: Database session (committed by this method)
            request: What to reserve, for whom
            now: Current time (defaults to utc_now())

        Returns:
            ReservationResult with status, waitlist position and replay flag

        Raises:
            ReservationError: Validation, availability or authorization failure
            BusyError: Lock wait timed out or concurrency retries exhausted
        """
        self._validate_request_shape(request)
        now = now or utc_now()

        replay = self._find_replay(db, request.idempotency_key, request.requester_id)
        if replay is not None:
            logger.info(f"Idempotent replay of reservation {replay.reservation.id} for key {request.idempotency_key}")
            return replay

        if not request.is_facility:
            ParticipantService.get_active_participant(db, request.participant_id)  # type: ignore[arg-type]

        result = self._run_locked(db, request.scope_key, lambda: self._decide(db, request, now))
        logger.info(
            f"Reservation {result.reservation.id} for member {request.requester_id} on "
            f"{request.scope_key}: {result.status}"
            + (f" (position {result.position})" if result.position else "")
            + (" [replayed]" if result.replayed else "")
        )
        return result

    @staticmethod
    def _validate_request_shape(request: ReservationRequest) -> None:
        if request.resource_type == RESOURCE_TYPE_FACILITY:
            if request.start_time is None or request.end_time is None:
                raise InvalidRequestError("Facility bookings require start_time and end_time")
            if request.session_id is not None:
                raise InvalidRequestError("Facility bookings do not take a session")
            request.start_time = ensure_utc(request.start_time)
            request.end_time = ensure_utc(request.end_time)
            if request.end_time <= request.start_time:  # type: ignore[operator]
                raise InvalidRequestError("End time must be after start time")
        elif request.resource_type == RESOURCE_TYPE_PROGRAM:
            if request.participant_id is None:
                raise InvalidRequestError("Program registrations require a participant")
            if request.start_time is not None or request.end_time is not None:
                raise InvalidRequestError("Program registrations do not take a time interval")
        else:
            raise InvalidRequestError(f"Unknown resource type: {request.resource_type}")

    @staticmethod
    def _find_replay(db: Session, idempotency_key: Optional[str], requester_id: int) -> Optional[ReservationResult]:
        if not idempotency_key:
            return None
        existing = db.query(Reservation).filter(Reservation.idempotency_key == idempotency_key).first()
        if existing is None:
            return None
        if existing.requester_id != requester_id:
            # Keys are global; never hand one member's reservation to another
            raise InvalidRequestError("Idempotency key already used by another member")
        position = WaitlistService.get_position(db, existing.id) if existing.status == STATUS_WAITLISTED else None
        return ReservationResult(reservation=existing, status=existing.status, position=position, replayed=True)

    def _decide(self, db: Session, request: ReservationRequest, now: datetime) -> ReservationResult:
        # The key may have been claimed while this request waited on the lock
        replay = self._find_replay(db, request.idempotency_key, request.requester_id)
        if replay is not None:
            return replay

        if request.is_facility:
            return self._decide_facility(db, request, now)
        return self._decide_registration(db, request)

    def _decide_facility(self, db: Session, request: ReservationRequest, now: datetime) -> ReservationResult:
        facility = AvailabilityService.get_facility(db, request.resource_id, for_update=True)
        AvailabilityService.validate_booking(db, facility, request.start_time, request.end_time, now)  # type: ignore[arg-type]

        reservation = Reservation(
            kind=RESERVATION_KIND_FACILITY,
            facility_id=facility.id,
            requester_id=request.requester_id,
            participant_id=request.participant_id,
            start_time=request.start_time,
            end_time=request.end_time,
            status=STATUS_CONFIRMED,
            idempotency_key=request.idempotency_key,
            notes=request.notes,
        )
        db.add(reservation)
        db.flush()

        OutboxService.enqueue(db, OUTBOX_TYPE_CONFIRMATION, {
            "reservation_id": reservation.id,
            "kind": RESERVATION_KIND_FACILITY,
        })
        return ReservationResult(reservation=reservation, status=STATUS_CONFIRMED)

    def _decide_registration(self, db: Session, request: ReservationRequest) -> ReservationResult:
        program, session = CapacityService.lock_scope(db, request.resource_id, request.session_id)

        existing = self._find_active_registration(db, program.id, request.session_id, request.participant_id)  # type: ignore[arg-type]
        if existing is not None:
            position = WaitlistService.get_position(db, existing.id) if existing.status == STATUS_WAITLISTED else None
            return ReservationResult(reservation=existing, status=existing.status, position=position, replayed=True)

        position: Optional[int] = None
        if CapacityService.has_free_seat(db, program, session):
            status = STATUS_CONFIRMED
        else:
            status = STATUS_WAITLISTED
            position = CapacityService.next_waitlist_position(
                db, session if session is not None else program, program.id, request.session_id
            )

        reservation = Reservation(
            kind=RESERVATION_KIND_PROGRAM,
            program_id=program.id,
            session_id=request.session_id,
            requester_id=request.requester_id,
            participant_id=request.participant_id,
            status=status,
            idempotency_key=request.idempotency_key,
            notes=request.notes,
        )
        db.add(reservation)
        db.flush()

        if status == STATUS_WAITLISTED:
            db.add(WaitlistEntry(
                program_id=program.id,
                session_id=request.session_id,
                reservation_id=reservation.id,
                participant_id=request.participant_id,
                requester_id=request.requester_id,
                position=position,
                notify_opt_in=request.notify_opt_in,
            ))

        OutboxService.enqueue(
            db,
            OUTBOX_TYPE_CONFIRMATION if status == STATUS_CONFIRMED else OUTBOX_TYPE_WAITLISTED,
            {
                "reservation_id": reservation.id,
                "kind": RESERVATION_KIND_PROGRAM,
                "position": position,
            },
        )
        return ReservationResult(reservation=reservation, status=status, position=position)

    @staticmethod
    def _find_active_registration(
        db: Session,
        program_id: int,
        session_id: Optional[int],
        participant_id: int
    ) -> Optional[Reservation]:
        query = db.query(Reservation).filter(
            Reservation.kind == RESERVATION_KIND_PROGRAM,
            Reservation.program_id == program_id,
            Reservation.participant_id == participant_id,
            Reservation.status.in_([STATUS_CONFIRMED, STATUS_WAITLISTED]),
        )
        if session_id is None:
            query = query.filter(Reservation.session_id.is_(None))
        else:
            query = query.filter(Reservation.session_id == session_id)
        return query.first()

    # ===== Cancel =====

    def cancel_reservation(
        self,
        db: Session,
        reservation_id: int,
        requester_id: int,
        reason: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> CancellationResult:
        """
        Cancel a reservation owned by the requester.

        Cancelling a confirmed registration promotes the next waitlisted
        registration of the same scope in the same transaction. Cancelling a
        waitlisted registration removes its waitlist entry; other positions
        are left as they are. Cancelling twice is a no-op.

        Args:
            db: Database session (committed by this method)
            reservation_id: Reservation to cancel
            requester_id: Authenticated member
            reason: Optional cancellation reason
            now: Current time (defaults to utc_now())

        Returns:
            CancellationResult, with the promoted reservation id if any

        Raises:
            NotFoundError: Unknown reservation
            NotOwnerError: Reservation belongs to another member
            CancellationCutoffError: Facility booking too close to its start
            BusyError: Lock wait timed out or concurrency retries exhausted
        """
        now = now or utc_now()
        reservation = db.query(Reservation).filter(Reservation.id == reservation_id).first()
        if reservation is None:
            raise NotFoundError(f"Reservation {reservation_id} not found")
        if reservation.requester_id != requester_id:
            raise NotOwnerError()
        if reservation.status == STATUS_CANCELLED:
            return CancellationResult(reservation=reservation, already_cancelled=True)

        if reservation.kind == RESERVATION_KIND_FACILITY:
            facility = AvailabilityService.get_facility(db, reservation.facility_id)  # type: ignore[arg-type]
            cutoff = reservation.start_time - timedelta(hours=facility.cancellation_cutoff_hours)  # type: ignore[operator]
            if now > cutoff:
                raise CancellationCutoffError(
                    f"Bookings must be cancelled at least {facility.cancellation_cutoff_hours} hours in advance"
                )

        key = self._scope_key_for(reservation)
        result = self._run_locked(db, key, lambda: self._apply_cancellation(db, reservation_id, requester_id, reason, now))
        if not result.already_cancelled:
            logger.info(
                f"Reservation {reservation_id} cancelled by member {requester_id}"
                + (f", promoted reservation {result.promoted_reservation_id}" if result.promoted_reservation_id else "")
            )
        return result

    @staticmethod
    def _scope_key_for(reservation: Reservation) -> str:
        if reservation.kind == RESERVATION_KIND_FACILITY:
            return f"facility:{reservation.facility_id}"
        session_part = reservation.session_id if reservation.session_id is not None else "-"
        return f"program:{reservation.program_id}:session:{session_part}"

    @staticmethod
    def _apply_cancellation(
        db: Session,
        reservation_id: int,
        requester_id: int,
        reason: Optional[str],
        now: datetime
    ) -> CancellationResult:
        reservation = db.query(Reservation).filter(Reservation.id == reservation_id).first()
        if reservation is None:
            raise NotFoundError(f"Reservation {reservation_id} not found")

        # Lock order matches creation: scope row first, then the reservation
        if reservation.kind == RESERVATION_KIND_FACILITY:
            AvailabilityService.get_facility(db, reservation.facility_id, for_update=True)  # type: ignore[arg-type]
        else:
            CapacityService.lock_scope(db, reservation.program_id, reservation.session_id, require_active=False)  # type: ignore[arg-type]

        reservation = db.query(Reservation).filter(
            Reservation.id == reservation_id
        ).with_for_update().populate_existing().one()

        if reservation.status == STATUS_CANCELLED:
            return CancellationResult(reservation=reservation, already_cancelled=True)

        was_confirmed = reservation.status == STATUS_CONFIRMED
        reservation.status = STATUS_CANCELLED
        reservation.cancelled_at = now
        reservation.cancelled_by_id = requester_id
        reservation.cancellation_reason = reason

        promoted: Optional[Reservation] = None
        if reservation.kind == RESERVATION_KIND_PROGRAM:
            if was_confirmed:
                db.flush()
                promoted = WaitlistService.promote_next(db, reservation.program_id, reservation.session_id)  # type: ignore[arg-type]
            else:
                WaitlistService.remove_entry(db, reservation.id)

        return CancellationResult(
            reservation=reservation,
            promoted_reservation_id=promoted.id if promoted is not None else None,
        )

    # ===== Concurrency =====

    def _run_locked(self, db: Session, key: str, operation: Callable[[], T]) -> T:
        """
        Run ``operation`` and commit while holding the keyed lock.

        Unique-constraint races and lock/busy errors from the database roll
        back and re-run the whole decision, up to max_attempts. Any other
        failure rolls back and propagates.
        """
        last_error: Optional[Exception] = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                with self.locks.hold(key):
                    try:
                        result = operation()
                        db.commit()
                        return result
                    except Exception:
                        db.rollback()
                        raise
            except LockTimeoutError as e:
                raise BusyError() from e
            except (IntegrityError, OperationalError) as e:
                last_error = e
                logger.warning(
                    f"Concurrent update on {key} (attempt {attempt}/{self.max_attempts}): "
                    f"{type(e).__name__}: {e.orig if getattr(e, 'orig', None) is not None else e}"
                )

        logger.error(f"Giving up on {key} after {self.max_attempts} attempts")
        raise BusyError() from last_error


# Global service instance
_reservation_service: Optional[ReservationService] = None


def get_reservation_service() -> ReservationService:
    """Get the process-wide reservation service (shared lock registry)."""
    global _reservation_service
    if _reservation_service is None:
        _reservation_service = ReservationService()
    return _reservation_service
