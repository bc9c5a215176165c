"""
Waitlist promotion.

When a confirmed registration is cancelled, the freed seat goes to the
lowest-position waitlist entry of the same (program, session) scope, inside
the cancellation's transaction. Candidates are selected with FOR UPDATE
SKIP LOCKED so two concurrent cancellations promote two different people.
Remaining positions are not renumbered.

Every promotion writes a 'promoted' outbox entry. The waitlist entry's
notify_opt_in travels in its payload and is applied at delivery time.
"""

import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from models.outbox_entry import OUTBOX_TYPE_PROMOTED
from models.reservation import STATUS_CONFIRMED, STATUS_WAITLISTED, Reservation
from models.waitlist_entry import WaitlistEntry
from services.outbox_service import OutboxService

logger = logging.getLogger(__name__)


class WaitlistService:
    """Service for waitlist queries and promotion."""

    @staticmethod
    def _scope_query(db: Session, program_id: int, session_id: Optional[int]):
        query = db.query(WaitlistEntry).filter(WaitlistEntry.program_id == program_id)
        if session_id is None:
            return query.filter(WaitlistEntry.session_id.is_(None))
        return query.filter(WaitlistEntry.session_id == session_id)

    @staticmethod
    def list_entries(db: Session, program_id: int, session_id: Optional[int] = None) -> List[WaitlistEntry]:
        """Waitlist of a scope in promotion order."""
        return WaitlistService._scope_query(db, program_id, session_id).order_by(WaitlistEntry.position).all()

    @staticmethod
    def get_position(db: Session, reservation_id: int) -> Optional[int]:
        """Current waitlist position of a reservation, or None if not waitlisted."""
        entry = db.query(WaitlistEntry).filter(WaitlistEntry.reservation_id == reservation_id).first()
        return entry.position if entry else None

    @staticmethod
    def remove_entry(db: Session, reservation_id: int) -> bool:
        """Drop the waitlist entry of a reservation (e.g. when it is cancelled)."""
        deleted = db.query(WaitlistEntry).filter(
            WaitlistEntry.reservation_id == reservation_id
        ).delete(synchronize_session="fetch")
        return deleted > 0

    @staticmethod
    def promote_next(db: Session, program_id: int, session_id: Optional[int] = None) -> Optional[Reservation]:
        """
        Promote the lowest-position waitlisted registration of a scope.

        Runs in the caller's transaction and does not commit. Entries locked
        by a concurrent promotion are skipped rather than waited on.

        Args:
            db: Database session (inside the cancellation transaction)
            program_id: Program ID
            session_id: Session ID, or None for program-wide registrations

        Returns:
            The promoted reservation, or None if the waitlist is empty
        """
        while True:
            entry = WaitlistService._scope_query(db, program_id, session_id).order_by(
                WaitlistEntry.position
            ).with_for_update(skip_locked=True).first()

            if entry is None:
                return None

            reservation = db.query(Reservation).filter(
                Reservation.id == entry.reservation_id
            ).with_for_update().first()

            if reservation is None or reservation.status != STATUS_WAITLISTED:
                # Stale entry (reservation gone or already moved on): drop it and look again
                logger.warning(
                    f"Removing stale waitlist entry {entry.id} for reservation {entry.reservation_id}"
                )
                db.delete(entry)
                db.flush()
                continue

            reservation.status = STATUS_CONFIRMED
            notify = entry.notify_opt_in
            position = entry.position
            db.delete(entry)

            OutboxService.enqueue(db, OUTBOX_TYPE_PROMOTED, {
                "reservation_id": reservation.id,
                "program_id": program_id,
                "session_id": session_id,
                "previous_position": position,
                "notify_opt_in": notify,
            })

            logger.info(
                f"Promoted reservation {reservation.id} from waitlist position {position} "
                f"(program {program_id}, session {session_id})"
            )
            return reservation
