"""
Capacity ledger for program registrations.

Resolves how many seats a (program, session) scope offers and how many are
taken. Counts are only meaningful while the scope row lock from
``lock_scope`` is held inside the same transaction as the write that
depends on them; nothing here is cached between requests.
"""

import logging
from typing import Optional, Tuple, Union

from sqlalchemy import func
from sqlalchemy.orm import Session

from models.program import Program
from models.program_session import ProgramSession
from models.reservation import RESERVATION_KIND_PROGRAM, STATUS_CONFIRMED, Reservation
from models.waitlist_entry import WaitlistEntry
from services.reservation_errors import InvalidRequestError, NotFoundError, ResourceInactiveError

logger = logging.getLogger(__name__)

ScopeRow = Union[Program, ProgramSession]


class CapacityService:
    """Seat accounting for programs and their sessions."""

    @staticmethod
    def lock_scope(
        db: Session,
        program_id: int,
        session_id: Optional[int] = None,
        require_active: bool = True
    ) -> Tuple[Program, Optional[ProgramSession]]:
        """
        Lock the row that serializes decisions for a registration scope.

        The session row is locked for session-scoped registrations, the
        program row otherwise, so unrelated sessions never wait on each other.

        Args:
            db: Database session (inside the arbitration transaction)
            program_id: Program ID
            session_id: Optional session ID
            require_active: Reject inactive programs/sessions

        Returns:
            (program, session) with session None for program-wide scope

        Raises:
            NotFoundError: Unknown program or session
            InvalidRequestError: Session belongs to another program
            ResourceInactiveError: Program or session inactive
        """
        if session_id is None:
            program = db.query(Program).filter(Program.id == program_id).with_for_update().first()
            if program is None:
                raise NotFoundError(f"Program {program_id} not found")
            session = None
        else:
            session = db.query(ProgramSession).filter(
                ProgramSession.id == session_id
            ).with_for_update().first()
            if session is None:
                raise NotFoundError(f"Session {session_id} not found")
            if session.program_id != program_id:
                raise InvalidRequestError(f"Session {session_id} does not belong to program {program_id}")
            program = db.query(Program).filter(Program.id == program_id).first()
            if program is None:
                raise NotFoundError(f"Program {program_id} not found")

        if require_active:
            if not program.is_active:
                raise ResourceInactiveError(f"Program '{program.title}' is not active")
            if session is not None and not session.is_active:
                raise ResourceInactiveError("Session is not active")

        return program, session

    @staticmethod
    def effective_capacity(program: Program, session: Optional[ProgramSession] = None) -> int:
        """Session override when set, else the program capacity."""
        if session is not None and session.capacity_override is not None:
            return session.capacity_override
        return program.capacity

    @staticmethod
    def confirmed_count(db: Session, program_id: int, session_id: Optional[int] = None) -> int:
        """Number of confirmed registrations in the scope."""
        query = db.query(func.count(Reservation.id)).filter(
            Reservation.kind == RESERVATION_KIND_PROGRAM,
            Reservation.program_id == program_id,
            Reservation.status == STATUS_CONFIRMED,
        )
        if session_id is None:
            query = query.filter(Reservation.session_id.is_(None))
        else:
            query = query.filter(Reservation.session_id == session_id)
        return int(query.scalar() or 0)

    @staticmethod
    def has_free_seat(db: Session, program: Program, session: Optional[ProgramSession] = None) -> bool:
        capacity = CapacityService.effective_capacity(program, session)
        taken = CapacityService.confirmed_count(db, program.id, session.id if session else None)
        logger.debug(f"Program {program.id} session {session.id if session else None}: {taken}/{capacity} seats taken")
        return taken < capacity

    @staticmethod
    def next_waitlist_position(db: Session, scope: ScopeRow, program_id: int, session_id: Optional[int] = None) -> int:
        """
        Reserve the next waitlist position for the scope.

        max(existing position) + 1, defaulting to 1, and never below the
        scope's high-water mark so positions freed by promotion are not
        handed out again. Must be called with the scope lock held.
        """
        query = db.query(func.max(WaitlistEntry.position)).filter(WaitlistEntry.program_id == program_id)
        if session_id is None:
            query = query.filter(WaitlistEntry.session_id.is_(None))
        else:
            query = query.filter(WaitlistEntry.session_id == session_id)
        current_max = int(query.scalar() or 0)

        position = max(current_max, scope.waitlist_sequence or 0) + 1
        scope.waitlist_sequence = position
        return position
