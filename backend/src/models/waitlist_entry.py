"""
Waitlist entry model.

One row per waitlisted registration. Positions increase monotonically within
a (program, session) scope and are unique there; promotion and removal
delete rows without renumbering the rest.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Index, Integer, text
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from core.database import Base
from models.types import UTCDateTime


class WaitlistEntry(Base):
    """Queued registration waiting for a seat."""

    __tablename__ = "waitlist_entries"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)

    program_id: Mapped[int] = mapped_column(ForeignKey("programs.id", ondelete="CASCADE"), nullable=False)

    session_id: Mapped[Optional[int]] = mapped_column(ForeignKey("program_sessions.id", ondelete="CASCADE"), nullable=True)

    reservation_id: Mapped[int] = mapped_column(
        ForeignKey("reservations.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    """The waitlisted reservation this entry queues."""

    participant_id: Mapped[int] = mapped_column(ForeignKey("participants.id", ondelete="CASCADE"), nullable=False)

    requester_id: Mapped[int] = mapped_column(ForeignKey("members.id", ondelete="CASCADE"), nullable=False)

    position: Mapped[int] = mapped_column(Integer, nullable=False)
    """1-based queue position; lowest is promoted first."""

    notify_opt_in: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    """Whether a 'promoted' notification should be sent."""

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, server_default=func.now(), nullable=False)

    reservation = relationship("Reservation")

    __table_args__ = (
        CheckConstraint('position > 0', name='check_waitlist_position_positive'),
        Index(
            'uq_waitlist_session_position',
            'program_id', 'session_id', 'position',
            unique=True,
            postgresql_where=text("session_id IS NOT NULL"),
            sqlite_where=text("session_id IS NOT NULL"),
        ),
        Index(
            'uq_waitlist_program_position',
            'program_id', 'position',
            unique=True,
            postgresql_where=text("session_id IS NULL"),
            sqlite_where=text("session_id IS NULL"),
        ),
        Index('idx_waitlist_scope_position', 'program_id', 'session_id', 'position'),
    )

    def __repr__(self) -> str:
        return f"<WaitlistEntry(program_id={self.program_id}, session_id={self.session_id}, position={self.position})>"
