"""
Program session (occurrence) model.

A session is one scheduled instance of a program. Registrations scoped to a
session are counted against the session's capacity override when set, or
against the program's capacity otherwise.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Index, Integer
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from core.database import Base
from models.types import UTCDateTime


class ProgramSession(Base):
    """Scheduled occurrence of a program."""

    __tablename__ = "program_sessions"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    """Unique identifier for the session."""

    program_id: Mapped[int] = mapped_column(ForeignKey("programs.id", ondelete="CASCADE"), nullable=False)
    """Parent program."""

    starts_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    ends_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    capacity_override: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    """Seats for this session only; NULL means use the program capacity."""

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    waitlist_sequence: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    """Highest waitlist position handed out for this session (never decreases)."""

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, server_default=func.now(), nullable=False)

    program = relationship("Program", back_populates="sessions")

    __table_args__ = (
        CheckConstraint('ends_at > starts_at', name='check_session_end_after_start'),
        CheckConstraint('capacity_override IS NULL OR capacity_override > 0', name='check_session_capacity_override'),
        CheckConstraint('waitlist_sequence >= 0', name='check_session_waitlist_sequence'),
        Index('idx_program_sessions_program_start', 'program_id', 'starts_at'),
    )

    def __repr__(self) -> str:
        return f"<ProgramSession(id={self.id}, program_id={self.program_id}, starts_at={self.starts_at})>"
