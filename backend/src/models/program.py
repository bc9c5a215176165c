"""
Program model for seat-based resources.

A program (recurring class, league) or event (one-off) offers a fixed number
of seats. Registrations either target the program as a whole or one of its
sessions, and each session may override the program's capacity.
"""

from datetime import datetime
from typing import List, Optional

from sqlalchemy import Boolean, CheckConstraint, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from core.constants import MAX_STRING_LENGTH
from core.database import Base
from models.types import UTCDateTime


class Program(Base):
    """
    Seat-limited program or event.

    waitlist_sequence is the highest waitlist position ever handed out for
    registrations that target the program without a session. It only grows,
    so positions are never reused after promotions empty the waitlist.
    """

    __tablename__ = "programs"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    """Unique identifier for the program."""

    slug: Mapped[str] = mapped_column(String(MAX_STRING_LENGTH), unique=True, nullable=False)
    """URL-safe unique name."""

    title: Mapped[str] = mapped_column(String(MAX_STRING_LENGTH), nullable=False)
    """Display title."""

    program_type: Mapped[str] = mapped_column(String(20), nullable=False, default="program")
    """'program' (recurring, usually with sessions) or 'event' (single occurrence)."""

    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    location: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    capacity: Mapped[int] = mapped_column(Integer, nullable=False)
    """Default number of seats, per session when sessions exist."""

    starts_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    """Start of an event without sessions; drives reminders."""

    ends_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    """Inactive programs reject registrations."""

    waitlist_sequence: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, server_default=func.now(), nullable=False)

    sessions: Mapped[List["ProgramSession"]] = relationship(  # type: ignore # noqa: F821
        back_populates="program", cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint("program_type IN ('program', 'event')", name='check_program_type'),
        CheckConstraint('capacity > 0', name='check_program_capacity_positive'),
        CheckConstraint('waitlist_sequence >= 0', name='check_program_waitlist_sequence'),
    )

    def __repr__(self) -> str:
        return f"<Program(id={self.id}, slug='{self.slug}', capacity={self.capacity})>"
