"""
Reservation model: facility bookings and program registrations.

Both kinds share one lifecycle (confirmed / waitlisted / cancelled) and one
idempotency key space, so they live in a single table discriminated by
``kind``. Facility bookings carry an absolute [start_time, end_time)
interval; registrations carry none and point at a program and optionally one
of its sessions.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import CheckConstraint, ForeignKey, Index, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from core.constants import MAX_STRING_LENGTH
from core.database import Base
from models.types import UTCDateTime


RESERVATION_KIND_FACILITY = "facility"
RESERVATION_KIND_PROGRAM = "program"

STATUS_CONFIRMED = "confirmed"
STATUS_WAITLISTED = "waitlisted"
STATUS_CANCELLED = "cancelled"


class Reservation(Base):
    """
    Booking or registration.

    Invariants enforced by the schema:
    - a confirmed facility booking is unique per (facility, start, end);
      overlap with buffers is enforced by the arbiter under lock
    - a participant holds at most one active (confirmed or waitlisted)
      registration per program session, or per program when no session
    - an idempotency key maps to at most one reservation
    """

    __tablename__ = "reservations"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    """Unique identifier for the reservation."""

    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    """'facility' for bookings, 'program' for registrations."""

    facility_id: Mapped[Optional[int]] = mapped_column(ForeignKey("facilities.id", ondelete="CASCADE"), nullable=True)

    program_id: Mapped[Optional[int]] = mapped_column(ForeignKey("programs.id", ondelete="CASCADE"), nullable=True)

    session_id: Mapped[Optional[int]] = mapped_column(ForeignKey("program_sessions.id", ondelete="CASCADE"), nullable=True)

    requester_id: Mapped[int] = mapped_column(ForeignKey("members.id", ondelete="CASCADE"), nullable=False)
    """Member who made (and may cancel) the reservation."""

    participant_id: Mapped[Optional[int]] = mapped_column(ForeignKey("participants.id", ondelete="CASCADE"), nullable=True)
    """Seat holder for registrations; optional for facility bookings."""

    start_time: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    end_time: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    status: Mapped[str] = mapped_column(String(20), nullable=False)
    """'confirmed', 'waitlisted' or 'cancelled'."""

    idempotency_key: Mapped[Optional[str]] = mapped_column(String(MAX_STRING_LENGTH), unique=True, nullable=True)
    """Client-supplied key; replays return the original reservation."""

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    cancelled_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    cancelled_by_id: Mapped[Optional[int]] = mapped_column(ForeignKey("members.id", ondelete="SET NULL"), nullable=True)

    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, server_default=func.now(), nullable=False)

    # Relationships
    facility = relationship("Facility")
    program = relationship("Program")
    session = relationship("ProgramSession")
    requester = relationship("Member", foreign_keys=[requester_id])
    participant = relationship("Participant")

    __table_args__ = (
        CheckConstraint("kind IN ('facility', 'program')", name='check_reservation_kind'),
        CheckConstraint("status IN ('confirmed', 'waitlisted', 'cancelled')", name='check_reservation_status'),
        CheckConstraint(
            "(kind = 'facility' AND facility_id IS NOT NULL AND start_time IS NOT NULL "
            "AND end_time IS NOT NULL AND program_id IS NULL) OR "
            "(kind = 'program' AND program_id IS NOT NULL AND participant_id IS NOT NULL "
            "AND facility_id IS NULL AND start_time IS NULL AND end_time IS NULL)",
            name='check_reservation_kind_fields',
        ),
        CheckConstraint('end_time IS NULL OR end_time > start_time', name='check_reservation_end_after_start'),
        CheckConstraint("kind = 'program' OR status <> 'waitlisted'", name='check_reservation_no_facility_waitlist'),
        Index(
            'uq_reservations_facility_slot_confirmed',
            'facility_id', 'start_time', 'end_time',
            unique=True,
            postgresql_where=text("status = 'confirmed' AND kind = 'facility'"),
            sqlite_where=text("status = 'confirmed' AND kind = 'facility'"),
        ),
        Index(
            'uq_reservations_session_participant_active',
            'program_id', 'session_id', 'participant_id',
            unique=True,
            postgresql_where=text("status IN ('confirmed', 'waitlisted') AND session_id IS NOT NULL"),
            sqlite_where=text("status IN ('confirmed', 'waitlisted') AND session_id IS NOT NULL"),
        ),
        Index(
            'uq_reservations_program_participant_active',
            'program_id', 'participant_id',
            unique=True,
            postgresql_where=text("status IN ('confirmed', 'waitlisted') AND kind = 'program' AND session_id IS NULL"),
            sqlite_where=text("status IN ('confirmed', 'waitlisted') AND kind = 'program' AND session_id IS NULL"),
        ),
        Index('idx_reservations_facility_range', 'facility_id', 'status', 'start_time', 'end_time'),
        Index('idx_reservations_program_scope', 'program_id', 'session_id', 'status'),
        Index('idx_reservations_requester', 'requester_id'),
    )

    @property
    def is_active(self) -> bool:
        """Confirmed or waitlisted."""
        return self.status != STATUS_CANCELLED

    def __repr__(self) -> str:
        return f"<Reservation(id={self.id}, kind='{self.kind}', status='{self.status}')>"
