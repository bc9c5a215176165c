"""
Facility model for bookable physical resources.

A facility (field, room, court) is booked for absolute time intervals. Its
booking rules live on the row: duration bounds, the idle buffer required
between bookings, how far ahead bookings may be made and how late they may
be cancelled. When a facility can be booked at all is described by its
weekly availability windows and ad-hoc closures.
"""

from datetime import datetime
from typing import List, Optional

from sqlalchemy import Boolean, CheckConstraint, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from core.constants import (
    DEFAULT_ADVANCE_BOOKING_DAYS,
    DEFAULT_BUFFER_MINUTES,
    DEFAULT_CANCELLATION_CUTOFF_HOURS,
    DEFAULT_MAX_BOOKING_MINUTES,
    DEFAULT_MIN_BOOKING_MINUTES,
    MAX_STRING_LENGTH,
)
from core.database import Base
from models.types import UTCDateTime


class Facility(Base):
    """
    Bookable facility with its booking constraints.

    Facilities have no seat capacity: at most one confirmed booking may
    occupy any instant, including the buffer around each booking.
    """

    __tablename__ = "facilities"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    """Unique identifier for the facility."""

    slug: Mapped[str] = mapped_column(String(MAX_STRING_LENGTH), unique=True, nullable=False)
    """URL-safe unique name."""

    name: Mapped[str] = mapped_column(String(MAX_STRING_LENGTH), nullable=False)
    """Display name."""

    facility_type: Mapped[str] = mapped_column(String(50), nullable=False, default="room")
    """Kind of facility: 'field', 'room', 'court', ..."""

    location: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    """Free-form location shown in notifications."""

    min_booking_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=DEFAULT_MIN_BOOKING_MINUTES)
    """Shortest allowed booking; also the step between listed slots."""

    max_booking_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=DEFAULT_MAX_BOOKING_MINUTES)
    """Longest allowed booking."""

    buffer_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=DEFAULT_BUFFER_MINUTES)
    """Idle time required between two bookings."""

    advance_booking_days: Mapped[int] = mapped_column(Integer, nullable=False, default=DEFAULT_ADVANCE_BOOKING_DAYS)
    """How many days ahead a booking may start."""

    cancellation_cutoff_hours: Mapped[int] = mapped_column(Integer, nullable=False, default=DEFAULT_CANCELLATION_CUTOFF_HOURS)
    """Bookings cannot be cancelled later than this many hours before start."""

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    """Inactive facilities reject every booking."""

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, server_default=func.now(), nullable=False)

    # Relationships
    availability_windows: Mapped[List["AvailabilityWindow"]] = relationship(  # type: ignore # noqa: F821
        back_populates="facility", cascade="all, delete-orphan"
    )
    closures: Mapped[List["FacilityClosure"]] = relationship(  # type: ignore # noqa: F821
        back_populates="facility", cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint('min_booking_minutes > 0', name='check_facility_min_positive'),
        CheckConstraint('max_booking_minutes >= min_booking_minutes', name='check_facility_max_gte_min'),
        CheckConstraint('buffer_minutes >= 0', name='check_facility_buffer_non_negative'),
        CheckConstraint('advance_booking_days >= 0', name='check_facility_advance_non_negative'),
        CheckConstraint('cancellation_cutoff_hours >= 0', name='check_facility_cutoff_non_negative'),
    )

    def __repr__(self) -> str:
        return f"<Facility(id={self.id}, slug='{self.slug}', active={self.is_active})>"
