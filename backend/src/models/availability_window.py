"""
Recurring weekly availability window for a facility.

Each record opens the facility for one wall-clock period on one day of the
week, optionally limited to an effective date range. Several windows on the
same day are allowed and are treated as a union (e.g. 08:00-12:00 and
13:00-18:00, or overlapping seasonal schedules).
"""

from datetime import date, time
from typing import Optional

from sqlalchemy import CheckConstraint, Date, ForeignKey, Index, Time
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.database import Base


class AvailabilityWindow(Base):
    """Weekly opening period of a facility."""

    __tablename__ = "availability_windows"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    """Unique identifier for the window."""

    facility_id: Mapped[int] = mapped_column(ForeignKey("facilities.id", ondelete="CASCADE"), nullable=False)
    """Facility this window belongs to."""

    day_of_week: Mapped[int] = mapped_column(nullable=False)
    """Day of the week (0=Monday, 1=Tuesday, ..., 6=Sunday)."""

    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    """Local wall-clock opening time."""

    end_time: Mapped[time] = mapped_column(Time, nullable=False)
    """
    Local wall-clock closing time (exclusive).
    23:59:59 or later is read as "open until midnight".
    """

    effective_from: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    """First date (inclusive) the window applies; open-ended if NULL."""

    effective_until: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    """Last date (inclusive) the window applies; open-ended if NULL."""

    facility = relationship("Facility", back_populates="availability_windows")

    __table_args__ = (
        CheckConstraint('end_time > start_time', name='check_window_end_after_start'),
        CheckConstraint('day_of_week >= 0 AND day_of_week <= 6', name='check_window_day_of_week'),
        Index('idx_availability_windows_facility_day', 'facility_id', 'day_of_week'),
    )

    @property
    def day_name(self) -> str:
        """Get the day name for display."""
        days = ['Monday', 'Tuesday', 'Wednesday', 'Thursday', 'Friday', 'Saturday', 'Sunday']
        return days[self.day_of_week]

    def applies_on(self, day: date) -> bool:
        """Whether this window is in effect on the given local date."""
        if day.weekday() != self.day_of_week:
            return False
        if self.effective_from is not None and day < self.effective_from:
            return False
        if self.effective_until is not None and day > self.effective_until:
            return False
        return True

    def __repr__(self) -> str:
        return f"<AvailabilityWindow(facility_id={self.facility_id}, day={self.day_name}, {self.start_time}-{self.end_time})>"
