"""
Reminder dedup record.

The reminder sweep inserts one row per (reservation, lead time) it has
queued. Outbox rows are deleted on delivery, so this table is what keeps a
later sweep from queuing the same reminder again.
"""

from datetime import datetime

from sqlalchemy import ForeignKey, Integer, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from core.database import Base
from models.types import UTCDateTime


class ReservationReminder(Base):
    """Reminder already queued for a reservation at a given lead time."""

    __tablename__ = "reservation_reminders"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)

    reservation_id: Mapped[int] = mapped_column(ForeignKey("reservations.id", ondelete="CASCADE"), nullable=False)

    lead_hours: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, server_default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint('reservation_id', 'lead_hours', name='uq_reservation_reminder_lead'),
    )

    def __repr__(self) -> str:
        return f"<ReservationReminder(reservation_id={self.reservation_id}, lead_hours={self.lead_hours})>"
