"""
Notification outbox model.

Rows are written in the same transaction as the state change they announce
and drained by the outbox worker. A delivered row is deleted; a failed one
records the error and is retried later until max_attempts is reached, after
which it stays in the table as a permanent failure record.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import CheckConstraint, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from core.constants import OUTBOX_MAX_ATTEMPTS
from core.database import Base
from models.types import JSONType, UTCDateTime


OUTBOX_TYPE_CONFIRMATION = "confirmation"
OUTBOX_TYPE_WAITLISTED = "waitlisted"
OUTBOX_TYPE_PROMOTED = "promoted"
OUTBOX_TYPE_REMINDER = "reminder"

OUTBOX_TYPES = (
    OUTBOX_TYPE_CONFIRMATION,
    OUTBOX_TYPE_WAITLISTED,
    OUTBOX_TYPE_PROMOTED,
    OUTBOX_TYPE_REMINDER,
)


class OutboxEntry(Base):
    """Pending notification."""

    __tablename__ = "outbox_entries"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    """Unique identifier for the entry."""

    entry_type: Mapped[str] = mapped_column(String(30), nullable=False)
    """'confirmation', 'waitlisted', 'promoted' or 'reminder'."""

    payload: Mapped[Dict[str, Any]] = mapped_column(JSONType, nullable=False)
    """Entity references (reservation_id, position, lead_hours, ...), resolved at delivery."""

    not_before: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    """Earliest delivery time; NULL means immediately."""

    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    """Failed delivery attempts so far."""

    max_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=OUTBOX_MAX_ATTEMPTS)

    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, server_default=func.now(), nullable=False)

    __table_args__ = (
        CheckConstraint(
            "entry_type IN ('confirmation', 'waitlisted', 'promoted', 'reminder')",
            name='check_outbox_entry_type',
        ),
        CheckConstraint('attempts >= 0', name='check_outbox_attempts_non_negative'),
        CheckConstraint('max_attempts > 0', name='check_outbox_max_attempts_positive'),
        Index('idx_outbox_pending', 'attempts', 'not_before', 'created_at'),
    )

    @property
    def is_abandoned(self) -> bool:
        return self.attempts >= self.max_attempts

    def __repr__(self) -> str:
        return f"<OutboxEntry(id={self.id}, type='{self.entry_type}', attempts={self.attempts}/{self.max_attempts})>"
