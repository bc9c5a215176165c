"""
Member model.

A member is an authenticated account that makes reservations and receives
notifications. Members own participants (themselves, family members) who
hold program seats.
"""

from datetime import datetime
from typing import List

from sqlalchemy import Boolean, String
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from core.constants import MAX_STRING_LENGTH
from core.database import Base
from models.types import UTCDateTime


class Member(Base):
    """Account holder that requests reservations."""

    __tablename__ = "members"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    """Unique identifier for the member."""

    email: Mapped[str] = mapped_column(String(MAX_STRING_LENGTH), unique=True, nullable=False)
    """Email address, also the notification recipient."""

    full_name: Mapped[str] = mapped_column(String(MAX_STRING_LENGTH), nullable=False)
    """Display name used in notifications."""

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    """Inactive members cannot authenticate."""

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, server_default=func.now(), nullable=False)

    participants: Mapped[List["Participant"]] = relationship(back_populates="member")  # type: ignore # noqa: F821

    def __repr__(self) -> str:
        return f"<Member(id={self.id}, email='{self.email}')>"
