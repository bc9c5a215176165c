"""
Participant model.

A participant is the person who actually occupies a program seat. Each
participant is owned by exactly one member; ownership is what authorizes a
member to register or cancel on the participant's behalf.
"""

from datetime import datetime

from sqlalchemy import Boolean, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from core.constants import MAX_STRING_LENGTH
from core.database import Base
from models.types import UTCDateTime


class Participant(Base):
    """Person registered into programs, owned by a member."""

    __tablename__ = "participants"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    """Unique identifier for the participant."""

    member_id: Mapped[int] = mapped_column(ForeignKey("members.id", ondelete="CASCADE"), nullable=False)
    """Owning member."""

    full_name: Mapped[str] = mapped_column(String(MAX_STRING_LENGTH), nullable=False)
    """Name shown in registration notifications."""

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    """Inactive participants cannot be registered."""

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, server_default=func.now(), nullable=False)

    member = relationship("Member", back_populates="participants")

    __table_args__ = (
        Index('idx_participants_member', 'member_id'),
    )

    def __repr__(self) -> str:
        return f"<Participant(id={self.id}, member_id={self.member_id}, name='{self.full_name}')>"
