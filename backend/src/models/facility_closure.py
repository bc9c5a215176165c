"""
Ad-hoc facility closure (maintenance, holidays, private events).
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import CheckConstraint, ForeignKey, Index, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from core.database import Base
from models.types import UTCDateTime


class FacilityClosure(Base):
    """Absolute [starts_at, ends_at) interval during which a facility is closed."""

    __tablename__ = "facility_closures"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)

    facility_id: Mapped[int] = mapped_column(ForeignKey("facilities.id", ondelete="CASCADE"), nullable=False)

    starts_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    ends_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, server_default=func.now(), nullable=False)

    facility = relationship("Facility", back_populates="closures")

    __table_args__ = (
        CheckConstraint('ends_at > starts_at', name='check_closure_end_after_start'),
        Index('idx_facility_closures_facility_range', 'facility_id', 'starts_at', 'ends_at'),
    )

    def __repr__(self) -> str:
        return f"<FacilityClosure(facility_id={self.facility_id}, {self.starts_at}-{self.ends_at})>"
