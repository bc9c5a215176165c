"""
Shared response models for API endpoints.

This module contains Pydantic response models that are shared across
multiple API endpoints to ensure consistency and reduce duplication.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Body returned for reservation errors."""
    detail: str
    type: str


class AvailabilityResponse(BaseModel):
    """Response model for an availability check."""
    available: bool
    reason: Optional[str] = None  # Error code when unavailable (e.g. "out_of_window")
    message: Optional[str] = None


class SlotResponse(BaseModel):
    """A bookable [start_time, end_time) slot in UTC."""
    start_time: datetime
    end_time: datetime


class SlotListResponse(BaseModel):
    """Response model for listing available slots."""
    facility_id: int
    duration_minutes: int
    slots: List[SlotResponse]


class ReservationResponse(BaseModel):
    """Response model for a created (or replayed) reservation."""
    reservation_id: int
    status: str  # "confirmed" or "waitlisted" ("cancelled" only on replay)
    position: Optional[int] = None  # Waitlist position
    replayed: bool = False


class CancellationResponse(BaseModel):
    """Response model for a cancellation."""
    success: bool
    reservation_id: int
    status: str
    already_cancelled: bool = False
    promoted_reservation_id: Optional[int] = None
