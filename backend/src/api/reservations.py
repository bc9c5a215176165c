# pyright: reportMissingTypeStubs=false
"""
Reservation API endpoints: create and cancel.
"""

import logging
from datetime import datetime
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Header, status
from pydantic import BaseModel, field_validator, model_validator
from sqlalchemy.orm import Session

from auth.dependencies import MemberContext, get_current_member
from core.constants import MAX_STRING_LENGTH
from core.database import get_db
from api.responses import CancellationResponse, ReservationResponse
from services.participant_service import ParticipantService
from services.rate_limiter import enforce_rate_limit
from services.reservation_service import ReservationService, get_reservation_service
from shared_types.reservations import ReservationRequest
from utils.datetime_utils import ensure_local, ensure_utc

logger = logging.getLogger(__name__)

router = APIRouter()


# ===== Request Models =====

class ReservationCreateRequest(BaseModel):
    """Request model for booking a facility or registering for a program."""
    resource_type: Literal["facility", "program"]
    resource_id: int
    session_id: Optional[int] = None
    participant_id: Optional[int] = None
    start_time: Optional[datetime] = None  # Facility bookings; local time when no offset
    end_time: Optional[datetime] = None
    idempotency_key: Optional[str] = None  # The Idempotency-Key header takes precedence
    notes: Optional[str] = None
    notify_opt_in: bool = True

    @field_validator('start_time', 'end_time')
    @classmethod
    def to_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        if v is None:
            return None
        return ensure_utc(ensure_local(v))

    @field_validator('idempotency_key')
    @classmethod
    def validate_key(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not (0 < len(v) <= MAX_STRING_LENGTH):
            raise ValueError(f'idempotency_key must be 1-{MAX_STRING_LENGTH} characters')
        return v

    @model_validator(mode='after')
    def validate_shape(self) -> "ReservationCreateRequest":
        if self.resource_type == "facility":
            if self.start_time is None or self.end_time is None:
                raise ValueError('Facility bookings require start_time and end_time')
            if self.end_time <= self.start_time:
                raise ValueError('end_time must be after start_time')
        elif self.participant_id is None:
            raise ValueError('Program registrations require participant_id')
        return self


class ReservationCancelRequest(BaseModel):
    """Request model for cancelling a reservation."""
    reason: Optional[str] = None


# ===== Endpoints =====

@router.post(
    "/reservations",
    summary="Book a facility or register for a program",
    status_code=status.HTTP_201_CREATED,
    response_model=ReservationResponse,
    dependencies=[Depends(enforce_rate_limit)],
)
def create_reservation(
    request: ReservationCreateRequest,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    current_member: MemberContext = Depends(get_current_member),
    service: ReservationService = Depends(get_reservation_service),
    db: Session = Depends(get_db)
) -> ReservationResponse:
    """
    Create a reservation for the authenticated member.

    Program registrations are confirmed while seats remain and waitlisted
    once full. Facility bookings are confirmed or rejected. Retrying with
    the same idempotency key returns the original reservation.
    """
    if request.resource_type == "program" or request.participant_id is not None:
        ParticipantService.validate_ownership(db, request.participant_id, current_member.member_id)  # type: ignore[arg-type]

    result = service.create_reservation(db, ReservationRequest(
        resource_type=request.resource_type,
        resource_id=request.resource_id,
        requester_id=current_member.member_id,
        participant_id=request.participant_id,
        session_id=request.session_id,
        start_time=request.start_time,
        end_time=request.end_time,
        idempotency_key=idempotency_key or request.idempotency_key,
        notes=request.notes,
        notify_opt_in=request.notify_opt_in,
    ))
    return ReservationResponse(**result.to_dict())


@router.post(
    "/reservations/{reservation_id}/cancel",
    summary="Cancel a reservation",
    response_model=CancellationResponse,
)
def cancel_reservation(
    reservation_id: int,
    request: Optional[ReservationCancelRequest] = None,
    current_member: MemberContext = Depends(get_current_member),
    service: ReservationService = Depends(get_reservation_service),
    db: Session = Depends(get_db)
) -> CancellationResponse:
    """Cancel one of the member's reservations; promotes the waitlist if a seat frees up."""
    result = service.cancel_reservation(
        db,
        reservation_id,
        current_member.member_id,
        reason=request.reason if request else None,
    )
    return CancellationResponse(
        success=True,
        reservation_id=result.reservation.id,
        status=result.reservation.status,
        already_cancelled=result.already_cancelled,
        promoted_reservation_id=result.promoted_reservation_id,
    )
