# pyright: reportMissingTypeStubs=false
"""
Facility availability API endpoints.
"""

import logging
from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from core.database import get_db
from api.responses import AvailabilityResponse, SlotListResponse, SlotResponse
from services.availability_service import AvailabilityService
from utils.datetime_utils import parse_datetime_string

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/facilities/{facility_id}/availability", summary="Check whether a time range can be booked",
            response_model=AvailabilityResponse)
def check_facility_availability(
    facility_id: int,
    start_time: str = Query(..., description="ISO datetime; local time when no offset is given"),
    end_time: str = Query(..., description="ISO datetime; local time when no offset is given"),
    db: Session = Depends(get_db)
) -> AvailabilityResponse:
    """
    Check a time range against the facility's booking rules, hours,
    closures and existing bookings. Nothing is reserved.
    """
    try:
        start = parse_datetime_string(start_time)
        end = parse_datetime_string(end_time)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid datetime format, expected ISO 8601"
        )

    result = AvailabilityService.check_availability(db, facility_id, start, end)
    return AvailabilityResponse(
        available=result.available,
        reason=result.reason.value if result.reason else None,
        message=result.message,
    )


@router.get("/facilities/{facility_id}/slots", summary="List bookable slots",
            response_model=SlotListResponse)
def list_facility_slots(
    facility_id: int,
    start_date: date = Query(...),
    end_date: date = Query(...),
    duration_minutes: int | None = Query(None, gt=0),
    db: Session = Depends(get_db)
) -> SlotListResponse:
    """List bookable slots between two local dates (inclusive)."""
    slots = AvailabilityService.list_available_slots(
        db, facility_id, start_date, end_date, duration_minutes
    )
    duration = int(slots.duration.total_seconds() // 60)
    return SlotListResponse(
        facility_id=facility_id,
        duration_minutes=duration,
        slots=[SlotResponse(start_time=start, end_time=end) for start, end in slots],
    )
