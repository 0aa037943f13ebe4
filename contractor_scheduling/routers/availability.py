# contractor_scheduling/routers/availability.py
"""
Availability API endpoints.

GET  /availability       - Bookable windows for one contractor-local date
POST /availability/range - Same, for every date in a range
"""

from datetime import date

from fastapi import APIRouter, Depends, Query

from ..dependencies import get_container
from ..schemas.availability import (
    AvailabilityRangeRequest,
    AvailabilityRangeResponse,
    AvailabilityResponse,
)
from ..services.container import SchedulingContainer

router = APIRouter(prefix="/availability", tags=["availability"])


@router.get("", response_model=AvailabilityResponse)
def get_availability(
    contractor_id: str,
    target_date: date = Query(alias="date"),
    service_id: int | None = None,
    container: SchedulingContainer = Depends(get_container),
):
    return container.get_availability(contractor_id, target_date, service_id=service_id)


@router.post("/range", response_model=AvailabilityRangeResponse)
def get_availability_range(
    data: AvailabilityRangeRequest,
    container: SchedulingContainer = Depends(get_container),
):
    availability = container.get_availability_range(
        data.contractor_id,
        data.start_date,
        data.end_date,
        service_id=data.service_id,
    )
    return AvailabilityRangeResponse(
        contractor_id=data.contractor_id,
        start_date=data.start_date,
        end_date=data.end_date,
        availability=availability,
    )
