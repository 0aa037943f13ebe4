# contractor_scheduling/schemas/availability.py
"""
Pydantic schemas for availability API.
"""

from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel

from .schedules import DayHours


class TimeSlot(BaseModel):
    """One bookable window, contractor-local and timezone-aware."""
    start_time: datetime
    end_time: datetime
    available: bool = True

    model_config = {"from_attributes": True}


class AvailabilityResponse(BaseModel):
    available: bool
    time_slots: list[TimeSlot]
    working_hours: Optional[DayHours] = None
    message: Optional[str] = None

    model_config = {"from_attributes": True}


class AvailabilityRangeRequest(BaseModel):
    contractor_id: str
    start_date: date
    end_date: date
    service_id: Optional[int] = None


class AvailabilityRangeResponse(BaseModel):
    contractor_id: str
    start_date: date
    end_date: date
    availability: dict[date, AvailabilityResponse]
