# contractor_scheduling/routers/analytics.py

from datetime import date

from fastapi import APIRouter, Depends

from ..dependencies import get_container
from ..schemas.analytics import SchedulingAnalytics
from ..services.container import SchedulingContainer

router = APIRouter(prefix="/analytics", tags=["analytics"])


@router.get("", response_model=SchedulingAnalytics)
def get_scheduling_analytics(
    contractor_id: str,
    start_date: date,
    end_date: date,
    container: SchedulingContainer = Depends(get_container),
):
    return container.analytics.get_scheduling_analytics(contractor_id, start_date, end_date)
