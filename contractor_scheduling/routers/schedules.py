# contractor_scheduling/routers/schedules.py
# Services: PUT updates future bookings only; deactivate with is_active=false.

from fastapi import APIRouter, Depends, status

from ..dependencies import get_container
from ..schemas.schedules import (
    ScheduleConfig,
    ScheduleCreate,
    ScheduleUpdate,
    ServiceConfig,
    ServiceCreate,
    ServiceUpdate,
)
from ..services.container import SchedulingContainer

router = APIRouter(tags=["schedules"])


@router.get("/contractor-schedule", response_model=ScheduleConfig)
def get_schedule(contractor_id: str, container: SchedulingContainer = Depends(get_container)):
    return container.store.get_schedule(contractor_id)


@router.post("/contractor-schedule", response_model=ScheduleConfig, status_code=status.HTTP_201_CREATED)
def create_schedule(data: ScheduleCreate, container: SchedulingContainer = Depends(get_container)):
    return container.store.create_schedule(data)


@router.put("/contractor-schedule", response_model=ScheduleConfig)
def update_schedule(
    contractor_id: str,
    data: ScheduleUpdate,
    container: SchedulingContainer = Depends(get_container),
):
    return container.store.update_schedule(contractor_id, data)


@router.get("/services", response_model=list[ServiceConfig])
def list_services(
    contractor_id: str,
    include_inactive: bool = False,
    container: SchedulingContainer = Depends(get_container),
):
    return container.store.list_services(contractor_id, include_inactive=include_inactive)


@router.post("/services", response_model=ServiceConfig, status_code=status.HTTP_201_CREATED)
def create_service(data: ServiceCreate, container: SchedulingContainer = Depends(get_container)):
    return container.store.create_service(data)


@router.put("/services/{id}", response_model=ServiceConfig)
def update_service(
    id: int,
    data: ServiceUpdate,
    container: SchedulingContainer = Depends(get_container),
):
    return container.store.update_service(id, data)
