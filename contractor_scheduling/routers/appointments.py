# contractor_scheduling/routers/appointments.py
# Appointments are never deleted: status moves to CANCELLED / NO_SHOW instead.

from datetime import date

from fastapi import APIRouter, Depends, status

from ..dependencies import get_container
from ..errors import ValidationError
from ..models import Appointments as DBAppointments
from ..schemas.appointments import (
    AppointmentCreate,
    AppointmentPaymentUpdate,
    AppointmentRead,
    AppointmentStatus,
    AppointmentStatusUpdate,
    RefundQuote,
)
from ..services.container import SchedulingContainer

router = APIRouter(prefix="/appointments", tags=["appointments"])


@router.post("", response_model=AppointmentRead, status_code=status.HTTP_201_CREATED)
def create_appointment(
    data: AppointmentCreate,
    container: SchedulingContainer = Depends(get_container),
):
    return container.booking.create_appointment(data, now=container.now())


@router.get("", response_model=list[AppointmentRead])
def list_appointments(
    contractor_id: str,
    status: AppointmentStatus | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
    container: SchedulingContainer = Depends(get_container),
):
    if start_date and end_date and end_date < start_date:
        raise ValidationError("invalid_range", "end_date must not be before start_date")

    with container.session_factory() as db:
        query = db.query(DBAppointments).filter(DBAppointments.contractor_id == contractor_id)
        if status is not None:
            query = query.filter(DBAppointments.status == status.value)
        if start_date is not None:
            query = query.filter(DBAppointments.appointment_date >= start_date)
        if end_date is not None:
            query = query.filter(DBAppointments.appointment_date <= end_date)
        return query.order_by(DBAppointments.start_time).all()


@router.get("/{id}", response_model=AppointmentRead)
def get_appointment(id: int, container: SchedulingContainer = Depends(get_container)):
    return container.lifecycle.get_appointment(id)


@router.put("/{id}/status", response_model=AppointmentRead)
def update_appointment_status(
    id: int,
    data: AppointmentStatusUpdate,
    container: SchedulingContainer = Depends(get_container),
):
    return container.lifecycle.transition(
        id,
        data.status,
        now=container.now(),
        notes=data.notes,
        cancellation_reason=data.cancellation_reason,
    )


@router.put("/{id}/payment", response_model=AppointmentRead)
def update_appointment_payment(
    id: int,
    data: AppointmentPaymentUpdate,
    container: SchedulingContainer = Depends(get_container),
):
    return container.lifecycle.record_payment(
        id,
        deposit_paid=data.deposit_paid,
        payment_status=data.payment_status,
        now=container.now(),
    )


@router.get("/{id}/refund-quote", response_model=RefundQuote)
def get_refund_quote(id: int, container: SchedulingContainer = Depends(get_container)):
    return container.lifecycle.quote_refund(id, now=container.now())
