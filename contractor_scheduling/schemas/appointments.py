# contractor_scheduling/schemas/appointments.py

from datetime import date, datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from .schedules import RefundPolicy, SyncStatus


class AppointmentStatus(str, Enum):
    SCHEDULED = "SCHEDULED"
    CONFIRMED = "CONFIRMED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"


# Statuses that occupy the contractor's calendar
ACTIVE_STATUSES = (
    AppointmentStatus.SCHEDULED,
    AppointmentStatus.CONFIRMED,
    AppointmentStatus.IN_PROGRESS,
)

class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    DEPOSIT_PAID = "DEPOSIT_PAID"
    PAID = "PAID"
    REFUNDED = "REFUNDED"


TERMINAL_STATUSES = (
    AppointmentStatus.COMPLETED,
    AppointmentStatus.CANCELLED,
    AppointmentStatus.NO_SHOW,
)


class AppointmentCreate(BaseModel):
    contractor_id: str = Field(min_length=1)
    service_id: int
    client_id: Optional[str] = None

    client_name: Optional[str] = None
    client_email: Optional[str] = None
    client_phone: Optional[str] = None

    # timezone-aware; naive values are read as contractor-local time
    start_time: datetime
    end_time: Optional[datetime] = None  # defaults to start + service duration

    total_price: Optional[float] = None  # defaults to service price
    deposit_amount: Optional[float] = None

    appointment_notes: Optional[str] = None

    model_config = {"from_attributes": True}


class AppointmentPaymentUpdate(BaseModel):
    deposit_paid: Optional[bool] = None
    payment_status: Optional[PaymentStatus] = None

    @model_validator(mode="after")
    def _check_not_empty(self):
        if self.deposit_paid is None and self.payment_status is None:
            raise ValueError("deposit_paid or payment_status is required")
        return self


class AppointmentStatusUpdate(BaseModel):
    status: AppointmentStatus
    notes: Optional[str] = None
    cancellation_reason: Optional[str] = None


class AppointmentRead(BaseModel):
    id: int

    contractor_id: str
    client_id: Optional[str] = None
    service_id: int

    client_name: Optional[str] = None
    client_email: Optional[str] = None
    client_phone: Optional[str] = None

    appointment_date: date
    start_time: datetime
    end_time: datetime

    status: AppointmentStatus

    total_price: float
    deposit_amount: Optional[float] = None
    remaining_balance: float
    late_fees: float
    refund_amount: float
    deposit_forfeited: bool
    deposit_paid: bool
    payment_status: PaymentStatus

    appointment_notes: Optional[str] = None
    internal_notes: Optional[str] = None
    cancellation_reason: Optional[str] = None

    confirmed_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    hubspot_object_id: Optional[str] = None
    hubspot_sync_status: SyncStatus
    hubspot_last_sync: Optional[datetime] = None

    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @field_validator(
        "start_time", "end_time", "confirmed_at", "started_at", "completed_at",
        "cancelled_at", "hubspot_last_sync", "created_at", "updated_at",
    )
    @classmethod
    def _stored_as_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        # storage keeps naive UTC
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class RefundQuote(BaseModel):
    appointment_id: int
    can_cancel: bool
    hours_until_start: float
    cancellation_deadline_hours: float
    refund_policy: RefundPolicy
    potential_refund: float
    deposit_amount: float
    deposit_paid: bool
