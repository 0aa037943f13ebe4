# contractor_scheduling/schemas/schedules.py
"""
Typed contractor schedule configuration.

The database keeps working hours, availability rules and the cancellation
policy as JSON text; ScheduleConfigStore parses them into these models once,
so the availability engine and the booking path never touch raw JSON.
"""

from datetime import date, datetime, time
from enum import Enum
from typing import Optional

import pytz
from pydantic import BaseModel, Field, field_serializer, field_validator, model_validator

WEEKDAY_NAMES = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]


class RefundPolicy(str, Enum):
    FULL = "FULL"
    PARTIAL = "PARTIAL"
    NO_REFUND = "NO_REFUND"


class SyncStatus(str, Enum):
    PENDING = "PENDING"
    SYNCED = "SYNCED"
    FAILED = "FAILED"


class DayHours(BaseModel):
    """Working window for one weekday, half-open [start, end)."""
    start: time = time(9, 0)
    end: time = time(17, 0)
    enabled: bool = False

    @model_validator(mode="after")
    def _check_window(self):
        if self.enabled and self.start >= self.end:
            raise ValueError(f"start {self.start:%H:%M} must be before end {self.end:%H:%M}")
        return self

    @field_serializer("start", "end")
    def _format_time(self, value: time) -> str:
        return value.strftime("%H:%M")


class WorkingHours(BaseModel):
    monday: DayHours = Field(default_factory=DayHours)
    tuesday: DayHours = Field(default_factory=DayHours)
    wednesday: DayHours = Field(default_factory=DayHours)
    thursday: DayHours = Field(default_factory=DayHours)
    friday: DayHours = Field(default_factory=DayHours)
    saturday: DayHours = Field(default_factory=DayHours)
    sunday: DayHours = Field(default_factory=DayHours)

    def for_date(self, target_date: date) -> DayHours:
        return getattr(self, WEEKDAY_NAMES[target_date.weekday()])


class RecurringUnavailable(BaseModel):
    """Weekly blocked window. day_of_week: 0 = Sunday ... 6 = Saturday."""
    day_of_week: int = Field(ge=0, le=6)
    start_time: time
    end_time: time

    @model_validator(mode="after")
    def _check_window(self):
        if self.start_time >= self.end_time:
            raise ValueError("recurring unavailable window must have start_time < end_time")
        return self

    @field_serializer("start_time", "end_time")
    def _format_time(self, value: time) -> str:
        return value.strftime("%H:%M")

    def applies_to(self, target_date: date) -> bool:
        # date.weekday(): Monday = 0; stored format: Sunday = 0
        return (target_date.weekday() + 1) % 7 == self.day_of_week


class AvailabilityRules(BaseModel):
    blackout_dates: list[date] = []
    recurring_unavailable: list[RecurringUnavailable] = []


class CancellationPolicy(BaseModel):
    allow_cancellation: bool = True
    cancellation_deadline_hours: float = Field(default=24, ge=0)
    refund_policy: RefundPolicy = RefundPolicy.PARTIAL
    partial_refund_percentage: Optional[float] = Field(default=50, ge=0, le=100)

    @model_validator(mode="after")
    def _check_partial(self):
        if self.refund_policy == RefundPolicy.PARTIAL and self.partial_refund_percentage is None:
            raise ValueError("partial_refund_percentage is required for PARTIAL refund policy")
        return self


class SchedulePolicy(BaseModel):
    """Fields shared by the create payload and the parsed config."""
    timezone: str = "UTC"
    working_hours: WorkingHours = Field(default_factory=WorkingHours)
    availability_rules: Optional[AvailabilityRules] = None
    buffer_time: int = Field(default=15, ge=0)
    advance_booking_days: int = Field(default=30, ge=0)
    minimum_notice_hours: float = Field(default=24, ge=0)
    is_accepting_bookings: bool = True
    auto_confirm_bookings: bool = False
    requires_deposit: bool = True
    deposit_percentage: float = Field(default=25.0, ge=0, le=100)
    cancellation_policy: CancellationPolicy = Field(default_factory=CancellationPolicy)

    @field_validator("timezone")
    @classmethod
    def _check_timezone(cls, value: str) -> str:
        try:
            pytz.timezone(value)
        except pytz.UnknownTimeZoneError:
            raise ValueError(f"unknown timezone: {value}") from None
        return value


class ScheduleCreate(SchedulePolicy):
    contractor_id: str = Field(min_length=1)


class ScheduleUpdate(BaseModel):
    timezone: Optional[str] = None
    working_hours: Optional[WorkingHours] = None
    availability_rules: Optional[AvailabilityRules] = None
    buffer_time: Optional[int] = Field(default=None, ge=0)
    advance_booking_days: Optional[int] = Field(default=None, ge=0)
    minimum_notice_hours: Optional[float] = Field(default=None, ge=0)
    is_accepting_bookings: Optional[bool] = None
    auto_confirm_bookings: Optional[bool] = None
    requires_deposit: Optional[bool] = None
    deposit_percentage: Optional[float] = Field(default=None, ge=0, le=100)
    cancellation_policy: Optional[CancellationPolicy] = None


class ScheduleConfig(SchedulePolicy):
    """Parsed schedule, as handed to the availability and booking services."""
    id: int
    contractor_id: str

    hubspot_object_id: Optional[str] = None
    hubspot_sync_status: SyncStatus = SyncStatus.PENDING
    hubspot_last_sync: Optional[datetime] = None

    @property
    def tz(self):
        return pytz.timezone(self.timezone)

    def is_blackout(self, target_date: date) -> bool:
        rules = self.availability_rules
        return bool(rules) and target_date in rules.blackout_dates

    def recurring_blocks(self, target_date: date) -> list[RecurringUnavailable]:
        if not self.availability_rules:
            return []
        return [
            block for block in self.availability_rules.recurring_unavailable
            if block.applies_to(target_date)
        ]


# ── Services ─────────────────────────────────────────────────────────────


class ServiceCreate(BaseModel):
    contractor_id: str = Field(min_length=1)
    service_name: str = Field(min_length=1)
    description: Optional[str] = None
    duration: int = Field(gt=0)
    price: float = Field(ge=0)
    deposit_required: bool = True
    deposit_amount: Optional[float] = Field(default=None, ge=0)
    preparation_time: int = Field(default=0, ge=0)
    cleanup_time: int = Field(default=0, ge=0)
    category: Optional[str] = None
    requirements: list[str] = []


class ServiceUpdate(BaseModel):
    service_name: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    duration: Optional[int] = Field(default=None, gt=0)
    price: Optional[float] = Field(default=None, ge=0)
    deposit_required: Optional[bool] = None
    deposit_amount: Optional[float] = Field(default=None, ge=0)
    preparation_time: Optional[int] = Field(default=None, ge=0)
    cleanup_time: Optional[int] = Field(default=None, ge=0)
    category: Optional[str] = None
    requirements: Optional[list[str]] = None
    is_active: Optional[bool] = None

    # Omit a field to keep it; these columns cannot be cleared
    @field_validator(
        "service_name", "duration", "price", "deposit_required",
        "preparation_time", "cleanup_time", "is_active",
        mode="before",
    )
    @classmethod
    def _reject_null(cls, value, info):
        if value is None:
            raise ValueError(f"{info.field_name} cannot be null")
        return value


class ServiceConfig(ServiceCreate):
    id: int
    is_active: bool = True

    hubspot_object_id: Optional[str] = None
    hubspot_sync_status: SyncStatus = SyncStatus.PENDING
    hubspot_last_sync: Optional[datetime] = None
