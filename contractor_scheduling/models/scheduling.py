# contractor_scheduling/models/scheduling.py

from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Text,
    text,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()
metadata = Base.metadata


def utcnow() -> datetime:
    """Naive UTC timestamp, the storage convention for every DateTime column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_storage_utc(value: datetime) -> datetime:
    """Aware datetime -> naive UTC, as stored in DateTime columns."""
    if value.tzinfo is None:
        raise ValueError("expected a timezone-aware datetime")
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def from_storage_utc(value: datetime) -> datetime:
    """Naive UTC from storage -> aware UTC."""
    return value.replace(tzinfo=timezone.utc)


class ContractorSchedules(Base):
    __tablename__ = 'contractor_schedules'

    id = Column(Integer, primary_key=True)
    contractor_id = Column(Text, nullable=False, unique=True)
    timezone = Column(Text, nullable=False, server_default=text("'UTC'"))
    working_hours = Column(Text, nullable=False, server_default=text("'{}'"))
    availability_rules = Column(Text)
    buffer_time = Column(Integer, nullable=False, server_default=text('15'))
    advance_booking_days = Column(Integer, nullable=False, server_default=text('30'))
    minimum_notice_hours = Column(Float, nullable=False, server_default=text('24'))
    is_accepting_bookings = Column(Boolean, nullable=False, default=True)
    auto_confirm_bookings = Column(Boolean, nullable=False, default=False)
    requires_deposit = Column(Boolean, nullable=False, default=True)
    deposit_percentage = Column(Float, nullable=False, server_default=text('25'))
    cancellation_policy = Column(Text, nullable=False, server_default=text("'{}'"))

    hubspot_object_id = Column(Text)
    hubspot_sync_status = Column(Text, nullable=False, server_default=text("'PENDING'"))
    hubspot_last_sync = Column(DateTime)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    services = relationship('ScheduleServices', back_populates='schedule')
    appointments = relationship('Appointments', back_populates='schedule')


class ScheduleServices(Base):
    __tablename__ = 'schedule_services'

    id = Column(Integer, primary_key=True)
    contractor_id = Column(Text, nullable=False, index=True)
    schedule_id = Column(ForeignKey('contractor_schedules.id', ondelete='CASCADE'), nullable=False)
    service_name = Column(Text, nullable=False)
    description = Column(Text)
    duration = Column(Integer, nullable=False)
    price = Column(Float, nullable=False)
    deposit_required = Column(Boolean, nullable=False, default=True)
    deposit_amount = Column(Float)
    preparation_time = Column(Integer, nullable=False, server_default=text('0'))
    cleanup_time = Column(Integer, nullable=False, server_default=text('0'))
    category = Column(Text)
    requirements = Column(Text)
    is_active = Column(Boolean, nullable=False, default=True)

    hubspot_object_id = Column(Text)
    hubspot_sync_status = Column(Text, nullable=False, server_default=text("'PENDING'"))
    hubspot_last_sync = Column(DateTime)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    schedule = relationship('ContractorSchedules', back_populates='services')
    appointments = relationship('Appointments', back_populates='service')


class Appointments(Base):
    __tablename__ = 'appointments'
    __table_args__ = (
        Index('ix_appointments_contractor_start', 'contractor_id', 'start_time'),
    )

    id = Column(Integer, primary_key=True)
    contractor_id = Column(Text, nullable=False)
    client_id = Column(Text)  # nullable for non-member clients
    schedule_id = Column(ForeignKey('contractor_schedules.id'), nullable=False)
    service_id = Column(ForeignKey('schedule_services.id'), nullable=False)

    client_name = Column(Text)
    client_email = Column(Text)
    client_phone = Column(Text)

    appointment_date = Column(Date, nullable=False)  # contractor-local date
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    # service preparation/cleanup captured at booking time
    padding_before = Column(Integer, nullable=False, server_default=text('0'))
    padding_after = Column(Integer, nullable=False, server_default=text('0'))

    status = Column(Text, nullable=False, server_default=text("'SCHEDULED'"))

    total_price = Column(Float, nullable=False)
    deposit_amount = Column(Float)
    remaining_balance = Column(Float, nullable=False)
    late_fees = Column(Float, nullable=False, server_default=text('0'))
    refund_amount = Column(Float, nullable=False, server_default=text('0'))
    deposit_paid = Column(Boolean, nullable=False, default=False)
    payment_status = Column(Text, nullable=False, server_default=text("'PENDING'"))
    deposit_forfeited = Column(Boolean, nullable=False, default=False)

    appointment_notes = Column(Text)
    internal_notes = Column(Text)
    cancellation_reason = Column(Text)

    confirmed_at = Column(DateTime)
    started_at = Column(DateTime)
    completed_at = Column(DateTime)
    cancelled_at = Column(DateTime)

    hubspot_object_id = Column(Text)
    hubspot_sync_status = Column(Text, nullable=False, server_default=text("'PENDING'"))
    hubspot_last_sync = Column(DateTime)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    schedule = relationship('ContractorSchedules', back_populates='appointments')
    service = relationship('ScheduleServices', back_populates='appointments')


class CrmSyncJobs(Base):
    __tablename__ = 'crm_sync_jobs'
    __table_args__ = (
        Index('ix_crm_sync_jobs_due', 'state', 'next_attempt_at'),
    )

    id = Column(Integer, primary_key=True)
    entity_type = Column(Text, nullable=False)  # schedule / service / appointment
    entity_id = Column(Integer, nullable=False)
    reason = Column(Text)
    state = Column(Text, nullable=False, server_default=text("'PENDING'"))
    attempts = Column(Integer, nullable=False, server_default=text('0'))
    next_attempt_at = Column(DateTime, nullable=False, default=utcnow)
    last_error = Column(Text)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
