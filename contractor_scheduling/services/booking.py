# contractor_scheduling/services/booking.py
"""
Appointment creation.

Validate-and-insert is one critical section per contractor:

1. in-process lock for the contractor (ContractorLocks)
2. SELECT ... FOR UPDATE on the schedule row (serializes other processes
   on databases that support row locks)
3. re-read active appointments, check the padded overlap, insert the
   appointment and its CRM sync job, commit

Of N concurrent requests for the same window exactly one commits; the rest
see the winner in step 3 and get ConflictError.
"""

import logging
import math
import threading
import weakref
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone

import pydantic
from sqlalchemy.orm import sessionmaker

from ..config import settings
from ..errors import ConflictError, PolicyViolationError, ValidationError
from ..models import Appointments
from ..schemas.appointments import AppointmentCreate, AppointmentStatus, PaymentStatus
from ..schemas.schedules import ScheduleConfig, ServiceConfig
from .events import EventEmitter
from .lifecycle import AppointmentLifecycle
from .schedule_store import ScheduleConfigStore
from .slots import SlotSpec, find_conflict, load_busy_intervals, to_storage_utc, window_violation
from .sync.outbox import enqueue_sync

logger = logging.getLogger(__name__)


class ContractorLocks:
    """
    Registry of one threading.Lock per contractor.

    Entries are weak: a contractor's lock lives only while someone holds a
    reference to it, so the registry is bounded by the contractors with a
    booking in flight.
    """

    def __init__(self, timeout: float | None = None):
        self.timeout = settings.lock_timeout_seconds if timeout is None else timeout
        self._locks: weakref.WeakValueDictionary[str, threading.Lock] = weakref.WeakValueDictionary()
        self._guard = threading.Lock()

    def __len__(self) -> int:
        return len(self._locks)

    def get(self, contractor_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(contractor_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[contractor_id] = lock
            return lock

    @contextmanager
    def hold(self, contractor_id: str):
        lock = self.get(contractor_id)
        if not lock.acquire(timeout=self.timeout):
            raise ConflictError(
                "contractor_busy",
                f"Timed out waiting for contractor {contractor_id}",
                suggestion="Retry the booking",
            )
        try:
            yield
        finally:
            lock.release()


def _localize(value: datetime, schedule: ScheduleConfig) -> datetime:
    """Naive request times are contractor-local wall clock."""
    if value.tzinfo is None:
        return schedule.tz.localize(value)
    return value


def required_deposit(schedule: ScheduleConfig, service: ServiceConfig, total_price: float) -> float | None:
    """Minimum deposit for a booking, or None when no deposit is required."""
    if not (schedule.requires_deposit and service.deposit_required):
        return None
    if service.deposit_amount is not None:
        return round(service.deposit_amount, 2)
    return round(total_price * schedule.deposit_percentage / 100, 2)


class BookingCommitter:
    def __init__(
        self,
        session_factory: sessionmaker,
        store: ScheduleConfigStore,
        lifecycle: AppointmentLifecycle,
        events: EventEmitter,
        locks: ContractorLocks | None = None,
    ):
        self.session_factory = session_factory
        self.store = store
        self.lifecycle = lifecycle
        self.events = events
        self.locks = locks or ContractorLocks()

    def create_appointment(
        self,
        request: AppointmentCreate | dict,
        now: datetime | None = None,
    ) -> Appointments:
        """
        Reserve a window and create the appointment in SCHEDULED.

        With auto-confirm enabled on the schedule, the returned appointment
        is already CONFIRMED.

        Raises:
            ValidationError: malformed request
            NotFoundError: unknown schedule or service
            PolicyViolationError: booking window, notice or deposit policy
            ConflictError: window overlaps an active appointment
        """
        now = now or datetime.now(timezone.utc)
        request = self._validate_request(request)

        # Events and auto-confirm run after the contractor lock is released
        with self.locks.hold(request.contractor_id):
            appointment, schedule = self._commit(request, now)

        self.events.emit("appointment_created", {
            "appointment_id": appointment.id,
            "contractor_id": appointment.contractor_id,
            "client_id": appointment.client_id,
            "service_id": appointment.service_id,
            "start_time": appointment.start_time.isoformat(),
        })

        if schedule.auto_confirm_bookings:
            appointment = self.lifecycle.transition(
                appointment.id,
                AppointmentStatus.CONFIRMED,
                now=now,
                expected_status=AppointmentStatus.SCHEDULED,
            )

        return appointment

    @staticmethod
    def _validate_request(request: AppointmentCreate | dict) -> AppointmentCreate:
        if isinstance(request, dict):
            try:
                request = AppointmentCreate.model_validate(request)
            except pydantic.ValidationError as e:
                first = e.errors()[0]
                location = ".".join(str(part) for part in first.get("loc", ()))
                raise ValidationError("invalid_request", f"{location}: {first.get('msg')}") from None

        if not request.client_id and not (request.client_name and request.client_email):
            raise ValidationError(
                "missing_client",
                "Either client_id or client_name and client_email are required",
            )
        if request.total_price is not None and request.total_price < 0:
            raise ValidationError("invalid_price", "total_price must not be negative")
        if request.deposit_amount is not None and request.deposit_amount < 0:
            raise ValidationError("invalid_deposit", "deposit_amount must not be negative")

        end = request.end_time
        if end is not None and (end.tzinfo is None) == (request.start_time.tzinfo is None):
            if end <= request.start_time:
                raise ValidationError("invalid_time_range", "end_time must be after start_time")

        return request

    def _commit(self, request: AppointmentCreate, now: datetime) -> tuple[Appointments, ScheduleConfig]:
        with self.session_factory() as db:
            try:
                schedule_row = self.store.load_schedule_row(db, request.contractor_id, lock=True)
                schedule = self.store.parse_schedule(schedule_row)
                service = self.store.load_service(db, request.service_id, contractor_id=request.contractor_id)

                start = _localize(request.start_time, schedule)
                if request.end_time is not None:
                    end = _localize(request.end_time, schedule)
                else:
                    end = start + timedelta(minutes=service.duration)
                if end <= start:
                    raise ValidationError("invalid_time_range", "end_time must be after start_time")

                spec = SlotSpec(
                    duration_minutes=max(1, math.ceil((end - start).total_seconds() / 60)),
                    padding_before=service.preparation_time,
                    padding_after=service.cleanup_time,
                )

                violation = window_violation(schedule, start, end, spec, now)
                if violation:
                    raise PolicyViolationError(violation.code, violation.message)

                total_price = request.total_price if request.total_price is not None else service.price
                deposit = self._resolve_deposit(schedule, service, total_price, request.deposit_amount)

                busy = load_busy_intervals(db, request.contractor_id, start, end)
                conflict = find_conflict(start, end, spec, busy, schedule.buffer_time)
                if conflict:
                    logger.warning(
                        f"Booking conflict: contractor={request.contractor_id} "
                        f"start={start.isoformat()} overlaps appointment {conflict.appointment_id}"
                    )
                    raise ConflictError(
                        "slot_taken",
                        "Requested time conflicts with an existing appointment",
                        suggestion="Check availability and choose another time",
                    )

                stamp = to_storage_utc(now)
                appointment = Appointments(
                    contractor_id=request.contractor_id,
                    client_id=request.client_id,
                    schedule_id=schedule.id,
                    service_id=service.id,
                    client_name=request.client_name,
                    client_email=request.client_email,
                    client_phone=request.client_phone,
                    appointment_date=start.astimezone(schedule.tz).date(),
                    start_time=to_storage_utc(start),
                    end_time=to_storage_utc(end),
                    padding_before=service.preparation_time,
                    padding_after=service.cleanup_time,
                    status=AppointmentStatus.SCHEDULED.value,
                    total_price=total_price,
                    deposit_amount=deposit,
                    remaining_balance=round(total_price - (deposit or 0), 2),
                    late_fees=0.0,
                    refund_amount=0.0,
                    deposit_forfeited=False,
                    deposit_paid=False,
                    payment_status=PaymentStatus.PENDING.value,
                    appointment_notes=request.appointment_notes,
                    created_at=stamp,
                    updated_at=stamp,
                )
                db.add(appointment)
                db.flush()

                enqueue_sync(db, "appointment", appointment.id, "appointment_created", now=stamp)
                db.commit()
            except Exception:
                db.rollback()
                raise

            db.refresh(appointment)

        logger.info(
            f"Appointment created: id={appointment.id} contractor={appointment.contractor_id} "
            f"start={appointment.start_time.isoformat()} service={appointment.service_id}"
        )
        return appointment, schedule

    @staticmethod
    def _resolve_deposit(
        schedule: ScheduleConfig,
        service: ServiceConfig,
        total_price: float,
        provided: float | None,
    ) -> float | None:
        minimum = required_deposit(schedule, service, total_price)

        if minimum is None:
            if provided is not None and provided > total_price:
                raise ValidationError("invalid_deposit", "Deposit cannot exceed the total price")
            return provided

        deposit = provided if provided is not None else minimum
        if deposit <= 0 or deposit > total_price:
            raise PolicyViolationError(
                "deposit_required",
                f"A deposit between 0 and {total_price:.2f} is required, got {deposit:.2f}",
            )
        if deposit < minimum:
            raise PolicyViolationError(
                "deposit_required",
                f"Deposit of at least {minimum:.2f} is required",
                suggestion=f"Provide deposit_amount >= {minimum:.2f}",
            )
        return round(deposit, 2)
