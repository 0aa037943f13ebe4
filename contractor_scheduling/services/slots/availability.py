# contractor_scheduling/services/slots/availability.py
"""
Contractor availability backed by the database.

Loads the parsed schedule, the requested service and the contractor's active
appointments, then hands everything to the pure day calculator.

Takes into account:
- Schedule policy (via ScheduleConfigStore, parsed once)
- Service duration and preparation/cleanup padding
- Active appointments (SCHEDULED, CONFIRMED, IN_PROGRESS)
"""

from datetime import date, datetime, timedelta

from sqlalchemy.orm import Session

from ...errors import ValidationError
from ...models import Appointments, from_storage_utc, to_storage_utc
from ...schemas.appointments import ACTIVE_STATUSES
from ...schemas.availability import AvailabilityResponse
from ..schedule_store import ScheduleConfigStore
from .calculator import calculate_day_slots
from .config import SlotSpec, get_default_slot_spec
from .rules import BusyInterval

MAX_RANGE_DAYS = 62

# Padding is stored per appointment, so widen the query to catch neighbours
# whose padded interval reaches into the window.
BUSY_QUERY_MARGIN = timedelta(days=1)


def load_busy_intervals(
    db: Session,
    contractor_id: str,
    start: datetime,
    end: datetime,
    exclude_id: int | None = None,
) -> list[BusyInterval]:
    """Active appointments of a contractor near [start, end), aware UTC."""
    query = (
        db.query(Appointments)
        .filter(
            Appointments.contractor_id == contractor_id,
            Appointments.status.in_([s.value for s in ACTIVE_STATUSES]),
            Appointments.start_time < to_storage_utc(end + BUSY_QUERY_MARGIN),
            Appointments.end_time > to_storage_utc(start - BUSY_QUERY_MARGIN),
        )
    )
    if exclude_id is not None:
        query = query.filter(Appointments.id != exclude_id)

    return [
        BusyInterval(
            start=from_storage_utc(appt.start_time),
            end=from_storage_utc(appt.end_time),
            padding_before=appt.padding_before or 0,
            padding_after=appt.padding_after or 0,
            appointment_id=appt.id,
        )
        for appt in query.order_by(Appointments.start_time).all()
    ]


def resolve_slot_spec(
    db: Session,
    store: ScheduleConfigStore,
    contractor_id: str,
    service_id: int | None,
) -> SlotSpec:
    if service_id is None:
        return get_default_slot_spec()
    service = store.load_service(db, service_id, contractor_id=contractor_id)
    return SlotSpec.for_service(service)


def get_contractor_availability(
    db: Session,
    store: ScheduleConfigStore,
    contractor_id: str,
    target_date: date,
    now: datetime,
    service_id: int | None = None,
) -> AvailabilityResponse:
    """
    Bookable windows for one contractor-local date.

    Raises:
        NotFoundError: unknown contractor schedule or service
    """
    schedule = store.load_schedule(db, contractor_id)
    spec = resolve_slot_spec(db, store, contractor_id, service_id)

    day_start = schedule.tz.localize(datetime.combine(target_date, datetime.min.time()))
    busy = load_busy_intervals(db, contractor_id, day_start, day_start + timedelta(days=1))

    return calculate_day_slots(schedule, target_date, busy, now, spec)


def get_availability_range(
    db: Session,
    store: ScheduleConfigStore,
    contractor_id: str,
    start_date: date,
    end_date: date,
    now: datetime,
    service_id: int | None = None,
) -> dict[date, AvailabilityResponse]:
    """
    Availability for every date in [start_date, end_date].

    Appointments are loaded once for the whole range.
    """
    if end_date < start_date:
        raise ValidationError("invalid_range", "end_date must not be before start_date")
    days = (end_date - start_date).days + 1
    if days > MAX_RANGE_DAYS:
        raise ValidationError(
            "range_too_large",
            f"Date range is limited to {MAX_RANGE_DAYS} days, got {days}",
        )

    schedule = store.load_schedule(db, contractor_id)
    spec = resolve_slot_spec(db, store, contractor_id, service_id)

    range_start = schedule.tz.localize(datetime.combine(start_date, datetime.min.time()))
    range_end = schedule.tz.localize(datetime.combine(end_date + timedelta(days=1), datetime.min.time()))
    busy = load_busy_intervals(db, contractor_id, range_start, range_end)

    result: dict[date, AvailabilityResponse] = {}
    for offset in range(days):
        target_date = start_date + timedelta(days=offset)
        result[target_date] = calculate_day_slots(schedule, target_date, busy, now, spec)
    return result
