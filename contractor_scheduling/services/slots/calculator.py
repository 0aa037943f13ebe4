# contractor_scheduling/services/slots/calculator.py
"""
Day slot calculation.

Pure function of (schedule, date, busy intervals, now, slot spec). No DB,
no clock reads: the caller supplies everything, so the same inputs always
give the same windows.

Contains:
✓ working hours of the weekday
✓ blackout dates and recurring unavailable windows
✓ advance window and minimum notice
✓ padded overlap with active appointments (buffer between padded intervals)

Does NOT contain:
✗ Loading appointments (see availability.py)
✗ Locking (availability reads never lock; stale windows fail at commit)
"""

from datetime import date, datetime, timedelta

from ...schemas.availability import AvailabilityResponse, TimeSlot
from ...schemas.schedules import ScheduleConfig
from .config import SlotSpec, get_default_slot_spec
from .rules import BusyInterval, date_violation, find_conflict, window_violation, working_window


def calculate_day_slots(
    schedule: ScheduleConfig,
    target_date: date,
    busy: list[BusyInterval],
    now: datetime,
    spec: SlotSpec | None = None,
) -> AvailabilityResponse:
    """
    Calculate bookable windows for a contractor on target_date.

    Returns:
        AvailabilityResponse; available=False with an empty list and a
        message when the whole day is closed.
    """
    spec = spec or get_default_slot_spec()
    hours = schedule.working_hours.for_date(target_date)

    # Step 1: Day-level policy
    violation = date_violation(schedule, target_date, now)
    if violation:
        return AvailabilityResponse(
            available=False,
            time_slots=[],
            working_hours=hours if hours.enabled else None,
            message=violation.message,
        )

    window_start, window_end = working_window(schedule, target_date)

    notice_cutoff = now + timedelta(hours=schedule.minimum_notice_hours)
    if window_end <= notice_cutoff:
        return AvailabilityResponse(
            available=False,
            time_slots=[],
            working_hours=hours,
            message=f"Minimum {schedule.minimum_notice_hours:g} hours notice required",
        )

    # Step 2: Walk the working window
    duration = timedelta(minutes=spec.duration_minutes)
    padding_after = timedelta(minutes=spec.padding_after)
    step = timedelta(minutes=spec.effective_minutes + schedule.buffer_time)

    tz = schedule.tz
    slots: list[TimeSlot] = []

    slot_start = window_start + timedelta(minutes=spec.padding_before)
    while slot_start + duration + padding_after <= window_end:
        slot_end = slot_start + duration

        # Step 3: Policy (notice, recurring blocks) then padded overlap
        if (
            window_violation(schedule, slot_start, slot_end, spec, now) is None
            and find_conflict(slot_start, slot_end, spec, busy, schedule.buffer_time) is None
        ):
            slots.append(TimeSlot(
                start_time=slot_start.astimezone(tz),
                end_time=slot_end.astimezone(tz),
            ))

        slot_start += step

    return AvailabilityResponse(
        available=bool(slots),
        time_slots=slots,
        working_hours=hours,
        message=None if slots else "No open windows on this date",
    )
