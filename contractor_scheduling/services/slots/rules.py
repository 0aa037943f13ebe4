# contractor_scheduling/services/slots/rules.py
"""
Window rules shared by the availability engine and the booking committer.

Both sides ask the same questions of a candidate window, so any slot the
engine offers is accepted at commit time unless a concurrent booking took it.

Overlap rule: every appointment occupies its padded interval
[start - padding_before, end + padding_after]. Two padded intervals must be
separated by at least the schedule's buffer time.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone

from ...schemas.schedules import ScheduleConfig
from .config import SlotSpec


@dataclass(frozen=True)
class BusyInterval:
    """An active appointment as seen by the overlap check (aware datetimes)."""
    start: datetime
    end: datetime
    padding_before: int = 0
    padding_after: int = 0
    appointment_id: int | None = None

    @property
    def padded_start(self) -> datetime:
        return self.start - timedelta(minutes=self.padding_before)

    @property
    def padded_end(self) -> datetime:
        return self.end + timedelta(minutes=self.padding_after)


@dataclass(frozen=True)
class WindowViolation:
    code: str
    message: str


def conflicts_with(
    start: datetime,
    end: datetime,
    spec: SlotSpec,
    busy: BusyInterval,
    buffer_minutes: int,
) -> bool:
    """True if [start, end) with the slot padding comes within buffer of busy."""
    buffer = timedelta(minutes=buffer_minutes)
    padded_start = start - timedelta(minutes=spec.padding_before)
    padded_end = end + timedelta(minutes=spec.padding_after)
    return padded_start - buffer < busy.padded_end and busy.padded_start < padded_end + buffer


def find_conflict(
    start: datetime,
    end: datetime,
    spec: SlotSpec,
    busy: list[BusyInterval],
    buffer_minutes: int,
) -> BusyInterval | None:
    for interval in busy:
        if conflicts_with(start, end, spec, interval, buffer_minutes):
            return interval
    return None


def local_today(schedule: ScheduleConfig, now: datetime) -> date:
    return now.astimezone(schedule.tz).date()


def working_window(schedule: ScheduleConfig, target_date: date) -> tuple[datetime, datetime] | None:
    """
    Working window for target_date as aware UTC datetimes.

    Returns None when the weekday is disabled.
    """
    hours = schedule.working_hours.for_date(target_date)
    if not hours.enabled:
        return None

    tz = schedule.tz
    start = tz.localize(datetime.combine(target_date, hours.start))
    end = tz.localize(datetime.combine(target_date, hours.end))
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


def blocked_windows(schedule: ScheduleConfig, target_date: date) -> list[tuple[datetime, datetime]]:
    """Recurring-unavailable windows that fall on target_date, in UTC."""
    tz = schedule.tz
    windows = []
    for block in schedule.recurring_blocks(target_date):
        start = tz.localize(datetime.combine(target_date, block.start_time))
        end = tz.localize(datetime.combine(target_date, block.end_time))
        windows.append((start.astimezone(timezone.utc), end.astimezone(timezone.utc)))
    return windows


def date_violation(schedule: ScheduleConfig, target_date: date, now: datetime) -> WindowViolation | None:
    """Day-level checks: master switch, booking horizon, blackout, weekday."""
    if not schedule.is_accepting_bookings:
        return WindowViolation(
            "not_accepting_bookings",
            "Contractor is not currently accepting bookings",
        )

    today = local_today(schedule, now)
    if target_date < today:
        return WindowViolation("in_past", "Cannot book appointments in the past")

    if (target_date - today).days > schedule.advance_booking_days:
        return WindowViolation(
            "advance_window",
            f"Bookings are only available up to {schedule.advance_booking_days} days in advance",
        )

    if schedule.is_blackout(target_date):
        return WindowViolation("blackout_date", f"{target_date.isoformat()} is a blackout date")

    if working_window(schedule, target_date) is None:
        return WindowViolation("outside_working_hours", "Contractor does not work on this day")

    return None


def window_violation(
    schedule: ScheduleConfig,
    start: datetime,
    end: datetime,
    spec: SlotSpec,
    now: datetime,
) -> WindowViolation | None:
    """
    Check a concrete [start, end) window against the schedule's policies.

    Overlap with other appointments is not checked here; see find_conflict.
    """
    if start < now:
        return WindowViolation("in_past", "Cannot book appointments in the past")

    notice_cutoff = now + timedelta(hours=schedule.minimum_notice_hours)
    if start < notice_cutoff:
        return WindowViolation(
            "minimum_notice",
            f"Minimum {schedule.minimum_notice_hours:g} hours notice required",
        )

    target_date = start.astimezone(schedule.tz).date()
    violation = date_violation(schedule, target_date, now)
    if violation:
        return violation

    window_start, window_end = working_window(schedule, target_date)
    padded_start = start - timedelta(minutes=spec.padding_before)
    padded_end = end + timedelta(minutes=spec.padding_after)
    if padded_start < window_start or padded_end > window_end:
        hours = schedule.working_hours.for_date(target_date)
        return WindowViolation(
            "outside_working_hours",
            f"Requested time is outside working hours "
            f"({hours.start:%H:%M}-{hours.end:%H:%M} {schedule.timezone})",
        )

    for block_start, block_end in blocked_windows(schedule, target_date):
        if padded_start < block_end and block_start < padded_end:
            return WindowViolation(
                "recurring_unavailable",
                "Requested time falls in a recurring unavailable window",
            )

    return None
