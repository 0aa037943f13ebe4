# contractor_scheduling/services/slots/__init__.py
"""
Availability engine.

calculator: pure day calculation over a parsed schedule and busy intervals
availability: DB-backed loaders around the calculator
rules: window checks shared with the booking committer
"""

from ...models import from_storage_utc, to_storage_utc
from .config import SlotSpec, get_default_slot_spec
from .rules import BusyInterval, WindowViolation, find_conflict, window_violation
from .calculator import calculate_day_slots
from .availability import get_availability_range, get_contractor_availability, load_busy_intervals

__all__ = [
    "SlotSpec",
    "get_default_slot_spec",
    "to_storage_utc",
    "from_storage_utc",
    "BusyInterval",
    "WindowViolation",
    "find_conflict",
    "window_violation",
    "calculate_day_slots",
    "get_availability_range",
    "get_contractor_availability",
    "load_busy_intervals",
]
