# contractor_scheduling/services/slots/config.py
"""
Slot sizing for availability and booking.
"""

from dataclasses import dataclass
from functools import lru_cache

from ...config import settings


@dataclass(frozen=True)
class SlotSpec:
    """
    Size of one bookable window.

    Attributes:
        duration_minutes: Length of the appointment itself
        padding_before: Service preparation time, blocked before the start
        padding_after: Service cleanup time, blocked after the end
    """
    duration_minutes: int
    padding_before: int = 0
    padding_after: int = 0

    def __post_init__(self):
        if self.duration_minutes <= 0:
            raise ValueError(f"duration_minutes must be positive, got {self.duration_minutes}")
        if self.padding_before < 0 or self.padding_after < 0:
            raise ValueError("padding must be non-negative")

    @property
    def effective_minutes(self) -> int:
        """Minutes the contractor is occupied, padding included."""
        return self.padding_before + self.duration_minutes + self.padding_after

    @classmethod
    def for_service(cls, service) -> "SlotSpec":
        return cls(
            duration_minutes=service.duration,
            padding_before=service.preparation_time or 0,
            padding_after=service.cleanup_time or 0,
        )


@lru_cache
def get_default_slot_spec() -> SlotSpec:
    """Slot size used when availability is requested without a service."""
    return SlotSpec(duration_minutes=settings.default_slot_minutes)
