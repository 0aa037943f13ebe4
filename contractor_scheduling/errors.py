# contractor_scheduling/errors.py
"""
Scheduling error taxonomy.

ValidationError, NotFoundError, ConflictError and PolicyViolationError are
raised synchronously to the caller. SyncError stays inside the CRM sync
layer: it is recorded on the outbox job and the entity, never surfaced on
the booking or lifecycle path.
"""


class SchedulingError(Exception):
    """Base exception for scheduling errors."""

    kind = "SchedulingError"

    def __init__(self, code: str, message: str, suggestion: str | None = None):
        self.code = code
        self.message = message
        self.suggestion = suggestion
        super().__init__(message)

    def to_dict(self) -> dict:
        data = {"kind": self.kind, "code": self.code, "reason": self.message}
        if self.suggestion:
            data["suggestion"] = self.suggestion
        return data


class ValidationError(SchedulingError):
    """Malformed input or an invalid state transition."""

    kind = "ValidationError"


class NotFoundError(SchedulingError):
    """No schedule, service or appointment for the given id."""

    kind = "NotFoundError"


class ConflictError(SchedulingError):
    """Requested window is taken, or the caller acted on stale state."""

    kind = "ConflictError"


class PolicyViolationError(SchedulingError):
    """A contractor booking or cancellation policy forbids the request."""

    kind = "PolicyViolationError"


class SyncError(SchedulingError):
    """The remote CRM was unreachable or rejected the write."""

    kind = "SyncError"
