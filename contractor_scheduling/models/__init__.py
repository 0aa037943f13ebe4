from .scheduling import (
    Appointments,
    Base,
    ContractorSchedules,
    CrmSyncJobs,
    ScheduleServices,
    from_storage_utc,
    metadata,
    to_storage_utc,
    utcnow,
)

__all__ = [
    "Appointments",
    "Base",
    "ContractorSchedules",
    "CrmSyncJobs",
    "ScheduleServices",
    "from_storage_utc",
    "metadata",
    "to_storage_utc",
    "utcnow",
]
