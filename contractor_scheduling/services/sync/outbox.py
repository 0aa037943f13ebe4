# contractor_scheduling/services/sync/outbox.py
"""
Transactional outbox for the CRM mirror.

enqueue_sync() runs inside the caller's transaction: the local write and
its sync job commit or roll back together. The worker drains the table
later, outside any contractor lock.
"""

import logging
from datetime import datetime
from enum import Enum

from sqlalchemy.orm import Session

from ...config import settings
from ...errors import ValidationError
from ...models import Appointments, ContractorSchedules, CrmSyncJobs, ScheduleServices, utcnow
from ...schemas.schedules import SyncStatus

logger = logging.getLogger(__name__)

ENTITY_MODELS = {
    "schedule": ContractorSchedules,
    "service": ScheduleServices,
    "appointment": Appointments,
}


class JobState(str, Enum):
    PENDING = "PENDING"
    DONE = "DONE"
    FAILED = "FAILED"


def entity_model(entity_type: str):
    try:
        return ENTITY_MODELS[entity_type]
    except KeyError:
        raise ValidationError(
            "unknown_entity_type",
            f"Unknown sync entity type: {entity_type}",
            suggestion=f"Use one of: {', '.join(ENTITY_MODELS)}",
        ) from None


def enqueue_sync(
    db: Session,
    entity_type: str,
    entity_id: int,
    reason: str,
    now: datetime | None = None,
) -> CrmSyncJobs:
    """
    Queue a CRM sync for an entity. Does not commit.

    A PENDING job for the same entity is reused: its reason is replaced and
    it becomes due immediately, so a burst of edits syncs once.
    """
    model = entity_model(entity_type)
    now = now or utcnow()

    job = (
        db.query(CrmSyncJobs)
        .filter(
            CrmSyncJobs.entity_type == entity_type,
            CrmSyncJobs.entity_id == entity_id,
            CrmSyncJobs.state == JobState.PENDING.value,
        )
        .first()
    )
    if job:
        job.reason = reason
        job.next_attempt_at = now
    else:
        job = CrmSyncJobs(
            entity_type=entity_type,
            entity_id=entity_id,
            reason=reason,
            state=JobState.PENDING.value,
            attempts=0,
            next_attempt_at=now,
        )
        db.add(job)

    entity = db.get(model, entity_id)
    if entity is not None:
        entity.hubspot_sync_status = SyncStatus.PENDING.value

    logger.debug(f"Sync queued: {entity_type}={entity_id} ({reason})")
    return job


def backoff_seconds(attempts: int) -> int:
    """Delay before the next try after `attempts` failures: base * 2^(n-1), capped."""
    delay = settings.sync_backoff_base_seconds * 2 ** max(attempts - 1, 0)
    return min(delay, settings.sync_max_backoff_seconds)
