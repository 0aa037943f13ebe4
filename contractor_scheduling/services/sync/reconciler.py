# contractor_scheduling/services/sync/reconciler.py
"""
CRM reconciliation.

Local state is authoritative; HubSpot is a mirror. Each sync reads a
snapshot of the entity, pushes it with no DB transaction open, then
records the outcome in a short transaction.

Idempotency: records carry local_record_key = "<entity_type>:<id>". An
entity without a stored remote id is looked up by key before anything is
created, so a crash between create and commit never yields a duplicate.
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy.orm import sessionmaker

from ...config import settings
from ...errors import NotFoundError, SyncError
from ...models import Appointments, ContractorSchedules, CrmSyncJobs, ScheduleServices, to_storage_utc
from ...schemas.appointments import AppointmentStatus
from ...schemas.schedules import SyncStatus
from .hubspot import KEY_PROPERTY, CrmClient
from .outbox import JobState, backoff_seconds, enqueue_sync, entity_model

logger = logging.getLogger(__name__)

OBJECT_TYPES = {
    "schedule": "contractor_schedules",
    "service": "schedule_services",
    "appointment": "deals",
}

DEAL_STAGES = {
    AppointmentStatus.SCHEDULED: "appointment_scheduled",
    AppointmentStatus.CONFIRMED: "appointment_confirmed",
    AppointmentStatus.IN_PROGRESS: "appointment_in_progress",
    AppointmentStatus.COMPLETED: "appointment_completed",
    AppointmentStatus.CANCELLED: "appointment_cancelled",
    AppointmentStatus.NO_SHOW: "appointment_no_show",
}


def record_key(entity_type: str, entity_id: int) -> str:
    return f"{entity_type}:{entity_id}"


def _fmt(value) -> str:
    """HubSpot properties are strings."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, datetime):
        return value.replace(tzinfo=timezone.utc).isoformat()
    return str(value)


def schedule_fields(schedule: ContractorSchedules) -> dict:
    key = record_key("schedule", schedule.id)
    return {
        KEY_PROPERTY: key,
        "contractor_id": schedule.contractor_id,
        "timezone": schedule.timezone,
        "working_hours": schedule.working_hours,
        "buffer_time": _fmt(schedule.buffer_time),
        "advance_booking_days": _fmt(schedule.advance_booking_days),
        "minimum_notice_hours": _fmt(schedule.minimum_notice_hours),
        "is_accepting_bookings": _fmt(schedule.is_accepting_bookings),
        "auto_confirm_bookings": _fmt(schedule.auto_confirm_bookings),
        "requires_deposit": _fmt(schedule.requires_deposit),
        "deposit_percentage": _fmt(schedule.deposit_percentage),
        "cancellation_policy": schedule.cancellation_policy,
        "description": f"Contractor schedule ({key})",
    }


def service_fields(service: ScheduleServices) -> dict:
    key = record_key("service", service.id)
    requirements = json.loads(service.requirements) if service.requirements else []
    return {
        KEY_PROPERTY: key,
        "contractor_id": service.contractor_id,
        "service_name": service.service_name,
        "duration": _fmt(service.duration),
        "price": _fmt(service.price),
        "deposit_required": _fmt(service.deposit_required),
        "deposit_amount": _fmt(service.deposit_amount),
        "preparation_time": _fmt(service.preparation_time),
        "cleanup_time": _fmt(service.cleanup_time),
        "category": _fmt(service.category),
        "requirements": "; ".join(requirements),
        "is_active": _fmt(service.is_active),
        "description": f"{service.description or service.service_name} ({key})",
    }


def appointment_fields(appointment: Appointments) -> dict:
    key = record_key("appointment", appointment.id)
    status = AppointmentStatus(appointment.status)
    service_name = appointment.service.service_name if appointment.service else "Appointment"
    client = appointment.client_name or appointment.client_id or "client"
    return {
        KEY_PROPERTY: key,
        "dealname": f"{service_name} - {client}",
        "dealstage": DEAL_STAGES[status],
        "amount": _fmt(appointment.total_price),
        "closedate": _fmt(appointment.start_time),
        "contractor_id": appointment.contractor_id,
        "client_id": _fmt(appointment.client_id),
        "client_email": _fmt(appointment.client_email),
        "appointment_status": status.value,
        "start_time": _fmt(appointment.start_time),
        "end_time": _fmt(appointment.end_time),
        "deposit_amount": _fmt(appointment.deposit_amount),
        "remaining_balance": _fmt(appointment.remaining_balance),
        "refund_amount": _fmt(appointment.refund_amount),
        "deposit_paid": _fmt(appointment.deposit_paid),
        "payment_status": _fmt(appointment.payment_status),
        "deposit_forfeited": _fmt(appointment.deposit_forfeited),
        "description": f"{service_name} on {appointment.appointment_date.isoformat()} ({key})",
    }


FIELD_BUILDERS = {
    "schedule": schedule_fields,
    "service": service_fields,
    "appointment": appointment_fields,
}


@dataclass(frozen=True)
class _Snapshot:
    object_type: str
    key: str
    fields: dict
    remote_id: Optional[str]


class SyncReconciler:
    def __init__(
        self,
        session_factory: sessionmaker,
        crm: CrmClient,
        max_attempts: int | None = None,
    ):
        self.session_factory = session_factory
        self.crm = crm
        self.max_attempts = max_attempts or settings.sync_max_attempts

    # ── Single entity ────────────────────────────────────────────────────

    def _snapshot(self, entity_type: str, entity_id: int) -> _Snapshot:
        model = entity_model(entity_type)
        with self.session_factory() as db:
            entity = db.get(model, entity_id)
            if entity is None:
                raise NotFoundError(
                    f"{entity_type}_not_found",
                    f"{entity_type.capitalize()} {entity_id} not found",
                )
            return _Snapshot(
                object_type=OBJECT_TYPES[entity_type],
                key=record_key(entity_type, entity_id),
                fields=FIELD_BUILDERS[entity_type](entity),
                remote_id=entity.hubspot_object_id,
            )

    def _push(self, snapshot: _Snapshot) -> str:
        """Create or update the remote record. Network only, no DB."""
        remote_id = snapshot.remote_id
        if not remote_id:
            remote_id = self.crm.find_record_by_key(snapshot.object_type, snapshot.key)
            if remote_id:
                logger.info(f"Adopted existing CRM record {remote_id} for {snapshot.key}")

        if remote_id:
            self.crm.update_record(snapshot.object_type, remote_id, snapshot.fields)
        else:
            remote_id = self.crm.create_record(snapshot.object_type, snapshot.fields)
            logger.info(f"Created CRM record {remote_id} for {snapshot.key}")
        return remote_id

    def reconcile(self, entity_type: str, entity_id: int, now: datetime | None = None) -> str:
        """
        Bring the CRM record for one entity in line with local state.

        Safe to repeat: a second call with no local change updates the same
        remote record with the same fields.

        Raises:
            NotFoundError: the local entity does not exist
            SyncError: CRM unreachable or rejected the write
        """
        now = now or datetime.now(timezone.utc)
        snapshot = self._snapshot(entity_type, entity_id)
        remote_id = self._push(snapshot)

        model = entity_model(entity_type)
        with self.session_factory() as db:
            try:
                entity = db.get(model, entity_id)
                self._mark_synced(entity, remote_id, now)
                db.commit()
            except Exception:
                db.rollback()
                raise

        logger.info(f"Synced {snapshot.key} -> {snapshot.object_type}/{remote_id}")
        return remote_id

    @staticmethod
    def _mark_synced(entity, remote_id: str, now: datetime) -> None:
        entity.hubspot_object_id = remote_id
        entity.hubspot_sync_status = SyncStatus.SYNCED.value
        entity.hubspot_last_sync = to_storage_utc(now)

    def sync_now(self, entity_type: str, entity_id: int, now: datetime | None = None) -> dict:
        """
        Admin-triggered reconcile.

        A SyncError is recorded on a queued job (the worker retries it) and
        reported in the result instead of being raised.
        """
        now = now or datetime.now(timezone.utc)
        entity_model(entity_type)
        try:
            remote_id = self.reconcile(entity_type, entity_id, now)
        except SyncError as e:
            with self.session_factory() as db:
                try:
                    job = enqueue_sync(db, entity_type, entity_id, "manual_sync", now=to_storage_utc(now))
                    db.flush()
                    job_id = job.id
                    db.commit()
                except Exception:
                    db.rollback()
                    raise
            state = self._record_failure(job_id, e, now)
            return {
                "entity_type": entity_type,
                "entity_id": entity_id,
                "status": SyncStatus.FAILED.value if state == JobState.FAILED else SyncStatus.PENDING.value,
                "remote_id": None,
                "error": e.to_dict(),
            }

        return {
            "entity_type": entity_type,
            "entity_id": entity_id,
            "status": SyncStatus.SYNCED.value,
            "remote_id": remote_id,
            "error": None,
        }

    # ── Outbox draining ──────────────────────────────────────────────────

    def process_due_jobs(self, now: datetime | None = None, limit: int | None = None) -> dict:
        """
        Run PENDING jobs whose next_attempt_at has passed.

        Returns:
            Counts: {"done": n, "retried": n, "failed": n}
        """
        now = now or datetime.now(timezone.utc)
        limit = limit or settings.sync_batch_size
        stamp = to_storage_utc(now)

        with self.session_factory() as db:
            due = [
                (job.id, job.entity_type, job.entity_id, job.next_attempt_at)
                for job in (
                    db.query(CrmSyncJobs)
                    .filter(
                        CrmSyncJobs.state == JobState.PENDING.value,
                        CrmSyncJobs.next_attempt_at <= stamp,
                    )
                    .order_by(CrmSyncJobs.next_attempt_at, CrmSyncJobs.id)
                    .limit(limit)
                    .all()
                )
            ]

        counts = {"done": 0, "retried": 0, "failed": 0}
        for job_id, entity_type, entity_id, seen_due in due:
            try:
                self._run_job(job_id, entity_type, entity_id, seen_due, now)
                counts["done"] += 1
            except (SyncError, NotFoundError) as e:
                state = self._record_failure(job_id, e, now)
                counts["failed" if state == JobState.FAILED else "retried"] += 1
            except Exception as e:
                # Anything else still costs an attempt, or one bad job would
                # retry forever and starve the jobs queued behind it
                logger.exception(f"Unexpected error syncing {entity_type}={entity_id} (job {job_id})")
                state = self._record_failure(job_id, e, now)
                counts["failed" if state == JobState.FAILED else "retried"] += 1

        if due:
            logger.info(f"Sync batch: {counts}")
        return counts

    def _run_job(self, job_id: int, entity_type: str, entity_id: int, seen_due: datetime, now: datetime) -> None:
        snapshot = self._snapshot(entity_type, entity_id)
        remote_id = self._push(snapshot)

        model = entity_model(entity_type)
        with self.session_factory() as db:
            try:
                entity = db.get(model, entity_id)
                self._mark_synced(entity, remote_id, now)

                # A write that coalesced into this job while it was in
                # flight moved next_attempt_at; leave the job for another run.
                finished = (
                    db.query(CrmSyncJobs)
                    .filter(
                        CrmSyncJobs.id == job_id,
                        CrmSyncJobs.state == JobState.PENDING.value,
                        CrmSyncJobs.next_attempt_at == seen_due,
                    )
                    .update(
                        {
                            CrmSyncJobs.state: JobState.DONE.value,
                            CrmSyncJobs.last_error: None,
                            CrmSyncJobs.updated_at: to_storage_utc(now),
                        },
                        synchronize_session=False,
                    )
                )
                if not finished:
                    entity.hubspot_sync_status = SyncStatus.PENDING.value
                db.commit()
            except Exception:
                db.rollback()
                raise

        logger.info(f"Synced {snapshot.key} -> {snapshot.object_type}/{remote_id} (job {job_id})")

    def _record_failure(self, job_id: int, error: Exception, now: datetime) -> JobState:
        """Count a failed attempt: schedule a retry with backoff, or give up."""
        stamp = to_storage_utc(now)
        with self.session_factory() as db:
            try:
                job = db.get(CrmSyncJobs, job_id)
                job.attempts = (job.attempts or 0) + 1
                if isinstance(error, (SyncError, NotFoundError)):
                    message = str(error)
                else:
                    message = f"{type(error).__name__}: {error}"
                job.last_error = message[:1000]
                job.updated_at = stamp

                if isinstance(error, NotFoundError) or job.attempts >= self.max_attempts:
                    job.state = JobState.FAILED.value
                    model = entity_model(job.entity_type)
                    entity = db.get(model, job.entity_id)
                    if entity is not None:
                        entity.hubspot_sync_status = SyncStatus.FAILED.value
                    logger.error(
                        f"Sync gave up: {job.entity_type}={job.entity_id} "
                        f"after {job.attempts} attempts: {error}"
                    )
                else:
                    delay = backoff_seconds(job.attempts)
                    job.next_attempt_at = stamp + timedelta(seconds=delay)
                    logger.warning(
                        f"Sync failed: {job.entity_type}={job.entity_id} "
                        f"attempt {job.attempts}/{self.max_attempts}, retry in {delay}s: {error}"
                    )

                state = JobState(job.state)
                db.commit()
            except Exception:
                db.rollback()
                raise
        return state
