# contractor_scheduling/services/schedule_store.py
"""
Contractor schedule and service configuration.

The single place where the JSON text columns (working hours, availability
rules, cancellation policy, service requirements) are parsed. Everything
downstream works with ScheduleConfig / ServiceConfig.

Parsed schedules are cached per (id, updated_at): any write bumps
updated_at, so a stale entry is never served.
"""

import json
import logging
import threading

import pydantic
from sqlalchemy.orm import Session, sessionmaker

from ..errors import ConflictError, NotFoundError, ValidationError
from ..models import ContractorSchedules, ScheduleServices
from ..schemas.schedules import (
    AvailabilityRules,
    CancellationPolicy,
    ScheduleConfig,
    ScheduleCreate,
    ScheduleUpdate,
    ServiceConfig,
    ServiceCreate,
    ServiceUpdate,
    WorkingHours,
)
from .sync.outbox import enqueue_sync

logger = logging.getLogger(__name__)


def _validation_error(exc: pydantic.ValidationError, code: str) -> ValidationError:
    first = exc.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ())) or "config"
    return ValidationError(code, f"{location}: {first.get('msg')}")


def _load_json(raw: str | None, default):
    if not raw:
        return default
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        raise ValidationError("invalid_stored_config", "Stored configuration is not valid JSON") from None


class ScheduleConfigStore:
    """Reads and writes contractor schedules and services."""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory
        self._cache: dict[int, tuple] = {}
        self._cache_lock = threading.Lock()

    # ── Parsing ──────────────────────────────────────────────────────────

    def parse_schedule(self, row: ContractorSchedules) -> ScheduleConfig:
        key = (row.id, row.updated_at)
        with self._cache_lock:
            cached = self._cache.get(row.id)
            if cached and cached[0] == key:
                return cached[1]

        try:
            config = ScheduleConfig(
                id=row.id,
                contractor_id=row.contractor_id,
                timezone=row.timezone,
                working_hours=_load_json(row.working_hours, {}),
                availability_rules=_load_json(row.availability_rules, None),
                buffer_time=row.buffer_time,
                advance_booking_days=row.advance_booking_days,
                minimum_notice_hours=row.minimum_notice_hours,
                is_accepting_bookings=row.is_accepting_bookings,
                auto_confirm_bookings=row.auto_confirm_bookings,
                requires_deposit=row.requires_deposit,
                deposit_percentage=row.deposit_percentage,
                cancellation_policy=_load_json(row.cancellation_policy, {}),
                hubspot_object_id=row.hubspot_object_id,
                hubspot_sync_status=row.hubspot_sync_status,
                hubspot_last_sync=row.hubspot_last_sync,
            )
        except pydantic.ValidationError as e:
            raise _validation_error(e, "invalid_stored_config") from None

        with self._cache_lock:
            self._cache[row.id] = (key, config)
        return config

    @staticmethod
    def parse_service(row: ScheduleServices) -> ServiceConfig:
        return ServiceConfig(
            id=row.id,
            contractor_id=row.contractor_id,
            service_name=row.service_name,
            description=row.description,
            duration=row.duration,
            price=row.price,
            deposit_required=row.deposit_required,
            deposit_amount=row.deposit_amount,
            preparation_time=row.preparation_time or 0,
            cleanup_time=row.cleanup_time or 0,
            category=row.category,
            requirements=_load_json(row.requirements, []),
            is_active=row.is_active,
            hubspot_object_id=row.hubspot_object_id,
            hubspot_sync_status=row.hubspot_sync_status,
            hubspot_last_sync=row.hubspot_last_sync,
        )

    # ── Session-scoped reads (used inside other services' transactions) ──

    def load_schedule_row(self, db: Session, contractor_id: str, lock: bool = False) -> ContractorSchedules:
        query = db.query(ContractorSchedules).filter(ContractorSchedules.contractor_id == contractor_id)
        if lock:
            query = query.with_for_update()
        row = query.first()
        if not row:
            raise NotFoundError(
                "schedule_not_found",
                f"No schedule configured for contractor {contractor_id}",
            )
        return row

    def load_schedule(self, db: Session, contractor_id: str, lock: bool = False) -> ScheduleConfig:
        """
        Parsed schedule for a contractor.

        lock=True takes a row lock (SELECT ... FOR UPDATE) held until the
        caller's transaction ends.
        """
        return self.parse_schedule(self.load_schedule_row(db, contractor_id, lock=lock))

    def load_service(
        self,
        db: Session,
        service_id: int,
        contractor_id: str | None = None,
        include_inactive: bool = False,
    ) -> ServiceConfig:
        row = db.get(ScheduleServices, service_id)
        if (
            not row
            or (contractor_id is not None and row.contractor_id != contractor_id)
            or (not include_inactive and not row.is_active)
        ):
            raise NotFoundError("service_not_found", f"Service {service_id} not found")
        return self.parse_service(row)

    # ── Schedule API ─────────────────────────────────────────────────────

    def get_schedule(self, contractor_id: str) -> ScheduleConfig:
        with self.session_factory() as db:
            return self.load_schedule(db, contractor_id)

    def create_schedule(self, data: ScheduleCreate | dict) -> ScheduleConfig:
        if isinstance(data, dict):
            try:
                data = ScheduleCreate.model_validate(data)
            except pydantic.ValidationError as e:
                raise _validation_error(e, "invalid_schedule") from None

        with self.session_factory() as db:
            try:
                exists = (
                    db.query(ContractorSchedules.id)
                    .filter(ContractorSchedules.contractor_id == data.contractor_id)
                    .first()
                )
                if exists:
                    raise ConflictError(
                        "schedule_exists",
                        f"Contractor {data.contractor_id} already has a schedule",
                        suggestion="Use PUT to update the existing schedule",
                    )

                row = ContractorSchedules(contractor_id=data.contractor_id)
                self._apply_policy(row, data)
                db.add(row)
                db.flush()

                enqueue_sync(db, "schedule", row.id, "schedule_created")
                db.commit()
            except Exception:
                db.rollback()
                raise

            logger.info(f"Schedule created: contractor={data.contractor_id} id={row.id}")
            db.refresh(row)
            return self.parse_schedule(row)

    def update_schedule(self, contractor_id: str, data: ScheduleUpdate | dict) -> ScheduleConfig:
        if isinstance(data, dict):
            try:
                data = ScheduleUpdate.model_validate(data)
            except pydantic.ValidationError as e:
                raise _validation_error(e, "invalid_schedule") from None

        with self.session_factory() as db:
            try:
                row = self.load_schedule_row(db, contractor_id, lock=True)
                current = self.parse_schedule(row)

                merged = current.model_dump(mode="json")
                merged.update(data.model_dump(mode="json", exclude_unset=True))
                try:
                    config = ScheduleCreate.model_validate(merged)
                except pydantic.ValidationError as e:
                    raise _validation_error(e, "invalid_schedule") from None

                self._apply_policy(row, config)
                enqueue_sync(db, "schedule", row.id, "schedule_updated")
                db.commit()
            except Exception:
                db.rollback()
                raise

            logger.info(f"Schedule updated: contractor={contractor_id}")
            db.refresh(row)
            return self.parse_schedule(row)

    @staticmethod
    def _apply_policy(row: ContractorSchedules, config) -> None:
        row.timezone = config.timezone
        row.working_hours = WorkingHours.model_validate(config.working_hours).model_dump_json()
        row.availability_rules = (
            AvailabilityRules.model_validate(config.availability_rules).model_dump_json()
            if config.availability_rules else None
        )
        row.buffer_time = config.buffer_time
        row.advance_booking_days = config.advance_booking_days
        row.minimum_notice_hours = config.minimum_notice_hours
        row.is_accepting_bookings = config.is_accepting_bookings
        row.auto_confirm_bookings = config.auto_confirm_bookings
        row.requires_deposit = config.requires_deposit
        row.deposit_percentage = config.deposit_percentage
        row.cancellation_policy = CancellationPolicy.model_validate(config.cancellation_policy).model_dump_json()

    # ── Services API ─────────────────────────────────────────────────────

    def list_services(self, contractor_id: str, include_inactive: bool = False) -> list[ServiceConfig]:
        with self.session_factory() as db:
            query = db.query(ScheduleServices).filter(ScheduleServices.contractor_id == contractor_id)
            if not include_inactive:
                query = query.filter(ScheduleServices.is_active.is_(True))
            return [self.parse_service(row) for row in query.order_by(ScheduleServices.id).all()]

    def get_service(self, service_id: int) -> ServiceConfig:
        with self.session_factory() as db:
            return self.load_service(db, service_id, include_inactive=True)

    def create_service(self, data: ServiceCreate | dict) -> ServiceConfig:
        if isinstance(data, dict):
            try:
                data = ServiceCreate.model_validate(data)
            except pydantic.ValidationError as e:
                raise _validation_error(e, "invalid_service") from None
        self._check_service_deposit(data.price, data.deposit_amount)

        with self.session_factory() as db:
            try:
                schedule = self.load_schedule_row(db, data.contractor_id)
                values = data.model_dump(exclude={"requirements"})
                row = ScheduleServices(
                    **values,
                    schedule_id=schedule.id,
                    requirements=json.dumps(data.requirements),
                    is_active=True,
                )
                db.add(row)
                db.flush()

                enqueue_sync(db, "service", row.id, "service_created")
                db.commit()
            except Exception:
                db.rollback()
                raise

            logger.info(f"Service created: contractor={data.contractor_id} id={row.id} ({row.service_name})")
            db.refresh(row)
            return self.parse_service(row)

    def update_service(self, service_id: int, data: ServiceUpdate | dict) -> ServiceConfig:
        """Edits apply to future bookings only; appointments keep their snapshot."""
        if isinstance(data, dict):
            try:
                data = ServiceUpdate.model_validate(data)
            except pydantic.ValidationError as e:
                raise _validation_error(e, "invalid_service") from None

        with self.session_factory() as db:
            try:
                row = db.get(ScheduleServices, service_id)
                if not row:
                    raise NotFoundError("service_not_found", f"Service {service_id} not found")

                for field, value in data.model_dump(exclude_unset=True).items():
                    if field == "requirements":
                        value = json.dumps(value or [])
                    setattr(row, field, value)
                self._check_service_deposit(row.price, row.deposit_amount)

                enqueue_sync(db, "service", row.id, "service_updated")
                db.commit()
            except Exception:
                db.rollback()
                raise

            logger.info(f"Service updated: id={service_id}")
            db.refresh(row)
            return self.parse_service(row)

    @staticmethod
    def _check_service_deposit(price: float, deposit_amount: float | None) -> None:
        if deposit_amount is not None and deposit_amount > price:
            raise ValidationError(
                "invalid_deposit",
                f"Deposit {deposit_amount} exceeds service price {price}",
            )
