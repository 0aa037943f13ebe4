# contractor_scheduling/services/container.py
"""
Wiring of the scheduling services.

Built once (app lifespan, or a test fixture) and passed around by
reference; nothing in the services reaches for a module-level session or
client.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Callable

from redis import Redis
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from ..config import Settings, settings as default_settings
from ..database import build_engine, build_session_factory, init_db
from ..redis_client import build_redis_client
from ..schemas.availability import AvailabilityResponse
from .analytics import AnalyticsAggregator
from .booking import BookingCommitter, ContractorLocks
from .events import EventEmitter
from .lifecycle import AppointmentLifecycle
from .schedule_store import ScheduleConfigStore
from .slots import get_availability_range, get_contractor_availability
from .sync import CrmClient, HubSpotClient, SyncReconciler

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SchedulingContainer:
    session_factory: sessionmaker
    store: ScheduleConfigStore
    events: EventEmitter
    lifecycle: AppointmentLifecycle
    booking: BookingCommitter
    reconciler: SyncReconciler
    analytics: AnalyticsAggregator
    engine: Engine | None = None
    crm: CrmClient | None = None
    clock: Callable[[], datetime] = field(default=_utc_now)

    @classmethod
    def build(
        cls,
        session_factory: sessionmaker,
        crm: CrmClient,
        redis: Redis | None = None,
        engine: Engine | None = None,
        clock=None,
        max_sync_attempts: int | None = None,
    ) -> "SchedulingContainer":
        store = ScheduleConfigStore(session_factory)
        events = EventEmitter(redis)
        lifecycle = AppointmentLifecycle(session_factory, store, events)
        return cls(
            session_factory=session_factory,
            store=store,
            events=events,
            lifecycle=lifecycle,
            booking=BookingCommitter(session_factory, store, lifecycle, events, ContractorLocks()),
            reconciler=SyncReconciler(session_factory, crm, max_attempts=max_sync_attempts),
            analytics=AnalyticsAggregator(session_factory),
            engine=engine,
            crm=crm,
            clock=clock or _utc_now,
        )

    @classmethod
    def from_settings(cls, config: Settings | None = None) -> "SchedulingContainer":
        config = config or default_settings
        engine = build_engine(config.resolved_database_url)
        init_db(engine)

        crm = HubSpotClient(
            access_token=config.hubspot_access_token,
            base_url=config.hubspot_base_url,
            timeout=config.hubspot_timeout_seconds,
        )
        if not config.hubspot_access_token:
            logger.warning("HUBSPOT_ACCESS_TOKEN is not set; CRM sync jobs will fail and retry")

        return cls.build(
            session_factory=build_session_factory(engine),
            crm=crm,
            redis=build_redis_client(config.redis_url),
            engine=engine,
            max_sync_attempts=config.sync_max_attempts,
        )

    def now(self) -> datetime:
        return self.clock()

    # ── Availability (read path, no locks) ───────────────────────────────

    def get_availability(
        self,
        contractor_id: str,
        target_date: date,
        service_id: int | None = None,
    ) -> AvailabilityResponse:
        with self.session_factory() as db:
            return get_contractor_availability(
                db, self.store, contractor_id, target_date, self.now(), service_id=service_id,
            )

    def get_availability_range(
        self,
        contractor_id: str,
        start_date: date,
        end_date: date,
        service_id: int | None = None,
    ) -> dict[date, AvailabilityResponse]:
        with self.session_factory() as db:
            return get_availability_range(
                db, self.store, contractor_id, start_date, end_date, self.now(), service_id=service_id,
            )

    def close(self) -> None:
        if isinstance(self.crm, HubSpotClient):
            self.crm.close()
        if self.engine is not None:
            self.engine.dispose()
