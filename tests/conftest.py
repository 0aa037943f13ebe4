"""Shared fixtures for the scheduling tests."""

from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from contractor_scheduling.database import build_engine, build_session_factory, init_db
from contractor_scheduling.dependencies import get_container
from contractor_scheduling.errors import SyncError
from contractor_scheduling.main import app
from contractor_scheduling.services.container import SchedulingContainer

# Monday
NOW = datetime(2025, 3, 3, 10, 0, tzinfo=timezone.utc)

# Later than every job enqueued during a test, whatever clock enqueued it
SYNC_NOW = datetime(2099, 1, 1, tzinfo=timezone.utc)

WEEKDAY_HOURS = {"start": "09:00", "end": "17:00", "enabled": True}
DAY_OFF = {"start": "09:00", "end": "17:00", "enabled": False}


class FakeCrm:
    """In-memory CRM implementing find/create/update."""

    def __init__(self):
        self.records: dict[str, dict[str, dict]] = {}
        self.calls: list[tuple] = []
        self.failures_left = 0
        self._next_id = 1000

    def fail_next(self, times: int = 1) -> None:
        self.failures_left = times

    def _maybe_fail(self, op: str) -> None:
        if self.failures_left:
            self.failures_left -= 1
            raise SyncError("crm_unreachable", f"simulated outage during {op}")

    def find_record_by_key(self, object_type, key):
        self.calls.append(("find", object_type, key))
        self._maybe_fail("find")
        for remote_id, fields in self.records.get(object_type, {}).items():
            if fields.get("local_record_key") == key:
                return remote_id
        return None

    def create_record(self, object_type, fields):
        self.calls.append(("create", object_type, fields.get("local_record_key")))
        self._maybe_fail("create")
        self._next_id += 1
        remote_id = str(self._next_id)
        self.records.setdefault(object_type, {})[remote_id] = dict(fields)
        return remote_id

    def update_record(self, object_type, remote_id, fields):
        self.calls.append(("update", object_type, remote_id))
        self._maybe_fail("update")
        self.records.setdefault(object_type, {})[remote_id] = dict(fields)

    def count(self, object_type: str) -> int:
        return len(self.records.get(object_type, {}))


@pytest.fixture
def engine(tmp_path):
    """Temporary SQLite database file."""
    engine = build_engine(f"sqlite:///{tmp_path / 'scheduling.db'}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def fake_crm():
    return FakeCrm()


@pytest.fixture
def mock_redis():
    """Redis client double; events are recorded as rpush calls."""
    return MagicMock()


@pytest.fixture
def container(session_factory, fake_crm, mock_redis):
    return SchedulingContainer.build(
        session_factory=session_factory,
        crm=fake_crm,
        redis=mock_redis,
        clock=lambda: NOW,
        max_sync_attempts=3,
    )


@pytest.fixture
def store(container):
    return container.store


@pytest.fixture
def make_schedule(store):
    """Create a schedule: Mon-Fri 09:00-17:00 UTC unless overridden."""

    def _make(contractor_id: str = "contractor-1", **overrides):
        data = {
            "contractor_id": contractor_id,
            "timezone": "UTC",
            "working_hours": {
                "monday": WEEKDAY_HOURS,
                "tuesday": WEEKDAY_HOURS,
                "wednesday": WEEKDAY_HOURS,
                "thursday": WEEKDAY_HOURS,
                "friday": WEEKDAY_HOURS,
                "saturday": DAY_OFF,
                "sunday": DAY_OFF,
            },
        }
        data.update(overrides)
        return store.create_schedule(data)

    return _make


@pytest.fixture
def make_service(store):
    """Create a 60-minute, 100.00 service for a contractor."""

    def _make(contractor_id: str = "contractor-1", **overrides):
        data = {
            "contractor_id": contractor_id,
            "service_name": "Deep Clean",
            "duration": 60,
            "price": 100.0,
        }
        data.update(overrides)
        return store.create_service(data)

    return _make


@pytest.fixture
def book(container):
    """Book an appointment with sensible client defaults."""

    def _book(service, start_time, now=NOW, **overrides):
        data = {
            "contractor_id": service.contractor_id,
            "service_id": service.id,
            "client_name": "Jane Client",
            "client_email": "jane@example.com",
            "start_time": start_time,
        }
        data.update(overrides)
        return container.booking.create_appointment(data, now=now)

    return _book


@pytest.fixture
def client(container):
    """TestClient wired to the test container (lifespan not started)."""
    app.dependency_overrides[get_container] = lambda: container
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
