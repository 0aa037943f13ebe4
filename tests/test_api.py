"""Tests for the HTTP API."""

import pytest

from conftest import DAY_OFF, WEEKDAY_HOURS

API = "/api/scheduling"

SCHEDULE = {
    "contractor_id": "contractor-1",
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

SERVICE = {
    "contractor_id": "contractor-1",
    "service_name": "Deep Clean",
    "duration": 60,
    "price": 100.0,
}


def is_aware(value: str) -> bool:
    return value.endswith("Z") or value[-6] in "+-"


@pytest.fixture
def service_id(client):
    assert client.post(f"{API}/contractor-schedule", json=SCHEDULE).status_code == 201
    resp = client.post(f"{API}/services", json=SERVICE)
    assert resp.status_code == 201
    return resp.json()["id"]


@pytest.fixture
def appointment(client, service_id):
    resp = client.post(f"{API}/appointments", json={
        "contractor_id": "contractor-1",
        "service_id": service_id,
        "client_name": "Jane Client",
        "client_email": "jane@example.com",
        "start_time": "2025-03-10T10:00:00Z",
    })
    assert resp.status_code == 201
    return resp.json()


class TestScheduleRoutes:
    """Tests for schedule and service endpoints."""

    def test_schedule_round_trip(self, client):
        client.post(f"{API}/contractor-schedule", json=SCHEDULE)

        resp = client.get(f"{API}/contractor-schedule", params={"contractor_id": "contractor-1"})

        assert resp.status_code == 200
        body = resp.json()
        assert body["working_hours"]["monday"] == WEEKDAY_HOURS
        assert body["cancellation_policy"]["refund_policy"] == "PARTIAL"

    def test_update_schedule(self, client):
        client.post(f"{API}/contractor-schedule", json=SCHEDULE)

        resp = client.put(
            f"{API}/contractor-schedule",
            params={"contractor_id": "contractor-1"},
            json={"buffer_time": 30},
        )

        assert resp.status_code == 200
        assert resp.json()["buffer_time"] == 30

    def test_duplicate_schedule_is_409(self, client):
        client.post(f"{API}/contractor-schedule", json=SCHEDULE)

        resp = client.post(f"{API}/contractor-schedule", json=SCHEDULE)

        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "schedule_exists"

    def test_services(self, client, service_id):
        resp = client.put(f"{API}/services/{service_id}", json={"price": 120.0})
        assert resp.json()["price"] == 120.0

        listed = client.get(f"{API}/services", params={"contractor_id": "contractor-1"}).json()
        assert [s["id"] for s in listed] == [service_id]

    def test_null_service_field_is_400(self, client, service_id):
        resp = client.put(f"{API}/services/{service_id}", json={"price": None})

        assert resp.status_code == 400
        assert resp.json()["error"]["kind"] == "ValidationError"
        assert client.get(f"{API}/services", params={"contractor_id": "contractor-1"}).json()[0]["price"] == 100.0


class TestAvailabilityRoutes:
    """Tests for availability endpoints."""

    def test_day(self, client, service_id):
        resp = client.get(
            f"{API}/availability",
            params={"contractor_id": "contractor-1", "date": "2025-03-10", "service_id": service_id},
        )

        assert resp.status_code == 200
        body = resp.json()
        assert body["available"] is True
        assert body["time_slots"][0]["start_time"].startswith("2025-03-10T09:00:00")
        assert is_aware(body["time_slots"][0]["start_time"])

    def test_missing_date_is_400(self, client, service_id):
        resp = client.get(f"{API}/availability", params={"contractor_id": "contractor-1"})

        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "invalid_request"

    def test_unknown_contractor_is_404(self, client):
        resp = client.get(f"{API}/availability", params={"contractor_id": "nobody", "date": "2025-03-10"})

        assert resp.status_code == 404
        assert resp.json()["error"]["kind"] == "NotFoundError"

    def test_range(self, client, service_id):
        resp = client.post(f"{API}/availability/range", json={
            "contractor_id": "contractor-1",
            "start_date": "2025-03-10",
            "end_date": "2025-03-16",
        })

        assert resp.status_code == 200
        availability = resp.json()["availability"]
        assert len(availability) == 7
        assert availability["2025-03-15"]["available"] is False


class TestAppointmentRoutes:
    """Tests for booking and lifecycle endpoints."""

    def test_create(self, appointment):
        assert appointment["status"] == "SCHEDULED"
        assert appointment["deposit_amount"] == 25.0
        assert appointment["remaining_balance"] == 75.0
        assert appointment["start_time"].startswith("2025-03-10T10:00:00")
        assert is_aware(appointment["start_time"])
        assert appointment["hubspot_sync_status"] == "PENDING"

    def test_double_booking_is_409(self, client, service_id, appointment):
        resp = client.post(f"{API}/appointments", json={
            "contractor_id": "contractor-1",
            "service_id": service_id,
            "client_name": "Bob",
            "start_time": "2025-03-10T10:30:00Z",
        })

        assert resp.status_code == 409
        error = resp.json()["error"]
        assert error["kind"] == "ConflictError"
        assert error["reason"]

    def test_missing_client_is_400(self, client, service_id):
        resp = client.post(f"{API}/appointments", json={
            "contractor_id": "contractor-1",
            "service_id": service_id,
            "start_time": "2025-03-10T10:00:00Z",
        })

        assert resp.status_code == 400
        assert resp.json()["error"]["kind"] == "ValidationError"

    def test_get_and_list(self, client, appointment):
        got = client.get(f"{API}/appointments/{appointment['id']}")
        listed = client.get(f"{API}/appointments", params={"contractor_id": "contractor-1", "status": "SCHEDULED"})

        assert got.json()["id"] == appointment["id"]
        assert [a["id"] for a in listed.json()] == [appointment["id"]]

    def test_unknown_appointment_is_404(self, client):
        assert client.get(f"{API}/appointments/999").status_code == 404

    def test_cancel(self, client, appointment):
        client.put(f"{API}/appointments/{appointment['id']}/payment", json={"deposit_paid": True})
        resp = client.put(
            f"{API}/appointments/{appointment['id']}/status",
            json={"status": "CANCELLED", "cancellation_reason": "moved"},
        )

        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "CANCELLED"
        assert body["refund_amount"] == 12.5
        assert body["payment_status"] == "REFUNDED"
        assert is_aware(body["cancelled_at"])

    def test_invalid_transition_is_400(self, client, appointment):
        resp = client.put(f"{API}/appointments/{appointment['id']}/status", json={"status": "COMPLETED"})

        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "invalid_transition"

    def test_cancellation_not_allowed_is_422(self, client, appointment):
        client.put(
            f"{API}/contractor-schedule",
            params={"contractor_id": "contractor-1"},
            json={"cancellation_policy": {"allow_cancellation": False}},
        )

        resp = client.put(f"{API}/appointments/{appointment['id']}/status", json={"status": "CANCELLED"})

        assert resp.status_code == 422
        assert resp.json()["error"]["kind"] == "PolicyViolationError"

    def test_refund_quote(self, client, appointment):
        client.put(f"{API}/appointments/{appointment['id']}/payment", json={"deposit_paid": True})
        resp = client.get(f"{API}/appointments/{appointment['id']}/refund-quote")

        assert resp.status_code == 200
        assert resp.json()["potential_refund"] == 12.5

    def test_cancel_unpaid_refunds_nothing(self, client, appointment):
        resp = client.put(f"{API}/appointments/{appointment['id']}/status", json={"status": "CANCELLED"})

        body = resp.json()
        assert body["deposit_paid"] is False
        assert body["refund_amount"] == 0
        assert body["payment_status"] == "PENDING"

    def test_record_payment(self, client, appointment):
        assert appointment["deposit_paid"] is False
        assert appointment["payment_status"] == "PENDING"

        resp = client.put(f"{API}/appointments/{appointment['id']}/payment", json={"deposit_paid": True})

        assert resp.status_code == 200
        assert resp.json()["deposit_paid"] is True
        assert resp.json()["payment_status"] == "DEPOSIT_PAID"

    def test_empty_payment_update_is_400(self, client, appointment):
        resp = client.put(f"{API}/appointments/{appointment['id']}/payment", json={})

        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "invalid_request"


class TestAnalyticsAndSyncRoutes:
    """Tests for analytics and admin sync endpoints."""

    def test_analytics(self, client, appointment):
        resp = client.get(f"{API}/analytics", params={
            "contractor_id": "contractor-1", "start_date": "2025-03-01", "end_date": "2025-03-31",
        })

        assert resp.status_code == 200
        assert resp.json()["scheduled_bookings"] == 1
        assert resp.json()["projected_revenue"] == 100.0

    def test_sync_entity(self, client, fake_crm, appointment):
        resp = client.post(f"{API}/sync/appointment/{appointment['id']}")

        assert resp.status_code == 200
        assert resp.json()["status"] == "SYNCED"
        assert fake_crm.count("deals") == 1

    def test_sync_unknown_type_is_400(self, client):
        resp = client.post(f"{API}/sync/invoice/1")

        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "unknown_entity_type"

    def test_health(self, client):
        assert client.get("/health").json() == {"status": "ok"}
