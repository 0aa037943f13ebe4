"""Tests for the appointment lifecycle."""

import json
from datetime import date, datetime, time, timedelta, timezone
from unittest.mock import patch

import pytest

from conftest import NOW
from contractor_scheduling.errors import ConflictError, PolicyViolationError, ValidationError
from contractor_scheduling.models import Appointments, CrmSyncJobs
from contractor_scheduling.services.lifecycle import ALLOWED_TRANSITIONS, AppointmentLifecycle

MONDAY = date(2025, 3, 10)
START = datetime.combine(MONDAY, time(10, 0), tzinfo=timezone.utc)


@pytest.fixture
def appointment(make_schedule, make_service, book, container):
    """SCHEDULED appointment: price 100, paid deposit 25, default PARTIAL 50% policy."""
    make_schedule()
    appt = book(make_service(), START)
    return container.lifecycle.record_payment(appt.id, deposit_paid=True, now=NOW)


@pytest.fixture
def lifecycle(container):
    return container.lifecycle


class TestTransitions:
    """Tests for the state machine."""

    def test_happy_path_stamps(self, lifecycle, appointment):
        """Each step stamps its timestamp."""
        confirmed = lifecycle.transition(appointment.id, "CONFIRMED", now=NOW)
        started = lifecycle.transition(appointment.id, "IN_PROGRESS", now=START)
        completed = lifecycle.transition(appointment.id, "COMPLETED", now=START + timedelta(hours=1))

        assert confirmed.status == "CONFIRMED"
        assert confirmed.confirmed_at == NOW.replace(tzinfo=None)
        assert started.started_at == START.replace(tzinfo=None)
        assert completed.status == "COMPLETED"
        assert completed.completed_at is not None

    @pytest.mark.parametrize("target", ["IN_PROGRESS", "COMPLETED", "NO_SHOW", "SCHEDULED"])
    def test_invalid_from_scheduled(self, lifecycle, appointment, target):
        """Edges outside the state machine are rejected."""
        with pytest.raises(ValidationError) as exc:
            lifecycle.transition(appointment.id, target, now=NOW)
        assert exc.value.code == "invalid_transition"

    def test_terminal_states_are_final(self, lifecycle, appointment):
        """Nothing leaves CANCELLED."""
        lifecycle.transition(appointment.id, "CANCELLED", now=NOW)

        for target in ("SCHEDULED", "CONFIRMED", "IN_PROGRESS", "COMPLETED"):
            with pytest.raises(ValidationError):
                lifecycle.transition(appointment.id, target, now=NOW)

    def test_unknown_status(self, lifecycle, appointment):
        """Unknown status strings are validation errors."""
        with pytest.raises(ValidationError):
            lifecycle.transition(appointment.id, "ARCHIVED", now=NOW)

    def test_state_machine_shape(self):
        """Terminal states have no outgoing edges."""
        assert {status.value for status in ALLOWED_TRANSITIONS} == {"SCHEDULED", "CONFIRMED", "IN_PROGRESS"}

    def test_expected_status_mismatch(self, lifecycle, appointment):
        """A caller acting on stale state gets ConflictError."""
        lifecycle.transition(appointment.id, "CONFIRMED", now=NOW)

        with pytest.raises(ConflictError) as exc:
            lifecycle.transition(appointment.id, "CANCELLED", now=NOW, expected_status="SCHEDULED")
        assert exc.value.code == "stale_status"

    def test_concurrent_change_loses_compare_and_swap(self, lifecycle, appointment, session_factory):
        """A status change between read and write is detected."""
        original = AppointmentLifecycle._side_effects

        def race(self, db, appt, new_status, now, notes, reason):
            with session_factory() as other:
                other.query(Appointments).filter(Appointments.id == appt.id).update(
                    {Appointments.status: "CANCELLED"}, synchronize_session=False,
                )
                other.commit()
            return original(self, db, appt, new_status, now, notes, reason)

        with patch.object(AppointmentLifecycle, "_side_effects", race):
            with pytest.raises(ConflictError) as exc:
                lifecycle.transition(appointment.id, "CONFIRMED", now=NOW)

        assert exc.value.code == "stale_status"
        assert lifecycle.get_appointment(appointment.id).status == "CANCELLED"

    def test_notes_go_to_internal_notes(self, lifecycle, appointment):
        """Transition notes accumulate on internal_notes."""
        lifecycle.transition(appointment.id, "CONFIRMED", now=NOW, notes="called client")
        result = lifecycle.transition(appointment.id, "IN_PROGRESS", now=START, notes="arrived")

        assert result.internal_notes == "called client\narrived"

    def test_transition_enqueues_sync_and_emits(self, lifecycle, appointment, session_factory, mock_redis):
        """Every transition queues a CRM sync and an event."""
        lifecycle.transition(appointment.id, "CONFIRMED", now=NOW)

        with session_factory() as db:
            jobs = (
                db.query(CrmSyncJobs)
                .filter(CrmSyncJobs.entity_type == "appointment", CrmSyncJobs.entity_id == appointment.id)
                .all()
            )
        # coalesced with the creation job
        assert len(jobs) == 1
        assert jobs[0].reason == "status:CONFIRMED"

        event = json.loads(mock_redis.rpush.call_args_list[-1].args[1])
        assert event["type"] == "appointment_status_changed"
        assert event["old_status"] == "SCHEDULED"
        assert event["new_status"] == "CONFIRMED"


class TestCancellation:
    """Tests for cancellation refunds."""

    def test_partial_refund_before_deadline(self, lifecycle, appointment):
        """PARTIAL 50%: half the deposit back, the rest forfeited, nothing due."""
        result = lifecycle.transition(
            appointment.id, "CANCELLED", now=NOW, cancellation_reason="schedule conflict",
        )

        assert result.status == "CANCELLED"
        assert result.refund_amount == 12.5
        assert result.deposit_forfeited is True
        assert result.remaining_balance == 0
        assert result.cancellation_reason == "schedule conflict"
        assert result.cancelled_at == NOW.replace(tzinfo=None)

    def test_full_refund(self, make_schedule, make_service, book, lifecycle):
        """FULL: the whole deposit comes back."""
        make_schedule(cancellation_policy={"refund_policy": "FULL"})
        appointment = book(make_service(), START)
        lifecycle.record_payment(appointment.id, deposit_paid=True, now=NOW)

        result = lifecycle.transition(appointment.id, "CANCELLED", now=NOW)

        assert result.refund_amount == 25.0
        assert result.deposit_forfeited is False
        assert result.remaining_balance == 0
        assert result.payment_status == "REFUNDED"

    def test_full_refund_respects_deadline(self, make_schedule, make_service, book, lifecycle):
        """FULL with a 24h deadline: refunded two days out, forfeited two hours out."""
        make_schedule(cancellation_policy={"refund_policy": "FULL", "cancellation_deadline_hours": 24})
        service = make_service()
        early = book(service, START)
        late = book(service, START + timedelta(hours=3))
        for appt in (early, late):
            lifecycle.record_payment(appt.id, deposit_paid=True, now=NOW)

        refunded = lifecycle.transition(early.id, "CANCELLED", now=START - timedelta(hours=48))
        forfeited = lifecycle.transition(late.id, "CANCELLED", now=START + timedelta(hours=1))

        assert refunded.refund_amount == 25.0
        assert refunded.deposit_forfeited is False
        assert refunded.remaining_balance == 0
        assert forfeited.refund_amount == 0
        assert forfeited.deposit_forfeited is True
        assert forfeited.remaining_balance == 75.0
        assert forfeited.payment_status == "DEPOSIT_PAID"

    def test_unpaid_deposit_is_not_refunded(self, make_schedule, make_service, book, lifecycle):
        """An unpaid deposit refunds nothing, though the policy still settles the booking."""
        make_schedule()
        appointment = book(make_service(), START)

        result = lifecycle.transition(appointment.id, "CANCELLED", now=NOW)

        assert result.deposit_paid is False
        assert result.refund_amount == 0
        assert result.deposit_forfeited is True
        assert result.remaining_balance == 0
        assert result.payment_status == "PENDING"

    def test_unpaid_full_refund_forfeits_nothing(self, make_schedule, make_service, book, lifecycle):
        """FULL with nothing paid: no money moves either way."""
        make_schedule(cancellation_policy={"refund_policy": "FULL"})
        appointment = book(make_service(), START)

        result = lifecycle.transition(appointment.id, "CANCELLED", now=NOW)

        assert result.refund_amount == 0
        assert result.deposit_forfeited is False

    def test_no_refund_policy(self, make_schedule, make_service, book, lifecycle):
        """NO_REFUND: deposit forfeited, balance unchanged."""
        make_schedule(cancellation_policy={"refund_policy": "NO_REFUND"})
        appointment = book(make_service(), START)

        result = lifecycle.transition(appointment.id, "CANCELLED", now=NOW)

        assert result.refund_amount == 0
        assert result.deposit_forfeited is True
        assert result.remaining_balance == 75.0

    def test_late_cancellation_forfeits(self, lifecycle, appointment):
        """Inside the deadline there is no refund."""
        result = lifecycle.transition(appointment.id, "CANCELLED", now=START - timedelta(hours=2))

        assert result.refund_amount == 0
        assert result.deposit_forfeited is True
        assert result.remaining_balance == 75.0

    def test_deadline_boundary_is_refundable(self, lifecycle, appointment):
        """Exactly at the deadline the policy still applies."""
        result = lifecycle.transition(appointment.id, "CANCELLED", now=START - timedelta(hours=24))

        assert result.refund_amount == 12.5

    def test_cancellation_disabled(self, make_schedule, make_service, book, lifecycle):
        """allow_cancellation=false is a policy violation and changes nothing."""
        make_schedule(cancellation_policy={"allow_cancellation": False})
        appointment = book(make_service(), START)

        with pytest.raises(PolicyViolationError):
            lifecycle.transition(appointment.id, "CANCELLED", now=NOW)

        assert lifecycle.get_appointment(appointment.id).status == "SCHEDULED"

    def test_no_show_forfeits_deposit(self, lifecycle, appointment):
        """NO_SHOW forfeits the deposit and leaves the balance due."""
        lifecycle.transition(appointment.id, "CONFIRMED", now=NOW)

        result = lifecycle.transition(appointment.id, "NO_SHOW", now=START + timedelta(minutes=30))

        assert result.deposit_forfeited is True
        assert result.remaining_balance == 75.0
        assert result.refund_amount == 0


class TestRefundQuote:
    """Tests for quote_refund."""

    def test_quote_matches_cancellation(self, lifecycle, appointment):
        """The quote predicts the refund without changing anything."""
        quote = lifecycle.quote_refund(appointment.id, now=NOW)

        assert quote.can_cancel is True
        assert quote.potential_refund == 12.5
        assert quote.deposit_amount == 25.0
        assert quote.hours_until_start == 168.0
        assert quote.refund_policy == "PARTIAL"
        assert lifecycle.get_appointment(appointment.id).status == "SCHEDULED"

    def test_quote_after_cancellation(self, lifecycle, appointment):
        """A cancelled appointment cannot be cancelled again."""
        lifecycle.transition(appointment.id, "CANCELLED", now=NOW)

        quote = lifecycle.quote_refund(appointment.id, now=NOW)

        assert quote.can_cancel is False
        assert quote.potential_refund == 0

    def test_quote_unpaid_deposit(self, make_schedule, make_service, book, lifecycle):
        """Nothing paid, nothing to refund."""
        make_schedule()
        appointment = book(make_service(), START)

        quote = lifecycle.quote_refund(appointment.id, now=NOW)

        assert quote.deposit_paid is False
        assert quote.potential_refund == 0


class TestPayment:
    """Tests for record_payment."""

    def test_new_booking_is_unpaid(self, make_schedule, make_service, book):
        """Bookings start with nothing paid."""
        make_schedule()
        appointment = book(make_service(), START)

        assert appointment.deposit_paid is False
        assert appointment.payment_status == "PENDING"

    def test_deposit_paid(self, make_schedule, make_service, book, lifecycle, session_factory):
        """Marking the deposit paid moves PENDING to DEPOSIT_PAID and queues a sync."""
        make_schedule()
        appointment = book(make_service(), START)

        result = lifecycle.record_payment(appointment.id, deposit_paid=True, now=NOW)

        assert result.deposit_paid is True
        assert result.payment_status == "DEPOSIT_PAID"
        with session_factory() as db:
            job = (
                db.query(CrmSyncJobs)
                .filter(CrmSyncJobs.entity_type == "appointment", CrmSyncJobs.entity_id == appointment.id)
                .one()
            )
        assert job.reason == "payment"

    def test_paid_in_full_implies_deposit(self, lifecycle, make_schedule, make_service, book):
        """PAID without deposit_paid marks the deposit paid as well."""
        make_schedule()
        appointment = book(make_service(), START)

        result = lifecycle.record_payment(appointment.id, payment_status="PAID", now=NOW)

        assert result.deposit_paid is True
        assert result.payment_status == "PAID"

    def test_unmark_deposit(self, lifecycle, appointment):
        """Clearing deposit_paid reverts DEPOSIT_PAID to PENDING."""
        result = lifecycle.record_payment(appointment.id, deposit_paid=False, now=NOW)

        assert result.deposit_paid is False
        assert result.payment_status == "PENDING"

    def test_refunded_is_settled(self, lifecycle, appointment):
        """A refunded appointment's payment cannot be changed."""
        lifecycle.transition(appointment.id, "CANCELLED", now=NOW)

        with pytest.raises(ConflictError) as exc:
            lifecycle.record_payment(appointment.id, payment_status="PAID", now=NOW)
        assert exc.value.code == "payment_settled"

    def test_requires_a_change(self, lifecycle, appointment):
        """Neither field given is a validation error."""
        with pytest.raises(ValidationError):
            lifecycle.record_payment(appointment.id, now=NOW)

    def test_unknown_payment_status(self, lifecycle, appointment):
        with pytest.raises(ValidationError) as exc:
            lifecycle.record_payment(appointment.id, payment_status="BARTERED", now=NOW)
        assert exc.value.code == "invalid_payment_status"
