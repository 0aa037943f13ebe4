# contractor_scheduling/services/lifecycle.py
"""
Appointment status state machine.

SCHEDULED → CONFIRMED | CANCELLED
CONFIRMED → IN_PROGRESS | CANCELLED | NO_SHOW
IN_PROGRESS → COMPLETED | NO_SHOW

COMPLETED, CANCELLED and NO_SHOW are terminal. Every transition is a
compare-and-swap on the status column: a writer that read stale state
gets ConflictError instead of overwriting a concurrent change.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy.orm import Session, sessionmaker

from ..errors import ConflictError, NotFoundError, PolicyViolationError, ValidationError
from ..models import Appointments, to_storage_utc
from ..schemas.appointments import AppointmentStatus, PaymentStatus, RefundQuote
from ..schemas.schedules import CancellationPolicy, RefundPolicy
from .events import EventEmitter
from .schedule_store import ScheduleConfigStore
from .sync.outbox import enqueue_sync

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    AppointmentStatus.SCHEDULED: frozenset({
        AppointmentStatus.CONFIRMED,
        AppointmentStatus.CANCELLED,
    }),
    AppointmentStatus.CONFIRMED: frozenset({
        AppointmentStatus.IN_PROGRESS,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.NO_SHOW,
    }),
    AppointmentStatus.IN_PROGRESS: frozenset({
        AppointmentStatus.COMPLETED,
        AppointmentStatus.NO_SHOW,
    }),
}

# Timestamp column stamped on entering a status
_STAMPS = {
    AppointmentStatus.CONFIRMED: "confirmed_at",
    AppointmentStatus.IN_PROGRESS: "started_at",
    AppointmentStatus.COMPLETED: "completed_at",
    AppointmentStatus.CANCELLED: "cancelled_at",
}


@dataclass(frozen=True)
class CancellationOutcome:
    refund_amount: float
    deposit_forfeited: bool
    remaining_balance: float
    within_deadline: bool


def hours_until_start(appointment: Appointments, now: datetime) -> float:
    return (appointment.start_time - to_storage_utc(now)).total_seconds() / 3600


def evaluate_cancellation(
    appointment: Appointments,
    policy: CancellationPolicy,
    now: datetime,
) -> CancellationOutcome:
    """
    Money effects of cancelling now.

    Before the deadline the refund policy applies; FULL and PARTIAL settle
    the booking (nothing left to pay). Late cancellation forfeits the
    deposit and leaves the balance as it was.

    Forfeiture follows the policy alone. Money only moves back for a
    deposit that was actually paid: an unpaid deposit refunds nothing.
    """
    deposit = appointment.deposit_amount or 0.0
    remaining = appointment.remaining_balance
    within_deadline = hours_until_start(appointment, now) >= policy.cancellation_deadline_hours

    if not within_deadline:
        return CancellationOutcome(0.0, deposit > 0, remaining, False)

    if policy.refund_policy == RefundPolicy.FULL:
        refund = round(deposit, 2) if appointment.deposit_paid else 0.0
        return CancellationOutcome(refund, False, 0.0, True)

    if policy.refund_policy == RefundPolicy.PARTIAL:
        entitled = round(deposit * (policy.partial_refund_percentage or 0) / 100, 2)
        refund = entitled if appointment.deposit_paid else 0.0
        return CancellationOutcome(refund, entitled < deposit, 0.0, True)

    return CancellationOutcome(0.0, deposit > 0, remaining, True)


class AppointmentLifecycle:
    def __init__(
        self,
        session_factory: sessionmaker,
        store: ScheduleConfigStore,
        events: EventEmitter,
    ):
        self.session_factory = session_factory
        self.store = store
        self.events = events

    def get_appointment(self, appointment_id: int) -> Appointments:
        with self.session_factory() as db:
            return self._load(db, appointment_id)

    @staticmethod
    def _load(db: Session, appointment_id: int) -> Appointments:
        appointment = db.get(Appointments, appointment_id)
        if not appointment:
            raise NotFoundError("appointment_not_found", f"Appointment {appointment_id} not found")
        return appointment

    def transition(
        self,
        appointment_id: int,
        new_status: AppointmentStatus | str,
        now: datetime | None = None,
        notes: str | None = None,
        cancellation_reason: str | None = None,
        expected_status: AppointmentStatus | str | None = None,
    ) -> Appointments:
        """
        Move an appointment to new_status.

        expected_status lets the caller pin the state it based its decision
        on; without it the currently stored status is used.

        Raises:
            NotFoundError: unknown appointment
            ValidationError: edge not in the state machine
            PolicyViolationError: cancellation disabled by the contractor
            ConflictError: status changed concurrently
        """
        now = now or datetime.now(timezone.utc)
        try:
            new_status = AppointmentStatus(new_status)
        except ValueError:
            raise ValidationError("invalid_status", f"Unknown status: {new_status}") from None

        with self.session_factory() as db:
            try:
                appointment = self._load(db, appointment_id)
                current = AppointmentStatus(appointment.status)

                if expected_status is not None and AppointmentStatus(expected_status) != current:
                    raise ConflictError(
                        "stale_status",
                        f"Appointment {appointment_id} is {current.value}, expected {AppointmentStatus(expected_status).value}",
                        suggestion="Reload the appointment and retry",
                    )
                expected = current

                if new_status not in ALLOWED_TRANSITIONS.get(current, frozenset()):
                    raise ValidationError(
                        "invalid_transition",
                        f"Cannot change appointment status from {current.value} to {new_status.value}",
                    )

                values = self._side_effects(db, appointment, new_status, now, notes, cancellation_reason)

                updated = (
                    db.query(Appointments)
                    .filter(
                        Appointments.id == appointment_id,
                        Appointments.status == expected.value,
                    )
                    .update(values, synchronize_session=False)
                )
                if updated == 0:
                    raise ConflictError(
                        "stale_status",
                        f"Appointment {appointment_id} changed status concurrently",
                        suggestion="Reload the appointment and retry",
                    )

                enqueue_sync(db, "appointment", appointment_id, f"status:{new_status.value}", now=to_storage_utc(now))
                db.commit()
            except Exception:
                db.rollback()
                raise

            db.refresh(appointment)

        logger.info(
            f"Appointment {appointment_id}: {expected.value} → {new_status.value} "
            f"(contractor={appointment.contractor_id})"
        )
        self.events.emit("appointment_status_changed", {
            "appointment_id": appointment_id,
            "contractor_id": appointment.contractor_id,
            "client_id": appointment.client_id,
            "old_status": expected.value,
            "new_status": new_status.value,
        })
        return appointment

    def _side_effects(
        self,
        db: Session,
        appointment: Appointments,
        new_status: AppointmentStatus,
        now: datetime,
        notes: str | None,
        cancellation_reason: str | None,
    ) -> dict:
        stamp = to_storage_utc(now)
        values = {
            Appointments.status: new_status.value,
            Appointments.updated_at: stamp,
        }

        column = _STAMPS.get(new_status)
        if column:
            values[getattr(Appointments, column)] = stamp

        if notes:
            existing = appointment.internal_notes
            values[Appointments.internal_notes] = f"{existing}\n{notes}" if existing else notes

        if new_status == AppointmentStatus.CANCELLED:
            schedule = self.store.load_schedule(db, appointment.contractor_id)
            policy = schedule.cancellation_policy
            if not policy.allow_cancellation:
                raise PolicyViolationError(
                    "cancellation_not_allowed",
                    "This contractor does not allow cancellations",
                )

            outcome = evaluate_cancellation(appointment, policy, now)
            values[Appointments.refund_amount] = outcome.refund_amount
            values[Appointments.deposit_forfeited] = outcome.deposit_forfeited
            values[Appointments.remaining_balance] = outcome.remaining_balance
            if outcome.refund_amount > 0:
                values[Appointments.payment_status] = PaymentStatus.REFUNDED.value
            if cancellation_reason:
                values[Appointments.cancellation_reason] = cancellation_reason

        elif new_status == AppointmentStatus.NO_SHOW:
            values[Appointments.deposit_forfeited] = (appointment.deposit_amount or 0) > 0

        return values

    def quote_refund(self, appointment_id: int, now: datetime | None = None) -> RefundQuote:
        """What cancelling now would refund, without changing anything."""
        now = now or datetime.now(timezone.utc)
        with self.session_factory() as db:
            appointment = self._load(db, appointment_id)
            policy = self.store.load_schedule(db, appointment.contractor_id).cancellation_policy

            status = AppointmentStatus(appointment.status)
            can_cancel = (
                policy.allow_cancellation
                and AppointmentStatus.CANCELLED in ALLOWED_TRANSITIONS.get(status, frozenset())
            )
            refund = evaluate_cancellation(appointment, policy, now).refund_amount if can_cancel else 0.0

            return RefundQuote(
                appointment_id=appointment.id,
                can_cancel=can_cancel,
                hours_until_start=round(hours_until_start(appointment, now), 2),
                cancellation_deadline_hours=policy.cancellation_deadline_hours,
                refund_policy=policy.refund_policy,
                potential_refund=refund,
                deposit_amount=appointment.deposit_amount or 0.0,
                deposit_paid=bool(appointment.deposit_paid),
            )

    def record_payment(
        self,
        appointment_id: int,
        deposit_paid: bool | None = None,
        payment_status: PaymentStatus | str | None = None,
        now: datetime | None = None,
    ) -> Appointments:
        """
        Record money received for an appointment.

        Marking the deposit paid moves a PENDING payment to DEPOSIT_PAID;
        marking the whole booking PAID implies the deposit was paid too.
        A REFUNDED payment is settled and cannot be changed.
        """
        now = now or datetime.now(timezone.utc)
        if deposit_paid is None and payment_status is None:
            raise ValidationError("invalid_request", "deposit_paid or payment_status is required")
        if payment_status is not None:
            try:
                payment_status = PaymentStatus(payment_status)
            except ValueError:
                raise ValidationError("invalid_payment_status", f"Unknown payment status: {payment_status}") from None

        with self.session_factory() as db:
            try:
                appointment = self._load(db, appointment_id)
                current = PaymentStatus(appointment.payment_status)
                if current == PaymentStatus.REFUNDED:
                    raise ConflictError(
                        "payment_settled",
                        f"Appointment {appointment_id} was already refunded",
                    )

                if payment_status is None:
                    if deposit_paid and current == PaymentStatus.PENDING:
                        payment_status = PaymentStatus.DEPOSIT_PAID
                    elif deposit_paid is False and current == PaymentStatus.DEPOSIT_PAID:
                        payment_status = PaymentStatus.PENDING
                    else:
                        payment_status = current
                elif deposit_paid is None and payment_status in (PaymentStatus.DEPOSIT_PAID, PaymentStatus.PAID):
                    deposit_paid = True

                if deposit_paid is not None:
                    appointment.deposit_paid = deposit_paid
                appointment.payment_status = payment_status.value
                appointment.updated_at = to_storage_utc(now)

                enqueue_sync(db, "appointment", appointment_id, "payment", now=to_storage_utc(now))
                db.commit()
            except Exception:
                db.rollback()
                raise

            db.refresh(appointment)

        logger.info(
            f"Appointment {appointment_id}: payment {payment_status.value} "
            f"(deposit_paid={appointment.deposit_paid})"
        )
        return appointment
