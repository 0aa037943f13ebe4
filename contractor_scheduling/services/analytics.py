# contractor_scheduling/services/analytics.py
"""
Read-only booking metrics for a contractor over a date range.

Revenue counts COMPLETED appointments only; projected revenue adds the value
of appointments still SCHEDULED or CONFIRMED.
"""

from collections import Counter, defaultdict
from datetime import date

from sqlalchemy.orm import joinedload, sessionmaker

from ..errors import ValidationError
from ..models import Appointments
from ..schemas.analytics import ClientMetrics, SchedulingAnalytics, ServicePerformance
from ..schemas.appointments import AppointmentStatus

_STATUS_FIELDS = {
    AppointmentStatus.SCHEDULED: "scheduled_bookings",
    AppointmentStatus.CONFIRMED: "confirmed_bookings",
    AppointmentStatus.IN_PROGRESS: "in_progress_bookings",
    AppointmentStatus.COMPLETED: "completed_bookings",
    AppointmentStatus.CANCELLED: "cancelled_bookings",
    AppointmentStatus.NO_SHOW: "no_show_bookings",
}


def _pct(part: float, whole: float) -> float:
    return round(part / whole * 100, 2) if whole else 0.0


def _client_key(appointment: Appointments) -> str:
    return appointment.client_email or appointment.client_id or "unknown"


class AnalyticsAggregator:
    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def get_scheduling_analytics(
        self,
        contractor_id: str,
        start_date: date,
        end_date: date,
    ) -> SchedulingAnalytics:
        if end_date < start_date:
            raise ValidationError("invalid_range", "end_date must not be before start_date")

        with self.session_factory() as db:
            appointments = (
                db.query(Appointments)
                .options(joinedload(Appointments.service))
                .filter(
                    Appointments.contractor_id == contractor_id,
                    Appointments.appointment_date >= start_date,
                    Appointments.appointment_date <= end_date,
                )
                .order_by(Appointments.start_time)
                .all()
            )

        return self.aggregate(contractor_id, start_date, end_date, appointments)

    @staticmethod
    def aggregate(
        contractor_id: str,
        start_date: date,
        end_date: date,
        appointments: list[Appointments],
    ) -> SchedulingAnalytics:
        status_counts: Counter = Counter()
        service_breakdown: Counter = Counter()
        revenue_by_month: dict[str, float] = defaultdict(float)
        per_service: dict[str, dict] = {}
        client_counts: Counter = Counter()

        total_revenue = 0.0
        pipeline_value = 0.0

        for appt in appointments:
            status = AppointmentStatus(appt.status)
            status_counts[status] += 1

            service_name = appt.service.service_name if appt.service else "Unknown"
            service_breakdown[service_name] += 1
            client_counts[_client_key(appt)] += 1

            stats = per_service.setdefault(service_name, {
                "total": 0, "completed": 0, "cancelled": 0, "revenue": 0.0, "prices": [],
            })
            stats["total"] += 1
            stats["prices"].append(appt.total_price)

            if status == AppointmentStatus.COMPLETED:
                total_revenue += appt.total_price
                revenue_by_month[appt.appointment_date.strftime("%Y-%m")] += appt.total_price
                stats["completed"] += 1
                stats["revenue"] += appt.total_price
            elif status == AppointmentStatus.CANCELLED:
                stats["cancelled"] += 1
            elif status in (AppointmentStatus.SCHEDULED, AppointmentStatus.CONFIRMED):
                pipeline_value += appt.total_price

        total = len(appointments)
        completed = status_counts[AppointmentStatus.COMPLETED]

        service_performance = [
            ServicePerformance(
                service_name=name,
                total_bookings=stats["total"],
                completed_bookings=stats["completed"],
                cancelled_bookings=stats["cancelled"],
                total_revenue=round(stats["revenue"], 2),
                average_price=round(sum(stats["prices"]) / len(stats["prices"]), 2),
                completion_rate=_pct(stats["completed"], stats["total"]),
            )
            for name, stats in sorted(per_service.items())
        ]

        returning = sum(1 for count in client_counts.values() if count > 1)
        client_metrics = ClientMetrics(
            total_clients=len(client_counts),
            new_clients=len(client_counts) - returning,
            returning_clients=returning,
            repeat_client_percentage=_pct(returning, len(client_counts)),
            average_appointments_per_client=round(total / len(client_counts), 2) if client_counts else 0.0,
        )

        counts = {field: status_counts[status] for status, field in _STATUS_FIELDS.items()}

        return SchedulingAnalytics(
            contractor_id=contractor_id,
            start_date=start_date,
            end_date=end_date,
            total_bookings=total,
            **counts,
            total_revenue=round(total_revenue, 2),
            average_booking_value=round(total_revenue / completed, 2) if completed else 0.0,
            booking_conversion_rate=_pct(completed, total),
            projected_revenue=round(total_revenue + pipeline_value, 2),
            service_breakdown=dict(service_breakdown),
            revenue_by_month={month: round(value, 2) for month, value in sorted(revenue_by_month.items())},
            service_performance=service_performance,
            client_metrics=client_metrics,
        )
