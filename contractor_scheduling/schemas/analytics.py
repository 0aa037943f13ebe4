# contractor_scheduling/schemas/analytics.py

from datetime import date

from pydantic import BaseModel, Field


class ServicePerformance(BaseModel):
    service_name: str
    total_bookings: int = 0
    completed_bookings: int = 0
    cancelled_bookings: int = 0
    total_revenue: float = 0.0
    average_price: float = 0.0
    completion_rate: float = 0.0


class ClientMetrics(BaseModel):
    total_clients: int = 0
    new_clients: int = 0
    returning_clients: int = 0
    repeat_client_percentage: float = 0.0
    average_appointments_per_client: float = 0.0


class SchedulingAnalytics(BaseModel):
    contractor_id: str
    start_date: date
    end_date: date

    total_bookings: int = 0
    scheduled_bookings: int = 0
    confirmed_bookings: int = 0
    in_progress_bookings: int = 0
    completed_bookings: int = 0
    cancelled_bookings: int = 0
    no_show_bookings: int = 0

    total_revenue: float = 0.0
    average_booking_value: float = 0.0
    booking_conversion_rate: float = 0.0
    projected_revenue: float = 0.0

    service_breakdown: dict[str, int] = {}
    revenue_by_month: dict[str, float] = {}
    service_performance: list[ServicePerformance] = []
    client_metrics: ClientMetrics = Field(default_factory=ClientMetrics)
