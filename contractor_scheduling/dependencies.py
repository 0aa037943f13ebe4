# contractor_scheduling/dependencies.py

from fastapi import Request

from .services.container import SchedulingContainer


def get_container(request: Request) -> SchedulingContainer:
    """Container built in the app lifespan; overridden in tests."""
    return request.app.state.container
