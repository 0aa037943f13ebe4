# contractor_scheduling/main.py

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .config import settings
from .errors import SchedulingError
from .routers import analytics, appointments, availability, schedules, sync
from .services.container import SchedulingContainer
from .services.sync import sync_worker_loop

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

ERROR_STATUS = {
    "ValidationError": 400,
    "NotFoundError": 404,
    "ConflictError": 409,
    "PolicyViolationError": 422,
    "SyncError": 502,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    container = SchedulingContainer.from_settings(settings)
    app.state.container = container

    worker = asyncio.create_task(sync_worker_loop(container.reconciler))
    logger.info("Scheduling API started")
    try:
        yield
    finally:
        worker.cancel()
        try:
            await worker
        except asyncio.CancelledError:
            pass
        container.close()
        logger.info("Scheduling API stopped")


app = FastAPI(title="Contractor Scheduling API", lifespan=lifespan)


@app.exception_handler(SchedulingError)
async def scheduling_error_handler(request: Request, exc: SchedulingError):
    status_code = ERROR_STATUS.get(exc.kind, 500)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} -> {exc.kind}: {exc.message}")
    return JSONResponse(status_code=status_code, content={"error": exc.to_dict()})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    first = exc.errors()[0] if exc.errors() else {}
    location = ".".join(str(part) for part in first.get("loc", ()))
    error = {
        "kind": "ValidationError",
        "code": "invalid_request",
        "reason": f"{location}: {first.get('msg', 'invalid request')}",
    }
    return JSONResponse(status_code=400, content={"error": error})


API_PREFIX = "/api/scheduling"

app.include_router(availability.router, prefix=API_PREFIX)
app.include_router(appointments.router, prefix=API_PREFIX)
app.include_router(analytics.router, prefix=API_PREFIX)
app.include_router(schedules.router, prefix=API_PREFIX)
app.include_router(sync.router, prefix=API_PREFIX)


@app.get("/health")
def health():
    return {"status": "ok"}
