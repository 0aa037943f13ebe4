# contractor_scheduling/routers/sync.py
"""
CRM sync endpoints (admin).

POST /sync/{entity_type}/{entity_id} - Reconcile one entity now
POST /sync/process                   - Drain due outbox jobs now
"""

from fastapi import APIRouter, Depends

from ..dependencies import get_container
from ..services.container import SchedulingContainer

router = APIRouter(prefix="/sync", tags=["sync"])


@router.post("/process")
def process_due_jobs(container: SchedulingContainer = Depends(get_container)):
    return container.reconciler.process_due_jobs(now=container.now())


@router.post("/{entity_type}/{entity_id}")
def sync_entity(
    entity_type: str,
    entity_id: int,
    container: SchedulingContainer = Depends(get_container),
):
    return container.reconciler.sync_now(entity_type, entity_id, now=container.now())
