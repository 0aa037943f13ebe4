# contractor_scheduling/services/sync/__init__.py
"""
CRM mirror.

outbox: sync jobs written in the same transaction as the local change
hubspot: HubSpot CRM v3 client
reconciler: lookup-before-create reconciliation and outbox draining
worker: asyncio loop around the reconciler
"""

from .outbox import JobState, backoff_seconds, enqueue_sync
from .hubspot import CrmClient, HubSpotClient
from .reconciler import DEAL_STAGES, OBJECT_TYPES, SyncReconciler, record_key
from .worker import sync_worker_loop

__all__ = [
    "JobState",
    "backoff_seconds",
    "enqueue_sync",
    "CrmClient",
    "HubSpotClient",
    "DEAL_STAGES",
    "OBJECT_TYPES",
    "SyncReconciler",
    "record_key",
    "sync_worker_loop",
]
