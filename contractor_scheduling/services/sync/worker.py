"""
CRM sync worker.

Periodically drains due outbox jobs through SyncReconciler.process_due_jobs.

Runs as an asyncio task in the app lifespan.
Uses the synchronous reconciler (via asyncio.to_thread), so CRM calls never
block the event loop and never run inside a contractor lock.
"""

import asyncio
import logging

from ...config import settings
from .reconciler import SyncReconciler

logger = logging.getLogger(__name__)


async def sync_worker_loop(reconciler: SyncReconciler, interval: float | None = None) -> None:
    """
    Periodic loop that pushes pending local changes to the CRM.

    Unexpected errors are logged and the loop keeps going; retries and
    give-up are handled per job by the reconciler.
    """
    interval = interval if interval is not None else settings.sync_poll_interval_seconds
    logger.info("sync_worker_loop started")

    try:
        while True:
            try:
                await asyncio.to_thread(reconciler.process_due_jobs)
            except asyncio.CancelledError:
                logger.info("sync_worker_loop cancelled")
                raise
            except Exception:
                logger.exception("sync_worker_loop error")

            await asyncio.sleep(interval)
    except asyncio.CancelledError:
        pass
