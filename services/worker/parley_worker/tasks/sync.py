"""Message sync tasks.

``sync.run_sync`` runs a sync that the API already created in ``pending``
state, in its own database session. ``sync.reconcile_stale`` completes
syncs that stopped reporting progress.
"""

import asyncio
import logging
from typing import Optional

from parley_worker.celery_app import app

logger = logging.getLogger(__name__)


@app.task(
    name="sync.run_sync",
    bind=True,
    max_retries=0,  # A sync id runs at most once
    acks_late=False,
)
def run_sync(self, customer_id: str, sync_id: str, customer_name: Optional[str] = None) -> dict:
    """Run one sync for one customer.

    Args:
        customer_id: Customer owning the sync.
        sync_id: Sync created through ``POST /sync-status``.
        customer_name: Display name sent to the broker with the access token.

    Returns:
        Dictionary with status and totals.
    """
    # Import here to avoid circular imports
    from parley_core.domain.services.message_sync import MessageSyncError, MessageSyncService
    from parley_core.domain.services.sync_status import SyncStatusError
    from parley_core.infra.db import session_scope
    from parley_core.providers.base import GatewayError
    from parley_core.providers.integration_app import build_gateway

    if not customer_id or not sync_id:
        return {
            "status": "error",
            "error": "customer_id and sync_id are required",
            "sync_id": sync_id,
        }

    try:
        with session_scope() as session:
            service = MessageSyncService(
                db=session,
                gateway=build_gateway(customer_id, customer_name),
            )
            result = asyncio.run(service.run(customer_id, sync_id))
    except (SyncStatusError, MessageSyncError, GatewayError) as e:
        logger.error(f"Sync {sync_id} for customer {customer_id} failed: {e}")
        return {
            "status": "failed",
            "error": str(e),
            "sync_id": sync_id,
        }

    return {
        "status": "completed",
        "sync_id": sync_id,
        "total_chats": result.total_chats,
        "total_messages": result.total_messages,
        "errors": result.errors,
    }


@app.task(name="sync.reconcile_stale", bind=True, max_retries=3)
def reconcile_stale(self) -> dict:
    """Complete pending/running syncs that stopped making progress."""
    from parley_core.config import get_settings
    from parley_core.domain.services.sync_status import SyncStatusService
    from parley_core.infra.db import session_scope

    settings = get_settings()
    with session_scope() as session:
        count = SyncStatusService(
            session, stale_after_seconds=settings.sync_stale_after_seconds
        ).reconcile_stale()

    if count:
        logger.info(f"Reconciled {count} stale syncs")
    return {"status": "success", "reconciled": count}
