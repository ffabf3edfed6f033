"""Sync status API routes.

Provides endpoints for:
- GET /sync-status - Current sync state of the customer
- POST /sync-status - Begin a sync
- PUT /sync-status - Update an in-progress sync
"""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status

from parley_core.api.deps import CurrentCustomer, DBSession
from parley_core.api.schemas.sync_status import (
    SyncStartResponse,
    SyncStatusResponse,
    SyncStatusUpdateRequest,
)
from parley_core.config import get_settings
from parley_core.domain.models import SyncStatus
from parley_core.domain.services.sync_status import (
    InvalidSyncStatusError,
    InvalidSyncTransitionError,
    SyncConflictError,
    SyncNotFoundError,
    SyncStatusService,
)

router = APIRouter(prefix="/sync-status", tags=["sync"])

IDLE_STATUS = "idle"


def get_sync_status_service(db: DBSession) -> SyncStatusService:
    """Get the sync status service."""
    return SyncStatusService(
        db=db, stale_after_seconds=get_settings().sync_stale_after_seconds
    )


SyncStatusServiceDep = Annotated[SyncStatusService, Depends(get_sync_status_service)]


def sync_to_response(sync: SyncStatus) -> SyncStatusResponse:
    return SyncStatusResponse(
        status=sync.status,
        is_syncing=sync.is_syncing,
        sync_id=sync.sync_id,
        start_time=sync.start_time,
        last_sync_time=sync.last_sync_time,
        total_messages=sync.total_messages,
        total_chats=sync.total_chats,
        error=sync.error,
    )


@router.get("", response_model=SyncStatusResponse)
async def get_sync_status(
    customer: CurrentCustomer,
    db: DBSession,
    service: SyncStatusServiceDep,
):
    """Get the latest sync of the customer.

    A pending or running sync without progress for too long is completed
    with a timeout error before it is returned.
    """
    sync = service.get_current(customer.id)
    if sync is None:
        return SyncStatusResponse(status=IDLE_STATUS, is_syncing=False)
    db.commit()
    return sync_to_response(sync)


@router.post("", response_model=SyncStartResponse)
async def start_sync(
    customer: CurrentCustomer,
    db: DBSession,
    service: SyncStatusServiceDep,
):
    """Begin a new sync for the customer."""
    try:
        sync = service.start(customer.id)
    except SyncConflictError as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(e),
        )
    db.commit()

    return SyncStartResponse(
        sync_id=sync.sync_id,
        status=sync.status,
        is_syncing=sync.is_syncing,
        start_time=sync.start_time,
    )


@router.put("", response_model=SyncStatusResponse)
async def update_sync_status(
    request: SyncStatusUpdateRequest,
    customer: CurrentCustomer,
    db: DBSession,
    service: SyncStatusServiceDep,
):
    """Update an in-progress sync."""
    try:
        sync = service.update(
            customer.id,
            request.sync_id,
            request.status,
            total_messages=request.total_messages,
            total_chats=request.total_chats,
            error=request.error,
        )
    except InvalidSyncStatusError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e),
        )
    except SyncNotFoundError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(e),
        )
    except InvalidSyncTransitionError as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(e),
        )
    db.commit()

    return sync_to_response(sync)
