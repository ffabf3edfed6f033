"""Sync status API schemas."""

from datetime import datetime
from typing import Optional

from pydantic import Field

from parley_core.api.schemas.base import CamelModel


class SyncStatusResponse(CamelModel):
    """Response schema for the current sync state."""

    status: str = Field(..., description="idle, pending, running, completed or failed")
    is_syncing: bool = False
    sync_id: Optional[str] = None
    start_time: Optional[datetime] = None
    last_sync_time: Optional[datetime] = None
    total_messages: int = 0
    total_chats: int = 0
    error: Optional[str] = None


class SyncStartResponse(CamelModel):
    """Response schema for a newly started sync."""

    sync_id: str
    status: str
    is_syncing: bool
    start_time: datetime


class SyncStatusUpdateRequest(CamelModel):
    """Request schema for updating an in-progress sync."""

    sync_id: str = Field(..., min_length=1)
    status: str = Field(..., min_length=1)
    total_messages: Optional[int] = Field(default=None, ge=0)
    total_chats: Optional[int] = Field(default=None, ge=0)
    error: Optional[str] = None
