"""Platform identity API schemas."""

from datetime import datetime
from typing import Optional

from pydantic import Field

from parley_core.api.schemas.base import CamelModel


class UserPlatformResponse(CamelModel):
    """Response schema for a stored platform identity."""

    id: int
    platform_id: str
    platform_name: Optional[str] = None
    connection_id: Optional[str] = None
    external_user_id: Optional[str] = None
    external_user_name: Optional[str] = None
    external_user_email: Optional[str] = None
    import_new: bool = True
    last_synced: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class UserPlatformListResponse(CamelModel):
    user_platforms: list[UserPlatformResponse]
    total: int


class PlatformFetchResultResponse(CamelModel):
    """Outcome of refreshing one connection's identity."""

    platform_id: str
    platform_name: str
    success: bool
    external_user_id: Optional[str] = None
    external_user_name: Optional[str] = None
    external_user_email: Optional[str] = None
    error: Optional[str] = None


class PlatformFetchResponse(CamelModel):
    success: bool = True
    results: list[PlatformFetchResultResponse]
    total_processed: int
    successful: int


class ImportNewResponse(CamelModel):
    """Response schema for reading the import-new preference."""

    success: bool = True
    platform_id: str
    import_new: bool
    exists: bool


class ImportNewUpdateRequest(CamelModel):
    """Request schema for setting the import-new preference."""

    platform_id: str = Field(..., min_length=1)
    import_new: bool


class ImportNewUpdateResponse(CamelModel):
    success: bool = True
    platform_id: str
    import_new: bool
    message: str
