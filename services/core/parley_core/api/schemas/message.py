"""Message API schemas."""

from typing import Optional, Union

from pydantic import Field

from parley_core.api.schemas.base import CamelModel


# =============================================================================
# SYNC
# =============================================================================


class SyncMessagesRequest(CamelModel):
    """Request schema for running a sync."""

    sync_id: str = Field(..., min_length=1)


class ConnectionSyncResponse(CamelModel):
    """Per-connection counters of a sync run."""

    connection_id: str
    platform: str
    chats: int
    new_messages: int
    failed: bool


class SyncMessagesResponse(CamelModel):
    """Response schema for a finished sync run."""

    success: bool = True
    sync_id: str
    total_messages: int
    total_chats: int
    connections: list[ConnectionSyncResponse] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)


class SyncJobResponse(CamelModel):
    """Response schema for a queued background sync."""

    job_id: str = Field(..., description="Celery task ID for tracking the job")
    sync_id: str
    status: str = Field(..., description="Initial job status (queued)")
    message: str


# =============================================================================
# SEND
# =============================================================================


class SendMessageRequest(CamelModel):
    """Request schema for sending (or retrying) a message.

    Length limits are enforced by the service so the configured maximum
    applies.
    """

    message: str
    chat_id: str = Field(..., min_length=1)
    integration_id: str = Field(..., min_length=1)
    recipient: Optional[str] = None
    chat_name: Optional[str] = None
    chat_type: str = "direct"
    platform_name: Optional[str] = None
    message_id: Optional[str] = Field(
        default=None,
        description="Existing message to retry instead of creating a new one",
    )


class RetryMessageRequest(CamelModel):
    """Request schema for retrying a message in place."""

    message: Optional[str] = Field(default=None, description="Replacement content")
    recipient: Optional[str] = None
    chat_name: Optional[str] = None
    chat_type: str = "direct"


class SendMessageResponse(CamelModel):
    """Response schema for a send attempt."""

    success: bool
    message_id: str
    status: str
    external_message_id: Optional[str] = None
    flow_run_id: Optional[str] = None
    error: Optional[str] = None


class CallbackOutput(CamelModel):
    """Action output nested in a delivery callback."""

    message_id: Optional[str] = None
    status: Optional[str] = None


class DeliveryCallbackRequest(CamelModel):
    """Request schema for the broker delivery callback."""

    flow_run_id: Optional[str] = None
    operation_handle: Optional[str] = None
    internal_message_id: Optional[str] = None
    status: Optional[str] = None
    external_message_id: Optional[str] = None
    error: Optional[str] = None
    output: Optional[CallbackOutput] = None

    @property
    def handle(self) -> Optional[str]:
        return self.flow_run_id or self.operation_handle

    @property
    def resolved_status(self) -> Optional[str]:
        if self.status:
            return self.status
        return self.output.status if self.output else None

    @property
    def resolved_external_id(self) -> Optional[str]:
        if self.external_message_id:
            return self.external_message_id
        return self.output.message_id if self.output else None


class DeliveryCallbackResponse(CamelModel):
    """Response schema for a processed delivery callback."""

    success: bool = True
    message_id: str
    status: str
    applied: bool


# =============================================================================
# READ
# =============================================================================


class PendingMessageResponse(CamelModel):
    """Response schema for an outbound message that is not sent yet."""

    id: str
    chat_id: str
    integration_id: str
    content: str
    status: str
    error: Optional[str] = None
    timestamp: str
    can_retry: bool = True


class PendingMessageListResponse(CamelModel):
    messages: list[PendingMessageResponse]
    total: int


class MessageResponse(CamelModel):
    """Response schema for a stored message."""

    id: str
    content: str
    sender: str
    owner_name: Optional[str] = None
    timestamp: str
    chat_id: str
    integration_id: str
    platform_name: Optional[str] = None
    message_type: str
    status: str
    external_message_id: Optional[str] = None


class MessageListResponse(CamelModel):
    messages: list[MessageResponse]


# =============================================================================
# INBOUND
# =============================================================================


class InboundMessageData(CamelModel):
    """Message fields of an inbound webhook delivery."""

    id: Optional[str] = None
    content: str = ""
    owner_id: str = Field(..., min_length=1)
    owner_name: Optional[str] = None
    chat_id: str = Field(..., min_length=1)
    timestamp: Optional[Union[str, int, float]] = None
    platform_name: Optional[str] = None
    integration_id: Optional[str] = None


class ReceiveMessageRequest(CamelModel):
    """Request schema for the inbound message webhook."""

    external_message_id: str = Field(..., min_length=1)
    customer_id: str = Field(..., min_length=1)
    data: InboundMessageData


class ReceiveMessageResponse(CamelModel):
    """Response schema for an inbound message delivery."""

    success: bool = True
    duplicate: bool = False
    message: Optional[str] = None
    message_id: Optional[str] = None
    chat_id: Optional[str] = None
    external_message_id: Optional[str] = None
