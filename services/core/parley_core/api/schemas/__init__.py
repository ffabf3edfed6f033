"""API schemas."""

from parley_core.api.schemas.chat import (
    AvailableChatListResponse,
    AvailableChatResponse,
    AvailableChatsRequest,
    ChatListResponse,
    ChatResponse,
)
from parley_core.api.schemas.integration import (
    ExportSupportResponse,
    IntegrationTokenResponse,
)
from parley_core.api.schemas.message import (
    DeliveryCallbackRequest,
    DeliveryCallbackResponse,
    MessageListResponse,
    MessageResponse,
    PendingMessageListResponse,
    PendingMessageResponse,
    ReceiveMessageRequest,
    ReceiveMessageResponse,
    RetryMessageRequest,
    SendMessageRequest,
    SendMessageResponse,
    SyncJobResponse,
    SyncMessagesRequest,
    SyncMessagesResponse,
)
from parley_core.api.schemas.sync_status import (
    SyncStartResponse,
    SyncStatusResponse,
    SyncStatusUpdateRequest,
)
from parley_core.api.schemas.user_platform import (
    ImportNewResponse,
    ImportNewUpdateRequest,
    ImportNewUpdateResponse,
    PlatformFetchResponse,
    UserPlatformListResponse,
    UserPlatformResponse,
)

__all__ = [
    # Chat schemas
    "AvailableChatListResponse",
    "AvailableChatResponse",
    "AvailableChatsRequest",
    "ChatListResponse",
    "ChatResponse",
    # Integration schemas
    "ExportSupportResponse",
    "IntegrationTokenResponse",
    # Message schemas
    "DeliveryCallbackRequest",
    "DeliveryCallbackResponse",
    "MessageListResponse",
    "MessageResponse",
    "PendingMessageListResponse",
    "PendingMessageResponse",
    "ReceiveMessageRequest",
    "ReceiveMessageResponse",
    "RetryMessageRequest",
    "SendMessageRequest",
    "SendMessageResponse",
    "SyncJobResponse",
    "SyncMessagesRequest",
    "SyncMessagesResponse",
    # Sync status schemas
    "SyncStartResponse",
    "SyncStatusResponse",
    "SyncStatusUpdateRequest",
    # Platform identity schemas
    "ImportNewResponse",
    "ImportNewUpdateRequest",
    "ImportNewUpdateResponse",
    "PlatformFetchResponse",
    "UserPlatformListResponse",
    "UserPlatformResponse",
]
