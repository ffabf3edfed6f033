"""Domain services for Parley."""

from parley_core.domain.services.chats import ChatService
from parley_core.domain.services.inbound import InboundMessageService
from parley_core.domain.services.message_sync import MessageSyncService
from parley_core.domain.services.send_message import SendMessageService
from parley_core.domain.services.sync_status import SyncStatusService
from parley_core.domain.services.user_platform import UserPlatformService

__all__ = [
    "ChatService",
    "InboundMessageService",
    "MessageSyncService",
    "SendMessageService",
    "SyncStatusService",
    "UserPlatformService",
]
