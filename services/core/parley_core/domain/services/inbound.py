"""Inbound message receiver.

Stores messages pushed by the broker webhook. A delivery is deduplicated by
the customer's external message id, so redelivery of the same event is a
no-op. Messages for a chat that was never imported are only accepted when
the platform's ``import_new`` preference allows it.

Usage:
    service = InboundMessageService(db=session, gateway_factory=make_gateway)
    result = await service.receive(
        InboundMessage(
            customer_id="cust-1",
            external_message_id="ext-1",
            chat_id="C1",
            content="hi",
            owner_id="U2",
            integration_id="conn-1",
        )
    )
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from parley_core.config import Settings, get_settings
from parley_core.domain.models import (
    Chat,
    Message,
    MessageStatus,
    MessageType,
    UserPlatform,
)
from parley_core.domain.services.normalization import (
    format_timestamp,
    iso_now,
    normalize_chat,
)
from parley_core.domain.services.send_message import generate_local_id
from parley_core.infrastructure.retry import call_with_retry, rate_limit_retry
from parley_core.providers.base import Connection, ConnectorGateway, GatewayError

logger = logging.getLogger(__name__)


GatewayFactory = Callable[[str], ConnectorGateway]

UNKNOWN_INTEGRATION = "unknown"

# Pages of remote chats scanned when resolving a new chat's name
CHAT_NAME_LOOKUP_MAX_PAGES = 5


class InboundMessageError(Exception):
    """Base exception for inbound message handling."""
    pass


class ImportDisabledError(InboundMessageError):
    """Raised when new chats from a platform must not be imported."""
    pass


@dataclass
class InboundMessage:
    """A message pushed by the broker."""

    customer_id: str
    external_message_id: str
    chat_id: str
    content: str
    owner_id: str
    owner_name: Optional[str] = None
    message_id: Optional[str] = None
    timestamp: Optional[str] = None
    platform_name: Optional[str] = None
    integration_id: Optional[str] = None


@dataclass
class ReceiveResult:
    """Outcome of receiving one inbound message."""

    duplicate: bool
    local_id: Optional[str] = None
    chat_id: Optional[str] = None
    external_message_id: Optional[str] = None
    chat_created: bool = False


class InboundMessageService:
    """Service for ingesting webhook-delivered messages."""

    def __init__(
        self,
        db: Session,
        gateway_factory: Optional[GatewayFactory] = None,
        settings: Optional[Settings] = None,
    ):
        """Initialize the receiver.

        Args:
            db: SQLAlchemy database session.
            gateway_factory: Builds a gateway for a customer id; used to look
                up the name of a chat seen for the first time.
            settings: Settings (rate-limit retry delay); defaults to app settings.
        """
        self.db = db
        self.gateway_factory = gateway_factory
        self.settings = settings or get_settings()
        self.retry_config = rate_limit_retry(
            self.settings.rate_limit_retry_delay_seconds
        )

    def is_import_enabled(self, customer_id: str, platform_id: str) -> bool:
        """Whether new chats from the platform may be imported; defaults to True."""
        platform = (
            self.db.query(UserPlatform)
            .filter(
                UserPlatform.customer_id == customer_id,
                UserPlatform.platform_id == platform_id,
            )
            .first()
        )
        return True if platform is None else bool(platform.import_new)

    async def resolve_chat_name(
        self,
        customer_id: str,
        connection: Connection,
        chat_id: str,
    ) -> str:
        """Find a chat's remote name; ``Chat <id>`` when it cannot be found."""
        fallback = f"Chat {chat_id}"
        if self.gateway_factory is None or connection.id == UNKNOWN_INTEGRATION:
            return fallback

        gateway = self.gateway_factory(customer_id)
        cursor = None
        try:
            for _ in range(CHAT_NAME_LOOKUP_MAX_PAGES):
                page = await call_with_retry(
                    gateway.list_conversations, connection, cursor, config=self.retry_config
                )
                for record in page.items:
                    chat = normalize_chat(record)
                    if chat is not None and chat.external_id == chat_id:
                        return chat.name
                if not page.has_more or not page.next_cursor:
                    break
                cursor = page.next_cursor
        except GatewayError as e:
            logger.warning(f"Chat name lookup failed for {chat_id}: {e}")
        return fallback

    def _is_duplicate(self, inbound: InboundMessage, connection_id: str, local_id: str) -> bool:
        """Whether the delivery matches a stored external id or local id."""
        return (
            self.db.query(Message.id)
            .filter(
                Message.customer_id == inbound.customer_id,
                or_(
                    Message.external_message_id == inbound.external_message_id,
                    (Message.connection_id == connection_id)
                    & (Message.local_id == local_id),
                ),
            )
            .first()
            is not None
        )

    async def receive(self, inbound: InboundMessage) -> ReceiveResult:
        """Store an inbound message.

        Raises:
            ImportDisabledError: If the chat is new and the platform's
                ``import_new`` preference is off. Nothing is written.
        """
        connection_id = inbound.integration_id or UNKNOWN_INTEGRATION
        platform_name = inbound.platform_name or "Unknown"
        local_id = inbound.message_id or generate_local_id()

        if self._is_duplicate(inbound, connection_id, local_id):
            logger.info(
                f"Message {inbound.external_message_id} already exists, skipping"
            )
            return ReceiveResult(
                duplicate=True,
                chat_id=inbound.chat_id,
                external_message_id=inbound.external_message_id,
            )

        timestamp = format_timestamp(inbound.timestamp) or iso_now()

        chat = (
            self.db.query(Chat)
            .filter(
                Chat.customer_id == inbound.customer_id,
                Chat.external_id == inbound.chat_id,
                Chat.connection_id == connection_id,
            )
            .first()
        )

        chat_created = False
        if chat is None:
            if not self.is_import_enabled(inbound.customer_id, connection_id):
                raise ImportDisabledError(
                    f"Import disabled for new chats on {connection_id}"
                )

            connection = Connection(id=connection_id, name=platform_name, platform=platform_name)
            chat = Chat(
                customer_id=inbound.customer_id,
                external_id=inbound.chat_id,
                connection_id=connection_id,
                platform_name=platform_name,
                name=await self.resolve_chat_name(
                    inbound.customer_id, connection, inbound.chat_id
                ),
                participants=[inbound.owner_id],
                import_new=True,
            )
            self.db.add(chat)
            chat_created = True
            logger.info(f"Created chat {inbound.chat_id} from inbound message")

        chat.last_message = inbound.content
        chat.last_message_time = timestamp

        message = Message(
            customer_id=inbound.customer_id,
            local_id=local_id,
            chat_external_id=inbound.chat_id,
            connection_id=connection_id,
            platform_name=platform_name,
            content=inbound.content,
            sender=inbound.owner_id,
            owner_name=inbound.owner_name,
            timestamp=timestamp,
            message_type=MessageType.THIRD_PARTY,
            status=MessageStatus.SENT,
            external_message_id=inbound.external_message_id,
        )
        self.db.add(message)
        self.db.flush()

        return ReceiveResult(
            duplicate=False,
            local_id=local_id,
            chat_id=inbound.chat_id,
            external_message_id=inbound.external_message_id,
            chat_created=chat_created,
        )
