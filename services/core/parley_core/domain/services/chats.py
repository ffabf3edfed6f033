"""Chat and message queries.

Read side of the local store, plus the list of remote chats that could
still be imported for one integration.
"""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from parley_core.config import Settings, get_settings
from parley_core.domain.models import Chat, Message
from parley_core.domain.services.normalization import NormalizedChat, normalize_chat
from parley_core.infrastructure.retry import call_with_retry, rate_limit_retry
from parley_core.providers.base import Connection, ConnectorGateway

logger = logging.getLogger(__name__)


DEFAULT_CHAT_LIMIT = 100
DEFAULT_MESSAGE_LIMIT = 1000

# Pages of remote chats scanned for the available-chats list
AVAILABLE_CHATS_MAX_PAGES = 10


class ChatServiceError(Exception):
    """Base exception for chat queries."""
    pass


class ConnectionNotFoundError(ChatServiceError):
    """Raised when no connection matches an integration key."""
    pass


class ChatService:
    """Service for reading chats and messages."""

    def __init__(
        self,
        db: Session,
        gateway: Optional[ConnectorGateway] = None,
        settings: Optional[Settings] = None,
    ):
        self.db = db
        self.gateway = gateway
        self.settings = settings or get_settings()
        self.retry_config = rate_limit_retry(
            self.settings.rate_limit_retry_delay_seconds
        )

    def list_chats(
        self,
        customer_id: str,
        connection_id: Optional[str] = None,
        limit: int = DEFAULT_CHAT_LIMIT,
    ) -> list[Chat]:
        """Chats ordered by most recent activity."""
        query = self.db.query(Chat).filter(Chat.customer_id == customer_id)
        if connection_id:
            query = query.filter(Chat.connection_id == connection_id)
        return (
            query.order_by(Chat.last_message_time.desc(), Chat.id.desc())
            .limit(limit)
            .all()
        )

    def list_messages(
        self,
        customer_id: str,
        chat_id: Optional[str] = None,
        limit: int = DEFAULT_MESSAGE_LIMIT,
    ) -> list[Message]:
        """Messages in chronological order."""
        query = self.db.query(Message).filter(Message.customer_id == customer_id)
        if chat_id:
            query = query.filter(Message.chat_external_id == chat_id)
        return (
            query.order_by(Message.timestamp.asc(), Message.id.asc())
            .limit(limit)
            .all()
        )

    async def resolve_connection(self, integration_key: str) -> Connection:
        """Find the customer's connection for an integration key.

        The key names the platform (``slack``); a connection id is accepted
        as well.

        Raises:
            ConnectionNotFoundError: If no connection matches.
            GatewayError: If connections cannot be listed.
        """
        connections = await call_with_retry(
            self.gateway.list_connections, config=self.retry_config
        )
        key = integration_key.lower()
        for connection in connections:
            if connection.platform.lower() == key:
                return connection
        for connection in connections:
            if connection.id == integration_key:
                return connection
        raise ConnectionNotFoundError(
            f"No connection found for integration {integration_key}"
        )

    async def supports_export(self, integration_key: str) -> bool:
        """Whether the integration can export its chats in bulk.

        Raises:
            GatewayError: If the broker call fails.
        """
        if self.gateway is None:
            raise ValueError("No connector gateway configured")

        return await call_with_retry(
            self.gateway.supports_chat_export, integration_key, config=self.retry_config
        )

    async def list_available(
        self,
        customer_id: str,
        integration_key: str,
    ) -> list[NormalizedChat]:
        """Remote chats of an integration that are not imported yet.

        Raises:
            ConnectionNotFoundError: If the customer has no such connection.
            GatewayError: If the broker call fails.
        """
        if self.gateway is None:
            raise ValueError("No connector gateway configured")

        connection = await self.resolve_connection(integration_key)
        imported = {
            external_id
            for (external_id,) in self.db.query(Chat.external_id).filter(
                Chat.customer_id == customer_id,
                Chat.connection_id == connection.id,
            )
        }

        available: list[NormalizedChat] = []
        cursor = None
        for _ in range(AVAILABLE_CHATS_MAX_PAGES):
            page = await call_with_retry(
                self.gateway.list_conversations, connection, cursor, config=self.retry_config
            )
            for record in page.items:
                chat = normalize_chat(record)
                if chat is not None and chat.external_id not in imported:
                    available.append(chat)
            if not page.has_more or not page.next_cursor:
                break
            cursor = page.next_cursor

        logger.info(
            f"{len(available)} chats available on {connection.id} "
            f"({len(imported)} already imported)"
        )
        return available
