"""Message sync orchestrator.

Pulls every connection's chats and messages through the connector gateway
and imports them into local storage:

1. The sync run moves to ``running``
2. Connections are processed one at a time, with a pause between them and
   before every broker call
3. Chats are upserted by (customer, external id, connection)
4. Messages are deduplicated per (customer, connection) by external or
   local id and inserted with mentions rewritten to display names
5. The run ends ``completed`` with totals, or ``failed`` with the error

A rate-limited broker call is retried once. Failures of a single chat,
message page or message are logged, collected in ``SyncResult.errors`` and
skipped; work for earlier chats is committed and kept.

Usage:
    service = MessageSyncService(db=session, gateway=gateway)
    result = await service.run(customer_id="cust-1", sync_id="sync-...")
    print(result.total_chats, result.total_messages)
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from parley_core.config import Settings, get_settings
from parley_core.domain.models import (
    Chat,
    Message,
    MessageStatus,
    MessageType,
    SyncStatus,
    UserPlatform,
)
from parley_core.domain.services.mentions import MentionResolver
from parley_core.domain.services.normalization import (
    NormalizedChat,
    iso_now,
    normalize_chat,
    normalize_message,
)
from parley_core.domain.services.sync_status import (
    SyncStatusError,
    SyncStatusService,
)
from parley_core.infrastructure.retry import call_with_retry, rate_limit_retry
from parley_core.observability.logging import RequestContext, get_logger
from parley_core.providers.base import (
    Connection,
    ConnectorGateway,
    GatewayError,
    PaginatedResult,
)

logger = get_logger(__name__)


# =============================================================================
# EXCEPTIONS
# =============================================================================


class MessageSyncError(Exception):
    """Base exception for sync runs."""
    pass


class NoConnectionsError(MessageSyncError):
    """Raised when the customer has no connections to sync."""
    pass


# =============================================================================
# DATA CLASSES
# =============================================================================


@dataclass
class ConnectionSyncResult:
    """Counters for one connection."""

    connection_id: str
    platform: str
    chats: int = 0
    new_messages: int = 0
    failed: bool = False


@dataclass
class SyncResult:
    """Result of a sync run."""

    sync_id: str
    total_chats: int = 0
    total_messages: int = 0
    connections: list[ConnectionSyncResult] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


# =============================================================================
# SERVICE
# =============================================================================


class MessageSyncService:
    """Runs one sync for one customer."""

    def __init__(
        self,
        db: Session,
        gateway: ConnectorGateway,
        settings: Optional[Settings] = None,
        tracker: Optional[SyncStatusService] = None,
    ):
        """Initialize the orchestrator.

        Args:
            db: SQLAlchemy database session.
            gateway: Connector gateway bound to the customer.
            settings: Settings (pacing, page limits); defaults to app settings.
            tracker: Sync status tracker; built from ``db`` when omitted.
        """
        self.db = db
        self.gateway = gateway
        self.settings = settings or get_settings()
        self.tracker = tracker or SyncStatusService(
            db, stale_after_seconds=self.settings.sync_stale_after_seconds
        )
        self.retry_config = rate_limit_retry(
            self.settings.rate_limit_retry_delay_seconds
        )
        self.mentions = MentionResolver(
            gateway,
            lookup_delay=self.settings.mention_lookup_delay_seconds,
            retry_config=self.retry_config,
        )

    # -------------------------------------------------------------------------
    # Entry point
    # -------------------------------------------------------------------------

    async def run(self, customer_id: str, sync_id: str) -> SyncResult:
        """Run the sync.

        Raises:
            SyncNotFoundError: If the sync id is unknown for the customer.
            InvalidSyncTransitionError: If the sync already finished.
            NoConnectionsError: If the customer has no connections.
            GatewayError: If connections cannot be listed.
        """
        context = RequestContext(customer_id=customer_id, sync_id=sync_id)
        sync = self.tracker.mark_running(customer_id, sync_id)
        self.db.commit()
        logger.info("Sync running", context=context)

        try:
            connections = await self._call(self.gateway.list_connections)
        except GatewayError as e:
            self._finish_failed(customer_id, sync_id, f"Failed to list connections: {e}")
            raise

        if not connections:
            self._finish_failed(customer_id, sync_id, "No connections found")
            raise NoConnectionsError("No connections found")

        result = SyncResult(sync_id=sync_id)
        try:
            for index, connection in enumerate(connections):
                if index:
                    await self._pause(self.settings.sync_connection_delay_seconds)
                await self._sync_connection(connection, customer_id, sync, result, context)
        except Exception as e:
            self.db.rollback()
            logger.error("Sync aborted", context=context, exc_info=True, error=str(e))
            self._finish_failed(customer_id, sync_id, str(e))
            raise

        try:
            self.tracker.mark_completed(
                customer_id,
                sync_id,
                total_messages=result.total_messages,
                total_chats=result.total_chats,
            )
        except SyncStatusError as e:
            # Reconciled as stale while running; the imported data stays.
            logger.warning("Could not complete sync", context=context, error=str(e))
        self.db.commit()

        logger.info(
            "Sync completed",
            context=context,
            total_chats=result.total_chats,
            total_messages=result.total_messages,
            errors=len(result.errors),
        )
        return result

    def _finish_failed(self, customer_id: str, sync_id: str, error: str) -> None:
        """Mark the sync failed; a sync reconciled meanwhile is only logged."""
        try:
            self.tracker.mark_failed(customer_id, sync_id, error)
            self.db.commit()
        except SyncStatusError as e:
            self.db.rollback()
            logger.warning(
                "Could not mark sync failed",
                context=RequestContext(customer_id=customer_id, sync_id=sync_id),
                error=str(e),
            )

    # -------------------------------------------------------------------------
    # Broker access
    # -------------------------------------------------------------------------

    async def _pause(self, seconds: float) -> None:
        """Sleep for a pacing delay; zero disables pacing."""
        if seconds > 0:
            await asyncio.sleep(seconds)

    async def _call(self, func: Callable[..., Awaitable[Any]], *args: Any) -> Any:
        """Paced broker call with one retry on rate limiting."""
        await self._pause(self.settings.sync_request_delay_seconds)
        return await call_with_retry(func, *args, config=self.retry_config)

    async def _iter_records(
        self,
        fetch: Callable[[Optional[str]], Awaitable[PaginatedResult[dict]]],
        description: str,
    ) -> AsyncIterator[dict]:
        """Yield records from every page until the cursor is exhausted."""
        cursor: Optional[str] = None
        for _ in range(self.settings.sync_max_pages):
            page = await self._call(fetch, cursor)
            for record in page.items:
                yield record
            if not page.has_more or not page.next_cursor or page.next_cursor == cursor:
                return
            cursor = page.next_cursor

        logger.warning(
            f"Stopped paginating {description} after {self.settings.sync_max_pages} pages"
        )

    # -------------------------------------------------------------------------
    # Connections and chats
    # -------------------------------------------------------------------------

    def _own_user_id(self, customer_id: str, connection_id: str) -> Optional[str]:
        """The customer's external user id on a connection, if fetched."""
        platform = (
            self.db.query(UserPlatform)
            .filter(
                UserPlatform.customer_id == customer_id,
                UserPlatform.platform_id == connection_id,
            )
            .first()
        )
        return platform.external_user_id if platform else None

    async def _sync_connection(
        self,
        connection: Connection,
        customer_id: str,
        sync: SyncStatus,
        result: SyncResult,
        context: RequestContext,
    ) -> None:
        """Import every chat of one connection.

        Each chat is committed on its own; a failing chat is rolled back and
        recorded in ``result.errors``. A gateway error while listing chats
        ends the connection but not the run.
        """
        connection_result = ConnectionSyncResult(
            connection_id=connection.id, platform=connection.platform
        )
        result.connections.append(connection_result)
        own_user_id = self._own_user_id(customer_id, connection.id)

        logger.info(
            "Syncing connection",
            context=context,
            connection_id=connection.id,
            platform=connection.platform,
        )

        async def fetch_chats(cursor: Optional[str]) -> PaginatedResult[dict]:
            return await self.gateway.list_conversations(connection, cursor)

        try:
            async for record in self._iter_records(fetch_chats, f"chats of {connection.id}"):
                normalized = normalize_chat(record)
                if normalized is None:
                    result.errors.append(f"Skipped chat without id on {connection.id}")
                    continue

                try:
                    chat = self._upsert_chat(customer_id, connection, normalized)
                    new_messages = await self._sync_chat_messages(
                        chat, connection, customer_id, own_user_id, result
                    )
                    self.db.commit()
                except Exception as e:
                    self.db.rollback()
                    error = f"Failed to sync chat {normalized.external_id}: {e}"
                    logger.error(error, context=context, connection_id=connection.id)
                    result.errors.append(error)
                    continue

                connection_result.chats += 1
                connection_result.new_messages += new_messages
                result.total_chats += 1
                result.total_messages += new_messages
                self.tracker.record_progress(
                    sync,
                    total_chats=result.total_chats,
                    total_messages=result.total_messages,
                )
                self.db.commit()

        except GatewayError as e:
            connection_result.failed = True
            error = f"Failed to sync connection {connection.id}: {e}"
            logger.error(error, context=context, connection_id=connection.id)
            result.errors.append(error)

    def _upsert_chat(
        self,
        customer_id: str,
        connection: Connection,
        normalized: NormalizedChat,
    ) -> Chat:
        """Insert or update the chat by (customer, external id, connection)."""
        chat = (
            self.db.query(Chat)
            .filter(
                Chat.customer_id == customer_id,
                Chat.external_id == normalized.external_id,
                Chat.connection_id == connection.id,
            )
            .first()
        )
        if chat is None:
            chat = Chat(
                customer_id=customer_id,
                external_id=normalized.external_id,
                connection_id=connection.id,
                platform_name=connection.platform,
                import_new=False,
            )
            self.db.add(chat)

        chat.name = normalized.name
        chat.participants = normalized.participants
        if normalized.last_message:
            chat.last_message = normalized.last_message
        if normalized.last_message_time:
            chat.last_message_time = normalized.last_message_time
        self.db.flush()
        return chat

    # -------------------------------------------------------------------------
    # Messages
    # -------------------------------------------------------------------------

    def _message_exists(self, customer_id: str, connection_id: str, external_id: str) -> bool:
        """Whether the message is already stored for the connection.

        Imported messages use the upstream id as both external and local id,
        while webhook deliveries keep the upstream id as local id only, so
        either column identifies a stored message.
        """
        return (
            self.db.query(Message.id)
            .filter(
                Message.customer_id == customer_id,
                Message.connection_id == connection_id,
                or_(
                    Message.external_message_id == external_id,
                    Message.local_id == external_id,
                ),
            )
            .first()
            is not None
        )

    async def _sync_chat_messages(
        self,
        chat: Chat,
        connection: Connection,
        customer_id: str,
        own_user_id: Optional[str],
        result: SyncResult,
    ) -> int:
        """Import new messages of one chat; returns how many were inserted."""
        seen: set[str] = set()
        newest: Optional[Message] = None
        inserted = 0

        async def fetch_messages(cursor: Optional[str]) -> PaginatedResult[dict]:
            return await self.gateway.list_messages(connection, chat.external_id, cursor)

        try:
            async for record in self._iter_records(
                fetch_messages, f"messages of chat {chat.external_id}"
            ):
                try:
                    normalized = normalize_message(record, connection.id, chat.external_id)
                    if normalized.external_id in seen or self._message_exists(
                        customer_id, connection.id, normalized.external_id
                    ):
                        continue
                    seen.add(normalized.external_id)

                    content = await self.mentions.replace(normalized.content, connection)
                    message = Message(
                        customer_id=customer_id,
                        local_id=normalized.external_id,
                        chat_external_id=chat.external_id,
                        connection_id=connection.id,
                        platform_name=connection.platform,
                        content=content,
                        sender=normalized.sender,
                        timestamp=normalized.timestamp or iso_now(),
                        message_type=(
                            MessageType.USER
                            if own_user_id and normalized.sender == own_user_id
                            else MessageType.THIRD_PARTY
                        ),
                        status=MessageStatus.SENT,
                        external_message_id=normalized.external_id,
                    )
                    self.db.add(message)
                    inserted += 1
                    if newest is None or message.timestamp > newest.timestamp:
                        newest = message
                except Exception as e:
                    result.errors.append(f"Failed to process message in chat {chat.external_id}: {e}")

        except GatewayError as e:
            # Keep what was fetched before the failing page
            result.errors.append(f"Failed to fetch messages for chat {chat.external_id}: {e}")

        if newest is not None and (
            not chat.last_message_time or newest.timestamp > chat.last_message_time
        ):
            chat.last_message = newest.content
            chat.last_message_time = newest.timestamp

        return inserted
