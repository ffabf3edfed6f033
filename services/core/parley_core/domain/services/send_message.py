"""Send message service.

This service handles:
1. Validation of outgoing content (non-empty, bounded length)
2. Submission through the connector gateway
3. The delivery lifecycle: pending -> sent | failed
4. Retry in place (the same local id and row are reused)
5. Delivery callbacks that complete asynchronous sends

Usage:
    service = SendMessageService(db=session, gateway=gateway)

    result = await service.send(
        customer_id="cust-1",
        chat_id="C1",
        connection_id="conn-1",
        content="Hello!",
    )
    print(result.local_id, result.status)

    # Later, from the broker webhook
    service.handle_delivery_callback(
        operation_handle="run-42",
        status="completed",
        external_message_id="ext-1",
    )
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy.orm import Session

from parley_core.config import Settings, get_settings
from parley_core.domain.models import Chat, Message, MessageStatus, MessageType
from parley_core.domain.services.normalization import iso_now
from parley_core.infrastructure.retry import call_with_retry, rate_limit_retry
from parley_core.providers.base import (
    Connection,
    ConnectorGateway,
    GatewayError,
    SubmitResult,
)

logger = logging.getLogger(__name__)


# =============================================================================
# EXCEPTIONS
# =============================================================================


class SendMessageError(Exception):
    """Base exception for send message operations."""
    pass


class MessageValidationError(SendMessageError):
    """Raised when message content is empty or too long."""
    pass


class MessageNotFoundError(SendMessageError):
    """Raised when message does not exist."""
    pass


class MessageNotRetryableError(SendMessageError):
    """Raised when retrying a message that was already sent."""
    pass


class CallbackValidationError(SendMessageError):
    """Raised when a delivery callback is malformed."""
    pass


# =============================================================================
# DATA CLASSES
# =============================================================================


@dataclass
class SendResult:
    """Result of a send or retry."""

    local_id: str
    status: str
    external_message_id: Optional[str] = None
    operation_handle: Optional[str] = None
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status != MessageStatus.FAILED


@dataclass
class CallbackResult:
    """Result of applying a delivery callback."""

    local_id: str
    status: str
    applied: bool


# =============================================================================
# CONSTANTS
# =============================================================================


SEND_ACTION_TYPE = "created"

CALLBACK_SUCCESS_STATUSES = frozenset({"completed", "success", "sent"})
CALLBACK_FAILURE_STATUSES = frozenset({"failed", "error"})

DEFAULT_SUBMIT_ERROR = "Action execution failed"
DEFAULT_DELIVERY_ERROR = "Delivery failed"


def generate_local_id() -> str:
    """``msg-<uuid4 hex>``."""
    return f"msg-{uuid.uuid4().hex}"


# =============================================================================
# SERVICE
# =============================================================================


class SendMessageService:
    """Service for sending messages through the connector gateway.

    Every attempt moves the message from ``pending`` to exactly one of
    ``sent`` or ``failed``. The transition happens either right away, when
    the broker answers with a terminal status, or later through
    :meth:`handle_delivery_callback`, matched by the operation handle.
    """

    def __init__(
        self,
        db: Session,
        gateway: Optional[ConnectorGateway] = None,
        settings: Optional[Settings] = None,
    ):
        """Initialize the send message service.

        Args:
            db: SQLAlchemy database session.
            gateway: Connector gateway; only needed for send and retry.
            settings: Settings (max content length); defaults to app settings.
        """
        self.db = db
        self.gateway = gateway
        self.settings = settings or get_settings()
        self.retry_config = rate_limit_retry(
            self.settings.rate_limit_retry_delay_seconds
        )

    # -------------------------------------------------------------------------
    # Validation
    # -------------------------------------------------------------------------

    def validate_content(self, content: Optional[str]) -> str:
        """Validate outgoing content.

        Raises:
            MessageValidationError: If content is empty or too long.
        """
        if not content or not content.strip():
            raise MessageValidationError("Message content cannot be empty")

        max_length = self.settings.message_max_length
        if len(content) > max_length:
            raise MessageValidationError(
                f"Message content exceeds {max_length} characters"
            )
        return content

    # -------------------------------------------------------------------------
    # Send and retry
    # -------------------------------------------------------------------------

    def _build_payload(
        self,
        message: Message,
        customer_id: str,
        recipient: Optional[str],
        chat_name: Optional[str],
        chat_type: str,
    ) -> dict[str, Any]:
        """Build the ``create-messages`` action input for a message."""
        now = iso_now()
        return {
            "type": SEND_ACTION_TYPE,
            "data": {
                "content": message.content,
                "sender": customer_id,
                "recipient": recipient or message.chat_external_id,
                "chatId": message.chat_external_id,
                "chatName": chat_name or "Chat",
                "chatType": chat_type,
                "platformId": message.connection_id,
                "platformName": message.platform_name or "Unknown",
                "messageType": MessageType.USER,
                "status": MessageStatus.PENDING,
                "sentTime": now,
                "createdTime": now,
                "createdBy": customer_id,
                "updatedTime": now,
                "updatedBy": customer_id,
            },
            "customerId": customer_id,
            "internalMessageId": message.local_id,
            "externalMessageId": "",
        }

    def _apply_submit_result(self, message: Message, result: SubmitResult) -> None:
        """Move the message according to the broker's submit answer.

        A non-terminal answer keeps the message ``pending`` until the
        delivery callback names the outcome.
        """
        message.flow_run_id = result.operation_handle
        if not result.is_final:
            message.status = MessageStatus.PENDING
            message.error = None
            if not result.operation_handle:
                logger.warning(
                    f"Message {message.local_id} accepted with status "
                    f"'{result.status}' but no operation handle"
                )
            return

        if result.succeeded:
            message.status = MessageStatus.SENT
            message.external_message_id = result.external_message_id
            message.error = None
            self._refresh_chat(message)
        else:
            message.status = MessageStatus.FAILED
            message.error = result.error or DEFAULT_SUBMIT_ERROR

    async def _submit(
        self,
        message: Message,
        customer_id: str,
        recipient: Optional[str],
        chat_name: Optional[str],
        chat_type: str,
    ) -> SendResult:
        """Submit a pending message and persist the outcome.

        A rate-limited submit is retried once. The row is committed before a
        gateway error propagates, so a failed attempt stays visible for a
        later retry.
        """
        if self.gateway is None:
            raise SendMessageError("No connector gateway configured")

        connection = Connection(
            id=message.connection_id,
            name=message.platform_name or "",
            platform=message.platform_name or "",
        )
        payload = self._build_payload(message, customer_id, recipient, chat_name, chat_type)

        try:
            result = await call_with_retry(
                self.gateway.submit_outgoing_message,
                connection,
                payload,
                config=self.retry_config,
            )
        except GatewayError as e:
            message.status = MessageStatus.FAILED
            message.error = str(e) or DEFAULT_SUBMIT_ERROR
            self.db.commit()
            logger.error(f"Failed to submit message {message.local_id}: {e}")
            raise

        self._apply_submit_result(message, result)
        self.db.commit()
        logger.info(f"Message {message.local_id} submitted, status {message.status}")

        return SendResult(
            local_id=message.local_id,
            status=message.status,
            external_message_id=message.external_message_id,
            operation_handle=message.flow_run_id,
            error=message.error,
        )

    async def send(
        self,
        customer_id: str,
        chat_id: str,
        connection_id: str,
        content: str,
        recipient: Optional[str] = None,
        chat_name: Optional[str] = None,
        chat_type: str = "direct",
        platform_name: Optional[str] = None,
    ) -> SendResult:
        """Validate, persist and submit a new outgoing message.

        Raises:
            MessageValidationError: Before any network call, for bad content.
            GatewayError: If the broker call fails (the row is kept as failed).
        """
        content = self.validate_content(content)

        message = Message(
            customer_id=customer_id,
            local_id=generate_local_id(),
            chat_external_id=chat_id,
            connection_id=connection_id,
            platform_name=platform_name,
            content=content,
            sender=customer_id,
            timestamp=iso_now(),
            message_type=MessageType.USER,
            status=MessageStatus.PENDING,
        )
        self.db.add(message)
        self.db.flush()

        return await self._submit(message, customer_id, recipient, chat_name, chat_type)

    def get_message(self, customer_id: str, local_id: str) -> Message:
        """Load a customer's message by local id.

        Raises:
            MessageNotFoundError: If the customer has no such message.
        """
        message = (
            self.db.query(Message)
            .filter(Message.customer_id == customer_id, Message.local_id == local_id)
            .first()
        )
        if message is None:
            raise MessageNotFoundError(f"Message {local_id} not found")
        return message

    async def retry(
        self,
        customer_id: str,
        local_id: str,
        content: Optional[str] = None,
        recipient: Optional[str] = None,
        chat_name: Optional[str] = None,
        chat_type: str = "direct",
    ) -> SendResult:
        """Resubmit a pending or failed message, reusing its row and id.

        Raises:
            MessageNotFoundError: If the customer has no such message.
            MessageNotRetryableError: If the message was already sent.
            MessageValidationError: If replacement content is invalid.
        """
        message = self.get_message(customer_id, local_id)
        if message.status == MessageStatus.SENT:
            raise MessageNotRetryableError(f"Message {local_id} was already sent")

        if content is not None:
            message.content = self.validate_content(content)

        message.status = MessageStatus.PENDING
        message.error = None
        message.flow_run_id = None
        message.timestamp = iso_now()
        self.db.flush()

        if chat_name is None:
            chat = self._find_chat(message)
            chat_name = chat.name if chat else None

        logger.info(f"Retrying message {local_id}")
        return await self._submit(message, customer_id, recipient, chat_name, chat_type)

    def list_pending(self, customer_id: str, chat_id: Optional[str] = None) -> list[Message]:
        """Outbound messages still pending or failed, oldest first."""
        query = self.db.query(Message).filter(
            Message.customer_id == customer_id,
            Message.message_type == MessageType.USER,
            Message.status.in_((MessageStatus.PENDING, MessageStatus.FAILED)),
        )
        if chat_id:
            query = query.filter(Message.chat_external_id == chat_id)
        return query.order_by(Message.created_at.asc(), Message.id.asc()).all()

    # -------------------------------------------------------------------------
    # Delivery callback
    # -------------------------------------------------------------------------

    def handle_delivery_callback(
        self,
        operation_handle: Optional[str],
        status: Optional[str],
        external_message_id: Optional[str] = None,
        error: Optional[str] = None,
        internal_message_id: Optional[str] = None,
    ) -> CallbackResult:
        """Complete an asynchronous send.

        Only a ``pending`` message moves; callbacks for messages that already
        reached ``sent`` or ``failed`` are accepted with ``applied=False``.

        Raises:
            CallbackValidationError: If the handle or status is missing/unknown.
            MessageNotFoundError: If no message carries the handle.
        """
        if not operation_handle:
            raise CallbackValidationError("Operation handle (flowRunId) is required")

        normalized_status = (status or "").strip().lower()
        if normalized_status in CALLBACK_SUCCESS_STATUSES:
            target = MessageStatus.SENT
        elif normalized_status in CALLBACK_FAILURE_STATUSES:
            target = MessageStatus.FAILED
        else:
            raise CallbackValidationError(f"Unknown delivery status '{status}'")

        query = self.db.query(Message).filter(Message.flow_run_id == operation_handle)
        if internal_message_id:
            query = query.filter(Message.local_id == internal_message_id)
        message = query.first()
        if message is None:
            raise MessageNotFoundError(
                f"No message found for operation handle {operation_handle}"
            )

        if message.status != MessageStatus.PENDING:
            logger.info(
                f"Ignoring callback for message {message.local_id} "
                f"already in status {message.status}"
            )
            return CallbackResult(
                local_id=message.local_id, status=message.status, applied=False
            )

        message.status = target
        if target == MessageStatus.SENT:
            if external_message_id:
                message.external_message_id = external_message_id
            message.error = None
            self._refresh_chat(message)
        else:
            message.error = error or DEFAULT_DELIVERY_ERROR
        self.db.flush()

        logger.info(f"Delivery callback moved message {message.local_id} to {target}")
        return CallbackResult(local_id=message.local_id, status=target, applied=True)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _find_chat(self, message: Message) -> Optional[Chat]:
        """The stored chat a message belongs to, if imported."""
        return (
            self.db.query(Chat)
            .filter(
                Chat.customer_id == message.customer_id,
                Chat.external_id == message.chat_external_id,
                Chat.connection_id == message.connection_id,
            )
            .first()
        )

    def _refresh_chat(self, message: Message) -> None:
        """Make the message the chat's last message."""
        chat = self._find_chat(message)
        if chat is None:
            return
        chat.last_message = message.content
        chat.last_message_time = message.timestamp
