"""Connector gateway interface and DTOs.

This module defines the broker-agnostic interface that the sync, send and
inbound services talk to. Conversations and messages are passed through as
the raw broker records (``dict``); turning them into local rows is the job of
``parley_core.domain.services.normalization`` because upstream record shapes
differ per platform.

Usage:
    class InMemoryGateway(ConnectorGateway):
        async def list_connections(self) -> list[Connection]:
            return [Connection(id="conn-1", name="Slack", platform="slack")]
        ...
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Generic, Optional, TypeVar


# =============================================================================
# EXCEPTIONS
# =============================================================================


class GatewayError(Exception):
    """Base exception for connector gateway calls."""

    def __init__(self, message: str, status_code: int = 0):
        super().__init__(message)
        self.status_code = status_code


class RateLimitedError(GatewayError):
    """Raised when the broker answers 429."""

    pass


class GatewayAuthError(GatewayError):
    """Raised when the broker rejects (or we cannot issue) credentials."""

    pass


class UpstreamError(GatewayError):
    """Raised for any other broker or transport failure."""

    pass


# =============================================================================
# DATA TRANSFER OBJECTS
# =============================================================================


@dataclass
class Connection:
    """An authorized link to one external platform account."""

    id: str
    name: str
    platform: str


@dataclass
class SubmitResult:
    """Outcome of submitting an outgoing message.

    ``operation_handle`` is set when the broker accepted the message but
    will report the final status later through the delivery callback.
    """

    status: str
    external_message_id: Optional[str] = None
    operation_handle: Optional[str] = None
    error: Optional[str] = None
    raw_data: Optional[dict] = None

    SUCCESS_STATUSES = frozenset({"completed", "success", "sent"})
    FAILURE_STATUSES = frozenset({"failed", "error"})

    @property
    def is_final(self) -> bool:
        """Whether the submit already carries a terminal outcome."""
        return self.status in self.SUCCESS_STATUSES | self.FAILURE_STATUSES

    @property
    def succeeded(self) -> bool:
        return self.status in self.SUCCESS_STATUSES


# =============================================================================
# PAGINATION
# =============================================================================


T = TypeVar("T")


@dataclass
class PaginatedResult(Generic[T]):
    """Paginated result wrapper.

    Wraps a list of items with cursor-based pagination information.
    """

    items: list[T]
    next_cursor: Optional[str]
    has_more: bool
    total: Optional[int] = None


# =============================================================================
# GATEWAY INTERFACE
# =============================================================================


class ConnectorGateway(ABC):
    """Abstract base class for connector gateways.

    A gateway instance is bound to one customer; callers create a new one
    per request or per task run.

    Methods:
        list_connections: List the customer's authorized connections
        list_conversations: List one page of remote chats for a connection
        list_messages: List one page of messages in a remote chat
        submit_outgoing_message: Hand an outgoing message to the broker
        fetch_user: Fetch the customer's own identity on a platform
        fetch_user_mappings: Map platform user ids to display names
        supports_chat_export: Whether an integration can export chats
    """

    @abstractmethod
    async def list_connections(self) -> list[Connection]:
        """List connections.

        Raises:
            GatewayAuthError: If the customer cannot be authenticated.
        """
        ...

    @abstractmethod
    async def list_conversations(
        self,
        connection: Connection,
        cursor: Optional[str] = None,
    ) -> PaginatedResult[dict[str, Any]]:
        """List one page of remote conversations."""
        ...

    @abstractmethod
    async def list_messages(
        self,
        connection: Connection,
        conversation_id: str,
        cursor: Optional[str] = None,
    ) -> PaginatedResult[dict[str, Any]]:
        """List one page of messages in a remote conversation."""
        ...

    @abstractmethod
    async def submit_outgoing_message(
        self,
        connection: Connection,
        payload: dict[str, Any],
    ) -> SubmitResult:
        """Submit an outgoing message."""
        ...

    @abstractmethod
    async def fetch_user(self, connection: Connection) -> Optional[dict[str, Any]]:
        """Fetch the customer's identity record on the connection's platform."""
        ...

    @abstractmethod
    async def fetch_user_mappings(self, connection: Connection) -> dict[str, str]:
        """Return a mapping of platform user id to display name."""
        ...

    @abstractmethod
    async def supports_chat_export(self, integration_key: str) -> bool:
        """Whether the integration implements the chat export action."""
        ...


@dataclass
class GatewayCredentials:
    """Who a gateway acts for."""

    customer_id: str
    customer_name: Optional[str] = None
    fields: dict[str, Any] = field(default_factory=dict)
