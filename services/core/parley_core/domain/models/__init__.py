"""Domain models for Parley.

This module defines the SQLAlchemy ORM models. Every table is partitioned
by ``customer_id``; the caller identity arrives in request headers and is
never stored in a table of its own.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


def utcnow() -> datetime:
    """Naive UTC now, as stored in DATETIME columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# =============================================================================
# ENUMS
# =============================================================================


class MessageStatus(str):
    """Outbound delivery status values."""

    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class MessageType(str):
    """Who authored a message, relative to the customer."""

    USER = "user"
    THIRD_PARTY = "third-party"


class SyncState(str):
    """Sync run status values."""

    IDLE = "idle"
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    ACTIVE = (PENDING, RUNNING)
    TERMINAL = (COMPLETED, FAILED)


# =============================================================================
# MODELS
# =============================================================================


class Chat(Base):
    """Local projection of a remote chat/channel."""

    __tablename__ = "chats"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    customer_id: Mapped[str] = mapped_column(String(128), nullable=False)
    external_id: Mapped[str] = mapped_column(String(255), nullable=False)
    connection_id: Mapped[str] = mapped_column(String(128), nullable=False)
    platform_name: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    participants: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    last_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    last_message_time: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    import_new: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        UniqueConstraint(
            "customer_id", "external_id", "connection_id", name="uq_chat_external"
        ),
        Index("idx_chat_customer", "customer_id"),
    )


class Message(Base):
    """Imported or outbound message."""

    __tablename__ = "messages"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    customer_id: Mapped[str] = mapped_column(String(128), nullable=False)
    local_id: Mapped[str] = mapped_column(String(128), nullable=False)
    chat_external_id: Mapped[str] = mapped_column(String(255), nullable=False)
    connection_id: Mapped[str] = mapped_column(String(128), nullable=False)
    platform_name: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    content: Mapped[str] = mapped_column(Text, nullable=False)
    sender: Mapped[str] = mapped_column(String(255), nullable=False)
    owner_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    timestamp: Mapped[str] = mapped_column(String(32), nullable=False)

    message_type: Mapped[str] = mapped_column(
        String(16), nullable=False, default=MessageType.THIRD_PARTY
    )
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=MessageStatus.SENT
    )
    external_message_id: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True
    )
    flow_run_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        UniqueConstraint(
            "customer_id", "connection_id", "local_id", name="uq_msg_local"
        ),
        UniqueConstraint(
            "customer_id",
            "connection_id",
            "external_message_id",
            name="uq_msg_external",
        ),
        Index("idx_msg_chat", "customer_id", "chat_external_id"),
        Index("idx_msg_flow_run", "flow_run_id"),
        Index("idx_msg_status", "customer_id", "status"),
    )


class SyncStatus(Base):
    """One sync run for a customer.

    ``active_customer_id`` mirrors ``customer_id`` while the run is pending
    or running and is NULL otherwise, so its unique constraint allows at most
    one active run per customer.
    """

    __tablename__ = "sync_statuses"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    sync_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    customer_id: Mapped[str] = mapped_column(String(128), nullable=False)
    active_customer_id: Mapped[Optional[str]] = mapped_column(
        String(128), nullable=True, unique=True
    )

    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=SyncState.PENDING
    )
    is_syncing: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    start_time: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    last_sync_time: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    total_messages: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_chats: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        Index("idx_sync_customer_created", "customer_id", "created_at"),
    )


class UserPlatform(Base):
    """The customer's own identity on one connected platform."""

    __tablename__ = "user_platforms"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    customer_id: Mapped[str] = mapped_column(String(128), nullable=False)
    platform_id: Mapped[str] = mapped_column(String(128), nullable=False)
    platform_name: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    connection_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    external_user_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    external_user_name: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True
    )
    external_user_email: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True
    )
    import_new: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    last_synced: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        UniqueConstraint("customer_id", "platform_id", name="uq_user_platform"),
    )


__all__ = [
    "Base",
    "Chat",
    "Message",
    "MessageStatus",
    "MessageType",
    "SyncState",
    "SyncStatus",
    "UserPlatform",
    "utcnow",
]
