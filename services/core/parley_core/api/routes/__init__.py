"""API routes."""

from parley_core.api.routes import (
    chats,
    integrations,
    messages,
    sync_status,
    user_platform,
)

__all__ = ["chats", "integrations", "messages", "sync_status", "user_platform"]
