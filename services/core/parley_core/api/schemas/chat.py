"""Chat API schemas."""

from typing import Any, Optional

from pydantic import Field

from parley_core.api.schemas.base import CamelModel


class ChatResponse(CamelModel):
    """Response schema for a stored chat."""

    id: str
    name: str
    participants: list[Any] = Field(default_factory=list)
    last_message: Optional[str] = None
    last_message_time: Optional[str] = None
    integration_id: str
    platform_name: Optional[str] = None


class ChatListResponse(CamelModel):
    chats: list[ChatResponse]


class AvailableChatsRequest(CamelModel):
    """Request schema for listing importable chats of an integration."""

    integration_key: str = Field(..., min_length=1)


class AvailableChatResponse(CamelModel):
    """A remote chat that is not imported yet."""

    id: str
    name: str
    participants: list[Any] = Field(default_factory=list)
    last_message: Optional[str] = None
    last_message_time: Optional[str] = None


class AvailableChatListResponse(CamelModel):
    chats: list[AvailableChatResponse]
