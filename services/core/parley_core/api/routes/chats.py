"""Chat API routes.

Provides endpoints for:
- GET /chats - Stored chats, most recent first
- POST /chats/available - Remote chats of an integration not imported yet
"""

from typing import Annotated, Optional

from fastapi import APIRouter, HTTPException, Query, status

from parley_core.api.deps import CurrentCustomer, DBSession, Gateway
from parley_core.api.schemas.chat import (
    AvailableChatListResponse,
    AvailableChatResponse,
    AvailableChatsRequest,
    ChatListResponse,
    ChatResponse,
)
from parley_core.domain.services.chats import (
    DEFAULT_CHAT_LIMIT,
    ChatService,
    ConnectionNotFoundError,
)
from parley_core.providers.base import GatewayAuthError, GatewayError

router = APIRouter(prefix="/chats", tags=["chats"])


@router.get("", response_model=ChatListResponse)
async def list_chats(
    customer: CurrentCustomer,
    db: DBSession,
    integration_id: Annotated[Optional[str], Query(alias="integrationId")] = None,
    limit: Annotated[int, Query(ge=1, le=DEFAULT_CHAT_LIMIT)] = DEFAULT_CHAT_LIMIT,
):
    """Stored chats ordered by last message time."""
    chats = ChatService(db).list_chats(
        customer.id, connection_id=integration_id, limit=limit
    )
    return ChatListResponse(
        chats=[
            ChatResponse(
                id=chat.external_id,
                name=chat.name,
                participants=chat.participants or [],
                last_message=chat.last_message,
                last_message_time=chat.last_message_time,
                integration_id=chat.connection_id,
                platform_name=chat.platform_name,
            )
            for chat in chats
        ]
    )


@router.post("/available", response_model=AvailableChatListResponse)
async def list_available_chats(
    request: AvailableChatsRequest,
    customer: CurrentCustomer,
    db: DBSession,
    gateway: Gateway,
):
    """Remote chats of ``integrationKey`` that are not imported yet."""
    service = ChatService(db, gateway=gateway)

    try:
        chats = await service.list_available(customer.id, request.integration_key)
    except ConnectionNotFoundError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(e),
        )
    except GatewayAuthError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e),
        )
    except GatewayError as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to fetch available chats: {e}",
        )

    return AvailableChatListResponse(
        chats=[AvailableChatResponse(**chat.to_dict()) for chat in chats]
    )
