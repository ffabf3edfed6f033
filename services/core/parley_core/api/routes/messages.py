"""Message API routes.

Provides endpoints for:
- POST /messages/sync - Run a sync for the customer
- POST /messages/sync/background - Queue a sync on the worker
- POST /messages/send - Send a message (or retry one when messageId is given)
- PUT /messages/send - Delivery callback from the broker
- POST /messages/{message_id}/retry - Retry a message in place
- GET /messages/pending - Pending and failed outbound messages
- POST /messages/receive - Inbound message webhook
- GET /messages - Stored messages, optionally for one chat
"""

import logging
from typing import Annotated, Optional

from celery import Celery
from fastapi import APIRouter, Body, Depends, HTTPException, Query, status

from parley_core.api.deps import (
    CurrentCustomer,
    DBSession,
    Gateway,
    GatewayFactoryDep,
    WebhookToken,
)
from parley_core.api.schemas.message import (
    ConnectionSyncResponse,
    DeliveryCallbackRequest,
    DeliveryCallbackResponse,
    MessageListResponse,
    MessageResponse,
    PendingMessageListResponse,
    PendingMessageResponse,
    ReceiveMessageRequest,
    ReceiveMessageResponse,
    RetryMessageRequest,
    SendMessageRequest,
    SendMessageResponse,
    SyncJobResponse,
    SyncMessagesRequest,
    SyncMessagesResponse,
)
from parley_core.config import get_settings
from parley_core.domain.models import Message
from parley_core.domain.services.chats import DEFAULT_MESSAGE_LIMIT, ChatService
from parley_core.domain.services.inbound import (
    ImportDisabledError,
    InboundMessage,
    InboundMessageService,
)
from parley_core.domain.services.message_sync import (
    MessageSyncService,
    NoConnectionsError,
)
from parley_core.domain.services.send_message import (
    CallbackValidationError,
    MessageNotFoundError,
    MessageNotRetryableError,
    MessageValidationError,
    SendMessageService,
    SendResult,
)
from parley_core.domain.services.sync_status import (
    InvalidSyncTransitionError,
    SyncNotFoundError,
    SyncStatusService,
)
from parley_core.providers.base import GatewayAuthError, GatewayError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/messages", tags=["messages"])


def get_celery_app() -> Celery:
    """Get a Celery app instance."""
    settings = get_settings()
    return Celery(broker=settings.celery_broker_url, backend=settings.celery_result_backend)


def gateway_http_error(e: GatewayError) -> HTTPException:
    """Map a gateway failure of a single operation to an HTTP error."""
    if isinstance(e, GatewayAuthError):
        return HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e),
        )
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=str(e) or "Failed to execute action",
    )


def message_to_response(message: Message) -> MessageResponse:
    return MessageResponse(
        id=message.local_id,
        content=message.content,
        sender=message.sender,
        owner_name=message.owner_name,
        timestamp=message.timestamp,
        chat_id=message.chat_external_id,
        integration_id=message.connection_id,
        platform_name=message.platform_name,
        message_type=message.message_type,
        status=message.status,
        external_message_id=message.external_message_id,
    )


def send_result_to_response(result: SendResult) -> SendMessageResponse:
    return SendMessageResponse(
        success=result.success,
        message_id=result.local_id,
        status=result.status,
        external_message_id=result.external_message_id,
        flow_run_id=result.operation_handle,
        error=result.error,
    )


# =============================================================================
# SYNC
# =============================================================================


@router.post("/sync", response_model=SyncMessagesResponse)
async def sync_messages(
    request: SyncMessagesRequest,
    customer: CurrentCustomer,
    db: DBSession,
    gateway: Gateway,
):
    """Run the sync identified by ``syncId`` and wait for it to finish."""
    service = MessageSyncService(db=db, gateway=gateway)

    try:
        result = await service.run(customer.id, request.sync_id)
    except SyncNotFoundError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(e),
        )
    except InvalidSyncTransitionError as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(e),
        )
    except NoConnectionsError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e),
        )
    except GatewayError as e:
        raise gateway_http_error(e)

    return SyncMessagesResponse(
        sync_id=result.sync_id,
        total_messages=result.total_messages,
        total_chats=result.total_chats,
        connections=[
            ConnectionSyncResponse(
                connection_id=c.connection_id,
                platform=c.platform,
                chats=c.chats,
                new_messages=c.new_messages,
                failed=c.failed,
            )
            for c in result.connections
        ],
        errors=result.errors,
    )


@router.post("/sync/background", response_model=SyncJobResponse)
async def sync_messages_background(
    request: SyncMessagesRequest,
    customer: CurrentCustomer,
    db: DBSession,
):
    """Queue the sync identified by ``syncId`` on the worker."""
    try:
        SyncStatusService(db).get(customer.id, request.sync_id)
    except SyncNotFoundError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(e),
        )

    celery_app = get_celery_app()
    task = celery_app.send_task(
        "sync.run_sync",
        kwargs={
            "customer_id": customer.id,
            "sync_id": request.sync_id,
            "customer_name": customer.name,
        },
        queue="sync",
    )
    logger.info(f"Queued sync {request.sync_id} for customer {customer.id} as {task.id}")

    return SyncJobResponse(
        job_id=task.id,
        sync_id=request.sync_id,
        status="queued",
        message="Sync queued. Poll /sync-status for progress.",
    )


# =============================================================================
# SEND
# =============================================================================


@router.post("/send", response_model=SendMessageResponse)
async def send_message(
    request: SendMessageRequest,
    customer: CurrentCustomer,
    db: DBSession,
    gateway: Gateway,
):
    """Send a message, or retry ``messageId`` when it is given.

    The response carries the delivery status: ``sent`` or ``failed`` when the
    broker answered synchronously, ``pending`` while a delivery callback is
    awaited.
    """
    service = SendMessageService(db=db, gateway=gateway)

    try:
        if request.message_id:
            result = await service.retry(
                customer.id,
                request.message_id,
                content=request.message,
                recipient=request.recipient,
                chat_name=request.chat_name,
                chat_type=request.chat_type,
            )
        else:
            result = await service.send(
                customer_id=customer.id,
                chat_id=request.chat_id,
                connection_id=request.integration_id,
                content=request.message,
                recipient=request.recipient,
                chat_name=request.chat_name,
                chat_type=request.chat_type,
                platform_name=request.platform_name,
            )
    except MessageValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e),
        )
    except MessageNotFoundError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(e),
        )
    except MessageNotRetryableError as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(e),
        )
    except GatewayError as e:
        raise gateway_http_error(e)

    return send_result_to_response(result)


@router.put("/send", response_model=DeliveryCallbackResponse)
async def delivery_callback(
    request: DeliveryCallbackRequest,
    token: WebhookToken,
    db: DBSession,
):
    """Apply the final delivery status reported by the broker."""
    service = SendMessageService(db=db)

    try:
        result = service.handle_delivery_callback(
            operation_handle=request.handle,
            status=request.resolved_status,
            external_message_id=request.resolved_external_id,
            error=request.error,
            internal_message_id=request.internal_message_id,
        )
    except CallbackValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e),
        )
    except MessageNotFoundError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(e),
        )
    db.commit()

    return DeliveryCallbackResponse(
        message_id=result.local_id,
        status=result.status,
        applied=result.applied,
    )


@router.post("/{message_id}/retry", response_model=SendMessageResponse)
async def retry_message(
    message_id: str,
    customer: CurrentCustomer,
    db: DBSession,
    gateway: Gateway,
    request: Annotated[Optional[RetryMessageRequest], Body()] = None,
):
    """Resubmit a pending or failed message, keeping its id."""
    request = request or RetryMessageRequest()
    service = SendMessageService(db=db, gateway=gateway)

    try:
        result = await service.retry(
            customer.id,
            message_id,
            content=request.message,
            recipient=request.recipient,
            chat_name=request.chat_name,
            chat_type=request.chat_type,
        )
    except MessageValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e),
        )
    except MessageNotFoundError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(e),
        )
    except MessageNotRetryableError as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(e),
        )
    except GatewayError as e:
        raise gateway_http_error(e)

    return send_result_to_response(result)


@router.get("/pending", response_model=PendingMessageListResponse)
async def list_pending_messages(
    customer: CurrentCustomer,
    db: DBSession,
    chat_id: Annotated[Optional[str], Query(alias="chatId")] = None,
):
    """Outbound messages that are still pending or failed."""
    messages = SendMessageService(db=db).list_pending(customer.id, chat_id=chat_id)
    items = [
        PendingMessageResponse(
            id=m.local_id,
            chat_id=m.chat_external_id,
            integration_id=m.connection_id,
            content=m.content,
            status=m.status,
            error=m.error,
            timestamp=m.timestamp,
        )
        for m in messages
    ]
    return PendingMessageListResponse(messages=items, total=len(items))


# =============================================================================
# INBOUND
# =============================================================================


@router.post("/receive", response_model=ReceiveMessageResponse)
async def receive_message(
    request: ReceiveMessageRequest,
    token: WebhookToken,
    db: DBSession,
    gateway_factory: GatewayFactoryDep,
):
    """Store a message pushed by the broker."""
    data = request.data
    service = InboundMessageService(db=db, gateway_factory=gateway_factory)

    try:
        result = await service.receive(
            InboundMessage(
                customer_id=request.customer_id,
                external_message_id=request.external_message_id,
                chat_id=data.chat_id,
                content=data.content,
                owner_id=data.owner_id,
                owner_name=data.owner_name,
                message_id=data.id,
                timestamp=None if data.timestamp is None else str(data.timestamp),
                platform_name=data.platform_name,
                integration_id=data.integration_id,
            )
        )
    except ImportDisabledError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Import disabled",
        )
    db.commit()

    if result.duplicate:
        return ReceiveMessageResponse(
            duplicate=True,
            message="Message already exists",
            chat_id=result.chat_id,
            external_message_id=result.external_message_id,
        )

    return ReceiveMessageResponse(
        message_id=result.local_id,
        chat_id=result.chat_id,
        external_message_id=result.external_message_id,
    )


# =============================================================================
# READ
# =============================================================================


@router.get("", response_model=MessageListResponse)
async def list_messages(
    customer: CurrentCustomer,
    db: DBSession,
    chat_id: Annotated[Optional[str], Query(alias="chatId")] = None,
    limit: Annotated[int, Query(ge=1, le=DEFAULT_MESSAGE_LIMIT)] = DEFAULT_MESSAGE_LIMIT,
):
    """Stored messages in chronological order."""
    messages = ChatService(db).list_messages(customer.id, chat_id=chat_id, limit=limit)
    return MessageListResponse(messages=[message_to_response(m) for m in messages])
