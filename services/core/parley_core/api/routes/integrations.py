"""Integration broker API routes.

Provides endpoints for:
- GET /integration-token - Broker access token for the calling customer
- GET /integration-export-support - Whether an integration can export chats
"""

from typing import Annotated

from fastapi import APIRouter, HTTPException, Query, status

from parley_core.api.deps import CurrentCustomer, DBSession, Gateway
from parley_core.api.schemas.integration import (
    ExportSupportResponse,
    IntegrationTokenResponse,
)
from parley_core.config import get_settings
from parley_core.domain.services.chats import ChatService
from parley_core.domain.services.normalization import iso_now
from parley_core.observability.logging import get_logger
from parley_core.providers.base import (
    GatewayAuthError,
    GatewayCredentials,
    GatewayError,
)
from parley_core.providers.integration_app import issue_access_token

logger = get_logger(__name__)

router = APIRouter(tags=["integrations"])


@router.get("/integration-token", response_model=IntegrationTokenResponse)
async def get_integration_token(customer: CurrentCustomer):
    """Issue a broker access token so the front end can talk to the broker."""
    settings = get_settings()
    credentials = GatewayCredentials(
        customer_id=customer.id,
        customer_name=customer.name,
        fields={"hasName": bool(customer.name), "timestamp": iso_now()},
    )

    try:
        token = issue_access_token(
            credentials,
            workspace_key=settings.integration_workspace_key,
            workspace_secret=settings.integration_workspace_secret,
            ttl_seconds=settings.integration_token_ttl_seconds,
        )
    except GatewayAuthError as e:
        logger.error("Could not issue broker token", customer_id=customer.id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Integration broker not configured",
        )

    return IntegrationTokenResponse(
        token=token,
        expires_in=settings.integration_token_ttl_seconds,
    )


@router.get("/integration-export-support", response_model=ExportSupportResponse)
async def get_export_support(
    customer: CurrentCustomer,
    db: DBSession,
    gateway: Gateway,
    integration_key: Annotated[str, Query(alias="integrationKey", min_length=1)],
):
    """Whether ``integrationKey`` implements the chat export action."""
    service = ChatService(db, gateway=gateway)

    try:
        supports_export = await service.supports_export(integration_key)
    except GatewayAuthError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e),
        )
    except GatewayError as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to check export support: {e}",
        )

    return ExportSupportResponse(
        integration_key=integration_key,
        supports_export=supports_export,
    )
