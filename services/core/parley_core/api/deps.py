"""API dependencies for dependency injection."""

from dataclasses import dataclass
from typing import Annotated, Optional

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.orm import Session

from parley_core.config import get_settings
from parley_core.domain.services.inbound import GatewayFactory
from parley_core.infra.db import get_sync_session_factory
from parley_core.providers.base import ConnectorGateway
from parley_core.providers.integration_app import build_gateway


@dataclass
class Customer:
    """Caller identity taken from the request headers."""

    id: str
    name: Optional[str] = None


def get_db() -> Session:
    """Get a database session."""
    session_factory = get_sync_session_factory()
    session = session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def get_current_customer(
    x_auth_id: Annotated[Optional[str], Header()] = None,
    x_user_name: Annotated[Optional[str], Header()] = None,
) -> Customer:
    """Get the calling customer.

    Raises:
        HTTPException: If the ``x-auth-id`` header is missing.
    """
    if not x_auth_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )
    return Customer(id=x_auth_id, name=x_user_name)


def get_gateway(
    customer: Annotated[Customer, Depends(get_current_customer)],
) -> ConnectorGateway:
    """Get the connector gateway for the calling customer."""
    return build_gateway(customer.id, customer.name)


def get_gateway_factory() -> GatewayFactory:
    """Get a factory building gateways by customer id (webhooks)."""
    return build_gateway


def verify_webhook_token(request: Request) -> str:
    """Check the broker webhook token header.

    Raises:
        HTTPException: If the token is missing or does not match.
    """
    settings = get_settings()
    token = request.headers.get(settings.webhook_token_header)
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing webhook token",
        )
    if settings.webhook_token and token != settings.webhook_token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid webhook token",
        )
    return token


# Type aliases for cleaner route signatures
DBSession = Annotated[Session, Depends(get_db)]
CurrentCustomer = Annotated[Customer, Depends(get_current_customer)]
Gateway = Annotated[ConnectorGateway, Depends(get_gateway)]
GatewayFactoryDep = Annotated[GatewayFactory, Depends(get_gateway_factory)]
WebhookToken = Annotated[str, Depends(verify_webhook_token)]
