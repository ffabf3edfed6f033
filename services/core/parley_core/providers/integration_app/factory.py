"""Build broker gateways from application settings."""

from typing import Optional

from parley_core.config import Settings, get_settings
from parley_core.providers.base import GatewayCredentials
from parley_core.providers.integration_app.adapter import IntegrationAppGateway


def build_gateway(
    customer_id: str,
    customer_name: Optional[str] = None,
    settings: Optional[Settings] = None,
) -> IntegrationAppGateway:
    """Build a broker gateway acting for one customer."""
    settings = settings or get_settings()
    return IntegrationAppGateway(
        credentials=GatewayCredentials(
            customer_id=customer_id,
            customer_name=customer_name,
        ),
        base_url=settings.integration_api_url,
        workspace_key=settings.integration_workspace_key,
        workspace_secret=settings.integration_workspace_secret,
        token_ttl_seconds=settings.integration_token_ttl_seconds,
        timeout=settings.http_timeout_seconds,
    )
