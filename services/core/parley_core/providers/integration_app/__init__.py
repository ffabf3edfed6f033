"""Integration broker gateway.

This package contains:
- API adapter
- Access token issuance
- Gateway construction from settings
"""

from parley_core.providers.integration_app.adapter import IntegrationAppGateway
from parley_core.providers.integration_app.factory import build_gateway
from parley_core.providers.integration_app.tokens import issue_access_token

__all__ = [
    "IntegrationAppGateway",
    "build_gateway",
    "issue_access_token",
]
