"""Integration broker API schemas."""

from parley_core.api.schemas.base import CamelModel


class IntegrationTokenResponse(CamelModel):
    """Broker access token for the front end."""

    token: str
    expires_in: int


class ExportSupportResponse(CamelModel):
    integration_key: str
    supports_export: bool
