"""Connector gateways for Parley.

This package contains:
- Base: Abstract gateway interface, DTOs and gateway errors
- Integration app: HTTP gateway for the hosted integration broker
"""

from parley_core.providers.base import (
    Connection,
    ConnectorGateway,
    GatewayAuthError,
    GatewayCredentials,
    GatewayError,
    PaginatedResult,
    RateLimitedError,
    SubmitResult,
    UpstreamError,
)

__all__ = [
    "Connection",
    "ConnectorGateway",
    "GatewayAuthError",
    "GatewayCredentials",
    "GatewayError",
    "PaginatedResult",
    "RateLimitedError",
    "SubmitResult",
    "UpstreamError",
]
