"""Access tokens for the integration broker.

The broker authenticates each customer with a short-lived HS512 JWT signed
with the workspace secret. Tokens are issued per gateway instance and never
cached across requests.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import jwt

from parley_core.providers.base import GatewayAuthError, GatewayCredentials


TOKEN_ALGORITHM = "HS512"


def issue_access_token(
    credentials: GatewayCredentials,
    workspace_key: Optional[str],
    workspace_secret: Optional[str],
    ttl_seconds: int = 7200,
    now: Optional[datetime] = None,
) -> str:
    """Issue a broker access token for one customer.

    Raises:
        GatewayAuthError: If the workspace is not configured or the
            customer id is missing.
    """
    if not workspace_key or not workspace_secret:
        raise GatewayAuthError("Integration workspace credentials are not configured")
    if not credentials.customer_id:
        raise GatewayAuthError("Customer id is required to issue an access token")

    issued_at = now or datetime.now(timezone.utc)
    claims: dict[str, Any] = {
        "id": credentials.customer_id,
        "name": credentials.customer_name or credentials.customer_id,
        "fields": credentials.fields,
        "iss": workspace_key,
        "iat": issued_at,
        "exp": issued_at + timedelta(seconds=ttl_seconds),
    }
    return jwt.encode(claims, workspace_secret, algorithm=TOKEN_ALGORITHM)

