"""Platform identity service.

Stores which external user the customer is on each connected platform, so
imported messages can be split into the customer's own (``user``) and
everyone else's (``third-party``). Also holds the per-platform ``import_new``
preference consulted by the inbound webhook.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from parley_core.config import Settings, get_settings
from parley_core.domain.models import UserPlatform, utcnow
from parley_core.domain.services.normalization import normalize_user
from parley_core.infrastructure.retry import call_with_retry, rate_limit_retry
from parley_core.providers.base import ConnectorGateway, GatewayError

logger = logging.getLogger(__name__)


class UserPlatformError(Exception):
    """Base exception for platform identity operations."""
    pass


class NoPlatformsConnectedError(UserPlatformError):
    """Raised when the customer has no connections."""
    pass


@dataclass
class PlatformFetchResult:
    """Outcome of refreshing one connection's identity."""

    platform_id: str
    platform_name: str
    success: bool
    external_user_id: Optional[str] = None
    external_user_name: Optional[str] = None
    external_user_email: Optional[str] = None
    error: Optional[str] = None


class UserPlatformService:
    """Service for platform identities and import preferences."""

    def __init__(
        self,
        db: Session,
        gateway: Optional[ConnectorGateway] = None,
        settings: Optional[Settings] = None,
    ):
        self.db = db
        self.gateway = gateway
        self.settings = settings or get_settings()
        self.retry_config = rate_limit_retry(
            self.settings.rate_limit_retry_delay_seconds
        )

    def get(self, customer_id: str, platform_id: str) -> Optional[UserPlatform]:
        """The customer's identity row for a platform, if any."""
        return (
            self.db.query(UserPlatform)
            .filter(
                UserPlatform.customer_id == customer_id,
                UserPlatform.platform_id == platform_id,
            )
            .first()
        )

    def list_for_customer(self, customer_id: str) -> list[UserPlatform]:
        return (
            self.db.query(UserPlatform)
            .filter(UserPlatform.customer_id == customer_id)
            .order_by(UserPlatform.platform_id.asc())
            .all()
        )

    def _get_or_create(self, customer_id: str, platform_id: str) -> UserPlatform:
        """The customer's row for a platform, added with ``import_new`` on."""
        platform = self.get(customer_id, platform_id)
        if platform is None:
            platform = UserPlatform(
                customer_id=customer_id,
                platform_id=platform_id,
                import_new=True,
            )
            self.db.add(platform)
        return platform

    # -------------------------------------------------------------------------
    # Import preference
    # -------------------------------------------------------------------------

    def get_import_new(self, customer_id: str, platform_id: str) -> tuple[bool, bool]:
        """Return ``(import_new, exists)``; ``import_new`` defaults to True."""
        platform = self.get(customer_id, platform_id)
        if platform is None:
            return True, False
        return bool(platform.import_new), True

    def set_import_new(
        self,
        customer_id: str,
        platform_id: str,
        import_new: bool,
    ) -> UserPlatform:
        """Store the import-new preference, creating the row if needed."""
        platform = self._get_or_create(customer_id, platform_id)
        platform.import_new = import_new
        self.db.flush()
        logger.info(
            f"Set import_new={import_new} for platform {platform_id} "
            f"of customer {customer_id}"
        )
        return platform

    # -------------------------------------------------------------------------
    # Identity refresh
    # -------------------------------------------------------------------------

    async def fetch_all(self, customer_id: str) -> list[PlatformFetchResult]:
        """Refresh the customer's identity on every connection.

        A rate-limited call is retried once. Per-connection failures are
        reported in the results.

        Raises:
            NoPlatformsConnectedError: If there are no connections.
            GatewayError: If connections cannot be listed.
        """
        if self.gateway is None:
            raise UserPlatformError("No connector gateway configured")

        connections = await call_with_retry(
            self.gateway.list_connections, config=self.retry_config
        )
        if not connections:
            raise NoPlatformsConnectedError("No platforms connected")

        results = []
        for connection in connections:
            try:
                record = await call_with_retry(
                    self.gateway.fetch_user, connection, config=self.retry_config
                )
            except GatewayError as e:
                logger.warning(f"get-user failed for connection {connection.id}: {e}")
                results.append(
                    PlatformFetchResult(
                        platform_id=connection.id,
                        platform_name=connection.name,
                        success=False,
                        error=str(e),
                    )
                )
                continue

            if not record:
                results.append(
                    PlatformFetchResult(
                        platform_id=connection.id,
                        platform_name=connection.name,
                        success=False,
                        error="No user data found",
                    )
                )
                continue

            user = normalize_user(record)
            platform_name = str(
                record.get("platform") or connection.name or connection.id
            )

            platform = self._get_or_create(customer_id, connection.id)
            platform.platform_name = platform_name
            platform.connection_id = connection.id
            platform.external_user_id = user.external_user_id
            platform.external_user_name = user.name
            platform.external_user_email = user.email
            platform.last_synced = utcnow()
            self.db.flush()

            results.append(
                PlatformFetchResult(
                    platform_id=connection.id,
                    platform_name=platform_name,
                    success=True,
                    external_user_id=user.external_user_id,
                    external_user_name=user.name,
                    external_user_email=user.email,
                )
            )

        return results
