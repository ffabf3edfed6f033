"""Integration broker gateway.

Implements the ConnectorGateway interface against the broker REST API.
Every platform (Slack, Teams, WhatsApp, Discord, ...) is reached through
named actions run on a connection:

- ``get-chats``: page of chats, input ``{"cursor": ...}``
- ``get-messages``: page of messages, input ``{"cursor": ..., "channelId": ...}``
- ``create-messages``: submit an outgoing message
- ``get-user``: the customer's own identity on the platform

Chat export support is read from the integration's ``get-chats`` action.

Usage:
    gateway = IntegrationAppGateway(
        credentials=GatewayCredentials(customer_id="cust-1"),
        base_url="https://api.integration.app",
        workspace_key="...",
        workspace_secret="...",
    )

    connections = await gateway.list_connections()
    page = await gateway.list_conversations(connections[0])
"""

import logging
from typing import Any, Optional

import httpx

from parley_core.providers.base import (
    Connection,
    ConnectorGateway,
    GatewayAuthError,
    GatewayCredentials,
    PaginatedResult,
    RateLimitedError,
    SubmitResult,
    UpstreamError,
)
from parley_core.providers.integration_app.tokens import issue_access_token

logger = logging.getLogger(__name__)


USERS_DATA_LINK_TABLE = "users"
CHAT_EXPORT_ACTION = "get-chats"


class IntegrationAppGateway(ConnectorGateway):
    """Connector gateway backed by the integration broker."""

    def __init__(
        self,
        credentials: GatewayCredentials,
        base_url: str,
        workspace_key: Optional[str],
        workspace_secret: Optional[str],
        token_ttl_seconds: int = 7200,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the gateway.

        Args:
            credentials: Customer the gateway acts for.
            base_url: Broker API base URL.
            workspace_key: Workspace key (JWT issuer).
            workspace_secret: Workspace secret (JWT signing key).
            token_ttl_seconds: Access token lifetime.
            timeout: HTTP timeout in seconds.
            transport: Optional httpx transport (tests use MockTransport).
        """
        self.credentials = credentials
        self.base_url = base_url.rstrip("/")
        self.workspace_key = workspace_key
        self.workspace_secret = workspace_secret
        self.token_ttl_seconds = token_ttl_seconds
        self.timeout = timeout
        self.transport = transport
        self._access_token: Optional[str] = None

    def _get_headers(self) -> dict[str, str]:
        """Get headers for API requests."""
        if self._access_token is None:
            self._access_token = issue_access_token(
                self.credentials,
                workspace_key=self.workspace_key,
                workspace_secret=self.workspace_secret,
                ttl_seconds=self.token_ttl_seconds,
            )
        return {
            "Authorization": f"Bearer {self._access_token}",
            "Content-Type": "application/json",
        }

    async def _api_request(
        self,
        method: str,
        endpoint: str,
        params: Optional[dict] = None,
        json: Optional[dict] = None,
    ) -> dict[str, Any]:
        """Make an API request and map failures to gateway errors.

        Returns:
            The decoded JSON body (empty dict for an empty body).
        """
        url = f"{self.base_url}{endpoint}"
        headers = self._get_headers()

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self.transport
            ) as client:
                response = await client.request(
                    method, url, headers=headers, params=params, json=json
                )
        except httpx.HTTPError as e:
            raise UpstreamError(f"Broker request failed: {e}") from e

        if response.status_code == 429:
            raise RateLimitedError("Broker rate limit exceeded", response.status_code)
        if response.status_code in (401, 403):
            raise GatewayAuthError(
                "Broker rejected credentials", response.status_code
            )
        if response.status_code >= 400:
            raise UpstreamError(
                f"Broker returned {response.status_code} for {method} {endpoint}",
                response.status_code,
            )

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise UpstreamError(f"Broker returned invalid JSON for {endpoint}") from e

    async def _run_action(
        self,
        connection_id: str,
        action_key: str,
        action_input: Optional[dict] = None,
    ) -> dict[str, Any]:
        """Run a named action on a connection."""
        return await self._api_request(
            "POST",
            f"/connections/{connection_id}/actions/{action_key}/run",
            json=action_input or {},
        )

    @staticmethod
    def _records_page(result: dict[str, Any]) -> PaginatedResult[dict[str, Any]]:
        """Read ``output.records`` and ``output.cursor`` of an action run."""
        output = result.get("output") or {}
        records = output.get("records") or []
        cursor = output.get("cursor") or None
        return PaginatedResult(
            items=[r for r in records if isinstance(r, dict)],
            next_cursor=cursor,
            has_more=cursor is not None,
        )

    async def list_connections(self) -> list[Connection]:
        """List connections; the platform is the integration key."""
        data = await self._api_request("GET", "/connections")
        items = data.get("items", []) if isinstance(data, dict) else data

        connections = []
        for item in items or []:
            integration = item.get("integration") or {}
            connections.append(
                Connection(
                    id=str(item.get("id")),
                    name=item.get("name") or integration.get("name") or "",
                    platform=integration.get("key") or item.get("integrationKey") or "",
                )
            )
        return connections

    async def list_conversations(
        self,
        connection: Connection,
        cursor: Optional[str] = None,
    ) -> PaginatedResult[dict[str, Any]]:
        result = await self._run_action(
            connection.id, "get-chats", {"cursor": cursor or ""}
        )
        return self._records_page(result)

    async def list_messages(
        self,
        connection: Connection,
        conversation_id: str,
        cursor: Optional[str] = None,
    ) -> PaginatedResult[dict[str, Any]]:
        result = await self._run_action(
            connection.id,
            "get-messages",
            {"cursor": cursor or "", "channelId": conversation_id},
        )
        return self._records_page(result)

    async def submit_outgoing_message(
        self,
        connection: Connection,
        payload: dict[str, Any],
    ) -> SubmitResult:
        """Run ``create-messages``.

        A result carrying a flow run id and no terminal status is treated as
        asynchronous; the broker reports the outcome later via callback.
        """
        result = await self._run_action(connection.id, "create-messages", payload)
        output = result.get("output") or {}

        handle = output.get("flowRunId") or result.get("flowRunId")
        status = output.get("status") or ("pending" if handle else "completed")
        external_id = output.get("messageId") or output.get("id") or None

        return SubmitResult(
            status=status,
            external_message_id=external_id,
            operation_handle=handle,
            error=output.get("error"),
            raw_data=result,
        )

    async def fetch_user(self, connection: Connection) -> Optional[dict[str, Any]]:
        """Run ``get-user``; the record is either ``output.records[0]`` or ``output``."""
        result = await self._run_action(connection.id, "get-user")
        output = result.get("output")
        if not isinstance(output, dict) or not output:
            return None
        records = output.get("records")
        if isinstance(records, list):
            return records[0] if records and isinstance(records[0], dict) else None
        return output

    async def fetch_user_mappings(self, connection: Connection) -> dict[str, str]:
        """Read the ``users`` data-link table for the connection.

        Links map platform user ids (``externalRecordId``) to display names
        (``appRecordId``).
        """
        data = await self._api_request("GET", "/data-link-table-instances")
        instances = data.get("items", []) if isinstance(data, dict) else data

        instance = next(
            (
                i
                for i in instances or []
                if (i.get("dataLinkTable") or {}).get("key") == USERS_DATA_LINK_TABLE
                and i.get("connectionId") == connection.id
            ),
            None,
        )
        if instance is None:
            logger.debug(f"No users data-link table for connection {connection.id}")
            return {}

        links = await self._api_request(
            "GET", f"/data-link-table-instances/{instance['id']}/links"
        )
        mappings = {}
        for link in links.get("items", []) if isinstance(links, dict) else links or []:
            external_id = link.get("externalRecordId")
            app_id = link.get("appRecordId")
            if external_id and app_id:
                mappings[str(external_id)] = str(app_id)
        return mappings

    async def supports_chat_export(self, integration_key: str) -> bool:
        """Check the integration's ``get-chats/export`` endpoint.

        Returns:
            True when the endpoint exists, False when the broker answers 404.

        Raises:
            GatewayError: For any other broker failure.
        """
        try:
            await self._api_request(
                "GET",
                f"/integrations/{integration_key}/actions/{CHAT_EXPORT_ACTION}/export",
            )
        except UpstreamError as e:
            if e.status_code == 404:
                return False
            raise
        return True
