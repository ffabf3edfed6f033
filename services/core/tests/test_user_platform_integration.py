"""Integration tests for platform identity and import preference endpoints."""

import pytest

from factories import create_user_platform, slack_connection
from parley_core.domain.models import UserPlatform
from parley_core.providers.base import UpstreamError


class TestUserPlatformEndpoints:
    """Tests for /user-platform."""

    @pytest.mark.asyncio
    async def test_lists_platforms(self, client, db_session):
        create_user_platform(db_session, external_user_id="U1", platform_name="Slack")
        create_user_platform(db_session, customer_id="cust-2")
        db_session.commit()

        response = await client.get("/user-platform")

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 1
        platform = data["userPlatforms"][0]
        assert platform["platformId"] == "conn-1"
        assert platform["externalUserId"] == "U1"
        assert platform["importNew"] is True

    @pytest.mark.asyncio
    async def test_fetch_refreshes_identities(self, client, db_session, fake_gateway):
        fake_gateway.connections = [slack_connection("conn-1"), slack_connection("conn-2")]
        fake_gateway.users = {"conn-1": {"userId": "U1", "name": "Ada"}}

        response = await client.post("/user-platform/fetch")

        assert response.status_code == 200
        data = response.json()
        assert data["totalProcessed"] == 2
        assert data["successful"] == 1
        assert data["results"][0]["externalUserName"] == "Ada"
        assert data["results"][1]["error"] == "No user data found"

        db_session.expire_all()
        assert db_session.query(UserPlatform).one().external_user_id == "U1"

    @pytest.mark.asyncio
    async def test_fetch_without_connections(self, client, fake_gateway):
        fake_gateway.connections = []

        response = await client.post("/user-platform/fetch")

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_fetch_listing_failure(self, client, fake_gateway):
        fake_gateway.fail("list_connections", UpstreamError("broker down", 502))

        response = await client.post("/user-platform/fetch")

        assert response.status_code == 500


class TestImportNewEndpoints:
    """Tests for /integrations/import-new."""

    @pytest.mark.asyncio
    async def test_default_for_unknown_platform(self, client):
        response = await client.get("/integrations/import-new", params={"platformId": "conn-1"})

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "platformId": "conn-1",
            "importNew": True,
            "exists": False,
        }

    @pytest.mark.asyncio
    async def test_platform_id_is_required(self, client):
        response = await client.get("/integrations/import-new")

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_set_and_read_back(self, client):
        response = await client.post(
            "/integrations/import-new", json={"platformId": "conn-1", "importNew": False}
        )

        assert response.status_code == 200
        assert response.json()["message"] == "Import new setting updated to false"

        read = await client.get("/integrations/import-new", params={"platformId": "conn-1"})
        assert read.json()["importNew"] is False
        assert read.json()["exists"] is True
