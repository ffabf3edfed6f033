"""Unit tests for broker access tokens."""

from datetime import datetime, timedelta, timezone

import jwt
import pytest

from factories import decode_token
from parley_core.providers.base import GatewayAuthError, GatewayCredentials
from parley_core.providers.integration_app.tokens import (
    TOKEN_ALGORITHM,
    issue_access_token,
)


def credentials(**overrides) -> GatewayCredentials:
    fields = {"customer_id": "cust-1", "customer_name": "Ada"}
    fields.update(overrides)
    return GatewayCredentials(**fields)


class TestIssueAccessToken:
    """Tests for issue_access_token()."""

    def test_claims(self):
        token = issue_access_token(credentials(), "ws-key", "ws-secret", ttl_seconds=60)

        claims = decode_token(token)
        assert claims["id"] == "cust-1"
        assert claims["name"] == "Ada"
        assert claims["iss"] == "ws-key"
        assert claims["exp"] - claims["iat"] == 60

    def test_custom_fields(self):
        token = issue_access_token(
            credentials(fields={"hasName": True}), "ws-key", "ws-secret"
        )

        assert decode_token(token)["fields"] == {"hasName": True}

    def test_signed_with_hs512(self):
        token = issue_access_token(credentials(), "ws-key", "ws-secret")

        assert jwt.get_unverified_header(token)["alg"] == TOKEN_ALGORITHM == "HS512"

    def test_name_defaults_to_customer_id(self):
        token = issue_access_token(credentials(customer_name=None), "ws-key", "ws-secret")

        assert decode_token(token)["name"] == "cust-1"

    @pytest.mark.parametrize("key, secret", [(None, "ws-secret"), ("ws-key", None), ("", "")])
    def test_workspace_must_be_configured(self, key, secret):
        with pytest.raises(GatewayAuthError):
            issue_access_token(credentials(), key, secret)

    def test_customer_id_is_required(self):
        with pytest.raises(GatewayAuthError):
            issue_access_token(credentials(customer_id=""), "ws-key", "ws-secret")


class TestTokenVerification:
    """Tokens only verify with the workspace key and secret."""

    def test_wrong_secret(self):
        token = issue_access_token(credentials(), "ws-key", "ws-secret")

        with pytest.raises(jwt.InvalidSignatureError):
            decode_token(token, workspace_secret="other-secret")

    def test_wrong_issuer(self):
        token = issue_access_token(credentials(), "ws-key", "ws-secret")

        with pytest.raises(jwt.InvalidIssuerError):
            decode_token(token, workspace_key="other-key")

    def test_expired(self):
        issued = datetime.now(timezone.utc) - timedelta(hours=3)
        token = issue_access_token(
            credentials(), "ws-key", "ws-secret", ttl_seconds=60, now=issued
        )

        with pytest.raises(jwt.ExpiredSignatureError):
            decode_token(token)
