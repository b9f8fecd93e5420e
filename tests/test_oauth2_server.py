"""
Tests for auth.oauth2_server module.

The facade operations, including the full authorization code flow.
"""

import base64
import hashlib

import pytest

from mcp_oauth_server.auth import OAuth2Server
from mcp_oauth_server.config import Settings
from mcp_oauth_server.core import (
    ConfigurationError,
    InvalidClientError,
    InvalidGrantError,
    InvalidRequestError,
    UnsupportedGrantTypeError,
)
from tests.conftest import DEMO_PASSWORD, TEST_ISSUER, TEST_REDIRECT


class TestEndToEnd:
    """Register, authorize, exchange, introspect."""

    def test_full_flow(self, oauth2_server):
        registration = oauth2_server.register_client(
            client_name="Example App",
            redirect_uris=["https://app.example/cb"],
        )
        code_verifier = "a" * 43
        code_challenge = (
            base64.urlsafe_b64encode(hashlib.sha256(code_verifier.encode()).digest())
            .decode()
            .rstrip("=")
        )

        authorization = oauth2_server.authorize(
            client_id=registration["client_id"],
            redirect_uri="https://app.example/cb",
            scopes=["read"],
            code_challenge=code_challenge,
            code_challenge_method="S256",
            user_id="user-123",
        )
        assert authorization["expires_in"] == 600

        tokens = oauth2_server.token(
            "authorization_code",
            code=authorization["code"],
            client_id=registration["client_id"],
            code_verifier=code_verifier,
            redirect_uri="https://app.example/cb",
        )
        assert tokens["access_token"]
        assert tokens["expires_in"] == 3600
        assert tokens["token_type"] == "Bearer"

        assert oauth2_server.introspect(tokens["access_token"])["active"] is True


class TestTokenOperation:
    """Test the token endpoint operation."""

    def test_missing_parameters(self, oauth2_server, registered_client):
        with pytest.raises(InvalidRequestError, match="code_verifier"):
            oauth2_server.token(
                "authorization_code",
                code="x",
                client_id=registered_client["client_id"],
                redirect_uri=TEST_REDIRECT,
            )

    def test_unsupported_grant_type(self, oauth2_server):
        with pytest.raises(UnsupportedGrantTypeError):
            oauth2_server.token("password", username="demo", password="demo123")

    def test_missing_grant_type(self, oauth2_server):
        with pytest.raises(UnsupportedGrantTypeError):
            oauth2_server.token(None)

    def test_unknown_client_is_invalid_client(self, oauth2_server, pkce_pair, issue_code):
        with pytest.raises(InvalidClientError):
            oauth2_server.token(
                "authorization_code",
                code=issue_code(),
                client_id="not-registered",
                code_verifier=pkce_pair[0],
                redirect_uri=TEST_REDIRECT,
            )

    def test_confidential_client_requires_secret(self, oauth2_server, pkce_pair):
        registration = oauth2_server.register_client(
            "Backend", [TEST_REDIRECT], confidential=True
        )
        code = oauth2_server.authorize(
            registration["client_id"], TEST_REDIRECT, "read", pkce_pair[1], "S256", "user-123"
        )["code"]
        params = {
            "code": code,
            "client_id": registration["client_id"],
            "code_verifier": pkce_pair[0],
            "redirect_uri": TEST_REDIRECT,
        }

        with pytest.raises(InvalidClientError):
            oauth2_server.token("authorization_code", **params)

        tokens = oauth2_server.token(
            "authorization_code", client_secret=registration["client_secret"], **params
        )
        assert tokens["access_token"]

    def test_refresh_grant_rotates(self, oauth2_server, token_response, registered_client):
        rotated = oauth2_server.token(
            "refresh_token",
            refresh_token=token_response["refresh_token"],
            client_id=registered_client["client_id"],
        )
        assert rotated["refresh_token"] != token_response["refresh_token"]

        with pytest.raises(InvalidGrantError):
            oauth2_server.token("refresh_token", refresh_token=token_response["refresh_token"])

    def test_refresh_with_narrower_scope_string(self, oauth2_server, registered_client, pkce_pair, issue_code):
        tokens = oauth2_server.token(
            "authorization_code",
            code=issue_code(scopes="read write"),
            client_id=registered_client["client_id"],
            code_verifier=pkce_pair[0],
            redirect_uri=TEST_REDIRECT,
        )

        rotated = oauth2_server.token("refresh_token", refresh_token=tokens["refresh_token"], scope="read")
        assert rotated["scope"] == "read"
        assert oauth2_server.introspect(rotated["refresh_token"])["scope"] == "read write"

        restored = oauth2_server.token(
            "refresh_token", refresh_token=rotated["refresh_token"], scope="read write"
        )
        assert restored["scope"] == "read write"

    def test_code_replay_after_refresh_revokes_rotated_tokens(
        self, oauth2_server, registered_client, pkce_pair, issue_code
    ):
        code = issue_code()
        params = {
            "code": code,
            "client_id": registered_client["client_id"],
            "code_verifier": pkce_pair[0],
            "redirect_uri": TEST_REDIRECT,
        }
        tokens = oauth2_server.token("authorization_code", **params)
        rotated = oauth2_server.token("refresh_token", refresh_token=tokens["refresh_token"])

        with pytest.raises(InvalidGrantError):
            oauth2_server.token("authorization_code", **params)

        assert oauth2_server.introspect(rotated["access_token"]) == {"active": False}
        assert oauth2_server.introspect(rotated["refresh_token"]) == {"active": False}


class TestValidateAccessToken:
    """Test protected-resource validation."""

    def test_valid(self, oauth2_server, token_response):
        payload = oauth2_server.validate_access_token(token_response["access_token"])
        assert payload["sub"] == "user-123"

    def test_signed_but_never_stored(self, oauth2_server):
        tokens = oauth2_server.token_issuer.issue_token("client-a", "user-123", ["read"])
        oauth2_server.store.delete_token_family(tokens.access_token)

        assert oauth2_server.validate_access_token(tokens.access_token) is None

    def test_garbage(self, oauth2_server):
        assert oauth2_server.validate_access_token("garbage") is None


class TestUsersAndSeeding:
    """Test demo data and user authentication."""

    def test_demo_client_seeded(self, oauth2_server):
        client = oauth2_server.get_client("demo-client-123")

        assert client.client_name == "Demo MCP Client"
        assert client.redirect_uris == ["http://localhost:3000/callback", "mcp://auth/callback"]
        assert client.allowed_scopes == ["read", "write", "admin"]

    def test_seeding_twice_is_harmless(self, oauth2_server):
        before = oauth2_server.store.stats()
        oauth2_server.seed_demo_data(DEMO_PASSWORD)
        assert oauth2_server.store.stats() == before

    def test_authenticate_user(self, oauth2_server):
        assert oauth2_server.authenticate_user("demo", DEMO_PASSWORD).user_id == "user-123"
        assert oauth2_server.authenticate_user("demo", "wrong") is None
        assert oauth2_server.authenticate_user("nobody", DEMO_PASSWORD) is None
        assert oauth2_server.authenticate_user("demo", "") is None

    def test_password_is_hashed(self, oauth2_server):
        assert oauth2_server.store.get_user("user-123").password_hash != DEMO_PASSWORD

    def test_duplicate_user(self, oauth2_server):
        with pytest.raises(InvalidRequestError):
            oauth2_server.add_user("user-123", "other", "pw")


class TestMetadata:
    """Test discovery documents."""

    def test_authorization_server_metadata(self, oauth2_server):
        metadata = oauth2_server.get_authorization_server_metadata()

        assert metadata["issuer"] == TEST_ISSUER
        assert metadata["authorization_endpoint"] == f"{TEST_ISSUER}/authorize"
        assert metadata["token_endpoint"] == f"{TEST_ISSUER}/token"
        assert metadata["registration_endpoint"] == f"{TEST_ISSUER}/register"
        assert metadata["introspection_endpoint"] == f"{TEST_ISSUER}/introspect"
        assert metadata["revocation_endpoint"] == f"{TEST_ISSUER}/revoke"
        assert metadata["response_types_supported"] == ["code"]
        assert metadata["grant_types_supported"] == ["authorization_code", "refresh_token"]
        assert metadata["code_challenge_methods_supported"] == ["S256", "plain"]

    def test_plain_hidden_when_disabled(self):
        server = OAuth2Server(TEST_ISSUER, "secret-key-0123456789", allow_plain_pkce=False)
        assert server.get_authorization_server_metadata()["code_challenge_methods_supported"] == ["S256"]

    def test_protected_resource_metadata(self, oauth2_server):
        metadata = oauth2_server.get_protected_resource_metadata(f"{TEST_ISSUER}/mcp")

        assert metadata["resource"] == f"{TEST_ISSUER}/mcp"
        assert metadata["authorization_servers"] == [TEST_ISSUER]


class TestFromSettings:
    """Test construction from application settings."""

    def test_policy_comes_from_settings(self, monkeypatch):
        monkeypatch.setenv("OAUTH2_ISSUER", "https://auth.example/")
        monkeypatch.setenv("OAUTH2_ACCESS_TOKEN_EXPIRE_MINUTES", "15")
        monkeypatch.setenv("OAUTH2_SEED_DEMO_DATA", "false")

        server = OAuth2Server.from_settings(Settings())

        assert server.issuer == "https://auth.example"
        assert server.token_issuer.access_token_lifetime == 900
        assert server.get_client("demo-client-123") is None

    def test_https_policy_requires_real_secret(self, monkeypatch):
        monkeypatch.delenv("OAUTH2_SECRET_KEY", raising=False)
        monkeypatch.setenv("OAUTH2_REQUIRE_HTTPS_REDIRECTS", "true")

        with pytest.raises(ConfigurationError):
            OAuth2Server.from_settings(Settings())
