"""
Tests for auth.registrar module.

Dynamic client registration and redirect URI policy.
"""

import pytest

from mcp_oauth_server.auth.credential_store import CredentialStore
from mcp_oauth_server.auth.registrar import ClientRegistrar, validate_redirect_uri
from mcp_oauth_server.core import (
    InvalidRedirectURIError,
    InvalidRequestError,
    InvalidScopeError,
)


@pytest.fixture
def registrar(clock):
    return ClientRegistrar(CredentialStore(clock=clock), supported_scopes=["read", "write", "admin"])


class TestValidateRedirectUri:
    """Test redirect URI validation."""

    @pytest.mark.parametrize(
        "uri",
        [
            "https://app.example/cb",
            "http://localhost:3000/callback",
            "http://127.0.0.1:8080/cb",
            "mcp://auth/callback",
        ],
    )
    def test_accepted(self, uri):
        validate_redirect_uri(uri, require_https=True)

    @pytest.mark.parametrize(
        "uri",
        [
            "",
            "/relative/cb",
            "https://app.example/cb#frag",
            "https:///cb",
            " https://app.example/cb",
        ],
    )
    def test_rejected(self, uri):
        with pytest.raises(InvalidRedirectURIError):
            validate_redirect_uri(uri)

    def test_plain_http_depends_on_policy(self):
        validate_redirect_uri("http://app.example/cb", require_https=False)
        with pytest.raises(InvalidRedirectURIError, match="https"):
            validate_redirect_uri("http://app.example/cb", require_https=True)


class TestRegister:
    """Test client registration."""

    def test_public_client(self, registrar):
        client, secret = registrar.register("App", ["https://app.example/cb"])

        assert secret is None
        assert client.client_id.startswith("client-")
        assert client.allowed_scopes == ["read"]
        assert not client.is_confidential

    def test_confidential_client_secret_is_hashed(self, registrar):
        client, secret = registrar.register("App", ["https://app.example/cb"], confidential=True)

        assert secret
        assert client.client_secret_hash != secret
        assert registrar.verify_client_secret(client.client_id, secret)
        assert not registrar.verify_client_secret(client.client_id, "wrong")
        assert not registrar.verify_client_secret(client.client_id, None)

    def test_public_client_needs_no_secret(self, registrar):
        client, _ = registrar.register("App", ["https://app.example/cb"])
        assert registrar.verify_client_secret(client.client_id, None)

    def test_client_ids_are_unique(self, registrar):
        ids = {registrar.register("App", ["https://app.example/cb"])[0].client_id for _ in range(20)}
        assert len(ids) == 20

    def test_missing_name(self, registrar):
        with pytest.raises(InvalidRequestError):
            registrar.register("  ", ["https://app.example/cb"])

    def test_missing_redirects(self, registrar):
        with pytest.raises(InvalidRequestError):
            registrar.register("App", [])

    def test_unknown_scope(self, registrar):
        with pytest.raises(InvalidScopeError, match="delete"):
            registrar.register("App", ["https://app.example/cb"], scopes=["read", "delete"])

    def test_fixed_client_id_cannot_be_reused(self, registrar):
        registrar.register("App", ["https://app.example/cb"], client_id="fixed")
        with pytest.raises(InvalidRequestError, match="already registered"):
            registrar.register("Other", ["https://other.example/cb"], client_id="fixed")
