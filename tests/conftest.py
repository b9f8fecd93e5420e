"""
Shared pytest fixtures and configuration for all tests.

The authorization server under test runs on a fake clock so that expiry can be
exercised without sleeping.
"""

import os
from datetime import datetime, timedelta, timezone

import pytest

# Set test environment variables BEFORE any imports read settings
os.environ.setdefault("OAUTH2_SECRET_KEY", "test-secret-key-for-jwt-signing")

from mcp_oauth_server.auth import OAuth2Server, pkce
from mcp_oauth_server.config import reset_settings

TEST_ISSUER = "https://test-server.com"
TEST_SECRET = "test-secret-key-for-jwt-signing"
TEST_REDIRECT = "https://app.example/cb"
DEMO_PASSWORD = "demo123"


class FakeClock:
    """Callable clock whose time only moves when a test advances it."""

    def __init__(self, start: datetime | None = None):
        self.current = start or datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)


@pytest.fixture(autouse=True)
def fresh_settings():
    """Every test starts and ends with an unloaded settings singleton."""
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def oauth2_server(clock):
    """OAuth2 server with the demo client and demo user seeded."""
    server = OAuth2Server(
        issuer=TEST_ISSUER,
        secret_key=TEST_SECRET,
        clock=clock,
    )
    server.seed_demo_data(DEMO_PASSWORD)
    return server


@pytest.fixture
def registered_client(oauth2_server):
    """Public client registered with a single https redirect URI."""
    return oauth2_server.register_client(
        client_name="Test App",
        redirect_uris=[TEST_REDIRECT],
        scopes=["read", "write"],
    )


@pytest.fixture
def pkce_pair():
    """(code_verifier, code_challenge) using S256."""
    return pkce.generate_pkce_pair()


@pytest.fixture
def issue_code(oauth2_server, registered_client, pkce_pair):
    """Factory returning a fresh authorization code for the registered client."""

    def _issue(scopes="read", user_id="user-123", challenge=None, method="S256"):
        result = oauth2_server.authorize(
            client_id=registered_client["client_id"],
            redirect_uri=TEST_REDIRECT,
            scopes=scopes,
            code_challenge=challenge or pkce_pair[1],
            code_challenge_method=method,
            user_id=user_id,
        )
        return result["code"]

    return _issue


@pytest.fixture
def token_response(oauth2_server, registered_client, pkce_pair, issue_code):
    """A completed authorization_code exchange."""
    return oauth2_server.token(
        "authorization_code",
        code=issue_code(),
        client_id=registered_client["client_id"],
        code_verifier=pkce_pair[0],
        redirect_uri=TEST_REDIRECT,
    )
