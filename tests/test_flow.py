"""
Tests for auth.flow module.

Authorization request validation and the single-use code exchange.
"""

import threading

import pytest

from mcp_oauth_server.auth.storage import AuthorizationState
from mcp_oauth_server.core import (
    InvalidClientError,
    InvalidGrantError,
    InvalidRequestError,
    InvalidScopeError,
    OAuthError,
)
from tests.conftest import TEST_REDIRECT


@pytest.fixture
def flow(oauth2_server):
    return oauth2_server.flow


class TestStartAuthorization:
    """Test authorization request validation."""

    def test_issues_code_in_code_issued_state(self, flow, registered_client, pkce_pair, clock):
        auth_code = flow.start_authorization(
            client_id=registered_client["client_id"],
            redirect_uri=TEST_REDIRECT,
            scopes=["read"],
            code_challenge=pkce_pair[1],
            code_challenge_method="S256",
            user_id="user-123",
        )

        assert auth_code.state == AuthorizationState.CODE_ISSUED
        assert auth_code.scopes == ["read"]
        assert (auth_code.expires_at - clock()).total_seconds() == 600

    def test_unknown_client(self, flow, pkce_pair):
        with pytest.raises(InvalidClientError) as exc_info:
            flow.start_authorization("nope", TEST_REDIRECT, ["read"], pkce_pair[1], "S256", "user-123")
        assert exc_info.value.status_code == 400

    def test_unregistered_redirect(self, flow, registered_client, pkce_pair):
        with pytest.raises(InvalidRequestError, match="redirect_uri"):
            flow.start_authorization(
                registered_client["client_id"],
                TEST_REDIRECT + "/",
                ["read"],
                pkce_pair[1],
                "S256",
                "user-123",
            )

    def test_method_defaults_to_s256(self, flow, registered_client, pkce_pair):
        auth_code = flow.start_authorization(
            registered_client["client_id"], TEST_REDIRECT, None, pkce_pair[1], None, "user-123"
        )
        assert auth_code.code_challenge_method.value == "S256"

    def test_unsupported_method(self, flow, registered_client, pkce_pair):
        with pytest.raises(InvalidRequestError, match="code_challenge_method"):
            flow.start_authorization(
                registered_client["client_id"], TEST_REDIRECT, ["read"], pkce_pair[1], "S512", "user-123"
            )

    def test_plain_rejected_when_disabled(self, flow, registered_client):
        flow.allow_plain_pkce = False
        with pytest.raises(InvalidRequestError):
            flow.start_authorization(
                registered_client["client_id"], TEST_REDIRECT, ["read"], "a" * 43, "plain", "user-123"
            )

    def test_missing_challenge(self, flow, registered_client):
        with pytest.raises(InvalidRequestError, match="code_challenge"):
            flow.start_authorization(
                registered_client["client_id"], TEST_REDIRECT, ["read"], "", "S256", "user-123"
            )

    def test_scope_outside_client_grant(self, flow, registered_client, pkce_pair):
        with pytest.raises(InvalidScopeError, match="admin"):
            flow.start_authorization(
                registered_client["client_id"], TEST_REDIRECT, ["read", "admin"], pkce_pair[1], "S256", "user-123"
            )

    def test_empty_scopes_use_defaults(self, flow, registered_client, pkce_pair):
        auth_code = flow.start_authorization(
            registered_client["client_id"], TEST_REDIRECT, [], pkce_pair[1], "S256", "user-123"
        )
        assert auth_code.scopes == ["read"]

    def test_unknown_user(self, flow, registered_client, pkce_pair):
        with pytest.raises(InvalidRequestError, match="user"):
            flow.start_authorization(
                registered_client["client_id"], TEST_REDIRECT, ["read"], pkce_pair[1], "S256", "ghost"
            )


class TestExchangeCode:
    """Test code exchange invariants."""

    def test_exchange_returns_tokens(self, flow, registered_client, pkce_pair, issue_code):
        tokens = flow.exchange_code(issue_code(), registered_client["client_id"], pkce_pair[0], TEST_REDIRECT)

        assert tokens.access_token
        assert tokens.refresh_token
        assert tokens.expires_in == 3600
        assert tokens.scopes == ["read"]

    def test_single_use(self, flow, registered_client, pkce_pair, issue_code):
        code = issue_code()
        flow.exchange_code(code, registered_client["client_id"], pkce_pair[0], TEST_REDIRECT)

        with pytest.raises(InvalidGrantError):
            flow.exchange_code(code, registered_client["client_id"], pkce_pair[0], TEST_REDIRECT)

    def test_concurrent_exchange_has_one_winner(self, flow, registered_client, pkce_pair, issue_code):
        """Two simultaneous exchanges of the same code: exactly one succeeds."""
        code = issue_code()
        barrier = threading.Barrier(8)
        outcomes = []
        outcomes_lock = threading.Lock()

        def attempt():
            barrier.wait()
            try:
                flow.exchange_code(code, registered_client["client_id"], pkce_pair[0], TEST_REDIRECT)
                result = "ok"
            except InvalidGrantError:
                result = "invalid_grant"
            with outcomes_lock:
                outcomes.append(result)

        threads = [threading.Thread(target=attempt) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert outcomes.count("ok") == 1
        assert outcomes.count("invalid_grant") == 7

    def test_pkce_mutation_fails(self, flow, registered_client, pkce_pair, issue_code):
        verifier = pkce_pair[0]
        mutated = ("b" if verifier[0] != "b" else "c") + verifier[1:]

        with pytest.raises(InvalidGrantError, match="PKCE"):
            flow.exchange_code(issue_code(), registered_client["client_id"], mutated, TEST_REDIRECT)

    def test_expired_code(self, flow, registered_client, pkce_pair, issue_code, clock):
        code = issue_code()
        clock.advance(minutes=10, seconds=1)

        with pytest.raises(InvalidGrantError, match="expired"):
            flow.exchange_code(code, registered_client["client_id"], pkce_pair[0], TEST_REDIRECT)

    def test_redirect_trailing_slash_fails(self, flow, registered_client, pkce_pair, issue_code):
        with pytest.raises(InvalidGrantError, match="Redirect URI"):
            flow.exchange_code(issue_code(), registered_client["client_id"], pkce_pair[0], TEST_REDIRECT + "/")

    def test_other_client_cannot_exchange(self, oauth2_server, flow, pkce_pair, issue_code):
        with pytest.raises(InvalidGrantError, match="Client ID"):
            flow.exchange_code(issue_code(), "demo-client-123", pkce_pair[0], TEST_REDIRECT)

    def test_failed_exchange_keeps_code_usable(self, flow, registered_client, pkce_pair, issue_code):
        code = issue_code()
        with pytest.raises(InvalidGrantError):
            flow.exchange_code(code, registered_client["client_id"], "a" * 43, TEST_REDIRECT)

        tokens = flow.exchange_code(code, registered_client["client_id"], pkce_pair[0], TEST_REDIRECT)
        assert tokens.access_token

    def test_plain_method_round_trip(self, flow, registered_client):
        verifier = "v" * 60
        auth_code = flow.start_authorization(
            registered_client["client_id"], TEST_REDIRECT, ["read"], verifier, "plain", "user-123"
        )

        tokens = flow.exchange_code(auth_code.code, registered_client["client_id"], verifier, TEST_REDIRECT)
        assert tokens.access_token

    def test_errors_carry_oauth_fields(self, flow, registered_client, pkce_pair):
        with pytest.raises(OAuthError) as exc_info:
            flow.exchange_code("missing", registered_client["client_id"], pkce_pair[0], TEST_REDIRECT)

        assert exc_info.value.to_dict() == {
            "error": "invalid_grant",
            "error_description": "Invalid authorization code",
        }
