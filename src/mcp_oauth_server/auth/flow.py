"""Authorization code flow with PKCE.

Each authorization attempt moves through
``STARTED -> CODE_ISSUED -> {EXCHANGED | EXPIRED | REVOKED}``. The controller
validates the authorization request, mints the code, and later exchanges it
for tokens exactly once.
"""

import logging
import secrets
from datetime import timedelta

from mcp_oauth_server.auth import pkce
from mcp_oauth_server.auth.credential_store import CredentialStore
from mcp_oauth_server.auth.storage import (
    AuthorizationState,
    CodeChallengeMethod,
    IssuedTokens,
    StoredAuthCode,
)
from mcp_oauth_server.auth.tokens import TokenIssuer
from mcp_oauth_server.core import (
    InvalidClientError,
    InvalidGrantError,
    InvalidRequestError,
    InvalidScopeError,
    token_preview,
)

logger = logging.getLogger(__name__)


class AuthorizationFlowController:
    """Issues PKCE-bound authorization codes and exchanges them for tokens."""

    def __init__(
        self,
        store: CredentialStore,
        token_issuer: TokenIssuer,
        authorization_code_expire_minutes: int = 10,
        allow_plain_pkce: bool = True,
        default_scopes: list[str] | None = None,
    ):
        self._store = store
        self._token_issuer = token_issuer
        self.authorization_code_expire_minutes = authorization_code_expire_minutes
        self.allow_plain_pkce = allow_plain_pkce
        self.default_scopes = default_scopes or ["read"]

    @property
    def supported_challenge_methods(self) -> list[str]:
        methods = [CodeChallengeMethod.S256.value]
        if self.allow_plain_pkce:
            methods.append(CodeChallengeMethod.PLAIN.value)
        return methods

    @property
    def code_lifetime(self) -> int:
        """Authorization code lifetime in seconds."""
        return self.authorization_code_expire_minutes * 60

    def start_authorization(
        self,
        client_id: str,
        redirect_uri: str,
        scopes: list[str] | None,
        code_challenge: str,
        code_challenge_method: str | None,
        user_id: str,
    ) -> StoredAuthCode:
        """
        Validate an authorization request and mint an authorization code.

        The caller is responsible for having authenticated ``user_id``.

        Args:
            client_id: Registered client id
            redirect_uri: Must equal one of the client's registered URIs exactly
            scopes: Requested scopes; empty means the default scopes
            code_challenge: PKCE challenge
            code_challenge_method: ``S256`` (default) or ``plain``
            user_id: Authenticated resource owner

        Returns:
            The new code in state CODE_ISSUED

        Raises:
            InvalidClientError: Unknown client
            InvalidRequestError: Redirect URI mismatch, bad PKCE parameters, unknown user
            InvalidScopeError: Scopes outside the client's allowed set
        """
        # STARTED: nothing is stored until every check passes
        client = self._store.get_client(client_id)
        if client is None:
            raise InvalidClientError("Unknown client_id", status_code=400)

        if redirect_uri not in client.redirect_uris:
            raise InvalidRequestError("redirect_uri does not match a registered URI")

        method = code_challenge_method or CodeChallengeMethod.S256.value
        if method not in self.supported_challenge_methods:
            raise InvalidRequestError(
                f"Unsupported code_challenge_method: {method}"
            )
        if not pkce.is_valid_code_challenge(code_challenge, method):
            raise InvalidRequestError("Missing or malformed code_challenge")

        requested = list(dict.fromkeys(scopes)) if scopes else [
            s for s in self.default_scopes if s in client.allowed_scopes
        ]
        if not requested:
            raise InvalidScopeError("No scopes requested and no default scope allowed")
        excess = [s for s in requested if s not in client.allowed_scopes]
        if excess:
            raise InvalidScopeError(f"Scopes not allowed for client: {', '.join(excess)}")

        if self._store.get_user(user_id) is None:
            raise InvalidRequestError("Unknown user")

        while True:
            auth_code = StoredAuthCode(
                code=secrets.token_urlsafe(32),
                client_id=client_id,
                redirect_uri=redirect_uri,
                scopes=requested,
                user_id=user_id,
                code_challenge=code_challenge,
                code_challenge_method=CodeChallengeMethod(method),
                expires_at=self._store.now()
                + timedelta(minutes=self.authorization_code_expire_minutes),
                state=AuthorizationState.CODE_ISSUED,
            )
            if self._store.add_authorization_code(auth_code):
                break

        logger.info(
            "Authorization code %s issued to client %s for user %s",
            token_preview(auth_code.code),
            client_id,
            user_id,
        )
        return auth_code

    def exchange_code(
        self,
        code: str,
        client_id: str,
        code_verifier: str,
        redirect_uri: str,
    ) -> IssuedTokens:
        """
        Exchange an authorization code for an access and refresh token pair.

        Checks run in order: the code is live and unused, it belongs to
        ``client_id``, ``redirect_uri`` matches exactly, then PKCE. Marking the
        code used and minting the tokens happen in one critical section.

        Raises:
            InvalidGrantError: On any failed check
        """
        if not code:
            raise InvalidGrantError("Missing authorization code")

        def validate(record: StoredAuthCode) -> None:
            if record.client_id != client_id:
                raise InvalidGrantError("Client ID mismatch")
            if record.redirect_uri != redirect_uri:
                raise InvalidGrantError("Redirect URI mismatch")
            if not pkce.verify(
                code_verifier,
                record.code_challenge,
                record.code_challenge_method.value,
            ):
                raise InvalidGrantError("PKCE verification failed")

        def issue(record: StoredAuthCode) -> IssuedTokens:
            return self._token_issuer.issue_token(
                client_id=record.client_id,
                user_id=record.user_id,
                scopes=record.scopes,
            )

        issued = self._store.exchange_authorization_code(code, validate, issue)
        logger.info(
            "Authorization code %s exchanged by client %s",
            token_preview(code),
            client_id,
        )
        return issued
