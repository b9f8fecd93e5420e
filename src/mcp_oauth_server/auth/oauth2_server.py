"""
OAuth2 Authorization Server for MCP.

Implements OAuth 2.1 with PKCE according to MCP specification.
Supports Dynamic Client Registration (RFC 7591), Token Introspection (RFC 7662)
and Token Revocation (RFC 7009).
"""

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

from mcp_oauth_server.auth.credential_store import CredentialStore
from mcp_oauth_server.auth.flow import AuthorizationFlowController
from mcp_oauth_server.auth.introspection import IntrospectionService
from mcp_oauth_server.auth.registrar import ClientRegistrar, pwd_context
from mcp_oauth_server.auth.storage import IssuedTokens, StoredClient, StoredUser
from mcp_oauth_server.auth.tokens import TokenIssuer
from mcp_oauth_server.core import (
    ConfigurationError,
    InvalidClientError,
    InvalidRequestError,
    TokenValidationError,
    UnsupportedGrantTypeError,
)

logger = logging.getLogger(__name__)

GRANT_TYPES = ["authorization_code", "refresh_token"]

DEMO_CLIENT_ID = "demo-client-123"
DEMO_CLIENT_NAME = "Demo MCP Client"
DEMO_REDIRECT_URIS = ["http://localhost:3000/callback", "mcp://auth/callback"]
DEMO_USER_ID = "user-123"
DEMO_USERNAME = "demo"


def _split_scope(scope: str | list[str] | None) -> list[str]:
    if scope is None:
        return []
    if isinstance(scope, str):
        return scope.split()
    return list(scope)


class OAuth2Server:
    """
    OAuth2 Authorization Server implementing MCP specification.

    Features:
    - OAuth 2.1 authorization code flow with PKCE (S256, optionally plain)
    - Signed JWT access tokens with rotating refresh tokens
    - Dynamic Client Registration (RFC 7591)
    - Authorization Server Metadata (RFC 8414)
    - Protected Resource Metadata (RFC 9728)
    - Token Introspection (RFC 7662) and Revocation (RFC 7009)
    """

    def __init__(
        self,
        issuer: str,
        secret_key: str,
        algorithm: str = "HS256",
        access_token_expire_minutes: int = 60,
        authorization_code_expire_minutes: int = 10,
        refresh_token_expire_minutes: int = 30 * 24 * 60,
        scopes: list[str] | None = None,
        default_scopes: list[str] | None = None,
        allow_plain_pkce: bool = True,
        require_https_redirects: bool = False,
        clock: Callable[[], datetime] | None = None,
    ):
        """
        Initialize OAuth2 server.

        Args:
            issuer: OAuth2 issuer URL (e.g., "https://your-server.com")
            secret_key: Secret key for JWT signing, fixed for the process lifetime
            algorithm: JWT algorithm (default: HS256)
            access_token_expire_minutes: Access token expiration (default: 60 minutes)
            authorization_code_expire_minutes: Auth code expiration (default: 10 minutes)
            refresh_token_expire_minutes: Refresh token expiration (default: 30 days)
            scopes: Scopes this server can grant
            default_scopes: Scopes used when a request names none
            allow_plain_pkce: Accept the deprecated ``plain`` PKCE method
            require_https_redirects: Reject non-loopback http redirect URIs
            clock: Source of the current UTC time (tests inject a fake clock)
        """
        self.issuer = issuer.rstrip("/")
        self.scopes = scopes or ["read", "write", "admin"]
        self.default_scopes = default_scopes or ["read"]

        self.store = CredentialStore(clock=clock)
        self.token_issuer = TokenIssuer(
            self.store,
            issuer=self.issuer,
            secret_key=secret_key,
            algorithm=algorithm,
            access_token_expire_minutes=access_token_expire_minutes,
            refresh_token_expire_minutes=refresh_token_expire_minutes,
        )
        self.registrar = ClientRegistrar(
            self.store,
            supported_scopes=self.scopes,
            default_scopes=self.default_scopes,
            require_https_redirects=require_https_redirects,
        )
        self.flow = AuthorizationFlowController(
            self.store,
            self.token_issuer,
            authorization_code_expire_minutes=authorization_code_expire_minutes,
            allow_plain_pkce=allow_plain_pkce,
            default_scopes=self.default_scopes,
        )
        self.introspection = IntrospectionService(self.store, self.token_issuer)

    @classmethod
    def from_settings(cls, settings: Any) -> "OAuth2Server":
        """Build a server from application settings, seeding demo data if enabled.

        Raises:
            ConfigurationError: If https redirects are enforced but the JWT
                signing key is still the development default
        """
        if settings.oauth2_require_https_redirects and settings.uses_default_secret():
            raise ConfigurationError(
                "OAUTH2_SECRET_KEY must be set when OAUTH2_REQUIRE_HTTPS_REDIRECTS is enabled"
            )

        server = cls(
            issuer=settings.oauth2_issuer,
            secret_key=settings.oauth2_secret_key,
            algorithm=settings.oauth2_algorithm,
            access_token_expire_minutes=settings.oauth2_access_token_expire_minutes,
            authorization_code_expire_minutes=settings.oauth2_authorization_code_expire_minutes,
            refresh_token_expire_minutes=settings.oauth2_refresh_token_expire_minutes,
            scopes=settings.get_oauth2_scopes_list(),
            default_scopes=settings.get_oauth2_default_scopes_list(),
            allow_plain_pkce=settings.oauth2_allow_plain_pkce,
            require_https_redirects=settings.oauth2_require_https_redirects,
        )
        if settings.oauth2_seed_demo_data:
            server.seed_demo_data(settings.oauth2_demo_password)
        logger.info("OAuth2 server ready (issuer: %s)", server.issuer)
        return server

    # ========== Users ==========

    def add_user(self, user_id: str, username: str, password: str) -> StoredUser:
        """Register a resource owner with a hashed password."""
        user = StoredUser(
            user_id=user_id,
            username=username,
            password_hash=pwd_context.hash(password),
        )
        if not self.store.add_user(user):
            raise InvalidRequestError(f"User already exists: {user_id}")
        return user

    def authenticate_user(self, username: str, password: str) -> StoredUser | None:
        """Check a username/password pair. Returns the user or None."""
        user = self.store.find_user_by_username(username)
        if user is None or not password:
            return None
        if not pwd_context.verify(password, user.password_hash):
            return None
        return user

    def seed_demo_data(self, demo_password: str) -> None:
        """Register the demo client and demo user."""
        if self.store.get_client(DEMO_CLIENT_ID) is None:
            self.registrar.register(
                name=DEMO_CLIENT_NAME,
                redirect_uris=DEMO_REDIRECT_URIS,
                scopes=[s for s in ("read", "write", "admin") if s in self.scopes],
                client_id=DEMO_CLIENT_ID,
            )
        if self.store.get_user(DEMO_USER_ID) is None:
            self.add_user(DEMO_USER_ID, DEMO_USERNAME, demo_password)
        logger.info("Seeded demo client %s and demo user %s", DEMO_CLIENT_ID, DEMO_USERNAME)

    # ========== Metadata ==========

    def get_authorization_server_metadata(self) -> dict:
        """
        Get OAuth 2.0 Authorization Server Metadata (RFC 8414).

        Returns:
            Authorization server metadata
        """
        return {
            "issuer": self.issuer,
            "authorization_endpoint": f"{self.issuer}/authorize",
            "token_endpoint": f"{self.issuer}/token",
            "registration_endpoint": f"{self.issuer}/register",
            "introspection_endpoint": f"{self.issuer}/introspect",
            "revocation_endpoint": f"{self.issuer}/revoke",
            "scopes_supported": list(self.scopes),
            "response_types_supported": ["code"],
            "grant_types_supported": list(GRANT_TYPES),
            "code_challenge_methods_supported": self.flow.supported_challenge_methods,
            "token_endpoint_auth_methods_supported": ["none", "client_secret_post"],
        }

    def get_protected_resource_metadata(self, resource_url: str) -> dict:
        """
        Get Protected Resource Metadata (RFC 9728).

        Args:
            resource_url: MCP server URL

        Returns:
            Protected resource metadata
        """
        return {
            "resource": resource_url,
            "authorization_servers": [self.issuer],
            "scopes_supported": list(self.scopes),
            "bearer_methods_supported": ["header"],
            "resource_signing_alg_values_supported": [self.token_issuer.algorithm],
        }

    # ========== Operations ==========

    def get_client(self, client_id: str) -> StoredClient | None:
        return self.store.get_client(client_id)

    def register_client(
        self,
        client_name: str,
        redirect_uris: list[str],
        scopes: list[str] | None = None,
        confidential: bool = False,
    ) -> dict:
        """
        Register a new OAuth2 client (Dynamic Client Registration - RFC 7591).

        Returns:
            Registration response; ``client_secret`` appears only for
            confidential clients and only in this response
        """
        client, client_secret = self.registrar.register(
            name=client_name,
            redirect_uris=redirect_uris,
            scopes=scopes,
            confidential=confidential,
        )
        response = {
            "client_id": client.client_id,
            "client_name": client.client_name,
            "redirect_uris": list(client.redirect_uris),
            "scope": " ".join(client.allowed_scopes),
            "grant_types": list(GRANT_TYPES),
            "response_types": ["code"],
            "token_endpoint_auth_method": (
                "client_secret_post" if client_secret else "none"
            ),
            "client_id_issued_at": int(client.created_at.timestamp()),
        }
        if client_secret:
            response["client_secret"] = client_secret
        return response

    def authorize(
        self,
        client_id: str,
        redirect_uri: str,
        scopes: str | list[str] | None,
        code_challenge: str,
        code_challenge_method: str | None,
        user_id: str,
    ) -> dict:
        """
        Create an authorization code for an authenticated user.

        Returns:
            ``{"code": ..., "expires_in": ...}``
        """
        auth_code = self.flow.start_authorization(
            client_id=client_id,
            redirect_uri=redirect_uri,
            scopes=_split_scope(scopes),
            code_challenge=code_challenge,
            code_challenge_method=code_challenge_method,
            user_id=user_id,
        )
        return {"code": auth_code.code, "expires_in": self.flow.code_lifetime}

    def token(self, grant_type: str | None, /, **params: Any) -> dict:
        """
        Token endpoint operation for both supported grants.

        ``authorization_code`` requires ``code``, ``client_id``, ``code_verifier``
        and ``redirect_uri``. ``refresh_token`` requires ``refresh_token`` and
        accepts ``client_id`` and a narrower ``scope``. Confidential clients must
        also send ``client_secret``.

        Returns:
            RFC 6749 token response
        """
        if grant_type == "authorization_code":
            required = ("code", "client_id", "code_verifier", "redirect_uri")
            missing = [name for name in required if not params.get(name)]
            if missing:
                raise InvalidRequestError(f"Missing parameters: {', '.join(missing)}")

            self._authenticate_client(params["client_id"], params.get("client_secret"))
            issued = self.flow.exchange_code(
                code=params["code"],
                client_id=params["client_id"],
                code_verifier=params["code_verifier"],
                redirect_uri=params["redirect_uri"],
            )
            return issued.to_response()

        if grant_type == "refresh_token":
            if not params.get("refresh_token"):
                raise InvalidRequestError("Missing parameters: refresh_token")

            client_id = params.get("client_id") or None
            if client_id:
                self._authenticate_client(client_id, params.get("client_secret"))
            issued = self.refresh(
                params["refresh_token"],
                client_id=client_id,
                scopes=_split_scope(params.get("scope")) or None,
            )
            return issued.to_response()

        raise UnsupportedGrantTypeError(f"Unsupported grant_type: {grant_type}")

    def refresh(
        self,
        refresh_token: str,
        client_id: str | None = None,
        scopes: list[str] | None = None,
    ) -> IssuedTokens:
        """Rotate a refresh token into a new token pair."""
        return self.token_issuer.refresh(refresh_token, client_id=client_id, scopes=scopes)

    def introspect(self, token: str | None) -> dict:
        """Token introspection (RFC 7662). Never raises."""
        return self.introspection.introspect(token)

    def revoke(self, token: str | None, token_type_hint: str | None = None) -> None:
        """Token revocation (RFC 7009). Idempotent."""
        self.introspection.revoke(token, token_type_hint)

    def validate_access_token(self, token: str) -> dict | None:
        """
        Validate access token for a protected resource.

        The token must still be in the store (not revoked or rotated away) and
        carry a valid signature.

        Returns:
            Token payload if valid, None otherwise
        """
        record = self.store.get_access_token(token)
        if record is None:
            return None
        try:
            return self.token_issuer.verify(token, audience=record.client_id)
        except TokenValidationError:
            return None

    def _authenticate_client(self, client_id: str, client_secret: str | None) -> None:
        client = self.store.get_client(client_id)
        if client is None:
            raise InvalidClientError("Unknown client_id")
        if not self.registrar.verify_client_secret(client_id, client_secret):
            raise InvalidClientError("Invalid client credentials")
