"""
Bearer authentication middleware for the MCP endpoint.

``APIKeyMiddleware`` accepts only the static ``MCP_API_KEY``. ``DualAuthMiddleware``
accepts OAuth2 access tokens issued by this server and falls back to the same
API key check.
"""

import secrets

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from mcp_oauth_server.auth.oauth2_server import OAuth2Server
from mcp_oauth_server.config import get_settings

PUBLIC_PATHS = ["/health", "/ping", "/healthz"]

OAUTH2_PATHS = [
    "/.well-known/oauth-authorization-server",
    "/.well-known/oauth-protected-resource",
    "/authorize",
    "/token",
    "/register",
    "/introspect",
    "/revoke",
]


def bearer_token(request: Request) -> str | None:
    """Extract the token from ``Authorization: Bearer <token>``."""
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header[7:] or None


class APIKeyMiddleware(BaseHTTPMiddleware):
    """
    Static API key authentication.

    Requests pass through untouched when no ``MCP_API_KEY`` is configured.
    """

    rejection_message = "Invalid API key"

    def __init__(self, app, issuer: str | None = None):
        """
        Initialize middleware.

        Args:
            app: ASGI application
            issuer: Authorization server issuer, advertised in 401 challenges
        """
        super().__init__(app)
        self.issuer = issuer
        self.settings = get_settings()

    def is_public(self, path: str) -> bool:
        return path in PUBLIC_PATHS

    def authenticate(self, request: Request, token: str) -> bool:
        return self._check_api_key(request, token)

    def _enabled(self) -> bool:
        return bool(self.settings.mcp_api_key)

    async def dispatch(self, request: Request, call_next):
        if self.is_public(request.url.path) or not self._enabled():
            return await call_next(request)

        token = bearer_token(request)
        if token is None:
            return self._unauthorized_response("Missing or invalid Authorization header")

        if self.authenticate(request, token):
            return await call_next(request)

        return self._unauthorized_response(self.rejection_message)

    def _check_api_key(self, request: Request, token: str) -> bool:
        expected_key = self.settings.mcp_api_key
        if expected_key and secrets.compare_digest(token.encode(), expected_key.encode()):
            request.state.auth_type = "api_key"
            return True
        return False

    def _unauthorized_response(self, message: str) -> JSONResponse:
        """Create 401 Unauthorized response with WWW-Authenticate header."""
        if self.issuer:
            resource_metadata_url = f"{self.issuer}/.well-known/oauth-protected-resource"
            challenge = f'Bearer resource_metadata="{resource_metadata_url}"'
        else:
            challenge = 'Bearer realm="MCP Server"'

        return JSONResponse(
            {
                "error": "Unauthorized",
                "message": message,
            },
            status_code=401,
            headers={"WWW-Authenticate": challenge},
        )


class DualAuthMiddleware(APIKeyMiddleware):
    """
    Middleware supporting both API Key and OAuth2 authentication.

    Authentication methods (in order of precedence):
    1. OAuth2 Bearer token (Authorization: Bearer <token>)
    2. API Key (Authorization: Bearer <api_key>)

    The OAuth2 endpoints themselves are public. If neither credential is
    valid, returns 401 Unauthorized pointing at the protected resource metadata.
    """

    rejection_message = "Invalid access token or API key"

    def __init__(self, app, oauth2_server: OAuth2Server):
        super().__init__(app, issuer=oauth2_server.issuer)
        self.oauth2_server = oauth2_server

    def is_public(self, path: str) -> bool:
        return super().is_public(path) or any(path.startswith(p) for p in OAUTH2_PATHS)

    def _enabled(self) -> bool:
        return True

    def authenticate(self, request: Request, token: str) -> bool:
        token_payload = self.oauth2_server.validate_access_token(token)

        if token_payload:
            request.state.auth_type = "oauth2"
            request.state.client_id = token_payload.get("client_id")
            request.state.user_id = token_payload.get("sub")
            request.state.scope = token_payload.get("scope")
            return True

        return self._check_api_key(request, token)
