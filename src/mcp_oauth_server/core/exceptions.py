"""Custom exceptions for the MCP OAuth server."""


class MCPToolError(Exception):
    """Custom exception for MCP tool errors that should be returned as JSON-RPC errors."""

    def __init__(self, message: str, code: int = -32000):
        self.message = message
        self.code = code
        super().__init__(message)


# ========================================
# Base Exceptions
# ========================================


class MCPOAuthError(Exception):
    """Base exception for all MCP OAuth server errors."""


class ConfigurationError(MCPOAuthError):
    """Configuration validation failed."""


# ========================================
# OAuth Protocol Exceptions
# ========================================


class OAuthError(MCPOAuthError):
    """An OAuth 2.x protocol error surfaced to the caller.

    The ``error`` code and ``description`` are safe to return to clients and to
    log; they never carry secrets or internal store state.
    """

    error = "server_error"
    status_code = 400

    def __init__(self, description: str, *, status_code: int | None = None):
        self.description = description
        if status_code is not None:
            self.status_code = status_code
        super().__init__(f"{self.error}: {description}")

    def to_dict(self) -> dict[str, str]:
        """Render as an RFC 6749 error response body."""
        return {"error": self.error, "error_description": self.description}


class InvalidRequestError(OAuthError):
    """Malformed or missing request parameters."""

    error = "invalid_request"


class InvalidClientError(OAuthError):
    """Unknown or unauthenticated client."""

    error = "invalid_client"
    status_code = 401


class InvalidGrantError(OAuthError):
    """Bad, expired or used authorization code or refresh token."""

    error = "invalid_grant"


class InvalidScopeError(OAuthError):
    """Requested scope exceeds what the client may ask for."""

    error = "invalid_scope"


class UnsupportedGrantTypeError(OAuthError):
    error = "unsupported_grant_type"


class UnsupportedResponseTypeError(OAuthError):
    error = "unsupported_response_type"


class InvalidRedirectURIError(OAuthError):
    """Redirect URI rejected at client registration (RFC 7591)."""

    error = "invalid_redirect_uri"


# ========================================
# Token Exceptions
# ========================================


class TokenValidationError(MCPOAuthError):
    """Access token signature, issuer, audience or expiry check failed."""
