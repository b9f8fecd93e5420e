"""Core functionality for the MCP OAuth server."""

from .decorators import track_request
from .exceptions import (
    ConfigurationError,
    InvalidClientError,
    InvalidGrantError,
    InvalidRedirectURIError,
    InvalidRequestError,
    InvalidScopeError,
    MCPOAuthError,
    MCPToolError,
    OAuthError,
    TokenValidationError,
    UnsupportedGrantTypeError,
    UnsupportedResponseTypeError,
)
from .logging import configure_logging, logger, token_preview

__all__ = [
    # Core
    "MCPToolError",
    "configure_logging",
    "logger",
    "token_preview",
    "track_request",
    # Errors
    "ConfigurationError",
    "InvalidClientError",
    "InvalidGrantError",
    "InvalidRedirectURIError",
    "InvalidRequestError",
    "InvalidScopeError",
    "MCPOAuthError",
    "OAuthError",
    "TokenValidationError",
    "UnsupportedGrantTypeError",
    "UnsupportedResponseTypeError",
]
