"""
Middleware configuration for FastMCP server.

This module provides a clean interface to configure authentication
middleware based on application settings:
- OAuth2 + API Key dual authentication
- API Key only authentication
- no authentication
"""

from typing import TYPE_CHECKING, List, Optional

from starlette.middleware import Middleware
from starlette.middleware.sessions import SessionMiddleware

from mcp_oauth_server.auth.middleware import APIKeyMiddleware, DualAuthMiddleware
from mcp_oauth_server.config import get_settings
from mcp_oauth_server.core import logger

if TYPE_CHECKING:
    from mcp_oauth_server.auth import OAuth2Server


def setup_middleware(
    use_oauth2: bool = False,
    oauth2_server: Optional["OAuth2Server"] = None,
) -> List[Middleware]:
    """
    Configure authentication middleware based on settings.

    Authentication modes:
    1. OAuth2 + API Key (dual): Requires oauth2_server parameter
       - SessionMiddleware (login session for the authorization form)
       - DualAuthMiddleware (OAuth2 + API Key validation)

    2. API Key only: Uses settings.mcp_api_key
       - APIKeyMiddleware (API Key validation, no OAuth2 endpoints mounted)

    3. No authentication: Returns empty list

    Args:
        use_oauth2: Enable OAuth2 + API Key dual authentication
        oauth2_server: OAuth2Server instance (required if use_oauth2=True)

    Returns:
        List of configured Middleware instances

    Raises:
        ValueError: If use_oauth2=True but oauth2_server is None

    Example:
        >>> from mcp_oauth_server.auth import OAuth2Server
        >>> from mcp_oauth_server.middleware.setup import setup_middleware
        >>>
        >>> oauth2_server = OAuth2Server("http://localhost:3009", "secret-key-0123456")
        >>> middleware = setup_middleware(use_oauth2=True, oauth2_server=oauth2_server)
    """
    settings = get_settings()
    middleware = []

    if use_oauth2:
        if not oauth2_server:
            raise ValueError(
                "oauth2_server parameter is required when use_oauth2=True"
            )

        middleware.append(
            Middleware(SessionMiddleware, secret_key=settings.session_secret_key)
        )
        logger.info("✓ Session middleware enabled")

        middleware.append(
            Middleware(DualAuthMiddleware, oauth2_server=oauth2_server)
        )
        logger.info("✓ OAuth2 + API Key dual authentication enabled")

    elif settings.mcp_api_key:
        middleware.append(Middleware(APIKeyMiddleware))
        logger.info("✓ API Key authentication enabled")

    else:
        logger.warning("⚠ No authentication middleware configured")

    return middleware
