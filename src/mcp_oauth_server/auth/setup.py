"""
OAuth2 route registration for FastMCP server.

This module registers the OAuth2 endpoints with FastMCP, using the route
handlers from auth.routes. Closures inject the oauth2_server dependency.
"""

from typing import TYPE_CHECKING

from mcp_oauth_server.core import logger

if TYPE_CHECKING:
    from fastmcp import FastMCP

    from mcp_oauth_server.auth.oauth2_server import OAuth2Server


def setup_oauth2_routes(
    mcp: "FastMCP",
    oauth2_server: "OAuth2Server",
    resource_url: str,
) -> None:
    """
    Register OAuth2 endpoints with FastMCP server.

    Registers:
    - /.well-known/oauth-authorization-server (RFC 8414)
    - /.well-known/oauth-protected-resource (RFC 9728)
    - /register (RFC 7591 - Dynamic Client Registration)
    - /authorize (GET/POST - Authorization flow)
    - /token (Token exchange and refresh)
    - /introspect (RFC 7662)
    - /revoke (RFC 7009)

    Args:
        mcp: FastMCP server instance
        oauth2_server: OAuth2Server instance for authentication
        resource_url: Public URL of the protected MCP endpoint

    Example:
        >>> from fastmcp import FastMCP
        >>> from mcp_oauth_server.auth import OAuth2Server
        >>> from mcp_oauth_server.auth.setup import setup_oauth2_routes
        >>>
        >>> mcp = FastMCP("My Server")
        >>> oauth2_server = OAuth2Server("http://localhost:3009", "secret-key-0123456")
        >>> setup_oauth2_routes(mcp, oauth2_server, "http://localhost:3009/mcp")
    """
    from mcp_oauth_server.auth.routes import (
        authorization_server_metadata,
        authorize_get,
        authorize_post,
        introspect_endpoint,
        protected_resource_metadata,
        register_client,
        revoke_endpoint,
        token_endpoint,
    )

    @mcp.custom_route("/.well-known/oauth-authorization-server", methods=["GET"])
    async def _authorization_server_metadata(request):
        """OAuth 2.0 Authorization Server Metadata (RFC 8414)."""
        return await authorization_server_metadata(request, oauth2_server)

    @mcp.custom_route("/.well-known/oauth-protected-resource", methods=["GET"])
    async def _protected_resource_metadata(request):
        """Protected Resource Metadata (RFC 9728)."""
        return await protected_resource_metadata(request, oauth2_server, resource_url)

    @mcp.custom_route("/register", methods=["POST"])
    async def _register_client(request):
        """Dynamic Client Registration (RFC 7591)."""
        return await register_client(request, oauth2_server)

    @mcp.custom_route("/authorize", methods=["GET"])
    async def _authorize_get(request):
        """Authorization endpoint (GET) - shows login form."""
        return await authorize_get(request, oauth2_server)

    @mcp.custom_route("/authorize", methods=["POST"])
    async def _authorize_post(request):
        """Authorization endpoint (POST) - processes login form."""
        return await authorize_post(request, oauth2_server)

    @mcp.custom_route("/token", methods=["POST"])
    async def _token_endpoint(request):
        """Token endpoint - exchanges authorization codes and refresh tokens."""
        return await token_endpoint(request, oauth2_server)

    @mcp.custom_route("/introspect", methods=["POST"])
    async def _introspect_endpoint(request):
        """Token Introspection (RFC 7662)."""
        return await introspect_endpoint(request, oauth2_server)

    @mcp.custom_route("/revoke", methods=["POST"])
    async def _revoke_endpoint(request):
        """Token Revocation (RFC 7009)."""
        return await revoke_endpoint(request, oauth2_server)

    logger.info("✓ OAuth2 endpoints registered (8 routes)")
