"""
OAuth tools for MCP server.

This module exposes the authorization server through MCP tools so that an
MCP client can walk the whole OAuth 2.1 + PKCE flow without a browser:
- generate_pkce: Create a code verifier / challenge pair
- get_oauth_discovery: Authorization server metadata
- register_oauth_client: Dynamic client registration
- start_oauth_flow: Log in and obtain an authorization code
- exchange_auth_code: Trade the code for tokens
- refresh_access_token: Rotate a refresh token
- introspect_token / revoke_token: Token lifecycle
- get_protected_data: Example protected resource
"""

import json
import logging
from typing import TYPE_CHECKING

from mcp_oauth_server.auth import pkce
from mcp_oauth_server.core import MCPToolError, track_request

if TYPE_CHECKING:
    from fastmcp import FastMCP

    from mcp_oauth_server.auth.oauth2_server import OAuth2Server

logger = logging.getLogger(__name__)


def register_oauth_tools(mcp: "FastMCP", oauth2_server: "OAuth2Server") -> None:
    """
    Register OAuth MCP tools.

    Args:
        mcp: FastMCP instance to register tools with
        oauth2_server: Authorization server the tools operate on
    """

    @mcp.tool()
    @track_request("generate_pkce")
    async def generate_pkce() -> str:
        """
        Generate a PKCE code verifier and S256 code challenge for testing.

        Use the code_challenge with start_oauth_flow and keep the code_verifier
        for exchange_auth_code.

        Returns:
            JSON string with code_verifier, code_challenge and code_challenge_method
        """
        code_verifier, code_challenge = pkce.generate_pkce_pair()
        return json.dumps(
            {
                "code_verifier": code_verifier,
                "code_challenge": code_challenge,
                "code_challenge_method": "S256",
            },
            indent=2,
        )

    @mcp.tool()
    @track_request("get_oauth_discovery")
    async def get_oauth_discovery() -> str:
        """
        Get OAuth 2.1 authorization server metadata (RFC 8414).

        Returns:
            JSON string with endpoints, scopes, grant types and PKCE methods
        """
        return json.dumps(oauth2_server.get_authorization_server_metadata(), indent=2)

    @mcp.tool()
    @track_request("register_oauth_client")
    async def register_oauth_client(
        client_name: str,
        redirect_uris: list[str],
        scopes: list[str] | None = None,
        confidential: bool = False,
    ) -> str:
        """
        Register a new OAuth client.

        Args:
            client_name: Name of the client application
            redirect_uris: Allowed redirect URIs
            scopes: Scopes the client may request (default: read)
            confidential: Also issue a client secret, shown only once

        Returns:
            JSON string with the registration response
        """
        response = oauth2_server.register_client(
            client_name=client_name,
            redirect_uris=redirect_uris,
            scopes=scopes,
            confidential=confidential,
        )
        return json.dumps(response, indent=2)

    @mcp.tool()
    @track_request("start_oauth_flow")
    async def start_oauth_flow(
        client_id: str,
        redirect_uri: str,
        code_challenge: str,
        username: str,
        password: str,
        scopes: list[str] | None = None,
        code_challenge_method: str = "S256",
    ) -> str:
        """
        Start the OAuth 2.1 authorization flow with PKCE.

        Authenticates the user and issues a short-lived, single-use
        authorization code bound to the code challenge.

        Args:
            client_id: OAuth client ID
            redirect_uri: One of the client's registered redirect URIs
            code_challenge: PKCE code challenge
            username: Resource owner's username
            password: Resource owner's password
            scopes: Requested scopes (default: read)
            code_challenge_method: S256 (recommended) or plain

        Returns:
            JSON string with the authorization code and its lifetime
        """
        user = oauth2_server.authenticate_user(username, password)
        if user is None:
            raise MCPToolError("access_denied: Invalid username or password")

        result = oauth2_server.authorize(
            client_id=client_id,
            redirect_uri=redirect_uri,
            scopes=scopes,
            code_challenge=code_challenge,
            code_challenge_method=code_challenge_method,
            user_id=user.user_id,
        )

        return json.dumps({**result, "user": user.username}, indent=2)

    @mcp.tool()
    @track_request("exchange_auth_code")
    async def exchange_auth_code(
        code: str,
        client_id: str,
        code_verifier: str,
        redirect_uri: str,
        client_secret: str | None = None,
    ) -> str:
        """
        Exchange an authorization code for an access token.

        Args:
            code: Authorization code from start_oauth_flow
            client_id: OAuth client ID
            code_verifier: PKCE code verifier
            redirect_uri: Redirect URI (must match the authorization request)
            client_secret: Client secret, for confidential clients only

        Returns:
            JSON string with access_token, refresh_token, expires_in and scope
        """
        response = oauth2_server.token(
            "authorization_code",
            code=code,
            client_id=client_id,
            code_verifier=code_verifier,
            redirect_uri=redirect_uri,
            client_secret=client_secret,
        )
        return json.dumps(response, indent=2)

    @mcp.tool()
    @track_request("refresh_access_token")
    async def refresh_access_token(
        refresh_token: str,
        client_id: str | None = None,
        scope: str | None = None,
    ) -> str:
        """
        Rotate a refresh token into a new access/refresh token pair.

        The presented refresh token stops working immediately.

        Args:
            refresh_token: Refresh token from a previous token response
            client_id: OAuth client ID the token was issued to
            scope: Optional space-separated narrower scope

        Returns:
            JSON string with the new token response
        """
        response = oauth2_server.token(
            "refresh_token",
            refresh_token=refresh_token,
            client_id=client_id,
            scope=scope,
        )
        return json.dumps(response, indent=2)

    @mcp.tool()
    @track_request("introspect_token")
    async def introspect_token(token: str) -> str:
        """
        Introspect an access or refresh token (RFC 7662).

        Args:
            token: Token to introspect

        Returns:
            JSON string; ``{"active": false}`` for unknown, expired or revoked tokens
        """
        return json.dumps(oauth2_server.introspect(token), indent=2)

    @mcp.tool()
    @track_request("revoke_token")
    async def revoke_token(token: str) -> str:
        """
        Revoke an access or refresh token (RFC 7009).

        Args:
            token: Token to revoke

        Returns:
            Confirmation message (also for unknown tokens)
        """
        oauth2_server.revoke(token)
        return "Token revoked"

    @mcp.tool()
    @track_request("get_protected_data")
    async def get_protected_data(access_token: str) -> str:
        """
        Get protected user data (requires a valid access token).

        Args:
            access_token: OAuth access token

        Returns:
            JSON string with the user, client, scopes and token expiry
        """
        claims = oauth2_server.validate_access_token(access_token)
        if claims is None:
            raise MCPToolError("invalid_token: Invalid or expired access token")

        user = oauth2_server.store.get_user(claims["sub"])
        if user is None:
            raise MCPToolError("invalid_token: User not found")

        return json.dumps(
            {
                "user_id": user.user_id,
                "username": user.username,
                "client_id": claims["client_id"],
                "scopes": claims["scope"].split(),
                "expires_at": claims["exp"],
            },
            indent=2,
        )

    logger.info("OAuth tools registered")
