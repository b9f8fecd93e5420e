"""
Main entry point for the MCP OAuth server.

Builds the OAuth 2.1 authorization server from settings, mounts its HTTP
endpoints and MCP tools on a FastMCP instance and runs the selected transport.
"""

import asyncio
import sys
import traceback

from fastmcp import FastMCP

from mcp_oauth_server.auth import OAuth2Server
from mcp_oauth_server.auth.setup import setup_oauth2_routes
from mcp_oauth_server.config import get_settings
from mcp_oauth_server.core import logger
from mcp_oauth_server.middleware.setup import setup_middleware
from mcp_oauth_server.tools import register_oauth_tools

TRANSPORT_MAP = {
    "http": "streamable-http",
    "streamable-http": "streamable-http",
    "sse": "sse",
    "stdio": "stdio",
}


def create_mcp_server() -> tuple[FastMCP, OAuth2Server | None]:
    """
    Create the FastMCP server with the OAuth2 endpoints and tools registered.

    The authorization server is only mounted when ``USE_OAUTH2`` is enabled.

    Returns:
        The FastMCP instance and the OAuth2Server backing it, or None
    """
    settings = get_settings()
    mcp = FastMCP("MCP OAuth Server")

    if not settings.use_oauth2:
        logger.warning("OAuth2 disabled: authorization endpoints and tools are not mounted")
        return mcp, None

    logger.info("Initializing OAuth2 authorization server...")
    oauth2_server = OAuth2Server.from_settings(settings)
    logger.info(f"  - Issuer: {oauth2_server.issuer}")
    logger.info(f"  - Scopes: {', '.join(oauth2_server.scopes)}")
    logger.info(
        "  - PKCE methods: "
        f"{', '.join(oauth2_server.flow.supported_challenge_methods)}"
    )

    setup_oauth2_routes(mcp, oauth2_server, f"{oauth2_server.issuer}/mcp")
    register_oauth_tools(mcp, oauth2_server)

    return mcp, oauth2_server


async def main() -> None:
    """
    Main async function to run the MCP server.
    """
    settings = get_settings()

    try:
        mcp, oauth2_server = create_mcp_server()
    except Exception as e:
        logger.error(f"Failed to initialize FastMCP server: {e}")
        logger.error(f"Traceback: {traceback.format_exc()}")
        sys.exit(1)

    transport = settings.transport.lower()
    fastmcp_transport = TRANSPORT_MAP.get(transport, "stdio")
    logger.info(f"Transport mode: {fastmcp_transport}")

    # Flush output before starting server
    sys.stdout.flush()
    sys.stderr.flush()

    try:
        if fastmcp_transport in ("streamable-http", "sse"):
            middleware = setup_middleware(
                use_oauth2=oauth2_server is not None,
                oauth2_server=oauth2_server,
            )
            logger.info(
                "Setting up %s server on %s:%s...",
                fastmcp_transport,
                settings.host,
                settings.port,
            )
            await mcp.run_async(
                transport=fastmcp_transport,  # type: ignore[arg-type]
                host=settings.host,
                port=settings.port,
                middleware=middleware,
            )
        else:
            logger.info("Setting up stdio server...")
            await mcp.run_async(transport="stdio")
    except Exception as e:
        logger.error(f"Error in main function: {e}")
        logger.error(f"Traceback: {traceback.format_exc()}")
        raise


def run() -> None:
    """Console script entry point."""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Server stopped")


if __name__ == "__main__":
    run()
