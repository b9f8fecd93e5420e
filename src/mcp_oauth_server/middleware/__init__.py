"""Middleware selection for the MCP HTTP transports."""

from mcp_oauth_server.middleware.setup import setup_middleware

__all__ = ["setup_middleware"]
