"""MCP server with an OAuth 2.1 authorization server (PKCE, DCR, introspection)."""

__version__ = "0.1.0"
