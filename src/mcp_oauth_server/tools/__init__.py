"""
MCP Tools Package.

Each module provides a register_*_tools() function to register tools with FastMCP.
"""

from mcp_oauth_server.tools.oauth import register_oauth_tools

__all__ = ["register_oauth_tools"]
