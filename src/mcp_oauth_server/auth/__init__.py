"""OAuth 2.1 authorization server with PKCE.

This module provides the authorization core (credential store, PKCE verifier,
token issuer, authorization flow, client registrar, introspection/revocation)
and its HTTP surface for FastMCP.
"""

from mcp_oauth_server.auth.credential_store import CredentialStore
from mcp_oauth_server.auth.flow import AuthorizationFlowController
from mcp_oauth_server.auth.introspection import IntrospectionService
from mcp_oauth_server.auth.middleware import APIKeyMiddleware, DualAuthMiddleware
from mcp_oauth_server.auth.oauth2_server import OAuth2Server
from mcp_oauth_server.auth.registrar import ClientRegistrar
from mcp_oauth_server.auth.tokens import TokenIssuer

__all__ = [
    "APIKeyMiddleware",
    "AuthorizationFlowController",
    "ClientRegistrar",
    "CredentialStore",
    "DualAuthMiddleware",
    "IntrospectionService",
    "OAuth2Server",
    "TokenIssuer",
]
