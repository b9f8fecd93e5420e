"""Dynamic client registration (RFC 7591)."""

import ipaddress
import logging
import secrets
from collections.abc import Iterable
from urllib.parse import urlsplit

from passlib.context import CryptContext

from mcp_oauth_server.auth.credential_store import CredentialStore
from mcp_oauth_server.auth.storage import StoredClient
from mcp_oauth_server.core import (
    InvalidRedirectURIError,
    InvalidRequestError,
    InvalidScopeError,
)

logger = logging.getLogger(__name__)

# Hashing context shared by client secrets and user passwords
pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

LOOPBACK_HOSTS = {"localhost"}


def is_loopback_host(host: str | None) -> bool:
    """Check whether a redirect host points back at the user's own machine."""
    if not host:
        return False
    if host.lower() in LOOPBACK_HOSTS:
        return True
    try:
        return ipaddress.ip_address(host).is_loopback
    except ValueError:
        return False


def validate_redirect_uri(uri: str, require_https: bool = False) -> None:
    """
    Validate a redirect URI according to OAuth 2.1 rules.

    Accepts absolute URIs only: ``https`` anywhere, ``http`` on loopback (or
    anywhere when ``require_https`` is off), and custom schemes for native apps
    such as ``mcp://auth/callback``. Fragments are never allowed.

    Raises:
        InvalidRedirectURIError: If the URI is rejected
    """
    if not uri or uri != uri.strip():
        raise InvalidRedirectURIError(f"Invalid redirect URI: {uri!r}")

    try:
        parts = urlsplit(uri)
    except ValueError as e:
        raise InvalidRedirectURIError(f"Invalid redirect URI: {uri!r}") from e

    if not parts.scheme or not (parts.netloc or parts.path):
        raise InvalidRedirectURIError(f"Redirect URI must be absolute: {uri!r}")
    if parts.fragment or "#" in uri:
        raise InvalidRedirectURIError(
            f"Redirect URI must not contain a fragment: {uri!r}"
        )

    scheme = parts.scheme.lower()
    if scheme in ("http", "https"):
        if not parts.hostname:
            raise InvalidRedirectURIError(f"Redirect URI has no host: {uri!r}")
        if scheme == "http" and require_https and not is_loopback_host(parts.hostname):
            raise InvalidRedirectURIError(
                f"Redirect URI must use https unless it is a loopback address: {uri!r}"
            )


class ClientRegistrar:
    """Registers OAuth clients in the credential store."""

    def __init__(
        self,
        store: CredentialStore,
        supported_scopes: Iterable[str],
        default_scopes: Iterable[str] = ("read",),
        require_https_redirects: bool = False,
    ):
        self._store = store
        self.supported_scopes = list(supported_scopes)
        self.default_scopes = list(default_scopes)
        self.require_https_redirects = require_https_redirects

    def register(
        self,
        name: str,
        redirect_uris: list[str],
        scopes: list[str] | None = None,
        confidential: bool = False,
        client_id: str | None = None,
    ) -> tuple[StoredClient, str | None]:
        """
        Register a new OAuth client.

        Args:
            name: Client application name
            redirect_uris: Allowed redirect URIs, matched byte-exactly later
            scopes: Scopes the client may request (default: the server's default scopes)
            confidential: Also generate a client secret
            client_id: Fixed identifier, used for seeded clients only

        Returns:
            The registered client and, for confidential clients, the plaintext
            secret. The secret is never stored and cannot be retrieved again.

        Raises:
            InvalidRequestError: Missing name or redirect URIs, or duplicate client id
            InvalidRedirectURIError: A redirect URI is malformed or insecure
            InvalidScopeError: A scope is not supported by this server
        """
        if not name or not name.strip():
            raise InvalidRequestError("client_name is required")
        if not redirect_uris:
            raise InvalidRequestError("At least one redirect URI is required")

        for uri in redirect_uris:
            validate_redirect_uri(uri, require_https=self.require_https_redirects)

        scopes = list(dict.fromkeys(scopes)) if scopes else list(self.default_scopes)
        unknown = [s for s in scopes if s not in self.supported_scopes]
        if unknown:
            raise InvalidScopeError(f"Unsupported scopes: {', '.join(unknown)}")

        client_secret = secrets.token_urlsafe(32) if confidential else None

        client = StoredClient(
            client_id=client_id or f"client-{secrets.token_urlsafe(16)}",
            client_name=name.strip(),
            redirect_uris=list(dict.fromkeys(redirect_uris)),
            allowed_scopes=scopes,
            client_secret_hash=pwd_context.hash(client_secret) if client_secret else None,
            created_at=self._store.now(),
        )

        if not self._store.add_client(client):
            raise InvalidRequestError(f"Client already registered: {client.client_id}")

        logger.info(
            "Registered client %s (%s), confidential=%s",
            client.client_id,
            client.client_name,
            confidential,
        )
        return client, client_secret

    def verify_client_secret(self, client_id: str, client_secret: str | None) -> bool:
        """Check a confidential client's secret. Public clients always pass."""
        client = self._store.get_client(client_id)
        if client is None:
            return False
        if client.client_secret_hash is None:
            return True
        if not client_secret:
            return False
        return pwd_context.verify(client_secret, client.client_secret_hash)
