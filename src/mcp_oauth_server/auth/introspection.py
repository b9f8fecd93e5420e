"""Token introspection (RFC 7662) and revocation (RFC 7009)."""

import logging
from typing import Any

from mcp_oauth_server.auth.credential_store import CredentialStore
from mcp_oauth_server.auth.tokens import TokenIssuer
from mcp_oauth_server.core import TokenValidationError, token_preview

logger = logging.getLogger(__name__)

INACTIVE: dict[str, Any] = {"active": False}


class IntrospectionService:
    """Answers token status queries and terminates tokens."""

    def __init__(self, store: CredentialStore, token_issuer: TokenIssuer):
        self._store = store
        self._token_issuer = token_issuer

    def introspect(self, token: str | None) -> dict[str, Any]:
        """
        Report whether a token is currently active, with its claims.

        Never raises: malformed, expired, revoked and unknown tokens are all
        simply ``{"active": False}``.
        """
        if not token:
            return dict(INACTIVE)

        access = self._store.get_access_token(token)
        if access is not None:
            try:
                claims = self._token_issuer.verify(token, audience=access.client_id)
            except TokenValidationError as e:
                logger.debug("Stored token %s failed verification: %s", token_preview(token), e)
                return dict(INACTIVE)

            user = self._store.get_user(access.user_id)
            response = {
                "active": True,
                "client_id": access.client_id,
                "sub": access.user_id,
                "scope": " ".join(access.scopes),
                "exp": claims["exp"],
                "iat": claims["iat"],
                "iss": claims["iss"],
                "aud": claims["aud"],
                "token_type": "Bearer",
            }
            if user is not None:
                response["username"] = user.username
            return response

        refresh = self._store.get_refresh_token(token)
        if refresh is not None:
            return {
                "active": True,
                "client_id": refresh.client_id,
                "sub": refresh.user_id,
                "scope": " ".join(refresh.scopes),
                "exp": int(refresh.expires_at.timestamp()),
                "token_type": "refresh_token",
            }

        return dict(INACTIVE)

    def revoke(self, token: str | None, token_type_hint: str | None = None) -> None:
        """
        Revoke an access token, refresh token or unexchanged authorization code.

        Revoking either half of a token pair removes both halves. Unknown and
        already-revoked values are accepted silently so callers cannot probe
        which tokens ever existed.
        """
        if not token:
            return

        if self._store.delete_token_family(token):
            logger.info(
                "Revoked token %s (hint=%s)", token_preview(token), token_type_hint
            )
            return

        if self._store.revoke_authorization_code(token):
            logger.info("Revoked authorization code %s", token_preview(token))
            return

        logger.debug("Revocation of unknown token %s ignored", token_preview(token))
