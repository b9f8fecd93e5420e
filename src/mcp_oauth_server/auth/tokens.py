"""Access and refresh token issuance.

Access tokens are self-contained JWTs signed with a process-wide key: any holder
of the key can verify them without a store lookup. The credential store keeps a
side table of issued tokens so they can still be revoked and introspected.
Refresh tokens are opaque random strings that rotate on every use.
"""

import logging
import secrets
from collections.abc import Iterable
from datetime import timedelta
from typing import Any

from jose import JWTError, jwt

from mcp_oauth_server.auth.credential_store import CredentialStore
from mcp_oauth_server.auth.storage import (
    IssuedTokens,
    StoredAccessToken,
    StoredRefreshToken,
)
from mcp_oauth_server.core import (
    InvalidGrantError,
    InvalidScopeError,
    TokenValidationError,
    token_preview,
)

logger = logging.getLogger(__name__)


class TokenIssuer:
    """Mints signed access tokens paired with rotating refresh tokens."""

    def __init__(
        self,
        store: CredentialStore,
        issuer: str,
        secret_key: str,
        algorithm: str = "HS256",
        access_token_expire_minutes: int = 60,
        refresh_token_expire_minutes: int = 30 * 24 * 60,
    ):
        """
        Initialize the token issuer.

        Args:
            store: Credential store holding the token side tables
            issuer: ``iss`` claim of every token
            secret_key: JWT signing key; changing it invalidates every outstanding token
            algorithm: JWT algorithm (default: HS256)
            access_token_expire_minutes: Access token lifetime (default: 60 minutes)
            refresh_token_expire_minutes: Refresh token lifetime (default: 30 days)
        """
        self._store = store
        self.issuer = issuer
        self._secret_key = secret_key
        self.algorithm = algorithm
        self.access_token_expire_minutes = access_token_expire_minutes
        self.refresh_token_expire_minutes = refresh_token_expire_minutes

    @property
    def access_token_lifetime(self) -> int:
        """Access token lifetime in seconds (the ``expires_in`` value)."""
        return self.access_token_expire_minutes * 60

    def issue_token(
        self,
        client_id: str,
        user_id: str,
        scopes: Iterable[str],
        grant_id: str | None = None,
        refresh_scopes: Iterable[str] | None = None,
    ) -> IssuedTokens:
        """
        Issue a new access token and its refresh token.

        Args:
            client_id: Client the token is issued to (``aud``)
            user_id: Resource owner (``sub``)
            scopes: Scopes of the access token
            grant_id: Token family to join; a new family is started when omitted
            refresh_scopes: Scopes kept on the refresh token (default: ``scopes``)

        Returns:
            The issued token pair
        """
        scopes = list(scopes)
        refresh_scopes = list(refresh_scopes) if refresh_scopes is not None else scopes
        grant_id = grant_id or secrets.token_urlsafe(16)
        now = self._store.now()
        expires_at = now + timedelta(minutes=self.access_token_expire_minutes)

        claims = {
            "iss": self.issuer,
            "sub": user_id,
            "aud": client_id,
            "client_id": client_id,
            "scope": " ".join(scopes),
            "iat": int(now.timestamp()),
            "exp": int(expires_at.timestamp()),
            # Unique per token, so two tokens minted in the same second differ
            "jti": secrets.token_urlsafe(16),
        }
        access_token = jwt.encode(claims, self._secret_key, algorithm=self.algorithm)
        refresh_token = secrets.token_urlsafe(32)

        self._store.save_token_pair(
            StoredAccessToken(
                token=access_token,
                client_id=client_id,
                user_id=user_id,
                scopes=scopes,
                issued_at=now,
                expires_at=expires_at,
                refresh_token=refresh_token,
                grant_id=grant_id,
            ),
            StoredRefreshToken(
                token=refresh_token,
                client_id=client_id,
                user_id=user_id,
                scopes=refresh_scopes,
                access_token=access_token,
                expires_at=now + timedelta(minutes=self.refresh_token_expire_minutes),
                grant_id=grant_id,
            ),
        )

        logger.info(
            "Issued access token %s for client %s, user %s",
            token_preview(access_token),
            client_id,
            user_id,
        )

        return IssuedTokens(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=self.access_token_lifetime,
            scopes=scopes,
            grant_id=grant_id,
        )

    def refresh(
        self,
        refresh_token: str,
        client_id: str | None = None,
        scopes: Iterable[str] | None = None,
    ) -> IssuedTokens:
        """
        Exchange a refresh token for a brand-new token pair.

        The presented refresh token and the access token issued alongside it are
        invalidated; replaying the same refresh token fails.

        Args:
            refresh_token: The refresh token to rotate
            client_id: If given, must match the client the token was issued to
            scopes: Optional narrower scope set for the new access token; the new
                refresh token keeps the original grant (RFC 6749 section 6)

        Returns:
            The new token pair

        Raises:
            InvalidGrantError: unknown, expired, rotated or foreign refresh token
            InvalidScopeError: requested scopes exceed the original grant
        """
        requested = list(scopes) if scopes else None

        def validate(record: StoredRefreshToken) -> None:
            if client_id is not None and record.client_id != client_id:
                raise InvalidGrantError("Refresh token was issued to another client")
            if requested and not set(requested).issubset(record.scopes):
                raise InvalidScopeError("Requested scopes exceed original grant")

        def issue(record: StoredRefreshToken) -> IssuedTokens:
            return self.issue_token(
                client_id=record.client_id,
                user_id=record.user_id,
                scopes=requested or record.scopes,
                grant_id=record.grant_id,
                refresh_scopes=record.scopes,
            )

        issued = self._store.rotate_refresh_token(refresh_token, validate, issue)
        logger.info("Rotated refresh token %s", token_preview(refresh_token))
        return issued

    def verify(self, token: str, audience: str | None = None) -> dict[str, Any]:
        """
        Statelessly verify an access token's signature, issuer and expiry.

        Args:
            token: JWT access token
            audience: Expected client id, if the caller wants ``aud`` checked

        Returns:
            Decoded claims

        Raises:
            TokenValidationError: If the token is malformed, forged, foreign or expired
        """
        try:
            claims = jwt.decode(
                token,
                self._secret_key,
                algorithms=[self.algorithm],
                audience=audience,
                issuer=self.issuer,
                # Expiry is checked against the store clock below
                options={"verify_exp": False, "verify_aud": audience is not None},
            )
        except JWTError as e:
            raise TokenValidationError(str(e)) from e

        exp = claims.get("exp")
        if not isinstance(exp, int) or self._store.now().timestamp() >= exp:
            raise TokenValidationError("Token expired")

        return claims
