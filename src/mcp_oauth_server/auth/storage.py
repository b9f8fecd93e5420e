"""Pydantic models for OAuth entity storage.

These models define the records held by the credential store: clients, users,
authorization codes, access tokens, and refresh tokens.
"""

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CodeChallengeMethod(str, Enum):
    """PKCE transformation applied to the code verifier (RFC 7636)."""

    S256 = "S256"
    PLAIN = "plain"


class AuthorizationState(str, Enum):
    """Lifecycle of a single authorization attempt.

    STARTED -> CODE_ISSUED -> {EXCHANGED | EXPIRED | REVOKED}
    """

    STARTED = "started"
    CODE_ISSUED = "code_issued"
    EXCHANGED = "exchanged"
    EXPIRED = "expired"
    REVOKED = "revoked"

    @property
    def is_terminal(self) -> bool:
        return self in (
            AuthorizationState.EXCHANGED,
            AuthorizationState.EXPIRED,
            AuthorizationState.REVOKED,
        )


class StoredClient(BaseModel):
    """OAuth client stored in the credential store."""

    client_id: str
    client_name: str
    redirect_uris: list[str] = Field(default_factory=list)
    allowed_scopes: list[str] = Field(default_factory=lambda: ["read"])
    client_secret_hash: str | None = None
    created_at: datetime = Field(default_factory=utc_now)

    @property
    def is_confidential(self) -> bool:
        return self.client_secret_hash is not None


class StoredUser(BaseModel):
    """Resource owner known to the authorization server."""

    user_id: str
    username: str
    password_hash: str


class StoredAuthCode(BaseModel):
    """Authorization code bound to a PKCE challenge."""

    code: str
    client_id: str
    redirect_uri: str
    scopes: list[str] = Field(default_factory=list)
    user_id: str
    code_challenge: str
    code_challenge_method: CodeChallengeMethod = CodeChallengeMethod.S256
    expires_at: datetime
    state: AuthorizationState = AuthorizationState.CODE_ISSUED
    # Token family minted from this code, kept so a replay can revoke it
    grant_id: str | None = None

    @property
    def used(self) -> bool:
        return self.state == AuthorizationState.EXCHANGED


class StoredAccessToken(BaseModel):
    """Side-table entry for an issued JWT access token."""

    token: str
    client_id: str
    user_id: str
    scopes: list[str] = Field(default_factory=list)
    issued_at: datetime
    expires_at: datetime
    refresh_token: str
    grant_id: str | None = None


class StoredRefreshToken(BaseModel):
    """Refresh token paired with exactly one access token."""

    token: str
    client_id: str
    user_id: str
    scopes: list[str] = Field(default_factory=list)
    access_token: str
    expires_at: datetime
    grant_id: str | None = None


class IssuedTokens(BaseModel):
    """Access and refresh token pair returned by the token endpoint."""

    access_token: str
    refresh_token: str
    token_type: str = "Bearer"
    expires_in: int
    scopes: list[str] = Field(default_factory=list)
    grant_id: str | None = None

    def to_response(self) -> dict:
        """Render as an RFC 6749 section 5.1 token response."""
        return {
            "access_token": self.access_token,
            "token_type": self.token_type,
            "expires_in": self.expires_in,
            "refresh_token": self.refresh_token,
            "scope": " ".join(self.scopes),
        }
