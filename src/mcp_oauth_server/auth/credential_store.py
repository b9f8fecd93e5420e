"""In-memory credential store for the OAuth authorization server.

All OAuth entities (clients, users, authorization codes, access tokens and
refresh tokens) live here. Every public method runs under a single re-entrant
lock so that check-then-mutate sequences, such as "code is unused" followed by
"mark code used", are atomic with respect to concurrent requests.

Records handed out are copies; callers can never mutate stored state directly.
"""

import logging
import threading
from collections.abc import Callable
from datetime import datetime, timezone

from mcp_oauth_server.auth.storage import (
    AuthorizationState,
    IssuedTokens,
    StoredAccessToken,
    StoredAuthCode,
    StoredClient,
    StoredRefreshToken,
    StoredUser,
)
from mcp_oauth_server.core import InvalidGrantError, token_preview

logger = logging.getLogger(__name__)


Clock = Callable[[], datetime]


def system_clock() -> datetime:
    return datetime.now(timezone.utc)


class CredentialStore:
    """Thread-safe registry of OAuth clients, users, codes and tokens.

    For production with multiple servers, replace with Redis or a database that
    offers the same atomic primitives.
    """

    def __init__(self, clock: Clock | None = None) -> None:
        self._clock = clock or system_clock
        self._lock = threading.RLock()

        self._clients: dict[str, StoredClient] = {}
        self._users: dict[str, StoredUser] = {}
        self._auth_codes: dict[str, StoredAuthCode] = {}
        self._access_tokens: dict[str, StoredAccessToken] = {}
        self._refresh_tokens: dict[str, StoredRefreshToken] = {}

    def now(self) -> datetime:
        """Current time according to the store's clock."""
        return self._clock()

    # ========== Clients ==========

    def add_client(self, client: StoredClient) -> bool:
        """Insert a client unless its id is already taken."""
        with self._lock:
            if client.client_id in self._clients:
                return False
            self._clients[client.client_id] = client.model_copy(deep=True)
            return True

    def get_client(self, client_id: str) -> StoredClient | None:
        with self._lock:
            client = self._clients.get(client_id)
            return client.model_copy(deep=True) if client else None

    # ========== Users ==========

    def add_user(self, user: StoredUser) -> bool:
        with self._lock:
            if user.user_id in self._users:
                return False
            self._users[user.user_id] = user.model_copy(deep=True)
            return True

    def get_user(self, user_id: str) -> StoredUser | None:
        with self._lock:
            user = self._users.get(user_id)
            return user.model_copy(deep=True) if user else None

    def find_user_by_username(self, username: str) -> StoredUser | None:
        with self._lock:
            for user in self._users.values():
                if user.username == username:
                    return user.model_copy(deep=True)
            return None

    # ========== Authorization Codes ==========

    def add_authorization_code(self, auth_code: StoredAuthCode) -> bool:
        """Insert a freshly minted code unless the value collides."""
        with self._lock:
            self._purge_expired_codes()
            if auth_code.code in self._auth_codes:
                return False
            self._auth_codes[auth_code.code] = auth_code.model_copy(deep=True)
            return True

    def get_authorization_code(self, code: str) -> StoredAuthCode | None:
        with self._lock:
            record = self._auth_codes.get(code)
            if record is None:
                return None
            self._expire_if_due(record)
            return record.model_copy(deep=True)

    def exchange_authorization_code(
        self,
        code: str,
        validate: Callable[[StoredAuthCode], None],
        issue: Callable[[StoredAuthCode], IssuedTokens],
    ) -> IssuedTokens:
        """Atomically validate, spend and exchange an authorization code.

        ``validate`` runs only for a code that exists, is unexpired and unused;
        it raises to reject the exchange without spending the code. ``issue``
        mints the tokens. Both run under the store lock, so at most one caller
        ever observes the code as spendable.

        Presenting a code that was already exchanged revokes every token of the
        grant issued from it, including pairs rotated since (RFC 6749 section 4.1.2).

        Raises:
            InvalidGrantError: unknown, expired, revoked or already used code
        """
        with self._lock:
            record = self._auth_codes.get(code)
            if record is None:
                raise InvalidGrantError("Invalid authorization code")

            self._expire_if_due(record)

            if record.state == AuthorizationState.EXCHANGED:
                revoked = self._delete_grant(record.grant_id) if record.grant_id else 0
                logger.warning(
                    "Replay of authorization code %s for client %s, %d tokens revoked",
                    token_preview(code),
                    record.client_id,
                    revoked,
                )
                raise InvalidGrantError("Authorization code already used")
            if record.state == AuthorizationState.EXPIRED:
                raise InvalidGrantError("Authorization code expired")
            if record.state == AuthorizationState.REVOKED:
                raise InvalidGrantError("Authorization code revoked")

            validate(record.model_copy(deep=True))
            issued = issue(record.model_copy(deep=True))

            record.state = AuthorizationState.EXCHANGED
            record.grant_id = issued.grant_id
            return issued

    def revoke_authorization_code(self, code: str) -> bool:
        """Abandon a code that has not been exchanged yet."""
        with self._lock:
            record = self._auth_codes.get(code)
            if record is None:
                return False
            self._expire_if_due(record)
            if record.state != AuthorizationState.CODE_ISSUED:
                return False
            record.state = AuthorizationState.REVOKED
            return True

    # ========== Tokens ==========

    def save_token_pair(
        self,
        access_token: StoredAccessToken,
        refresh_token: StoredRefreshToken,
    ) -> None:
        with self._lock:
            self._purge_expired_tokens()
            self._access_tokens[access_token.token] = access_token.model_copy(deep=True)
            self._refresh_tokens[refresh_token.token] = refresh_token.model_copy(
                deep=True
            )

    def get_access_token(self, token: str) -> StoredAccessToken | None:
        """Return the side-table entry for a live access token."""
        with self._lock:
            record = self._access_tokens.get(token)
            if record is None:
                return None
            if self.now() >= record.expires_at:
                del self._access_tokens[token]
                return None
            return record.model_copy(deep=True)

    def get_refresh_token(self, token: str) -> StoredRefreshToken | None:
        with self._lock:
            record = self._refresh_tokens.get(token)
            if record is None:
                return None
            if self.now() >= record.expires_at:
                del self._refresh_tokens[token]
                return None
            return record.model_copy(deep=True)

    def rotate_refresh_token(
        self,
        token: str,
        validate: Callable[[StoredRefreshToken], None],
        issue: Callable[[StoredRefreshToken], IssuedTokens],
    ) -> IssuedTokens:
        """Atomically spend a refresh token and issue its replacement pair.

        The presented refresh token and the access token paired with it are
        removed before ``issue`` runs; a second rotation of the same token can
        never succeed.

        Raises:
            InvalidGrantError: unknown, expired or already rotated refresh token
        """
        with self._lock:
            record = self._refresh_tokens.get(token)
            if record is None:
                raise InvalidGrantError("Invalid refresh token")
            if self.now() >= record.expires_at:
                del self._refresh_tokens[token]
                raise InvalidGrantError("Refresh token expired")

            validate(record.model_copy(deep=True))

            del self._refresh_tokens[token]
            self._access_tokens.pop(record.access_token, None)
            return issue(record)

    def delete_token_family(self, token: str) -> bool:
        """Remove an access or refresh token together with its partner."""
        with self._lock:
            return self._delete_family(token)

    # ========== Housekeeping ==========

    def stats(self) -> dict[str, int]:
        """Entity counts, for diagnostics and tests."""
        with self._lock:
            return {
                "clients": len(self._clients),
                "users": len(self._users),
                "authorization_codes": len(self._auth_codes),
                "access_tokens": len(self._access_tokens),
                "refresh_tokens": len(self._refresh_tokens),
            }

    def _delete_family(self, token: str) -> bool:
        access = self._access_tokens.pop(token, None)
        if access is not None:
            self._refresh_tokens.pop(access.refresh_token, None)
            return True

        refresh = self._refresh_tokens.pop(token, None)
        if refresh is not None:
            self._access_tokens.pop(refresh.access_token, None)
            return True

        return False

    def _delete_grant(self, grant_id: str) -> int:
        access = [t for t, r in self._access_tokens.items() if r.grant_id == grant_id]
        refresh = [t for t, r in self._refresh_tokens.items() if r.grant_id == grant_id]
        for token in access:
            del self._access_tokens[token]
        for token in refresh:
            del self._refresh_tokens[token]
        return len(access) + len(refresh)

    def _expire_if_due(self, record: StoredAuthCode) -> None:
        if (
            record.state == AuthorizationState.CODE_ISSUED
            and self.now() >= record.expires_at
        ):
            record.state = AuthorizationState.EXPIRED

    def _purge_expired_codes(self) -> None:
        # Keep terminal codes until their lifetime is over so replays are detected
        now = self.now()
        expired = [
            code for code, record in self._auth_codes.items() if now >= record.expires_at
        ]
        for code in expired:
            del self._auth_codes[code]
        if expired:
            logger.debug("Purged %d expired authorization codes", len(expired))

    def _purge_expired_tokens(self) -> None:
        now = self.now()
        access = [t for t, r in self._access_tokens.items() if now >= r.expires_at]
        refresh = [t for t, r in self._refresh_tokens.items() if now >= r.expires_at]
        for token in access:
            del self._access_tokens[token]
        for token in refresh:
            del self._refresh_tokens[token]
        if access or refresh:
            logger.debug(
                "Purged %d expired access tokens and %d expired refresh tokens",
                len(access),
                len(refresh),
            )
