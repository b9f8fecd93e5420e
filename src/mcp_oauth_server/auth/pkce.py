"""PKCE (Proof Key for Code Exchange) utilities.

Implements RFC 7636 for secure OAuth 2.1 authorization code exchange.
S256 is the preferred method; ``plain`` is accepted only when the server is
configured to allow it.
"""

from __future__ import annotations

import base64
import hashlib
import re
import secrets

from mcp_oauth_server.auth.storage import CodeChallengeMethod

# RFC 7636 section 4.1: 43-128 characters of [A-Z] / [a-z] / [0-9] / "-" / "." / "_" / "~"
CODE_VERIFIER_PATTERN = re.compile(r"^[A-Za-z0-9\-._~]{43,128}$")

# BASE64URL(SHA256(...)) without padding is always 43 characters
S256_CHALLENGE_PATTERN = re.compile(r"^[A-Za-z0-9\-_]{43}$")


def is_valid_code_verifier(code_verifier: str | None) -> bool:
    """Check length and character set of a code verifier."""
    return bool(code_verifier) and CODE_VERIFIER_PATTERN.fullmatch(code_verifier) is not None


def is_valid_code_challenge(code_challenge: str | None, method: str) -> bool:
    """Check that a challenge is well-formed for its method."""
    if not code_challenge:
        return False
    if method == CodeChallengeMethod.S256.value:
        return S256_CHALLENGE_PATTERN.fullmatch(code_challenge) is not None
    return CODE_VERIFIER_PATTERN.fullmatch(code_challenge) is not None


def generate_pkce_pair() -> tuple[str, str]:
    """Generate a PKCE code_verifier and S256 code_challenge pair.

    Returns:
        tuple[str, str]: (code_verifier, code_challenge)

    Example:
        >>> verifier, challenge = generate_pkce_pair()
        >>> verify(verifier, challenge, "S256")
        True
    """
    # 32 random bytes encode to 43 base64url characters
    code_verifier = secrets.token_urlsafe(32)
    return code_verifier, compute_challenge(code_verifier)


def compute_challenge(code_verifier: str) -> str:
    """Compute the S256 code_challenge from a code_verifier.

    Args:
        code_verifier: The code verifier string

    Returns:
        str: BASE64URL(SHA256(code_verifier)) without padding
    """
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")


def verify(code_verifier: str, stored_challenge: str, method: str) -> bool:
    """Verify a PKCE code_verifier against the challenge stored with a code.

    The verifier's shape is checked before any hashing, and the final
    comparison is constant-time for both methods.

    Args:
        code_verifier: The verifier submitted at the token endpoint
        stored_challenge: The challenge submitted at the authorization endpoint
        method: ``S256`` or ``plain``

    Returns:
        bool: True if the verifier matches the challenge

    Example:
        >>> verifier, challenge = generate_pkce_pair()
        >>> verify(verifier, challenge, "S256")
        True
        >>> verify("x" * 43, challenge, "S256")
        False
    """
    if not is_valid_code_verifier(code_verifier) or not stored_challenge:
        return False

    if method == CodeChallengeMethod.S256.value:
        expected = compute_challenge(code_verifier)
    elif method == CodeChallengeMethod.PLAIN.value:
        expected = code_verifier
    else:
        return False

    return secrets.compare_digest(expected.encode("utf-8"), stored_challenge.encode("utf-8"))
