"""PKCE (RFC 7636) primitives.

The code_verifier is the binding secret of an authorization attempt: it is
generated once, kept for the whole flow, and sent only to the token endpoint.
The code_challenge derived from it travels in the authorization URL.
"""

from __future__ import annotations

import string

from authlib.common.security import generate_token
from authlib.oauth2.rfc7636 import create_s256_code_challenge

# Unreserved characters allowed in a code_verifier (RFC 7636 §4.1)
VERIFIER_ALPHABET = string.ascii_letters + string.digits + "-._~"
VERIFIER_MIN_LENGTH = 43
VERIFIER_MAX_LENGTH = 128

CHALLENGE_METHODS = ("S256", "plain")


def generate_code_verifier(length: int = VERIFIER_MAX_LENGTH) -> str:
    """Return a random code_verifier of ``length`` characters.

    Raises:
        ValueError: If length is outside 43–128.
    """
    if not VERIFIER_MIN_LENGTH <= length <= VERIFIER_MAX_LENGTH:
        raise ValueError(
            f"code_verifier length must be between {VERIFIER_MIN_LENGTH} "
            f"and {VERIFIER_MAX_LENGTH}, got {length}"
        )
    return generate_token(length, chars=VERIFIER_ALPHABET)


def is_valid_code_verifier(verifier: str) -> bool:
    return (
        VERIFIER_MIN_LENGTH <= len(verifier) <= VERIFIER_MAX_LENGTH
        and all(c in VERIFIER_ALPHABET for c in verifier)
    )


def create_code_challenge(verifier: str, method: str = "S256") -> str:
    """Derive the code_challenge for ``verifier``.

    ``S256`` is base64url(sha256(verifier)) without padding; ``plain`` is the
    verifier itself.

    Raises:
        ValueError: For an unknown method.
    """
    if method == "S256":
        return create_s256_code_challenge(verifier)
    if method == "plain":
        return verifier
    raise ValueError(f"Unsupported code_challenge_method: {method!r}")


def generate_state() -> str:
    """Opaque anti-CSRF value echoed back on the redirect."""
    return generate_token(32)


def generate_nonce() -> str:
    return generate_token(32)
