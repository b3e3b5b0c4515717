"""PKCE (Proof Key for Code Exchange) helpers.

RFC 7636 defines PKCE to protect public OAuth clients. A *code verifier*
(random high-entropy string) is generated when a login or password-reset flow
begins; its S256 *code challenge* is sent to the auth provider, and the
verifier itself is presented again when the authorization code is exchanged.

PalmInsight verifiers are 64 random bytes, hex-encoded, i.e. 128 characters
(the RFC upper bound). Hex digits are a subset of the RFC's unreserved
alphabet.

This module intentionally performs **no logging** of verifiers or challenges.
"""

from __future__ import annotations

import base64
import secrets
from hashlib import sha256
from typing import Final

from palm_insight.auth.errors import InsecureRandomError

_VERIFIER_BYTES: Final[int] = 64


def generate_secure_string(num_bytes: int) -> str:
    """Return *num_bytes* of OS-provided randomness as lowercase hex.

    Raises
    ------
    InsecureRandomError
        If the platform offers no cryptographically secure random source.
        There is no fallback to :mod:`random`.
    """
    if num_bytes <= 0:
        raise ValueError("num_bytes must be positive")
    try:
        return secrets.token_hex(num_bytes)
    except NotImplementedError as exc:
        raise InsecureRandomError("no secure random source available") from exc


def generate_verifier() -> str:
    """Generate a 128-character hex code verifier."""
    return generate_secure_string(_VERIFIER_BYTES)


def code_challenge_s256(verifier: str) -> str:
    """Compute the *S256* PKCE code challenge for a given verifier.

    Parameters
    ----------
    verifier:
        The code verifier string.

    Returns
    -------
    str
        Base64url-encoded SHA-256 hash without padding.
    """
    digest = sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
