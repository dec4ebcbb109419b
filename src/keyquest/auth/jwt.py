"""
Bearer JWT verification.

Tokens are issued by the identity provider; this service only verifies them.
The ``sub`` claim carries the provider's opaque user handle.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import jwt

from keyquest.config import get_settings

_verification_key: str | None = None


def _load_key() -> str:
    """Shared secret for HS* algorithms, else the public key file (cached after first call)."""
    global _verification_key  # noqa: PLW0603
    if _verification_key is None:
        settings = get_settings()
        if settings.jwt_algorithm.startswith("HS"):
            _verification_key = settings.jwt_secret
        else:
            _verification_key = Path(settings.jwt_public_key_path).read_text()
    return _verification_key


def reset_keys() -> None:
    """Reset the cached key (useful for testing)."""
    global _verification_key  # noqa: PLW0603
    _verification_key = None


def verify_token(token: str) -> dict[str, Any]:
    """
    Verify and decode a JWT token.

    Args:
        token: The encoded JWT string.

    Returns:
        Decoded payload dictionary.

    Raises:
        jwt.InvalidTokenError: If the token is invalid, expired, or has no subject.
    """
    settings = get_settings()
    try:
        payload: dict[str, Any] = jwt.decode(
            token,
            _load_key(),
            algorithms=[settings.jwt_algorithm],
            issuer=settings.jwt_issuer,
        )
    except jwt.ExpiredSignatureError:
        msg = "Token has expired"
        raise jwt.InvalidTokenError(msg) from None

    if not payload.get("sub"):
        msg = "Token has no subject"
        raise jwt.InvalidTokenError(msg)

    return payload
