from __future__ import annotations

import secrets

# No 0/O or 1/I, so codes survive being read off a stream and retyped.
UNAMBIGUOUS_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"

SESSION_TOKEN_BYTES = 32  # 256-bit entropy


def session_token() -> str:
    """URL-safe session token without padding."""
    return secrets.token_urlsafe(SESSION_TOKEN_BYTES).rstrip("=")


def short_code(prefix: str = "LINK-", length: int = 4) -> str:
    """
    Short human-typable code such as ``LINK-7KQD``.

    Codes are not unique; each one is scoped to a single account's
    pending challenge.
    """
    if length <= 0:
        raise ValueError("length must be positive")
    body = "".join(secrets.choice(UNAMBIGUOUS_ALPHABET) for _ in range(length))
    return f"{prefix}{body}"
