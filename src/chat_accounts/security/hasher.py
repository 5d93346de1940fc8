"""
Password hashing for local accounts.

Stored form is base64(salt || derived_key) using PBKDF2-HMAC-SHA256.
Only the hash is ever stored; verification recomputes the key and
compares it in constant time.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import os

SALT_BYTES = 16
KEY_BYTES = 32
DEFAULT_ITERATIONS = 100_000


class CredentialHasher:
    def __init__(self, iterations: int = DEFAULT_ITERATIONS) -> None:
        if iterations <= 0:
            raise ValueError("iterations must be positive")
        self._iterations = iterations

    @property
    def iterations(self) -> int:
        return self._iterations

    def _derive(self, password: str, salt: bytes) -> bytes:
        return hashlib.pbkdf2_hmac(
            "sha256",
            password.encode("utf-8"),
            salt,
            self._iterations,
            dklen=KEY_BYTES,
        )

    def hash(self, password: str) -> str:
        salt = os.urandom(SALT_BYTES)
        key = self._derive(password, salt)
        return base64.b64encode(salt + key).decode("ascii")

    def verify(self, password: str, stored_hash: str) -> bool:
        """Return True if `password` matches; malformed hashes are a mismatch."""
        if not isinstance(password, str) or not isinstance(stored_hash, str):
            return False
        try:
            combined = base64.b64decode(stored_hash.encode("ascii"), validate=True)
        except (binascii.Error, UnicodeEncodeError, ValueError):
            return False
        if len(combined) != SALT_BYTES + KEY_BYTES:
            return False

        salt, expected = combined[:SALT_BYTES], combined[SALT_BYTES:]
        computed = self._derive(password, salt)
        return hmac.compare_digest(computed, expected)
