"""Salted PBKDF2 password hashing for account credentials."""

from __future__ import annotations

import hashlib
import hmac
import secrets
from base64 import b64decode, b64encode

ALGORITHM = "pbkdf2_sha256"
ITERATIONS = 260_000


def _derive(password: str, salt: bytes, iterations: int) -> bytes:
    return hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, iterations)


def hash_password(password: str) -> str:
    if not password:
        raise ValueError("Password cannot be empty.")
    salt = secrets.token_bytes(16)
    digest = _derive(password, salt, ITERATIONS)
    return "$".join([ALGORITHM, str(ITERATIONS), b64encode(salt).decode("ascii"), b64encode(digest).decode("ascii")])


def check_password(password: str, encoded: str) -> bool:
    """Return True when ``password`` matches the stored hash; malformed hashes never match."""
    try:
        algorithm, iterations, salt, digest = encoded.split("$")
        if algorithm != ALGORITHM:
            return False
        expected = b64decode(digest)
        candidate = _derive(password, b64decode(salt), int(iterations))
    except (ValueError, TypeError):
        return False
    return hmac.compare_digest(candidate, expected)


__all__ = ["check_password", "hash_password"]
