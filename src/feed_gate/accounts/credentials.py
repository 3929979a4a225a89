"""Salted password hashing for accounts."""

from __future__ import annotations

import hashlib
import hmac
import secrets

SALT_BYTES = 16

# scrypt cost parameters (interactive-login strength)
_N = 2**14
_R = 8
_P = 1


def new_salt() -> str:
    """Return a fresh random salt, hex-encoded."""
    return secrets.token_hex(SALT_BYTES)


def hash_password(password: str, salt: str) -> str:
    """Derive the hex-encoded scrypt hash of *password* under *salt*."""
    digest = hashlib.scrypt(
        password.encode("utf-8"),
        salt=bytes.fromhex(salt),
        n=_N,
        r=_R,
        p=_P,
        dklen=32,
    )
    return digest.hex()


def verify_password(password: str, salt: str, password_hash: str) -> bool:
    """Constant-time check of *password* against a stored hash."""
    return hmac.compare_digest(hash_password(password, salt), password_hash)
