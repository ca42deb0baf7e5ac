"""
auth/passwords.py -- bcrypt password hashing primitives.

Using bcrypt directly rather than passlib[bcrypt] because passlib's internal
wrap-bug detection creates a password longer than 72 bytes, which bcrypt 4.x
rejects with an explicit error. Direct bcrypt usage is simpler and has no
compatibility shim.

bcrypt only looks at the first 72 bytes of its input. Both hash_password()
and verify_password() truncate the UTF-8 encoding to that length so the two
always agree on what was hashed.

These functions are CPU-bound and synchronous. Async callers go through
CredentialStore, which runs them on a dedicated worker pool.
"""

from __future__ import annotations

import bcrypt

from auth.errors import PasswordHashError

_BCRYPT_MAX_BYTES = 72


def _encode(plain: str) -> bytes:
    return plain.encode("utf-8")[:_BCRYPT_MAX_BYTES]


def hash_password(plain: str, rounds: int = 12) -> str:
    """Return a salted bcrypt hash of plain.

    Any failure of the primitive is raised as PasswordHashError. There is no
    fallback to a weaker scheme.
    """
    try:
        return bcrypt.hashpw(_encode(plain), bcrypt.gensalt(rounds=rounds)).decode("utf-8")
    except (ValueError, TypeError) as exc:
        raise PasswordHashError() from exc


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if plain matches the bcrypt hash. A malformed hash never matches."""
    try:
        return bcrypt.checkpw(_encode(plain), hashed.encode("utf-8"))
    except (ValueError, TypeError):
        return False
