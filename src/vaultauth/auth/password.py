"""Password verification for the login flow.

Learn: Hashing policy belongs to the user-management side; this module
only has to check a presented password against the stored bcrypt hash.
hash_password() exists for seeding users (CLI, tests).

When the email is unknown we still run one bcrypt comparison against a
fixed dummy hash, so "no such user" and "wrong password" take the same
time and the login endpoint cannot be used to discover accounts.
"""

import functools
from typing import Optional

import bcrypt

BCRYPT_MAX_BYTES = 72


def hash_password(password: str, rounds: int = 12) -> str:
    """Hash a password with bcrypt (salt included in the output)."""
    pw_bytes = password.encode("utf-8")[:BCRYPT_MAX_BYTES]
    return bcrypt.hashpw(pw_bytes, bcrypt.gensalt(rounds=rounds)).decode("utf-8")


@functools.lru_cache(maxsize=1)
def _dummy_hash() -> bytes:
    return bcrypt.hashpw(b"vaultauth-timing-equalizer", bcrypt.gensalt(rounds=12))


def verify_password(password: str, password_hash: Optional[str]) -> bool:
    """Check a password against a bcrypt hash. Never raises."""
    pw_bytes = password.encode("utf-8")[:BCRYPT_MAX_BYTES]
    if not password_hash:
        bcrypt.checkpw(pw_bytes, _dummy_hash())
        return False
    try:
        return bcrypt.checkpw(pw_bytes, password_hash.encode("utf-8"))
    except (ValueError, TypeError):
        return False
