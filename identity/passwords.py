"""
identity/passwords.py -- bcrypt password hashing and verification.

Using bcrypt directly rather than passlib[bcrypt] because passlib's internal
wrap-bug detection creates a password longer than 72 bytes, which bcrypt 4.x
rejects with an explicit error. Direct bcrypt usage is simpler and has no
compatibility shim.

Bcrypt is the right choice for low-entropy secrets because its cost factor
makes offline brute-force expensive. The cost is a parameter so deployments
(and tests) can tune it, but it never goes below MIN_ROUNDS.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import bcrypt

from core.config import MIN_BCRYPT_ROUNDS
from identity.errors import HashingError

DEFAULT_ROUNDS = 12
MIN_ROUNDS = MIN_BCRYPT_ROUNDS


def hash_password(plain: str, rounds: int = DEFAULT_ROUNDS) -> str:
    """Return a salted bcrypt hash of plain.

    Raises HashingError for an empty password: bcrypt would happily hash "",
    producing a non-empty, structurally valid hash that defeats the
    non-empty-credential rule. Also raised when bcrypt itself rejects the
    input (e.g. more than 72 bytes on bcrypt >= 5).
    """
    if not plain:
        raise HashingError("password must not be empty")
    if rounds < MIN_ROUNDS:
        raise HashingError(f"bcrypt cost factor must be at least {MIN_ROUNDS}")
    try:
        return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")
    except ValueError as exc:
        raise HashingError(f"encrypting password: {exc}") from exc


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if plain matches the bcrypt hash.

    bcrypt.checkpw does a constant-time comparison. Any malformed hash or
    unencodable input returns False instead of raising.
    """
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except (ValueError, TypeError, AttributeError):
        return False

