"""
identity/models.py -- User and Session entities with their invariants.

Pattern: Entity (data + the small amount of behaviour that guards its own
invariants). Persistence and policy live elsewhere: stores in memory.py and
store.py, authorization in usecases.py.

User invariants:
  - A User that fails validation is never returned from User.new().
  - Hashing runs before validation and refuses an empty password outright;
    NotEmptyPassword also catches a hash of "" set directly on a record.
  - password_hash is a bcrypt string; has_password() never raises.

Session invariants:
  - is_valid() <=> now < expires. A zero Session() (no user, no expiry) is
    always expired and holds no roles.
  - The user inside a Session is a snapshot copy; later mutation of the
    stored user is not reflected.

Timestamps are timezone-aware UTC datetimes throughout.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Annotated

from pydantic import BaseModel

from core.validation import (
    EmailFormat,
    NotEmptyPassword,
    Required,
    StandardValidationProvider,
    UUIDFormat,
    ValidationProvider,
)
from identity.passwords import DEFAULT_ROUNDS, hash_password, verify_password

ROLE_ADMIN = "ADMIN"
ROLE_USER = "USER"


# ---------------------------------------------------------------------------
# User
# ---------------------------------------------------------------------------


@dataclass
class User:
    """Identity record.

    Every field defaults to its zero value so User() is constructible (and
    fails validation on every required field). Roles are order-insignificant;
    duplicates are kept as given.
    """

    id: str = ""
    name: str = ""
    email: str = ""
    password_hash: str = ""
    roles: list[str] = field(default_factory=list)
    date_created: datetime | None = None
    date_updated: datetime | None = None

    @classmethod
    def new(
        cls,
        name: str,
        email: str,
        password: str,
        roles: list[str],
        now: datetime,
        *,
        user_id: str | None = None,
        validator: ValidationProvider | None = None,
        rounds: int = DEFAULT_ROUNDS,
    ) -> User:
        """Build, hash and validate a new user.

        Raises HashingError for an empty (or un-hashable) password and
        ValidationError listing every invalid field otherwise.
        """
        password_hash = hash_password(password, rounds=rounds)
        user = cls(
            id=user_id if user_id is not None else str(uuid.uuid4()),
            name=name,
            email=email,
            password_hash=password_hash,
            roles=list(roles),
            date_created=now,
            date_updated=now,
        )
        user.validate(validator)
        return user

    def validate(self, validator: ValidationProvider | None = None) -> None:
        """Re-run structural validation; raises ValidationError on failure."""
        err = (validator or default_validation_provider()).check(self)
        if err is not None:
            raise err

    def has_password(self, candidate: str) -> bool:
        return verify_password(candidate, self.password_hash)

    def copy(self) -> User:
        return replace(self, roles=list(self.roles))


class UserRules(BaseModel):
    """Structural rules for User, consumed by StandardValidationProvider."""

    id: Annotated[str, Required, UUIDFormat]
    name: Annotated[str, Required]
    email: Annotated[str, Required, EmailFormat]
    password_hash: Annotated[str, Required, NotEmptyPassword]
    roles: Annotated[list[str], Required]
    date_created: Annotated[datetime, Required]
    date_updated: Annotated[datetime, Required]


def default_validation_provider() -> StandardValidationProvider:
    """Return a fresh provider that knows the User rules."""
    return StandardValidationProvider({User: UserRules})


# ---------------------------------------------------------------------------
# Use-case inputs
# ---------------------------------------------------------------------------


@dataclass
class NewUser:
    """Data needed to create a user. Register ignores roles."""

    name: str
    email: str
    password: str
    roles: list[str] = field(default_factory=list)


@dataclass
class UserUpdate:
    """Partial update: only fields that are not None are applied."""

    name: str | None = None
    email: str | None = None
    password: str | None = None
    roles: list[str] | None = None


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Session:
    """Request-lifetime authorization token binding a user to an expiry.

    Never persisted. Build with Session.new() so the user is copied.
    """

    user: User = field(default_factory=User)
    expires: datetime | None = None

    @classmethod
    def new(cls, user: User, expires: datetime) -> Session:
        return cls(user=user.copy(), expires=expires)

    def user_has_role(self, *roles: str) -> bool:
        """True if the session's user holds at least one of roles."""
        return any(want in self.user.roles for want in roles)

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.expires is None:
            return True
        return (now or _utcnow()) >= self.expires

    def is_valid(self, now: datetime | None = None) -> bool:
        return not self.is_expired(now)
