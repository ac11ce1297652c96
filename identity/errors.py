"""
identity/errors.py -- Error taxonomy for the identity core.

Every error carries a stable machine-readable code. The core never logs or
swallows these; they propagate to the caller (api/ maps them to HTTP
statuses in one place).

ValidationError lives in core/validation.py (the validation engine raises it
without knowing about identity/) and is re-exported here so callers can import
every error kind from one module.
"""

from __future__ import annotations

from core.validation import ValidationError

__all__ = [
    "AuthenticationFailedError",
    "AuthorizationError",
    "ConflictError",
    "HashingError",
    "IdentityError",
    "NotFoundError",
    "OperationCancelledError",
    "SessionExpiredError",
    "SessionMissingError",
    "UniqueEmailError",
    "UniqueIDError",
    "ValidationError",
]


class IdentityError(Exception):
    """Base class for identity errors other than field validation."""

    code = "identity_error"
    default_message = "identity error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class HashingError(IdentityError):
    code = "hashing_failed"
    default_message = "password could not be hashed"


class NotFoundError(IdentityError):
    code = "not_found"
    default_message = "user not found"


class ConflictError(IdentityError):
    """A uniqueness constraint would be violated."""

    code = "conflict"
    default_message = "user already exists"


class UniqueIDError(ConflictError):
    code = "unique_id"
    default_message = "id is not unique"


class UniqueEmailError(ConflictError):
    code = "unique_email"
    default_message = "email is not unique"


class AuthenticationFailedError(IdentityError):
    """Credentials were rejected.

    Raised identically for an unknown email and for a wrong password so a
    caller cannot enumerate registered addresses.
    """

    code = "authentication_failed"
    default_message = "authentication failed"

    def __init__(self) -> None:
        super().__init__()


class AuthorizationError(IdentityError):
    """A valid session lacks the role or ownership the operation needs."""

    code = "unauthorized"
    default_message = "unauthorized"


class SessionMissingError(IdentityError):
    """The request scope carries no usable session."""

    code = "session_missing"
    default_message = "session missing from request context"


class SessionExpiredError(SessionMissingError):
    code = "session_expired"
    default_message = "session expired"


class OperationCancelledError(IdentityError):
    code = "cancelled"
    default_message = "operation cancelled"
