"""
API request and response models for the identity REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in identity/models.py,
which own the internal domain representation. Route handlers map between the
two.

Separation of concerns: identity/ models = domain truth; api/ models = API
contract. Field-level rules (email format, required fields) are enforced by
the domain validator, not duplicated here, so both the API and direct callers
get the same messages.
"""

from datetime import datetime
from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field, StringConstraints, field_validator, model_validator

from identity.models import NewUser, User, UserUpdate

# bcrypt refuses (or on older releases truncates) input longer than this.
_BCRYPT_MAX_BYTES = 72

# Display fields are trimmed; passwords are passed through byte for byte so
# the stored hash matches exactly what the client later sends on login.
TrimmedName = Annotated[str, StringConstraints(strip_whitespace=True, max_length=255)]
TrimmedEmail = Annotated[str, StringConstraints(strip_whitespace=True, max_length=320)]


def _password_bytes_ok(value: Optional[str]) -> Optional[str]:
    if value is not None and len(value.encode("utf-8")) > _BCRYPT_MAX_BYTES:
        raise ValueError(f"password must be at most {_BCRYPT_MAX_BYTES} bytes when UTF-8 encoded")
    return value


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class NewUserRequest(BaseModel):
    """Request body for POST /users and POST /users/register.

    roles is ignored by /users/register: the server decides them.
    """

    name: TrimmedName
    email: TrimmedEmail
    password: str = Field(json_schema_extra={"format": "password"})
    password_confirm: str = Field(json_schema_extra={"format": "password"})
    roles: list[str] = Field(default_factory=list)

    check_password_bytes = field_validator("password", "password_confirm")(_password_bytes_ok)

    @model_validator(mode="after")
    def passwords_match(self) -> "NewUserRequest":
        if self.password != self.password_confirm:
            raise ValueError("password_confirm must match password")
        return self

    def to_domain(self) -> NewUser:
        return NewUser(name=self.name, email=self.email, password=self.password, roles=list(self.roles))


class UserUpdateRequest(BaseModel):
    """Request body for PUT /users/{id}. Omitted fields are left unchanged."""

    name: Optional[TrimmedName] = None
    email: Optional[TrimmedEmail] = None
    password: Optional[str] = None
    password_confirm: Optional[str] = None
    roles: Optional[list[str]] = None

    check_password_bytes = field_validator("password", "password_confirm")(_password_bytes_ok)

    @model_validator(mode="after")
    def passwords_match(self) -> "UserUpdateRequest":
        if self.password is not None and self.password != self.password_confirm:
            raise ValueError("password_confirm must match password")
        return self

    def to_domain(self) -> UserUpdate:
        return UserUpdate(
            name=self.name,
            email=self.email,
            password=self.password,
            roles=list(self.roles) if self.roles is not None else None,
        )


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    """Public view of a user. The password hash is never serialized."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    email: str
    roles: list[str]
    date_created: Optional[datetime] = None
    date_updated: Optional[datetime] = None

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            name=user.name,
            email=user.email,
            roles=list(user.roles),
            date_created=user.date_created,
            date_updated=user.date_updated,
        )


class TokenResponse(BaseModel):
    """Response for GET /users/token."""

    model_config = ConfigDict(frozen=True)

    token: str
    token_type: str = "bearer"
    expires_at: datetime


class ErrorDetail(BaseModel):
    """Machine-readable error payload.

    fields is only present for validation errors: attribute -> message.
    """

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None
    fields: Optional[dict[str, str]] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
