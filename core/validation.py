"""
core/validation.py -- Pluggable structural validation with field-level errors.

Pattern: Strategy. Anything exposing check(value) -> ValidationError | None is
a ValidationProvider; entities receive one as an argument instead of reaching
for a process-wide validator, so tests and alternative engines can swap it.

StandardValidationProvider is the default engine. It is built on pydantic v2:
each validated type is registered with a "rules" model whose fields carry the
reusable Annotated rules defined here (Required, UUIDFormat, EmailFormat,
NotEmptyPassword). Every failing field produces exactly one message, and all
failing fields are reported together -- never only the first one.

Message catalogue (first failing rule per field wins):
  "<field> is a required field"
  "<field> must be a valid UUID"
  "<field> must be a valid email address"
  "<field> can't be an empty string"

Layer rule: core/ is the kernel. No imports from api/ or identity/.
"""

from __future__ import annotations

import uuid
from typing import Any, Protocol

import bcrypt
import pydantic
from email_validator import EmailNotValidError, validate_email
from pydantic import AfterValidator, BaseModel, BeforeValidator, ValidationInfo
from pydantic_core import PydanticCustomError

# ---------------------------------------------------------------------------
# Error value
# ---------------------------------------------------------------------------


class ValidationError(Exception):
    """Aggregated field-level validation failure.

    fields maps attribute name -> human-readable message, one entry per
    invalid field.
    """

    code = "validation_error"

    def __init__(self, fields: dict[str, str], message: str = "data validation error") -> None:
        self.message = message
        self.fields = dict(fields)
        super().__init__(message)

    def to_dict(self) -> dict[str, str]:
        return dict(self.fields)

    def __str__(self) -> str:
        return f"{self.message}: {self.fields}"


class ValidationProvider(Protocol):
    """Anything that can structurally validate a value."""

    def check(self, value: Any) -> ValidationError | None: ...


# ---------------------------------------------------------------------------
# Reusable field rules
# ---------------------------------------------------------------------------


def _is_zero(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (str, bytes, list, tuple, set, frozenset, dict)):
        return len(value) == 0
    return False


def _required(value: Any, info: ValidationInfo) -> Any:
    if _is_zero(value):
        raise PydanticCustomError("required", "{field} is a required field", {"field": info.field_name})
    return value


def _uuid_format(value: str, info: ValidationInfo) -> str:
    """Accept only the canonical hyphenated 8-4-4-4-12 form.

    uuid.UUID also parses braces, urn:uuid: prefixes and bare hex, which are
    not UUID-formatted strings for storage purposes.
    """
    try:
        canonical = str(uuid.UUID(value))
    except ValueError:
        canonical = None
    if canonical != value.lower():
        raise PydanticCustomError("uuid", "{field} must be a valid UUID", {"field": info.field_name})
    return value


def _email_format(value: str, info: ValidationInfo) -> str:
    try:
        validate_email(value, check_deliverability=False)
    except EmailNotValidError:
        raise PydanticCustomError("email", "{field} must be a valid email address", {"field": info.field_name}) from None
    return value


def _not_empty_password(value: str, info: ValidationInfo) -> str:
    """Reject a bcrypt hash that verifies against the empty string.

    A hash the bcrypt library cannot parse is not this rule's concern; it
    passes here and simply never matches any candidate in has_password().
    """
    try:
        matches_empty = bcrypt.checkpw(b"", value.encode("utf-8"))
    except ValueError:
        return value
    if matches_empty:
        raise PydanticCustomError("not_empty_password", "{field} can't be an empty string", {"field": info.field_name})
    return value


Required = BeforeValidator(_required)
UUIDFormat = AfterValidator(_uuid_format)
EmailFormat = AfterValidator(_email_format)
NotEmptyPassword = AfterValidator(_not_empty_password)


# ---------------------------------------------------------------------------
# Standard provider
# ---------------------------------------------------------------------------


class StandardValidationProvider:
    """pydantic-backed ValidationProvider.

    Usage:
        provider = StandardValidationProvider({User: UserRules})
        err = provider.check(user)   # ValidationError or None
    """

    def __init__(self, rules: dict[type, type[BaseModel]] | None = None) -> None:
        self._rules: dict[type, type[BaseModel]] = dict(rules or {})

    def register(self, target: type, rules: type[BaseModel]) -> None:
        self._rules[target] = rules

    def check(self, value: Any) -> ValidationError | None:
        rules = self._rules.get(type(value))
        if rules is None:
            raise TypeError(f"no validation rules registered for {type(value).__name__}")
        try:
            rules.model_validate(value, from_attributes=True)
        except pydantic.ValidationError as exc:
            return ValidationError(_field_messages(exc))
        return None


def _field_messages(exc: pydantic.ValidationError) -> dict[str, str]:
    """Collapse pydantic's error list to one message per top-level field."""
    fields: dict[str, str] = {}
    for err in exc.errors():
        loc = err.get("loc") or ("__root__",)
        field = str(loc[0])
        if field in fields:
            continue
        if err.get("type") == "missing":
            fields[field] = f"{field} is a required field"
        else:
            fields[field] = err.get("msg", "invalid value")
    return fields
