"""
identity/repository.py -- Persistence contract consumed by the use-case layer.

We use typing.Protocol for structural subtyping: memory.InMemoryUserStore and
store.SqlUserStore satisfy it without inheriting from it, and tests may pass
any object with the same methods.

Contract (every method takes the request context first and calls ctx.check()
before touching state):
  create         -- UniqueIDError / UniqueEmailError if either already exists;
                    otherwise insert record and email index together.
  query          -- 1-based page of users ordered by (date_created, id);
                    [] past the end; ValueError for page < 1 or rows < 1.
  query_by_id    -- NotFoundError if absent.
  query_by_email -- NotFoundError if absent.
  update         -- NotFoundError if absent; moves the email index entry when
                    the email changed; UniqueEmailError if the new email
                    belongs to another user.
  delete         -- idempotent: a missing id is success, not NotFoundError.

The repository is policy-agnostic. Authorization happens in usecases.py.
"""

from __future__ import annotations

from typing import Protocol

from identity.context import RequestContext
from identity.models import User


class UserRepository(Protocol):
    def create(self, ctx: RequestContext, user: User) -> None: ...

    def query(self, ctx: RequestContext, page: int, rows: int) -> list[User]: ...

    def query_by_id(self, ctx: RequestContext, user_id: str) -> User: ...

    def query_by_email(self, ctx: RequestContext, email: str) -> User: ...

    def update(self, ctx: RequestContext, user: User) -> None: ...

    def delete(self, ctx: RequestContext, user_id: str) -> None: ...


def check_page(page: int, rows: int) -> int:
    """Validate pagination arguments and return the zero-based offset."""
    if page < 1:
        raise ValueError("page must be >= 1")
    if rows < 1:
        raise ValueError("rows must be >= 1")
    return (page - 1) * rows
