"""
identity/memory.py -- Concurrency-safe in-memory user store.

Pattern: Repository (same contract as store.SqlUserStore; see repository.py).

Mental model:
  _users        is the "table":        user id -> User
  _email_index  is the unique index:   email   -> user id

Invariant: every id in _users has exactly one entry in _email_index and vice
versa. Both maps are guarded by one reader/writer lock; every operation that
touches both (create, update, delete) holds the write lock for the whole
check-and-mutate sequence, so no reader ever sees a user without its index
entry or an index entry without its user.

Stored and returned Users are copies: a caller mutating a returned object
cannot change the store behind update()'s back.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager

from identity.context import RequestContext
from identity.errors import NotFoundError, UniqueEmailError, UniqueIDError
from identity.models import User
from identity.repository import check_page


class ReadWriteLock:
    """Multiple readers or one writer. Waiting writers block new readers."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class InMemoryUserStore:
    """Thread-safe in-memory UserRepository.

    Usage:
        store = InMemoryUserStore()
        store.create(ctx, user)
        store.query_by_email(ctx, user.email)
    """

    def __init__(self) -> None:
        self._lock = ReadWriteLock()
        self._users: dict[str, User] = {}
        self._email_index: dict[str, str] = {}

    def __len__(self) -> int:
        with self._lock.read():
            return len(self._users)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(self, ctx: RequestContext, user: User) -> None:
        ctx.check()
        with self._lock.write():
            if user.id in self._users:
                raise UniqueIDError()
            if user.email in self._email_index:
                raise UniqueEmailError()
            self._users[user.id] = user.copy()
            self._email_index[user.email] = user.id

    def update(self, ctx: RequestContext, user: User) -> None:
        ctx.check()
        with self._lock.write():
            current = self._users.get(user.id)
            if current is None:
                raise NotFoundError()
            if user.email != current.email:
                owner = self._email_index.get(user.email)
                if owner is not None and owner != user.id:
                    raise UniqueEmailError()
                del self._email_index[current.email]
                self._email_index[user.email] = user.id
            self._users[user.id] = user.copy()

    def delete(self, ctx: RequestContext, user_id: str) -> None:
        ctx.check()
        with self._lock.write():
            current = self._users.pop(user_id, None)
            if current is None:
                return
            self._email_index.pop(current.email, None)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def query(self, ctx: RequestContext, page: int, rows: int) -> list[User]:
        offset = check_page(page, rows)
        ctx.check()
        with self._lock.read():
            ordered = sorted(self._users.values(), key=_creation_order)
            return [u.copy() for u in ordered[offset : offset + rows]]

    def query_by_id(self, ctx: RequestContext, user_id: str) -> User:
        ctx.check()
        with self._lock.read():
            user = self._users.get(user_id)
            if user is None:
                raise NotFoundError()
            return user.copy()

    def query_by_email(self, ctx: RequestContext, email: str) -> User:
        """Look up via the email index, falling back to a scan of the table."""
        ctx.check()
        with self._lock.read():
            user_id = self._email_index.get(email)
            if user_id is not None and user_id in self._users:
                return self._users[user_id].copy()
            for user in self._users.values():
                if user.email == email:
                    return user.copy()
        raise NotFoundError()


def _creation_order(user: User) -> tuple:
    return (user.date_created is None, user.date_created or 0, user.id)
