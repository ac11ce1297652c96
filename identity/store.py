"""
identity/store.py -- SQLAlchemy Core persistence for users.

Pattern: Repository + Data Mapper. SqlUserStore is the repository;
_row_to_user / _user_to_row are the mappers. Use-case code never touches SQL
directly, and the mapping is explicit field-by-field -- the persistence row
and the domain entity share no layout.

Security:
  All queries use bound parameters. No f-strings in SQL.

Uniqueness:
  user_id is the primary key and email carries a UNIQUE constraint, so the
  row itself is the email index and update() moves it atomically. create()
  checks id then email first so the caller gets the specific error; an
  IntegrityError from a concurrent insert that slips past the check is
  translated to the matching error.

Column formats:
  roles         JSON array text
  date_created  ISO 8601 text (UTC)
  date_updated  ISO 8601 text (UTC)

Layer rule: no imports from api/.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime

from sqlalchemy import Column, MetaData, String, Table, Text, create_engine, event, select
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.pool import StaticPool

from identity.context import RequestContext
from identity.errors import NotFoundError, UniqueEmailError, UniqueIDError
from identity.models import User
from identity.repository import check_page

logger = logging.getLogger("identity.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("user_id", String(36), primary_key=True),
    Column("name", Text, nullable=False),
    Column("email", String(320), nullable=False, unique=True),
    Column("roles", Text, nullable=False),  # JSON array
    Column("password_hash", Text, nullable=False),
    Column("date_created", String(32), nullable=False),
    Column("date_updated", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class SqlUserStore:
    """SQL-backed UserRepository.

    Usage:
        store = SqlUserStore("sqlite:///users.db")
        store.create(ctx, user)
        user = store.query_by_email(ctx, "ada@example.com")
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        engine_args: dict = {}
        in_memory = ":memory:" in db_url
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
            if in_memory:
                # One shared connection, otherwise each pooled connection
                # would open its own empty database.
                engine_args["poolclass"] = StaticPool
        self.engine: Engine = create_engine(db_url, connect_args=connect_args, **engine_args)
        if db_url.startswith("sqlite") and not in_memory:
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(self, ctx: RequestContext, user: User) -> None:
        """Insert a new user.

        Raises UniqueIDError if user.id exists, else UniqueEmailError if
        user.email exists. Nothing is written on either error.
        """
        ctx.check()
        try:
            with self.engine.begin() as conn:
                if _exists(conn, _users.c.user_id == user.id):
                    raise UniqueIDError()
                if _exists(conn, _users.c.email == user.email):
                    raise UniqueEmailError()
                conn.execute(_users.insert().values(**_user_to_row(user)))
        except IntegrityError as exc:
            raise self._uniqueness_error(user) from exc
        logger.debug("user row inserted (id=%s)", user.id)

    def update(self, ctx: RequestContext, user: User) -> None:
        ctx.check()
        with self.engine.begin() as conn:
            if not _exists(conn, _users.c.user_id == user.id):
                raise NotFoundError()
            if _exists(conn, (_users.c.email == user.email) & (_users.c.user_id != user.id)):
                raise UniqueEmailError()
            row = _user_to_row(user)
            del row["user_id"]
            try:
                conn.execute(_users.update().where(_users.c.user_id == user.id).values(**row))
            except IntegrityError as exc:
                raise UniqueEmailError() from exc

    def delete(self, ctx: RequestContext, user_id: str) -> None:
        """Delete a user. A missing id is not an error."""
        ctx.check()
        with self.engine.begin() as conn:
            conn.execute(_users.delete().where(_users.c.user_id == user_id))

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def query(self, ctx: RequestContext, page: int, rows: int) -> list[User]:
        offset = check_page(page, rows)
        ctx.check()
        stmt = _users.select().order_by(_users.c.date_created, _users.c.user_id).limit(rows).offset(offset)
        with self.engine.connect() as conn:
            result = conn.execute(stmt).fetchall()
        return [_row_to_user(r) for r in result]

    def query_by_id(self, ctx: RequestContext, user_id: str) -> User:
        ctx.check()
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.user_id == user_id)).fetchone()
        if row is None:
            raise NotFoundError()
        return _row_to_user(row)

    def query_by_email(self, ctx: RequestContext, email: str) -> User:
        """Look up by email. O(1) via the UNIQUE index."""
        ctx.check()
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
        if row is None:
            raise NotFoundError()
        return _row_to_user(row)

    def _uniqueness_error(self, user: User) -> Exception:
        """Decide which constraint a concurrent insert tripped: id first, then email."""
        with self.engine.connect() as conn:
            if _exists(conn, _users.c.user_id == user.id):
                return UniqueIDError()
        return UniqueEmailError()

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _exists(conn: Connection, clause) -> bool:
    return conn.execute(select(_users.c.user_id).where(clause).limit(1)).first() is not None


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _user_to_row(user: User) -> dict:
    return {
        "user_id": user.id,
        "name": user.name,
        "email": user.email,
        "roles": json.dumps(list(user.roles)),
        "password_hash": user.password_hash,
        "date_created": user.date_created.isoformat() if user.date_created else "",
        "date_updated": user.date_updated.isoformat() if user.date_updated else "",
    }


def _row_to_user(row) -> User:
    return User(
        id=row.user_id,
        name=row.name,
        email=row.email,
        password_hash=row.password_hash,
        roles=list(json.loads(row.roles)),
        date_created=datetime.fromisoformat(row.date_created) if row.date_created else None,
        date_updated=datetime.fromisoformat(row.date_updated) if row.date_updated else None,
    )
