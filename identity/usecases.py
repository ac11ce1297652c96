"""
identity/usecases.py -- Application logic for users: the authorization gate.

Pattern: Service / Use-Case layer. This is the single place where role policy
is enforced; repositories are policy-agnostic.

Policy:
  authenticate          public; unknown email and wrong password raise the
                        same AuthenticationFailedError
  register              public self-signup; the first user ever gets
                        ADMIN + USER, everyone after that USER only
  create, query         ADMIN only
  query_by_id/_email,
  update, delete        ADMIN, or the session's own user (self-service)

Authorization is decided from the session and the requested identifier
alone, before any repository call, so a non-owner cannot tell "exists but
forbidden" from "does not exist". Only an authorized caller can see
NotFoundError.

A request without a session raises SessionMissingError (SessionExpiredError
when it lapsed), which is distinct from AuthorizationError (session present,
role/ownership missing).

Register race: the "is the store empty?" probe and the insert are serialized
behind a per-service lock so two concurrent registrations in one process can
never both receive ADMIN. Processes sharing a SQL database are not covered by
this lock.

Errors are never logged or swallowed here. Successful state changes are
logged at INFO without credentials.
"""

from __future__ import annotations

import logging
import secrets
import threading
from datetime import timedelta

from core.validation import ValidationProvider
from identity.context import RequestContext
from identity.errors import AuthenticationFailedError, AuthorizationError, NotFoundError
from identity.models import ROLE_ADMIN, ROLE_USER, NewUser, Session, User, UserUpdate, default_validation_provider
from identity.passwords import DEFAULT_ROUNDS, hash_password, verify_password
from identity.repository import UserRepository

logger = logging.getLogger("identity.usecases")


class UserUseCases:
    """User application logic.

    Usage:
        users = UserUseCases(InMemoryUserStore(), timedelta(hours=1))
        admin = users.register(ctx, NewUser("Ada", "ada@example.com", "s3cret"))
        session = users.authenticate(ctx, "ada@example.com", "s3cret")
        users.query(ctx.with_session(session), page=1, rows=20)
    """

    def __init__(
        self,
        repo: UserRepository,
        session_duration: timedelta,
        *,
        validator: ValidationProvider | None = None,
        bcrypt_rounds: int = DEFAULT_ROUNDS,
    ) -> None:
        self.repo = repo
        self.session_duration = session_duration
        self.validator = validator or default_validation_provider()
        self.bcrypt_rounds = bcrypt_rounds
        self._register_lock = threading.Lock()
        # Same cost as real hashes so both authentication failure paths take
        # one bcrypt comparison of equal cost.
        self._dummy_hash = hash_password(secrets.token_hex(16), rounds=bcrypt_rounds)

    # ------------------------------------------------------------------
    # Public operations (no session)
    # ------------------------------------------------------------------

    def authenticate(self, ctx: RequestContext, email: str, password: str) -> Session:
        """Return a Session expiring at ctx.now + session_duration.

        Raises AuthenticationFailedError for an unknown email and for a wrong
        password alike.
        """
        try:
            user = self.repo.query_by_email(ctx, email)
        except NotFoundError:
            verify_password(password, self._dummy_hash)
            raise AuthenticationFailedError() from None
        if not user.has_password(password):
            raise AuthenticationFailedError()
        return Session.new(user, ctx.now + self.session_duration)

    def register(self, ctx: RequestContext, new_user: NewUser) -> User:
        """Self-signup. Roles in new_user are ignored.

        Hashing and validation happen before the lock is taken; only the
        probe-and-insert is serialized.
        """
        user = self._build(ctx, new_user, [ROLE_USER])
        with self._register_lock:
            first = not self.repo.query(ctx, 1, 1)
            user.roles = [ROLE_ADMIN, ROLE_USER] if first else [ROLE_USER]
            self.repo.create(ctx, user)
        logger.info("User registered (id=%s, roles=%s)", user.id, ",".join(user.roles))
        return user

    # ------------------------------------------------------------------
    # Session-gated operations
    # ------------------------------------------------------------------

    def create(self, ctx: RequestContext, new_user: NewUser) -> User:
        self._require_admin(ctx)
        user = self._build(ctx, new_user, new_user.roles)
        self.repo.create(ctx, user)
        logger.info("User created (id=%s, roles=%s)", user.id, ",".join(user.roles))
        return user

    def query(self, ctx: RequestContext, page: int, rows: int) -> list[User]:
        self._require_admin(ctx)
        return self.repo.query(ctx, page, rows)

    def query_by_id(self, ctx: RequestContext, user_id: str) -> User:
        session = ctx.require_session()
        self._require_admin_or_self(session, session.user.id == user_id)
        return self.repo.query_by_id(ctx, user_id)

    def query_by_email(self, ctx: RequestContext, email: str) -> User:
        session = ctx.require_session()
        self._require_admin_or_self(session, session.user.email == email)
        return self.repo.query_by_email(ctx, email)

    def update(self, ctx: RequestContext, user_id: str, changes: UserUpdate) -> User:
        """Apply changes to an existing user and return the stored result.

        Only ADMIN may change roles, including an admin's own. date_updated is
        refreshed to ctx.now and the result is re-validated before saving.
        """
        session = ctx.require_session()
        self._require_admin_or_self(session, session.user.id == user_id)
        if changes.roles is not None and not session.user_has_role(ROLE_ADMIN):
            raise AuthorizationError("only ADMIN can change roles")

        user = self.repo.query_by_id(ctx, user_id)
        if changes.name is not None:
            user.name = changes.name
        if changes.email is not None:
            user.email = changes.email
        if changes.roles is not None:
            user.roles = list(changes.roles)
        if changes.password is not None:
            user.password_hash = hash_password(changes.password, rounds=self.bcrypt_rounds)
        user.date_updated = ctx.now
        user.validate(self.validator)

        self.repo.update(ctx, user)
        return user

    def delete(self, ctx: RequestContext, user_id: str) -> None:
        """Remove a user. Deleting an id that does not exist succeeds."""
        session = ctx.require_session()
        self._require_admin_or_self(session, session.user.id == user_id)
        self.repo.delete(ctx, user_id)
        logger.info("User deleted (id=%s, by=%s)", user_id, session.user.id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _build(self, ctx: RequestContext, new_user: NewUser, roles: list[str]) -> User:
        return User.new(
            new_user.name,
            new_user.email,
            new_user.password,
            roles,
            ctx.now,
            validator=self.validator,
            rounds=self.bcrypt_rounds,
        )

    @staticmethod
    def _require_admin(ctx: RequestContext) -> Session:
        session = ctx.require_session()
        if not session.user_has_role(ROLE_ADMIN):
            raise AuthorizationError()
        return session

    @staticmethod
    def _require_admin_or_self(session: Session, is_self: bool) -> None:
        if session.user_has_role(ROLE_ADMIN) or is_self:
            return
        raise AuthorizationError()
