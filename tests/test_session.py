"""
tests/test_session.py -- Session expiry/roles and the RequestContext scope.

Covers:
  - A zero Session is expired and holds no roles
  - is_valid() <=> now < expires, compared against the supplied time
  - The session's user is a snapshot
  - require_session() tells a missing session from an expired one
  - check() raises once the context is cancelled or past its deadline
"""

from __future__ import annotations

import threading
import time
from datetime import timedelta

import pytest
from conftest import make_user

from identity.context import RequestContext
from identity.errors import OperationCancelledError, SessionExpiredError, SessionMissingError
from identity.models import ROLE_ADMIN, ROLE_USER, Session


class TestSession:
    def test_zero_session_is_expired(self, now) -> None:
        session = Session()
        assert session.is_expired(now)
        assert not session.is_valid(now)
        assert session.is_expired()

    def test_zero_session_has_no_roles(self) -> None:
        assert not Session().user_has_role(ROLE_ADMIN, ROLE_USER)

    def test_valid_until_expiry(self, now) -> None:
        session = Session.new(make_user("s@example.com"), now + timedelta(minutes=5))
        assert session.is_valid(now)
        assert session.is_valid(now + timedelta(minutes=4, seconds=59))

    def test_expired_at_exact_expiry(self, now) -> None:
        """Validity is strict: now == expires is already expired."""
        session = Session.new(make_user("s@example.com"), now)
        assert session.is_expired(now)

    def test_user_has_role_is_any_of(self, now) -> None:
        session = Session.new(make_user("r@example.com", roles=[ROLE_USER]), now + timedelta(hours=1))
        assert session.user_has_role(ROLE_USER)
        assert session.user_has_role(ROLE_ADMIN, ROLE_USER)
        assert not session.user_has_role(ROLE_ADMIN)
        assert not session.user_has_role()

    def test_session_user_is_a_snapshot(self, now) -> None:
        user = make_user("snap@example.com", roles=[ROLE_USER])
        session = Session.new(user, now + timedelta(hours=1))
        user.roles.append(ROLE_ADMIN)
        user.name = "Renamed"
        assert not session.user_has_role(ROLE_ADMIN)
        assert session.user.name == "Test User"


class TestRequestContext:
    def test_missing_session(self, ctx) -> None:
        with pytest.raises(SessionMissingError) as exc_info:
            ctx.require_session()
        assert not isinstance(exc_info.value, SessionExpiredError)

    def test_expired_session(self, ctx, now) -> None:
        expired = ctx.with_session(Session.new(make_user("old@example.com"), now - timedelta(seconds=1)))
        with pytest.raises(SessionExpiredError):
            expired.require_session()

    def test_expired_session_is_a_missing_session(self, ctx, now) -> None:
        """Callers that only care about "no usable session" can catch the parent."""
        expired = ctx.with_session(Session.new(make_user("old@example.com"), now))
        with pytest.raises(SessionMissingError):
            expired.require_session()

    def test_live_session_returned(self, ctx, now) -> None:
        session = Session.new(make_user("live@example.com"), now + timedelta(minutes=1))
        assert ctx.with_session(session).require_session() is session

    def test_expiry_judged_at_context_time(self, now) -> None:
        session = Session.new(make_user("t@example.com"), now + timedelta(minutes=1))
        later = RequestContext(now=now + timedelta(minutes=2), session=session)
        with pytest.raises(SessionExpiredError):
            later.require_session()

    def test_with_session_leaves_original_untouched(self, ctx, now) -> None:
        ctx.with_session(Session.new(make_user("w@example.com"), now + timedelta(minutes=1)))
        assert ctx.session is None

    def test_cancel_event(self, now) -> None:
        event = threading.Event()
        ctx = RequestContext(now=now, cancel_event=event)
        ctx.check()
        event.set()
        assert ctx.cancelled()
        with pytest.raises(OperationCancelledError):
            ctx.check()

    def test_deadline_passed(self, now) -> None:
        ctx = RequestContext(now=now, deadline=time.monotonic() - 1)
        with pytest.raises(OperationCancelledError):
            ctx.check()

    def test_background_context(self) -> None:
        ctx = RequestContext.background(timeout=60)
        assert ctx.session is None
        assert ctx.now.tzinfo is not None
        assert not ctx.cancelled()
