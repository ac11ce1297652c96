"""
identity/context.py -- Explicit request scope for use-case and store calls.

Every use-case and repository method takes a RequestContext as its first
argument instead of reading ambient state. It carries:
  now          -- the request's notion of the current time (UTC, aware)
  session      -- the caller's Session, or None for public operations
  deadline     -- optional time.monotonic() value after which work must not start
  cancel_event -- optional threading.Event the caller sets to cancel

Stores call ctx.check() before touching state. In-memory operations are fast
enough that mid-operation cancellation is not attempted.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, replace
from datetime import datetime, timezone

from identity.errors import OperationCancelledError, SessionExpiredError, SessionMissingError
from identity.models import Session


@dataclass(frozen=True)
class RequestContext:
    now: datetime
    session: Session | None = None
    deadline: float | None = None
    cancel_event: threading.Event | None = None

    @classmethod
    def background(cls, timeout: float | None = None) -> RequestContext:
        """Context stamped with the current UTC time and no session."""
        deadline = time.monotonic() + timeout if timeout is not None else None
        return cls(now=datetime.now(timezone.utc), deadline=deadline)

    def with_session(self, session: Session | None) -> RequestContext:
        return replace(self, session=session)

    def require_session(self) -> Session:
        """Return the session or raise.

        SessionMissingError when there is none, SessionExpiredError when it
        expired at or before ctx.now.
        """
        if self.session is None:
            raise SessionMissingError()
        if self.session.is_expired(self.now):
            raise SessionExpiredError()
        return self.session

    def cancelled(self) -> bool:
        if self.cancel_event is not None and self.cancel_event.is_set():
            return True
        return self.deadline is not None and time.monotonic() >= self.deadline

    def check(self) -> None:
        if self.cancelled():
            raise OperationCancelledError()
