"""
api/dependencies.py -- FastAPI Depends() helpers that build the request scope.

Every route receives a RequestContext. It is stamped with the request time and
a deadline, and carries a Session when the request presents a valid
Authorization: Bearer <token> header whose subject still exists in the store.

An absent, malformed, expired or forged token does NOT raise here -- the
context simply has no session, and the use-case layer decides whether the
operation needs one (SessionMissingError -> 401). That keeps the single
authorization gate in identity/usecases.py.

The Session wraps the user as currently stored (so role changes take effect
on the next request) and expires when the token does.
"""

from __future__ import annotations

import time
from datetime import datetime, timezone

from fastapi import Request

from identity.context import RequestContext
from identity.errors import NotFoundError
from identity.models import Session
from identity.repository import UserRepository
from identity.tokens import TokenIssuer

# Upper bound on how long after arrival a request may still start a store
# operation.
_REQUEST_TIMEOUT_SECONDS = 30.0


def _bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer":
        return None
    token = token.strip()
    return token or None


def get_request_context(request: Request) -> RequestContext:
    """Build the RequestContext for this request. Never raises for bad tokens."""
    ctx = RequestContext(
        now=datetime.now(timezone.utc),
        deadline=time.monotonic() + _REQUEST_TIMEOUT_SECONDS,
    )

    token = _bearer_token(request)
    if token is None:
        return ctx

    issuer: TokenIssuer = request.app.state.token_issuer
    claims = issuer.verify(token)
    if claims is None:
        return ctx

    store: UserRepository = request.app.state.user_store
    try:
        user = store.query_by_id(ctx, claims.subject)
    except NotFoundError:
        return ctx
    return ctx.with_session(Session.new(user, claims.expires))
