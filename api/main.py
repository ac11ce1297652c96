"""
api/main.py -- FastAPI application entry point for the identity service.

Run with:  uvicorn api.main:app --reload

Middleware stack (outermost to innermost):
  1. log_requests          -- one INFO line per request with latency
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. TrustedHostMiddleware -- rejects requests with unexpected Host headers

Lifespan builds the user store (in-memory or SQL, per REPOSITORY_BACKEND), the
UserUseCases service and the TokenIssuer into app.state on startup, and closes
the store on shutdown.

Error mapping lives here and only here: identity errors propagate out of the
route handlers untouched and _STATUS_BY_ERROR turns each kind into a status.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.users import router as users_router
from core.config import Settings, get_settings
from core.validation import ValidationError
from identity.errors import (
    AuthenticationFailedError,
    AuthorizationError,
    ConflictError,
    HashingError,
    IdentityError,
    NotFoundError,
    OperationCancelledError,
    SessionMissingError,
)
from identity.memory import InMemoryUserStore
from identity.repository import UserRepository
from identity.store import SqlUserStore
from identity.tokens import get_token_issuer
from identity.usecases import UserUseCases

API_VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("identity.api")


# ---------------------------------------------------------------------------
# Lifespan -- startup / shutdown
# ---------------------------------------------------------------------------


def build_user_store(settings: Settings) -> UserRepository:
    if settings.repository_backend == "sql":
        return SqlUserStore(settings.database_url)
    return InMemoryUserStore()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Everything before yield runs on startup; everything after yield runs on
    shutdown. The store is built first because both the use-case service and
    the request-context dependency read it from app.state.
    """
    settings = get_settings()
    logger.info("Identity API starting up (backend=%s)", settings.repository_backend)
    app.state.user_store = build_user_store(settings)
    app.state.users = UserUseCases(
        app.state.user_store,
        timedelta(seconds=settings.session_duration_seconds),
        bcrypt_rounds=settings.bcrypt_rounds,
    )
    app.state.token_issuer = get_token_issuer()
    logger.info("Auth initialized (session_duration=%ss)", settings.session_duration_seconds)

    yield

    close = getattr(app.state.user_store, "close", None)
    if close is not None:
        close()
    logger.info("Identity API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Identity API",
    description="User registration, authentication and role-based access control.",
    version=API_VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
# ---------------------------------------------------------------------------

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=["localhost", "127.0.0.1", "*.localhost", "testserver"],
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost", "http://localhost:3000", "http://127.0.0.1"],
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(users_router, prefix="/api/v1", tags=["Users"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------

# Most specific first; the first isinstance match wins.
_STATUS_BY_ERROR: tuple[tuple[type[IdentityError], int], ...] = (
    (AuthenticationFailedError, 401),
    (SessionMissingError, 401),
    (AuthorizationError, 403),
    (NotFoundError, 404),
    (ConflictError, 409),
    (HashingError, 422),
    (OperationCancelledError, 503),
)


def _error_response(status_code: int, detail: ErrorDetail) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=detail).model_dump(exclude_none=True),
    )


@app.exception_handler(ValidationError)
async def domain_validation_handler(request: Request, exc: ValidationError) -> JSONResponse:
    """Return 422 with the full field -> message map."""
    return _error_response(422, ErrorDetail(code=exc.code, message=exc.message, fields=exc.to_dict()))


@app.exception_handler(IdentityError)
async def identity_error_handler(request: Request, exc: IdentityError) -> JSONResponse:
    """Map an identity error to its status code.

    401 responses name the scheme the client should retry with: Basic for the
    token endpoint, Bearer everywhere else.
    """
    status_code = next((code for kind, code in _STATUS_BY_ERROR if isinstance(exc, kind)), 500)
    response = _error_response(status_code, ErrorDetail(code=exc.code, message=exc.message))
    if isinstance(exc, AuthenticationFailedError):
        response.headers["WWW-Authenticate"] = 'Basic realm="identity"'
        response.headers["Cache-Control"] = "no-store"
    elif isinstance(exc, SessionMissingError):
        response.headers["WWW-Authenticate"] = "Bearer"
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation."""
    return _error_response(
        422,
        ErrorDetail(
            code="request_validation_error",
            message="Request validation failed.",
            detail=str(exc.errors()),
        ),
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions."""
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})
    return _error_response(exc.status_code, ErrorDetail(code=f"http_{exc.status_code}", message=str(exc.detail)))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception is written to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error_response(500, ErrorDetail(code="internal_error", message="An unexpected error occurred."))


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state. No authentication.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
async def health() -> HealthResponse:
    """Return API liveness and current version."""
    return HealthResponse(version=API_VERSION)
