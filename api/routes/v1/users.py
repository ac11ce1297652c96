"""
api/routes/v1/users.py -- Authentication and user management REST endpoints.

Routes:
  GET    /api/v1/users/token               -- Basic-auth login; returns a bearer token
  POST   /api/v1/users/register            -- public self-signup
  POST   /api/v1/users                     -- create user (ADMIN)
  GET    /api/v1/users?page=&rows=         -- list users (ADMIN)
  GET    /api/v1/users/by-email/{email}    -- fetch by email (ADMIN or self)
  GET    /api/v1/users/{user_id}           -- fetch by id (ADMIN or self)
  PUT    /api/v1/users/{user_id}           -- update (ADMIN or self; roles ADMIN only)
  DELETE /api/v1/users/{user_id}           -- delete, idempotent (ADMIN or self)

Handlers are thin: decode, call UserUseCases, encode. They do not check roles
and do not catch identity errors -- authorization lives in the use-case layer
and api/main.py maps every error kind to a status code in one place.

Handlers are plain `def` so FastAPI runs them in its thread pool; bcrypt
hashing and verification never block the event loop.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request, Response
from fastapi.responses import JSONResponse
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from api.dependencies import get_request_context
from api.models import NewUserRequest, TokenResponse, UserResponse, UserUpdateRequest
from identity.context import RequestContext
from identity.errors import AuthenticationFailedError
from identity.tokens import TokenIssuer
from identity.usecases import UserUseCases

router = APIRouter()

_basic = HTTPBasic(auto_error=False)


def _users(request: Request) -> UserUseCases:
    return request.app.state.users


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.get("/users/token", response_model=TokenResponse)
def token(
    request: Request,
    credentials: HTTPBasicCredentials | None = Depends(_basic),
    ctx: RequestContext = Depends(get_request_context),
) -> JSONResponse:
    """Exchange Basic-auth email/password for a signed bearer token.

    Missing credentials and rejected credentials both yield the same 401 body.
    """
    if credentials is None:
        raise AuthenticationFailedError()
    session = _users(request).authenticate(ctx, credentials.username, credentials.password)

    issuer: TokenIssuer = request.app.state.token_issuer
    body = TokenResponse(token=issuer.issue(session, ctx.now), expires_at=session.expires)
    resp = JSONResponse(status_code=200, content=body.model_dump(mode="json"))
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/users/register", response_model=UserResponse, status_code=201)
def register(
    request: Request,
    body: NewUserRequest,
    ctx: RequestContext = Depends(get_request_context),
) -> UserResponse:
    """Self-signup. The first account becomes ADMIN; later ones are USER only."""
    user = _users(request).register(ctx, body.to_domain())
    return UserResponse.from_user(user)


# ---------------------------------------------------------------------------
# Session-gated endpoints
# ---------------------------------------------------------------------------


@router.post("/users", response_model=UserResponse, status_code=201)
def create_user(
    request: Request,
    body: NewUserRequest,
    ctx: RequestContext = Depends(get_request_context),
) -> UserResponse:
    user = _users(request).create(ctx, body.to_domain())
    return UserResponse.from_user(user)


@router.get("/users", response_model=list[UserResponse])
def list_users(
    request: Request,
    page: int = Query(default=1, ge=1),
    rows: int = Query(default=20, ge=1, le=100),
    ctx: RequestContext = Depends(get_request_context),
) -> list[UserResponse]:
    users = _users(request).query(ctx, page, rows)
    return [UserResponse.from_user(u) for u in users]


@router.get("/users/by-email/{email}", response_model=UserResponse)
def get_user_by_email(
    request: Request,
    email: str,
    ctx: RequestContext = Depends(get_request_context),
) -> UserResponse:
    return UserResponse.from_user(_users(request).query_by_email(ctx, email))


@router.get("/users/{user_id}", response_model=UserResponse)
def get_user(
    request: Request,
    user_id: str,
    ctx: RequestContext = Depends(get_request_context),
) -> UserResponse:
    return UserResponse.from_user(_users(request).query_by_id(ctx, user_id))


@router.put("/users/{user_id}", response_model=UserResponse)
def update_user(
    request: Request,
    user_id: str,
    body: UserUpdateRequest,
    ctx: RequestContext = Depends(get_request_context),
) -> UserResponse:
    user = _users(request).update(ctx, user_id, body.to_domain())
    return UserResponse.from_user(user)


@router.delete("/users/{user_id}", status_code=204)
def delete_user(
    request: Request,
    user_id: str,
    ctx: RequestContext = Depends(get_request_context),
) -> Response:
    _users(request).delete(ctx, user_id)
    return Response(status_code=204)
