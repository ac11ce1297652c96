"""
tests/test_api_routes.py -- Integration tests for the /api/v1 user routes.

These tests exercise the full stack: FastAPI routing -> bearer token to
RequestContext -> UserUseCases authorization -> store -> response model
serialization -> error envelope. The identity errors raised deep in the
use-case layer are only turned into status codes in api/main.py, so
integration tests are the right tool to pin that mapping down.

Coverage:
  - Health and token endpoints (Basic auth, no-store, identical 401s)
  - Register: 201 with USER role, 409 duplicate, 422 field map, 422 mismatch
  - Session gating: 401 without/with a bad token, 403 for the wrong role
  - Self-service read/update/delete vs admin-only list/create

Fixtures used (from conftest.py):
  - api_client: (client, admin_token, admin) -- the admin's password is
    "adminpass123"
"""

from __future__ import annotations

import uuid

from fastapi.testclient import TestClient

MISSING_ID = "00000000-0000-0000-0000-000000000000"


def _auth(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _signup(client: TestClient, password: str = "pass1234") -> tuple[dict, str]:
    """Register a fresh USER and log in. Returns (user_json, token)."""
    email = f"user-{uuid.uuid4().hex[:8]}@example.com"
    resp = client.post(
        "/api/v1/users/register",
        json={"name": "Regular", "email": email, "password": password, "password_confirm": password},
    )
    assert resp.status_code == 201, resp.text
    token_resp = client.get("/api/v1/users/token", auth=(email, password))
    assert token_resp.status_code == 200, token_resp.text
    return resp.json(), token_resp.json()["token"]


class TestHealth:
    def test_health_ok(self, api_client) -> None:
        client, _token, _admin = api_client
        resp = client.get("/api/v1/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"


class TestToken:
    def test_valid_credentials(self, api_client) -> None:
        client, _token, admin = api_client
        resp = client.get("/api/v1/users/token", auth=("apiadmin@example.com", "adminpass123"))
        assert resp.status_code == 200
        body = resp.json()
        assert body["token_type"] == "bearer"
        assert body["token"]
        assert "expires_at" in body
        assert resp.headers["cache-control"] == "no-store"

    def test_token_works_as_bearer(self, api_client) -> None:
        client, _token, admin = api_client
        token = client.get("/api/v1/users/token", auth=("apiadmin@example.com", "adminpass123")).json()["token"]
        resp = client.get(f"/api/v1/users/{admin.id}", headers=_auth(token))
        assert resp.status_code == 200
        assert resp.json()["email"] == "apiadmin@example.com"

    def test_wrong_password_and_unknown_email_identical(self, api_client) -> None:
        client, _token, _admin = api_client
        wrong = client.get("/api/v1/users/token", auth=("apiadmin@example.com", "nope"))
        unknown = client.get("/api/v1/users/token", auth=("ghost@example.com", "nope"))
        assert wrong.status_code == unknown.status_code == 401
        assert wrong.json() == unknown.json()
        assert wrong.json()["error"]["code"] == "authentication_failed"
        assert wrong.headers["www-authenticate"].startswith("Basic")

    def test_missing_credentials(self, api_client) -> None:
        client, _token, _admin = api_client
        resp = client.get("/api/v1/users/token")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "authentication_failed"


class TestRegister:
    def test_register_creates_plain_user(self, api_client) -> None:
        client, _token, _admin = api_client
        user, _ = _signup(client)
        assert user["roles"] == ["USER"]
        assert "password_hash" not in user
        assert "password" not in user

    def test_register_ignores_requested_roles(self, api_client) -> None:
        client, _token, _admin = api_client
        resp = client.post(
            "/api/v1/users/register",
            json={
                "name": "Sneaky",
                "email": "sneaky@example.com",
                "password": "pw123456",
                "password_confirm": "pw123456",
                "roles": ["ADMIN"],
            },
        )
        assert resp.status_code == 201
        assert resp.json()["roles"] == ["USER"]

    def test_duplicate_email_conflict(self, api_client) -> None:
        client, _token, _admin = api_client
        resp = client.post(
            "/api/v1/users/register",
            json={"name": "Dup", "email": "apiadmin@example.com", "password": "x1", "password_confirm": "x1"},
        )
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "unique_email"

    def test_invalid_email_field_map(self, api_client) -> None:
        client, _token, _admin = api_client
        resp = client.post(
            "/api/v1/users/register",
            json={"name": "Bad", "email": "not-an-email", "password": "x1", "password_confirm": "x1"},
        )
        assert resp.status_code == 422
        error = resp.json()["error"]
        assert error["code"] == "validation_error"
        assert error["message"] == "data validation error"
        assert error["fields"] == {"email": "email must be a valid email address"}

    def test_password_mismatch(self, api_client) -> None:
        client, _token, _admin = api_client
        resp = client.post(
            "/api/v1/users/register",
            json={"name": "Mis", "email": "mis@example.com", "password": "a1", "password_confirm": "b2"},
        )
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "request_validation_error"

    def test_empty_password(self, api_client) -> None:
        client, _token, _admin = api_client
        resp = client.post(
            "/api/v1/users/register",
            json={"name": "Empty", "email": "empty@example.com", "password": "", "password_confirm": ""},
        )
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "hashing_failed"

    def test_password_whitespace_preserved(self, api_client) -> None:
        """The exact password sent at registration, spaces included, is the one that logs in."""
        client, _token, _admin = api_client
        password = "  secret pass  "
        resp = client.post(
            "/api/v1/users/register",
            json={"name": "Spacey", "email": "spacey@example.com", "password": password, "password_confirm": password},
        )
        assert resp.status_code == 201
        assert client.get("/api/v1/users/token", auth=("spacey@example.com", password)).status_code == 200
        assert client.get("/api/v1/users/token", auth=("spacey@example.com", "secret pass")).status_code == 401

    def test_name_and_email_trimmed(self, api_client) -> None:
        client, _token, _admin = api_client
        resp = client.post(
            "/api/v1/users/register",
            json={"name": "  Trim  ", "email": " trim@example.com ", "password": "pw1", "password_confirm": "pw1"},
        )
        assert resp.status_code == 201
        assert resp.json()["name"] == "Trim"
        assert resp.json()["email"] == "trim@example.com"

    def test_password_over_bcrypt_byte_limit(self, api_client) -> None:
        """40 two-byte characters are 80 bytes: rejected as a request error, not a hashing failure."""
        client, _token, _admin = api_client
        password = "é" * 40
        resp = client.post(
            "/api/v1/users/register",
            json={"name": "Long", "email": "long@example.com", "password": password, "password_confirm": password},
        )
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "request_validation_error"

    def test_password_at_byte_limit_accepted(self, api_client) -> None:
        client, _token, _admin = api_client
        password = "p" * 72
        resp = client.post(
            "/api/v1/users/register",
            json={"name": "Edge", "email": "edge@example.com", "password": password, "password_confirm": password},
        )
        assert resp.status_code == 201
        assert client.get("/api/v1/users/token", auth=("edge@example.com", password)).status_code == 200


class TestSessionGating:
    def test_no_token(self, api_client) -> None:
        client, _token, _admin = api_client
        resp = client.get("/api/v1/users")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "session_missing"
        assert resp.headers["www-authenticate"] == "Bearer"

    def test_garbage_token(self, api_client) -> None:
        client, _token, _admin = api_client
        resp = client.get("/api/v1/users", headers=_auth("garbage"))
        assert resp.status_code == 401

    def test_member_forbidden_from_list(self, api_client) -> None:
        client, _token, _admin = api_client
        _, token = _signup(client)
        resp = client.get("/api/v1/users", headers=_auth(token))
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "unauthorized"

    def test_member_forbidden_from_create(self, api_client) -> None:
        client, _token, _admin = api_client
        _, token = _signup(client)
        resp = client.post(
            "/api/v1/users",
            headers=_auth(token),
            json={"name": "X", "email": "x@example.com", "password": "x1", "password_confirm": "x1"},
        )
        assert resp.status_code == 403

    def test_member_cannot_see_others_or_probe(self, api_client) -> None:
        client, _token, admin = api_client
        _, token = _signup(client)
        assert client.get(f"/api/v1/users/{admin.id}", headers=_auth(token)).status_code == 403
        assert client.get(f"/api/v1/users/{MISSING_ID}", headers=_auth(token)).status_code == 403


class TestAdminRoutes:
    def test_list_users(self, api_client) -> None:
        client, token, admin = api_client
        resp = client.get("/api/v1/users", params={"page": 1, "rows": 100}, headers=_auth(token))
        assert resp.status_code == 200
        ids = [u["id"] for u in resp.json()]
        assert admin.id in ids

    def test_list_rejects_bad_page(self, api_client) -> None:
        client, token, _admin = api_client
        resp = client.get("/api/v1/users", params={"page": 0}, headers=_auth(token))
        assert resp.status_code == 422

    def test_create_with_roles(self, api_client) -> None:
        client, token, _admin = api_client
        resp = client.post(
            "/api/v1/users",
            headers=_auth(token),
            json={
                "name": "Second Admin",
                "email": "admin2@example.com",
                "password": "pw123456",
                "password_confirm": "pw123456",
                "roles": ["ADMIN", "USER"],
            },
        )
        assert resp.status_code == 201
        assert resp.json()["roles"] == ["ADMIN", "USER"]

    def test_get_missing_user(self, api_client) -> None:
        client, token, _admin = api_client
        resp = client.get(f"/api/v1/users/{MISSING_ID}", headers=_auth(token))
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "not_found"

    def test_get_by_email(self, api_client) -> None:
        client, token, admin = api_client
        resp = client.get("/api/v1/users/by-email/apiadmin@example.com", headers=_auth(token))
        assert resp.status_code == 200
        assert resp.json()["id"] == admin.id

    def test_promote_user(self, api_client) -> None:
        client, token, _admin = api_client
        user, _ = _signup(client)
        resp = client.put(f"/api/v1/users/{user['id']}", headers=_auth(token), json={"roles": ["ADMIN", "USER"]})
        assert resp.status_code == 200
        assert resp.json()["roles"] == ["ADMIN", "USER"]


class TestSelfService:
    def test_read_self(self, api_client) -> None:
        client, _token, _admin = api_client
        user, token = _signup(client)
        resp = client.get(f"/api/v1/users/{user['id']}", headers=_auth(token))
        assert resp.status_code == 200
        assert resp.json()["email"] == user["email"]

    def test_rename_self(self, api_client) -> None:
        client, _token, _admin = api_client
        user, token = _signup(client)
        resp = client.put(f"/api/v1/users/{user['id']}", headers=_auth(token), json={"name": "Renamed"})
        assert resp.status_code == 200
        assert resp.json()["name"] == "Renamed"

    def test_cannot_grant_self_admin(self, api_client) -> None:
        client, _token, _admin = api_client
        user, token = _signup(client)
        resp = client.put(f"/api/v1/users/{user['id']}", headers=_auth(token), json={"roles": ["ADMIN"]})
        assert resp.status_code == 403

    def test_delete_self_then_token_is_dead(self, api_client) -> None:
        client, _token, _admin = api_client
        user, token = _signup(client)
        resp = client.delete(f"/api/v1/users/{user['id']}", headers=_auth(token))
        assert resp.status_code == 204
        again = client.get(f"/api/v1/users/{user['id']}", headers=_auth(token))
        assert again.status_code == 401

    def test_password_change_keeps_whitespace(self, api_client) -> None:
        client, _token, _admin = api_client
        user, token = _signup(client)
        new_password = " new pass "
        resp = client.put(
            f"/api/v1/users/{user['id']}",
            headers=_auth(token),
            json={"password": new_password, "password_confirm": new_password},
        )
        assert resp.status_code == 200
        assert client.get("/api/v1/users/token", auth=(user["email"], new_password)).status_code == 200
