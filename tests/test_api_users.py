"""
tests/test_api_users.py -- Integration tests for the user / permission admin routes.

Coverage:
  - No token -> 401; expired-looking or unknown token -> 401
  - Session without the admin grant -> 403
  - Admin: create user 201, duplicate 409, list, get 404, grant/revoke idempotent
  - Admin: deleting a user kills that user's live sessions
  - Session token accepted from the session_token cookie as well as Bearer

Fixtures used (from conftest.py):
  - api_client: (client, admin_token, service); admin holds enigma:admin
"""

from __future__ import annotations

from fastapi.testclient import TestClient

from auth.service import AuthService


def _bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


class TestAdminAuthFailure:
    def test_no_token(self, api_client: tuple[TestClient, str, AuthService]) -> None:
        client, _token, _service = api_client
        client.cookies.clear()
        resp = client.get("/api/v1/users")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "unauthorized"

    def test_unknown_token(self, api_client: tuple[TestClient, str, AuthService]) -> None:
        client, _token, _service = api_client
        resp = client.get("/api/v1/users", headers=_bearer("bogus"))
        assert resp.status_code == 401

    def test_session_without_admin_grant(self, api_client: tuple[TestClient, str, AuthService]) -> None:
        client, _token, service = api_client
        service.create_user("plain", "plainpass")
        plain_token = service.create_session("plain", "plainpass").session_token
        resp = client.get("/api/v1/users", headers=_bearer(plain_token))
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "forbidden"


class TestAdminRoutes:
    def test_create_and_get_user(self, api_client: tuple[TestClient, str, AuthService]) -> None:
        client, token, _service = api_client
        resp = client.post(
            "/api/v1/users",
            json={"username": "erin", "password": "erinpass", "email": "erin@example.com"},
            headers=_bearer(token),
        )
        assert resp.status_code == 201, resp.text
        user_id = resp.json()["id"]

        resp = client.get("/api/v1/users/erin", headers=_bearer(token))
        assert resp.status_code == 200
        assert resp.json() == {"id": user_id, "username": "erin", "email": "erin@example.com", "permissions": []}

    def test_duplicate_user_is_409(self, api_client: tuple[TestClient, str, AuthService]) -> None:
        client, token, _service = api_client
        body = {"username": "frank", "password": "frankpass"}
        assert client.post("/api/v1/users", json=body, headers=_bearer(token)).status_code == 201
        resp = client.post("/api/v1/users", json=body, headers=_bearer(token))
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "duplicate_username"

    def test_create_user_keeps_password_verbatim(self, api_client: tuple[TestClient, str, AuthService]) -> None:
        client, token, service = api_client
        body = {"username": "  ivy  ", "password": " ivy pass "}
        resp = client.post("/api/v1/users", json=body, headers=_bearer(token))
        assert resp.status_code == 201, resp.text
        assert resp.json()["username"] == "ivy"
        assert service.create_session("ivy", " ivy pass ").user.username == "ivy"

    def test_create_user_password_byte_limit(self, api_client: tuple[TestClient, str, AuthService]) -> None:
        client, token, _service = api_client
        body = {"username": "jules", "password": "\u00e9" * 37}
        resp = client.post("/api/v1/users", json=body, headers=_bearer(token))
        assert resp.status_code == 422
        body["password"] = "\u00e9" * 36
        assert client.post("/api/v1/users", json=body, headers=_bearer(token)).status_code == 201

    def test_get_unknown_user_is_404(self, api_client: tuple[TestClient, str, AuthService]) -> None:
        client, token, _service = api_client
        resp = client.get("/api/v1/users/nobody", headers=_bearer(token))
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "user_not_found"

    def test_list_includes_admin_grant(self, api_client: tuple[TestClient, str, AuthService]) -> None:
        client, token, _service = api_client
        resp = client.get("/api/v1/users", headers=_bearer(token))
        assert resp.status_code == 200
        admin = next(u for u in resp.json() if u["username"] == "testadmin")
        assert {"site": "enigma", "permission": "admin"} in admin["permissions"]

    def test_grant_and_revoke(self, api_client: tuple[TestClient, str, AuthService]) -> None:
        client, token, service = api_client
        service.create_user("gina", "ginapass")
        grant = {"site": "example.com", "permission": "write"}

        for _ in range(2):
            resp = client.post("/api/v1/users/gina/permissions", json=grant, headers=_bearer(token))
            assert resp.status_code == 200
            assert resp.json()["permissions"] == [grant]

        for _ in range(2):
            resp = client.request("DELETE", "/api/v1/users/gina/permissions", json=grant, headers=_bearer(token))
            assert resp.status_code == 200
            assert resp.json()["permissions"] == []

    def test_delete_user_ends_sessions(self, api_client: tuple[TestClient, str, AuthService]) -> None:
        client, token, service = api_client
        service.create_user("hank", "hankpass")
        hank_token = service.create_session("hank", "hankpass").session_token

        resp = client.delete("/api/v1/users/hank", headers=_bearer(token))
        assert resp.status_code == 200

        resp = client.post("/api/v1/session/verify", json={"session_token": hank_token})
        assert resp.status_code == 404
        assert client.delete("/api/v1/users/hank", headers=_bearer(token)).status_code == 404

    def test_cookie_token_accepted(self, api_client: tuple[TestClient, str, AuthService]) -> None:
        client, token, _service = api_client
        client.cookies.clear()
        client.cookies.set("session_token", token)
        resp = client.get("/api/v1/users")
        assert resp.status_code == 200
        client.cookies.clear()
