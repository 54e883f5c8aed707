"""
tests/test_api_routes.py -- Integration tests for the auth API routes.

These tests exercise the full stack: FastAPI routing -> SessionMiddleware ->
auth dependency injection -> Authenticator / RoleGate -> UserStore ->
response model serialization. The remember-me cookie written by the
apply_issued_cookies middleware is only visible at this level.

Coverage:
  - Login: 200 with session, 401 login_failed, 400 for two identities, 422 for none
  - Session: /me after login, 401 without, logout ends it
  - Remember-me: cookie issued, restores a session, rotates on use, revoked by logout
  - Role gate: 302 /login anonymous, 302 /error silent, 403 loud, 200 admin
  - Forced reset: 302 to the reset URL
  - Admin user management and login audit log

Fixtures used (from conftest.py):
  - api_client: (client, store) -- TestClient with follow_redirects=False.
    admin@example.com (role admin) and bob@example.com, both with PASSWORD.
"""

from __future__ import annotations

from fastapi.testclient import TestClient

from auth.messages import lang
from auth.store import UserStore

PASSWORD = "correct horse battery"  # conftest.PASSWORD


def _login(client: TestClient, email: str, password: str = PASSWORD, remember: bool = False):
    return client.post("/api/v1/auth/login", json={"email": email, "password": password, "remember": remember})


class TestLogin:
    def test_login_success(self, api_client: tuple[TestClient, UserStore]) -> None:
        """Valid credentials return 200, the user, and a no-store header."""
        client, _store = api_client
        resp = _login(client, "admin@example.com")
        assert resp.status_code == 200
        data = resp.json()
        assert data["email"] == "admin@example.com"
        assert data["username"] == "admin"
        assert data["remembered"] is False
        assert data["redirect"] == "/"
        assert resp.headers["cache-control"] == "no-store"
        assert "remember" not in resp.cookies

    def test_login_by_username(self, api_client: tuple[TestClient, UserStore]) -> None:
        client, _store = api_client
        resp = client.post("/api/v1/auth/login", json={"username": "bob", "password": PASSWORD})
        assert resp.status_code == 200
        assert resp.json()["email"] == "bob@example.com"

    def test_wrong_password(self, api_client: tuple[TestClient, UserStore]) -> None:
        client, _store = api_client
        resp = _login(client, "admin@example.com", "wrong password")
        assert resp.status_code == 401
        error = resp.json()["error"]
        assert error["code"] == "login_failed"
        assert error["message"] == lang("login.invalid_password")

    def test_banned_user(self, api_client: tuple[TestClient, UserStore]) -> None:
        client, store = api_client
        bob = store.find_user("email", "bob@example.com")
        store.update_user(bob.id, banned=True)
        resp = _login(client, "bob@example.com")
        assert resp.status_code == 401
        assert resp.json()["error"]["message"] == lang("user.is_banned")

    def test_failed_and_successful_logins_are_audited(self, api_client: tuple[TestClient, UserStore]) -> None:
        client, store = api_client
        _login(client, "bob@example.com", "wrong password")
        _login(client, "bob@example.com")
        attempts = store.list_login_attempts(login="bob@example.com")
        assert [(a.success, a.info) for a in attempts] == [(True, "Credentials ok"), (False, "User unknown")]
        assert attempts[0].ip_address == "testclient"

    def test_two_identity_fields_is_a_client_error(self, api_client: tuple[TestClient, UserStore]) -> None:
        client, _store = api_client
        resp = client.post(
            "/api/v1/auth/login",
            json={"email": "admin@example.com", "username": "admin", "password": PASSWORD},
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "invalid_credentials_shape"

    def test_missing_identity_is_a_validation_error(self, api_client: tuple[TestClient, UserStore]) -> None:
        client, _store = api_client
        resp = client.post("/api/v1/auth/login", json={"password": PASSWORD})
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"


class TestSession:
    def test_me_requires_login(self, api_client: tuple[TestClient, UserStore]) -> None:
        client, _store = api_client
        resp = client.get("/api/v1/auth/me")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "unauthorized"

    def test_me_after_login(self, api_client: tuple[TestClient, UserStore]) -> None:
        client, _store = api_client
        _login(client, "admin@example.com")
        resp = client.get("/api/v1/auth/me")
        assert resp.status_code == 200
        data = resp.json()
        assert data["email"] == "admin@example.com"
        assert data["roles"] == ["admin"]

    def test_logout_ends_session(self, api_client: tuple[TestClient, UserStore]) -> None:
        client, _store = api_client
        _login(client, "bob@example.com")
        assert client.post("/api/v1/auth/logout").status_code == 200
        assert client.get("/api/v1/auth/me").status_code == 401

    def test_forced_reset_redirects(self, api_client: tuple[TestClient, UserStore]) -> None:
        client, store = api_client
        _login(client, "bob@example.com")
        bob = store.find_user("email", "bob@example.com")
        store.update_user(bob.id, force_pass_reset=True, reset_hash="tok123")
        resp = client.get("/api/v1/auth/me")
        assert resp.status_code == 302
        assert resp.headers["location"] == "/reset-password?token=tok123"


class TestRememberMe:
    def test_remember_cookie_restores_and_rotates(self, api_client: tuple[TestClient, UserStore]) -> None:
        client, _store = api_client
        resp = _login(client, "bob@example.com", remember=True)
        assert resp.json()["remembered"] is True
        first = resp.cookies.get("remember")
        assert first and ":" in first

        # Drop the session; only the remember-me cookie is left.
        client.cookies.delete("session")
        resp = client.get("/api/v1/auth/me")
        assert resp.status_code == 200
        assert resp.json()["email"] == "bob@example.com"
        second = resp.cookies.get("remember")
        assert second and second != first

    def test_logout_revokes_remember_tokens(self, api_client: tuple[TestClient, UserStore]) -> None:
        client, store = api_client
        resp = _login(client, "bob@example.com", remember=True)
        selector = resp.cookies.get("remember").split(":", 1)[0]
        assert store.get_remember_token(selector) is not None

        client.post("/api/v1/auth/logout")
        assert store.get_remember_token(selector) is None
        assert client.get("/api/v1/auth/me").status_code == 401


class TestRoleGate:
    def test_anonymous_is_redirected_to_login(self, api_client: tuple[TestClient, UserStore]) -> None:
        """The requested URL is remembered and returned after login."""
        client, _store = api_client
        resp = client.get("/api/v1/auth/users")
        assert resp.status_code == 302
        assert resp.headers["location"] == "/login"

        resp = _login(client, "admin@example.com")
        assert resp.json()["redirect"] == "/api/v1/auth/users"

    def test_non_admin_is_redirected_to_error_page(self, api_client: tuple[TestClient, UserStore]) -> None:
        client, _store = api_client
        _login(client, "bob@example.com")
        resp = client.get("/api/v1/auth/users")
        assert resp.status_code == 302
        assert resp.headers["location"] == "/error"

    def test_non_admin_gets_403_when_not_silent(self, api_client: tuple[TestClient, UserStore]) -> None:
        client, _store = api_client
        client.app.state.settings = client.app.state.settings.model_copy(update={"silent": False})
        _login(client, "bob@example.com")
        resp = client.get("/api/v1/auth/users")
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "forbidden"

    def test_admin_lists_users(self, api_client: tuple[TestClient, UserStore]) -> None:
        client, _store = api_client
        _login(client, "admin@example.com")
        resp = client.get("/api/v1/auth/users")
        assert resp.status_code == 200
        assert [u["email"] for u in resp.json()] == ["admin@example.com", "bob@example.com"]
        assert all("password_hash" not in u for u in resp.json())


class TestUserManagement:
    def test_create_user(self, api_client: tuple[TestClient, UserStore]) -> None:
        client, store = api_client
        _login(client, "admin@example.com")
        resp = client.post(
            "/api/v1/auth/users",
            json={"email": "carol@example.com", "username": "carol", "password": "longenough", "roles": ["admin"]},
        )
        assert resp.status_code == 201
        carol = store.find_user("email", "carol@example.com")
        assert store.user_has_role(carol.id, "admin")

        # The new account can log in straight away.
        client.post("/api/v1/auth/logout")
        assert _login(client, "carol@example.com", "longenough").status_code == 200

    def test_duplicate_user_conflicts(self, api_client: tuple[TestClient, UserStore]) -> None:
        client, _store = api_client
        _login(client, "admin@example.com")
        resp = client.post("/api/v1/auth/users", json={"email": "bob@example.com", "password": "longenough"})
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "conflict"

    def test_unknown_role_is_rejected(self, api_client: tuple[TestClient, UserStore]) -> None:
        client, store = api_client
        _login(client, "admin@example.com")
        resp = client.post(
            "/api/v1/auth/users",
            json={"email": "dave@example.com", "password": "longenough", "roles": ["wizard"]},
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "unknown_role"
        assert store.find_user("email", "dave@example.com") is None

    def test_password_over_72_bytes_is_rejected(self, api_client: tuple[TestClient, UserStore]) -> None:
        """Length is counted in UTF-8 bytes, the unit bcrypt limits."""
        client, store = api_client
        _login(client, "admin@example.com")
        resp = client.post("/api/v1/auth/users", json={"email": "erin@example.com", "password": "\u00e9" * 40})
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"
        assert store.find_user("email", "erin@example.com") is None

    def test_login_attempts_for_admin(self, api_client: tuple[TestClient, UserStore]) -> None:
        client, _store = api_client
        _login(client, "bob@example.com", "wrong password")
        _login(client, "admin@example.com")
        resp = client.get("/api/v1/auth/login-attempts", params={"login": "bob@example.com"})
        assert resp.status_code == 200
        rows = resp.json()
        assert len(rows) == 1
        assert rows[0]["success"] is False
