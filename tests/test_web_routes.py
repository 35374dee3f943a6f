"""
tests/test_web_routes.py -- End-to-end tests for the HTML routes.

Each test drives the real ASGI app through TestClient with
follow_redirects=False, so status codes and Location headers are asserted
directly. Separate browsers are modelled as separate clients from
make_client, each with its own cookie jar.

Coverage:
  - register / login / logout and the session cookie they manage
  - first-registered user becomes manager, later ones do not
  - identical failure for unknown email and wrong password
  - manager-only pages refuse ordinary users with 403 and change nothing
  - edit / update / delete, including self-demotion and self-deletion
  - form re-render with echoed values on validation failure
  - generic "Server error." page for unexpected failures
"""

from __future__ import annotations

import logging

import pytest
from fastapi.testclient import TestClient

from auth.models import Role

PASSWORD = "password123"


def register(client: TestClient, name: str, email: str, password: str = PASSWORD):
    return client.post("/register", data={"name": name, "email": email, "password": password})


def login(client: TestClient, email: str, password: str = PASSWORD):
    return client.post("/login", data={"email": email, "password": password})


@pytest.fixture
def manager_client(make_client, seed_user) -> TestClient:
    seed_user("Boss", "boss@example.com", role=Role.manager)
    client = make_client()
    assert login(client, "boss@example.com").status_code == 303
    return client


@pytest.fixture
def member_client(make_client, seed_user) -> TestClient:
    seed_user("Bob", "bob@example.com")
    client = make_client()
    assert login(client, "bob@example.com").status_code == 303
    return client


class TestRegistration:
    def test_register_starts_session(self, client: TestClient) -> None:
        resp = register(client, "Ada", "ada@example.com")
        assert resp.status_code == 303
        assert resp.headers["location"] == "/profile"
        set_cookie = resp.headers["set-cookie"].lower()
        assert "sid=" in set_cookie
        assert "httponly" in set_cookie
        assert "samesite=lax" in set_cookie

        profile = client.get("/profile")
        assert profile.status_code == 200
        assert "ada@example.com" in profile.text

    def test_first_user_is_manager(self, make_client, user_store) -> None:
        first, second = make_client(), make_client()
        register(first, "Ada", "ada@example.com")
        register(second, "Bob", "bob@example.com")
        assert user_store.find_by_email("ada@example.com").role is Role.manager
        assert user_store.find_by_email("bob@example.com").role is Role.user
        assert first.get("/manager/users").status_code == 200
        assert second.get("/manager/users").status_code == 403

    def test_validation_failure_echoes_form(self, client: TestClient, user_store) -> None:
        resp = register(client, "  Ada  ", "ADA@example.com", "short")
        assert resp.status_code == 200
        assert "Password must be at least 8 characters." in resp.text
        assert resp.headers["cache-control"] == "no-store"
        assert 'value="Ada"' in resp.text
        assert 'value="ada@example.com"' in resp.text
        assert "short" not in resp.text
        assert user_store.count_all() == 0
        assert "sid" not in client.cookies

    def test_duplicate_email(self, client: TestClient, seed_user, user_store) -> None:
        seed_user("Ada", "ada@example.com")
        resp = register(client, "Other", "Ada@Example.com")
        assert resp.status_code == 200
        assert "That email is already registered." in resp.text
        assert resp.headers["cache-control"] == "no-store"
        assert user_store.count_all() == 1

    def test_form_renders(self, client: TestClient) -> None:
        resp = client.get("/register")
        assert resp.status_code == 200
        assert 'action="/register"' in resp.text


class TestLogin:
    def test_login_success(self, client: TestClient, seed_user) -> None:
        seed_user("Ada", "ada@example.com")
        resp = login(client, "ADA@example.com")
        assert resp.status_code == 303
        assert resp.headers["location"] == "/profile"
        assert resp.headers["cache-control"] == "no-store"
        assert client.get("/profile").status_code == 200

    def test_failures_are_indistinguishable(self, make_client, seed_user) -> None:
        seed_user("Ada", "ada@example.com")
        wrong_password = login(make_client(), "ada@example.com", "not-the-password")
        unknown_email = login(make_client(), "nobody@example.com")
        assert wrong_password.status_code == unknown_email.status_code == 200
        assert "Invalid login." in wrong_password.text
        assert "Invalid login." in unknown_email.text
        assert "sid" not in wrong_password.headers.get("set-cookie", "")

    def test_missing_fields(self, client: TestClient) -> None:
        resp = client.post("/login", data={"email": ""})
        assert resp.status_code == 200
        assert "Email and password are required." in resp.text

    def test_next_is_honoured(self, client: TestClient, seed_user) -> None:
        seed_user("Ada", "ada@example.com")
        resp = client.post("/login", data={"email": "ada@example.com", "password": PASSWORD, "next": "/profile?tab=1"})
        assert resp.headers["location"] == "/profile?tab=1"

    @pytest.mark.parametrize("target", ["https://evil.example", "//evil.example", "/\\evil.example"])
    def test_offsite_next_is_ignored(self, client: TestClient, seed_user, target: str) -> None:
        seed_user("Ada", "ada@example.com")
        resp = client.post("/login", data={"email": "ada@example.com", "password": PASSWORD, "next": target})
        assert resp.headers["location"] == "/profile"

    def test_login_page_redirects_when_logged_in(self, member_client: TestClient) -> None:
        resp = member_client.get("/login")
        assert resp.status_code == 302
        assert resp.headers["location"] == "/profile"

    def test_login_replaces_presented_token(self, client: TestClient, seed_user, session_store) -> None:
        seed_user("Ada", "ada@example.com")
        planted = session_store.establish("planted", Role.user)
        client.cookies.set("sid", planted)
        resp = login(client, "ada@example.com")
        assert session_store.resolve(planted) is None
        assert resp.cookies.get("sid") not in (None, planted)


class TestLogout:
    def test_logout_destroys_session(self, make_client, member_client: TestClient, session_store) -> None:
        token = member_client.cookies.get("sid")
        resp = member_client.post("/logout")
        assert resp.status_code == 303
        assert resp.headers["location"] == "/login"
        assert session_store.resolve(token) is None

        replay = make_client()
        replay.cookies.set("sid", token)
        resp = replay.get("/profile")
        assert resp.status_code == 302
        assert resp.headers["location"].startswith("/login")

    def test_logout_logs_who_left(self, member_client: TestClient, user_store, caplog) -> None:
        bob = user_store.find_by_email("bob@example.com")
        with caplog.at_level(logging.INFO, logger="useradmin.auth.accounts"):
            member_client.post("/logout")
        assert f"Logout user_id={bob.id}" in caplog.text

    def test_logout_without_session(self, client: TestClient) -> None:
        resp = client.get("/logout")
        assert resp.status_code == 303
        assert resp.headers["location"] == "/login"


class TestHome:
    def test_anonymous(self, client: TestClient) -> None:
        resp = client.get("/")
        assert resp.status_code == 302
        assert resp.headers["location"] == "/login"

    def test_authenticated(self, member_client: TestClient) -> None:
        resp = member_client.get("/")
        assert resp.headers["location"] == "/profile"


class TestManagerAccess:
    def test_user_list(self, manager_client: TestClient, seed_user) -> None:
        seed_user("Bob", "bob@example.com")
        resp = manager_client.get("/manager/users")
        assert resp.status_code == 200
        assert "bob@example.com" in resp.text
        assert "boss@example.com" in resp.text
        assert "$2b$" not in resp.text

    def test_user_is_forbidden_everywhere(self, member_client: TestClient, seed_user, user_store) -> None:
        boss = seed_user("Boss", "boss@example.com", role=Role.manager)
        attempts = [
            member_client.get("/manager/users"),
            member_client.get(f"/manager/users/{boss.id}/edit"),
            member_client.post(
                f"/manager/users/{boss.id}/update",
                data={"name": "Pwned", "email": "boss@example.com", "role": "user"},
            ),
            member_client.post(f"/manager/users/{boss.id}/delete"),
        ]
        assert [r.status_code for r in attempts] == [403, 403, 403, 403]
        assert "Forbidden: managers only" in attempts[0].text
        stored = user_store.find_by_id(boss.id)
        assert (stored.name, stored.role) == ("Boss", Role.manager)

    def test_anonymous_is_forbidden(self, client: TestClient) -> None:
        assert client.get("/manager/users").status_code == 403

    def test_promote_user(self, manager_client: TestClient, seed_user, user_store) -> None:
        bob = seed_user("Bob", "bob@example.com")
        resp = manager_client.post(
            f"/manager/users/{bob.id}/update",
            data={"name": "Bob", "email": "bob@example.com", "role": "manager"},
        )
        assert resp.status_code == 303
        assert resp.headers["location"] == "/manager/users"
        assert user_store.find_by_id(bob.id).role is Role.manager
        # The acting manager's own session is untouched.
        assert manager_client.get("/manager/users").status_code == 200

    def test_edit_form_prefilled(self, manager_client: TestClient, seed_user) -> None:
        bob = seed_user("Bob", "bob@example.com")
        resp = manager_client.get(f"/manager/users/{bob.id}/edit")
        assert resp.status_code == 200
        assert 'value="bob@example.com"' in resp.text
        assert f'action="/manager/users/{bob.id}/update"' in resp.text

    def test_unknown_user_goes_back_to_list(self, manager_client: TestClient) -> None:
        for resp in (
            manager_client.get("/manager/users/missing/edit"),
            manager_client.post(
                "/manager/users/missing/update", data={"name": "X", "email": "x@example.com", "role": "user"}
            ),
            manager_client.post("/manager/users/missing/delete"),
        ):
            assert resp.status_code == 303
            assert resp.headers["location"] == "/manager/users"

    def test_update_validation_echoes_form(self, manager_client: TestClient, seed_user, user_store) -> None:
        bob = seed_user("Bob", "bob@example.com")
        resp = manager_client.post(
            f"/manager/users/{bob.id}/update", data={"name": "", "email": "robert@example.com", "role": "manager"}
        )
        assert resp.status_code == 200
        assert "Please enter valid values." in resp.text
        assert 'value="robert@example.com"' in resp.text
        assert user_store.find_by_id(bob.id).email == "bob@example.com"

    def test_update_to_taken_email(self, manager_client: TestClient, seed_user, user_store) -> None:
        bob = seed_user("Bob", "bob@example.com")
        resp = manager_client.post(
            f"/manager/users/{bob.id}/update", data={"name": "Bob", "email": "boss@example.com", "role": "user"}
        )
        assert resp.status_code == 200
        assert "That email is already in use." in resp.text
        assert user_store.find_by_id(bob.id).email == "bob@example.com"

    def test_self_demotion_takes_effect_immediately(self, manager_client: TestClient, user_store) -> None:
        boss = user_store.find_by_email("boss@example.com")
        resp = manager_client.post(
            f"/manager/users/{boss.id}/update", data={"name": "Boss", "email": "boss@example.com", "role": "user"}
        )
        assert resp.status_code == 303
        assert resp.headers["location"] == "/profile"
        assert manager_client.get("/manager/users").status_code == 403
        assert manager_client.get("/profile").status_code == 200

    def test_delete_user(self, manager_client: TestClient, make_client, seed_user, user_store) -> None:
        bob = seed_user("Bob", "bob@example.com")
        bob_browser = make_client()
        login(bob_browser, "bob@example.com")

        resp = manager_client.post(f"/manager/users/{bob.id}/delete")
        assert resp.status_code == 303
        assert resp.headers["location"] == "/manager/users"
        assert user_store.find_by_id(bob.id) is None
        assert bob_browser.get("/profile").status_code == 302

    def test_self_deletion_refused(self, manager_client: TestClient, user_store) -> None:
        boss = user_store.find_by_email("boss@example.com")
        resp = manager_client.post(f"/manager/users/{boss.id}/delete")
        assert resp.status_code == 400
        assert "delete your own account while logged in" in resp.text
        assert user_store.find_by_id(boss.id) is not None

    def test_promote_then_self_delete(self, manager_client: TestClient, seed_user, user_store) -> None:
        """Manager A promotes B, then tries to delete A: B is a manager, A remains."""
        boss = user_store.find_by_email("boss@example.com")
        bob = seed_user("Bob", "bob@example.com")
        manager_client.post(
            f"/manager/users/{bob.id}/update", data={"name": "Bob", "email": "bob@example.com", "role": "manager"}
        )
        assert manager_client.post(f"/manager/users/{boss.id}/delete").status_code == 400
        assert user_store.find_by_id(bob.id).role is Role.manager
        assert user_store.find_by_id(boss.id).role is Role.manager


class TestServerError:
    def test_unexpected_failure_is_generic(self, make_client, seed_user, user_store, monkeypatch) -> None:
        seed_user("Boss", "boss@example.com", role=Role.manager)
        client = make_client(raise_server_exceptions=False)
        login(client, "boss@example.com")

        def explode():
            raise RuntimeError("disk on fire")

        monkeypatch.setattr(user_store, "list_users", explode)
        resp = client.get("/manager/users")
        assert resp.status_code == 500
        assert resp.text == "Server error."
        assert "disk on fire" not in resp.text

    def test_unknown_route_is_404(self, client: TestClient) -> None:
        assert client.get("/no-such-page").status_code == 404
