"""
tests/test_api_routes.py -- Integration tests for the /v1/auth routes.

These tests exercise the full stack: FastAPI routing -> guard dependencies ->
AuthService -> AuthStore -> response model serialization -> AuthError
exception handler. Unit tests of AuthService alone would miss the status
mapping, the guard chain, and request validation.

Fixtures used (from conftest.py):
  - api_client: ApiHarness(client, mailer, service, admin_token). The admin is
    root@coursehub.test, bootstrapped before the client starts. The harness is
    module-scoped, so every test uses its own email addresses.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from conftest import ApiHarness


def _auth(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _signup(api: ApiHarness, email: str, password: str = "Passw0rd!", **extra):
    return api.client.post("/v1/auth/student/email/signup", json={"email": email, "password": password, **extra})


def _confirmed_login(api: ApiHarness, email: str, password: str = "Passw0rd!") -> str:
    assert _signup(api, email, password).status_code == 201
    token = api.mailer.last_token(email)
    assert api.client.post("/v1/auth/email/confirm", json={"token": token}).status_code == 200
    resp = api.client.post("/v1/auth/email/login", json={"identifier": email, "password": password})
    assert resp.status_code == 200
    return resp.json()["access_token"]


class TestStudentSignup:
    def test_signup_returns_201_with_user_and_no_session(self, api_client: ApiHarness) -> None:
        resp = _signup(api_client, "Signup1@Example.com")
        assert resp.status_code == 201
        data = resp.json()
        assert data["session"] is None
        assert data["user"]["email"] == "signup1@example.com"
        assert data["user"]["role"] == "student"
        assert data["user"]["is_course_instructor"] is False
        assert data["user"]["confirmed"] is False
        assert "hashed_password" not in data["user"]

    def test_duplicate_signup_returns_409(self, api_client: ApiHarness) -> None:
        _signup(api_client, "dup@example.com")
        resp = _signup(api_client, "DUP@example.com")
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "duplicate_identifier"

    def test_invalid_email_returns_422(self, api_client: ApiHarness) -> None:
        resp = _signup(api_client, "not-an-email")
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"

    def test_weak_password_returns_422(self, api_client: ApiHarness) -> None:
        assert _signup(api_client, "weak1@example.com", "12345678").status_code == 422
        assert _signup(api_client, "weak2@example.com", "lettersonly").status_code == 422

    def test_multibyte_password_over_72_bytes_returns_422(self, api_client: ApiHarness) -> None:
        password = "\u00e9" * 38 + "a1"
        assert len(password) == 40
        resp = _signup(api_client, "accent@example.com", password)
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"

    def test_multibyte_password_within_72_bytes_accepted(self, api_client: ApiHarness) -> None:
        password = "\u00e9" * 35 + "a1"
        token = _confirmed_login(api_client, "accent2@example.com", password)
        assert token

    def test_login_before_confirmation_returns_403(self, api_client: ApiHarness) -> None:
        _signup(api_client, "unconfirmed@example.com")
        resp = api_client.client.post(
            "/v1/auth/email/login", json={"identifier": "unconfirmed@example.com", "password": "Passw0rd!"}
        )
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "account_not_confirmed"


class TestConfirmation:
    def test_confirm_twice_returns_400_second_time(self, api_client: ApiHarness) -> None:
        _signup(api_client, "confirm@example.com")
        token = api_client.mailer.last_token("confirm@example.com")
        assert api_client.client.post("/v1/auth/email/confirm", json={"token": token}).status_code == 200
        resp = api_client.client.post("/v1/auth/email/confirm", json={"token": token})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "expired_or_consumed_token"

    def test_resend_unknown_and_unconfirmed_share_response(self, api_client: ApiHarness) -> None:
        _signup(api_client, "resend@example.com")
        known = api_client.client.post("/v1/auth/resend-confirmation-link", json={"email": "resend@example.com"})
        unknown = api_client.client.post("/v1/auth/resend-confirmation-link", json={"email": "nobody@example.com"})
        assert known.status_code == unknown.status_code == 200
        assert known.json() == unknown.json()

    def test_resend_for_confirmed_account_returns_409(self, api_client: ApiHarness) -> None:
        _confirmed_login(api_client, "resend-done@example.com")
        resp = api_client.client.post("/v1/auth/resend-confirmation-link", json={"email": "resend-done@example.com"})
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "already_confirmed"


class TestLogin:
    def test_login_returns_session_payload(self, api_client: ApiHarness) -> None:
        _confirmed_login(api_client, "login@example.com")
        resp = api_client.client.post(
            "/v1/auth/email/login", json={"identifier": "login@example.com", "password": "Passw0rd!"}
        )
        assert resp.status_code == 200
        assert resp.headers["cache-control"] == "no-store"
        data = resp.json()
        assert data["token_type"] == "bearer"
        assert data["access_token"]
        assert data["expires_in"] > 0
        assert data["user"]["email"] == "login@example.com"

    def test_wrong_password_and_unknown_user_get_same_401(self, api_client: ApiHarness) -> None:
        _confirmed_login(api_client, "login2@example.com")
        wrong = api_client.client.post(
            "/v1/auth/email/login", json={"identifier": "login2@example.com", "password": "nope"}
        )
        unknown = api_client.client.post(
            "/v1/auth/email/login", json={"identifier": "ghost@example.com", "password": "nope"}
        )
        assert wrong.status_code == unknown.status_code == 401
        assert wrong.json() == unknown.json()
        assert wrong.json()["error"]["message"] == "Incorrect email or password."

    def test_login_by_username(self, api_client: ApiHarness) -> None:
        assert _signup(api_client, "named@example.com", username="named_user").status_code == 201
        api_client.client.post("/v1/auth/email/confirm", json={"token": api_client.mailer.last_token("named@example.com")})
        resp = api_client.client.post("/v1/auth/email/login", json={"identifier": "Named_User", "password": "Passw0rd!"})
        assert resp.status_code == 200

    def test_me_requires_bearer(self, api_client: ApiHarness) -> None:
        token = _confirmed_login(api_client, "me@example.com")
        assert api_client.client.get("/v1/auth/me").status_code == 401
        resp = api_client.client.get("/v1/auth/me", headers=_auth(token))
        assert resp.status_code == 200
        assert resp.json()["email"] == "me@example.com"

    def test_oversized_login_password_returns_422(self, api_client: ApiHarness) -> None:
        resp = api_client.client.post(
            "/v1/auth/email/login", json={"identifier": "ghost@example.com", "password": "\u00e9" * 40}
        )
        assert resp.status_code == 422

    def test_forged_token_rejected(self, api_client: ApiHarness) -> None:
        resp = api_client.client.get("/v1/auth/me", headers=_auth("forged.token.value"))
        assert resp.status_code == 401
        assert resp.headers["www-authenticate"] == "Bearer"


class TestSignOut:
    def test_signout_revokes_and_is_idempotent(self, api_client: ApiHarness) -> None:
        token = _confirmed_login(api_client, "signout@example.com")
        first = api_client.client.post("/v1/auth/signout", headers=_auth(token))
        assert first.status_code == 200
        assert first.json() == {"message": "Sign out Successful"}
        assert api_client.client.get("/v1/auth/me", headers=_auth(token)).status_code == 401
        resp = api_client.client.patch(
            "/v1/auth/email/change-password",
            json={"old_password": "Passw0rd!", "new_password": "Another123"},
            headers=_auth(token),
        )
        assert resp.status_code == 401
        assert api_client.client.post("/v1/auth/signout", headers=_auth(token)).status_code == 200

    def test_signout_without_token_returns_401(self, api_client: ApiHarness) -> None:
        assert api_client.client.post("/v1/auth/signout").status_code == 401


class TestPasswords:
    def test_change_password_flow(self, api_client: ApiHarness) -> None:
        token = _confirmed_login(api_client, "change@example.com")
        bad = api_client.client.patch(
            "/v1/auth/email/change-password",
            json={"old_password": "wrong", "new_password": "Another123"},
            headers=_auth(token),
        )
        assert bad.status_code == 401
        assert bad.json()["error"]["code"] == "invalid_credentials"

        ok = api_client.client.patch(
            "/v1/auth/email/change-password",
            json={"old_password": "Passw0rd!", "new_password": "Another123"},
            headers=_auth(token),
        )
        assert ok.status_code == 200
        old = api_client.client.post(
            "/v1/auth/email/login", json={"identifier": "change@example.com", "password": "Passw0rd!"}
        )
        new = api_client.client.post(
            "/v1/auth/email/login", json={"identifier": "change@example.com", "password": "Another123"}
        )
        assert old.status_code == 401
        assert new.status_code == 200

    def test_oversized_old_password_returns_422(self, api_client: ApiHarness) -> None:
        token = _confirmed_login(api_client, "change2@example.com")
        resp = api_client.client.patch(
            "/v1/auth/email/change-password",
            json={"old_password": "\u00e9" * 40, "new_password": "Another123"},
            headers=_auth(token),
        )
        assert resp.status_code == 422

    def test_change_password_requires_session(self, api_client: ApiHarness) -> None:
        resp = api_client.client.patch(
            "/v1/auth/email/change-password", json={"old_password": "Passw0rd!", "new_password": "Another123"}
        )
        assert resp.status_code == 401

    def test_reset_password_response_is_uniform(self, api_client: ApiHarness) -> None:
        _confirmed_login(api_client, "reset@example.com")
        known = api_client.client.post("/v1/auth/email/reset-password", json={"email": "reset@example.com"})
        unknown = api_client.client.post("/v1/auth/email/reset-password", json={"email": "nobody2@example.com"})
        assert known.status_code == unknown.status_code == 201
        assert known.json() == unknown.json()

    def test_complete_reset(self, api_client: ApiHarness) -> None:
        _confirmed_login(api_client, "reset2@example.com")
        api_client.client.post("/v1/auth/email/reset-password", json={"email": "reset2@example.com"})
        token = api_client.mailer.last_token("reset2@example.com")
        resp = api_client.client.post(
            "/v1/auth/email/reset-password/complete", json={"token": token, "password": "Brand9new"}
        )
        assert resp.status_code == 200
        again = api_client.client.post(
            "/v1/auth/email/reset-password/complete", json={"token": token, "password": "Brand9new"}
        )
        assert again.status_code == 400
        login = api_client.client.post(
            "/v1/auth/email/login", json={"identifier": "reset2@example.com", "password": "Brand9new"}
        )
        assert login.status_code == 200


class TestAdminRoutes:
    def test_admin_signup_requires_authentication(self, api_client: ApiHarness) -> None:
        resp = api_client.client.post(
            "/v1/auth/admin/email/signup", json={"email": "sneaky@example.com", "password": "Passw0rd!"}
        )
        assert resp.status_code == 401
        assert api_client.service.store.get_by_email("sneaky@example.com") is None

    def test_admin_signup_forbidden_for_students(self, api_client: ApiHarness) -> None:
        token = _confirmed_login(api_client, "student-admin@example.com")
        resp = api_client.client.post(
            "/v1/auth/admin/email/signup",
            json={"email": "sneaky2@example.com", "password": "Passw0rd!"},
            headers=_auth(token),
        )
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "forbidden"

    def test_admin_signup_by_admin(self, api_client: ApiHarness) -> None:
        resp = api_client.client.post(
            "/v1/auth/admin/email/signup",
            json={"email": "second-admin@example.com", "password": "Passw0rd!"},
            headers=_auth(api_client.admin_token),
        )
        assert resp.status_code == 201
        assert resp.json()["user"]["role"] == "admin"
        assert resp.json()["user"]["confirmed"] is False

    def test_instructor_invite_flow(self, api_client: ApiHarness) -> None:
        assert (
            api_client.client.post("/v1/auth/admin/instructor/email-invite", json={"email": "prof@example.com"}).status_code
            == 401
        )
        resp = api_client.client.post(
            "/v1/auth/admin/instructor/email-invite",
            json={"email": "prof@example.com"},
            headers=_auth(api_client.admin_token),
        )
        assert resp.status_code == 201
        assert resp.json() == {"message": "Instructor Invite Sent Successfully"}

        dup = api_client.client.post(
            "/v1/auth/admin/instructor/email-invite",
            json={"email": "prof@example.com"},
            headers=_auth(api_client.admin_token),
        )
        assert dup.status_code == 409

        token = api_client.mailer.last_token("prof@example.com")
        accept = api_client.client.post(
            "/v1/auth/instructor/accept-invite", json={"token": token, "password": "Teach1ng"}
        )
        assert accept.status_code == 200
        login = api_client.client.post(
            "/v1/auth/email/login", json={"identifier": "prof@example.com", "password": "Teach1ng"}
        )
        assert login.status_code == 200
        assert login.json()["user"]["role"] == "instructor"
        assert login.json()["user"]["is_course_instructor"] is True

    def test_invite_forbidden_for_instructors(self, api_client: ApiHarness) -> None:
        api_client.service.invite_instructor("prof2@example.com")
        api_client.service.accept_invite(api_client.mailer.last_token("prof2@example.com"), "Teach1ng")
        token = api_client.service.login("prof2@example.com", "Teach1ng").access_token
        resp = api_client.client.post(
            "/v1/auth/admin/instructor/email-invite", json={"email": "prof3@example.com"}, headers=_auth(token)
        )
        assert resp.status_code == 403


def test_signup_confirm_login_change_password_over_http(api_client: ApiHarness) -> None:
    client = api_client.client

    def login(password: str):
        return client.post("/v1/auth/email/login", json={"identifier": "a@x.com", "password": password})

    assert _signup(api_client, "a@x.com", "P@ss1").status_code == 201
    assert login("wrong").status_code == 401
    token = api_client.mailer.last_token("a@x.com")
    assert client.post("/v1/auth/email/confirm", json={"token": token}).status_code == 200

    first = login("P@ss1")
    assert first.status_code == 200
    session = first.json()["access_token"]

    changed = client.patch(
        "/v1/auth/email/change-password",
        json={"old_password": "P@ss1", "new_password": "P@ss2"},
        headers=_auth(session),
    )
    assert changed.status_code == 200
    assert login("P@ss1").status_code == 401
    assert login("P@ss2").status_code == 200
