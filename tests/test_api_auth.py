"""
tests/test_api_auth.py -- Integration tests for signup, login, refresh, logout and /auth/me.

Every test runs through the real ASGI stack (middleware included) against an
isolated store, so cookie names, CSRF handling and error envelopes are
exercised exactly as a browser would see them.
"""

from __future__ import annotations

from auth.models import Account
from auth.tokens import issue_access_token, issue_refresh_token
from tests.conftest import create_local_account


class TestSignup:
    def test_signup_returns_201_with_tokens_and_user(self, api):
        resp = api.signup()
        assert resp.status_code == 201
        data = resp.json()
        assert data["accessToken"]
        assert data["csrfToken"]
        assert data["message"].startswith("User created successfully")
        assert data["user"]["email"] == "ana@example.com"
        assert data["user"]["username"] == "ana"
        assert data["user"]["isVerified"] is False
        assert "hashedPassword" not in data["user"]
        assert resp.cookies.get("token")
        assert resp.cookies.get("refreshToken")
        assert resp.cookies.get("XSRF-TOKEN") == data["csrfToken"]
        assert resp.headers["cache-control"] == "no-store"

    def test_signup_sends_verification_email(self, api):
        api.signup()
        assert len(api.emails.verification) == 1
        email, token = api.emails.verification[0]
        assert email == "ana@example.com"
        assert len(token) == 64

    def test_signup_email_failure_does_not_fail_signup(self, api):
        api.emails.fail = True
        assert api.signup().status_code == 201

    def test_short_username_is_400_with_field_error(self, api):
        resp = api.signup(username="ab")
        assert resp.status_code == 400
        error = resp.json()["error"]
        assert error["code"] == "validation_error"
        assert {"field": "username", "message": "Username must be at least 3 characters long"} in error["detail"]

    def test_username_is_trimmed_before_length_check(self, api):
        assert api.signup(username="  ab  ").status_code == 400

    def test_invalid_email_is_400(self, api):
        resp = api.signup(email="not-an-email")
        assert resp.status_code == 400
        assert any(e["field"] == "email" for e in resp.json()["error"]["detail"])

    def test_short_password_is_400(self, api):
        resp = api.signup(password="12345")
        assert resp.status_code == 400
        assert any(e["field"] == "password" for e in resp.json()["error"]["detail"])

    def test_duplicate_email_is_400(self, api):
        api.signup()
        resp = api.signup(username="other")
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "duplicate_account"

    def test_duplicate_username_is_400(self, api):
        api.signup()
        resp = api.signup(email="other@example.com")
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "duplicate_account"


class TestLogin:
    def test_login_success(self, api):
        create_local_account(api.store)
        resp = api.client.post("/login", json={"email": "ana@example.com", "password": "secret123"})
        assert resp.status_code == 200
        data = resp.json()
        assert data["accessToken"]
        assert data["csrfToken"]
        assert data["user"]["email"] == "ana@example.com"
        assert resp.cookies.get("token")
        assert resp.cookies.get("refreshToken")
        assert resp.headers["cache-control"] == "no-store"
        assert api.store.get_by_email("ana@example.com").last_login

    def test_login_email_is_case_insensitive(self, api):
        create_local_account(api.store)
        resp = api.client.post("/login", json={"email": "ANA@Example.com", "password": "secret123"})
        assert resp.status_code == 200

    def test_wrong_password_is_401(self, api):
        create_local_account(api.store)
        resp = api.client.post("/login", json={"email": "ana@example.com", "password": "nope-nope"})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "bad_credentials"

    def test_unknown_email_is_401_same_code(self, api):
        resp = api.client.post("/login", json={"email": "ghost@example.com", "password": "secret123"})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "bad_credentials"

    def test_oauth_only_account_is_401_oauth_account(self, api):
        api.store.create_account(Account(email="gh@example.com", username="gh", is_verified=True), "github", "9")
        resp = api.client.post("/login", json={"email": "gh@example.com", "password": "whatever"})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "oauth_account"

    def test_missing_fields_is_400(self, api):
        resp = api.client.post("/login", json={"email": "ana@example.com"})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "validation_error"


class TestRefresh:
    def test_refresh_issues_new_access_token(self, api):
        api.signup()
        resp = api.client.post("/refresh", headers=api.csrf_headers())
        assert resp.status_code == 200
        assert resp.json()["accessToken"]
        assert resp.cookies.get("token")
        assert resp.headers["cache-control"] == "no-store"

    def test_refresh_without_cookie_is_401(self, api):
        headers = api.csrf_headers()
        resp = api.client.post("/refresh", headers=headers)
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "unauthorized"

    def test_access_token_in_refresh_cookie_is_rejected(self, api):
        account = create_local_account(api.store)
        headers = api.csrf_headers()
        api.client.cookies.set("refreshToken", issue_access_token(account.id, account.email))
        resp = api.client.post("/refresh", headers=headers)
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "invalid_token"

    def test_expired_refresh_token_is_401_token_expired(self, api):
        account = create_local_account(api.store)
        headers = api.csrf_headers()
        api.client.cookies.set("refreshToken", issue_refresh_token(account.id, expire_seconds=-5))
        resp = api.client.post("/refresh", headers=headers)
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "token_expired"


class TestMe:
    def test_me_with_cookie(self, api):
        api.signup()
        resp = api.client.get("/auth/me")
        assert resp.status_code == 200
        data = resp.json()
        assert data["email"] == "ana@example.com"
        assert data["githubId"] is None
        assert set(data) == {
            "id",
            "email",
            "username",
            "isVerified",
            "createdAt",
            "githubId",
            "googleId",
            "discordId",
        }

    def test_me_with_bearer_header(self, api):
        account = create_local_account(api.store)
        token = issue_access_token(account.id, account.email)
        resp = api.client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 200
        assert resp.json()["id"] == account.id

    def test_me_without_token_is_401(self, api):
        resp = api.client.get("/auth/me")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "unauthorized"

    def test_refresh_token_as_bearer_is_rejected(self, api):
        account = create_local_account(api.store)
        token = issue_refresh_token(account.id)
        resp = api.client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "invalid_token"

    def test_expired_access_token_is_401_token_expired(self, api):
        account = create_local_account(api.store)
        token = issue_access_token(account.id, account.email, expire_seconds=-5)
        resp = api.client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "token_expired"


class TestLogout:
    def test_logout_clears_cookies(self, api):
        api.signup()
        resp = api.client.post("/logout")
        assert resp.status_code == 200
        set_cookie = " ".join(resp.headers.get_list("set-cookie"))
        for name in ("token=", "refreshToken=", "XSRF-TOKEN=", "_csrf="):
            assert name in set_cookie
        assert "token" not in api.client.cookies
        assert "refreshToken" not in api.client.cookies
        assert api.client.get("/auth/me").status_code == 401

    def test_logout_with_access_token_only(self, api):
        account = create_local_account(api.store)
        token = issue_access_token(account.id, account.email)
        resp = api.client.post("/logout", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 200

    def test_logout_without_token_is_401(self, api):
        resp = api.client.post("/logout")
        assert resp.status_code == 401

    def test_logout_with_invalid_refresh_token_is_401(self, api):
        api.client.cookies.set("refreshToken", "garbage")
        resp = api.client.post("/logout")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "invalid_token"
