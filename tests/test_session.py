"""
tests/test_session.py -- Tests for auth/session.py, the session cookie lifecycle and GET /protected.

A minimal Starlette app wraps the helpers in SessionMiddleware so the signed
cookie round trip is real.
"""

from __future__ import annotations

from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.sessions import SessionMiddleware
from starlette.responses import JSONResponse
from starlette.routing import Route
from starlette.testclient import TestClient

from auth.session import SESSION_ACCOUNT_KEY, destroy_session, establish_session, load_session_account
from auth.tokens import issue_access_token
from tests.conftest import create_local_account


def _session_app(store) -> Starlette:
    async def login(request):
        establish_session(request, store.get_by_email("ana@example.com"))
        return JSONResponse({"ok": True})

    async def whoami(request):
        account = load_session_account(request, store)
        return JSONResponse({"id": account.id if account else None})

    async def logout(request):
        destroy_session(request)
        return JSONResponse({"ok": True})

    async def tamper(request):
        request.session[SESSION_ACCOUNT_KEY] = "not-an-id"
        return JSONResponse({"ok": True})

    return Starlette(
        routes=[
            Route("/login", login, methods=["POST"]),
            Route("/whoami", whoami),
            Route("/logout", logout, methods=["POST"]),
            Route("/tamper", tamper, methods=["POST"]),
        ],
        middleware=[Middleware(SessionMiddleware, secret_key="s" * 32, session_cookie="session")],
    )


def test_session_round_trip(store):
    account = create_local_account(store)
    client = TestClient(_session_app(store))
    assert client.get("/whoami").json() == {"id": None}
    client.post("/login")
    assert client.get("/whoami").json() == {"id": account.id}
    client.post("/logout")
    assert client.get("/whoami").json() == {"id": None}


def test_non_integer_session_value_is_ignored(store):
    create_local_account(store)
    client = TestClient(_session_app(store))
    client.post("/tamper")
    assert client.get("/whoami").json() == {"id": None}


def test_login_establishes_session_and_logout_destroys_it(api):
    resp = api.signup()
    assert resp.cookies.get("session")
    logout = api.client.post("/logout")
    assert logout.status_code == 200
    assert "session" not in api.client.cookies


class TestProtectedRoute:
    def test_session_from_signup_authenticates(self, api):
        api.signup()
        resp = api.client.get("/protected")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "success"
        assert data["user"]["email"] == "ana@example.com"

    def test_session_from_oauth_callback_authenticates(self, api):
        api.client.get("/auth/github/callback?code=abc&state=fake-state")
        resp = api.client.get("/protected")
        assert resp.status_code == 200
        assert resp.json()["user"]["githubId"] == "4242"

    def test_token_without_session_is_401(self, api):
        account = create_local_account(api.store)
        token = issue_access_token(account.id, account.email)
        resp = api.client.get("/protected", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "unauthorized"

    def test_logout_ends_session(self, api):
        api.signup()
        api.client.post("/logout")
        assert api.client.get("/protected").status_code == 401
