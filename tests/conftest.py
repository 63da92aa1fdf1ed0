"""
tests/conftest.py -- Shared test fixtures for AuthGate tests.

This module provides:
  - store: an isolated AccountStore backed by a SQLite file under tmp_path
  - RecordingEmailSender: captures verification/reset tokens instead of mailing
  - FakeOAuthClient / FakeOAuthRegistry: stand-ins for authlib clients so the
    OAuth round trip runs without network access
  - api: a TestClient on the real app with a patched lifespan

Design: a file-backed SQLite DB (not :memory:) is used because TestClient
runs sync route handlers in a thread pool, and SQLAlchemy's :memory: pool is
per-thread. A file under tmp_path is shared by every connection and discarded
with the test.

DEBUG and RATE_LIMIT_ENABLED must be set before any auth/api import:
get_settings() is cached at first call, auth.tokens and api.limiter read it
at import time.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, Optional
from urllib.parse import urlencode

# CRITICAL: before any auth/core/api import.
os.environ.setdefault("DEBUG", "true")
os.environ["RATE_LIMIT_ENABLED"] = "false"

import httpx
import pytest
from authlib.integrations.base_client import OAuthError
from fastapi.responses import RedirectResponse
from fastapi.testclient import TestClient

from api.main import app
from auth.models import Account
from auth.oauth import IdentityResolver, ProviderConfig
from auth.store import AccountStore
from auth.tokens import hash_password

# ---------------------------------------------------------------------------
# Email
# ---------------------------------------------------------------------------


class RecordingEmailSender:
    """EmailSender that keeps every (email, token) pair it was asked to send."""

    def __init__(self) -> None:
        self.verification: list[tuple[str, str]] = []
        self.reset: list[tuple[str, str]] = []
        self.fail = False

    def send_verification_email(self, email: str, username: Optional[str], token: str) -> bool:
        self.verification.append((email, token))
        return not self.fail

    def send_password_reset_email(self, email: str, username: Optional[str], token: str) -> bool:
        self.reset.append((email, token))
        return not self.fail


# ---------------------------------------------------------------------------
# OAuth fakes
# ---------------------------------------------------------------------------


class FakeOAuthClient:
    """Mimics the parts of an authlib starlette client the routes use.

    responses maps API paths ("user", "user/emails") to payloads. Setting
    error makes the code exchange fail the way a denied consent or state
    mismatch does; redirect_error is raised from authorize_redirect.
    """

    def __init__(self, name: str, responses: Optional[dict[str, Any]] = None) -> None:
        self.name = name
        self.responses = responses or {}
        self.error: Optional[str] = None
        self.redirect_error: Optional[Exception] = None
        self.redirect_uris: list[str] = []

    async def authorize_redirect(self, request, redirect_uri: str):
        self.redirect_uris.append(redirect_uri)
        if self.redirect_error:
            raise self.redirect_error
        query = urlencode({"redirect_uri": redirect_uri, "state": "fake-state"})
        return RedirectResponse(f"https://{self.name}.example/authorize?{query}", status_code=302)

    async def authorize_access_token(self, request) -> dict:
        if self.error:
            raise OAuthError(error=self.error, description="denied by test")
        return {"access_token": "fake-access", "token_type": "bearer"}

    async def get(self, url: str, token=None, **kwargs) -> httpx.Response:
        request = httpx.Request("GET", f"https://api.{self.name}.example/{url}")
        if url not in self.responses:
            return httpx.Response(404, json={"message": "Not Found"}, request=request)
        return httpx.Response(200, json=self.responses[url], request=request)

    async def userinfo(self, token=None, **kwargs) -> dict:
        return self.responses.get("userinfo", {})


class FakeOAuthRegistry:
    def __init__(self, clients: dict[str, FakeOAuthClient]) -> None:
        self.clients = clients

    def create_client(self, name: str) -> Optional[FakeOAuthClient]:
        return self.clients.get(name)


def github_profile(user_id: int = 4242, login: str = "octo", email: str = "octo@example.com") -> dict[str, Any]:
    """API payloads for a GitHub user with one verified primary email."""
    return {
        "user": {"id": user_id, "login": login, "name": "Octo Cat"},
        "user/emails": [
            {"email": "unverified@example.com", "primary": False, "verified": False},
            {"email": email, "primary": True, "verified": True},
        ],
    }


def github_config() -> ProviderConfig:
    return ProviderConfig(
        name="github",
        client_id="test-client-id",
        client_secret="test-client-secret",
        callback_url="",
        scope="read:user user:email",
        label="GitHub",
    )


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


def make_store(tmp_path, name: str = "auth.db") -> AccountStore:
    return AccountStore(f"sqlite:///{tmp_path / name}")


@pytest.fixture
def store(tmp_path) -> Generator[AccountStore, None, None]:
    s = make_store(tmp_path)
    yield s
    s.close()


def create_local_account(
    store: AccountStore,
    email: str = "ana@example.com",
    username: str = "ana",
    password: str = "secret123",
    is_verified: bool = False,
) -> Account:
    account_id = store.create_account(
        Account(email=email, username=username, hashed_password=hash_password(password), is_verified=is_verified)
    )
    return store.get_by_id(account_id)


# ---------------------------------------------------------------------------
# API client
# ---------------------------------------------------------------------------


@dataclass
class ApiHarness:
    client: TestClient
    store: AccountStore
    emails: RecordingEmailSender
    oauth_clients: dict[str, FakeOAuthClient] = field(default_factory=dict)

    def csrf_headers(self) -> dict[str, str]:
        """Fetch a CSRF token (sets the cookie pair) and return the header carrying it."""
        resp = self.client.get("/csrf-token")
        assert resp.status_code == 200
        return {"X-XSRF-TOKEN": resp.json()["csrfToken"]}

    def signup(self, username: str = "ana", email: str = "ana@example.com", password: str = "secret123"):
        return self.client.post("/signup", json={"username": username, "email": email, "password": password})


def _patch_lifespan(
    store: AccountStore,
    emails: RecordingEmailSender,
    providers: dict[str, ProviderConfig],
    oauth: FakeOAuthRegistry,
):
    """Return a lifespan that wires test collaborators into app.state.

    The purge_task is a long-sleeping coroutine so shutdown can cancel a real
    asyncio.Task exactly as the production lifespan does.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.account_store = store
        app.state.providers = providers
        app.state.oauth = oauth
        app.state.identity_resolver = IdentityResolver(store, providers)
        app.state.email_sender = emails
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


@pytest.fixture
def api(tmp_path) -> Generator[ApiHarness, None, None]:
    """Yield an ApiHarness around the real app with an isolated store.

    follow_redirects=False so OAuth tests can assert on Location headers.
    A GitHub provider is configured and backed by a FakeOAuthClient.
    """
    store = make_store(tmp_path)
    emails = RecordingEmailSender()
    github = FakeOAuthClient("github", github_profile())
    providers = {"github": github_config()}

    app.router.lifespan_context = _patch_lifespan(store, emails, providers, FakeOAuthRegistry({"github": github}))

    with TestClient(app, follow_redirects=False, raise_server_exceptions=True) as client:
        yield ApiHarness(client=client, store=store, emails=emails, oauth_clients={"github": github})

    store.close()
