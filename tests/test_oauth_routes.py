"""
tests/test_oauth_routes.py -- Integration tests for the OAuth round trip.

The authlib client is replaced by FakeOAuthClient (see conftest), so these
tests cover our side of the flow: redirect target, callback account linking,
session and cookies, and the error redirects back to the SPA login page.
"""

from __future__ import annotations

import logging
from urllib.parse import parse_qs, urlparse

import httpx
from authlib.integrations.base_client import OAuthError

from auth.oauth import OAuthFlowState
from auth.tokens import verify_access_token
from core.config import get_settings
from tests.conftest import create_local_account, github_profile


def _query(location: str) -> dict[str, list[str]]:
    return parse_qs(urlparse(location).query)


def test_providers_lists_configured_only(api):
    resp = api.client.get("/auth/providers")
    assert resp.status_code == 200
    assert resp.json() == [{"name": "github", "label": "GitHub"}]


def test_login_redirects_to_provider_with_callback_uri(api):
    resp = api.client.get("/auth/github")
    assert resp.status_code == 302
    assert resp.headers["location"].startswith("https://github.example/authorize")
    assert api.oauth_clients["github"].redirect_uris == ["http://testserver/auth/github/callback"]


def test_unknown_provider_redirects_to_login_with_error(api):
    resp = api.client.get("/auth/myspace")
    assert resp.status_code == 302
    assert resp.headers["location"] == f"{get_settings().client_url}/login?error=oauth_failed"


def test_login_provider_timeout_redirects_oauth_failed(api):
    api.oauth_clients["github"].redirect_error = httpx.ConnectTimeout("metadata fetch timed out")
    resp = api.client.get("/auth/github")
    assert resp.status_code == 302
    assert resp.headers["location"] == f"{get_settings().client_url}/login?error=oauth_failed"


def test_login_provider_error_redirects_oauth_failed(api):
    api.oauth_clients["github"].redirect_error = OAuthError(error="invalid_client")
    resp = api.client.get("/auth/github")
    assert resp.status_code == 302
    assert _query(resp.headers["location"]) == {"error": ["oauth_failed"]}


def test_callback_success_creates_account_and_redirects(api):
    resp = api.client.get("/auth/github/callback?code=abc&state=fake-state")
    assert resp.status_code == 302
    location = resp.headers["location"]
    assert location.startswith(f"{get_settings().client_url}/auth/success?")

    token = _query(location)["token"][0]
    payload = verify_access_token(token)
    account = api.store.get_by_provider_id("github", "4242")
    assert payload.account_id == account.id
    assert account.email == "octo@example.com"
    assert account.username == "octo"
    assert account.is_verified
    assert account.last_login

    assert resp.cookies.get("token") == token
    assert resp.cookies.get("refreshToken")
    assert resp.cookies.get("session")


def test_callback_twice_links_same_account(api):
    api.client.get("/auth/github/callback?code=abc")
    api.client.get("/auth/github/callback?code=def")
    assert api.store.count_accounts() == 1


def test_callback_session_and_token_authenticate_me(api):
    api.client.get("/auth/github/callback?code=abc")
    me = api.client.get("/auth/me")
    assert me.status_code == 200
    assert me.json()["githubId"] == "4242"


def test_callback_provider_error_redirects_oauth_failed(api):
    api.oauth_clients["github"].error = "access_denied"
    resp = api.client.get("/auth/github/callback?error=access_denied")
    assert resp.status_code == 302
    assert _query(resp.headers["location"]) == {"error": ["oauth_failed"]}
    assert api.store.count_accounts() == 0
    assert "token" not in resp.cookies


def test_callback_email_collision_redirects_duplicate_account(api):
    create_local_account(api.store, email="octo@example.com", username="someone")
    resp = api.client.get("/auth/github/callback?code=abc")
    assert resp.status_code == 302
    assert _query(resp.headers["location"]) == {"error": ["duplicate_account"]}
    assert api.store.get_by_provider_id("github", "4242") is None


def test_callback_profile_failure_redirects_oauth_failed(api):
    api.oauth_clients["github"].responses = {}
    resp = api.client.get("/auth/github/callback?code=abc")
    assert resp.status_code == 302
    assert _query(resp.headers["location"]) == {"error": ["oauth_failed"]}


def test_callback_without_verified_email_uses_placeholder(api):
    profile = github_profile(user_id=5, login="noemail")
    profile["user/emails"] = []
    api.oauth_clients["github"].responses = profile
    resp = api.client.get("/auth/github/callback?code=abc")
    assert resp.status_code == 302
    assert api.store.get_by_provider_id("github", "5").email == "noemail@github.com"


def test_callback_malformed_email_payload_still_signs_in(api):
    api.oauth_clients["github"].responses["user/emails"] = ["not-a-dict"]
    resp = api.client.get("/auth/github/callback?code=x&state=fake-state")
    assert resp.status_code == 302
    assert resp.headers["location"].startswith(f"{get_settings().client_url}/auth/success?")
    assert api.store.get_by_provider_id("github", "4242").email == "octo@github.com"


def test_callback_malformed_user_payload_redirects_oauth_failed(api):
    api.oauth_clients["github"].responses["user"] = "not-an-object"
    resp = api.client.get("/auth/github/callback?code=x&state=fake-state")
    assert resp.status_code == 302
    assert _query(resp.headers["location"]) == {"error": ["oauth_failed"]}
    assert api.store.count_accounts() == 0


def test_callback_logs_flow_transitions(api, caplog):
    with caplog.at_level(logging.DEBUG, logger="authgate.api.oauth"):
        api.client.get("/auth/github/callback?code=abc&state=fake-state")
    states = [r.args[1] for r in caplog.records if r.name == "authgate.api.oauth" and "OAuth flow ->" in r.msg]
    assert states == [
        OAuthFlowState.CALLBACK_RECEIVED.value,
        OAuthFlowState.ACCOUNT_RESOLVED.value,
        OAuthFlowState.SESSION_ESTABLISHED.value,
        OAuthFlowState.TOKENS_ISSUED.value,
    ]
