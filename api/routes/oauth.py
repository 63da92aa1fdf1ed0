"""
api/routes/oauth.py -- OAuth provider sign-in.

Routes:
  GET /auth/providers            -- enabled providers (login page buttons)
  GET /auth/{provider}           -- 302 to the provider's authorization page
  GET /auth/{provider}/callback  -- code exchange, account link, tokens

Every failure in the round trip ends as a 302 to the SPA login page with an
error code in the query string; the callback never renders an error body.
  oauth_failed       provider error, state mismatch, network failure, bad profile
  duplicate_account  derived email/username already belongs to another account

On success the callback establishes the server session, sets the token
cookies and redirects to {client_url}/auth/success?token=<access token>.
"""

from __future__ import annotations

import logging
from urllib.parse import urlencode

import httpx
from authlib.integrations.base_client import OAuthError
from fastapi import APIRouter, Request
from fastapi.responses import RedirectResponse

from api.models import ProviderInfo
from auth.errors import AuthError, DuplicateAccount
from auth.oauth import IdentityResolver, OAuthFlowState, fetch_profile, list_providers
from auth.session import establish_session
from auth.tokens import issue_access_token, issue_refresh_token, set_access_cookie, set_refresh_cookie
from core.config import get_settings

logger = logging.getLogger("authgate.api.oauth")

router = APIRouter()


def _login_redirect(error: str) -> RedirectResponse:
    """302 to the SPA login page carrying an error code."""
    client_url = get_settings().client_url.rstrip("/")
    return RedirectResponse(f"{client_url}/login?{urlencode({'error': error})}", status_code=302)


def _client_for(request: Request, provider: str):
    """Return (config, authlib client) for a configured provider, else (None, None)."""
    cfg = request.state.providers.get(provider)
    oauth = request.state.oauth
    if cfg is None or oauth is None:
        return None, None
    return cfg, oauth.create_client(provider)


def _transition(provider: str, state: OAuthFlowState) -> None:
    logger.debug("%s OAuth flow -> %s", provider, state.value)


@router.get("/auth/providers", response_model=list[ProviderInfo])
async def providers(request: Request) -> list[ProviderInfo]:
    """Return the configured providers. Empty when no OAuth credentials are set."""
    return [ProviderInfo(**p) for p in list_providers(request.state.providers)]


@router.get("/auth/{provider}")
async def oauth_login(request: Request, provider: str):
    """Start the authorization-code flow. authlib stores the state in the session.

    authlib may contact the provider here (Google's discovery document), so a
    provider failure at this step also ends on the login page.
    """
    cfg, client = _client_for(request, provider)
    if client is None:
        logger.warning("OAuth login requested for unconfigured provider %r", provider)
        _transition(provider, OAuthFlowState.REDIRECT_TO_LOGIN_WITH_ERROR)
        return _login_redirect("oauth_failed")

    redirect_uri = cfg.callback_url or str(request.url_for("oauth_callback", provider=provider))
    logger.info("Starting %s authentication", provider)
    try:
        resp = await client.authorize_redirect(request, redirect_uri)
    except (OAuthError, httpx.HTTPError) as exc:
        logger.warning("%s OAuth redirect failed: %s", provider, exc)
        _transition(provider, OAuthFlowState.PROVIDER_ERROR)
        return _login_redirect("oauth_failed")
    _transition(provider, OAuthFlowState.PROVIDER_REDIRECT)
    return resp


@router.get("/auth/{provider}/callback", name="oauth_callback")
async def oauth_callback(request: Request, provider: str):
    """Exchange the code, resolve the local account, and issue tokens."""
    cfg, client = _client_for(request, provider)
    if client is None:
        _transition(provider, OAuthFlowState.REDIRECT_TO_LOGIN_WITH_ERROR)
        return _login_redirect("oauth_failed")

    _transition(provider, OAuthFlowState.CALLBACK_RECEIVED)
    resolver: IdentityResolver = request.state.identity_resolver
    try:
        token = await client.authorize_access_token(request)
        profile = await fetch_profile(client, provider, token)
        account = resolver.resolve_or_create(provider, profile)
    except DuplicateAccount:
        _transition(provider, OAuthFlowState.REDIRECT_TO_LOGIN_WITH_ERROR)
        return _login_redirect("duplicate_account")
    except (OAuthError, httpx.HTTPError, ValueError, AuthError) as exc:
        logger.warning("%s OAuth callback failed: %s", provider, exc)
        _transition(provider, OAuthFlowState.PROVIDER_ERROR)
        return _login_redirect("oauth_failed")
    _transition(provider, OAuthFlowState.ACCOUNT_RESOLVED)

    establish_session(request, account)
    request.app.state.account_store.update_last_login(account.id)
    _transition(provider, OAuthFlowState.SESSION_ESTABLISHED)

    access_token = issue_access_token(account.id, account.email)
    refresh_token = issue_refresh_token(account.id)
    client_url = get_settings().client_url.rstrip("/")
    resp = RedirectResponse(f"{client_url}/auth/success?{urlencode({'token': access_token})}", status_code=302)
    set_access_cookie(resp, access_token)
    set_refresh_cookie(resp, refresh_token)
    resp.headers["Cache-Control"] = "no-store"
    _transition(provider, OAuthFlowState.TOKENS_ISSUED)
    logger.info("%s authentication successful for account %s", provider, account.id)
    return resp
