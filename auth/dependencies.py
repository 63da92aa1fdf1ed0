"""
auth/dependencies.py -- FastAPI Depends() helpers for token and session authentication.

Each token kind is read from its own place and verified against its own
secret:
  access  -- "token" cookie (SPA) or Authorization: Bearer header (API clients)
  refresh -- "refreshToken" cookie only

Verification failures never escape as anything but a 401 AuthenticationError
subclass (TokenExpired, TokenInvalid, or plain "unauthorized"); the API
layer renders them.

get_session_account is the exception: it trusts only the signed session
cookie, for routes that authenticate the server session rather than a token.

Layer rule: may import fastapi (this module is part of the DI system), not api/.
"""

from __future__ import annotations

from typing import Optional

from fastapi import Request

from auth.errors import AuthenticationError
from auth.models import Account
from auth.session import load_session_account
from auth.tokens import ACCESS_COOKIE, REFRESH_COOKIE, verify_access_token, verify_refresh_token


def extract_access_token(request: Request) -> Optional[str]:
    """Return the access token from the cookie, else from the Bearer header."""
    token = request.cookies.get(ACCESS_COOKIE)
    if token:
        return token
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:].strip() or None
    return None


def get_current_account(request: Request) -> Account:
    """Require a valid access token. Raises a 401 AuthenticationError otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(account: Account = Depends(get_current_account)): ...
    """
    token = extract_access_token(request)
    if not token:
        raise AuthenticationError("Access token required.")
    payload = verify_access_token(token)
    account = request.app.state.account_store.get_by_id(payload.account_id)
    if account is None:
        raise AuthenticationError("Account not found.")
    return account


def get_refresh_account(request: Request) -> Account:
    """Require a valid refresh token cookie. Raises a 401 AuthenticationError otherwise."""
    token = request.cookies.get(REFRESH_COOKIE)
    if not token:
        raise AuthenticationError("No refresh token provided.")
    payload = verify_refresh_token(token)
    account = request.app.state.account_store.get_by_id(payload.account_id)
    if account is None:
        raise AuthenticationError("Account not found.")
    return account


def get_session_account(request: Request) -> Account:
    """Require a server session (set at login, signup or OAuth callback).

    Unlike get_current_account this ignores tokens entirely; the session
    cookie alone identifies the account.
    """
    account = load_session_account(request, request.app.state.account_store)
    if account is None:
        raise AuthenticationError("Authentication required.")
    return account
