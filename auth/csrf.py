"""
auth/csrf.py -- Cookie-pair CSRF protection.

Scheme:
  _csrf       httpOnly cookie holding a random per-browser secret.
  XSRF-TOKEN  readable cookie holding a token signed with that secret
              (itsdangerous, fresh random nonce every time). The SPA copies
              it into an X-XSRF-TOKEN (or X-CSRF-Token / CSRF-Token) header.

A mutating request passes when the presented token verifies against the
_csrf secret. A new XSRF-TOKEN is written on every checked response
(per-request rotation). Earlier tokens stay valid while the _csrf secret is
unchanged, so concurrent requests from the same tab do not invalidate each
other; clearing _csrf (logout) invalidates them all.

Exempt paths bypass the check entirely: they run before the client holds a
token (login, signup) or are safe by construction (logout, reset-request,
verification links). An entry ending in "/" is a prefix; any other entry
matches only that exact path, so "/reset-password" is exempt while
"/reset-password/<token>" is not.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from typing import Optional

from itsdangerous import BadSignature, URLSafeSerializer
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from auth.errors import CsrfError

logger = logging.getLogger("authgate.auth.csrf")

CSRF_SECRET_COOKIE = "_csrf"
CSRF_TOKEN_COOKIE = "XSRF-TOKEN"
CSRF_HEADERS = ("x-xsrf-token", "x-csrf-token", "csrf-token")

CSRF_EXEMPT_PATHS: tuple[str, ...] = (
    "/login",
    "/signup",
    "/logout",
    "/reset-password",
    "/resend-verification",
    "/verify-email/",
    "/verify-reset-token/",
)

SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS", "TRACE"})

_SALT = "authgate.csrf"


# ---------------------------------------------------------------------------
# Token primitives
# ---------------------------------------------------------------------------


def generate_csrf_secret() -> str:
    return secrets.token_urlsafe(32)


def create_csrf_token(secret: str) -> str:
    return URLSafeSerializer(secret, salt=_SALT).dumps(secrets.token_hex(8))


def verify_csrf_token(secret: str, token: str) -> bool:
    try:
        URLSafeSerializer(secret, salt=_SALT).loads(token)
    except BadSignature:
        return False
    return True


def is_csrf_exempt(path: str, exempt_paths: tuple[str, ...] = CSRF_EXEMPT_PATHS) -> bool:
    for entry in exempt_paths:
        if entry.endswith("/"):
            if path.startswith(entry):
                return True
        elif path == entry or path == entry + "/":
            return True
    return False


def presented_csrf_token(request: Request) -> Optional[str]:
    for header in CSRF_HEADERS:
        value = request.headers.get(header)
        if value:
            return value
    return None


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def _secret_for(request: Request) -> tuple[str, bool]:
    """Return (secret, is_new). A new secret means the browser never had one."""
    secret = request.cookies.get(CSRF_SECRET_COOKIE)
    if secret:
        return secret, False
    return generate_csrf_secret(), True


def _write_cookies(response: Response, secret: str, token: str, *, include_secret: bool, secure: bool) -> None:
    if include_secret:
        response.set_cookie(
            CSRF_SECRET_COOKIE,
            value=secret,
            httponly=True,
            samesite="strict",
            secure=secure,
            path="/",
        )
    response.set_cookie(
        CSRF_TOKEN_COOKIE,
        value=token,
        httponly=False,
        samesite="strict",
        secure=secure,
        path="/",
    )


@dataclass(frozen=True)
class CsrfGrant:
    """A fresh readable token plus the secret it was signed with."""

    secret: str
    token: str
    is_new: bool  # the browser had no _csrf cookie yet

    def write(self, response: Response, secure: bool = False) -> None:
        _write_cookies(response, self.secret, self.token, include_secret=self.is_new, secure=secure)


def grant_csrf_token(request: Request) -> CsrfGrant:
    """Sign a new token for this browser, creating its secret if needed.

    Exempt handlers (login, signup) use this to hand the client its first token.
    """
    secret, is_new = _secret_for(request)
    return CsrfGrant(secret=secret, token=create_csrf_token(secret), is_new=is_new)


def clear_csrf_cookies(response: Response) -> None:
    response.delete_cookie(CSRF_TOKEN_COOKIE, path="/")
    response.delete_cookie(CSRF_SECRET_COOKIE, path="/")


# ---------------------------------------------------------------------------
# Middleware
# ---------------------------------------------------------------------------


class CsrfMiddleware(BaseHTTPMiddleware):
    """Reject mutating requests without a valid CSRF token before routing.

    The fresh token for this request is exposed as request.state.csrf_token.
    """

    def __init__(self, app, exempt_paths: tuple[str, ...] = CSRF_EXEMPT_PATHS, secure: bool = False) -> None:
        super().__init__(app)
        self.exempt_paths = exempt_paths
        self.secure = secure

    async def dispatch(self, request: Request, call_next) -> Response:
        if is_csrf_exempt(request.url.path, self.exempt_paths):
            return await call_next(request)

        grant = grant_csrf_token(request)
        if request.method not in SAFE_METHODS:
            presented = presented_csrf_token(request)
            if grant.is_new or not presented or not verify_csrf_token(grant.secret, presented):
                logger.warning("CSRF validation failed: %s %s", request.method, request.url.path)
                error = CsrfError()
                return JSONResponse(status_code=error.status_code, content=error.to_dict())

        request.state.csrf_token = grant.token
        response = await call_next(request)
        grant.write(response, secure=self.secure)
        return response
