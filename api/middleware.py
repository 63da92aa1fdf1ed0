"""
api/middleware.py -- Per-request pipeline installed on the FastAPI app.

A request meets the layers in this order (outermost first):

  1. RequestLoggingMiddleware -- method, path, status, latency, client IP
  2. SlowAPIMiddleware        -- fixed-window rate limit (api.limiter)
  3. SessionMiddleware        -- signed "session" cookie, account id only
  4. CORSMiddleware           -- configured origins, credentials allowed
  5. OAuthContextMiddleware   -- exposes provider map / registry / resolver
  6. CsrfMiddleware           -- rejects mutating requests without a token
  then route dispatch. Body and cookie parsing happen lazily on Request.

Starlette's add_middleware() inserts at the front of the stack, so the last
registered layer is the outermost. install_middleware() therefore registers
innermost first. MIDDLEWARE_ORDER is the source of truth; tests compare it
against app.user_middleware.
"""

from __future__ import annotations

import logging
import time

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi.middleware import SlowAPIMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.middleware.sessions import SessionMiddleware
from starlette.requests import Request

from auth.csrf import CSRF_EXEMPT_PATHS, CsrfMiddleware
from core.config import Settings

logger = logging.getLogger("authgate.api")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log one line per request with wall-clock latency."""

    async def dispatch(self, request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        ms = (time.perf_counter() - start) * 1000
        logger.info(
            "%s %s %d %.1fms %s",
            request.method,
            request.url.path,
            response.status_code,
            ms,
            request.client.host if request.client else "unknown",
        )
        return response


class OAuthContextMiddleware(BaseHTTPMiddleware):
    """Attach the app's OAuth collaborators to request.state.

    The registry, provider map and IdentityResolver are built once in the
    lifespan; routes read them from request.state so a test app can swap
    them without touching module globals.
    """

    async def dispatch(self, request: Request, call_next):
        state = request.app.state
        request.state.oauth = getattr(state, "oauth", None)
        request.state.providers = getattr(state, "providers", {})
        request.state.identity_resolver = getattr(state, "identity_resolver", None)
        return await call_next(request)


MIDDLEWARE_ORDER: tuple[type, ...] = (
    RequestLoggingMiddleware,
    SlowAPIMiddleware,
    SessionMiddleware,
    CORSMiddleware,
    OAuthContextMiddleware,
    CsrfMiddleware,
)


def install_middleware(app: FastAPI, settings: Settings) -> None:
    """Register the pipeline on app. Registration order is innermost first."""
    app.add_middleware(CsrfMiddleware, exempt_paths=CSRF_EXEMPT_PATHS, secure=settings.secure_cookies)
    app.add_middleware(OAuthContextMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-XSRF-TOKEN", "X-CSRF-Token", "CSRF-Token"],
        max_age=3600,
    )
    # authlib keeps the OAuth state value in this session between the
    # provider redirect and the callback.
    app.add_middleware(
        SessionMiddleware,
        secret_key=settings.session_secret,
        session_cookie="session",
        max_age=settings.session_max_age_seconds,
        same_site="lax",
        https_only=settings.secure_cookies,
    )
    app.add_middleware(SlowAPIMiddleware)
    app.add_middleware(RequestLoggingMiddleware)
