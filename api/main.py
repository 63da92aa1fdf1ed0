"""
api/main.py -- FastAPI application entry point for AuthGate.

Run with:  python main.py
           uvicorn api.main:app --reload

Middleware pipeline: see api/middleware.py (order is load-bearing).

Lifespan handles startup (account store, OAuth providers and registry,
identity resolver, email sender, token purge task) and shutdown (cancel the
purge task, close the store) symmetrically.
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException

from api.limiter import limiter
from api.middleware import install_middleware
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.auth import router as auth_router
from api.routes.oauth import router as oauth_router
from api.routes.recovery import router as recovery_router
from auth.email import build_email_sender
from auth.errors import AuthError
from auth.oauth import IdentityResolver, build_oauth_registry, build_provider_configs
from auth.store import AccountStore
from core.config import get_settings

__version__ = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("authgate.api")

settings = get_settings()

# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------

PURGE_INTERVAL_SECONDS = 60 * 60


async def _purge_loop(app: FastAPI) -> None:
    """Clear expired verification and reset tokens every hour.

    Expired tokens are already rejected by the conditional UPDATEs; this only
    keeps dead values out of the table. CancelledError from task.cancel()
    during shutdown propagates out of asyncio.sleep and ends the loop.
    """
    while True:
        await asyncio.sleep(PURGE_INTERVAL_SECONDS)
        try:
            purged = app.state.account_store.purge_expired_tokens()
        except SQLAlchemyError:
            logger.exception("Expired token purge failed")
            continue
        if purged:
            logger.info("Purged %d expired token(s)", purged)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build per-app collaborators on startup and release them on shutdown.

    Startup order matters: the resolver needs the store and the provider map;
    the purge task needs the store.
    """
    logger.info("AuthGate API starting up")
    app.state.account_store = AccountStore(settings.database_url)
    app.state.providers = build_provider_configs(settings)
    app.state.oauth = build_oauth_registry(app.state.providers, timeout=settings.oauth_timeout_seconds)
    app.state.identity_resolver = IdentityResolver(app.state.account_store, app.state.providers)
    app.state.email_sender = build_email_sender(settings)
    logger.info("Auth initialized (%d OAuth provider(s))", len(app.state.providers))
    app.state.purge_task = asyncio.create_task(_purge_loop(app))

    yield

    app.state.purge_task.cancel()
    app.state.account_store.close()
    logger.info("AuthGate API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="AuthGate API",
    description="Session and token authentication with local credentials and OAuth sign-in.",
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url=None,
)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter

install_middleware(app, settings)

# ---------------------------------------------------------------------------
# Router registration
#
# auth_router first: its /auth/me must win over oauth_router's /auth/{provider}.
# ---------------------------------------------------------------------------

app.include_router(auth_router, tags=["Auth"])
app.include_router(oauth_router, tags=["OAuth"])
app.include_router(recovery_router, tags=["Recovery"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same {"error": {...}} envelope so clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Render typed domain errors with their own status and code."""
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", exc.code, request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = JSONResponse(
        status_code=429,
        content=ErrorResponse(
            error=ErrorDetail(
                code="rate_limited",
                message="You have exceeded the allowed number of requests. Please try again later.",
                detail=str(exc.detail),
            )
        ).model_dump(exclude_none=True),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


def _field_errors(exc: RequestValidationError) -> list[dict]:
    errors = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
        message = str(err.get("msg", "Invalid value"))
        # pydantic prefixes messages raised from field validators.
        if message.startswith("Value error, "):
            message = message[len("Value error, ") :]
        errors.append({"field": ".".join(loc) or None, "message": message})
    return errors


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 with one {field, message} entry per failed field."""
    return JSONResponse(
        status_code=400,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail=_field_errors(exc),
            )
        ).model_dump(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for HTTP exceptions, including router 404 and 405."""
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(exclude_none=True),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The exception is logged with its traceback; the client receives only a
    generic message.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(
                code="internal_error",
                message="An unexpected error occurred.",
            )
        ).model_dump(exclude_none=True),
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py so it is reachable regardless of router
# registration state. Exempt from rate limiting: monitors must not be throttled.
# ---------------------------------------------------------------------------


# exempt() only records the endpoint name; the route keeps the plain function.
@limiter.exempt
@app.get("/health", tags=["Health"])
async def health(request: Request) -> HealthResponse:
    """Return liveness, version, and whether the database answers."""
    database = "healthy"
    try:
        request.app.state.account_store.count_accounts()
    except SQLAlchemyError:
        logger.exception("Health check: database unavailable")
        database = "unavailable"
    return HealthResponse(
        status="healthy" if database == "healthy" else "degraded",
        version=__version__,
        components={"app": "healthy", "database": database},
    )
