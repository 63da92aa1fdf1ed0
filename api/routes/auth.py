"""
api/routes/auth.py -- Local credential and token endpoints.

Routes:
  POST /signup      -- create a local account; sets token cookies; 201
  POST /login       -- password login; sets token cookies
  POST /refresh     -- new access token from the refreshToken cookie
  POST /logout      -- clears token, refresh, CSRF and session state
  GET  /auth/me     -- current account (requires access token)
  GET  /protected   -- current account (requires the server session)
  GET  /csrf-token  -- current CSRF token for the SPA

Security:
  [C1] authenticate_account() provides timing equalization -- use it, never inline.
  [M5] Cache-Control: no-store on every response that carries a token.
  Credential endpoints share the stricter AUTH_RATE_LIMIT.
  /login and /signup are CSRF-exempt (the client has no token yet), so they
  hand out the first token themselves via grant_csrf_token().
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import AUTH_RATE_LIMIT, limiter
from api.models import (
    AccessTokenResponse,
    AuthResponse,
    CsrfTokenResponse,
    LoginRequest,
    MessageResponse,
    SessionResponse,
    SignupRequest,
    UserResponse,
)
from auth.csrf import clear_csrf_cookies, grant_csrf_token
from auth.dependencies import extract_access_token, get_current_account, get_refresh_account, get_session_account
from auth.ephemeral import issue_verification_token
from auth.errors import AuthenticationError, DuplicateAccount
from auth.models import Account
from auth.session import destroy_session, establish_session
from auth.store import AccountStore
from auth.tokens import (
    REFRESH_COOKIE,
    authenticate_account,
    clear_auth_cookies,
    hash_password,
    issue_access_token,
    issue_refresh_token,
    set_access_cookie,
    set_refresh_cookie,
    verify_access_token,
    verify_refresh_token,
)
from core.config import get_settings

logger = logging.getLogger("authgate.api.auth")

# Auth policy:
# - POST /signup, /login:  public, CSRF-exempt, rate-limited
# - POST /refresh:         refreshToken cookie + CSRF token
# - POST /logout:          refresh or access token, CSRF-exempt
# - GET  /auth/me:         access token (get_current_account)
# - GET  /protected:       server session (get_session_account)
# - GET  /csrf-token:      public
router = APIRouter()


def _auth_response(request: Request, account: Account, status_code: int, message: Optional[str] = None) -> JSONResponse:
    """Build the signup/login response: session, body, token cookies and CSRF cookies."""
    access_token = issue_access_token(account.id, account.email)
    refresh_token = issue_refresh_token(account.id)
    grant = grant_csrf_token(request)
    establish_session(request, account)
    resp = JSONResponse(
        status_code=status_code,
        content=AuthResponse(
            access_token=access_token,
            csrf_token=grant.token,
            user=UserResponse.from_account(account),
            message=message,
        ).model_dump(by_alias=True, exclude_none=True),
    )
    set_access_cookie(resp, access_token)
    set_refresh_cookie(resp, refresh_token)
    grant.write(resp, secure=get_settings().secure_cookies)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/signup", response_model=AuthResponse, status_code=201)
@limiter.limit(AUTH_RATE_LIMIT)
def signup(request: Request, body: SignupRequest) -> JSONResponse:
    """Create a local account, send the verification email, and log the user in.

    A failed email send does not fail signup; the user can ask for a new link
    through POST /resend-verification.
    """
    store: AccountStore = request.app.state.account_store
    if store.exists_email_or_username(body.email, body.username):
        raise DuplicateAccount("User with this email or username already exists.")

    account_id = store.create_account(
        Account(
            email=body.email,
            username=body.username,
            hashed_password=hash_password(body.password),
        )
    )
    account = store.get_by_id(account_id)
    logger.info("Account created: %s", account_id)

    token = issue_verification_token(store, account)
    if not request.app.state.email_sender.send_verification_email(account.email, account.username, token):
        logger.warning("Verification email to account %s was not delivered", account_id)

    return _auth_response(
        request,
        account,
        status_code=201,
        message="User created successfully. Please check your email for verification.",
    )


@router.post("/login", response_model=AuthResponse)
@limiter.limit(AUTH_RATE_LIMIT)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password; set token and CSRF cookies.

    Uses authenticate_account() which includes timing equalization [C1].
    Unknown email and wrong password share one error code ("bad_credentials");
    provider-only accounts get "oauth_account" so the client can point the
    user at the right sign-in button.
    """
    store: AccountStore = request.app.state.account_store
    account = authenticate_account(store, body.email.strip().lower(), body.password)
    store.update_last_login(account.id)
    logger.info("Password login: account %s", account.id)
    return _auth_response(request, account, status_code=200)


@router.post("/refresh", response_model=AccessTokenResponse)
@limiter.limit(AUTH_RATE_LIMIT)
def refresh(request: Request, account: Account = Depends(get_refresh_account)) -> JSONResponse:
    """Exchange the refreshToken cookie for a new access token.

    The refresh token itself is not rotated; it lives out its own lifetime.
    """
    access_token = issue_access_token(account.id, account.email)
    resp = JSONResponse(content=AccessTokenResponse(access_token=access_token).model_dump(by_alias=True))
    set_access_cookie(resp, access_token)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.post("/logout", response_model=MessageResponse)
def logout(request: Request) -> JSONResponse:
    """End the session and clear every auth cookie.

    Requires proof of a session: a valid refreshToken cookie, or failing that
    a valid access token. Each is checked against its own secret only.
    """
    refresh_token = request.cookies.get(REFRESH_COOKIE)
    if refresh_token:
        payload = verify_refresh_token(refresh_token)
    else:
        access_token = extract_access_token(request)
        if not access_token:
            raise AuthenticationError("No session to log out of.")
        payload = verify_access_token(access_token)

    destroy_session(request)
    resp = JSONResponse(content=MessageResponse(message="Logged out successfully").model_dump(by_alias=True))
    clear_auth_cookies(resp)
    clear_csrf_cookies(resp)
    logger.info("Logout: account %s", payload.account_id)
    return resp


@router.get("/csrf-token", response_model=CsrfTokenResponse)
async def csrf_token(request: Request) -> CsrfTokenResponse:
    """Return the token CsrfMiddleware issued for this request (also set as XSRF-TOKEN)."""
    return CsrfTokenResponse(csrf_token=request.state.csrf_token)


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=UserResponse)
async def me(account: Account = Depends(get_current_account)) -> UserResponse:
    """Return the public view of the authenticated account."""
    return UserResponse.from_account(account)


@router.get("/protected", response_model=SessionResponse)
async def protected(account: Account = Depends(get_session_account)) -> SessionResponse:
    """Return the account held by the server session; tokens are not consulted."""
    return SessionResponse(user=UserResponse.from_account(account))
