"""
auth/tokens.py -- JWT codec, password hashing, and auth cookie helpers.

Security design decisions:
  JWT: python-jose with HS256. Two token kinds, each with its own secret:
       access  -- {sub, email, typ="access"}, ACCESS_TOKEN_SECRET, 15 minutes.
       refresh -- {sub, typ="refresh"},       REFRESH_TOKEN_SECRET, 7 days.
       verify() checks exactly one secret. The caller decides which secret
       from where the token was presented (token cookie / Bearer header =
       access, refreshToken cookie = refresh). There is no "try the other
       secret" fallback: an access token must never pass as a refresh token
       and vice versa. The typ claim is checked as a second guard.

  Passwords: bcrypt, used directly. The _DUMMY_HASH constant enables timing
       equalization in authenticate_account() so response time does not
       reveal whether an email is registered [C1].

  Secrets: sourced from core.config.get_settings(), validated at startup.

Layer rule: no imports from api/. Import from core/ is allowed -- core/ is
the kernel and has no reverse dependencies.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Optional

import bcrypt
from jose import ExpiredSignatureError, JWTError, jwt

from auth.errors import AuthenticationError, OAuthOnlyAccount, TokenExpired, TokenInvalid
from auth.models import TokenPayload, TokenType
from core.config import get_settings

if TYPE_CHECKING:
    from auth.models import Account
    from auth.store import AccountStore

logger = logging.getLogger("authgate.auth")

# ---------------------------------------------------------------------------
# Config -- read once at module load via the lru_cache singleton
# ---------------------------------------------------------------------------

_settings = get_settings()

_ALGORITHM = "HS256"

ACCESS_COOKIE = "token"
REFRESH_COOKIE = "refreshToken"

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    bcrypt truncates input beyond 72 bytes; the API layer caps password
    length well below that.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


# Computed once at module load so the first login is not measurably slower.
_DUMMY_HASH: str = hash_password("authgate_timing_dummy")


def authenticate_account(store: AccountStore, email: str, password: str) -> Account:
    """Check local credentials with timing equalization [C1].

    Raises:
        OAuthOnlyAccount:    the email belongs to an account created through a
                             provider and has no local password.
        AuthenticationError: unknown email or wrong password. Both cases use
                             the same code so the response does not reveal
                             which one failed.
    """
    account = store.get_by_email(email)
    if account is None:
        verify_password(password, _DUMMY_HASH)
        raise AuthenticationError("Invalid email or password.", code="bad_credentials")
    if account.is_oauth_only:
        verify_password(password, _DUMMY_HASH)
        raise OAuthOnlyAccount()
    if not verify_password(password, account.hashed_password):
        raise AuthenticationError("Invalid email or password.", code="bad_credentials")
    return account


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


def _encode(claims: dict, secret: str, duration: int) -> str:
    now = datetime.now(timezone.utc)
    payload = {**claims, "iat": now, "exp": now + timedelta(seconds=duration)}
    return jwt.encode(payload, secret, algorithm=_ALGORITHM)


def issue_access_token(account_id: int, email: str, expire_seconds: int = 0) -> str:
    """Sign a short-lived access token carrying the account id and email.

    expire_seconds of 0 (default) uses Settings.access_token_expire_seconds.
    """
    duration = expire_seconds if expire_seconds else _settings.access_token_expire_seconds
    claims = {"sub": str(account_id), "email": email, "typ": TokenType.access.value}
    return _encode(claims, _settings.access_token_secret, duration)


def issue_refresh_token(account_id: int, expire_seconds: int = 0) -> str:
    """Sign a long-lived refresh token carrying only the account id."""
    duration = expire_seconds if expire_seconds else _settings.refresh_token_expire_seconds
    claims = {"sub": str(account_id), "typ": TokenType.refresh.value}
    return _encode(claims, _settings.refresh_token_secret, duration)


def verify(token: str, secret: str, expected_type: Optional[TokenType] = None) -> TokenPayload:
    """Verify a token against one secret and return its claims.

    Raises:
        TokenExpired: signature is valid but exp is in the past.
        TokenInvalid: bad signature, malformed token, missing claims, or a
                      typ claim that does not match expected_type.
    """
    try:
        claims = jwt.decode(token, secret, algorithms=[_ALGORITHM])
    except ExpiredSignatureError as exc:
        raise TokenExpired() from exc
    except JWTError as exc:
        raise TokenInvalid() from exc

    try:
        account_id = int(claims["sub"])
        token_type = TokenType(claims["typ"])
        expires_at = int(claims["exp"])
    except (KeyError, TypeError, ValueError) as exc:
        raise TokenInvalid() from exc

    if expected_type is not None and token_type is not expected_type:
        raise TokenInvalid("Token type is not accepted here.")
    if token_type is TokenType.access and not claims.get("email"):
        raise TokenInvalid()

    return TokenPayload(
        account_id=account_id,
        token_type=token_type,
        expires_at=expires_at,
        email=claims.get("email"),
    )


def verify_access_token(token: str) -> TokenPayload:
    return verify(token, _settings.access_token_secret, TokenType.access)


def verify_refresh_token(token: str) -> TokenPayload:
    return verify(token, _settings.refresh_token_secret, TokenType.refresh)


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_access_cookie(response, token: str) -> None:
    """Write the access token as an httpOnly cookie whose max_age matches the JWT."""
    response.set_cookie(
        ACCESS_COOKIE,
        value=token,
        httponly=True,
        samesite="lax",
        secure=_settings.secure_cookies,
        max_age=_settings.access_token_expire_seconds,
        path="/",
    )


def set_refresh_cookie(response, token: str) -> None:
    """Write the refresh token as an httpOnly cookie (7 days by default)."""
    response.set_cookie(
        REFRESH_COOKIE,
        value=token,
        httponly=True,
        samesite="lax",
        secure=_settings.secure_cookies,
        max_age=_settings.refresh_token_expire_seconds,
        path="/",
    )


def clear_auth_cookies(response) -> None:
    response.delete_cookie(ACCESS_COOKIE, path="/")
    response.delete_cookie(REFRESH_COOKIE, path="/")
