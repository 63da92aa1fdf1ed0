"""
auth/ephemeral.py -- Single-use, expiring tokens for email verification and password reset.

Lifecycle:
  issue_*   -- generate secrets.token_hex(32) (256 bits), store it with an
               expiry on the account. Re-issuing replaces the previous token.
  consume_* -- the store's conditional UPDATE matches the token AND an
               unexpired deadline in one statement, applies the change and
               clears the token pair. A second consumption (or a concurrent
               loser) finds nothing and raises TokenNotFoundOrExpired.

Expiry windows (one per token kind, from Settings):
  verification -- 24 hours
  reset        -- 1 hour

Tokens are cleared at consumption time. Expired-but-unconsumed tokens are
swept by AccountStore.purge_expired_tokens() from the API lifespan task.

Known limitation: the raw token is stored and compared, not a hash of it.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import secrets
import time
from typing import Optional

from auth.errors import NotFound, TokenNotFoundOrExpired, ValidationError
from auth.models import Account
from auth.store import AccountStore
from auth.tokens import hash_password
from core.config import get_settings

logger = logging.getLogger("authgate.auth.ephemeral")

MIN_PASSWORD_LENGTH = 6
TOKEN_BYTES = 32


def generate_ephemeral_token() -> str:
    """Return 32 random bytes as 64 hex characters."""
    return secrets.token_hex(TOKEN_BYTES)


def _expiry(ttl_seconds: Optional[int], default: int) -> float:
    return time.time() + (default if ttl_seconds is None else ttl_seconds)


# ---------------------------------------------------------------------------
# Email verification
# ---------------------------------------------------------------------------


def issue_verification_token(store: AccountStore, account: Account, ttl_seconds: Optional[int] = None) -> str:
    """Generate and persist a verification token for account. Returns the raw token."""
    token = generate_ephemeral_token()
    expiry = _expiry(ttl_seconds, get_settings().verification_token_expire_seconds)
    if not store.set_verification_token(account.id, token, expiry):
        raise NotFound("Account not found.")
    account.verification_token = token
    account.verification_token_expiry = expiry
    logger.info("Issued verification token for account %s", account.id)
    return token


def consume_verification_token(store: AccountStore, token: str) -> Account:
    """Mark the token holder verified. Raises TokenNotFoundOrExpired otherwise."""
    account = store.verify_with_token(token)
    if account is None:
        raise TokenNotFoundOrExpired("Invalid or expired verification link.")
    logger.info("Email verified for account %s", account.id)
    return account


# ---------------------------------------------------------------------------
# Password reset
# ---------------------------------------------------------------------------


def issue_reset_token(store: AccountStore, account: Account, ttl_seconds: Optional[int] = None) -> str:
    """Generate and persist a password reset token for account. Returns the raw token."""
    token = generate_ephemeral_token()
    expiry = _expiry(ttl_seconds, get_settings().reset_token_expire_seconds)
    if not store.set_reset_token(account.id, token, expiry):
        raise NotFound("Account not found.")
    account.reset_password_token = token
    account.reset_password_expiry = expiry
    logger.info("Issued password reset token for account %s", account.id)
    return token


def check_reset_token(store: AccountStore, token: str) -> Account:
    """Return the token holder without consuming the token."""
    account = store.get_by_reset_token(token)
    if account is None:
        raise TokenNotFoundOrExpired("Invalid or expired password reset token.")
    return account


def validate_new_password(password: str) -> None:
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters long.",
            details=[{"field": "newPassword", "message": "too short"}],
        )


def consume_reset_token(store: AccountStore, token: str, new_password: str) -> Account:
    """Set a new password for the reset-token holder and clear the token.

    The password is checked first so a weak password does not burn the token.
    """
    validate_new_password(new_password)
    account = store.reset_password_with_token(token, hash_password(new_password))
    if account is None:
        raise TokenNotFoundOrExpired("Invalid or expired password reset token.")
    logger.info("Password reset for account %s", account.id)
    return account
