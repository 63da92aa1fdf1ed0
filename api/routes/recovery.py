"""
api/routes/recovery.py -- Email verification and password reset.

Routes:
  GET  /verify-email/{token}        -- consume a verification token
  POST /resend-verification         -- issue a fresh verification token by email
  POST /reset-password              -- email a password reset link
  GET  /verify-reset-token/{token}  -- check a reset token without consuming it
  POST /reset-password/{token}      -- set a new password (CSRF-protected)

Tokens are single use: consuming one clears it in the same conditional
UPDATE that applies its effect, so a second attempt gets 400
token_not_found_or_expired.
"""

import logging

from fastapi import APIRouter, Request

from api.limiter import AUTH_RATE_LIMIT, limiter
from api.models import EmailRequest, MessageResponse, NewPasswordRequest, VerifyEmailResponse
from auth.ephemeral import (
    check_reset_token,
    consume_reset_token,
    consume_verification_token,
    issue_reset_token,
    issue_verification_token,
)
from auth.errors import AlreadyVerified, InternalError, NotFound
from auth.store import AccountStore

logger = logging.getLogger("authgate.api.recovery")

router = APIRouter()


@router.get("/verify-email/{token}", response_model=VerifyEmailResponse)
def verify_email(request: Request, token: str) -> VerifyEmailResponse:
    store: AccountStore = request.app.state.account_store
    consume_verification_token(store, token)
    return VerifyEmailResponse(message="Email verified successfully", is_verified=True)


@router.post("/resend-verification", response_model=MessageResponse)
@limiter.limit(AUTH_RATE_LIMIT)
def resend_verification(request: Request, body: EmailRequest) -> MessageResponse:
    """Replace any outstanding verification token with a new one and email it."""
    store: AccountStore = request.app.state.account_store
    account = store.get_by_email(body.email)
    if account is None:
        raise NotFound("No account found with this email.")
    if account.is_verified:
        raise AlreadyVerified()

    token = issue_verification_token(store, account)
    if not request.app.state.email_sender.send_verification_email(account.email, account.username, token):
        raise InternalError("Could not send the verification email.", code="email_delivery_failed")
    return MessageResponse(message="Verification link has been sent to your email")


@router.post("/reset-password", response_model=MessageResponse)
@limiter.limit(AUTH_RATE_LIMIT)
def request_password_reset(request: Request, body: EmailRequest) -> MessageResponse:
    store: AccountStore = request.app.state.account_store
    account = store.get_by_email(body.email)
    if account is None:
        raise NotFound("No account found with this email.")

    token = issue_reset_token(store, account)
    if not request.app.state.email_sender.send_password_reset_email(account.email, account.username, token):
        raise InternalError("Could not send the password reset email.", code="email_delivery_failed")
    logger.info("Password reset requested for account %s", account.id)
    return MessageResponse(message="Password reset link has been sent to your email")


@router.get("/verify-reset-token/{token}", response_model=MessageResponse)
def verify_reset_token(request: Request, token: str) -> MessageResponse:
    check_reset_token(request.app.state.account_store, token)
    return MessageResponse(message="Token is valid")


@router.post("/reset-password/{token}", response_model=MessageResponse)
@limiter.limit(AUTH_RATE_LIMIT)
def reset_password(request: Request, token: str, body: NewPasswordRequest) -> MessageResponse:
    """Set a new password. At most one concurrent request per token succeeds."""
    consume_reset_token(request.app.state.account_store, token, body.new_password)
    return MessageResponse(message="Password reset successfully")
