"""
auth/errors.py -- Domain error hierarchy for the authentication core.

Every error carries an HTTP status and a stable machine-readable code so the
API layer can render it without inspecting the type:

    {"error": {"code": "<code>", "message": "<human message>"}}

Core modules (tokens, ephemeral, oauth, store) raise these; only api/ turns
them into responses. Anything that is not an AuthError falls through to the
generic 500 handler, which logs the details and returns no internals.

Layer rule: stdlib only.
"""

from __future__ import annotations

from typing import Any, Optional


class AuthError(Exception):
    """Base class for all typed authentication errors."""

    status_code: int = 500
    code: str = "internal_error"
    default_message: str = "An unexpected error occurred."

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        code: Optional[str] = None,
        details: Optional[Any] = None,
    ) -> None:
        self.message = message or self.default_message
        if code is not None:
            self.code = code
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> dict:
        error: dict = {"code": self.code, "message": self.message}
        if self.details is not None:
            error["detail"] = self.details
        return {"error": error}


class ValidationError(AuthError):
    status_code = 400
    code = "validation_error"
    default_message = "Request validation failed."


class AuthenticationError(AuthError):
    status_code = 401
    code = "unauthorized"
    default_message = "Authentication required."


class TokenExpired(AuthenticationError):
    code = "token_expired"
    default_message = "Token has expired."


class TokenInvalid(AuthenticationError):
    code = "invalid_token"
    default_message = "Token is invalid."


class OAuthOnlyAccount(AuthenticationError):
    code = "oauth_account"
    default_message = "This email is associated with a social login. Please sign in with that provider."


class CsrfError(AuthError):
    status_code = 403
    code = "csrf_error"
    default_message = "Invalid or missing CSRF token."


class DuplicateAccount(AuthError):
    status_code = 400
    code = "duplicate_account"
    default_message = "An account with this email or username already exists."


class TokenNotFoundOrExpired(AuthError):
    status_code = 400
    code = "token_not_found_or_expired"
    default_message = "Invalid or expired token."


class AlreadyVerified(AuthError):
    status_code = 400
    code = "already_verified"
    default_message = "Email is already verified."


class NotFound(AuthError):
    status_code = 404
    code = "not_found"
    default_message = "Resource not found."


class InternalError(AuthError):
    status_code = 500
    code = "internal_error"
