"""
API request and response models for AuthGate REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Wire names are camelCase (accessToken, isVerified, newPassword) to match the
SPA client; Python attributes stay snake_case via the alias generator.
Responses built by hand with JSONResponse must call model_dump(by_alias=True).
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel

from auth.ephemeral import MIN_PASSWORD_LENGTH
from auth.models import Account

# bcrypt ignores input beyond 72 bytes.
MAX_PASSWORD_LENGTH = 72
MIN_USERNAME_LENGTH = 3


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class _FrozenCamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class SignupRequest(_CamelModel):
    """Request body for POST /signup.

    Validation messages are user-facing: the 400 response lists them per field.
    """

    username: str
    email: EmailStr
    password: str = Field(max_length=MAX_PASSWORD_LENGTH)

    @field_validator("username")
    @classmethod
    def username_min_length(cls, v: str) -> str:
        v = v.strip()
        if len(v) < MIN_USERNAME_LENGTH:
            raise ValueError(f"Username must be at least {MIN_USERNAME_LENGTH} characters long")
        return v

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.strip().lower()

    @field_validator("password")
    @classmethod
    def password_min_length(cls, v: str) -> str:
        if len(v) < MIN_PASSWORD_LENGTH:
            raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
        return v


class LoginRequest(_CamelModel):
    """Request body for POST /login. No length rules: a wrong password is a 401, not a 400."""

    email: str = Field(min_length=1, max_length=320)
    password: str = Field(min_length=1, max_length=MAX_PASSWORD_LENGTH)


class EmailRequest(_CamelModel):
    """Request body for POST /resend-verification and POST /reset-password."""

    email: EmailStr

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.strip().lower()


class NewPasswordRequest(_CamelModel):
    """Request body for POST /reset-password/{token}.

    The minimum length is enforced by auth.ephemeral.consume_reset_token so
    the rule lives in one place; only the bcrypt ceiling is checked here.
    """

    new_password: str = Field(max_length=MAX_PASSWORD_LENGTH)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserResponse(_FrozenCamelModel):
    """Public view of an account. Never includes hashes or ephemeral tokens."""

    id: int
    email: str
    username: Optional[str] = None
    is_verified: bool
    created_at: Optional[str] = None
    github_id: Optional[str] = None
    google_id: Optional[str] = None
    discord_id: Optional[str] = None

    @classmethod
    def from_account(cls, account: Account) -> "UserResponse":
        return cls(
            id=account.id,
            email=account.email,
            username=account.username,
            is_verified=account.is_verified,
            created_at=account.created_at,
            github_id=account.provider_ids.get("github"),
            google_id=account.provider_ids.get("google"),
            discord_id=account.provider_ids.get("discord"),
        )


class AuthResponse(_FrozenCamelModel):
    """Response for POST /signup (201) and POST /login (200)."""

    access_token: str
    csrf_token: str
    user: UserResponse
    message: Optional[str] = None


class AccessTokenResponse(_FrozenCamelModel):
    """Response for POST /refresh."""

    access_token: str


class MessageResponse(_FrozenCamelModel):
    message: str


class VerifyEmailResponse(_FrozenCamelModel):
    message: str
    is_verified: bool = True


class CsrfTokenResponse(_FrozenCamelModel):
    csrf_token: str


class SessionResponse(_FrozenCamelModel):
    """Body of GET /protected: the account behind the server session."""

    status: str = "success"
    user: UserResponse


class ProviderInfo(_FrozenCamelModel):
    """One entry in GET /auth/providers -- drives the login page buttons."""

    name: str
    label: str


# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[Any] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
