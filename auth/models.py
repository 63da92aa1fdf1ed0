"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic apart from trivial
derived properties). Stores and routes do the work.

Layer rule: stdlib only.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


@dataclass
class Account:
    """A local identity.

    hashed_password is None for accounts created through an OAuth provider;
    provider_ids maps provider name -> the provider's stable user id. Every
    account has a password hash or exactly one provider id.

    Token expiries are epoch seconds (UTC) so the store can compare them in a
    single conditional UPDATE.
    """

    email: str
    username: Optional[str] = None
    id: Optional[int] = None
    hashed_password: Optional[str] = None
    provider_ids: dict[str, str] = field(default_factory=dict)
    is_verified: bool = False
    verification_token: Optional[str] = None
    verification_token_expiry: Optional[float] = None
    reset_password_token: Optional[str] = None
    reset_password_expiry: Optional[float] = None
    created_at: Optional[str] = None
    last_login: Optional[str] = None

    @property
    def is_oauth_only(self) -> bool:
        return self.hashed_password is None


class TokenType(str, Enum):
    access = "access"
    refresh = "refresh"


@dataclass(frozen=True)
class TokenPayload:
    """Verified claims of an access or refresh token."""

    account_id: int
    token_type: TokenType
    expires_at: int
    email: Optional[str] = None  # present on access tokens only


@dataclass
class ExternalProfile:
    """Provider-agnostic view of an OAuth user profile.

    emails is ordered: the provider's primary address comes first.
    """

    id: str
    username: Optional[str] = None
    display_name: Optional[str] = None
    emails: list[str] = field(default_factory=list)
