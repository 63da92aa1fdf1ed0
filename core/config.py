"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for AuthGate happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. access_token_secret -> ACCESS_TOKEN_SECRET).

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved. Dev mode (DEBUG=true) generates missing secrets with a
      warning; production mode refuses to start without them.

Security notes:
  [M6] Secrets shorter than 32 chars are rejected outright. JWT signing,
       session signing and CSRF signing all rely on key entropy.

  [M7] ACCESS_TOKEN_SECRET and REFRESH_TOKEN_SECRET must differ. An access
       token must never verify against the refresh secret (and vice versa);
       sharing one secret would make the two token kinds interchangeable.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("authgate.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'auth' / 'authgate.db'}"

# Secrets validated by validate_secrets(); order only affects warning output.
_SECRET_FIELDS = ("access_token_secret", "refresh_token_secret", "session_secret")


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file (with DEBUG=true).
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    database_url: str = _DEFAULT_DB_URL
    # SPA origin. OAuth callbacks redirect here and email links point here.
    client_url: str = "http://localhost:5173"
    cors_origins: list[str] = Field(default_factory=list)

    # ------------------------------------------------------------------
    # Secrets -- empty string means "not configured"
    # ------------------------------------------------------------------

    access_token_secret: str = ""
    refresh_token_secret: str = ""
    session_secret: str = ""

    # ------------------------------------------------------------------
    # Token lifetimes (seconds)
    # ------------------------------------------------------------------

    access_token_expire_seconds: int = 15 * 60
    refresh_token_expire_seconds: int = 7 * 24 * 3600
    verification_token_expire_seconds: int = 24 * 3600
    reset_token_expire_seconds: int = 3600
    session_max_age_seconds: int = 24 * 3600

    secure_cookies: bool = False

    # ------------------------------------------------------------------
    # OAuth providers (optional -- empty client id/secret disables a provider)
    # ------------------------------------------------------------------

    github_client_id: str = ""
    github_client_secret: str = ""
    github_callback_url: str = ""

    google_client_id: str = ""
    google_client_secret: str = ""
    google_callback_url: str = ""

    discord_client_id: str = ""
    discord_client_secret: str = ""
    discord_callback_url: str = ""

    oauth_timeout_seconds: float = 10.0

    # ------------------------------------------------------------------
    # Rate limiting (slowapi, fixed window)
    # ------------------------------------------------------------------

    rate_limit_enabled: bool = True
    global_rate_limit: str = "100/15minutes"
    auth_rate_limit: str = "15/15minutes"

    # ------------------------------------------------------------------
    # Email delivery -- empty email_api_url means "log the link instead"
    # ------------------------------------------------------------------

    email_api_url: str = ""
    email_api_token: str = ""
    email_from: str = "no-reply@authgate.local"
    email_timeout_seconds: float = 10.0

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secrets(self) -> "Settings":
        """Enforce the secret policy [M6] [M7].

        Dev mode (DEBUG=true): auto-generate any missing secret with a warning.
            Tokens and sessions will not survive a restart.

        Production mode: refuse to start if any secret is missing.
        """
        for name in _SECRET_FIELDS:
            value = getattr(self, name)
            if not value:
                if not self.debug:
                    raise ValueError(
                        f"{name.upper()} is required in production mode. "
                        "Set it in your environment or .env file. "
                        "To run in development mode, set DEBUG=true."
                    )
                value = secrets.token_hex(32)
                setattr(self, name, value)
                logger.warning("Using auto-generated %s. Tokens will not persist across restarts.", name.upper())
            if len(value) < 32:
                raise ValueError(f"{name.upper()} must be at least 32 characters.")

        if self.access_token_secret == self.refresh_token_secret:
            raise ValueError("ACCESS_TOKEN_SECRET and REFRESH_TOKEN_SECRET must be different.")

        if not self.cors_origins:
            self.cors_origins = [self.client_url]
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
