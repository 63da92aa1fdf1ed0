"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in both api/main.py (to mount as middleware) and the route
modules (to apply the stricter auth limit with @limiter.limit()).

A single shared instance means every route counts against the same in-memory
store. Fixed-window counting, keyed by client IP. Settings:
  GLOBAL_RATE_LIMIT  default for every route (100 per 15 minutes)
  AUTH_RATE_LIMIT    credential endpoints (login, signup, refresh, reset)
  RATE_LIMIT_ENABLED set false to disable (tests, trusted deployments)
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

_settings = get_settings()

AUTH_RATE_LIMIT = _settings.auth_rate_limit

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[_settings.global_rate_limit],
    storage_uri="memory://",
    strategy="fixed-window",
    enabled=_settings.rate_limit_enabled,
)
