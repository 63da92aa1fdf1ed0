"""
auth/oauth.py -- OAuth provider configuration, profile normalization, and account linking.

Provider configuration is an explicit map built from Settings at startup
(build_provider_configs) and handed to whatever needs it -- the authlib
registry (build_oauth_registry) and the IdentityResolver. There is no
module-level registry: each app instance builds its own in its lifespan.
Adding a provider means adding an entry to _PROVIDER_TEMPLATES plus its
settings; the resolver never changes.

OAuth state (the authorization-code CSRF guard) is handled by authlib via
Starlette SessionMiddleware: the state is kept in the session between the
redirect and the callback.

Round trip:
  UNAUTHENTICATED -> PROVIDER_REDIRECT -> CALLBACK_RECEIVED
      -> ACCOUNT_RESOLVED -> SESSION_ESTABLISHED -> TOKENS_ISSUED   (success)
      -> PROVIDER_ERROR -> REDIRECT_TO_LOGIN_WITH_ERROR              (failure)
  No automatic retries; the client re-initiates.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from authlib.integrations.starlette_client import OAuth

from auth.errors import DuplicateAccount, NotFound, ValidationError
from auth.models import Account, ExternalProfile
from auth.store import AccountStore

logger = logging.getLogger("authgate.auth.oauth")


class OAuthFlowState(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    PROVIDER_REDIRECT = "provider_redirect"
    CALLBACK_RECEIVED = "callback_received"
    ACCOUNT_RESOLVED = "account_resolved"
    SESSION_ESTABLISHED = "session_established"
    TOKENS_ISSUED = "tokens_issued"
    PROVIDER_ERROR = "provider_error"
    REDIRECT_TO_LOGIN_WITH_ERROR = "redirect_to_login_with_error"


# ---------------------------------------------------------------------------
# Provider configuration
# ---------------------------------------------------------------------------

# Static per-provider facts. Credentials and callback URLs come from Settings
# (<name>_client_id, <name>_client_secret, <name>_callback_url).
_PROVIDER_TEMPLATES: dict[str, dict[str, Any]] = {
    "github": {
        "label": "GitHub",
        "scope": "read:user user:email",
        "endpoints": {
            "authorize_url": "https://github.com/login/oauth/authorize",
            "access_token_url": "https://github.com/login/oauth/access_token",  # noqa: S106 -- URL, not a password
            "api_base_url": "https://api.github.com/",
        },
    },
    "google": {
        "label": "Google",
        "scope": "openid email profile",
        "endpoints": {
            "server_metadata_url": "https://accounts.google.com/.well-known/openid-configuration",
        },
    },
    "discord": {
        "label": "Discord",
        "scope": "identify email",
        "endpoints": {
            "authorize_url": "https://discord.com/api/oauth2/authorize",
            "access_token_url": "https://discord.com/api/oauth2/token",  # noqa: S106 -- URL, not a password
            "api_base_url": "https://discord.com/api/",
        },
    },
}


@dataclass(frozen=True)
class ProviderConfig:
    """Everything needed to run one provider's authorization-code flow."""

    name: str
    client_id: str
    client_secret: str
    callback_url: str  # empty = derive from the app's callback route
    scope: str
    label: str = ""
    endpoints: dict[str, str] = field(default_factory=dict)

    @property
    def id_field(self) -> str:
        """Name of the provider id field in the public user object, e.g. githubId."""
        return f"{self.name}Id"


def build_provider_configs(settings) -> dict[str, ProviderConfig]:
    """Return the map of fully configured providers, keyed by name.

    A provider is included only when both client id and secret are set.
    """
    configs: dict[str, ProviderConfig] = {}
    for name, template in _PROVIDER_TEMPLATES.items():
        client_id = getattr(settings, f"{name}_client_id", "")
        client_secret = getattr(settings, f"{name}_client_secret", "")
        if not (client_id and client_secret):
            continue
        configs[name] = ProviderConfig(
            name=name,
            client_id=client_id,
            client_secret=client_secret,
            callback_url=getattr(settings, f"{name}_callback_url", ""),
            scope=template["scope"],
            label=template["label"],
            endpoints=dict(template["endpoints"]),
        )
        logger.info("%s OAuth provider configured", template["label"])
    if not configs:
        logger.warning("No OAuth providers configured")
    return configs


def build_oauth_registry(configs: Mapping[str, ProviderConfig], timeout: float = 10.0) -> OAuth:
    """Create a fresh authlib registry holding one client per configured provider.

    timeout bounds every provider round trip (token exchange and profile
    fetch) so a slow provider ends the flow instead of hanging the request.
    """
    oauth = OAuth()
    for cfg in configs.values():
        oauth.register(
            name=cfg.name,
            client_id=cfg.client_id,
            client_secret=cfg.client_secret,
            client_kwargs={"scope": cfg.scope, "timeout": timeout},
            **cfg.endpoints,
        )
    return oauth


def list_providers(configs: Mapping[str, ProviderConfig]) -> list[dict]:
    """Return [{"name", "label"}] for every configured provider (login page buttons)."""
    return [{"name": cfg.name, "label": cfg.label} for cfg in configs.values()]


# ---------------------------------------------------------------------------
# Profile normalization
# ---------------------------------------------------------------------------


async def fetch_profile(client, provider: str, token: dict) -> ExternalProfile:
    """Fetch the provider's user profile and normalize it.

    Only emails the provider reports as verified are kept [H1]; an unverified
    address could belong to someone else. With no verified email the
    resolver falls back to a synthetic placeholder address.

    Raises:
        ValueError: unknown provider, malformed payload, or no stable id.
        httpx.HTTPError: provider API failure (callers redirect to login).
    """
    loader = _PROFILE_LOADERS.get(provider)
    if loader is None:
        raise ValueError(f"Unknown OAuth provider: {provider!r}")
    profile = await loader(client, token)
    if not profile.id:
        raise ValueError(f"{provider} OAuth: profile has no id")
    return profile


def _json_object(resp, what: str) -> dict:
    """Return the response body as a dict; anything else is a malformed profile."""
    data = resp.json()
    if not isinstance(data, dict):
        raise ValueError(f"{what}: expected a JSON object")
    return data


async def _load_github_profile(client, token: dict) -> ExternalProfile:
    """GitHub needs two calls: /user for the id and login, /user/emails for addresses."""
    resp = await client.get("user", token=token)
    resp.raise_for_status()
    user = _json_object(resp, "GitHub user")

    emails_resp = await client.get("user/emails", token=token)
    entries = emails_resp.json() if emails_resp.status_code == 200 else []
    if not isinstance(entries, list):
        entries = []
    verified = [e for e in entries if isinstance(e, dict) and e.get("verified") and isinstance(e.get("email"), str)]
    verified.sort(key=lambda e: not e.get("primary", False))

    return ExternalProfile(
        id=str(user.get("id") or ""),
        username=user.get("login") or None,
        display_name=user.get("name") or None,
        emails=[e["email"] for e in verified],
    )


async def _load_google_profile(client, token: dict) -> ExternalProfile:
    userinfo = token.get("userinfo")
    if not userinfo:
        userinfo = await client.userinfo(token=token)
    if not isinstance(userinfo, dict):
        raise ValueError("Google userinfo: expected a JSON object")
    email = userinfo.get("email")
    emails = [email] if isinstance(email, str) and email and userinfo.get("email_verified") else []
    return ExternalProfile(
        id=str(userinfo.get("sub") or ""),
        username=None,
        display_name=userinfo.get("name") or None,
        emails=emails,
    )


async def _load_discord_profile(client, token: dict) -> ExternalProfile:
    resp = await client.get("users/@me", token=token)
    resp.raise_for_status()
    user = _json_object(resp, "Discord user")
    email = user.get("email")
    emails = [email] if isinstance(email, str) and email and user.get("verified") else []
    return ExternalProfile(
        id=str(user.get("id") or ""),
        username=user.get("username") or None,
        display_name=user.get("global_name") or None,
        emails=emails,
    )


_PROFILE_LOADERS = {
    "github": _load_github_profile,
    "google": _load_google_profile,
    "discord": _load_discord_profile,
}


# ---------------------------------------------------------------------------
# Account linking
# ---------------------------------------------------------------------------


def derive_email(provider: str, profile: ExternalProfile) -> str:
    """Primary email, or a username@provider.com placeholder when none is available."""
    if profile.emails:
        return profile.emails[0].strip().lower()
    return f"{profile.username or profile.id}@{provider}.com".lower()


def derive_username(profile: ExternalProfile, email: str) -> str:
    """Profile username, then display name, then the email local-part."""
    return profile.username or profile.display_name or email.split("@", 1)[0]


class IdentityResolver:
    """Maps an external provider profile to a local account.

    The provider map is passed in at construction; the resolver holds no
    provider-specific logic.
    """

    def __init__(self, store: AccountStore, providers: Mapping[str, ProviderConfig]) -> None:
        self._store = store
        self._providers = dict(providers)

    def resolve_or_create(self, provider: str, profile: ExternalProfile) -> Account:
        """Return the account linked to (provider, profile.id), creating it if absent.

        New accounts are created pre-verified with the provider identity
        linked in the same transaction.

        Raises:
            NotFound:         provider is not configured.
            ValidationError:  profile has no id.
            DuplicateAccount: the derived email or username belongs to a
                              different account.
        """
        if provider not in self._providers:
            raise NotFound(f"OAuth provider {provider!r} is not configured.")
        if not profile.id:
            raise ValidationError("OAuth profile has no id.")

        account = self._store.get_by_provider_id(provider, profile.id)
        if account is not None:
            logger.info("Existing %s account resolved: %s", provider, account.id)
            return account

        email = derive_email(provider, profile)
        username = derive_username(profile, email)
        try:
            account_id = self._store.create_account(
                Account(email=email, username=username, is_verified=True),
                provider=provider,
                external_id=profile.id,
            )
        except DuplicateAccount:
            # A concurrent callback for the same profile may have won the insert.
            account = self._store.get_by_provider_id(provider, profile.id)
            if account is not None:
                return account
            logger.warning("%s login collided with an existing account (email or username taken)", provider)
            raise DuplicateAccount(
                "An account with this email or username already exists. "
                "Sign in with your password or the provider you used originally."
            ) from None

        logger.info("New %s account created: %s", provider, account_id)
        return self._store.get_by_id(account_id)
