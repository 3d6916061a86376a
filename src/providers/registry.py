# src/providers/registry.py
import os
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Mapping, Optional

import structlog

from src.models.connection import Platform
from src.providers.base import PlatformProfile, ProviderAdapter, Transport
from src.providers.config import AuthStyle, ProviderConfig
from src.providers.instagram import InstagramAdapter
from src.providers.linkedin import LinkedInAdapter
from src.providers.twitter import TwitterAdapter
from src.services.errors import ConfigurationError, UnsupportedPlatformError

logger = structlog.get_logger(__name__)

OAUTH_REDIRECT_BASE_URL = os.getenv("OAUTH_REDIRECT_BASE_URL", "http://localhost:8000")

# Defaults per platform; every URL and the scope list can be overridden from env.
PLATFORM_DEFAULTS: Dict[Platform, dict] = {
    Platform.LINKEDIN: {
        "authorize_url": "https://www.linkedin.com/oauth/v2/authorization",
        "token_url": "https://www.linkedin.com/oauth/v2/accessToken",
        "profile_url": "https://api.linkedin.com/v2/userinfo",
        "scopes": "openid profile w_member_social",
        "scope_separator": " ",
        "auth_style": AuthStyle.CLIENT_SECRET_IN_BODY,
        "requires_pkce": False,
        "supports_refresh": True,
    },
    Platform.INSTAGRAM: {
        "authorize_url": "https://api.instagram.com/oauth/authorize",
        "token_url": "https://api.instagram.com/oauth/access_token",
        "profile_url": "https://graph.instagram.com/me",
        "scopes": "user_profile,user_media",
        "scope_separator": ",",
        "auth_style": AuthStyle.CLIENT_SECRET_IN_BODY,
        "requires_pkce": False,
        "supports_refresh": False,
    },
    Platform.TWITTER: {
        "authorize_url": "https://twitter.com/i/oauth2/authorize",
        "token_url": "https://api.twitter.com/2/oauth2/token",
        "profile_url": "https://api.twitter.com/2/users/me",
        "scopes": "tweet.read tweet.write users.read offline.access",
        "scope_separator": " ",
        "auth_style": AuthStyle.HTTP_BASIC_AUTH,
        "requires_pkce": True,
        "supports_refresh": True,
    },
}

ADAPTERS: Dict[Platform, Callable[[ProviderConfig], ProviderAdapter]] = {
    Platform.LINKEDIN: LinkedInAdapter,
    Platform.INSTAGRAM: InstagramAdapter,
    Platform.TWITTER: TwitterAdapter,
}


@dataclass(frozen=True)
class ProviderCapabilities:
    platform: Platform
    authorize_url: str
    token_url: str
    auth_style: AuthStyle
    requires_pkce: bool
    supports_refresh: bool
    profile_fetch: Callable[[Transport, str], Awaitable[PlatformProfile]]


class ProviderRegistry:
    """
    Immutable lookup of configured platforms to their adapters.
    Built once at startup and shared read-only by every request.
    """

    def __init__(self, adapters: Mapping[Platform, ProviderAdapter]):
        self._adapters = dict(adapters)

    def get(self, platform: Platform) -> ProviderAdapter:
        name = getattr(platform, "value", platform)
        try:
            return self._adapters[Platform(name)]
        except (KeyError, ValueError):
            raise UnsupportedPlatformError(f"{name} is not enabled")

    def capabilities(self, platform: Platform) -> ProviderCapabilities:
        adapter = self.get(platform)
        config = adapter.config
        return ProviderCapabilities(
            platform=config.platform,
            authorize_url=config.authorize_url,
            token_url=config.token_url,
            auth_style=config.auth_style,
            requires_pkce=config.requires_pkce,
            supports_refresh=config.supports_refresh,
            profile_fetch=adapter.fetch_profile,
        )

    def platforms(self) -> List[Platform]:
        return list(self._adapters)


def load_provider_config(platform: Platform, environ: Mapping[str, str]) -> ProviderConfig:
    prefix = platform.value.upper()
    defaults = PLATFORM_DEFAULTS[platform]

    client_id = environ.get(f"{prefix}_CLIENT_ID")
    client_secret = environ.get(f"{prefix}_CLIENT_SECRET")
    missing = [
        name
        for name in (f"{prefix}_CLIENT_ID", f"{prefix}_CLIENT_SECRET")
        if not environ.get(name)
    ]
    if missing:
        raise ConfigurationError(f"{platform.value} OAuth not configured: missing {', '.join(missing)}")

    base_url = environ.get("OAUTH_REDIRECT_BASE_URL", OAUTH_REDIRECT_BASE_URL).rstrip("/")
    separator = defaults["scope_separator"]
    raw_scopes = environ.get(f"{prefix}_SCOPES") or defaults["scopes"]
    scopes = tuple(s for s in raw_scopes.replace(",", " ").split() if s)

    return ProviderConfig(
        platform=platform,
        authorize_url=environ.get(f"{prefix}_AUTH_URL") or defaults["authorize_url"],
        token_url=environ.get(f"{prefix}_TOKEN_URL") or defaults["token_url"],
        profile_url=environ.get(f"{prefix}_USERINFO_URL") or defaults["profile_url"],
        client_id=client_id,
        client_secret=client_secret,
        redirect_uri=environ.get(f"{prefix}_REDIRECT_URI") or f"{base_url}/platforms/{platform.value}/callback",
        scopes=scopes,
        scope_separator=separator,
        auth_style=defaults["auth_style"],
        requires_pkce=defaults["requires_pkce"],
        supports_refresh=defaults["supports_refresh"],
    )


def load_registry(environ: Optional[Mapping[str, str]] = None) -> ProviderRegistry:
    """
    Build the registry for every platform listed in OAUTH_PLATFORMS.
    Raises ConfigurationError when an enabled platform lacks its client credentials.
    """
    environ = os.environ if environ is None else environ
    enabled = environ.get("OAUTH_PLATFORMS", ",".join(p.value for p in Platform))

    adapters: Dict[Platform, ProviderAdapter] = {}
    for name in (n.strip().lower() for n in enabled.split(",")):
        if not name:
            continue
        try:
            platform = Platform(name)
        except ValueError:
            raise ConfigurationError(f"unknown platform in OAUTH_PLATFORMS: {name}")
        adapters[platform] = ADAPTERS[platform](load_provider_config(platform, environ))

    logger.info("provider_registry_loaded", platforms=[p.value for p in adapters])
    return ProviderRegistry(adapters)
