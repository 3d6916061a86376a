# src/services/authorize_service.py
from typing import Optional

import httpx
import structlog

from src.models.connection import Platform
from src.providers.registry import ProviderRegistry
from src.services.errors import AuthenticationError
from src.services.oauth_state import OAuthStateStore
from src.services.token_crypto import generate_pkce_pair

logger = structlog.get_logger(__name__)


class AuthorizationRequestBuilder:
    def __init__(self, registry: ProviderRegistry, state_store: OAuthStateStore):
        self.registry = registry
        self.state_store = state_store

    async def build(self, user_id: Optional[str], platform: Platform) -> str:
        """
        Build the provider authorize URL for an authenticated user.
        The state nonce binds the round trip to `user_id`; for PKCE platforms the
        verifier is stored with it and only the S256 challenge leaves the server.
        """
        if not user_id:
            raise AuthenticationError("Not authenticated")

        config = self.registry.get(platform).config
        verifier = challenge = None
        if config.requires_pkce:
            verifier, challenge = generate_pkce_pair()

        state = await self.state_store.issue(user_id, config.platform, code_verifier=verifier)
        params = {
            "client_id": config.client_id,
            "redirect_uri": config.redirect_uri,
            "scope": config.scope_param,
            "response_type": "code",
            "state": state,
        }
        if challenge:
            params["code_challenge"] = challenge
            params["code_challenge_method"] = "S256"

        url = httpx.URL(config.authorize_url).copy_merge_params(params)
        logger.info("oauth_authorize_started", user_id=user_id, platform=config.platform.value, pkce=config.requires_pkce)
        return str(url)
