# src/providers/linkedin.py
from typing import Optional

import structlog

from src.providers.base import (
    OutboundRequest,
    PlatformProfile,
    TokenResult,
    Transport,
    TransportResponse,
    build_code_exchange,
    read_token_fields,
)
from src.providers.config import ProviderConfig
from src.services.errors import ProfileFetchError, ProviderExchangeError, TransportError

logger = structlog.get_logger(__name__)


class LinkedInAdapter:
    """Client secret in the form body, refresh tokens when the app is approved for them."""

    def __init__(self, config: ProviderConfig):
        self.config = config

    def build_token_request(
        self, code: str, redirect_uri: str, code_verifier: Optional[str] = None
    ) -> OutboundRequest:
        return build_code_exchange(self.config, code, redirect_uri, code_verifier)

    def parse_token_response(self, response: TransportResponse) -> TokenResult:
        body = response.body
        if body.get("error"):
            raise ProviderExchangeError(body.get("error_description") or str(body["error"]))
        return read_token_fields(response)

    async def fetch_profile(self, transport: Transport, access_token: str) -> PlatformProfile:
        request = OutboundRequest(
            url=self.config.profile_url,
            headers={"Authorization": f"Bearer {access_token}"},
        )
        try:
            response = await transport.send(request)
        except TransportError as e:
            raise ProfileFetchError("Failed to fetch LinkedIn profile") from e

        body = response.body
        if not response.ok:
            logger.info("linkedin_profile_rejected", status_code=response.status_code)
            raise ProfileFetchError(body.get("message") or "Failed to fetch LinkedIn profile")

        # /v2/userinfo (OpenID) returns sub/name, the legacy /v2/me returns id/localized names
        user_id = body.get("sub") or body.get("id")
        if not user_id:
            raise ProfileFetchError("LinkedIn profile has no identifier")
        name = body.get("name")
        if not name:
            parts = [body.get("localizedFirstName"), body.get("localizedLastName")]
            name = " ".join(p for p in parts if p) or None
        return PlatformProfile(platform_user_id=str(user_id), platform_user_name=name)
