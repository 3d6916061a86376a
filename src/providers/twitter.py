# src/providers/twitter.py
from typing import Optional

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


class TwitterAdapter:
    """
    Twitter / X OAuth 2.0 for confidential clients.
    The token endpoint wants HTTP Basic client auth and the PKCE verifier minted at
    authorize time; `offline.access` must be granted to receive a refresh token.
    """

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
            raise ProfileFetchError("Failed to fetch Twitter profile") from e

        body = response.body
        data = body.get("data") if isinstance(body.get("data"), dict) else None
        if not response.ok or data is None:
            errors = body.get("errors") or []
            detail = errors[0].get("detail") if errors and isinstance(errors[0], dict) else None
            raise ProfileFetchError(detail or body.get("detail") or "Failed to fetch Twitter profile")

        if not data.get("id"):
            raise ProfileFetchError("Twitter profile has no identifier")
        return PlatformProfile(
            platform_user_id=str(data["id"]),
            platform_user_name=data.get("name") or data.get("username"),
        )
