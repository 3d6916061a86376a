# src/providers/instagram.py
from typing import Optional

from src.providers.base import (
    OutboundRequest,
    PlatformProfile,
    TokenResult,
    Transport,
    TransportResponse,
    build_code_exchange,
    first_present,
    read_token_fields,
)
from src.providers.config import ProviderConfig
from src.services.errors import ProfileFetchError, ProviderExchangeError, TransportError


class InstagramAdapter:
    """
    Instagram Basic Display.
    Errors come back as `error_message` on the token endpoint and as a nested
    `error.message` object on the Graph API. No refresh tokens are issued.
    """

    def __init__(self, config: ProviderConfig):
        self.config = config

    def build_token_request(
        self, code: str, redirect_uri: str, code_verifier: Optional[str] = None
    ) -> OutboundRequest:
        return build_code_exchange(self.config, code, redirect_uri, code_verifier)

    def parse_token_response(self, response: TransportResponse) -> TokenResult:
        message = _error_message(response.body)
        if message:
            raise ProviderExchangeError(message)
        return read_token_fields(response)

    async def fetch_profile(self, transport: Transport, access_token: str) -> PlatformProfile:
        request = OutboundRequest(
            url=self.config.profile_url,
            params={"fields": "id,username", "access_token": access_token},
        )
        try:
            response = await transport.send(request)
        except TransportError as e:
            raise ProfileFetchError("Failed to fetch Instagram profile") from e

        message = _error_message(response.body)
        if message or not response.ok:
            raise ProfileFetchError(message or "Failed to fetch Instagram profile")

        user_id = response.body.get("id")
        if not user_id:
            raise ProfileFetchError("Instagram profile has no identifier")
        return PlatformProfile(
            platform_user_id=str(user_id), platform_user_name=response.body.get("username")
        )


def _error_message(body: dict) -> Optional[str]:
    error = body.get("error")
    if isinstance(error, dict):
        return error.get("message") or error.get("type") or "Instagram request failed"
    return first_present(body, ("error_message", "error_description", "error"))
