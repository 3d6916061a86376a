# src/providers/base.py
"""
Contract shared by every platform adapter.

Adapters are plain classes that satisfy `ProviderAdapter` structurally; the callback
flow only ever talks to this interface. The helpers below cover the parts of the
OAuth 2.0 code exchange that are identical across platforms.
"""
import base64
from typing import Any, Dict, Iterable, List, Optional, Protocol

from pydantic import BaseModel, Field

from src.providers.config import AuthStyle, ProviderConfig
from src.services.errors import ProviderExchangeError


class OutboundRequest(BaseModel):
    method: str = "GET"
    url: str
    headers: Dict[str, str] = Field(default_factory=dict)
    params: Dict[str, str] = Field(default_factory=dict)
    data: Optional[Dict[str, str]] = None


class TransportResponse(BaseModel):
    status_code: int
    body: Dict[str, Any] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


class TokenResult(BaseModel):
    access_token: str
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = None
    scopes: Optional[List[str]] = None


class PlatformProfile(BaseModel):
    platform_user_id: str
    platform_user_name: Optional[str] = None


class Transport(Protocol):
    async def send(self, request: OutboundRequest) -> TransportResponse:
        """Perform the request; raise TransportError on network failure or timeout."""
        ...


class ProviderAdapter(Protocol):
    config: ProviderConfig

    def build_token_request(
        self, code: str, redirect_uri: str, code_verifier: Optional[str] = None
    ) -> OutboundRequest:
        ...

    def parse_token_response(self, response: TransportResponse) -> TokenResult:
        ...

    async def fetch_profile(self, transport: Transport, access_token: str) -> PlatformProfile:
        ...


def build_code_exchange(
    config: ProviderConfig, code: str, redirect_uri: str, code_verifier: Optional[str] = None
) -> OutboundRequest:
    data = {
        "grant_type": "authorization_code",
        "code": code,
        "redirect_uri": redirect_uri,
        "client_id": config.client_id,
    }
    headers = {"Content-Type": "application/x-www-form-urlencoded", "Accept": "application/json"}

    if config.auth_style == AuthStyle.HTTP_BASIC_AUTH:
        raw = f"{config.client_id}:{config.client_secret}".encode()
        headers["Authorization"] = f"Basic {base64.b64encode(raw).decode()}"
    else:
        data["client_secret"] = config.client_secret

    if config.requires_pkce:
        if not code_verifier:
            raise ProviderExchangeError("Missing PKCE code verifier")
        data["code_verifier"] = code_verifier

    return OutboundRequest(method="POST", url=config.token_url, headers=headers, data=data)


def read_token_fields(response: TransportResponse) -> TokenResult:
    body = response.body
    access_token = body.get("access_token")
    if not access_token:
        if not response.ok:
            raise ProviderExchangeError(f"Token endpoint returned HTTP {response.status_code}")
        raise ProviderExchangeError("No access token returned from provider")

    expires_in = body.get("expires_in")
    if expires_in in (None, ""):
        expires_in = None
    else:
        try:
            expires_in = int(expires_in)
        except (TypeError, ValueError):
            raise ProviderExchangeError("Invalid expires_in returned from provider")

    scope = body.get("scope")
    scopes = None
    if isinstance(scope, str) and scope.strip():
        scopes = split_scopes(scope)
    elif isinstance(scope, list):
        scopes = [str(s) for s in scope]

    return TokenResult(
        access_token=access_token,
        refresh_token=body.get("refresh_token") or None,
        expires_in=expires_in,
        scopes=scopes,
    )


def split_scopes(raw: str) -> List[str]:
    # providers mix comma and space separators
    return raw.replace(",", " ").split()


def first_present(body: Dict[str, Any], keys: Iterable[str]) -> Optional[str]:
    for key in keys:
        value = body.get(key)
        if value:
            return str(value)
    return None
