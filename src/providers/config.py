# src/providers/config.py
from enum import Enum
from typing import Tuple

from pydantic import BaseModel, ConfigDict

from src.models.connection import Platform


class AuthStyle(str, Enum):
    CLIENT_SECRET_IN_BODY = "client_secret_in_body"
    HTTP_BASIC_AUTH = "http_basic_auth"


class ProviderConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    platform: Platform
    authorize_url: str
    token_url: str
    profile_url: str
    client_id: str
    client_secret: str
    redirect_uri: str
    scopes: Tuple[str, ...]
    scope_separator: str = " "
    auth_style: AuthStyle = AuthStyle.CLIENT_SECRET_IN_BODY
    requires_pkce: bool = False
    supports_refresh: bool = True

    @property
    def scope_param(self) -> str:
        return self.scope_separator.join(self.scopes)
