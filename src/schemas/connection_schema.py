# src/schemas/connection_schema.py
from pydantic import BaseModel
from typing import List, Optional
import uuid
from datetime import datetime

from src.models.connection import Platform
from src.providers.config import AuthStyle


class AuthorizeResponse(BaseModel):
    platform: Platform
    auth_url: str


class ConnectionRead(BaseModel):
    # never carries token fields
    id: uuid.UUID
    platform: Platform
    platform_user_id: str
    platform_user_name: Optional[str]
    scopes: List[str]
    expires_at: Optional[datetime]
    has_refresh_token: bool
    created_at: datetime
    updated_at: datetime


class PlatformRead(BaseModel):
    platform: Platform
    scopes: List[str]
    auth_style: AuthStyle
    requires_pkce: bool
    supports_refresh: bool
