# src/services/oauth_state.py
import os
import secrets
from typing import Optional

import structlog
from pydantic import BaseModel, ValidationError
from redis.asyncio import Redis

from src.models.connection import Platform

logger = structlog.get_logger(__name__)

OAUTH_STATE_TTL = int(os.getenv("OAUTH_STATE_TTL", "300"))
STATE_KEY_PREFIX = "oauth_state:"


class AuthorizationState(BaseModel):
    user_id: str
    platform: Platform
    code_verifier: Optional[str] = None


class OAuthStateStore:
    """
    Single-use state nonces for the authorize -> callback round trip.
    The nonce is random and carries nothing; user id and PKCE verifier stay in Redis.
    """

    def __init__(self, redis: Redis, ttl: int = OAUTH_STATE_TTL):
        self.redis = redis
        self.ttl = ttl

    @staticmethod
    def _key(state: str) -> str:
        return f"{STATE_KEY_PREFIX}{state}"

    async def issue(self, user_id: str, platform: Platform, code_verifier: Optional[str] = None) -> str:
        state = secrets.token_urlsafe(32)
        payload = AuthorizationState(user_id=str(user_id), platform=platform, code_verifier=code_verifier)
        await self.redis.set(self._key(state), payload.model_dump_json(), ex=self.ttl)
        logger.debug("oauth_state_issued", user_id=str(user_id), platform=Platform(platform).value, ttl=self.ttl)
        return state

    async def consume(self, state: Optional[str]) -> Optional[AuthorizationState]:
        """Return the bound state and delete it atomically; None if unknown, expired or reused."""
        if not state:
            return None
        raw = await self.redis.getdel(self._key(state))
        if not raw:
            return None
        try:
            return AuthorizationState.model_validate_json(raw)
        except ValidationError:
            logger.warning("oauth_state_corrupt")
            return None
