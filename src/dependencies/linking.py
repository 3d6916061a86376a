from fastapi import Depends, HTTPException, Request, status
from redis.asyncio import Redis
from sqlmodel.ext.asyncio.session import AsyncSession

from src.dependencies.db import get_session_dep
from src.infrastructure.connections_repo import ConnectionsRepository
from src.infrastructure.http_transport import HttpxTransport
from src.infrastructure.redis_cache import get_redis
from src.providers.base import Transport
from src.providers.registry import ProviderRegistry
from src.services.authorize_service import AuthorizationRequestBuilder
from src.services.callback_service import CallbackHandler
from src.services.oauth_state import OAuthStateStore


def get_registry(request: Request) -> ProviderRegistry:
    registry = getattr(request.app.state, "registry", None)
    if registry is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="OAuth providers not loaded")
    return registry


def get_transport() -> Transport:
    return HttpxTransport()


def get_state_store(redis: Redis = Depends(get_redis)) -> OAuthStateStore:
    return OAuthStateStore(redis)


def get_connections_repo(session: AsyncSession = Depends(get_session_dep)) -> ConnectionsRepository:
    return ConnectionsRepository(session)


def get_authorization_builder(
    registry: ProviderRegistry = Depends(get_registry),
    state_store: OAuthStateStore = Depends(get_state_store),
) -> AuthorizationRequestBuilder:
    return AuthorizationRequestBuilder(registry, state_store)


def get_callback_handler(
    registry: ProviderRegistry = Depends(get_registry),
    state_store: OAuthStateStore = Depends(get_state_store),
    repo: ConnectionsRepository = Depends(get_connections_repo),
    transport: Transport = Depends(get_transport),
) -> CallbackHandler:
    return CallbackHandler(registry, state_store, repo, transport)
