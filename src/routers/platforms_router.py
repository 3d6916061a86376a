# src/routers/platforms_router.py
from typing import List, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Response, status
from fastapi.responses import JSONResponse, RedirectResponse

from src.dependencies.auth import CurrentUser, get_current_user
from src.dependencies.linking import (
    get_authorization_builder,
    get_callback_handler,
    get_connections_repo,
    get_registry,
)
from src.infrastructure.connections_repo import ConnectionsRepository
from src.models.connection import Connection, Platform, as_utc
from src.providers.registry import ProviderRegistry
from src.schemas.connection_schema import AuthorizeResponse, ConnectionRead, PlatformRead
from src.services.authorize_service import AuthorizationRequestBuilder
from src.services.callback_service import CallbackHandler
from src.services.errors import AuthenticationError, UnsupportedPlatformError

logger = structlog.get_logger(__name__)
router = APIRouter(prefix="/platforms", tags=["platforms"])


def _to_read(cp: Connection) -> ConnectionRead:
    return ConnectionRead(
        id=cp.id,
        platform=Platform(cp.platform),
        platform_user_id=cp.platform_user_id,
        platform_user_name=cp.platform_user_name,
        scopes=sorted(cp.scopes or []),
        expires_at=as_utc(cp.expires_at),
        has_refresh_token=cp.refresh_token_enc is not None,
        created_at=as_utc(cp.created_at),
        updated_at=as_utc(cp.updated_at),
    )


@router.get("", response_model=List[PlatformRead])
async def list_platforms(registry: ProviderRegistry = Depends(get_registry)):
    result = []
    for platform in registry.platforms():
        caps = registry.capabilities(platform)
        result.append(
            PlatformRead(
                platform=platform,
                scopes=list(registry.get(platform).config.scopes),
                auth_style=caps.auth_style,
                requires_pkce=caps.requires_pkce,
                supports_refresh=caps.supports_refresh,
            )
        )
    return result


@router.get("/connections", response_model=List[ConnectionRead])
async def list_connections(
    current_user: CurrentUser = Depends(get_current_user),
    repo: ConnectionsRepository = Depends(get_connections_repo),
):
    connections = await repo.list_by_user(current_user.id)
    return [_to_read(cp) for cp in connections]


@router.delete("/connections/{platform}", status_code=status.HTTP_204_NO_CONTENT)
async def disconnect_platform(
    platform: Platform,
    current_user: CurrentUser = Depends(get_current_user),
    repo: ConnectionsRepository = Depends(get_connections_repo),
):
    cp = await repo.get_by_user_and_platform(current_user.id, platform)
    if not cp:
        raise HTTPException(status_code=404, detail=f"{platform.value} is not connected")
    await repo.delete(cp)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{platform}/connect/start", response_model=AuthorizeResponse)
async def connect_start(
    platform: Platform,
    current_user: CurrentUser = Depends(get_current_user),
    builder: AuthorizationRequestBuilder = Depends(get_authorization_builder),
):
    try:
        url = await builder.build(current_user.id, platform)
    except UnsupportedPlatformError as e:
        raise HTTPException(status_code=404, detail=e.public_message)
    except AuthenticationError as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=e.public_message)
    return AuthorizeResponse(platform=platform, auth_url=url)


@router.get("/{platform}/callback")
async def oauth_callback(
    platform: Platform,
    code: Optional[str] = None,
    state: Optional[str] = None,
    handler: CallbackHandler = Depends(get_callback_handler),
):
    outcome = await handler.handle(platform, code, state)
    if outcome.location is None:
        return JSONResponse(outcome.body or {}, status_code=outcome.status_code)
    return RedirectResponse(outcome.location, status_code=outcome.status_code)
