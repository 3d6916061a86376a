# src/services/callback_service.py
import os
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Optional
from urllib.parse import quote, urlencode

import structlog
from pydantic import BaseModel

from src.infrastructure.connections_repo import ConnectionStore
from src.models.connection import Connection, Platform, utcnow
from src.providers.base import PlatformProfile, ProviderAdapter, TokenResult, Transport
from src.providers.registry import ProviderRegistry
from src.services.errors import (
    AuthenticationError,
    LinkingError,
    MissingCodeError,
    PersistenceError,
    ProfileFetchError,
    ProviderExchangeError,
    TransportError,
)
from src.services.oauth_state import AuthorizationState, OAuthStateStore
from src.services.token_crypto import encrypt_token

logger = structlog.get_logger(__name__)

SETTINGS_REDIRECT_URL = os.getenv("SETTINGS_REDIRECT_URL", "/dashboard/settings")


class CallbackStage(str, Enum):
    RECEIVED = "received"
    VALIDATED = "validated"
    EXCHANGED = "exchanged"
    PROFILE_FETCHED = "profile_fetched"
    PERSISTED = "persisted"
    REDIRECTED = "redirected"


# public error for an unexpected failure in the step that follows each stage
STAGE_ERRORS = {
    CallbackStage.RECEIVED: AuthenticationError,
    CallbackStage.VALIDATED: ProviderExchangeError,
    CallbackStage.EXCHANGED: ProfileFetchError,
    CallbackStage.PROFILE_FETCHED: PersistenceError,
}


class CallbackOutcome(BaseModel):
    status_code: int
    location: Optional[str] = None
    body: Optional[dict] = None
    success: bool = False
    stage: CallbackStage


class CallbackHandler:
    """
    Drives one provider callback:
    received -> validated -> exchanged -> profile_fetched -> persisted -> redirected.

    Every failure after `received` ends in an error redirect to the settings page;
    only a missing `code` is answered with a bare 400. Nothing is retried.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        state_store: OAuthStateStore,
        store: ConnectionStore,
        transport: Transport,
        settings_url: str = SETTINGS_REDIRECT_URL,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.registry = registry
        self.state_store = state_store
        self.store = store
        self.transport = transport
        self.settings_url = settings_url
        self.clock = clock

    async def handle(self, platform: Platform, code: Optional[str], state: Optional[str]) -> CallbackOutcome:
        platform = Platform(platform)
        log = logger.bind(platform=platform.value)

        if not code:
            log.info("oauth_callback_missing_code")
            error = MissingCodeError()
            return CallbackOutcome(
                status_code=400, body={"error": error.public_message}, stage=CallbackStage.RECEIVED
            )

        stage = CallbackStage.RECEIVED
        try:
            adapter = self.registry.get(platform)
            auth_state = await self._validate(platform, state)
            stage = CallbackStage.VALIDATED
            log = log.bind(user_id=auth_state.user_id)

            token = await self._exchange(adapter, code, auth_state)
            stage = CallbackStage.EXCHANGED

            profile = await adapter.fetch_profile(self.transport, token.access_token)
            stage = CallbackStage.PROFILE_FETCHED

            connection = await self.store.upsert(self._build_connection(adapter, auth_state, token, profile))
            stage = CallbackStage.PERSISTED
        except LinkingError as e:
            log.warning("oauth_callback_failed", stage=stage.value, error_type=type(e).__name__, reason=e.public_message)
            return self._redirect(platform, success=False, message=e.public_message)
        except Exception as e:
            log.exception("oauth_callback_crashed", stage=stage.value, error_type=type(e).__name__)
            error = STAGE_ERRORS.get(stage, LinkingError)()
            return self._redirect(platform, success=False, message=error.public_message)

        log.info("oauth_callback_succeeded", connection_id=str(connection.id), stage=stage.value)
        return self._redirect(platform, success=True)

    async def _validate(self, platform: Platform, state: Optional[str]) -> AuthorizationState:
        auth_state = await self.state_store.consume(state)
        if auth_state is None:
            raise AuthenticationError()
        if auth_state.platform != platform:
            logger.warning("oauth_state_platform_mismatch", expected=auth_state.platform.value, got=platform.value)
            raise AuthenticationError()
        return auth_state

    async def _exchange(self, adapter: ProviderAdapter, code: str, auth_state: AuthorizationState) -> TokenResult:
        config = adapter.config
        request = adapter.build_token_request(code, config.redirect_uri, auth_state.code_verifier)
        try:
            response = await self.transport.send(request)
        except TransportError as e:
            raise ProviderExchangeError(f"Could not reach {config.platform.value} token endpoint") from e
        return adapter.parse_token_response(response)

    def _build_connection(
        self,
        adapter: ProviderAdapter,
        auth_state: AuthorizationState,
        token: TokenResult,
        profile: PlatformProfile,
    ) -> Connection:
        config = adapter.config
        now = self.clock()
        expires_at = now + timedelta(seconds=token.expires_in) if token.expires_in is not None else None
        refresh_token = token.refresh_token if config.supports_refresh else None
        scopes = sorted(set(token.scopes or config.scopes))

        return Connection(
            user_id=auth_state.user_id,
            platform=config.platform.value,
            platform_user_id=profile.platform_user_id,
            platform_user_name=profile.platform_user_name,
            access_token_enc=encrypt_token(token.access_token),
            refresh_token_enc=encrypt_token(refresh_token),
            expires_at=expires_at,
            scopes=scopes,
            created_at=now,
            updated_at=now,
        )

    def _redirect(self, platform: Platform, success: bool, message: Optional[str] = None) -> CallbackOutcome:
        params = {"connection": platform.value, "status": "success" if success else "error"}
        if not success:
            params["message"] = message or LinkingError.default_message
        location = f"{self.settings_url}?{urlencode(params, quote_via=quote)}"
        return CallbackOutcome(
            status_code=302, location=location, success=success, stage=CallbackStage.REDIRECTED
        )
