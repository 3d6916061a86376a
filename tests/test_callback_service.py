# tests/test_callback_service.py

from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlparse

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlmodel import select

from src.infrastructure.connections_repo import ConnectionsRepository
from src.models.connection import Connection, Platform, as_utc
from src.services.callback_service import CallbackHandler, CallbackStage
from src.services.errors import PersistenceError
from src.services.oauth_state import OAuthStateStore
from src.services.token_crypto import decrypt_token

NOW = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class FailingStore:
    def __init__(self):
        self.calls = 0

    async def upsert(self, connection):
        self.calls += 1
        raise PersistenceError()


class CrashingStore:
    async def upsert(self, connection):
        raise RuntimeError("driver blew up")


class UnreachableRedis:
    async def getdel(self, key):
        raise RedisConnectionError("Connection refused")


def _query(location: str) -> dict:
    return {k: v[0] for k, v in parse_qs(urlparse(location).query).items()}


async def _rows(session):
    res = await session.execute(select(Connection))
    return res.scalars().all()


@pytest.fixture
def handler(registry, state_store, db_session, transport):
    return CallbackHandler(
        registry,
        state_store,
        ConnectionsRepository(db_session),
        transport,
        settings_url="/dashboard/settings",
        clock=lambda: NOW,
    )


def _stub_linkedin(registry, transport, token_body=None, profile=None):
    config = registry.get(Platform.LINKEDIN).config
    transport.add(
        config.token_url,
        token_body or {"access_token": "tok1", "expires_in": 3600, "refresh_token": "ref1", "scope": "openid profile w_member_social"},
    )
    transport.add(config.profile_url, profile or {"sub": "li-42", "name": "Ada Lovelace"})
    return config


@pytest.mark.asyncio
class TestCallbackHandler:
    """Tests for the provider callback state machine"""

    async def test_missing_code_is_bad_request(self, handler, state_store, db_session, transport):
        state = await state_store.issue("user-1", Platform.LINKEDIN)

        outcome = await handler.handle(Platform.LINKEDIN, None, state)

        assert outcome.status_code == 400
        assert outcome.body == {"error": "No code provided"}
        assert outcome.location is None
        assert outcome.stage == CallbackStage.RECEIVED
        assert transport.requests == []
        assert await _rows(db_session) == []

    async def test_linkedin_success(self, handler, registry, state_store, transport, db_session):
        config = _stub_linkedin(registry, transport)
        state = await state_store.issue("user-1", Platform.LINKEDIN)

        outcome = await handler.handle(Platform.LINKEDIN, "abc", state)

        assert outcome.status_code == 302
        assert outcome.success is True
        assert outcome.location == "/dashboard/settings?connection=linkedin&status=success"

        token_request = transport.requests_to(config.token_url)[0]
        assert token_request.data["code"] == "abc"
        assert token_request.data["redirect_uri"] == config.redirect_uri

        rows = await _rows(db_session)
        assert len(rows) == 1
        cp = rows[0]
        assert cp.user_id == "user-1"
        assert cp.platform == "linkedin"
        assert cp.platform_user_id == "li-42"
        assert cp.platform_user_name == "Ada Lovelace"
        assert decrypt_token(cp.access_token_enc) == "tok1"
        assert decrypt_token(cp.refresh_token_enc) == "ref1"
        assert as_utc(cp.expires_at) == NOW + timedelta(seconds=3600)
        assert set(cp.scopes) == {"openid", "profile", "w_member_social"}

    async def test_tokens_not_stored_in_plaintext(self, handler, registry, state_store, transport, db_session):
        _stub_linkedin(registry, transport)
        state = await state_store.issue("user-1", Platform.LINKEDIN)

        await handler.handle(Platform.LINKEDIN, "abc", state)

        cp = (await _rows(db_session))[0]
        assert cp.access_token_enc != "tok1"
        assert cp.refresh_token_enc != "ref1"

    async def test_relink_keeps_single_row_with_latest_tokens(self, handler, registry, state_store, transport, db_session):
        config = registry.get(Platform.LINKEDIN).config
        transport.add(config.token_url, {"access_token": "tok1", "expires_in": 3600, "refresh_token": "ref1"})
        transport.add(config.token_url, {"access_token": "tok2", "expires_in": 7200, "refresh_token": "ref2"})
        transport.add(config.profile_url, {"sub": "li-42", "name": "Ada Lovelace"})

        first = await handler.handle(Platform.LINKEDIN, "code-1", await state_store.issue("user-1", Platform.LINKEDIN))
        second = await handler.handle(Platform.LINKEDIN, "code-2", await state_store.issue("user-1", Platform.LINKEDIN))

        assert first.success and second.success
        rows = await _rows(db_session)
        assert len(rows) == 1
        assert decrypt_token(rows[0].access_token_enc) == "tok2"
        assert decrypt_token(rows[0].refresh_token_enc) == "ref2"
        assert as_utc(rows[0].expires_at) == NOW + timedelta(seconds=7200)

    async def test_invalid_state_redirects_with_error(self, handler, registry, transport, db_session):
        _stub_linkedin(registry, transport)

        outcome = await handler.handle(Platform.LINKEDIN, "abc", "forged-state")

        assert outcome.status_code == 302
        query = _query(outcome.location)
        assert query["status"] == "error"
        assert query["connection"] == "linkedin"
        assert query["message"] == "Authentication failed. Please sign in and try again."
        assert transport.requests == []
        assert await _rows(db_session) == []

    async def test_missing_state_redirects_with_error(self, handler, db_session):
        outcome = await handler.handle(Platform.LINKEDIN, "abc", None)

        assert _query(outcome.location)["status"] == "error"
        assert await _rows(db_session) == []

    async def test_reused_state_is_rejected(self, handler, registry, state_store, transport, db_session):
        _stub_linkedin(registry, transport)
        state = await state_store.issue("user-1", Platform.LINKEDIN)

        assert (await handler.handle(Platform.LINKEDIN, "abc", state)).success is True
        replay = await handler.handle(Platform.LINKEDIN, "abc", state)

        assert replay.success is False
        assert _query(replay.location)["status"] == "error"

    async def test_state_for_other_platform_is_rejected(self, handler, registry, state_store, transport, db_session):
        _stub_linkedin(registry, transport)
        state = await state_store.issue("user-1", Platform.TWITTER)

        outcome = await handler.handle(Platform.LINKEDIN, "abc", state)

        assert outcome.success is False
        assert transport.requests == []
        assert await _rows(db_session) == []

    async def test_provider_error_message_in_redirect(self, handler, registry, state_store, transport, db_session):
        config = registry.get(Platform.LINKEDIN).config
        transport.add(
            config.token_url,
            {"error": "invalid_grant", "error_description": "The authorization code is invalid/expired & used"},
            status_code=400,
        )
        state = await state_store.issue("user-1", Platform.LINKEDIN)

        outcome = await handler.handle(Platform.LINKEDIN, "abc", state)

        assert outcome.status_code == 302
        assert "message=The%20authorization%20code%20is%20invalid%2Fexpired%20%26%20used" in outcome.location
        query = _query(outcome.location)
        assert query["status"] == "error"
        assert query["message"] == "The authorization code is invalid/expired & used"
        assert transport.requests_to(config.profile_url) == []
        assert await _rows(db_session) == []

    async def test_token_endpoint_unreachable(self, handler, registry, state_store, transport, db_session):
        config = registry.get(Platform.LINKEDIN).config
        transport.fail(config.token_url, "timed out")
        state = await state_store.issue("user-1", Platform.LINKEDIN)

        outcome = await handler.handle(Platform.LINKEDIN, "abc", state)

        assert _query(outcome.location)["message"] == "Could not reach linkedin token endpoint"
        assert await _rows(db_session) == []

    async def test_profile_failure_redirects_without_leaking_token(self, handler, registry, state_store, transport, db_session):
        config = registry.get(Platform.LINKEDIN).config
        transport.add(config.token_url, {"access_token": "secret-tok", "expires_in": 60})
        transport.add(config.profile_url, {"message": "Not enough permissions"}, status_code=403)
        state = await state_store.issue("user-1", Platform.LINKEDIN)

        outcome = await handler.handle(Platform.LINKEDIN, "abc", state)

        assert outcome.success is False
        assert "secret-tok" not in outcome.location
        assert _query(outcome.location)["message"] == "Not enough permissions"
        assert await _rows(db_session) == []

    async def test_persistence_failure_redirects(self, registry, state_store, transport):
        _stub_linkedin(registry, transport)
        store = FailingStore()
        handler = CallbackHandler(registry, state_store, store, transport, clock=lambda: NOW)
        state = await state_store.issue("user-1", Platform.LINKEDIN)

        outcome = await handler.handle(Platform.LINKEDIN, "abc", state)

        assert store.calls == 1
        assert _query(outcome.location)["message"] == "Failed to save connection"
        assert "tok1" not in outcome.location

    async def test_instagram_never_stores_refresh_token(self, handler, registry, state_store, transport, db_session):
        config = registry.get(Platform.INSTAGRAM).config
        transport.add(config.token_url, {"access_token": "igtok", "user_id": 17841, "refresh_token": "should-drop", "expires_in": 3600})
        transport.add(config.profile_url, {"id": "17841", "username": "ada.codes"})
        state = await state_store.issue("user-1", Platform.INSTAGRAM)

        outcome = await handler.handle(Platform.INSTAGRAM, "abc", state)

        assert outcome.success is True
        cp = (await _rows(db_session))[0]
        assert cp.refresh_token_enc is None
        assert decrypt_token(cp.access_token_enc) == "igtok"
        assert as_utc(cp.expires_at) == NOW + timedelta(seconds=3600)
        assert sorted(cp.scopes) == ["user_media", "user_profile"]

    async def test_instagram_without_expiry(self, handler, registry, state_store, transport, db_session):
        config = registry.get(Platform.INSTAGRAM).config
        transport.add(config.token_url, {"access_token": "igtok", "user_id": 17841})
        transport.add(config.profile_url, {"id": "17841", "username": "ada.codes"})
        state = await state_store.issue("user-1", Platform.INSTAGRAM)

        await handler.handle(Platform.INSTAGRAM, "abc", state)

        assert (await _rows(db_session))[0].expires_at is None

    async def test_instagram_error_message(self, handler, registry, state_store, transport, db_session):
        config = registry.get(Platform.INSTAGRAM).config
        transport.add(config.token_url, {"error_type": "OAuthException", "error_message": "Matching code was not found or was already used."}, status_code=400)
        state = await state_store.issue("user-1", Platform.INSTAGRAM)

        outcome = await handler.handle(Platform.INSTAGRAM, "abc", state)

        assert _query(outcome.location)["message"] == "Matching code was not found or was already used."
        assert await _rows(db_session) == []

    async def test_twitter_sends_stored_verifier(self, handler, registry, state_store, transport, db_session):
        config = registry.get(Platform.TWITTER).config
        transport.add(config.token_url, {"access_token": "twtok", "refresh_token": "twref", "expires_in": 7200, "scope": "tweet.read users.read offline.access"})
        transport.add(config.profile_url, {"data": {"id": "2244994945", "name": "Dev", "username": "dev"}})
        state = await state_store.issue("user-1", Platform.TWITTER, code_verifier="the-verifier")

        outcome = await handler.handle(Platform.TWITTER, "abc", state)

        assert outcome.success is True
        token_request = transport.requests_to(config.token_url)[0]
        assert token_request.data["code_verifier"] == "the-verifier"
        assert token_request.headers["Authorization"].startswith("Basic ")
        cp = (await _rows(db_session))[0]
        assert decrypt_token(cp.refresh_token_enc) == "twref"
        assert set(cp.scopes) == {"tweet.read", "users.read", "offline.access"}

    async def test_twitter_state_without_verifier_fails(self, handler, registry, state_store, transport, db_session):
        config = registry.get(Platform.TWITTER).config
        transport.add(config.token_url, {"access_token": "twtok"})
        state = await state_store.issue("user-1", Platform.TWITTER)

        outcome = await handler.handle(Platform.TWITTER, "abc", state)

        assert outcome.success is False
        assert transport.requests == []
        assert await _rows(db_session) == []

    async def test_state_store_outage_redirects_with_error(self, registry, transport, db_session):
        _stub_linkedin(registry, transport)
        handler = CallbackHandler(
            registry, OAuthStateStore(UnreachableRedis()), ConnectionsRepository(db_session), transport, clock=lambda: NOW
        )

        outcome = await handler.handle(Platform.LINKEDIN, "abc", "some-state")

        assert outcome.status_code == 302
        assert outcome.success is False
        assert _query(outcome.location) == {
            "connection": "linkedin",
            "status": "error",
            "message": "Authentication failed. Please sign in and try again.",
        }
        assert transport.requests == []
        assert await _rows(db_session) == []

    async def test_malformed_expires_in_redirects_with_error(self, handler, registry, state_store, transport, db_session):
        _stub_linkedin(registry, transport, token_body={"access_token": "tok1", "expires_in": "3600s"})
        state = await state_store.issue("user-1", Platform.LINKEDIN)

        outcome = await handler.handle(Platform.LINKEDIN, "abc", state)

        assert outcome.status_code == 302
        assert outcome.success is False
        assert _query(outcome.location)["message"] == "Invalid expires_in returned from provider"
        assert "tok1" not in outcome.location
        assert await _rows(db_session) == []

    async def test_unexpected_store_error_redirects(self, registry, state_store, transport):
        _stub_linkedin(registry, transport)
        handler = CallbackHandler(registry, state_store, CrashingStore(), transport, clock=lambda: NOW)
        state = await state_store.issue("user-1", Platform.LINKEDIN)

        outcome = await handler.handle(Platform.LINKEDIN, "abc", state)

        assert outcome.status_code == 302
        assert outcome.stage == CallbackStage.REDIRECTED
        assert _query(outcome.location)["message"] == "Failed to save connection"
        assert "driver blew up" not in outcome.location

    async def test_zero_expires_in_expires_immediately(self, handler, registry, state_store, transport, db_session):
        _stub_linkedin(registry, transport, token_body={"access_token": "tok1", "expires_in": 0})
        state = await state_store.issue("user-1", Platform.LINKEDIN)

        outcome = await handler.handle(Platform.LINKEDIN, "abc", state)

        assert outcome.success is True
        assert as_utc((await _rows(db_session))[0].expires_at) == NOW
