"""
Pytest configuration and fixtures for testing
"""
import os

from cryptography.fernet import Fernet

os.environ.setdefault("ENVIRONMENT", "development")
os.environ.setdefault("OAUTH_TOKEN_KEY", Fernet.generate_key().decode())
os.environ.setdefault("SECRET_KEY", "test-secret")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./test.db")

import pytest
from typing import AsyncGenerator, Callable, Dict, List
from jose import jwt
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker
from sqlalchemy.pool import NullPool
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from src.models.connection import Connection  # noqa: F401  registers the table
from src.providers.base import OutboundRequest, TransportResponse
from src.providers.registry import ProviderRegistry, load_registry
from src.services.errors import TransportError
from src.services.oauth_state import OAuthStateStore


TEST_ENV = {
    "OAUTH_REDIRECT_BASE_URL": "https://api.example.com",
    "LINKEDIN_CLIENT_ID": "li-client",
    "LINKEDIN_CLIENT_SECRET": "li-secret",
    "INSTAGRAM_CLIENT_ID": "ig-client",
    "INSTAGRAM_CLIENT_SECRET": "ig-secret",
    "TWITTER_CLIENT_ID": "tw-client",
    "TWITTER_CLIENT_SECRET": "tw-secret",
}


class FakeTransport:
    """
    In-memory stand-in for provider endpoints.
    Responses are registered per URL and consumed in order; every request is recorded.
    """

    def __init__(self):
        self.routes: Dict[str, List[object]] = {}
        self.requests: List[OutboundRequest] = []

    def add(self, url: str, body: dict, status_code: int = 200) -> None:
        self.routes.setdefault(url, []).append(TransportResponse(status_code=status_code, body=body))

    def fail(self, url: str, message: str = "connection refused") -> None:
        self.routes.setdefault(url, []).append(TransportError(message))

    def requests_to(self, url: str) -> List[OutboundRequest]:
        return [r for r in self.requests if r.url == url]

    async def send(self, request: OutboundRequest) -> TransportResponse:
        self.requests.append(request)
        queue = self.routes.get(request.url)
        if not queue:
            raise TransportError(f"no fake route for {request.url}")
        result = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(result, Exception):
            raise result
        return result


@pytest.fixture
def test_env() -> Dict[str, str]:
    return dict(TEST_ENV)


@pytest.fixture
def registry(test_env) -> ProviderRegistry:
    return load_registry(test_env)


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
async def redis_client():
    """Create a test Redis client using fakeredis"""
    import fakeredis.aioredis

    redis = fakeredis.aioredis.FakeRedis(decode_responses=True)

    yield redis

    await redis.flushall()
    await redis.aclose()


@pytest.fixture
def state_store(redis_client) -> OAuthStateStore:
    return OAuthStateStore(redis_client)


@pytest.fixture(scope="function")
async def db_engine(tmp_path):
    """Create a test database engine on a throwaway SQLite file"""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        echo=False,
        poolclass=NullPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture(scope="function")
async def db_session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session"""
    session_factory = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with session_factory() as session:
        yield session


@pytest.fixture
def make_session_token() -> Callable[..., str]:
    def _make(sub: str = "user-1", token_type: str = "access") -> str:
        return jwt.encode(
            {"sub": sub, "type": token_type},
            os.environ["SECRET_KEY"],
            algorithm="HS256",
        )

    return _make

