import os
from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from src.models.connection import Connection  # noqa: F401  registers the table

logger = structlog.get_logger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./social_scheduler.db")

engine: AsyncEngine = create_async_engine(DATABASE_URL, echo=False)


async def init_db(bind: AsyncEngine = engine) -> None:
    try:
        async with bind.begin() as connection:
            await connection.run_sync(SQLModel.metadata.create_all)
    except Exception as e:
        logger.exception("db_init_failed", error=str(e))
        raise


@asynccontextmanager
async def get_session() -> AsyncIterator[AsyncSession]:
    async with AsyncSession(engine, expire_on_commit=False) as session:
        yield session
