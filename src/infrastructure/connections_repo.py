# src/infrastructure/connections_repo.py
from typing import List, Optional, Protocol
import uuid

import structlog
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from src.models.connection import Connection, Platform, utcnow
from src.services.errors import PersistenceError

logger = structlog.get_logger(__name__)

# columns a relink overwrites; id, user_id, platform and created_at are kept
UPSERT_COLUMNS = (
    "platform_user_id",
    "platform_user_name",
    "access_token_enc",
    "refresh_token_enc",
    "expires_at",
    "scopes",
    "updated_at",
)


class ConnectionStore(Protocol):
    async def upsert(self, connection: Connection) -> Connection:
        """Insert or replace the connection for (user_id, platform)."""
        ...


class ConnectionsRepository:
    """
    Repository for Connection entity.
    All methods are async and expect an AsyncSession to be injected from the outside.
    Uniqueness of (user_id, platform) is enforced by the table constraint, so concurrent
    upserts for the same pair converge on one row, last write wins.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    def _insert(self):
        dialect = self.session.bind.dialect.name
        if dialect == "postgresql":
            return postgresql.insert(Connection)
        if dialect == "sqlite":
            return sqlite.insert(Connection)
        raise PersistenceError(f"upsert not supported on {dialect}")

    async def upsert(self, connection: Connection) -> Connection:
        now = utcnow()
        values = {
            "id": connection.id or uuid.uuid4(),
            "user_id": connection.user_id,
            "platform": Platform(connection.platform).value,
            "platform_user_id": connection.platform_user_id,
            "platform_user_name": connection.platform_user_name,
            "access_token_enc": connection.access_token_enc,
            "refresh_token_enc": connection.refresh_token_enc,
            "expires_at": connection.expires_at,
            "scopes": list(connection.scopes or []),
            "created_at": now,
            "updated_at": now,
        }
        stmt = self._insert().values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id", "platform"],
            set_={name: getattr(stmt.excluded, name) for name in UPSERT_COLUMNS},
        )
        try:
            await self.session.execute(stmt)
            await self.session.commit()
            stored = await self.get_by_user_and_platform(values["user_id"], values["platform"])
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.exception("connection_upsert_failed", user_id=values["user_id"], platform=values["platform"])
            raise PersistenceError() from e

        if stored is None:
            raise PersistenceError()
        logger.info("connection_upserted", user_id=stored.user_id, platform=stored.platform, connection_id=str(stored.id))
        return stored

    async def get_by_user_and_platform(self, user_id: str, platform: Platform) -> Optional[Connection]:
        q = (
            select(Connection)
            .where(Connection.user_id == user_id, Connection.platform == Platform(platform).value)
            .execution_options(populate_existing=True)
        )
        res = await self.session.execute(q)
        return res.scalar_one_or_none()

    async def list_by_user(self, user_id: str) -> List[Connection]:
        q = select(Connection).where(Connection.user_id == user_id).order_by(Connection.platform)
        res = await self.session.execute(q)
        return list(res.scalars().all())

    async def delete(self, connection: Connection) -> None:
        """
        Delete the provided Connection instance.
        """
        user_id, platform = connection.user_id, connection.platform
        await self.session.delete(connection)
        await self.session.commit()
        logger.info("connection_deleted", user_id=user_id, platform=platform)
