# src/models/connection.py
from sqlmodel import SQLModel, Field, Column
from typing import Optional, List
from datetime import datetime, timezone
from enum import Enum
import uuid
from sqlalchemy import String, JSON, DateTime, UniqueConstraint


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive values for timezone=True columns; they are stored as UTC
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class Platform(str, Enum):
    LINKEDIN = "linkedin"
    INSTAGRAM = "instagram"
    TWITTER = "twitter"


class Connection(SQLModel, table=True):
    __tablename__ = "social_connection"
    __table_args__ = (
        UniqueConstraint("user_id", "platform", name="uq_social_connection_user_platform"),
    )

    id: Optional[uuid.UUID] = Field(default_factory=uuid.uuid4, primary_key=True)
    user_id: str = Field(sa_column=Column(String, index=True, nullable=False))
    platform: str = Field(sa_column=Column(String, index=True, nullable=False))
    platform_user_id: str = Field(sa_column=Column(String, nullable=False))
    platform_user_name: Optional[str] = Field(sa_column=Column(String), default=None)
    access_token_enc: str
    refresh_token_enc: Optional[str] = None
    expires_at: Optional[datetime] = Field(sa_column=Column(DateTime(timezone=True)), default=None)
    scopes: List[str] = Field(sa_column=Column(JSON), default_factory=list)
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False), default_factory=utcnow)
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False), default_factory=utcnow)
