"""Async database engine and session factories.

Nothing connects at import time; the SQL job store builds its engine from
settings when it is selected.
"""

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from transcoder.core.config import settings


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""


def create_engine(database_url: str, **kwargs) -> AsyncEngine:
    """Create an async engine for the given URL.

    Args:
        database_url: SQLAlchemy URL using an async driver
            (``postgresql+asyncpg://`` or ``sqlite+aiosqlite://``)
        **kwargs: Extra engine options

    Returns:
        AsyncEngine
    """
    return create_async_engine(database_url, echo=settings.DEBUG, **kwargs)


def create_session_maker(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind, expire_on_commit=False)

