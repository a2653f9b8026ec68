"""Async engine and session lifecycle for the indexer database.

PostgreSQL (asyncpg) in production, SQLite (aiosqlite) in tests. One
session is one database transaction: the worker writes the audit row,
the trade, the token and the holder for a signature atomically.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from pumpfun_indexer.storage.models import Base

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

    from pumpfun_indexer.config import DatabaseSettings

logger = logging.getLogger(__name__)

_SYNC_PG_PREFIXES = ("postgresql://", "postgres://")


def to_async_url(database_url: str) -> str:
    """Rewrite a plain PostgreSQL URL to use the asyncpg driver."""
    for prefix in _SYNC_PG_PREFIXES:
        if database_url.startswith(prefix):
            logger.warning("Database URL has no async driver, using postgresql+asyncpg")
            return "postgresql+asyncpg://" + database_url[len(prefix) :]
    return database_url


def create_async_db_engine(
    database_url: str,
    *,
    pool_size: int = 5,
    max_overflow: int = 10,
    echo: bool = False,
) -> AsyncEngine:
    """Create the async engine.

    Pool sizing only applies to server databases; SQLite gets the
    driver's default pool.
    """
    url = to_async_url(database_url)
    options: dict[str, Any] = {"echo": echo}
    if not url.startswith("sqlite"):
        options.update(pool_size=pool_size, max_overflow=max_overflow, pool_pre_ping=True)
    return create_async_engine(url, **options)


def create_async_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, expire_on_commit=False)


async def init_async_db(engine: AsyncEngine) -> None:
    """Create missing tables from the ORM models.

    Used by tests and local runs; deployed databases are migrated with
    alembic.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database schema initialized")


class DatabaseManager:
    """Owns the engine and hands out transactional sessions.

    Example:
        ```python
        db = DatabaseManager.from_settings(settings.database)
        await db.ping()
        async with db.get_async_session() as session:
            await TradeRepository(session).insert_if_absent(trade)
        await db.dispose_async()
        ```
    """

    def __init__(
        self,
        database_url: str,
        *,
        pool_size: int = 5,
        max_overflow: int = 10,
        echo: bool = False,
    ) -> None:
        self.database_url = database_url
        self._pool_size = pool_size
        self._max_overflow = max_overflow
        self._echo = echo

        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None

    @classmethod
    def from_settings(cls, settings: DatabaseSettings) -> DatabaseManager:
        return cls(settings.url, pool_size=settings.pool_size)

    @property
    def engine(self) -> AsyncEngine:
        """The engine, created on first use."""
        if self._engine is None:
            self._engine = create_async_db_engine(
                self.database_url,
                pool_size=self._pool_size,
                max_overflow=self._max_overflow,
                echo=self._echo,
            )
        return self._engine

    @asynccontextmanager
    async def get_async_session(self) -> AsyncGenerator[AsyncSession, None]:
        """Yield a session that commits on success and rolls back on error."""
        if self._session_factory is None:
            self._session_factory = create_async_session_factory(self.engine)

        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def ping(self) -> None:
        """Round-trip a trivial query so a bad URL fails at startup.

        Raises:
            sqlalchemy.exc.SQLAlchemyError: If the database is unreachable.
        """
        async with self.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        logger.info("Database reachable")

    async def init_schema_async(self) -> None:
        await init_async_db(self.engine)

    async def dispose_async(self) -> None:
        """Close pooled connections; the manager can be reused afterwards."""
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None
        logger.info("Database connections closed")
