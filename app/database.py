"""Database utilities for the ShelfMirror service."""

from __future__ import annotations

import logging
from pathlib import Path

from sqlalchemy import MetaData, text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Declarative base shared by the snapshot tables."""

    metadata = MetaData()


class Database:
    """Own the async engine and the session factory handed to the stores."""

    def __init__(self, database_url: str):
        self._url = make_url(database_url)
        self._engine: AsyncEngine = create_async_engine(self._url)
        self.session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
            self._engine, expire_on_commit=False
        )

    async def create_all(self) -> None:
        """Create the snapshot tables if they do not yet exist."""

        from . import db_models  # noqa: F401  registers the mapped tables

        self._ensure_sqlite_directory()
        async with self._engine.begin() as connection:
            await connection.run_sync(Base.metadata.create_all)

    def _ensure_sqlite_directory(self) -> None:
        if self._url.get_backend_name() != "sqlite":
            return
        database = self._url.database
        if not database or database == ":memory:":
            return
        Path(database).parent.mkdir(parents=True, exist_ok=True)

    async def ping(self) -> bool:
        """Return ``True`` when a trivial query succeeds."""

        try:
            async with self._engine.connect() as connection:
                await connection.execute(text("SELECT 1"))
        except SQLAlchemyError as exc:
            logger.warning("Database ping failed: %s", exc)
            return False
        return True

    async def dispose(self) -> None:
        await self._engine.dispose()
