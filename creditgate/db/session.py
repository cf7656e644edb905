"""Engine and session lifecycle for the ledger database."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from creditgate.models import Base

logger = logging.getLogger(__name__)


class DatabaseManager:
    """Owns the async engine that backs ``SqlLedgerStore``.

    Each ledger unit opens its own session from here, so units on different
    accounts run in parallel and units on one account queue on its row lock.
    PostgreSQL gets a bounded pool; SQLite (used by the test suite) keeps
    the driver defaults.
    """

    def __init__(
        self,
        database_url: str,
        *,
        echo: bool = False,
        pool_size: int = 10,
        max_overflow: int = 20,
    ):
        self.database_url = database_url
        self.echo = echo
        self.pool_size = pool_size
        self.max_overflow = max_overflow
        self._engine: AsyncEngine | None = None
        self._sessions: async_sessionmaker[AsyncSession] | None = None

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    def _engine_options(self) -> dict[str, Any]:
        if self.is_sqlite:
            return {}
        return {
            "pool_size": self.pool_size,
            "max_overflow": self.max_overflow,
            "pool_pre_ping": True,
        }

    async def connect(self) -> None:
        """Create the engine on first use and check the database answers."""
        if self._engine is not None:
            return

        engine = create_async_engine(self.database_url, echo=self.echo, **self._engine_options())

        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))

        self._engine = engine
        self._sessions = async_sessionmaker(engine, expire_on_commit=False)
        logger.info("Ledger database ready at %s", engine.url.render_as_string())

    async def disconnect(self) -> None:
        if self._engine is None:
            return
        await self._engine.dispose()
        self._engine = None
        self._sessions = None
        logger.info("Ledger database disconnected")

    async def create_schema(self) -> None:
        """Create missing ledger tables. Production schemas come from Alembic."""
        await self.connect()
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def _factory(self) -> async_sessionmaker[AsyncSession]:
        await self.connect()
        if self._sessions is None:
            raise RuntimeError("Ledger database has no session factory")
        return self._sessions

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Session that commits when the block exits cleanly and rolls back otherwise."""
        factory = await self._factory()
        async with factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    @asynccontextmanager
    async def read_session(self) -> AsyncIterator[AsyncSession]:
        """Session for history and balance reads. Never commits."""
        factory = await self._factory()
        async with factory() as session:
            session.autoflush = False
            yield session

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise RuntimeError("Ledger database is not connected, call connect() first")
        return self._engine
