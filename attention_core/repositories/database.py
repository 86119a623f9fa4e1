"""Async engine and transaction management."""

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional
import logging

from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from .schema import Base

logger = logging.getLogger(__name__)


class Database:
    """Owns the async engine and hands out sessions and transactions."""

    def __init__(
        self,
        url: str,
        *,
        echo: bool = False,
        busy_timeout_ms: int = 5000,
        engine: Optional[AsyncEngine] = None,
    ):
        """Initialize database.

        Args:
            url: SQLAlchemy URL, e.g. sqlite+aiosqlite:///./attention.db
            echo: Log every statement
            busy_timeout_ms: SQLite busy timeout while waiting for the write lock
            engine: Optional pre-built engine for testing
        """
        self._url = url
        self._engine = engine or create_async_engine(url, echo=echo)
        self._sessionmaker = async_sessionmaker(self._engine, expire_on_commit=False)
        if self.is_sqlite:
            self._install_sqlite_hooks(busy_timeout_ms)

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    @property
    def dialect(self) -> str:
        return self._engine.dialect.name

    @property
    def is_sqlite(self) -> bool:
        return self.dialect == "sqlite"

    def _install_sqlite_hooks(self, busy_timeout_ms: int) -> None:
        """Make SQLite transactions take the write lock up front.

        pysqlite defers BEGIN until the first write, so two readers that both
        decide to write deadlock. BEGIN IMMEDIATE serialises writers instead
        and lets them wait on busy_timeout.
        """
        sync_engine = self._engine.sync_engine

        @event.listens_for(sync_engine, "connect")
        def _on_connect(dbapi_connection: Any, connection_record: Any) -> None:
            dbapi_connection.isolation_level = None
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.execute(f"PRAGMA busy_timeout={int(busy_timeout_ms)}")
            cursor.close()

        @event.listens_for(sync_engine, "begin")
        def _on_begin(conn: Any) -> None:
            conn.exec_driver_sql("BEGIN IMMEDIATE")

    async def create_all(self) -> None:
        """Create all tables and indexes that do not exist yet."""
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info(f"Schema ready on {self.dialect}")

    async def drop_all(self) -> None:
        """Drop every table (for testing)."""
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)

    async def ping(self) -> bool:
        """Check the store is reachable."""
        try:
            async with self._engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.error(f"Store ping failed: {e}")
            return False

    def session(self) -> AsyncSession:
        """Open a session for snapshot reads. Caller closes it."""
        return self._sessionmaker()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        """Run a block in one transaction; commit on success, roll back on error."""
        async with self._sessionmaker() as session:
            async with session.begin():
                yield session

    async def dispose(self) -> None:
        """Close every pooled connection."""
        await self._engine.dispose()
