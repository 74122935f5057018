"""Database session management."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from soulscan.config import Settings

logger = logging.getLogger(__name__)


class Database:
    """Database connection and session manager."""

    def __init__(self, settings: Settings) -> None:
        """Initialize database with settings."""
        self.settings = settings
        url = settings.database.url

        engine_kwargs: dict[str, Any] = {"echo": settings.database.echo}
        if "sqlite" in url:
            # Hey future me - a scan holds its write transaction for a whole
            # batch while enrichment may want a short one. 30s busy timeout
            # lets them queue instead of failing with "database is locked".
            engine_kwargs["connect_args"] = {"check_same_thread": False, "timeout": 30}
        else:
            engine_kwargs["pool_pre_ping"] = True

        self._engine = create_async_engine(url, **engine_kwargs)

        if "sqlite" in url:
            self._enable_sqlite_foreign_keys()

        self._session_factory = async_sessionmaker(
            self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    def _enable_sqlite_foreign_keys(self) -> None:
        """Enable foreign key constraints and real SAVEPOINTs for SQLite.

        SQLite has foreign keys disabled by default. Without them the
        RESTRICT on songs.folder_id would be decorative.

        Hey future me - the sqlite driver normally delays BEGIN until the
        first INSERT and manages transactions itself, which breaks
        session.begin_nested() (the EntityResolver's SAVEPOINT on unique
        clashes). We switch the driver to autocommit mode and emit BEGIN
        ourselves whenever SQLAlchemy starts a transaction.

        BEGIN IMMEDIATE takes the write lock up front. Two scans of different
        folders that each read first and write later would otherwise hit an
        instant "database is locked" on the lock upgrade, which the busy
        timeout does not cover.
        """

        @event.listens_for(self._engine.sync_engine, "connect")
        def set_sqlite_pragma(dbapi_conn: Any, _connection_record: Any) -> None:
            """Set SQLite pragmas on connection."""
            dbapi_conn.isolation_level = None
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()
            logger.debug("Enabled foreign keys for SQLite connection")

        @event.listens_for(self._engine.sync_engine, "begin")
        def do_begin(conn: Any) -> None:
            conn.exec_driver_sql("BEGIN IMMEDIATE")

    def session(self) -> AsyncSession:
        """Open a session whose transactions the caller manages.

        Hey future me - the scanner uses this (one session per scan, one
        commit per batch). Everything else should use session_scope().
        """
        return self._session_factory()

    @asynccontextmanager
    async def session_scope(self) -> AsyncGenerator[AsyncSession, None]:
        """Provide a transactional scope for database operations."""
        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                # Rollback on any exception to keep the transaction atomic,
                # then re-raise for the caller.
                await session.rollback()
                raise

    async def close(self) -> None:
        """Close database connection."""
        await self._engine.dispose()

    async def create_tables(self) -> None:
        """Create all tables."""
        from soulscan.infrastructure.persistence.models import Base

        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
