"""
Relational Store Client Module.

Async SQLAlchemy client for the family data graph.
Provides pooled read connections, exclusive transactional connections,
schema setup and dialect-aware conflict-ignoring inserts.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

import structlog
from sqlalchemy import Table, event, text
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine
from sqlalchemy.sql.dml import Insert

from family_portability.config.settings import DatabaseSettings, get_settings
from family_portability.store.tables import metadata

logger = structlog.get_logger(__name__)


class StoreError(Exception):
    """Base class for relational store errors."""


class UnsupportedDialectError(StoreError, NotImplementedError):
    """The database dialect lacks a feature the store relies on."""

    def __init__(self, dialect_name: str, feature: str) -> None:
        self.dialect_name = dialect_name
        super().__init__(f"{feature} not supported for {dialect_name}")


def insert_ignoring_conflicts(
    dialect_name: str,
    table: Table,
    values: dict[str, Any],
    index_elements: tuple[str, ...] = ("id",),
) -> Insert:
    """
    Build an INSERT that silently skips rows whose key already exists.

    Args:
        dialect_name: Name of the connection's SQL dialect
        table: Target table
        values: Column values of the row
        index_elements: Columns of the conflicting unique key

    Returns:
        Dialect-specific insert statement
    """
    if dialect_name == "postgresql":
        stmt = postgresql.insert(table).values(**values)
    elif dialect_name == "sqlite":
        stmt = sqlite.insert(table).values(**values)
    else:
        raise UnsupportedDialectError(dialect_name, "Conflict-ignoring insert")
    return stmt.on_conflict_do_nothing(index_elements=list(index_elements))


class PortabilityStore:
    """
    SQLAlchemy client for the family data graph.

    Read operations share pooled connections via connection();
    writes that must be all-or-nothing run inside transaction(), which
    holds one connection exclusively until commit or rollback.
    """

    def __init__(self, settings: DatabaseSettings | None = None) -> None:
        """Initialize the client with optional custom settings."""
        self._engine: AsyncEngine | None = None
        self._settings = settings or get_settings().database

    @property
    def engine(self) -> AsyncEngine | None:
        return self._engine

    @property
    def is_sqlite(self) -> bool:
        return self._settings.url.startswith("sqlite")

    def _engine_options(self) -> dict[str, Any]:
        options: dict[str, Any] = {"echo": self._settings.echo}
        if not self.is_sqlite:
            options.update(
                pool_size=self._settings.pool_size,
                max_overflow=self._settings.max_overflow,
                pool_timeout=self._settings.pool_timeout,
                pool_pre_ping=self._settings.pool_pre_ping,
            )
        return options

    async def connect(self) -> None:
        """Create the engine and verify the database is reachable."""
        if self._engine is not None:
            return

        engine = create_async_engine(self._settings.url, **self._engine_options())

        if self.is_sqlite and self._settings.sqlite_foreign_keys:
            @event.listens_for(engine.sync_engine, "connect")
            def _enable_foreign_keys(dbapi_connection, connection_record):
                cursor = dbapi_connection.cursor()
                cursor.execute("PRAGMA foreign_keys=ON")
                cursor.close()

        try:
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except Exception:
            await engine.dispose()
            raise

        self._engine = engine
        logger.info(
            "Connected to database",
            url=engine.url.render_as_string(hide_password=True),
        )

    async def close(self) -> None:
        """Dispose of the engine and its pooled connections."""
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            logger.info("Disconnected from database")

    async def _get_engine(self) -> AsyncEngine:
        if self._engine is None:
            await self.connect()

        assert self._engine is not None  # Type guard for mypy
        return self._engine

    # =========================================================================
    # Connections
    # =========================================================================

    @asynccontextmanager
    async def connection(self) -> AsyncGenerator[AsyncConnection, None]:
        """Get a pooled connection for reads, without a dedicated transaction."""
        engine = await self._get_engine()
        async with engine.connect() as conn:
            yield conn

    @asynccontextmanager
    async def transaction(self) -> AsyncGenerator[AsyncConnection, None]:
        """
        Run a unit of work on one exclusive connection.

        Commits when the block exits normally. Any exception rolls back
        every statement issued in the block and is re-raised unchanged.
        The connection always returns to the pool.
        """
        engine = await self._get_engine()
        async with engine.connect() as conn:
            trans = await conn.begin()
            try:
                yield conn
            except Exception as e:
                await trans.rollback()
                logger.warning(
                    "Transaction rolled back",
                    error_type=type(e).__name__,
                    error=str(e),
                )
                raise
            else:
                await trans.commit()

    # =========================================================================
    # Schema Management
    # =========================================================================

    async def setup_schema(self) -> list[str]:
        """
        Create every table of the family data graph that does not exist yet.

        Returns:
            Names of the tables known to the schema
        """
        engine = await self._get_engine()
        async with engine.begin() as conn:
            await conn.run_sync(metadata.create_all)

        tables = sorted(metadata.tables)
        logger.info("Schema ready", tables=len(tables))
        return tables

    async def drop_schema(self) -> None:
        """Drop every table of the family data graph."""
        engine = await self._get_engine()
        async with engine.begin() as conn:
            await conn.run_sync(metadata.drop_all)
        logger.warning("Schema dropped")


_store: PortabilityStore | None = None


def get_store() -> PortabilityStore:
    """Get or create the global store instance."""
    global _store
    if _store is None:
        _store = PortabilityStore()
    return _store
