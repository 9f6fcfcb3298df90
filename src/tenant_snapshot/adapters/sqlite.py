"""Async SQLite local store.

Provides ``AsyncSqliteStore``, an async implementation of the
``LocalStore`` protocol using SQLAlchemy's async engine with the
``aiosqlite`` driver.

Usage:
    from tenant_snapshot.adapters.sqlite import AsyncSqliteStore

    store = AsyncSqliteStore("sqlite:///var/app/fieldops.db")
    rows = await store.query("SELECT * FROM tasks")
    await store.close()
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine

from tenant_snapshot.adapters.base import quote_identifier


def normalize_sqlite_url(url: str) -> str:
    """Normalize a SQLite location to a ``sqlite+aiosqlite://`` URL.

    Accepts ``sqlite://`` URLs, ``sqlite+aiosqlite://`` URLs, and bare
    filesystem paths.

    Example:
        >>> normalize_sqlite_url("/tmp/app.db")
        'sqlite+aiosqlite:////tmp/app.db'
        >>> normalize_sqlite_url("sqlite:///app.db")
        'sqlite+aiosqlite:///app.db'
    """
    if url.startswith("sqlite+aiosqlite://"):
        return url
    if url.startswith("sqlite://"):
        return "sqlite+aiosqlite://" + url[len("sqlite://"):]
    if "://" in url:
        raise ValueError(f"Unsupported store URL scheme: {url}")
    return f"sqlite+aiosqlite:///{url}"


class _ConnectionSession:
    """``StoreSession`` bound to one SQLAlchemy connection."""

    def __init__(self, conn: AsyncConnection) -> None:
        self._conn = conn

    async def execute(self, sql: str, params: dict[str, Any] | None = None) -> None:
        if params is None:
            await self._conn.exec_driver_sql(sql)
        else:
            await self._conn.execute(text(sql), params)

    async def query(self, sql: str, params: dict[str, Any] | None = None) -> list[dict]:
        result = await self._conn.execute(text(sql), params or {})
        col_names = list(result.keys())
        return [dict(zip(col_names, row)) for row in result.fetchall()]


class AsyncSqliteStore:
    """Async SQLite implementation of the ``LocalStore`` protocol.

    Args:
        database_url: SQLite URL or filesystem path.  Normalized to
            ``sqlite+aiosqlite://``.
        foreign_keys: When ``True``, every pooled connection runs
            ``PRAGMA foreign_keys=ON`` on connect.
        **engine_kwargs: Forwarded to ``create_async_engine``.

    Example:
        store = AsyncSqliteStore("/data/fieldops.db", foreign_keys=True)
        async with store.transaction() as session:
            await session.execute('DELETE FROM "tasks" WHERE tenant_id = :t', {"t": "org-1"})
        await store.close()
    """

    def __init__(
        self,
        database_url: str,
        foreign_keys: bool = False,
        **engine_kwargs: Any,
    ) -> None:
        self._engine: AsyncEngine = create_async_engine(
            normalize_sqlite_url(database_url), **engine_kwargs
        )
        self._foreign_keys = foreign_keys

        # The driver's implicit BEGIN is deferred until the first DML, which
        # leaves PRAGMAs and DDL outside the transaction.  Emit BEGIN ourselves.
        event.listen(self._engine.sync_engine, "connect", self._on_connect)
        event.listen(self._engine.sync_engine, "begin", _emit_begin)

    def _on_connect(self, dbapi_connection: Any, connection_record: Any) -> None:
        dbapi_connection.isolation_level = None
        if self._foreign_keys:
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    # ------------------------------------------------------------------
    # Statements
    # ------------------------------------------------------------------

    async def execute(self, sql: str, params: dict[str, Any] | None = None) -> None:
        """Execute one statement in its own transaction."""
        async with self._engine.begin() as conn:
            await _ConnectionSession(conn).execute(sql, params)

    async def query(self, sql: str, params: dict[str, Any] | None = None) -> list[dict]:
        """Run a query and return column-ordered row dicts."""
        async with self._engine.connect() as conn:
            return await _ConnectionSession(conn).query(sql, params)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[_ConnectionSession]:
        """Atomic transaction: commit on success, rollback on error."""
        async with self._engine.begin() as conn:
            yield _ConnectionSession(conn)

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------

    async def list_objects(self) -> list[dict]:
        """List ``sqlite_master`` objects, excluding ``sqlite_%`` internals."""
        return await self.query(
            """
            SELECT name, type, tbl_name, sql
            FROM sqlite_master
            WHERE name NOT LIKE 'sqlite_%'
            ORDER BY type ASC, name ASC
            """
        )

    async def list_tables(self) -> list[str]:
        rows = await self.query(
            """
            SELECT name
            FROM sqlite_master
            WHERE type = 'table'
              AND name NOT LIKE 'sqlite_%'
            ORDER BY name
            """
        )
        return [row["name"] for row in rows]

    async def list_columns(self, table: str) -> list[str]:
        rows = await self.query(f"PRAGMA table_info({quote_identifier(table)})")
        return [str(row["name"]) for row in rows]

    async def close(self) -> None:
        """Dispose of the engine and its connection pool."""
        await self._engine.dispose()


def _emit_begin(conn: Any) -> None:
    conn.exec_driver_sql("BEGIN")
