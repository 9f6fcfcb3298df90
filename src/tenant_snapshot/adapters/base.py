"""Local store protocol definition.

Defines the ``LocalStore`` Protocol the snapshot engine consumes.  The
engine needs only a minimal SQL-capable surface: execute statements, run
parameterized queries, enumerate catalog metadata, and run atomic
transactions.  All methods are ``async def``.

Usage:
    from tenant_snapshot.adapters.base import LocalStore

    async def do_work(store: LocalStore) -> None:
        rows = await store.query('SELECT * FROM "tasks" WHERE tenant_id = :t', {"t": "org-1"})
        async with store.transaction() as session:
            await session.execute('DELETE FROM "tasks" WHERE id = :id', {"id": "t1"})
        await store.close()
"""

from contextlib import AbstractAsyncContextManager
from typing import Any, Protocol


def quote_identifier(name: str) -> str:
    """Quote a table or column name for SQL.

    Example:
        >>> quote_identifier('weird"name')
        '"weird""name"'
    """
    return '"' + name.replace('"', '""') + '"'


class StoreSession(Protocol):
    """Statement interface bound to one open transaction."""

    async def execute(self, sql: str, params: dict[str, Any] | None = None) -> None:
        """Execute a statement inside the transaction."""
        ...

    async def query(self, sql: str, params: dict[str, Any] | None = None) -> list[dict]:
        """Run a query inside the transaction and return rows as dicts."""
        ...


class LocalStore(Protocol):
    """Local relational store interface that all adapters must implement.

    All methods are async -- callers must ``await`` every operation.
    """

    async def execute(self, sql: str, params: dict[str, Any] | None = None) -> None:
        """Execute a raw SQL statement (DDL or DML) in its own transaction.

        Args:
            sql: Raw SQL statement.  Statements without ``params`` are sent
                to the driver verbatim (no bind-parameter parsing), which is
                what replayed DDL needs.
            params: Optional dict of named parameters.
        """
        ...

    async def query(self, sql: str, params: dict[str, Any] | None = None) -> list[dict]:
        """Run a parameterized query.

        Returns:
            List of dicts, one per row, keys in column order.
        """
        ...

    def transaction(self) -> AbstractAsyncContextManager[StoreSession]:
        """Open an atomic transaction.

        Commits when the block exits normally, rolls back when it raises.

        Example:
            async with store.transaction() as session:
                await session.execute("INSERT ...", {...})
        """
        ...

    async def list_objects(self) -> list[dict]:
        """List catalog objects as ``{"name", "type", "tbl_name", "sql"}`` dicts.

        ``tbl_name`` is the table an index or trigger belongs to.
        Store-internal objects are excluded.  Ordered by type, then name.
        """
        ...

    async def list_tables(self) -> list[str]:
        """List user table names, sorted."""
        ...

    async def list_columns(self, table: str) -> list[str]:
        """List a table's column names in declaration order.

        Returns an empty list when the table does not exist.
        """
        ...

    async def close(self) -> None:
        """Close connections and release resources."""
        ...
