"""Schema catalog over the local store.

Reads the store's structural catalog into a ``SchemaDump`` and replays a
dump back into a store.  Replay is best-effort and idempotent: each
statement runs on its own and a failure (typically "already exists") is
logged and skipped.  DDL in the target store may not be transactional, so
replay is never wrapped in one atomic unit.

Usage:
    catalog = SchemaCatalog(store)
    dump = await catalog.dump()
    await other_catalog.replay(dump)
"""

import logging

from tenant_snapshot.adapters.base import LocalStore
from tenant_snapshot.schema.models import (
    BOOKKEEPING_TABLE,
    ReplayResult,
    SchemaDump,
    SchemaObject,
)

logger = logging.getLogger(__name__)

_GROUP_BY_TYPE = {"table": "tables", "index": "indexes", "trigger": "triggers"}


class SchemaCatalog:
    """Introspects and recreates the local store's structure.

    The engine's own bookkeeping table (and anything on it) is excluded
    from dumps and table listings.
    """

    EXCLUDED_TABLES = frozenset({BOOKKEEPING_TABLE})

    def __init__(self, store: LocalStore) -> None:
        self._store = store

    async def dump(self) -> SchemaDump:
        """Capture tables, indexes and triggers with their creation statements.

        Objects without a statement (auto-indexes) are skipped, as are
        views: they carry no data and are outside the archive format.
        """
        groups: dict[str, list[SchemaObject]] = {"tables": [], "indexes": [], "triggers": []}

        for row in await self._store.list_objects():
            sql = row.get("sql")
            if not sql:
                continue
            if row["name"] in self.EXCLUDED_TABLES or row.get("tbl_name") in self.EXCLUDED_TABLES:
                continue
            group = _GROUP_BY_TYPE.get(row["type"])
            if group is None:
                continue
            groups[group].append(SchemaObject(name=row["name"], sql=sql))

        dump = SchemaDump(
            tables=tuple(groups["tables"]),
            indexes=tuple(groups["indexes"]),
            triggers=tuple(groups["triggers"]),
        )
        logger.debug(
            f"Schema dump: {len(dump.tables)} tables, {len(dump.indexes)} indexes, "
            f"{len(dump.triggers)} triggers"
        )
        return dump

    async def replay(self, dump: SchemaDump) -> ReplayResult:
        """Re-issue every creation statement, tables -> indexes -> triggers.

        Each failure is caught individually and recorded as skipped.
        """
        result = ReplayResult()
        for obj in (*dump.tables, *dump.indexes, *dump.triggers):
            try:
                await self._store.execute(obj.sql)
            except Exception as e:
                logger.debug(f"Schema replay skipped '{obj.name}': {e}")
                result.skipped.append(obj.name)
            else:
                result.applied.append(obj.name)

        logger.info(
            f"Schema replay: {len(result.applied)} applied, {len(result.skipped)} skipped"
        )
        return result

    async def list_tables(self) -> list[str]:
        """User tables, excluding bookkeeping."""
        tables = await self._store.list_tables()
        return [t for t in tables if t not in self.EXCLUDED_TABLES]

    async def table_exists(self, name: str) -> bool:
        return name in await self._store.list_tables()

    async def list_columns(self, name: str) -> list[str]:
        return await self._store.list_columns(name)

