"""Engine factory.

Wires a ``LocalStore`` from configuration and exposes ``SnapshotEngine``,
the tenant-bound entry point used by the CLI and by host applications.

Usage:
    config = load_config()
    engine = open_engine(config, TenantContext.create("org-1"))
    try:
        record = await engine.export(include_media=True)
        report = await engine.restore(record.archive_path, RestoreMode.REPLACE)
    finally:
        await engine.close()
"""

import logging
from pathlib import Path

from tenant_snapshot.adapters.base import LocalStore
from tenant_snapshot.adapters.sqlite import AsyncSqliteStore
from tenant_snapshot.backup.builder import ArchiveBuilder
from tenant_snapshot.backup.models import (
    ExportOptions,
    RestoreMode,
    RestoreReport,
    SnapshotKind,
    SnapshotRecord,
)
from tenant_snapshot.backup.records import DEFAULT_LIST_LIMIT, SnapshotCatalogStore
from tenant_snapshot.backup.restore import RestoreTransaction
from tenant_snapshot.config.models import EngineConfig
from tenant_snapshot.context import TenantContext

logger = logging.getLogger(__name__)


def create_store(config: EngineConfig) -> AsyncSqliteStore:
    """Create the SQLite store described by ``[store]``."""
    return AsyncSqliteStore(config.store.url, foreign_keys=config.store.foreign_keys)


class SnapshotEngine:
    """Snapshot operations bound to one store and one active tenant.

    Args:
        store: Local store.
        config: Engine configuration.
        context: Active tenant.  Every operation is scoped to it.
    """

    def __init__(self, store: LocalStore, config: EngineConfig, context: TenantContext) -> None:
        self.store = store
        self.config = config
        self.context = context
        self.records = SnapshotCatalogStore(store, context)
        self._builder = ArchiveBuilder(store, config)
        self._restorer = RestoreTransaction(store, config)

    async def export(
        self,
        include_media: bool = False,
        kind: SnapshotKind = SnapshotKind.LOCAL_EXPORT,
    ) -> SnapshotRecord:
        """Export the active tenant's data into a new archive."""
        return await self._builder.build(
            self.context, ExportOptions(include_media=include_media, kind=kind)
        )

    async def restore(
        self,
        archive_path: str | Path,
        mode: RestoreMode = RestoreMode.MERGE,
    ) -> RestoreReport:
        """Restore an archive produced for the active tenant."""
        return await self._restorer.restore(self.context, archive_path, mode)

    async def list_snapshots(self, limit: int = DEFAULT_LIST_LIMIT) -> list[SnapshotRecord]:
        return await self.records.list(limit=limit)

    async def delete_snapshot(self, snapshot_id: str) -> bool:
        return await self.records.delete(snapshot_id)

    async def close(self) -> None:
        await self.store.close()


def open_engine(config: EngineConfig, context: TenantContext) -> SnapshotEngine:
    """Create a store from ``config`` and bind an engine to ``context``."""
    store = create_store(config)
    logger.debug(f"Opened store {config.store.url} for tenant {context.tenant_id}")
    return SnapshotEngine(store, config, context)
