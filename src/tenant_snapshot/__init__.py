"""tenant-snapshot: tenant-scoped snapshot and restore for local SQLite stores.

Exports a tenant's rows (and optionally its media files) from a device-local
SQLite database into a self-describing zip archive, and restores such an
archive back into a local store in merge or replace mode.

Usage:
    from tenant_snapshot import open_engine, load_config, TenantContext, RestoreMode
    from tenant_snapshot import SnapshotError, ValidationError
"""

__version__ = "0.1.0"

# Adapters
from tenant_snapshot.adapters.base import LocalStore
from tenant_snapshot.adapters.sqlite import AsyncSqliteStore

# Config
from tenant_snapshot.config.loader import load_config
from tenant_snapshot.config.models import EngineConfig

# Context
from tenant_snapshot.context import TenantContext

# Errors
from tenant_snapshot.errors import (
    ArchiveIOError,
    CapacityExceededError,
    DataApplyError,
    SnapshotError,
    ValidationError,
)

# Factory
from tenant_snapshot.factory import SnapshotEngine, create_store, open_engine

# Backup
from tenant_snapshot.backup import (
    ArchiveBuilder,
    ExportOptions,
    Manifest,
    RestoreMode,
    RestoreReport,
    RestoreTransaction,
    SnapshotCatalogStore,
    SnapshotRecord,
    SnapshotStatus,
    inspect_archive,
)

__all__ = [
    # Adapters
    "LocalStore",
    "AsyncSqliteStore",
    # Config
    "load_config",
    "EngineConfig",
    # Context
    "TenantContext",
    # Errors
    "SnapshotError",
    "ValidationError",
    "ArchiveIOError",
    "CapacityExceededError",
    "DataApplyError",
    # Factory
    "SnapshotEngine",
    "create_store",
    "open_engine",
    # Backup
    "ArchiveBuilder",
    "RestoreTransaction",
    "SnapshotCatalogStore",
    "SnapshotRecord",
    "SnapshotStatus",
    "ExportOptions",
    "RestoreMode",
    "RestoreReport",
    "Manifest",
    "inspect_archive",
]
