"""Tenant snapshot export, restore and bookkeeping.

Usage:
    from tenant_snapshot.backup import ArchiveBuilder, RestoreTransaction, SnapshotCatalogStore
    from tenant_snapshot.backup import ExportOptions, RestoreMode, SnapshotRecord
"""

from tenant_snapshot.backup.builder import ArchiveBuilder, archive_filename, sanitize_file_stem
from tenant_snapshot.backup.manifest import (
    FORMAT_VERSION,
    AppIdentity,
    Manifest,
    ManifestCodec,
    ManifestFileEntry,
    ManifestFiles,
    ManifestTable,
)
from tenant_snapshot.backup.models import (
    ExportOptions,
    RestoreMode,
    RestorePhase,
    RestoreReport,
    SnapshotKind,
    SnapshotRecord,
    SnapshotStatus,
)
from tenant_snapshot.backup.records import SnapshotCatalogStore
from tenant_snapshot.backup.restore import RestoreTransaction, inspect_archive
from tenant_snapshot.backup.selection import (
    DirectColumn,
    JoinThroughParent,
    PayloadSubstringMatch,
    TenantRowSelector,
    TenantSelection,
    Unscoped,
)

__all__ = [
    # Export / restore
    "ArchiveBuilder",
    "RestoreTransaction",
    "inspect_archive",
    "archive_filename",
    "sanitize_file_stem",
    # Bookkeeping
    "SnapshotCatalogStore",
    "SnapshotRecord",
    "SnapshotKind",
    "SnapshotStatus",
    "ExportOptions",
    "RestoreMode",
    "RestorePhase",
    "RestoreReport",
    # Manifest
    "FORMAT_VERSION",
    "Manifest",
    "ManifestCodec",
    "ManifestTable",
    "ManifestFiles",
    "ManifestFileEntry",
    "AppIdentity",
    # Tenant selection
    "TenantRowSelector",
    "TenantSelection",
    "DirectColumn",
    "PayloadSubstringMatch",
    "JoinThroughParent",
    "Unscoped",
]
