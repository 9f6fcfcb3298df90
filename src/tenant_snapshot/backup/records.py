"""Snapshot catalog: lifecycle bookkeeping for produced snapshots.

Every query is filtered by the active tenant -- there is no cross-tenant
listing, lookup or deletion.

Usage:
    records = SnapshotCatalogStore(store, TenantContext.create("org-1"))
    await records.ensure_schema()
    rec = await records.create(SnapshotRecord(id=..., tenant_id="org-1", created_at=...))
    rec = await records.patch(rec.id, status=SnapshotStatus.RUNNING)
    for rec in await records.list(limit=20):
        ...
    await records.delete(rec.id)   # also removes the archive file
"""

import logging
from pathlib import Path
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from tenant_snapshot.adapters.base import LocalStore, quote_identifier
from tenant_snapshot.backup.models import (
    ALLOWED_TRANSITIONS,
    SnapshotRecord,
    SnapshotStatus,
)
from tenant_snapshot.context import TenantContext
from tenant_snapshot.errors import (
    ArchiveIOError,
    InvalidTransitionError,
    RecordNotFoundError,
    ValidationError,
)
from tenant_snapshot.schema.models import BOOKKEEPING_TABLE

logger = logging.getLogger(__name__)

DEFAULT_LIST_LIMIT = 50

_TABLE = quote_identifier(BOOKKEEPING_TABLE)

_COLUMNS = (
    "id",
    "tenant_id",
    "kind",
    "status",
    "created_at",
    "archive_path",
    "size_bytes",
    "includes_media",
    "last_error",
)

_IMMUTABLE_FIELDS = frozenset({"id", "tenant_id", "created_at", "kind"})

SCHEMA_STATEMENTS = (
    f"""
    CREATE TABLE IF NOT EXISTS {_TABLE} (
        id TEXT PRIMARY KEY NOT NULL,
        tenant_id TEXT NOT NULL,
        kind TEXT NOT NULL CHECK (kind IN ('LOCAL_EXPORT', 'SERVER_SNAPSHOT')),
        status TEXT NOT NULL CHECK (status IN ('PENDING', 'RUNNING', 'DONE', 'FAILED')),
        created_at TEXT NOT NULL,
        archive_path TEXT,
        size_bytes INTEGER,
        includes_media INTEGER NOT NULL DEFAULT 0,
        last_error TEXT
    )
    """,
    f"""
    CREATE INDEX IF NOT EXISTS idx_snapshots_tenant_created
        ON {_TABLE} (tenant_id, created_at DESC)
    """,
)


def _row_to_record(row: dict) -> SnapshotRecord:
    return SnapshotRecord(
        id=str(row["id"]),
        tenant_id=str(row["tenant_id"]),
        kind=row["kind"],
        status=row["status"],
        created_at=str(row["created_at"]),
        archive_path=row["archive_path"] or None,
        size_bytes=row["size_bytes"],
        includes_media=bool(row["includes_media"]),
        last_error=row["last_error"] or None,
    )


def _record_params(record: SnapshotRecord) -> dict[str, Any]:
    return {
        "id": record.id,
        "tenant_id": record.tenant_id,
        "kind": record.kind.value,
        "status": record.status.value,
        "created_at": record.created_at,
        "archive_path": record.archive_path,
        "size_bytes": record.size_bytes,
        "includes_media": 1 if record.includes_media else 0,
        "last_error": record.last_error,
    }


class SnapshotCatalogStore:
    """Tenant-scoped CRUD over ``SnapshotRecord`` rows."""

    def __init__(self, store: LocalStore, context: TenantContext) -> None:
        self._store = store
        self._context = context
        self._schema_ready = False

    @property
    def tenant_id(self) -> str:
        return self._context.tenant_id

    async def ensure_schema(self) -> None:
        """Create the bookkeeping table if needed (idempotent)."""
        if self._schema_ready:
            return
        for statement in SCHEMA_STATEMENTS:
            await self._store.execute(statement)
        self._schema_ready = True

    async def create(self, record: SnapshotRecord) -> SnapshotRecord:
        """Insert a new record for the active tenant.

        Raises:
            ValidationError: If the record names another tenant.
        """
        await self.ensure_schema()
        if record.tenant_id != self.tenant_id:
            raise ValidationError(
                f"Cannot create snapshot record for tenant '{record.tenant_id}'",
                field="tenant_id",
            )

        placeholders = ", ".join(f":{col}" for col in _COLUMNS)
        await self._store.execute(
            f"INSERT INTO {_TABLE} ({', '.join(_COLUMNS)}) VALUES ({placeholders})",
            _record_params(record),
        )
        logger.debug(f"Snapshot {record.id} created ({record.status.value})")
        return record

    async def patch(self, snapshot_id: str, **fields: Any) -> SnapshotRecord:
        """Update mutable fields of a record, enforcing the lifecycle.

        Raises:
            RecordNotFoundError: No such record for the active tenant.
            InvalidTransitionError: Illegal status move, immutable field, or
                a terminal state missing its required fields.
        """
        current = await self.get_by_id(snapshot_id)
        if current is None:
            raise RecordNotFoundError("Snapshot not found", field="id", path=snapshot_id)

        immutable = _IMMUTABLE_FIELDS & fields.keys()
        if immutable:
            raise InvalidTransitionError(
                f"Immutable snapshot fields: {', '.join(sorted(immutable))}"
            )

        new_status = SnapshotStatus(fields.get("status", current.status))
        if new_status not in ALLOWED_TRANSITIONS[current.status]:
            raise InvalidTransitionError(
                f"Snapshot {snapshot_id}: {current.status.value} -> {new_status.value} not allowed",
                field="status",
            )

        try:
            updated = SnapshotRecord(**{**current.model_dump(), **fields})
        except PydanticValidationError as e:
            raise InvalidTransitionError(f"Invalid snapshot patch: {e}") from e

        params = _record_params(updated)
        assignments = ", ".join(f"{col} = :{col}" for col in _COLUMNS if col != "id")
        await self._store.execute(
            f"UPDATE {_TABLE} SET {assignments} WHERE id = :id AND tenant_id = :tenant_id",
            params,
        )
        logger.debug(f"Snapshot {snapshot_id}: {current.status.value} -> {updated.status.value}")
        return updated

    async def get_by_id(self, snapshot_id: str) -> SnapshotRecord | None:
        await self.ensure_schema()
        rows = await self._store.query(
            f"SELECT * FROM {_TABLE} WHERE id = :id AND tenant_id = :tenant_id LIMIT 1",
            {"id": snapshot_id, "tenant_id": self.tenant_id},
        )
        return _row_to_record(rows[0]) if rows else None

    async def list(self, limit: int = DEFAULT_LIST_LIMIT) -> list[SnapshotRecord]:
        """Most recent records first."""
        await self.ensure_schema()
        if limit <= 0:
            raise ValidationError("limit must be positive", field="limit")
        rows = await self._store.query(
            f"""
            SELECT * FROM {_TABLE}
            WHERE tenant_id = :tenant_id
            ORDER BY created_at DESC
            LIMIT :limit
            """,
            {"tenant_id": self.tenant_id, "limit": limit},
        )
        return [_row_to_record(row) for row in rows]

    async def delete(self, snapshot_id: str) -> bool:
        """Delete a record and its archive file.

        A missing archive file is tolerated.

        Returns:
            ``False`` if the record did not exist for the active tenant.

        Raises:
            ArchiveIOError: If the archive exists but cannot be removed.
        """
        record = await self.get_by_id(snapshot_id)
        if record is None:
            return False

        if record.archive_path:
            try:
                Path(record.archive_path).unlink(missing_ok=True)
            except OSError as e:
                raise ArchiveIOError(
                    f"Cannot delete snapshot archive: {e}", path=record.archive_path
                ) from e

        await self._store.execute(
            f"DELETE FROM {_TABLE} WHERE id = :id AND tenant_id = :tenant_id",
            {"id": snapshot_id, "tenant_id": self.tenant_id},
        )
        logger.info(f"Snapshot {snapshot_id} deleted")
        return True
