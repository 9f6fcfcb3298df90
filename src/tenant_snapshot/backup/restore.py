"""Snapshot restore.

Replays an archive into the local store for the active tenant.  One
attempt moves through::

    VALIDATING -> SCHEMA_REPLAY -> [WIPING] -> DATA_APPLY -> [UNPACKING -> PATH_RELINK] -> DONE

- VALIDATING is the only phase that can fail with no side effect at all:
  manifest, tenant binding, app identity, schema dump, data members and
  media entries are all checked before anything is written.
- SCHEMA_REPLAY is best-effort and idempotent, outside any transaction.
- WIPING (REPLACE mode) runs in its own transaction, before and separate
  from the data transaction.  If DATA_APPLY then fails, the tenant's
  previous rows are already gone.
- DATA_APPLY is one atomic transaction: any row failure rolls back every
  table of the attempt.
- UNPACKING and PATH_RELINK run after commit; both are idempotent and
  safe to re-run by restoring the same archive again.

A failure stamps ``phase`` and ``store_consistent`` on the raised error.

Usage:
    restorer = RestoreTransaction(store, config)
    report = await restorer.restore(context, "snapshots/BACKUP_org-1_....zip", RestoreMode.REPLACE)
"""

import asyncio
import logging
from pathlib import Path

from pydantic import ValidationError as PydanticValidationError

from tenant_snapshot.adapters.base import LocalStore, StoreSession, quote_identifier
from tenant_snapshot.backup.archive import (
    MANIFEST_MEMBER,
    SCHEMA_MEMBER,
    ArchiveReader,
    data_member,
    file_member,
)
from tenant_snapshot.backup.manifest import Manifest, ManifestCodec
from tenant_snapshot.backup.media import MediaPaths, assert_safe_relative_path
from tenant_snapshot.backup.models import RestoreMode, RestorePhase, RestoreReport
from tenant_snapshot.backup.rows import RowValue, decode_rows
from tenant_snapshot.backup.selection import TenantRowSelector
from tenant_snapshot.config.models import EngineConfig
from tenant_snapshot.context import TenantContext
from tenant_snapshot.errors import (
    ArchiveIOError,
    DataApplyError,
    ManifestError,
    SnapshotError,
    TenantMismatchError,
    ValidationError,
)
from tenant_snapshot.schema.catalog import SchemaCatalog
from tenant_snapshot.schema.models import BOOKKEEPING_TABLE, SchemaDump

logger = logging.getLogger(__name__)

DEFER_FOREIGN_KEYS = "PRAGMA defer_foreign_keys = ON"


def read_manifest(archive: ArchiveReader) -> Manifest:
    """Decode and validate the manifest of an open archive.

    Raises:
        ManifestError: Missing or invalid manifest.
    """
    if not archive.has(MANIFEST_MEMBER):
        raise ManifestError("Invalid snapshot: manifest.json missing", path=MANIFEST_MEMBER)
    return ManifestCodec.decode(archive.read(MANIFEST_MEMBER))


async def inspect_archive(archive_path: str | Path) -> Manifest:
    """Return an archive's manifest without touching any store."""

    def _read() -> Manifest:
        with ArchiveReader(Path(archive_path)) as archive:
            return read_manifest(archive)

    return await asyncio.to_thread(_read)


class RestoreTransaction:
    """Restores snapshot archives into the local store.

    Args:
        store: Local store to restore into.
        config: Engine configuration (paths, app identity, tenancy, media).
    """

    def __init__(self, store: LocalStore, config: EngineConfig) -> None:
        self._store = store
        self._config = config
        self._catalog = SchemaCatalog(store)
        self._selector = TenantRowSelector(config.tenancy)
        self._media = MediaPaths(config.paths.document_root, config.media.relocatable_dirs)

    async def restore(
        self,
        context: TenantContext,
        archive_path: str | Path,
        mode: RestoreMode = RestoreMode.MERGE,
    ) -> RestoreReport:
        """Restore an archive for the active tenant.

        Args:
            context: Active tenant; must match the manifest's tenant.
            archive_path: Snapshot archive to restore.
            mode: ``REPLACE`` wipes the tenant's scoped rows first;
                ``MERGE`` inserts/overwrites without a wipe.

        Returns:
            ``RestoreReport`` describing each completed phase.

        Raises:
            ValidationError: Rejected before any local mutation.
            DataApplyError: Row apply failed; the data transaction was
                rolled back.
            ArchiveIOError: Archive unreadable, or media extraction failed.
            SnapshotError: Any other failure.  ``store_consistent`` tells
                whether the store is still in its pre-restore state.
        """
        mode = RestoreMode(mode)
        path = Path(archive_path)
        phase = RestorePhase.VALIDATING
        wiped = False
        report: RestoreReport | None = None

        logger.info(f"Restore of {path} for tenant {context.tenant_id} ({mode.value})")
        try:
            archive = await asyncio.to_thread(ArchiveReader, path)
            try:
                manifest, schema = await asyncio.to_thread(self._validate, archive, context)
                report = RestoreReport(
                    snapshot_id=manifest.snapshot_id, tenant_id=context.tenant_id, mode=mode
                )
                report.phases_completed.append(phase)

                phase = RestorePhase.SCHEMA_REPLAY
                replay = await self._catalog.replay(schema)
                report.schema_applied = replay.applied
                report.schema_skipped = replay.skipped
                report.phases_completed.append(phase)

                if mode == RestoreMode.REPLACE:
                    phase = RestorePhase.WIPING
                    report.tables_wiped = await self._wipe(context)
                    wiped = True
                    report.phases_completed.append(phase)

                phase = RestorePhase.DATA_APPLY
                report.rows_applied = await self._apply_data(archive, manifest, context)
                report.phases_completed.append(phase)

                if manifest.includes_media:
                    phase = RestorePhase.UNPACKING
                    report.files_written = await asyncio.to_thread(self._unpack_media, archive, manifest)
                    report.phases_completed.append(phase)

                    phase = RestorePhase.PATH_RELINK
                    report.paths_relinked = await self._relink_paths(context, manifest)
                    report.phases_completed.append(phase)
            finally:
                await asyncio.to_thread(archive.close)
        except Exception as e:
            error = e if isinstance(e, SnapshotError) else _wrap_restore_error(e)
            error.phase = phase.value
            error.store_consistent = _store_consistent(phase, wiped)
            logger.error(
                f"Restore of {path} failed during {phase.value} "
                f"(store consistent: {error.store_consistent}): {error}",
                exc_info=not isinstance(error, ValidationError),
            )
            if error is e:
                raise
            raise error from e

        report.phases_completed.append(RestorePhase.DONE)
        logger.info(
            f"Restore of snapshot {report.snapshot_id} done: "
            f"{sum(report.rows_applied.values())} rows, {len(report.files_written)} files"
        )
        return report

    # ------------------------------------------------------------------
    # VALIDATING
    # ------------------------------------------------------------------

    def _validate(self, archive: ArchiveReader, context: TenantContext) -> tuple[Manifest, SchemaDump]:
        manifest = read_manifest(archive)

        if manifest.tenant_id != context.tenant_id:
            raise TenantMismatchError(
                f"Snapshot belongs to tenant '{manifest.tenant_id}', "
                f"active tenant is '{context.tenant_id}'",
                field="tenant_id",
            )
        if manifest.app_identity.name != self._config.app.name:
            raise ManifestError(
                f"Snapshot was produced by '{manifest.app_identity.name}', "
                f"expected '{self._config.app.name}'",
                field="app_identity.name",
            )

        if not archive.has(SCHEMA_MEMBER):
            raise ValidationError("Invalid snapshot: schema.json missing", path=SCHEMA_MEMBER)
        try:
            schema = SchemaDump.model_validate_json(archive.read(SCHEMA_MEMBER))
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid schema dump: {e}", path=SCHEMA_MEMBER) from e

        for table in manifest.tables:
            if table.name == BOOKKEEPING_TABLE:
                raise ValidationError("Snapshot may not carry bookkeeping rows", table=table.name)
            if not archive.has(data_member(table.name)):
                raise ValidationError(
                    "Invalid snapshot: data file missing",
                    table=table.name,
                    path=data_member(table.name),
                )

        if manifest.includes_media and manifest.files is not None:
            for entry in manifest.files.entries:
                assert_safe_relative_path(entry.path)
                self._media.to_absolute(entry.path)
                member = file_member(entry.path)
                if not archive.has(member):
                    raise ValidationError("Invalid snapshot: media file missing", path=member)
                if archive.member_size(member) != entry.size_bytes:
                    raise ValidationError(
                        f"Media size mismatch ({archive.member_size(member)} != {entry.size_bytes})",
                        path=member,
                    )

        return manifest, schema

    # ------------------------------------------------------------------
    # WIPING
    # ------------------------------------------------------------------

    async def _wipe(self, context: TenantContext) -> list[str]:
        """Delete the tenant's scoped rows from every classified table.

        Every table is classified before the first delete runs.
        """
        plan = await self._selector.plan(self._catalog)
        wiped: list[str] = []
        async with self._store.transaction() as session:
            await session.execute(DEFER_FOREIGN_KEYS)
            for table in self._selector.wipe_order(plan):
                query = self._selector.build_delete_query(table, plan[table], context.tenant_id)
                if query is None:
                    continue
                sql, params = query
                await session.execute(sql, params)
                wiped.append(table)
        logger.info(f"Wiped tenant rows from {len(wiped)} tables")
        return wiped

    # ------------------------------------------------------------------
    # DATA_APPLY
    # ------------------------------------------------------------------

    async def _apply_data(
        self,
        archive: ArchiveReader,
        manifest: Manifest,
        context: TenantContext,
    ) -> dict[str, int]:
        applied: dict[str, int] = {}
        current: str | None = None
        try:
            async with self._store.transaction() as session:
                await session.execute(DEFER_FOREIGN_KEYS)
                for table in manifest.tables:
                    current = table.name
                    raw = await asyncio.to_thread(archive.read, data_member(table.name))
                    rows = decode_rows(raw, table.name)
                    if len(rows) != table.row_count:
                        raise DataApplyError(
                            f"Row count {len(rows)} != manifest row_count {table.row_count}",
                            table=table.name,
                        )
                    applied[table.name] = await self._insert_rows(session, table.name, rows, context)
                    logger.debug(f"Applied {applied[table.name]} rows to {table.name}")
        except SnapshotError:
            raise
        except Exception as e:
            raise DataApplyError(f"Row apply failed, transaction rolled back: {e}", table=current) from e
        return applied

    async def _insert_rows(
        self,
        session: StoreSession,
        table: str,
        rows: list[dict[str, RowValue]],
        context: TenantContext,
    ) -> int:
        columns = await _session_columns(session, table)
        if not columns:
            raise DataApplyError("Target table does not exist after schema replay", table=table)
        known = set(columns)
        tenant_column = self._selector.tenant_column(columns)

        for index, row in enumerate(rows):
            unknown = [col for col in row if col not in known]
            if unknown:
                raise DataApplyError(
                    f"Row {index} has columns unknown to the target table: {', '.join(unknown)}",
                    table=table,
                )
            if tenant_column is not None and row.get(tenant_column) != context.tenant_id:
                raise DataApplyError(
                    f"Row {index} belongs to tenant {row.get(tenant_column)!r}",
                    table=table,
                    field=tenant_column,
                )

            names = list(row)
            params = {f"c_{i}": row[name] for i, name in enumerate(names)}
            sql = (
                f"INSERT OR REPLACE INTO {quote_identifier(table)} "
                f"({', '.join(quote_identifier(n) for n in names)}) "
                f"VALUES ({', '.join(f':c_{i}' for i in range(len(names)))})"
            )
            await session.execute(sql, params)
        return len(rows)

    # ------------------------------------------------------------------
    # UNPACKING / PATH_RELINK
    # ------------------------------------------------------------------

    def _unpack_media(self, archive: ArchiveReader, manifest: Manifest) -> list[str]:
        if manifest.files is None:
            return []
        written: list[str] = []
        for entry in manifest.files.entries:
            relative = assert_safe_relative_path(entry.path)
            target = self._media.to_absolute(relative)
            archive.extract_file(file_member(relative), target, entry.sha256)
            written.append(relative)
        logger.info(f"Unpacked {len(written)} media files under {self._media.document_root}")
        return written

    async def _relink_paths(self, context: TenantContext, manifest: Manifest) -> int:
        """Rewrite file-path columns to this device's absolute paths.

        A foreign absolute path is matched against the archived file paths
        first, then against the relocatable directories.  Only the tenant's
        rows are touched.  Re-running is a no-op.
        """
        tables = [
            t.name for t in manifest.tables
            if t.name in self._config.media.columns
        ]
        if not tables:
            return 0

        archived = {entry.path for entry in manifest.files.entries} if manifest.files else set()
        plan = await self._selector.plan(self._catalog, tables)
        updated = 0
        async with self._store.transaction() as session:
            for table in tables:
                rendered = self._selector.build_filter(plan[table], context.tenant_id)
                if rendered is None:
                    continue
                where, params = rendered
                existing = set(await _session_columns(session, table))
                for column in self._config.media.columns[table]:
                    if column not in existing:
                        continue
                    col = quote_identifier(column)
                    values = await session.query(
                        f"SELECT DISTINCT {col} AS value FROM {quote_identifier(table)} "
                        f"WHERE {where} AND {col} IS NOT NULL AND {col} != ''",
                        params,
                    )
                    for row in values:
                        old = row["value"]
                        if not isinstance(old, str):
                            continue
                        relative = self._media.to_relative(old, archived)
                        if relative is None:
                            continue
                        new = str(self._media.to_absolute(relative))
                        if new == old:
                            continue
                        await session.execute(
                            f"UPDATE {quote_identifier(table)} SET {col} = :new_path "
                            f"WHERE {col} = :old_path AND {where}",
                            {**params, "new_path": new, "old_path": old},
                        )
                        updated += 1
        logger.info(f"Relinked {updated} media paths")
        return updated


async def _session_columns(session: StoreSession, table: str) -> list[str]:
    rows = await session.query(f"PRAGMA table_info({quote_identifier(table)})")
    return [str(row["name"]) for row in rows]


def _store_consistent(phase: RestorePhase, wiped: bool) -> bool:
    if phase in (RestorePhase.VALIDATING, RestorePhase.SCHEMA_REPLAY, RestorePhase.WIPING):
        return True
    if phase == RestorePhase.DATA_APPLY:
        return not wiped
    return False


def _wrap_restore_error(error: Exception) -> SnapshotError:
    if isinstance(error, OSError):
        filename = str(error.filename) if error.filename else None
        return ArchiveIOError(f"Restore I/O error: {error}", path=filename)
    return SnapshotError(f"Restore failed: {error}")
