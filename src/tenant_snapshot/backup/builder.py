"""Snapshot export.

Builds one portable zip archive holding a tenant's local state: manifest,
schema dump, one data member per table and, on request, the media files
the tenant's rows point at.

The archive is written to ``<name>.zip.part`` and renamed into place only
once complete.  Any failure removes the partial file and leaves the
snapshot record FAILED; an oversized media bundle aborts before the
offending file is written.

Usage:
    builder = ArchiveBuilder(store, config)
    record = await builder.build(TenantContext.create("org-1"), ExportOptions(include_media=True))
    print(record.archive_path, record.size_bytes)
"""

import asyncio
import logging
import os
import re
import unicodedata
import uuid
from datetime import datetime, timezone
from pathlib import Path

from tenant_snapshot.adapters.base import LocalStore
from tenant_snapshot.backup.archive import (
    MANIFEST_MEMBER,
    SCHEMA_MEMBER,
    ArchiveWriter,
    data_member,
    file_member,
)
from tenant_snapshot.backup.manifest import (
    FORMAT_VERSION,
    AppIdentity,
    Manifest,
    ManifestCodec,
    ManifestFileEntry,
    ManifestFiles,
    ManifestTable,
)
from tenant_snapshot.backup.media import MediaPaths
from tenant_snapshot.backup.models import (
    ExportOptions,
    SnapshotKind,
    SnapshotRecord,
    SnapshotStatus,
)
from tenant_snapshot.backup.records import SnapshotCatalogStore
from tenant_snapshot.backup.rows import encode_rows
from tenant_snapshot.backup.selection import TenantRowSelector, Unscoped
from tenant_snapshot.config.models import EngineConfig
from tenant_snapshot.context import TenantContext
from tenant_snapshot.errors import ArchiveIOError, SnapshotError
from tenant_snapshot.schema.catalog import SchemaCatalog

logger = logging.getLogger(__name__)

ARCHIVE_PREFIX = "BACKUP"
PARTIAL_SUFFIX = ".part"
MAX_STEM_LENGTH = 48


def sanitize_file_stem(value: str) -> str:
    """Filesystem-safe stem: accents stripped, other symbols -> ``_``.

    Example:
        >>> sanitize_file_stem("Société Générale/2")
        'Societe_Generale_2'
    """
    decomposed = unicodedata.normalize("NFD", value)
    ascii_only = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    stem = re.sub(r"[^a-zA-Z0-9_-]+", "_", ascii_only).strip("_")[:MAX_STEM_LENGTH]
    return stem or "backup"


def archive_filename(tenant_id: str, created_at: datetime, snapshot_id: str) -> str:
    return (
        f"{ARCHIVE_PREFIX}_{sanitize_file_stem(tenant_id)}_"
        f"{created_at.strftime('%Y%m%d')}_{snapshot_id}.zip"
    )


class ArchiveBuilder:
    """Exports a tenant's local state into a snapshot archive.

    Args:
        store: Local store to read from.
        config: Engine configuration (paths, limits, tenancy, media).
    """

    def __init__(self, store: LocalStore, config: EngineConfig) -> None:
        self._store = store
        self._config = config
        self._catalog = SchemaCatalog(store)
        self._selector = TenantRowSelector(config.tenancy)
        self._media = MediaPaths(config.paths.document_root, config.media.relocatable_dirs)

    async def build(
        self,
        context: TenantContext,
        options: ExportOptions | None = None,
    ) -> SnapshotRecord:
        """Export the tenant's data into a new archive.

        Returns:
            The DONE ``SnapshotRecord``.

        Raises:
            NotImplementedError: For ``SnapshotKind.SERVER_SNAPSHOT``.
            SnapshotError: Any failure; the record is left FAILED and no
                archive file remains on disk.
        """
        options = options or ExportOptions()
        if options.kind != SnapshotKind.LOCAL_EXPORT:
            raise NotImplementedError("Server snapshots are not implemented")

        records = SnapshotCatalogStore(self._store, context)
        created = datetime.now(timezone.utc)
        try:
            record = await records.create(
                SnapshotRecord(
                    id=str(uuid.uuid4()),
                    tenant_id=context.tenant_id,
                    kind=options.kind,
                    created_at=created.isoformat(),
                    includes_media=options.include_media,
                )
            )
        except SnapshotError:
            raise
        except Exception as e:
            raise _wrap_export_error(e) from e

        backups_dir = self._config.paths.resolved_backups_dir
        final_path = backups_dir / archive_filename(context.tenant_id, created, record.id)
        partial_path = final_path.with_name(final_path.name + PARTIAL_SUFFIX)

        try:
            record = await records.patch(record.id, status=SnapshotStatus.RUNNING)
            logger.info(
                f"Snapshot {record.id} started for tenant {context.tenant_id} "
                f"(media={options.include_media})"
            )
            manifest = await self._write_archive(context, record, partial_path, options)
            os.replace(partial_path, final_path)
            size_bytes = final_path.stat().st_size
            done = await records.patch(
                record.id,
                status=SnapshotStatus.DONE,
                archive_path=str(final_path),
                size_bytes=size_bytes,
            )
        except asyncio.CancelledError:
            self._discard(partial_path, final_path)
            await self._mark_failed(records, record.id, "Snapshot export cancelled")
            raise
        except Exception as e:
            self._discard(partial_path, final_path)
            error = e if isinstance(e, SnapshotError) else _wrap_export_error(e)
            await self._mark_failed(records, record.id, str(error))
            logger.error(f"Snapshot {record.id} failed: {error}", exc_info=True)
            if error is e:
                raise
            raise error from e

        logger.info(
            f"Snapshot {record.id} done: {len(manifest.tables)} tables, "
            f"{size_bytes} bytes -> {final_path}"
        )
        return done

    # ------------------------------------------------------------------
    # Archive assembly
    # ------------------------------------------------------------------

    async def _write_archive(
        self,
        context: TenantContext,
        record: SnapshotRecord,
        partial_path: Path,
        options: ExportOptions,
    ) -> Manifest:
        schema = await self._catalog.dump()
        plan = await self._selector.plan(self._catalog)

        partial_path.parent.mkdir(parents=True, exist_ok=True)
        writer = await asyncio.to_thread(
            ArchiveWriter, partial_path, self._config.limits.max_media_bytes
        )
        try:
            await asyncio.to_thread(
                writer.write_bytes, SCHEMA_MEMBER, schema.model_dump_json(indent=2).encode("utf-8")
            )

            tables: list[ManifestTable] = []
            media_refs: list[str] = []
            for table, selection in plan.items():
                sql, params = self._selector.build_select_query(table, selection, context.tenant_id)
                rows = await self._store.query(sql, params)
                await asyncio.to_thread(writer.write_bytes, data_member(table), encode_rows(rows))
                tables.append(ManifestTable(name=table, row_count=len(rows)))
                if not isinstance(selection, Unscoped):
                    media_refs.extend(self._media_references(table, rows))
                logger.debug(f"Exported {len(rows)} rows from {table} ({selection.kind})")

            files = None
            if options.include_media:
                files = await self._bundle_media(writer, media_refs)

            manifest = Manifest(
                format_version=FORMAT_VERSION,
                snapshot_id=record.id,
                tenant_id=context.tenant_id,
                created_at=record.created_at,
                created_by=context.user_id,
                includes_media=options.include_media,
                app_identity=AppIdentity(
                    name=self._config.app.name, version=self._config.app.version
                ),
                tables=tables,
                files=files,
            )
            await asyncio.to_thread(writer.write_bytes, MANIFEST_MEMBER, ManifestCodec.encode(manifest))
        finally:
            await asyncio.to_thread(writer.close)
        return manifest

    def _media_references(self, table: str, rows: list[dict]) -> list[str]:
        columns = self._config.media.columns.get(table)
        if not columns:
            return []
        refs: list[str] = []
        for row in rows:
            for column in columns:
                value = row.get(column)
                if isinstance(value, str) and value:
                    refs.append(value)
        return refs

    async def _bundle_media(self, writer: ArchiveWriter, references: list[str]) -> ManifestFiles:
        """Stream referenced files into ``files/``.

        Paths with no device-relative form, and files missing or empty on
        disk, are skipped.
        """
        entries: list[ManifestFileEntry] = []
        seen: set[str] = set()
        for value in references:
            relative = self._media.to_relative(value)
            if relative is None:
                logger.debug(f"Media path not relocatable, skipped: {value}")
                continue
            if relative in seen:
                continue
            seen.add(relative)

            source = self._media.to_absolute(relative)
            size = source.stat().st_size if source.is_file() else 0
            if size <= 0:
                logger.warning(f"Media file missing or empty, skipped: {source}")
                continue

            written, sha256 = await asyncio.to_thread(
                writer.add_file, file_member(relative), source, size
            )
            entries.append(ManifestFileEntry(path=relative, size_bytes=written, sha256=sha256))

        total = sum(e.size_bytes for e in entries)
        logger.info(f"Bundled {len(entries)} media files ({total} bytes)")
        return ManifestFiles(total_count=len(entries), total_bytes=total, entries=entries)

    # ------------------------------------------------------------------
    # Failure handling
    # ------------------------------------------------------------------

    @staticmethod
    def _discard(*paths: Path) -> None:
        for path in paths:
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                logger.warning(f"Could not remove partial archive {path}: {e}")

    @staticmethod
    async def _mark_failed(records: SnapshotCatalogStore, snapshot_id: str, message: str) -> None:
        try:
            await records.patch(snapshot_id, status=SnapshotStatus.FAILED, last_error=message)
        except Exception as e:
            logger.error(f"Could not mark snapshot {snapshot_id} FAILED: {e}")


def _wrap_export_error(error: Exception) -> SnapshotError:
    if isinstance(error, OSError):
        filename = str(error.filename) if error.filename else None
        return ArchiveIOError(f"Snapshot export I/O error: {error}", path=filename)
    return SnapshotError(f"Snapshot export failed: {error}")
