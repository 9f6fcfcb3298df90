"""CLI for tenant snapshot export and restore.

Every command runs for one tenant, taken from ``--tenant`` or the
``SNAPSHOT_TENANT_ID`` environment variable.

Usage:
    SNAPSHOT_TENANT_ID=org-1 tenant-snapshot export --media
    tenant-snapshot --tenant org-1 list --limit 10
    tenant-snapshot --tenant org-1 restore snapshots/BACKUP_org-1_20240301_....zip --mode replace --yes
    tenant-snapshot --tenant org-1 delete 5f0c...
    tenant-snapshot inspect snapshots/BACKUP_org-1_20240301_....zip

Commands:
    export   - Export the tenant's data (and optionally media) to an archive
    restore  - Restore an archive in merge or replace mode
    list     - List the tenant's snapshots, most recent first
    delete   - Delete a snapshot record and its archive
    inspect  - Show an archive's manifest without touching the store
"""

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler
from rich.prompt import Confirm
from rich.table import Table

from tenant_snapshot.backup.models import RestoreMode
from tenant_snapshot.backup.records import DEFAULT_LIST_LIMIT
from tenant_snapshot.backup.restore import inspect_archive
from tenant_snapshot.config.loader import load_config
from tenant_snapshot.config.models import EngineConfig
from tenant_snapshot.context import TenantContext
from tenant_snapshot.errors import SnapshotError
from tenant_snapshot.factory import SnapshotEngine, open_engine

console = Console()

TENANT_ENV_VAR = "SNAPSHOT_TENANT_ID"


# ============================================================================
# Setup helpers
# ============================================================================


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def _load(args: argparse.Namespace) -> EngineConfig:
    config_path = Path(args.config) if args.config else None
    return load_config(config_path)


def _open(args: argparse.Namespace) -> SnapshotEngine:
    """Load config, resolve the tenant and open an engine.

    Raises:
        ContextMissingError: No tenant given and ``SNAPSHOT_TENANT_ID`` unset.
        FileNotFoundError: Config file missing.
        ValueError: Config file invalid.
    """
    tenant_id = args.tenant or os.environ.get(TENANT_ENV_VAR)
    context = TenantContext.create(tenant_id, args.user)
    return open_engine(_load(args), context)


def _format_size(size_bytes: int | None) -> str:
    if size_bytes is None:
        return ""
    size = float(size_bytes)
    for unit in ("B", "KB", "MB"):
        if size < 1024:
            return f"{size:.0f} {unit}" if unit == "B" else f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} GB"


# ============================================================================
# Async command implementations
# ============================================================================


async def _async_export(args: argparse.Namespace) -> int:
    """Async implementation for export command.

    Returns:
        0 on success, 1 on failure.
    """
    engine = _open(args)
    try:
        console.print(
            f"Exporting tenant [bold cyan]{engine.context.tenant_id}[/bold cyan]"
            f"{' with media' if args.media else ''}...",
            style="dim",
        )
        record = await engine.export(include_media=args.media)
    finally:
        await engine.close()

    console.print()
    console.print(f"[bold green]v[/bold green] Snapshot [bold]{record.id}[/bold] written")
    console.print(f"  Archive: {record.archive_path}")
    console.print(f"  Size: {_format_size(record.size_bytes)}")
    return 0


async def _async_restore(args: argparse.Namespace) -> int:
    """Async implementation for restore command.

    REPLACE mode deletes the tenant's existing rows, so it asks for
    confirmation unless ``--yes`` is given.

    Returns:
        0 on success, 1 on failure or when the user declines.
    """
    mode = RestoreMode(args.mode.upper())
    archive = Path(args.archive)

    engine = _open(args)
    try:
        if mode == RestoreMode.REPLACE and not args.yes:
            console.print(
                f"[yellow]Replace mode deletes every row of tenant "
                f"{engine.context.tenant_id} before restoring.[/yellow]"
            )
            if not Confirm.ask("Continue?", console=console, default=False):
                console.print("[dim]Restore cancelled.[/dim]")
                return 1

        report = await engine.restore(archive, mode)
    finally:
        await engine.close()

    table = Table(title=f"Restored snapshot {report.snapshot_id}", show_header=True, header_style="bold")
    table.add_column("Table")
    table.add_column("Rows", justify="right")
    for name, count in report.rows_applied.items():
        table.add_row(name, str(count))
    console.print(table)

    console.print(f"[bold green]v[/bold green] Restore complete ({report.mode.value.lower()})")
    if report.tables_wiped:
        console.print(f"  Tables wiped: {len(report.tables_wiped)}")
    if report.schema_skipped:
        console.print(f"  Schema statements skipped: [dim]{len(report.schema_skipped)}[/dim]")
    if report.files_written:
        console.print(f"  Media files written: {len(report.files_written)}")
        console.print(f"  Paths relinked: {report.paths_relinked}")
    return 0


async def _async_list(args: argparse.Namespace) -> int:
    """Async implementation for list command."""
    engine = _open(args)
    try:
        records = await engine.list_snapshots(limit=args.limit)
    finally:
        await engine.close()

    if not records:
        console.print(f"[yellow]No snapshots for tenant {engine.context.tenant_id}.[/yellow]")
        return 0

    table = Table(
        title=f"Snapshots for {engine.context.tenant_id}", show_header=True, header_style="bold"
    )
    table.add_column("ID")
    table.add_column("Created")
    table.add_column("Status")
    table.add_column("Media")
    table.add_column("Size", justify="right")

    status_styles = {"DONE": "green", "FAILED": "red", "RUNNING": "cyan", "PENDING": "dim"}
    for record in records:
        style = status_styles.get(record.status.value, "")
        table.add_row(
            record.id,
            record.created_at,
            f"[{style}]{record.status.value}[/{style}]",
            "yes" if record.includes_media else "",
            _format_size(record.size_bytes),
        )

    console.print(table)
    return 0


async def _async_delete(args: argparse.Namespace) -> int:
    """Async implementation for delete command."""
    engine = _open(args)
    try:
        deleted = await engine.delete_snapshot(args.snapshot_id)
    finally:
        await engine.close()

    if not deleted:
        console.print(f"[yellow]Snapshot {args.snapshot_id} not found.[/yellow]")
        return 1
    console.print(f"[bold green]v[/bold green] Snapshot {args.snapshot_id} deleted")
    return 0


async def _async_inspect(args: argparse.Namespace) -> int:
    """Async implementation for inspect command.

    Reads only the archive -- no config or store needed.
    """
    manifest = await inspect_archive(Path(args.archive))

    summary = Table(title="Snapshot Manifest", show_header=False)
    summary.add_column("Key", style="dim")
    summary.add_column("Value")
    summary.add_row("Snapshot", manifest.snapshot_id)
    summary.add_row("Tenant", f"[bold cyan]{manifest.tenant_id}[/bold cyan]")
    summary.add_row("Created", manifest.created_at)
    summary.add_row("Created by", manifest.created_by or "")
    app = manifest.app_identity
    summary.add_row("App", f"{app.name} {app.version}" if app.version else app.name)
    summary.add_row("Format version", str(manifest.format_version))
    summary.add_row("Media", "yes" if manifest.includes_media else "no")
    if manifest.files is not None:
        summary.add_row(
            "Files", f"{manifest.files.total_count} ({_format_size(manifest.files.total_bytes)})"
        )
    console.print(summary)

    tables = Table(show_header=True, header_style="bold")
    tables.add_column("Table")
    tables.add_column("Rows", justify="right")
    for table in manifest.tables:
        tables.add_row(table.name, str(table.row_count))
    console.print(tables)
    return 0


# ============================================================================
# Sync command wrappers
# ============================================================================


def _run(coro_fn, args: argparse.Namespace) -> int:
    """Run an async command, mapping engine and config errors to exit code 1."""
    try:
        return asyncio.run(coro_fn(args))
    except SnapshotError as e:
        console.print(f"\n[bold red]x[/bold red] {e}")
        if e.phase is not None:
            consistent = "unchanged" if e.store_consistent else "[red]partially modified[/red]"
            console.print(f"  Failed during [bold]{e.phase}[/bold]; local store {consistent}")
        return 1
    except (FileNotFoundError, ValueError) as e:
        console.print(f"\n[red]Error: {e}[/red]")
        return 1


def cmd_export(args: argparse.Namespace) -> int:
    """Export the tenant's data.  Wraps the async implementation."""
    return _run(_async_export, args)


def cmd_restore(args: argparse.Namespace) -> int:
    """Restore an archive.  Wraps the async implementation."""
    return _run(_async_restore, args)


def cmd_list(args: argparse.Namespace) -> int:
    """List the tenant's snapshots.  Wraps the async implementation."""
    return _run(_async_list, args)


def cmd_delete(args: argparse.Namespace) -> int:
    """Delete a snapshot.  Wraps the async implementation."""
    return _run(_async_delete, args)


def cmd_inspect(args: argparse.Namespace) -> int:
    """Show an archive's manifest.  Wraps the async implementation."""
    return _run(_async_inspect, args)


# ============================================================================
# Main entry point
# ============================================================================


def main() -> int:
    """Main CLI entry point.

    Returns:
        Exit code (0 for success, 1 for errors).
    """
    parser = argparse.ArgumentParser(
        prog="tenant-snapshot",
        description="Tenant-scoped snapshot and restore for local SQLite stores",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to snapshot.toml (default: ./snapshot.toml or $SNAPSHOT_CONFIG)",
    )
    parser.add_argument(
        "--tenant",
        default=None,
        help=f"Active tenant id (default: ${TENANT_ENV_VAR})",
    )
    parser.add_argument("--user", default=None, help="Acting user id")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    # export command
    p_export = subparsers.add_parser("export", help="Export the tenant's data to an archive")
    p_export.add_argument(
        "--media",
        action="store_true",
        help="Bundle media files referenced by the tenant's rows",
    )
    p_export.set_defaults(func=cmd_export)

    # restore command
    p_restore = subparsers.add_parser("restore", help="Restore an archive for the tenant")
    p_restore.add_argument("archive", help="Path to the snapshot archive")
    p_restore.add_argument(
        "--mode",
        choices=[m.value.lower() for m in RestoreMode],
        default=RestoreMode.MERGE.value.lower(),
        help="merge (default) keeps existing rows; replace wipes the tenant's rows first",
    )
    p_restore.add_argument(
        "--yes",
        "-y",
        action="store_true",
        help="Skip the replace-mode confirmation prompt",
    )
    p_restore.set_defaults(func=cmd_restore)

    # list command
    p_list = subparsers.add_parser("list", help="List the tenant's snapshots")
    p_list.add_argument(
        "--limit",
        type=int,
        default=DEFAULT_LIST_LIMIT,
        help=f"Maximum number of snapshots (default: {DEFAULT_LIST_LIMIT})",
    )
    p_list.set_defaults(func=cmd_list)

    # delete command
    p_delete = subparsers.add_parser("delete", help="Delete a snapshot and its archive")
    p_delete.add_argument("snapshot_id", help="Snapshot id")
    p_delete.set_defaults(func=cmd_delete)

    # inspect command
    p_inspect = subparsers.add_parser("inspect", help="Show an archive's manifest")
    p_inspect.add_argument("archive", help="Path to the snapshot archive")
    p_inspect.set_defaults(func=cmd_inspect)

    args = parser.parse_args()
    _configure_logging(args.verbose)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
