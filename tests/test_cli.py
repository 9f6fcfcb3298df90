"""Tests for the tenant-snapshot CLI.

Commands run end to end against a temporary SQLite database and
``snapshot.toml``; only the interactive confirmation prompt is patched.
"""

import asyncio
import textwrap
from unittest.mock import patch

import pytest

from tenant_snapshot.adapters.sqlite import AsyncSqliteStore
from tenant_snapshot.backup.models import SnapshotStatus
from tenant_snapshot.backup.records import SnapshotCatalogStore
from tenant_snapshot.cli import main
from tenant_snapshot.context import TenantContext

from conftest import create_fieldops_schema, insert_rows, seed_tenant


def _run_cli(*argv: str) -> int:
    with patch("sys.argv", ["tenant-snapshot", *argv]):
        return main()


def _records(db_path, tenant_id: str = "org-1"):
    async def _list():
        store = AsyncSqliteStore(str(db_path))
        try:
            return await SnapshotCatalogStore(store, TenantContext.create(tenant_id)).list()
        finally:
            await store.close()

    return asyncio.run(_list())


def _count(db_path, sql: str) -> int:
    async def _query():
        store = AsyncSqliteStore(str(db_path))
        try:
            rows = await store.query(sql)
            return rows[0]["n"]
        finally:
            await store.close()

    return asyncio.run(_query())


@pytest.fixture
def cli_env(tmp_path, monkeypatch):
    """Seeded database plus snapshot.toml in the working directory."""
    db_path = tmp_path / "fieldops.db"

    async def _seed():
        store = AsyncSqliteStore(str(db_path))
        try:
            await create_fieldops_schema(store)
            await insert_rows(store, "countries", [{"code": "FR", "name": "France"}])
            await seed_tenant(store, "org-1", tasks=3)
            await seed_tenant(store, "org-2", tasks=1)
        finally:
            await store.close()

    asyncio.run(_seed())

    (tmp_path / "snapshot.toml").write_text(textwrap.dedent(f"""
        [store]
        url = "{db_path}"

        [paths]
        document_root = "docs"

        [tenancy]
        unscoped = ["countries"]

        [[tenancy.parents]]
        table = "task_comments"
        parent_table = "tasks"
        parent_key = "task_id"
    """))
    (tmp_path / "docs").mkdir()
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("SNAPSHOT_CONFIG", raising=False)
    monkeypatch.setenv("SNAPSHOT_TENANT_ID", "org-1")
    return db_path


class TestExportAndList:
    def test_export(self, cli_env, tmp_path):
        assert _run_cli("export") == 0

        records = _records(cli_env)
        assert len(records) == 1
        assert records[0].status == SnapshotStatus.DONE
        assert list((tmp_path / "docs" / "snapshots").glob("BACKUP_org-1_*.zip"))

    def test_tenant_flag_overrides_env(self, cli_env):
        assert _run_cli("--tenant", "org-2", "export") == 0
        assert len(_records(cli_env, "org-2")) == 1
        assert _records(cli_env, "org-1") == []

    def test_missing_tenant(self, cli_env, monkeypatch):
        monkeypatch.delenv("SNAPSHOT_TENANT_ID")
        assert _run_cli("export") == 1

    def test_list(self, cli_env, capsys):
        _run_cli("export")
        assert _run_cli("list", "--limit", "5") == 0
        assert "org-1" in capsys.readouterr().out

    def test_list_empty(self, cli_env, capsys):
        assert _run_cli("list") == 0
        assert "No snapshots" in capsys.readouterr().out

    def test_missing_config(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        monkeypatch.delenv("SNAPSHOT_CONFIG", raising=False)
        assert _run_cli("--tenant", "org-1", "list") == 1


class TestRestore:
    def test_replace_with_yes(self, cli_env):
        _run_cli("export")
        archive = _records(cli_env)[0].archive_path

        assert _run_cli("restore", archive, "--mode", "replace", "--yes") == 0
        assert _count(cli_env, "SELECT COUNT(*) AS n FROM tasks WHERE tenant_id = 'org-1'") == 3
        assert _count(cli_env, "SELECT COUNT(*) AS n FROM tasks WHERE tenant_id = 'org-2'") == 1

    def test_replace_declined(self, cli_env):
        _run_cli("export")
        archive = _records(cli_env)[0].archive_path

        with patch("tenant_snapshot.cli.Confirm.ask", return_value=False) as ask:
            assert _run_cli("restore", archive, "--mode", "replace") == 1
        ask.assert_called_once()

    def test_merge_needs_no_confirmation(self, cli_env):
        _run_cli("export")
        archive = _records(cli_env)[0].archive_path

        with patch("tenant_snapshot.cli.Confirm.ask") as ask:
            assert _run_cli("restore", archive) == 0
        ask.assert_not_called()

    def test_other_tenant_archive_rejected(self, cli_env, capsys):
        _run_cli("export")
        archive = _records(cli_env)[0].archive_path

        assert _run_cli("--tenant", "org-2", "restore", archive, "--yes") == 1
        out = capsys.readouterr().out
        assert "VALIDATING" in out

    def test_invalid_mode(self, cli_env):
        with pytest.raises(SystemExit):
            _run_cli("restore", "a.zip", "--mode", "overwrite")


class TestDeleteAndInspect:
    def test_delete(self, cli_env):
        _run_cli("export")
        record = _records(cli_env)[0]

        assert _run_cli("delete", record.id) == 0
        assert _records(cli_env) == []

    def test_delete_unknown(self, cli_env):
        assert _run_cli("delete", "nope") == 1

    def test_inspect(self, cli_env, capsys):
        _run_cli("export")
        archive = _records(cli_env)[0].archive_path
        capsys.readouterr()

        assert _run_cli("inspect", archive) == 0
        out = capsys.readouterr().out
        assert "org-1" in out
        assert "tasks" in out

    def test_inspect_bad_archive(self, cli_env, tmp_path):
        bogus = tmp_path / "bogus.zip"
        bogus.write_bytes(b"nope")
        assert _run_cli("inspect", str(bogus)) == 1
