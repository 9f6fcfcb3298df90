"""Shared fixtures: temporary SQLite devices seeded with a field-ops schema."""

import json
import zipfile
from pathlib import Path

import pytest

from tenant_snapshot.adapters.sqlite import AsyncSqliteStore
from tenant_snapshot.config.models import (
    AppSettings,
    EngineConfig,
    ParentLink,
    PathSettings,
    StoreSettings,
    TenancySettings,
)
from tenant_snapshot.context import TenantContext

FIELDOPS_SCHEMA = [
    """
    CREATE TABLE tasks (
        id TEXT PRIMARY KEY,
        tenant_id TEXT NOT NULL,
        title TEXT NOT NULL,
        done INTEGER NOT NULL DEFAULT 0
    )
    """,
    """
    CREATE TABLE task_comments (
        id TEXT PRIMARY KEY,
        task_id TEXT NOT NULL REFERENCES tasks(id),
        body TEXT
    )
    """,
    """
    CREATE TABLE media_assets (
        id TEXT PRIMARY KEY,
        tenant_id TEXT NOT NULL,
        task_id TEXT,
        local_path TEXT,
        local_thumb_path TEXT,
        checksum BLOB
    )
    """,
    """
    CREATE TABLE operations_queue (
        id INTEGER PRIMARY KEY,
        payload TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE countries (
        code TEXT PRIMARY KEY,
        name TEXT NOT NULL
    )
    """,
    "CREATE INDEX idx_tasks_tenant ON tasks (tenant_id)",
    """
    CREATE TRIGGER trg_tasks_title AFTER UPDATE OF title ON tasks
    BEGIN
        UPDATE tasks SET done = 0 WHERE id = NEW.id;
    END
    """,
]


async def create_fieldops_schema(store: AsyncSqliteStore) -> None:
    for statement in FIELDOPS_SCHEMA:
        await store.execute(statement)


async def insert_rows(store: AsyncSqliteStore, table: str, rows: list[dict]) -> None:
    for row in rows:
        columns = list(row)
        await store.execute(
            f"INSERT INTO {table} ({', '.join(columns)}) "
            f"VALUES ({', '.join(':' + c for c in columns)})",
            row,
        )


async def seed_tenant(store: AsyncSqliteStore, tenant_id: str, tasks: int = 2) -> None:
    """Tasks, one comment per task and one queued operation for a tenant."""
    for i in range(tasks):
        task_id = f"{tenant_id}-task-{i}"
        await insert_rows(store, "tasks", [{"id": task_id, "tenant_id": tenant_id, "title": f"Task {i}"}])
        await insert_rows(
            store, "task_comments", [{"id": f"{task_id}-c", "task_id": task_id, "body": "ok"}]
        )
    await insert_rows(
        store,
        "operations_queue",
        [{"payload": json.dumps({"op": "sync", "tenantId": tenant_id})}],
    )


def make_config(db_path: Path, document_root: Path, **overrides) -> EngineConfig:
    document_root.mkdir(parents=True, exist_ok=True)
    values = {
        "store": StoreSettings(url=str(db_path)),
        "paths": PathSettings(document_root=document_root),
        "app": AppSettings(name="fieldops", version="3.2.0"),
        "tenancy": TenancySettings(
            parents=[ParentLink(table="task_comments", parent_table="tasks", parent_key="task_id")],
            unscoped=["countries"],
        ),
    }
    values.update(overrides)
    return EngineConfig(**values)


def rewrite_archive(source: Path, target: Path, replace: dict[str, bytes] | None = None,
                    drop: set[str] | None = None) -> Path:
    """Copy an archive, replacing or dropping members."""
    replace = replace or {}
    drop = drop or set()
    with zipfile.ZipFile(source) as src, zipfile.ZipFile(target, "w", zipfile.ZIP_DEFLATED) as dst:
        for name in src.namelist():
            if name in drop:
                continue
            dst.writestr(name, replace.get(name, src.read(name)))
        for name, data in replace.items():
            if name not in src.namelist():
                dst.writestr(name, data)
    return target


async def table_rows(store: AsyncSqliteStore, table: str, order_by: str = "rowid") -> list[dict]:
    return await store.query(f"SELECT * FROM {table} ORDER BY {order_by}")


# ------------------------------------------------------------------
# Fixtures
# ------------------------------------------------------------------


@pytest.fixture
def org1() -> TenantContext:
    return TenantContext.create("org-1", "user-7")


@pytest.fixture
async def store(tmp_path):
    """Device A: empty database file."""
    store = AsyncSqliteStore(str(tmp_path / "device_a.db"))
    yield store
    await store.close()


@pytest.fixture
async def seeded_store(store):
    """Device A seeded with org-1, org-2 and org-10 data."""
    await create_fieldops_schema(store)
    await insert_rows(store, "countries", [{"code": "FR", "name": "France"}])
    await seed_tenant(store, "org-1", tasks=3)
    await seed_tenant(store, "org-2", tasks=1)
    await seed_tenant(store, "org-10", tasks=1)
    return store


@pytest.fixture
def config(tmp_path) -> EngineConfig:
    return make_config(tmp_path / "device_a.db", tmp_path / "device_a")


@pytest.fixture
async def device_b(tmp_path):
    """Device B: a second, empty database with its own document root."""
    store = AsyncSqliteStore(str(tmp_path / "device_b.db"))
    config = make_config(tmp_path / "device_b.db", tmp_path / "device_b")
    yield store, config
    await store.close()
