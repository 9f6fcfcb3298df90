"""Tests for snapshot.toml loading and config models."""

import textwrap

import pytest
from pydantic import ValidationError as PydanticValidationError

from tenant_snapshot.backup.media import MediaPaths
from tenant_snapshot.config.loader import load_config
from tenant_snapshot.config.models import (
    DEFAULT_MAX_MEDIA_BYTES,
    LimitSettings,
    MediaSettings,
    PathSettings,
    TenancySettings,
)


def _write(tmp_path, content: str):
    path = tmp_path / "snapshot.toml"
    path.write_text(textwrap.dedent(content))
    return path


class TestLoadConfig:
    def test_minimal_config_uses_defaults(self, tmp_path):
        path = _write(tmp_path, """
            [store]
            url = "sqlite:///fieldops.db"

            [paths]
            document_root = "/var/app/documents"
        """)
        config = load_config(path)

        assert config.store.url == "sqlite:///fieldops.db"
        assert config.store.foreign_keys is False
        assert config.limits.max_media_bytes == DEFAULT_MAX_MEDIA_BYTES == 350 * 1024 * 1024
        assert config.app.name == "fieldops"
        assert config.tenancy.tenant_columns == ["tenant_id", "org_id"]
        assert config.tenancy.payload == {"operations_queue": "payload", "local_entities": "data"}
        assert "media_assets" in config.media.columns
        assert str(config.paths.resolved_backups_dir) == "/var/app/documents/snapshots"

    def test_full_config(self, tmp_path):
        path = _write(tmp_path, """
            [store]
            url = "/data/app.db"
            foreign_keys = true

            [paths]
            document_root = "/data/docs"
            backups_dir = "/data/backups"

            [limits]
            max_media_bytes = 1048576

            [app]
            name = "fieldops"
            version = "3.2.0"

            [tenancy]
            tenant_columns = ["org_id"]
            unscoped = ["countries"]

            [tenancy.payload]
            outbox = "body"

            [[tenancy.parents]]
            table = "task_comments"
            parent_table = "tasks"
            parent_key = "task_id"

            [media]
            relocatable_dirs = ["media_pipeline"]

            [media.columns]
            media_assets = ["local_path"]
        """)
        config = load_config(path)

        assert config.store.foreign_keys is True
        assert config.limits.max_media_bytes == 1048576
        assert config.app.version == "3.2.0"
        assert config.tenancy.payload == {"outbox": "body"}
        assert config.tenancy.parents[0].parent_pk == "id"
        assert config.media.columns == {"media_assets": ["local_path"]}
        assert str(config.paths.resolved_backups_dir) == "/data/backups"

    def test_relative_document_root_anchored_at_config_dir(self, tmp_path):
        path = _write(tmp_path, """
            [store]
            url = "app.db"

            [paths]
            document_root = "docs"
        """)
        config = load_config(path)
        assert config.paths.document_root == tmp_path / "docs"

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError) as exc_info:
            load_config(tmp_path / "nope.toml")
        assert "SNAPSHOT_CONFIG" in str(exc_info.value)

    def test_env_var_fallback(self, tmp_path, monkeypatch):
        path = _write(tmp_path, """
            [store]
            url = "app.db"

            [paths]
            document_root = "/docs"
        """)
        workdir = tmp_path / "elsewhere"
        workdir.mkdir()
        monkeypatch.chdir(workdir)
        monkeypatch.setenv("SNAPSHOT_CONFIG", str(path))
        assert load_config().store.url == "app.db"

    def test_invalid_toml(self, tmp_path):
        path = _write(tmp_path, "[store\nurl = ")
        with pytest.raises(ValueError, match="Invalid TOML"):
            load_config(path)

    def test_invalid_values(self, tmp_path):
        path = _write(tmp_path, """
            [store]
            url = "app.db"

            [paths]
            document_root = "/docs"

            [limits]
            max_media_bytes = 0
        """)
        with pytest.raises(ValueError, match="Invalid snapshot config"):
            load_config(path)

    def test_missing_required_section(self, tmp_path):
        path = _write(tmp_path, """
            [paths]
            document_root = "/docs"
        """)
        with pytest.raises(ValueError):
            load_config(path)


class TestModels:
    def test_tenant_columns_cannot_be_empty(self):
        with pytest.raises(PydanticValidationError):
            TenancySettings(tenant_columns=[])

    def test_limit_must_be_positive(self):
        with pytest.raises(PydanticValidationError):
            LimitSettings(max_media_bytes=-1)

    def test_default_relocatable_dirs(self, tmp_path):
        media = MediaPaths(tmp_path, MediaSettings().relocatable_dirs)
        value = "/var/mobile/Containers/Data/XYZ/Documents/exports_doe/org-1/report.pdf"
        assert media.to_relative(value) == "exports_doe/org-1/report.pdf"

    def test_relative_backups_dir(self, tmp_path):
        paths = PathSettings(document_root=tmp_path, backups_dir="exports/snapshots")
        assert paths.resolved_backups_dir == tmp_path / "exports" / "snapshots"
