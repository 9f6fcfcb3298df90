"""Tests for row encoding, media path handling, archive I/O and tenant context."""

import hashlib
from decimal import Decimal
from pathlib import Path

import pytest

from tenant_snapshot.backup.archive import ArchiveReader, ArchiveWriter
from tenant_snapshot.backup.media import MediaPaths, assert_safe_relative_path
from tenant_snapshot.backup.rows import decode_rows, encode_rows
from tenant_snapshot.context import TenantContext
from tenant_snapshot.errors import (
    ArchiveIOError,
    CapacityExceededError,
    ContextMissingError,
    DataApplyError,
    SnapshotError,
    UnsafePathError,
)


# ------------------------------------------------------------------
# Rows
# ------------------------------------------------------------------


class TestRows:
    def test_value_union_survives(self):
        rows = [{"id": 1, "title": "Tâche", "ratio": 0.5, "note": None, "blob": b"\x00\xff"}]
        assert decode_rows(encode_rows(rows), "t") == rows

    def test_unsupported_value_type(self):
        with pytest.raises(TypeError):
            encode_rows([{"amount": Decimal("1.5")}])

    def test_nested_value_rejected(self):
        with pytest.raises(DataApplyError) as exc_info:
            decode_rows(b'[{"id": 1, "tags": ["a"]}]', "tasks")
        assert exc_info.value.table == "tasks"

    def test_invalid_blob(self):
        with pytest.raises(DataApplyError):
            decode_rows(b'[{"b": {"$blob": "***"}}]', "t")

    def test_not_an_array(self):
        with pytest.raises(DataApplyError):
            decode_rows(b'{"id": 1}', "t")

    def test_empty_row_rejected(self):
        with pytest.raises(DataApplyError):
            decode_rows(b"[{}]", "t")

    def test_invalid_json(self):
        with pytest.raises(DataApplyError):
            decode_rows(b"[", "t")


# ------------------------------------------------------------------
# Media paths
# ------------------------------------------------------------------


class TestSafeRelativePath:
    @pytest.mark.parametrize(
        "path",
        [
            "",
            "../etc/passwd",
            "media_pipeline/../../x",
            "/etc/passwd",
            "C:/Windows/x",
            "file:///etc/passwd",
            "media\\x.jpg",
            "a\x00b",
        ],
    )
    def test_rejects(self, path):
        with pytest.raises(UnsafePathError):
            assert_safe_relative_path(path)

    def test_accepts_nested_relative(self):
        assert assert_safe_relative_path("media_pipeline/org-1/a.jpg") == "media_pipeline/org-1/a.jpg"


class TestMediaPaths:
    @pytest.fixture
    def media(self, tmp_path) -> MediaPaths:
        return MediaPaths(tmp_path / "docs", ["media_pipeline", "exports"])

    def test_absolute_under_root(self, media, tmp_path):
        value = str(tmp_path / "docs" / "media_pipeline" / "a.jpg")
        assert media.to_relative(value) == "media_pipeline/a.jpg"

    def test_file_uri(self, media, tmp_path):
        value = "file://" + str(tmp_path / "docs" / "exports" / "r.pdf")
        assert media.to_relative(value) == "exports/r.pdf"

    def test_foreign_device_path_cut_at_relocatable_dir(self, media):
        value = "/var/mobile/Containers/Data/ABC/Documents/media_pipeline/org-1/a.jpg"
        assert media.to_relative(value) == "media_pipeline/org-1/a.jpg"

    def test_unrelated_absolute_path(self, media):
        assert media.to_relative("/usr/share/pic.jpg") is None

    def test_foreign_device_path_matched_to_archived_file(self, media):
        value = "/home/a/device_a/docs/photos/p.jpg"
        assert media.to_relative(value) is None
        assert media.to_relative(value, {"photos/p.jpg", "p.jpg"}) == "photos/p.jpg"

    def test_archived_match_needs_a_path_boundary(self, media):
        assert media.to_relative("/a/oldphotos/p.jpg", {"photos/p.jpg"}) is None

    def test_relative_value_kept(self, media):
        assert media.to_relative("media_pipeline/a.jpg") == "media_pipeline/a.jpg"

    def test_unsafe_relative_value(self, media):
        assert media.to_relative("../a.jpg") is None

    def test_to_absolute(self, media, tmp_path):
        assert media.to_absolute("media_pipeline/a.jpg") == tmp_path / "docs" / "media_pipeline" / "a.jpg"

    def test_to_absolute_refuses_symlink_escape(self, media, tmp_path):
        (tmp_path / "docs").mkdir()
        (tmp_path / "outside").mkdir()
        (tmp_path / "docs" / "link").symlink_to(tmp_path / "outside")
        with pytest.raises(UnsafePathError):
            media.to_absolute("link/a.jpg")


# ------------------------------------------------------------------
# Archive I/O
# ------------------------------------------------------------------


class TestArchive:
    def test_add_file_returns_size_and_digest(self, tmp_path):
        source = tmp_path / "a.bin"
        source.write_bytes(b"x" * 5000)
        writer = ArchiveWriter(tmp_path / "out.zip", max_media_bytes=10_000)
        written, digest = writer.add_file("files/a.bin", source, 5000)
        writer.close()

        assert written == 5000
        assert digest == hashlib.sha256(b"x" * 5000).hexdigest()
        with ArchiveReader(tmp_path / "out.zip") as reader:
            assert reader.member_size("files/a.bin") == 5000

    def test_capacity_is_cumulative(self, tmp_path):
        source = tmp_path / "a.bin"
        source.write_bytes(b"x" * 600)
        writer = ArchiveWriter(tmp_path / "out.zip", max_media_bytes=1000)
        writer.add_file("files/1.bin", source, 600)
        with pytest.raises(CapacityExceededError) as exc_info:
            writer.add_file("files/2.bin", source, 600)
        writer.close()
        assert exc_info.value.total_bytes == 1200
        assert exc_info.value.path == "files/2.bin"

    def test_capacity_checked_while_streaming(self, tmp_path):
        source = tmp_path / "a.bin"
        source.write_bytes(b"x" * 2000)
        writer = ArchiveWriter(tmp_path / "out.zip", max_media_bytes=1000)
        with pytest.raises(CapacityExceededError):
            writer.add_file("files/a.bin", source, 10)
        writer.close()

    def test_extract_verifies_digest(self, tmp_path):
        writer = ArchiveWriter(tmp_path / "out.zip", max_media_bytes=1000)
        writer.write_bytes("files/a.txt", b"hello")
        writer.close()

        target = tmp_path / "restored" / "a.txt"
        with ArchiveReader(tmp_path / "out.zip") as reader:
            with pytest.raises(ArchiveIOError):
                reader.extract_file("files/a.txt", target, "0" * 64)
            assert not target.exists()
            assert not Path(str(target) + ".part").exists()

            written = reader.extract_file(
                "files/a.txt", target, hashlib.sha256(b"hello").hexdigest()
            )
        assert written == 5
        assert target.read_bytes() == b"hello"

    def test_read_missing_member(self, tmp_path):
        writer = ArchiveWriter(tmp_path / "out.zip", max_media_bytes=1)
        writer.close()
        with ArchiveReader(tmp_path / "out.zip") as reader:
            assert not reader.has("manifest.json")
            with pytest.raises(ArchiveIOError):
                reader.read("manifest.json")


# ------------------------------------------------------------------
# Context and errors
# ------------------------------------------------------------------


class TestTenantContext:
    def test_trims(self):
        ctx = TenantContext.create("  org-1 ", " ")
        assert ctx.tenant_id == "org-1"
        assert ctx.user_id is None

    @pytest.mark.parametrize("tenant_id", [None, "", "   "])
    def test_missing_tenant(self, tenant_id):
        with pytest.raises(ContextMissingError):
            TenantContext.create(tenant_id)


class TestErrors:
    def test_str_includes_context(self):
        error = DataApplyError("Row apply failed", table="tasks", field="tenant_id")
        assert str(error) == "Row apply failed (table=tasks, field=tenant_id)"

    def test_defaults(self):
        error = SnapshotError("boom")
        assert error.phase is None
        assert error.store_consistent is True
        assert str(error) == "boom"
