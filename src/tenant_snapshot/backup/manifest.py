"""Archive manifest models and codec.

The manifest is the archive's self-description and the single most
important correctness gate of a restore: every later step trusts the
decoded ``tenant_id`` and ``format_version``.  Decoding is strict -- a
manifest with a missing or mistyped field is rejected as a whole, never
partially accepted.

Usage:
    from tenant_snapshot.backup.manifest import ManifestCodec

    raw = ManifestCodec.encode(manifest)
    manifest = ManifestCodec.decode(raw)   # raises ManifestError
"""

import json
import re
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from tenant_snapshot.errors import ManifestError

FORMAT_VERSION = 1
SUPPORTED_FORMAT_VERSIONS = frozenset({FORMAT_VERSION})

_SHA256_RE = re.compile(r"^[0-9a-f]{64}$")


class _StrictModel(BaseModel):
    model_config = ConfigDict(strict=True, frozen=True)


class AppIdentity(_StrictModel):
    name: str = Field(min_length=1)
    version: str | None = None


class ManifestTable(_StrictModel):
    name: str = Field(min_length=1)
    row_count: int = Field(ge=0)

    @field_validator("name")
    @classmethod
    def _plain_name(cls, value: str) -> str:
        # Table names become archive member names (data/<name>.json)
        if "/" in value or "\\" in value or "\x00" in value or value in (".", ".."):
            raise ValueError(f"invalid table name: {value!r}")
        return value


class ManifestFileEntry(_StrictModel):
    path: str = Field(min_length=1)
    size_bytes: int = Field(ge=0)
    sha256: str | None = None

    @field_validator("sha256")
    @classmethod
    def _hex_digest(cls, value: str | None) -> str | None:
        if value is not None and not _SHA256_RE.match(value):
            raise ValueError("sha256 must be 64 lowercase hex characters")
        return value


class ManifestFiles(_StrictModel):
    total_count: int = Field(ge=0)
    total_bytes: int = Field(ge=0)
    entries: list[ManifestFileEntry] = Field(default_factory=list)

    @model_validator(mode="after")
    def _totals_match(self) -> "ManifestFiles":
        if self.total_count != len(self.entries):
            raise ValueError(
                f"total_count {self.total_count} != {len(self.entries)} entries"
            )
        entry_bytes = sum(e.size_bytes for e in self.entries)
        if self.total_bytes != entry_bytes:
            raise ValueError(f"total_bytes {self.total_bytes} != sum of entries {entry_bytes}")
        return self


class Manifest(_StrictModel):
    """Archive self-description (``manifest.json``)."""

    format_version: Literal[1]
    snapshot_id: str = Field(min_length=1)
    tenant_id: str = Field(min_length=1)
    created_at: str = Field(min_length=10)
    created_by: str | None = None
    includes_media: bool
    app_identity: AppIdentity
    tables: list[ManifestTable] = Field(default_factory=list)
    files: ManifestFiles | None = None

    @model_validator(mode="after")
    def _consistent(self) -> "Manifest":
        names = [t.name for t in self.tables]
        if len(names) != len(set(names)):
            raise ValueError("duplicate table names in tables")
        if self.files is not None and not self.includes_media:
            raise ValueError("files present but includes_media is false")
        if self.files is not None:
            paths = [e.path for e in self.files.entries]
            if len(paths) != len(set(paths)):
                raise ValueError("duplicate paths in files.entries")
        return self

    def table_row_counts(self) -> dict[str, int]:
        return {t.name: t.row_count for t in self.tables}


class ManifestCodec:
    """Canonical JSON encoding and strict decoding of ``Manifest``."""

    @staticmethod
    def encode(manifest: Manifest) -> bytes:
        """Canonical JSON: sorted keys, compact separators, UTF-8, no nulls."""
        payload = manifest.model_dump(mode="json", exclude_none=True)
        return json.dumps(
            payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False
        ).encode("utf-8")

    @staticmethod
    def decode(data: bytes) -> Manifest:
        """Parse and strictly validate a manifest.

        Raises:
            ManifestError: Invalid JSON, unsupported ``format_version``, or
                any field failing validation.  ``field`` names the first
                offending location.
        """
        try:
            obj = json.loads(data.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ManifestError(f"Invalid snapshot manifest: {e}") from e

        if not isinstance(obj, dict):
            raise ManifestError("Invalid snapshot manifest: expected a JSON object")

        version = obj.get("format_version")
        if type(version) is not int or version not in SUPPORTED_FORMAT_VERSIONS:
            raise ManifestError(
                f"Incompatible snapshot (format_version={version!r}, "
                f"supported={sorted(SUPPORTED_FORMAT_VERSIONS)})",
                field="format_version",
            )

        try:
            return Manifest.model_validate_json(data)
        except PydanticValidationError as e:
            errors = e.errors()
            first = ".".join(str(part) for part in errors[0]["loc"]) if errors else None
            details = "; ".join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in errors
            )
            raise ManifestError(f"Invalid snapshot manifest: {details}", field=first) from e
