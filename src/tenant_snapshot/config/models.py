"""Pydantic models for engine configuration (``snapshot.toml``)."""

from pathlib import Path

from pydantic import BaseModel, Field, field_validator


# ============================================================================
# Configuration Models
# ============================================================================


DEFAULT_MAX_MEDIA_BYTES = 350 * 1024 * 1024


class StoreSettings(BaseModel):
    """Local store connection."""

    url: str
    foreign_keys: bool = False


class PathSettings(BaseModel):
    """Device directories.

    ``backups_dir`` is resolved against ``document_root`` unless absolute.
    """

    document_root: Path
    backups_dir: Path = Path("snapshots")

    @property
    def resolved_backups_dir(self) -> Path:
        if self.backups_dir.is_absolute():
            return self.backups_dir
        return self.document_root / self.backups_dir


class LimitSettings(BaseModel):
    """Safety ceilings."""

    max_media_bytes: int = Field(default=DEFAULT_MAX_MEDIA_BYTES, gt=0)


class AppSettings(BaseModel):
    """Application identity written into every manifest."""

    name: str = "fieldops"
    version: str | None = None


class ParentLink(BaseModel):
    """Child table scoped through a tenant-scoped parent."""

    table: str
    parent_table: str
    parent_key: str              # FK column in the child table
    parent_pk: str = "id"        # referenced column in the parent table


class TenancySettings(BaseModel):
    """Table classification used to compute tenant selections."""

    tenant_columns: list[str] = Field(default_factory=lambda: ["tenant_id", "org_id"])
    payload_keys: list[str] = Field(
        default_factory=lambda: ["tenantId", "tenant_id", "orgId", "org_id"]
    )
    payload: dict[str, str] = Field(
        default_factory=lambda: {"operations_queue": "payload", "local_entities": "data"}
    )
    parents: list[ParentLink] = Field(default_factory=list)
    unscoped: list[str] = Field(default_factory=list)

    @field_validator("tenant_columns", "payload_keys")
    @classmethod
    def _not_empty(cls, value: list[str]) -> list[str]:
        if not value:
            raise ValueError("must list at least one name")
        return value


class MediaSettings(BaseModel):
    """Columns holding device-local file paths, per table."""

    columns: dict[str, list[str]] = Field(
        default_factory=lambda: {
            "media_assets": ["local_original_path", "local_path", "local_thumb_path"],
            "export_jobs": ["local_path"],
        }
    )
    relocatable_dirs: list[str] = Field(
        default_factory=lambda: ["media_pipeline", "exports_doe"]
    )


class EngineConfig(BaseModel):
    """Complete engine configuration from snapshot.toml."""

    store: StoreSettings
    paths: PathSettings
    limits: LimitSettings = Field(default_factory=LimitSettings)
    app: AppSettings = Field(default_factory=AppSettings)
    tenancy: TenancySettings = Field(default_factory=TenancySettings)
    media: MediaSettings = Field(default_factory=MediaSettings)
