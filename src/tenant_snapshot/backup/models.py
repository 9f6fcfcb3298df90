"""Snapshot record and restore models.

``SnapshotRecord`` tracks one produced or attempted snapshot through its
lifecycle::

    PENDING -> RUNNING -> DONE | FAILED

DONE and FAILED are terminal.  A DONE record always has ``archive_path``
and ``size_bytes``; a FAILED record always has ``last_error``.
"""

from enum import Enum

from pydantic import BaseModel, Field, model_validator


class SnapshotKind(str, Enum):
    LOCAL_EXPORT = "LOCAL_EXPORT"
    SERVER_SNAPSHOT = "SERVER_SNAPSHOT"  # reserved


class SnapshotStatus(str, Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    DONE = "DONE"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (SnapshotStatus.DONE, SnapshotStatus.FAILED)


# Allowed lifecycle moves (same-status patches allowed for non-terminal states)
ALLOWED_TRANSITIONS: dict[SnapshotStatus, set[SnapshotStatus]] = {
    SnapshotStatus.PENDING: {SnapshotStatus.PENDING, SnapshotStatus.RUNNING, SnapshotStatus.FAILED},
    SnapshotStatus.RUNNING: {SnapshotStatus.RUNNING, SnapshotStatus.DONE, SnapshotStatus.FAILED},
    SnapshotStatus.DONE: set(),
    SnapshotStatus.FAILED: set(),
}


class SnapshotRecord(BaseModel):
    """One row of the snapshot catalog.

    Example:
        >>> rec = SnapshotRecord(id="s1", tenant_id="org-1", created_at="2026-01-01T00:00:00+00:00")
        >>> rec.status
        <SnapshotStatus.PENDING: 'PENDING'>
    """

    id: str
    tenant_id: str
    kind: SnapshotKind = SnapshotKind.LOCAL_EXPORT
    status: SnapshotStatus = SnapshotStatus.PENDING
    created_at: str
    archive_path: str | None = None
    size_bytes: int | None = Field(default=None, ge=0)
    includes_media: bool = False
    last_error: str | None = None

    @model_validator(mode="after")
    def _check_terminal_fields(self) -> "SnapshotRecord":
        if self.status == SnapshotStatus.DONE and (
            self.archive_path is None or self.size_bytes is None
        ):
            raise ValueError("DONE snapshot requires archive_path and size_bytes")
        if self.status == SnapshotStatus.FAILED and not self.last_error:
            raise ValueError("FAILED snapshot requires last_error")
        return self


class ExportOptions(BaseModel):
    """Options for ``ArchiveBuilder.build``."""

    include_media: bool = False
    kind: SnapshotKind = SnapshotKind.LOCAL_EXPORT


# ============================================================================
# Restore
# ============================================================================


class RestoreMode(str, Enum):
    REPLACE = "REPLACE"
    MERGE = "MERGE"


class RestorePhase(str, Enum):
    VALIDATING = "VALIDATING"
    SCHEMA_REPLAY = "SCHEMA_REPLAY"
    WIPING = "WIPING"
    DATA_APPLY = "DATA_APPLY"
    UNPACKING = "UNPACKING"
    PATH_RELINK = "PATH_RELINK"
    DONE = "DONE"


class RestoreReport(BaseModel):
    """What a restore attempt did, phase by phase."""

    snapshot_id: str
    tenant_id: str
    mode: RestoreMode
    phases_completed: list[RestorePhase] = Field(default_factory=list)
    schema_applied: list[str] = Field(default_factory=list)
    schema_skipped: list[str] = Field(default_factory=list)
    tables_wiped: list[str] = Field(default_factory=list)
    rows_applied: dict[str, int] = Field(default_factory=dict)
    files_written: list[str] = Field(default_factory=list)
    paths_relinked: int = 0
