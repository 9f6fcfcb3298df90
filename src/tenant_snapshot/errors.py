"""Typed errors raised by the snapshot engine.

Every public operation either completes or raises exactly one
``SnapshotError`` subclass.  The error carries enough context (table,
path, manifest field) to diagnose the failure without inspecting engine
internals.

The restore engine additionally stamps ``phase`` and ``store_consistent``
on the error before re-raising it, so callers can tell a clean rejection
(nothing was touched) from a failure after schema replay or the REPLACE
wipe (the local store may be inconsistent).

Usage:
    from tenant_snapshot.errors import SnapshotError, ValidationError

    try:
        await restorer.restore(path)
    except ValidationError as e:
        print(f"Rejected: {e}")
    except SnapshotError as e:
        if not e.store_consistent:
            print(f"Store may be inconsistent after {e.phase}")
"""


class SnapshotError(Exception):
    """Base class for all snapshot engine errors."""

    def __init__(
        self,
        message: str,
        *,
        table: str | None = None,
        path: str | None = None,
        field: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.table = table
        self.path = path
        self.field = field
        self.phase: str | None = None
        self.store_consistent: bool = True

    def __str__(self) -> str:
        context = []
        if self.table:
            context.append(f"table={self.table}")
        if self.path:
            context.append(f"path={self.path}")
        if self.field:
            context.append(f"field={self.field}")
        if not context:
            return self.message
        return f"{self.message} ({', '.join(context)})"


# ============================================================================
# Validation (raised before any local mutation)
# ============================================================================


class ValidationError(SnapshotError):
    """Bad or incompatible input.  Never retried automatically."""


class ManifestError(ValidationError):
    """Manifest missing, malformed, or failing strict validation."""


class TenantMismatchError(ValidationError):
    """Archive belongs to a different tenant than the active one."""


class UnsafePathError(ValidationError):
    """Archive-relative path escapes the media root."""


class UnclassifiedTableError(ValidationError):
    """Table has no tenant selection and is not allow-listed as unscoped."""


class ContextMissingError(ValidationError):
    """No active tenant in the context."""


class RecordNotFoundError(ValidationError):
    """Snapshot record does not exist for the active tenant."""


class InvalidTransitionError(ValidationError):
    """Snapshot record lifecycle violation (e.g. resurrecting a FAILED record)."""


# ============================================================================
# Runtime failures
# ============================================================================


class ArchiveIOError(SnapshotError):
    """Filesystem or archive read/write failure."""


class CapacityExceededError(SnapshotError):
    """Media bundle crossed the configured safety ceiling."""

    def __init__(self, message: str, *, total_bytes: int, limit_bytes: int, path: str | None = None) -> None:
        super().__init__(message, path=path)
        self.total_bytes = total_bytes
        self.limit_bytes = limit_bytes


class DataApplyError(SnapshotError):
    """Row insert failure during restore.  The data transaction was rolled back."""
