"""Schema introspection and replay.

Usage:
    from tenant_snapshot.schema import SchemaCatalog, SchemaDump
"""

from tenant_snapshot.schema.catalog import SchemaCatalog
from tenant_snapshot.schema.models import (
    BOOKKEEPING_TABLE,
    ReplayResult,
    SchemaDump,
    SchemaObject,
)

__all__ = [
    "SchemaCatalog",
    "SchemaDump",
    "SchemaObject",
    "ReplayResult",
    "BOOKKEEPING_TABLE",
]
