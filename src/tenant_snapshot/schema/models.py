"""Pydantic models for captured schema.

``SchemaDump`` is the value object embedded verbatim into every archive as
``schema.json``:

    {"tables": [{"name", "sql"}], "indexes": [...], "triggers": [...]}
"""

import re

from pydantic import BaseModel, ConfigDict, Field, model_validator

# Engine bookkeeping table, never dumped, exported or wiped
BOOKKEEPING_TABLE = "snapshots"

_CREATE_PATTERNS = {
    "tables": re.compile(r"^\s*CREATE\s+TABLE\s", re.IGNORECASE),
    "indexes": re.compile(r"^\s*CREATE\s+(UNIQUE\s+)?INDEX\s", re.IGNORECASE),
    "triggers": re.compile(r"^\s*CREATE\s+(TEMP\s+|TEMPORARY\s+)?TRIGGER\s", re.IGNORECASE),
}


class SchemaObject(BaseModel):
    """One structural object and the statement that recreates it."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1)
    sql: str = Field(min_length=1)


class SchemaDump(BaseModel):
    """Tables, indexes and triggers captured at export time.

    Each group only accepts the matching ``CREATE`` statement kind, so a
    tampered archive cannot smuggle arbitrary SQL into schema replay.

    Example:
        >>> dump = SchemaDump(tables=[SchemaObject(name="t", sql="CREATE TABLE t (id TEXT)")])
        >>> [o.name for o in dump.tables]
        ['t']
    """

    model_config = ConfigDict(frozen=True)

    tables: tuple[SchemaObject, ...] = ()
    indexes: tuple[SchemaObject, ...] = ()
    triggers: tuple[SchemaObject, ...] = ()

    @model_validator(mode="after")
    def _check_statement_kinds(self) -> "SchemaDump":
        for group, pattern in _CREATE_PATTERNS.items():
            for obj in getattr(self, group):
                if not pattern.match(obj.sql):
                    raise ValueError(
                        f"{group} entry '{obj.name}' is not a matching CREATE statement"
                    )
        return self

    def statements(self) -> list[str]:
        """Creation statements in replay order: tables, indexes, triggers."""
        return [obj.sql for obj in (*self.tables, *self.indexes, *self.triggers)]

    def table_names(self) -> list[str]:
        return [obj.name for obj in self.tables]


class ReplayResult(BaseModel):
    """Outcome of a best-effort schema replay."""

    applied: list[str] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)
