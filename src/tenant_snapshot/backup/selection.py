"""Tenant row selection.

Decides, per table, how to select or delete only the rows that belong to
one tenant.  Every table touched by export or by the REPLACE wipe must
resolve to a ``TenantSelection`` before any row is read or deleted; a table
that cannot be classified raises ``UnclassifiedTableError`` instead of
being guessed at.

Decision procedure (first match wins):

1. The table has a tenant column -> ``DirectColumn``.
2. The table is registered as a payload table and has its payload column
   -> ``PayloadSubstringMatch`` against every configured key spelling.
3. The table is registered as the child of a parent that itself has a
   tenant column -> ``JoinThroughParent``.
4. The table is allow-listed as unscoped -> ``Unscoped`` (exported
   unfiltered, never wiped).

Usage:
    selector = TenantRowSelector(TenancySettings())
    plan = await selector.plan(catalog)
    sql, params = selector.build_select_query("tasks", plan["tasks"], "org-1")
"""

from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from tenant_snapshot.adapters.base import quote_identifier
from tenant_snapshot.config.models import TenancySettings
from tenant_snapshot.errors import UnclassifiedTableError
from tenant_snapshot.schema.catalog import SchemaCatalog


class DirectColumn(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["direct"] = "direct"
    column: str


class PayloadSubstringMatch(BaseModel):
    """Tenant identity lives inside an opaque JSON payload column.

    A case-sensitive substring heuristic (``instr``), not a JSON query.
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["payload"] = "payload"
    column: str
    key_variants: tuple[str, ...]


class JoinThroughParent(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["parent"] = "parent"
    parent_table: str
    parent_key: str           # FK column in the child
    parent_pk: str = "id"     # referenced column in the parent
    parent_column: str        # tenant column in the parent


class Unscoped(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["unscoped"] = "unscoped"


TenantSelection = Annotated[
    Union[DirectColumn, PayloadSubstringMatch, JoinThroughParent, Unscoped],
    Field(discriminator="kind"),
]


def _find_column(columns: list[str], candidates: list[str]) -> str | None:
    """Return the actual column name matching the first candidate (case-insensitive)."""
    by_lower = {c.lower(): c for c in columns}
    for candidate in candidates:
        if candidate.lower() in by_lower:
            return by_lower[candidate.lower()]
    return None


class TenantRowSelector:
    """Computes and renders per-table tenant selections."""

    def __init__(self, settings: TenancySettings) -> None:
        self._settings = settings
        self._parents = {link.table: link for link in settings.parents}

    def tenant_column(self, columns: list[str]) -> str | None:
        """The table's direct tenant column, if it has one."""
        return _find_column(columns, self._settings.tenant_columns)

    def selection_for(
        self,
        table: str,
        columns: list[str],
        parent_columns: list[str] | None = None,
    ) -> TenantSelection:
        """Classify one table.

        Args:
            table: Table name.
            columns: The table's columns.
            parent_columns: Columns of the registered parent table, when
                the table is registered as a child.

        Raises:
            UnclassifiedTableError: If no rule applies and the table is not
                allow-listed as unscoped.
        """
        direct = self.tenant_column(columns)
        if direct is not None:
            return DirectColumn(column=direct)

        payload_column = self._settings.payload.get(table)
        if payload_column is not None:
            actual = _find_column(columns, [payload_column])
            if actual is not None:
                return PayloadSubstringMatch(
                    column=actual, key_variants=tuple(self._settings.payload_keys)
                )

        link = self._parents.get(table)
        if link is not None and parent_columns:
            parent_tenant = _find_column(parent_columns, self._settings.tenant_columns)
            child_key = _find_column(columns, [link.parent_key])
            if parent_tenant is not None and child_key is not None:
                return JoinThroughParent(
                    parent_table=link.parent_table,
                    parent_key=child_key,
                    parent_pk=link.parent_pk,
                    parent_column=parent_tenant,
                )

        if table in self._settings.unscoped:
            return Unscoped()

        raise UnclassifiedTableError(
            "Table has no tenant selection; add it to tenancy.unscoped, "
            "tenancy.payload or tenancy.parents",
            table=table,
        )

    async def plan(self, catalog: SchemaCatalog, tables: list[str] | None = None) -> dict[str, TenantSelection]:
        """Classify every table (default: all catalog tables).

        Raises:
            UnclassifiedTableError: On the first table no rule covers.
        """
        if tables is None:
            tables = await catalog.list_tables()

        plan: dict[str, TenantSelection] = {}
        for table in tables:
            columns = await catalog.list_columns(table)
            parent_columns = None
            link = self._parents.get(table)
            if link is not None:
                parent_columns = await catalog.list_columns(link.parent_table)
            plan[table] = self.selection_for(table, columns, parent_columns)
        return plan

    # ------------------------------------------------------------------
    # Query rendering
    # ------------------------------------------------------------------

    def build_filter(self, selection: TenantSelection, tenant_id: str) -> tuple[str, dict] | None:
        """Render the WHERE condition for a selection.

        Returns ``None`` for ``Unscoped``.
        """
        if isinstance(selection, DirectColumn):
            return f"{quote_identifier(selection.column)} = :tenant_id", {"tenant_id": tenant_id}

        if isinstance(selection, PayloadSubstringMatch):
            column = quote_identifier(selection.column)
            conditions: list[str] = []
            params: dict[str, str] = {}
            for key in selection.key_variants:
                for separator in (":", ": "):
                    name = f"p_{len(params)}"
                    params[name] = f'"{key}"{separator}"{tenant_id}"'
                    conditions.append(f"instr({column}, :{name}) > 0")
            return "(" + " OR ".join(conditions) + ")", params

        if isinstance(selection, JoinThroughParent):
            return (
                f"{quote_identifier(selection.parent_key)} IN ("
                f"SELECT {quote_identifier(selection.parent_pk)} "
                f"FROM {quote_identifier(selection.parent_table)} "
                f"WHERE {quote_identifier(selection.parent_column)} = :tenant_id)",
                {"tenant_id": tenant_id},
            )

        return None

    def build_select_query(self, table: str, selection: TenantSelection, tenant_id: str) -> tuple[str, dict]:
        """SELECT for export.  ``Unscoped`` tables are read unfiltered."""
        sql = f"SELECT * FROM {quote_identifier(table)}"
        rendered = self.build_filter(selection, tenant_id)
        if rendered is None:
            return sql, {}
        where, params = rendered
        return f"{sql} WHERE {where}", params

    def build_delete_query(self, table: str, selection: TenantSelection, tenant_id: str) -> tuple[str, dict] | None:
        """DELETE for the REPLACE wipe.  ``None`` for ``Unscoped`` tables."""
        rendered = self.build_filter(selection, tenant_id)
        if rendered is None:
            return None
        where, params = rendered
        return f"DELETE FROM {quote_identifier(table)} WHERE {where}", params

    @staticmethod
    def wipe_order(plan: dict[str, TenantSelection]) -> list[str]:
        """Tables in delete order: parent-scoped children before everything else."""
        children = [t for t, s in plan.items() if isinstance(s, JoinThroughParent)]
        others = [t for t, s in plan.items() if not isinstance(s, JoinThroughParent)]
        return children + others
