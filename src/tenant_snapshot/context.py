"""Active tenant context.

The engine never reads a global "current tenant": every component receives
a ``TenantContext`` explicitly, built by the caller from its auth layer.

Usage:
    from tenant_snapshot.context import TenantContext

    ctx = TenantContext.create(tenant_id="org-1", user_id="user-7")
"""

from dataclasses import dataclass

from tenant_snapshot.errors import ContextMissingError


@dataclass(frozen=True)
class TenantContext:
    """Active tenant and acting user."""

    tenant_id: str
    user_id: str | None = None

    @classmethod
    def create(cls, tenant_id: str | None, user_id: str | None = None) -> "TenantContext":
        """Build a context, trimming whitespace.

        Raises:
            ContextMissingError: If ``tenant_id`` is missing or blank.
        """
        tenant = (tenant_id or "").strip()
        if not tenant:
            raise ContextMissingError("Snapshot context missing: tenant_id not set")
        user = (user_id or "").strip() or None
        return cls(tenant_id=tenant, user_id=user)
