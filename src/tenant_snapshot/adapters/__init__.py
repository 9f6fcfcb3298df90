"""Local store adapters.

Provides the ``LocalStore`` Protocol and the ``AsyncSqliteStore``
implementation used on devices.

Usage:
    from tenant_snapshot.adapters import LocalStore, AsyncSqliteStore
"""

from tenant_snapshot.adapters.base import LocalStore, StoreSession, quote_identifier
from tenant_snapshot.adapters.sqlite import AsyncSqliteStore, normalize_sqlite_url

__all__ = [
    "LocalStore",
    "StoreSession",
    "AsyncSqliteStore",
    "quote_identifier",
    "normalize_sqlite_url",
]
