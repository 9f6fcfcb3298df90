"""Configuration: TOML loading and config models.

Usage:
    >>> from tenant_snapshot.config import load_config, EngineConfig
"""

from tenant_snapshot.config.loader import load_config
from tenant_snapshot.config.models import (
    AppSettings,
    EngineConfig,
    LimitSettings,
    MediaSettings,
    ParentLink,
    PathSettings,
    StoreSettings,
    TenancySettings,
)

__all__ = [
    "load_config",
    "EngineConfig",
    "StoreSettings",
    "PathSettings",
    "LimitSettings",
    "AppSettings",
    "TenancySettings",
    "ParentLink",
    "MediaSettings",
]
