"""TOML configuration loader.

Usage:
    from tenant_snapshot.config.loader import load_config

    config = load_config(Path("snapshot.toml"))
"""

import os
import tomllib
from pathlib import Path

from pydantic import ValidationError as PydanticValidationError

from tenant_snapshot.config.models import EngineConfig

CONFIG_FILENAME = "snapshot.toml"
CONFIG_ENV_VAR = "SNAPSHOT_CONFIG"


def load_config(config_path: Path | None = None) -> EngineConfig:
    """Load engine configuration from a TOML file.

    Args:
        config_path: Path to the TOML file.  When ``None``, uses
            ``snapshot.toml`` in the working directory, falling back to the
            ``SNAPSHOT_CONFIG`` environment variable.

    Returns:
        Validated ``EngineConfig``.

    Raises:
        FileNotFoundError: If the config file doesn't exist.
        ValueError: If the TOML is malformed or values are invalid.

    Example:
        >>> config = load_config(Path("snapshot.toml"))
        >>> config.limits.max_media_bytes
        367001600
    """
    if config_path is None:
        config_path = Path.cwd() / CONFIG_FILENAME
        env_path = os.environ.get(CONFIG_ENV_VAR)
        if not config_path.exists() and env_path:
            config_path = Path(env_path)

    if not config_path.exists():
        raise FileNotFoundError(
            f"Snapshot config not found: {config_path}\n"
            f"Create {CONFIG_FILENAME} or set {CONFIG_ENV_VAR}."
        )

    try:
        with open(config_path, "rb") as f:
            data = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ValueError(f"Invalid TOML in {config_path}: {e}") from e

    # Relative document roots are anchored at the config file's directory
    paths = data.get("paths", {})
    if "document_root" in paths and not Path(paths["document_root"]).is_absolute():
        paths["document_root"] = str(config_path.parent / paths["document_root"])

    try:
        return EngineConfig(**data)
    except PydanticValidationError as e:
        raise ValueError(f"Invalid snapshot config {config_path}: {e}") from e
