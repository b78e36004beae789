"""
Centralized configuration loader.

Loads non-sensitive config from catalog_sync.toml (required, no fallback defaults).
Sensitive values come from .env or the process environment via get_env.
"""

import os
import tomllib
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

load_dotenv()

_CONFIG_PATH = Path(
    os.environ.get(
        "CATALOG_SYNC_CONFIG_PATH", Path(__file__).parent.parent / "catalog_sync.toml"
    )
)

_CONFIG: dict[str, Any] | None = None


def _load() -> dict[str, Any]:
    """Read the TOML file on first use."""
    global _CONFIG
    if _CONFIG is None:
        if not _CONFIG_PATH.exists():
            raise RuntimeError(f"Configuration file not found: {_CONFIG_PATH}")
        with open(_CONFIG_PATH, "rb") as f:
            _CONFIG = tomllib.load(f)
    return _CONFIG


def get(*keys: str) -> Any:
    """Traverse nested TOML config by dotted keys.

    Example: get("executor", "max_retries") -> 3
    Raises RuntimeError if any key is missing.
    """
    current = _load()
    path = ".".join(keys)
    for key in keys:
        if not isinstance(current, dict) or key not in current:
            raise RuntimeError(
                f"Missing required config key '{path}' in catalog_sync.toml"
            )
        current = current[key]
    return current


def get_env(name: str) -> str | None:
    """Get an optional environment variable (returns None if not set)."""
    return os.environ.get(name)
