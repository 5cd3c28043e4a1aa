"""Application configuration loader.

Loads centralized configuration from data/config/app_config_v1.yaml,
falling back to built-in defaults when the file is absent.

Usage:
    from curriculum.config.app_config import load_app_config

    config = load_app_config()
    db_path = config.store.resolved_db_path()
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import structlog
import yaml

logger = structlog.get_logger(__name__)

# Config file path (relative to project root)
CONFIG_FILE = Path("data/config/app_config_v1.yaml")

# Environment override for the database location
DB_PATH_ENV = "CURRICULUM_DB_PATH"


@dataclass
class StoreConfig:
    """Configuration for the SQLite stores."""

    db_path: str = "db/curriculum.db"
    timeout_seconds: float = 5.0
    max_batch_size: int = 500

    def resolved_db_path(self) -> Path:
        """Database path, honouring the environment override."""
        return Path(os.environ.get(DB_PATH_ENV) or self.db_path)


@dataclass
class EngineConfig:
    """Retry policy for the consistency engine."""

    max_retries: int = 3
    backoff_seconds: float = 0.5


@dataclass
class AppConfig:
    """Application-wide configuration."""

    store: StoreConfig = field(default_factory=StoreConfig)
    engine: EngineConfig = field(default_factory=EngineConfig)
    paths: dict[str, str] = field(default_factory=dict)


# Module-level cache
_cached_config: AppConfig | None = None


def _get_defaults() -> dict[str, Any]:
    """Get default configuration values."""
    return {
        "store": {
            "db_path": "db/curriculum.db",
            "timeout_seconds": 5.0,
            "max_batch_size": 500,
        },
        "engine": {
            "max_retries": 3,
            "backoff_seconds": 0.5,
        },
        "paths": {
            "config_dir": "data/config",
            "db_dir": "db",
        },
    }


def _parse_config(data: dict[str, Any]) -> AppConfig:
    """Parse configuration dictionary into AppConfig object."""
    store_data = data.get("store") or {}
    store = StoreConfig(
        db_path=store_data.get("db_path", "db/curriculum.db"),
        timeout_seconds=float(store_data.get("timeout_seconds", 5.0)),
        max_batch_size=int(store_data.get("max_batch_size", 500)),
    )
    if store.max_batch_size < 1:
        raise ValueError(f"store.max_batch_size must be >= 1, got {store.max_batch_size}")

    engine_data = data.get("engine") or {}
    engine = EngineConfig(
        max_retries=int(engine_data.get("max_retries", 3)),
        backoff_seconds=float(engine_data.get("backoff_seconds", 0.5)),
    )

    paths = data.get("paths") or {}

    return AppConfig(store=store, engine=engine, paths=paths)


def load_app_config(
    config_file: Path | None = None,
    force_reload: bool = False,
) -> AppConfig:
    """Load application config.

    Args:
        config_file: Explicit YAML file (defaults to CONFIG_FILE)
        force_reload: If True, ignore cached config and reload from file.

    Returns:
        AppConfig object with all settings.
    """
    global _cached_config

    if _cached_config is not None and not force_reload and config_file is None:
        return _cached_config

    path = config_file or CONFIG_FILE
    data: dict[str, Any]

    if path.exists():
        logger.debug("loading_app_config", source=str(path))
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    else:
        logger.info("using_default_config")
        data = _get_defaults()

    config = _parse_config(data)
    if config_file is None:
        _cached_config = config
    return config


def clear_config_cache() -> None:
    """Clear the configuration cache.

    Useful for testing or when config is modified at runtime.
    """
    global _cached_config
    _cached_config = None
