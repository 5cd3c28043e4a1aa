"""Configuration package for the curriculum service."""

from curriculum.config.app_config import (
    AppConfig,
    EngineConfig,
    StoreConfig,
    clear_config_cache,
    load_app_config,
)

__all__ = [
    "AppConfig",
    "EngineConfig",
    "StoreConfig",
    "clear_config_cache",
    "load_app_config",
]
