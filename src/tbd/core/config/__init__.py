"""
Configuration models and loading.

This module provides Pydantic models for tbd configuration
with multi-layer merging: defaults < user < project < env vars.
"""

from .loader import (
    ConfigError,
    clear_cache,
    get_project_config_path,
    get_user_config_path,
    get_xdg_config_home,
    init_config,
    load_config,
    write_config,
)
from .models import DisplayConfig, SyncConfig, TbdConfig

__all__ = [
    # Models
    "DisplayConfig",
    "SyncConfig",
    "TbdConfig",
    # Loader functions
    "ConfigError",
    "clear_cache",
    "get_project_config_path",
    "get_user_config_path",
    "get_xdg_config_home",
    "init_config",
    "load_config",
    "write_config",
]
