"""
Configuration loading with multi-layer merging.

Implements the configuration precedence chain:
    defaults < user config < project config < env vars
"""

import logging
import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from tbd.core.paths import CONFIG_FILE, TBD_DIR
from tbd.utils.fs import atomic_write_text
from tbd.utils.yaml_io import dump_yaml, load_yaml_tolerant

from .models import TbdConfig

logger = logging.getLogger(__name__)

# Global cache to avoid reloading config multiple times per session
_config_cache: TbdConfig | None = None


class ConfigError(Exception):
    """Raised when the merged configuration is invalid."""


def get_xdg_config_home() -> Path:
    """
    Get XDG config home directory.

    Returns:
        Path to config directory (defaults to ~/.config)
    """
    if xdg_home := os.environ.get("XDG_CONFIG_HOME"):
        return Path(xdg_home)
    return Path.home() / ".config"


def get_user_config_path() -> Path:
    """Path to ~/.config/tbd/config.yml (or XDG equivalent)."""
    return get_xdg_config_home() / "tbd" / "config.yml"


def get_project_config_path(project_dir: Path | None = None) -> Path:
    """Path to .tbd/config.yml in the project root."""
    if project_dir is None:
        project_dir = Path.cwd()
    return project_dir / CONFIG_FILE


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """
    Deep merge two dictionaries.

    Values in `override` take precedence over values in `base`; nested dicts
    are merged, not replaced.

    Example:
        >>> deep_merge({"a": 1, "b": {"x": 10}}, {"b": {"y": 30}})
        {'a': 1, 'b': {'x': 10, 'y': 30}}
    """
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value

    return result


def load_yaml_file(path: Path) -> dict[str, Any] | None:
    """
    Load a YAML mapping, returning None if it doesn't exist or is invalid.

    A broken config file is logged and skipped so one bad layer does not
    make every command unusable.
    """
    if not path.exists():
        return None

    try:
        data, duplicates = load_yaml_tolerant(path.read_text(encoding="utf-8"))
    except (yaml.YAMLError, OSError) as e:
        logger.warning("Failed to parse config at %s: %s", path, e)
        return None

    if duplicates:
        logger.warning(
            "Config %s repeats keys %s (last occurrence wins); rewrite the file",
            path,
            ", ".join(sorted(set(duplicates))),
        )
    if isinstance(data, dict):
        return data
    return None


def apply_env_overrides(config_dict: dict[str, Any]) -> dict[str, Any]:
    """
    Apply environment variable overrides to configuration.

    Supported env vars:
        TBD_SYNC_BRANCH - overrides sync.branch
        TBD_SYNC_REMOTE - overrides sync.remote
        TBD_ID_PREFIX - overrides display.id_prefix
    """
    result = config_dict.copy()

    overrides = {
        "TBD_SYNC_BRANCH": ("sync", "branch"),
        "TBD_SYNC_REMOTE": ("sync", "remote"),
        "TBD_ID_PREFIX": ("display", "id_prefix"),
    }
    for env_name, (section, key) in overrides.items():
        if value := os.environ.get(env_name):
            section_dict = dict(result.get(section) or {})
            section_dict[key] = value
            result[section] = section_dict

    return result


def get_default_config() -> dict[str, Any]:
    """Hardcoded default configuration."""
    return TbdConfig().model_dump()


def load_config(project_dir: Path | None = None, use_cache: bool = True) -> TbdConfig:
    """
    Load configuration with multi-layer merging.

    Configuration precedence (highest to lowest):
        1. Environment variables (TBD_*)
        2. Project config (.tbd/config.yml)
        3. User config (~/.config/tbd/config.yml)
        4. Hardcoded defaults

    Args:
        project_dir: Project directory to load .tbd/config.yml from (defaults to cwd)
        use_cache: If True, return cached config from previous load

    Returns:
        Validated TbdConfig instance

    Raises:
        ConfigError: If the merged config fails validation
    """
    global _config_cache

    if use_cache and _config_cache is not None:
        return _config_cache

    merged = get_default_config()

    if user_config := load_yaml_file(get_user_config_path()):
        merged = deep_merge(merged, user_config)

    if project_config := load_yaml_file(get_project_config_path(project_dir)):
        merged = deep_merge(merged, project_config)

    merged = apply_env_overrides(merged)

    try:
        config = TbdConfig.model_validate(merged)
    except ValidationError as e:
        raise ConfigError(f"Invalid tbd configuration: {e}") from e

    _config_cache = config
    return config


def write_config(project_dir: Path, config: TbdConfig) -> Path:
    """Write config to .tbd/config.yml atomically."""
    path = get_project_config_path(project_dir)
    atomic_write_text(path, dump_yaml(config.model_dump(mode="json")))
    return path


def init_config(project_dir: Path, version: str | None = None) -> TbdConfig:
    """
    Create .tbd/config.yml with default settings if it doesn't exist.

    Returns:
        The config now in effect for the project.
    """
    path = get_project_config_path(project_dir)
    if path.exists():
        return load_config(project_dir, use_cache=False)

    (project_dir / TBD_DIR).mkdir(parents=True, exist_ok=True)
    config = TbdConfig(tbd_version=version) if version else TbdConfig()
    write_config(project_dir, config)
    clear_cache()
    return config


def clear_cache() -> None:
    """
    Clear the cached configuration.

    Useful for testing or when config files change during execution.
    """
    global _config_cache
    _config_cache = None
