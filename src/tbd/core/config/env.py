"""Environment loading helpers.

TBD_* overrides can live in .env files as well as the shell:
- OS environment (highest precedence)
- Project environment files (.env, .env.local)
- User environment file (~/.config/tbd/.env)

A value already exported in the process environment is never replaced.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Iterable

from dotenv import dotenv_values


def _read_env(path: Path) -> dict[str, str]:
    if not path.exists():
        return {}
    return {
        str(key): str(value)
        for key, value in dotenv_values(path).items()
        if key is not None and value is not None
    }


def load_layered_env(
    *,
    project_dir: Path | None = None,
    user_env_paths: Iterable[Path] | None = None,
    project_env_paths: Iterable[Path] | None = None,
) -> set[str]:
    """Load environment variables from user + project .env files.

    Project files may override values that came from the user file, but
    neither may override the pre-existing OS environment.

    Returns:
        Names of the variables that were set.
    """
    if project_dir is None:
        project_dir = Path.cwd()

    if user_env_paths is None:
        xdg_home = Path(os.environ.get("XDG_CONFIG_HOME", str(Path.home() / ".config")))
        user_env_paths = [xdg_home / "tbd" / ".env"]

    if project_env_paths is None:
        project_env_paths = [project_dir / ".env", project_dir / ".env.local"]

    loaded: set[str] = set()
    for path in user_env_paths:
        for key, value in _read_env(Path(path)).items():
            if key not in os.environ:
                os.environ[key] = value
                loaded.add(key)

    for path in project_env_paths:
        for key, value in _read_env(Path(path)).items():
            if key not in os.environ or key in loaded:
                os.environ[key] = value
                loaded.add(key)

    return loaded
