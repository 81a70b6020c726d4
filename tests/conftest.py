"""
Pytest configuration and shared fixtures.

Provides real temporary git repositories (plus a bare remote shared by two
clones), record factories, and config isolation.
"""

import subprocess
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import pytest

from tbd.core.config import clear_cache
from tbd.core.config.models import TbdConfig
from tbd.core.records.models import Record

RECORD_ID = "is-01hx5zzkbkactav9wevgemmvrz"
OTHER_RECORD_ID = "is-01hx5zzkbkbctav9wevgemmvrz"
T0 = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


def git(cwd: Path, *args: str) -> str:
    """Run git in ``cwd`` and return stripped stdout."""
    result = subprocess.run(
        ["git", *args], cwd=cwd, capture_output=True, text=True, check=True
    )
    return result.stdout.strip()


def configure_repo(repo: Path) -> None:
    """Configure git user and disable signing (required for commits)."""
    git(repo, "config", "user.email", "test@example.com")
    git(repo, "config", "user.name", "Test User")
    git(repo, "config", "commit.gpgsign", "false")


# ==============================================================================
# Config Isolation
# ==============================================================================


@pytest.fixture(autouse=True)
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    """Keep user config, TBD_* env vars and the config cache out of tests."""
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
    for name in ("TBD_SYNC_BRANCH", "TBD_SYNC_REMOTE", "TBD_ID_PREFIX"):
        monkeypatch.delenv(name, raising=False)
    clear_cache()
    yield
    clear_cache()


@pytest.fixture
def config() -> TbdConfig:
    """Default configuration."""
    return TbdConfig()


# ==============================================================================
# Git Fixtures
# ==============================================================================


@pytest.fixture
def git_repo(tmp_path: Path) -> Path:
    """Create a temporary git repository with an initial commit."""
    repo = tmp_path / "repo"
    repo.mkdir()
    git(repo, "init")
    configure_repo(repo)

    (repo / "README.md").write_text("# Test Repo\n")
    git(repo, "add", "README.md")
    git(repo, "commit", "-m", "Initial commit")
    return repo


@pytest.fixture
def bare_remote(tmp_path: Path) -> Path:
    """Create an empty bare repository to act as the shared remote."""
    remote = tmp_path / "remote.git"
    remote.mkdir()
    git(remote, "init", "--bare")
    return remote


@pytest.fixture
def make_clone(tmp_path: Path, bare_remote: Path) -> Callable[[str], Path]:
    """Factory for working repositories whose origin is the bare remote."""

    def _make(name: str) -> Path:
        repo = tmp_path / name
        repo.mkdir()
        git(repo, "init")
        configure_repo(repo)
        git(repo, "remote", "add", "origin", str(bare_remote))
        (repo / "README.md").write_text(f"# {name}\n")
        git(repo, "add", "README.md")
        git(repo, "commit", "-m", "Initial commit")
        return repo

    return _make


# ==============================================================================
# Record Fixtures
# ==============================================================================


@pytest.fixture
def make_record() -> Callable[..., Record]:
    """
    Factory for records with fixed ids and timestamps.

    Example:
        record = make_record(title="Other", priority=1)
    """

    def _make(**overrides: Any) -> Record:
        data: dict[str, Any] = {
            "id": RECORD_ID,
            "title": "Fix login redirect",
            "created_at": T0,
            "updated_at": T0,
            "version": 1,
        }
        data.update(overrides)
        return Record.model_validate(data)

    return _make
