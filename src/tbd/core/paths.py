"""
Centralized path constants for tbd.

On the main branch:

    .tbd/
        config.yml      - project configuration (tracked)
        .gitignore      - ignores data-sync/
        data-sync/      - local copy of the sync branch data (gitignored)

On the tbd-sync branch (and in .tbd/data-sync/ locally):

    .tbd/data-sync/
        issues/<id>.md
        mappings/ids.yml
        attic/<id>_<timestamp>_<field>.yml
        meta.yml

Paths are POSIX strings because they double as paths inside git trees.
"""

from __future__ import annotations

from pathlib import Path, PurePosixPath

TBD_DIR = ".tbd"
CONFIG_FILE = f"{TBD_DIR}/config.yml"
GITIGNORE_FILE = f"{TBD_DIR}/.gitignore"

DATA_SYNC_DIR = f"{TBD_DIR}/data-sync"
ISSUES_DIR = f"{DATA_SYNC_DIR}/issues"
MAPPINGS_DIR = f"{DATA_SYNC_DIR}/mappings"
ATTIC_DIR = f"{DATA_SYNC_DIR}/attic"
ID_MAPPING_FILE = f"{MAPPINGS_DIR}/ids.yml"
META_FILE = f"{DATA_SYNC_DIR}/meta.yml"

SYNC_BRANCH = "tbd-sync"
RECORD_SUFFIX = ".md"

GITIGNORE_CONTENT = "data-sync/\n"


def issue_path(record_id: str) -> str:
    """Repository-relative path of a record file."""
    return f"{ISSUES_DIR}/{record_id}{RECORD_SUFFIX}"


def is_record_path(path: str) -> bool:
    """Whether a repository-relative path names a record file."""
    pure = PurePosixPath(path)
    return str(pure.parent) == ISSUES_DIR and pure.suffix == RECORD_SUFFIX


def record_id_from_path(path: str) -> str:
    """Extract the record id from a record file path."""
    return PurePosixPath(path).stem


def data_dir(project_dir: Path) -> Path:
    """Absolute path of the local data-sync directory."""
    return project_dir / DATA_SYNC_DIR
