"""
Filesystem helpers shared by the stores.

Every file tbd owns is written through a temp file in the same directory
followed by an atomic rename, so readers never observe a partial file.
"""

from __future__ import annotations

import os
import secrets
from pathlib import Path


def _temp_path_for(path: Path) -> Path:
    return path.with_name(f".{path.name}.{secrets.token_hex(8)}.tmp")


def atomic_write_text(path: Path, content: str) -> None:
    """
    Write text to a file atomically.

    Creates parent directories as needed. On failure the temp file is
    removed and the previous content of ``path`` (if any) is left intact.

    Args:
        path: Destination file.
        content: Text to write (UTF-8).

    Raises:
        OSError: If the file cannot be written or renamed.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = _temp_path_for(path)
    try:
        temp_path.write_text(content, encoding="utf-8")
        os.replace(temp_path, path)
    except OSError:
        temp_path.unlink(missing_ok=True)
        raise


def link_new_file(path: Path, content: str) -> None:
    """
    Publish a new file atomically, refusing to overwrite.

    The content is written to a temp file and hard-linked into place, so
    the destination either does not exist or holds the complete content.

    Raises:
        FileExistsError: If ``path`` already exists.
        OSError: If the file cannot be written.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = _temp_path_for(path)
    try:
        temp_path.write_text(content, encoding="utf-8")
        os.link(temp_path, path)
    finally:
        temp_path.unlink(missing_ok=True)
