"""
Record storage on the local filesystem.

Records live one per file under ``<data_dir>/issues/<id>.md``. Writes go
through a temp file and an atomic rename so an interrupted write never
leaves a partial record behind.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from tbd.core.paths import RECORD_SUFFIX
from tbd.core.records.models import Record
from tbd.core.records.parser import RecordFormatError, parse_record, serialize_record
from tbd.utils.fs import atomic_write_text

logger = logging.getLogger(__name__)

# Upper bound on concurrent file reads in list()
MAX_READ_WORKERS = 8


class RecordStoreError(Exception):
    """Base error for record storage operations."""


class RecordNotFoundError(RecordStoreError):
    """Raised when a record file does not exist."""


class RecordParseError(RecordStoreError):
    """Raised when a record file exists but cannot be parsed."""


class RecordStore:
    """
    Storage layer for records.

    Example:
        >>> store = RecordStore(Path(".tbd/data-sync"))
        >>> record = Record.create(title="Fix login redirect")
        >>> store.write(record)
        >>> store.read(record.id).title
        'Fix login redirect'
    """

    def __init__(self, data_dir: Path):
        """
        Initialize store with a data directory.

        Args:
            data_dir: Directory holding the ``issues/`` subdirectory
        """
        self.data_dir = Path(data_dir)
        self.issues_dir = self.data_dir / "issues"

    def path_for(self, record_id: str) -> Path:
        """Path of the file for a record id."""
        return self.issues_dir / f"{record_id}{RECORD_SUFFIX}"

    def exists(self, record_id: str) -> bool:
        return self.path_for(record_id).exists()

    def read(self, record_id: str) -> Record:
        """
        Read a single record.

        Args:
            record_id: Internal record id

        Returns:
            The record

        Raises:
            RecordNotFoundError: If the record file doesn't exist
            RecordParseError: If the record file is malformed
        """
        path = self.path_for(record_id)
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            raise RecordNotFoundError(f"Record not found: {record_id}") from None

        try:
            return parse_record(text, source=str(path))
        except RecordFormatError as e:
            raise RecordParseError(str(e)) from e

    def write(self, record: Record) -> Path:
        """
        Write a record atomically.

        The previous file content (if any) survives any failure.

        Returns:
            Path of the written file

        Raises:
            RecordStoreError: If the file cannot be written
        """
        path = self.path_for(record.id)
        try:
            atomic_write_text(path, serialize_record(record))
        except OSError as e:
            raise RecordStoreError(f"Failed to write {path}: {e}") from e
        logger.debug("Wrote record %s (version %d)", record.id, record.version)
        return path

    def delete(self, record_id: str) -> None:
        """Delete a record file. Deleting a missing record is a no-op."""
        self.path_for(record_id).unlink(missing_ok=True)

    def list(self) -> list[Record]:
        """
        List all readable records.

        File reads run concurrently; parsing is sequential. Malformed or
        unreadable files are skipped with a warning.

        Returns:
            Records sorted by id
        """
        if not self.issues_dir.exists():
            return []

        paths = sorted(self.issues_dir.glob(f"*{RECORD_SUFFIX}"))
        if not paths:
            return []

        with ThreadPoolExecutor(max_workers=min(MAX_READ_WORKERS, len(paths))) as pool:
            contents = list(pool.map(_read_or_none, paths))

        records: list[Record] = []
        for path, text in zip(paths, contents):
            if text is None:
                continue
            try:
                records.append(parse_record(text, source=str(path)))
            except RecordFormatError as e:
                # Skip malformed files but continue processing
                logger.warning("Skipping malformed record file: %s", e)

        records.sort(key=lambda r: r.id)
        return records


def _read_or_none(path: Path) -> str | None:
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        logger.warning("Skipping unreadable record file %s: %s", path, e)
        return None
