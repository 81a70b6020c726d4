"""
The attic: an append-only archive of values discarded by merges.

Each ConflictEntry becomes one YAML file under ``attic/``:

    attic/is-01hx..._2025-01-07T10-30-00Z_status.yml

Files are never overwritten. A second entry for the same record, second
and field gets a numeric suffix (``..._status-2.yml``).
"""

import logging
import re
from pathlib import Path

import yaml
from pydantic import ValidationError

from tbd.core.merge.models import ConflictEntry
from tbd.core.records.models import FIELD_STRATEGIES, MergeStrategy, Record
from tbd.core.records.store import RecordStore
from tbd.utils.fs import link_new_file
from tbd.utils.yaml_io import dump_yaml, load_yaml_tolerant

logger = logging.getLogger(__name__)

ATTIC_SUFFIX = ".yml"

# Give up after this many same-name collisions
_MAX_NAME_SUFFIX = 1000


class ArchiveError(Exception):
    """Raised when the attic cannot be written or an entry cannot be found."""


def normalize_timestamp(value: str) -> str:
    """
    Convert a timestamp to the colon-free attic form.

    Accepts ISO 8601 (``2025-01-07T10:30:00.123Z``) or the attic form
    (``2025-01-07T10-30-00Z``).
    """
    value = re.sub(r"\.\d+", "", value.strip())
    value = value.replace("+00:00", "Z")
    return value.replace(":", "-")


class ConflictArchiver:
    """
    Writes and reads attic entries.

    Example:
        >>> archiver = ConflictArchiver(Path(".tbd/data-sync/attic"))
        >>> path = archiver.archive(entry)
        >>> archiver.list_entries(entry.record_id)[0] == entry
        True
    """

    def __init__(self, attic_dir: Path):
        self.attic_dir = Path(attic_dir)

    def _base_name(self, entry: ConflictEntry) -> str:
        return f"{entry.record_id}_{normalize_timestamp(entry.timestamp)}_{entry.field}"

    def archive(self, entry: ConflictEntry) -> Path:
        """
        Append an entry to the attic.

        Args:
            entry: Conflict to archive

        Returns:
            Path of the new attic file

        Raises:
            ArchiveError: If the entry could not be written
        """
        content = dump_yaml(entry.model_dump(mode="json"))
        base = self._base_name(entry)

        for n in range(1, _MAX_NAME_SUFFIX + 1):
            name = f"{base}{ATTIC_SUFFIX}" if n == 1 else f"{base}-{n}{ATTIC_SUFFIX}"
            path = self.attic_dir / name
            try:
                link_new_file(path, content)
            except FileExistsError:
                continue
            except OSError as e:
                raise ArchiveError(f"Failed to write attic entry {path}: {e}") from e
            logger.info(
                "Archived %s conflict on %s.%s to %s",
                entry.resolution.value,
                entry.record_id,
                entry.field,
                path.name,
            )
            return path

        raise ArchiveError(f"Too many attic entries named {base}")

    def archive_all(self, entries: list[ConflictEntry]) -> list[Path]:
        """
        Archive several entries, all or nothing.

        If any entry fails, the files already written by this call are
        removed before the error propagates.

        Returns:
            Paths of the new attic files, in entry order

        Raises:
            ArchiveError: If any entry could not be written
        """
        written: list[Path] = []
        try:
            for entry in entries:
                written.append(self.archive(entry))
        except ArchiveError:
            self.discard(written)
            raise
        return written

    def discard(self, paths: list[Path]) -> None:
        """Remove attic files written by an operation that was rolled back."""
        for path in paths:
            path.unlink(missing_ok=True)
            logger.debug("Removed attic entry %s", path.name)

    def _load(self, path: Path) -> ConflictEntry | None:
        try:
            data, _ = load_yaml_tolerant(path.read_text(encoding="utf-8"))
            return ConflictEntry.model_validate(data)
        except (OSError, yaml.YAMLError, ValidationError) as e:
            logger.warning("Skipping unreadable attic entry %s: %s", path, e)
            return None

    def list_entries(self, record_id: str | None = None) -> list[ConflictEntry]:
        """
        List attic entries, newest first.

        Args:
            record_id: Only entries for this record (all records if None)
        """
        if not self.attic_dir.exists():
            return []

        pattern = f"{record_id}_*{ATTIC_SUFFIX}" if record_id else f"*{ATTIC_SUFFIX}"
        entries = []
        for path in sorted(self.attic_dir.glob(pattern)):
            entry = self._load(path)
            if entry is not None and (record_id is None or entry.record_id == record_id):
                entries.append(entry)

        entries.sort(key=lambda e: (e.timestamp, e.record_id, e.field), reverse=True)
        return entries

    def find(self, record_id: str, timestamp: str, field: str | None = None) -> ConflictEntry:
        """
        Find one entry by record and timestamp (either timestamp form).

        Raises:
            ArchiveError: If no entry matches, or several match and no field
                was given to choose between them
        """
        wanted = normalize_timestamp(timestamp)
        matches = [
            e
            for e in self.list_entries(record_id)
            if normalize_timestamp(e.timestamp) == wanted and (field is None or e.field == field)
        ]
        if not matches:
            raise ArchiveError(f"Attic entry not found: {record_id} at {timestamp}")
        fields = {e.field for e in matches}
        if len(fields) > 1:
            raise ArchiveError(
                f"Several attic entries for {record_id} at {timestamp} "
                f"({', '.join(sorted(fields))}); choose a field"
            )
        return matches[0]

    def restore(self, store: RecordStore, entry: ConflictEntry) -> Record:
        """
        Write a lost value back into its record.

        Only last-writer-wins fields can be restored. The record's version
        and updated_at advance as for any edit.

        Returns:
            The updated record

        Raises:
            ArchiveError: If the field cannot be restored
            RecordStoreError: If the record cannot be read or written
        """
        if FIELD_STRATEGIES.get(entry.field) != MergeStrategy.LWW:
            raise ArchiveError(f"Cannot restore field: {entry.field}")

        record = store.read(entry.record_id)
        try:
            restored = record.with_changes(**{entry.field: entry.lost_value})
        except ValidationError as e:
            raise ArchiveError(f"Archived value for {entry.field} is no longer valid: {e}") from e
        store.write(restored)
        logger.info("Restored %s.%s from attic entry %s", entry.record_id, entry.field, entry.timestamp)
        return restored
