"""
Short-id to internal-id mapping.

The mapping lives in one YAML file on the sync branch
(``mappings/ids.yml``) and is read and written wholesale:

    a7k2: is-01hx5zzkbkactav9wevgemmvrz
    b3m9: is-01hx5zzkbkbctav9wevgemmvrz

Once a short id is assigned to a record it never changes.
"""

import logging
from pathlib import Path

import yaml

from tbd.core.ids.generator import (
    SHORT_ID_LENGTH,
    SHORT_ID_MAX_LENGTH,
    extract_short_id,
    format_display_id,
    generate_short_id,
    is_internal_id,
    normalize_internal_id,
)
from tbd.utils.fs import atomic_write_text
from tbd.utils.yaml_io import dump_yaml, load_yaml_tolerant

logger = logging.getLogger(__name__)

# Random attempts at one length before trying a longer short id
ATTEMPTS_PER_LENGTH = 20


class IdMappingError(Exception):
    """Base error for id mapping operations."""


class IdNotFoundError(IdMappingError):
    """Raised when a short id is not in the mapping."""


class ShortIdExhaustedError(IdMappingError):
    """Raised when no unused short id could be generated."""


def parse_mapping(text: str, source: str = "<mapping>") -> dict[str, str]:
    """
    Parse mapping file content.

    Repeated keys (left by a hand-resolved git merge) are tolerated with the
    last occurrence winning, and logged so the file gets rewritten.

    Raises:
        IdMappingError: If the content is not a YAML mapping of strings
    """
    try:
        data, duplicates = load_yaml_tolerant(text)
    except yaml.YAMLError as e:
        raise IdMappingError(f"Invalid id mapping in {source}: {e}") from e

    if duplicates:
        logger.warning(
            "Id mapping %s repeats short ids %s (last occurrence wins); "
            "rewrite the file to clean it up",
            source,
            ", ".join(sorted(set(duplicates))),
        )

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise IdMappingError(f"Invalid id mapping in {source}: expected a mapping")
    return {str(short): str(internal) for short, internal in data.items()}


class IdMappingStore:
    """
    Storage for the short-id mapping.

    The file is loaded lazily on first use and saved atomically after every
    change.

    Example:
        >>> store = IdMappingStore(Path(".tbd/data-sync/mappings/ids.yml"))
        >>> short = store.assign("is-01hx5zzkbkactav9wevgemmvrz")
        >>> store.resolve(f"bd-{short}")
        'is-01hx5zzkbkactav9wevgemmvrz'
    """

    def __init__(self, path: Path, prefix: str = "bd"):
        """
        Initialize the store.

        Args:
            path: Path to the mapping YAML file
            prefix: Display prefix for short ids
        """
        self.path = Path(path)
        self.prefix = prefix
        self._by_short: dict[str, str] | None = None

    def _mapping(self) -> dict[str, str]:
        if self._by_short is None:
            if self.path.exists():
                self._by_short = parse_mapping(
                    self.path.read_text(encoding="utf-8"), source=str(self.path)
                )
            else:
                self._by_short = {}
        return self._by_short

    def reload(self) -> None:
        """Discard cached state so the next call reads the file again."""
        self._by_short = None

    @property
    def entries(self) -> dict[str, str]:
        """Copy of the mapping (short id -> internal id)."""
        return dict(self._mapping())

    def short_id_for(self, internal_id: str) -> str | None:
        """Short id assigned to a record, or None."""
        for short, internal in self._mapping().items():
            if internal == internal_id:
                return short
        return None

    def resolve(self, value: str) -> str:
        """
        Resolve user input to an internal id.

        Accepts ``is-<ulid>``, a bare ulid, ``bd-a7k2`` or ``a7k2``.

        Args:
            value: Short or internal id

        Returns:
            The internal id

        Raises:
            IdNotFoundError: If a short id is not in the mapping
        """
        internal = normalize_internal_id(value)
        if internal is not None:
            return internal

        short = extract_short_id(value, self.prefix)
        try:
            return self._mapping()[short]
        except KeyError:
            raise IdNotFoundError(f"Unknown id: {value}") from None

    def _new_short_id(self) -> str:
        taken = self._mapping()
        for length in range(SHORT_ID_LENGTH, SHORT_ID_MAX_LENGTH + 1):
            for _ in range(ATTEMPTS_PER_LENGTH):
                candidate = generate_short_id(length)
                if candidate not in taken:
                    return candidate
            logger.debug("Short ids of length %d are crowded, trying longer", length)
        raise ShortIdExhaustedError(
            f"Could not generate an unused short id after "
            f"{ATTEMPTS_PER_LENGTH} attempts per length up to {SHORT_ID_MAX_LENGTH}"
        )

    def assign(self, internal_id: str) -> str:
        """
        Get or create the short id for a record.

        Returns the existing short id if the record already has one.

        Raises:
            IdMappingError: If ``internal_id`` is not a valid internal id
            ShortIdExhaustedError: If no unused short id could be generated
        """
        if not is_internal_id(internal_id):
            raise IdMappingError(f"Not an internal id: {internal_id}")

        existing = self.short_id_for(internal_id)
        if existing is not None:
            return existing

        short = self._new_short_id()
        self._mapping()[short] = internal_id
        self.save()
        return short

    def add(self, internal_id: str, short_id: str) -> None:
        """
        Record a specific short id for a record (import path).

        Re-adding an identical pair is a no-op.

        Raises:
            IdMappingError: If the short id is taken by another record, or
                the record already has a different short id
        """
        mapping = self._mapping()
        short = short_id.lower()
        current = mapping.get(short)
        if current == internal_id:
            return
        if current is not None:
            raise IdMappingError(f"Short id {short} is already assigned to {current}")
        existing = self.short_id_for(internal_id)
        if existing is not None:
            raise IdMappingError(f"{internal_id} already has short id {existing}")

        mapping[short] = internal_id
        self.save()

    def format_display_id(self, internal_id: str) -> str:
        """
        Display form of a record id (``bd-a7k2``).

        Falls back to the internal id when no short id is assigned.
        """
        short = self.short_id_for(internal_id)
        if short is None:
            return internal_id
        return format_display_id(short, self.prefix)

    def merge_from(self, text: str, source: str = "remote") -> dict[str, str]:
        """
        Union another copy of the mapping into this one.

        Entries from ``text`` win: if both sides used the same short id for
        different records, the other side keeps it and the local record gets
        a fresh short id. If both sides gave the same record different short
        ids, the other side's short id is kept.

        Args:
            text: Content of the other mapping file
            source: Label used in log messages

        Returns:
            Local records whose short id changed (internal id -> new short id)
        """
        incoming = parse_mapping(text, source=source)
        local = self._mapping()
        incoming_internal = set(incoming.values())

        merged = dict(incoming)
        displaced: list[str] = []
        for short, internal in local.items():
            if internal in incoming_internal:
                continue
            if short in merged and merged[short] != internal:
                displaced.append(internal)
                continue
            merged[short] = internal

        self._by_short = merged
        reassigned: dict[str, str] = {}
        for internal in displaced:
            new_short = self._new_short_id()
            merged[new_short] = internal
            reassigned[internal] = new_short
            logger.warning(
                "Short id collision with %s: %s is now %s",
                source,
                internal,
                format_display_id(new_short, self.prefix),
            )

        return reassigned

    def reconcile(
        self, internal_ids: list[str], historical: dict[str, str] | None = None
    ) -> tuple[list[str], list[str]]:
        """
        Give every record in ``internal_ids`` a short id.

        Repairs the mapping after a merge brought in record files without
        entries. A record's earlier short id is recovered from ``historical``
        (short id -> internal id, e.g. an older copy of the mapping) when that
        short id is still free; otherwise a new one is generated.

        Like merge_from, this does not save; call save() afterwards.

        Returns:
            (created, recovered): internal ids that got a new short id, and
            internal ids whose earlier short id was restored
        """
        mapping = self._mapping()
        known = set(mapping.values())
        previous = {internal: short for short, internal in (historical or {}).items()}

        created: list[str] = []
        recovered: list[str] = []
        for internal in internal_ids:
            if internal in known:
                continue
            if not is_internal_id(internal):
                logger.warning("Not giving a short id to malformed record id %s", internal)
                continue

            short = previous.get(internal)
            if short is not None and short not in mapping:
                recovered.append(internal)
            else:
                short = self._new_short_id()
                created.append(internal)
            mapping[short] = internal
            known.add(internal)

        if created or recovered:
            logger.info(
                "Reconciled id mapping: %d new, %d recovered short id(s)",
                len(created),
                len(recovered),
            )
        return created, recovered

    def to_yaml(self) -> str:
        """Serialize the mapping (sorted by short id)."""
        return dump_yaml(self._mapping())

    def save(self) -> None:
        """Write the mapping file atomically."""
        atomic_write_text(self.path, self.to_yaml())
