"""
Three-way, field-level record merging.

Given the common ancestor of two divergent copies of a record, each field
is resolved on its own:

- changed on one side only: take that side (never a conflict)
- changed identically on both sides: take it
- changed differently on both sides: apply the field's MergeStrategy

Every value the merge discards becomes a ConflictEntry. When an archiver is
attached, all entries are written to the attic before ``merge`` returns.
"""

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

from tbd.core.merge.attic import ArchiveError, ConflictArchiver
from tbd.core.merge.models import (
    WHOLE_RECORD,
    ConflictEntry,
    ConflictResolution,
    ConflictSource,
    MergeResult,
)
from tbd.core.records.models import FIELD_STRATEGIES, MergeStrategy, Record
from tbd.utils.timeutil import filename_timestamp, now_utc

logger = logging.getLogger(__name__)


class MergeArchiveError(Exception):
    """Raised when conflicts from a merge could not be archived.

    The merged record must not be applied when this is raised.
    """


def union_values(local: list[Any], remote: list[Any]) -> list[Any]:
    """Local elements first, then remote's novel elements; structural dedup."""
    result: list[Any] = []
    for item in [*local, *remote]:
        if item not in result:
            result.append(item)
    return result


class ThreeWayMerger:
    """
    Merges two copies of a record against their common ancestor.

    Example:
        >>> merger = ThreeWayMerger(archiver=ConflictArchiver(attic_dir))
        >>> result = merger.merge(base, local, remote)
        >>> result.merged.version == max(local.version, remote.version) + 1
        True
    """

    def __init__(
        self,
        archiver: ConflictArchiver | None = None,
        clock: Callable[[], datetime] = now_utc,
    ):
        """
        Initialize the merger.

        Args:
            archiver: Where to archive discarded values (None to only report them)
            clock: Source of the current time
        """
        self.archiver = archiver
        self.clock = clock

    def merge(self, base: Record | None, local: Record, remote: Record) -> MergeResult:
        """
        Merge ``local`` and ``remote`` against ``base``.

        Args:
            base: Common ancestor, or None if both sides created a record
                with the same id independently
            local: Local copy
            remote: Remote copy

        Returns:
            MergeResult with the merged record and discarded values

        Raises:
            MergeArchiveError: If an archiver is attached and a conflict
                could not be archived
        """
        if base is None:
            result = self._merge_without_base(local, remote)
        else:
            result = self._merge_fields(base, local, remote)

        if result.conflicts:
            logger.warning(
                "Merged %s with %d conflict(s): %s",
                local.id,
                len(result.conflicts),
                ", ".join(c.field for c in result.conflicts),
            )
            self._archive(result.conflicts)
        return result

    def _archive(self, conflicts: list[ConflictEntry]) -> None:
        if self.archiver is None:
            return
        try:
            self.archiver.archive_all(conflicts)
        except ArchiveError as e:
            raise MergeArchiveError(
                f"Could not archive conflicts on {conflicts[0].record_id}: {e}"
            ) from e

    def _merge_without_base(self, local: Record, remote: Record) -> MergeResult:
        # Same id created on both sides: the earlier copy keeps the identity
        if local.created_at <= remote.created_at:
            winner, loser = local, remote
            winner_source, loser_source = ConflictSource.LOCAL, ConflictSource.REMOTE
        else:
            winner, loser = remote, local
            winner_source, loser_source = ConflictSource.REMOTE, ConflictSource.LOCAL

        if winner.model_dump() == loser.model_dump():
            return MergeResult(merged=winner)

        entry = ConflictEntry(
            record_id=winner.id,
            field=WHOLE_RECORD,
            timestamp=filename_timestamp(self.clock()),
            lost_value=loser.model_dump(mode="json"),
            winner_value=winner.model_dump(mode="json"),
            local_version=local.version,
            remote_version=remote.version,
            resolution=ConflictResolution.FIRST_CREATED,
            winner_source=winner_source,
            loser_source=loser_source,
            local_updated_at=local.updated_at,
            remote_updated_at=remote.updated_at,
        )
        return MergeResult(merged=winner, conflicts=[entry])

    def _merge_fields(self, base: Record, local: Record, remote: Record) -> MergeResult:
        now = self.clock()
        timestamp = filename_timestamp(now)
        b, l, r = base.model_dump(), local.model_dump(), remote.model_dump()
        l_json, r_json = local.model_dump(mode="json"), remote.model_dump(mode="json")
        b_json = base.model_dump(mode="json")
        local_is_newer = local.updated_at >= remote.updated_at

        def conflict(
            field: str,
            resolution: ConflictResolution,
            winner: ConflictSource,
            loser: ConflictSource,
        ) -> ConflictEntry:
            values = {
                ConflictSource.BASE: b_json,
                ConflictSource.LOCAL: l_json,
                ConflictSource.REMOTE: r_json,
            }
            return ConflictEntry(
                record_id=base.id,
                field=field,
                timestamp=timestamp,
                lost_value=values[loser][field],
                winner_value=values[winner][field],
                local_version=local.version,
                remote_version=remote.version,
                resolution=resolution,
                winner_source=winner,
                loser_source=loser,
                local_updated_at=local.updated_at,
                remote_updated_at=remote.updated_at,
            )

        merged: dict[str, Any] = {}
        conflicts: list[ConflictEntry] = []

        for field, strategy in FIELD_STRATEGIES.items():
            bv, lv, rv = b[field], l[field], r[field]

            if lv == rv:
                merged[field] = lv
            elif lv == bv:
                merged[field] = rv
            elif rv == bv:
                merged[field] = lv
            elif strategy == MergeStrategy.IMMUTABLE:
                merged[field] = bv
                for side in (ConflictSource.LOCAL, ConflictSource.REMOTE):
                    conflicts.append(
                        conflict(field, ConflictResolution.IMMUTABLE, ConflictSource.BASE, side)
                    )
            elif strategy == MergeStrategy.LWW:
                if local_is_newer:
                    merged[field] = lv
                    conflicts.append(
                        conflict(
                            field,
                            ConflictResolution.LWW,
                            ConflictSource.LOCAL,
                            ConflictSource.REMOTE,
                        )
                    )
                else:
                    merged[field] = rv
                    conflicts.append(
                        conflict(
                            field,
                            ConflictResolution.LWW,
                            ConflictSource.REMOTE,
                            ConflictSource.LOCAL,
                        )
                    )
            elif strategy == MergeStrategy.UNION:
                merged[field] = union_values(lv, rv)
            elif strategy == MergeStrategy.MAX:
                merged[field] = max(lv, rv)
            else:
                raise AssertionError(f"Unhandled merge strategy {strategy!r} for {field}")

        merged["version"] = max(local.version, remote.version) + 1
        # Never move updated_at backwards, even if the other clock ran ahead
        merged["updated_at"] = max(now, local.updated_at, remote.updated_at)

        return MergeResult(merged=Record.model_validate(merged), conflicts=conflicts)
