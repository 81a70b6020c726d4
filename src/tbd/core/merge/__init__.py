"""
Three-way record merging and the conflict attic.
"""

from tbd.core.merge.attic import ArchiveError, ConflictArchiver
from tbd.core.merge.merger import MergeArchiveError, ThreeWayMerger, union_values
from tbd.core.merge.models import (
    WHOLE_RECORD,
    ConflictEntry,
    ConflictResolution,
    ConflictSource,
    MergeResult,
)

__all__ = [
    "ArchiveError",
    "ConflictArchiver",
    "MergeArchiveError",
    "ThreeWayMerger",
    "union_values",
    "WHOLE_RECORD",
    "ConflictEntry",
    "ConflictResolution",
    "ConflictSource",
    "MergeResult",
]
