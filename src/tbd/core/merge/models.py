"""
Merge result models.

A ConflictEntry is written to the attic for every value a merge discards,
so nothing is ever lost silently.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from tbd.core.records.models import Record
from tbd.utils.timeutil import filename_timestamp

# Field name used for conflicts that replaced a whole record
WHOLE_RECORD = "whole_record"


class ConflictResolution(str, Enum):
    """Rule that decided a conflict."""

    LWW = "lww"  # later updated_at won
    IMMUTABLE = "immutable"  # base value kept, both edits dropped
    FIRST_CREATED = "first_created"  # id collision, earlier created_at won


class ConflictSource(str, Enum):
    """Which copy a value came from."""

    LOCAL = "local"
    REMOTE = "remote"
    BASE = "base"


class ConflictEntry(BaseModel):
    """
    One value discarded by a merge.

    Example:
        >>> entry.record_id, entry.field, entry.lost_value
        ('is-01hx5zzkbkactav9wevgemmvrz', 'status', 'blocked')
    """

    record_id: str = Field(..., description="Internal id of the merged record")
    field: str = Field(..., description="Field name, or 'whole_record'")
    timestamp: str = Field(
        default_factory=filename_timestamp,
        description="When the merge ran (colon-free, e.g. 2025-01-07T10-30-00Z)",
    )
    lost_value: Any = Field(default=None, description="Value that was discarded")
    winner_value: Any = Field(default=None, description="Value that was kept")
    local_version: int = Field(..., description="Local record version")
    remote_version: int = Field(..., description="Remote record version")
    resolution: ConflictResolution = Field(..., description="Rule that decided the conflict")
    winner_source: ConflictSource = Field(..., description="Where the kept value came from")
    loser_source: ConflictSource = Field(..., description="Where the lost value came from")
    local_updated_at: datetime | None = Field(default=None, description="Local updated_at")
    remote_updated_at: datetime | None = Field(default=None, description="Remote updated_at")

    model_config = ConfigDict(frozen=True)

    @property
    def is_whole_record(self) -> bool:
        return self.field == WHOLE_RECORD


class MergeResult(BaseModel):
    """Output of a three-way merge."""

    merged: Record = Field(..., description="The reconciled record")
    conflicts: list[ConflictEntry] = Field(
        default_factory=list, description="Values discarded by the merge"
    )

    model_config = ConfigDict(frozen=True)

    @property
    def has_conflicts(self) -> bool:
        return bool(self.conflicts)
