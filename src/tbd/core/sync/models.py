"""
Data models for the sync service.

Push and sync outcomes are explicit enums. Success is derived from the
outcome, never from the presence or absence of a message, so a failed push
cannot be reported as "in sync".
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, computed_field

from tbd.core.merge.models import ConflictEntry
from tbd.core.paths import is_record_path


class BranchStatus(str, Enum):
    """Status of the local sync branch relative to the remote."""

    UP_TO_DATE = "up_to_date"
    AHEAD = "ahead"
    BEHIND = "behind"
    DIVERGED = "diverged"
    NO_REMOTE = "no_remote"
    UNINITIALIZED = "uninitialized"


class PushAttemptStatus(str, Enum):
    """How the remote answered one push."""

    ACCEPTED = "accepted"
    NON_FAST_FORWARD = "non_fast_forward"  # recoverable: fetch, merge, retry
    FAILED = "failed"  # auth, network, permission: terminal


class PushAttempt(BaseModel):
    """Result of a single push."""

    status: PushAttemptStatus
    error: str | None = Field(default=None, description="git's explanation, if rejected")
    pushed_sha: str | None = Field(default=None, description="Local tip that was pushed")

    model_config = ConfigDict(frozen=True)


class PushOutcome(str, Enum):
    """Final outcome of the push/retry loop."""

    PUSHED = "pushed"
    UP_TO_DATE = "up_to_date"
    FAILED = "failed"
    CONFLICTS_PENDING = "conflicts_pending"


class PushResult(BaseModel):
    """
    Result of PushRetryCoordinator.run().

    Example:
        >>> result = PushResult(outcome=PushOutcome.PUSHED, attempts=2)
        >>> result.success
        True
    """

    outcome: PushOutcome
    attempts: int = Field(default=0, description="Number of push attempts made")
    error: str | None = Field(default=None, description="Why the push failed")
    pushed_sha: str | None = Field(default=None, description="Commit now on the remote")
    conflicts: list[ConflictEntry] = Field(
        default_factory=list, description="Conflicts resolved while retrying"
    )

    @computed_field  # type: ignore[prop-decorator]
    @property
    def success(self) -> bool:
        return self.outcome in (PushOutcome.PUSHED, PushOutcome.UP_TO_DATE)


class SyncTallies(BaseModel):
    """Count of record files new/updated/deleted in one direction."""

    new: int = 0
    updated: int = 0
    deleted: int = 0

    @classmethod
    def from_changes(cls, changes: list[tuple[str, str]]) -> SyncTallies:
        """
        Tally (status, path) pairs from ``git diff --name-status``.

        Only record files count; mapping, attic and meta files are ignored.
        """
        tallies = cls()
        for status, path in changes:
            if not is_record_path(path):
                continue
            if status == "A":
                tallies.new += 1
            elif status == "D":
                tallies.deleted += 1
            else:
                tallies.updated += 1
        return tallies

    @property
    def total(self) -> int:
        return self.new + self.updated + self.deleted

    def describe(self) -> str:
        parts = []
        if self.new:
            parts.append(f"{self.new} new")
        if self.updated:
            parts.append(f"{self.updated} updated")
        if self.deleted:
            parts.append(f"{self.deleted} deleted")
        return ", ".join(parts)


class ReconcileAction(str, Enum):
    """What reconciling with the remote did."""

    NOTHING = "nothing"  # remote absent or already contained locally
    FAST_FORWARD = "fast_forward"
    MERGED = "merged"


class ReconcileResult(BaseModel):
    """Result of SyncService.reconcile()."""

    action: ReconcileAction
    local_tip_before: str | None = None
    local_tip_after: str | None = None
    remote_tip: str | None = None
    merged_records: list[str] = Field(
        default_factory=list, description="Record ids merged field by field"
    )
    conflicts: list[ConflictEntry] = Field(default_factory=list)
    reassigned_ids: dict[str, str] = Field(
        default_factory=dict, description="Records given a new short id (internal -> short)"
    )


class SyncStatus(str, Enum):
    """Overall result of a sync."""

    SYNCED = "synced"
    UP_TO_DATE = "up_to_date"
    FAILED = "failed"


class SyncSummary(BaseModel):
    """
    Result of SyncService.sync(), rendered by the CLI as text or JSON.

    Example:
        >>> summary.model_dump(mode="json")
        {'sent': {'new': 1, 'updated': 0, 'deleted': 0}, ..., 'success': True}
    """

    status: SyncStatus
    sent: SyncTallies = Field(default_factory=SyncTallies)
    received: SyncTallies = Field(default_factory=SyncTallies)
    conflicts: list[ConflictEntry] = Field(default_factory=list)
    push: PushResult | None = Field(default=None, description="Push loop result")
    error: str | None = Field(default=None, description="Why the sync failed")

    @computed_field  # type: ignore[prop-decorator]
    @property
    def success(self) -> bool:
        return self.status != SyncStatus.FAILED

    def describe(self) -> str:
        """Human-readable one-line summary."""
        if self.status == SyncStatus.FAILED:
            return f"Sync failed: {self.error or 'unknown error'}"
        if self.status == SyncStatus.UP_TO_DATE:
            return "Already in sync"

        parts = []
        if sent := self.sent.describe():
            parts.append(f"sent {sent}")
        if received := self.received.describe():
            parts.append(f"received {received}")
        if self.conflicts:
            parts.append(f"{len(self.conflicts)} conflict(s) archived to attic")
        if not parts:
            return "Synced"
        return "Synced: " + "; ".join(parts)


class SyncState(BaseModel):
    """Snapshot of the sync branch, as reported by SyncService.get_state()."""

    branch_name: str
    remote_name: str
    status: BranchStatus
    local_tip: str | None = None
    remote_tip: str | None = None
    ahead: int = Field(default=0, description="Local commits not on the remote")
    behind: int = Field(default=0, description="Remote commits not in local")
    pending_changes: int = Field(
        default=0, description="Local data files not yet committed to the branch"
    )
    checked_at: datetime | None = None
