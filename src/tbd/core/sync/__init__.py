"""
Git-branch sync for records.

Records are committed to a dedicated branch (``tbd-sync``) with git
plumbing and exchanged with the remote by fetch, three-way merge and a
bounded push/retry loop.
"""

from tbd.core.sync.coordinator import MAX_RETRIES, PushRetryCoordinator
from tbd.core.sync.git import GitError, GitResult, GitRunner
from tbd.core.sync.models import (
    BranchStatus,
    PushAttempt,
    PushAttemptStatus,
    PushOutcome,
    PushResult,
    ReconcileAction,
    ReconcileResult,
    SyncState,
    SyncStatus,
    SyncSummary,
    SyncTallies,
)
from tbd.core.sync.service import SyncService, classify_push_failure
from tbd.core.sync.writer import IsolatedCommitWriter

__all__ = [
    "MAX_RETRIES",
    "PushRetryCoordinator",
    "GitError",
    "GitResult",
    "GitRunner",
    "BranchStatus",
    "PushAttempt",
    "PushAttemptStatus",
    "PushOutcome",
    "PushResult",
    "ReconcileAction",
    "ReconcileResult",
    "SyncState",
    "SyncStatus",
    "SyncSummary",
    "SyncTallies",
    "SyncService",
    "classify_push_failure",
    "IsolatedCommitWriter",
]
