"""
Sync service for the tbd-sync branch.

Records live in ``.tbd/data-sync/`` on the user's checkout (gitignored
there) and are committed to a dedicated branch that is never checked out.
Commits are built with git plumbing through IsolatedCommitWriter, so the
user's working tree and staging area are never touched.

A sync is:
    1. commit local data changes to the sync branch
    2. fetch the remote branch and reconcile (fast-forward or three-way merge)
    3. push, re-reconciling on non-fast-forward rejection (bounded)
"""

import logging
from pathlib import Path

from tbd.core.config.loader import load_config
from tbd.core.config.models import TbdConfig
from tbd.core.ids.mapping import IdMappingError, IdMappingStore, parse_mapping
from tbd.core.merge.attic import ArchiveError, ConflictArchiver
from tbd.core.merge.merger import MergeArchiveError, ThreeWayMerger
from tbd.core.merge.models import ConflictEntry
from tbd.core.paths import (
    ATTIC_DIR,
    DATA_SYNC_DIR,
    GITIGNORE_CONTENT,
    GITIGNORE_FILE,
    ID_MAPPING_FILE,
    META_FILE,
    is_record_path,
    record_id_from_path,
)
from tbd.core.records.models import Record
from tbd.core.records.parser import RecordFormatError, parse_record, serialize_record
from tbd.core.records.store import RecordStore, RecordStoreError
from tbd.core.sync.coordinator import PushRetryCoordinator
from tbd.core.sync.git import ZERO_SHA, GitError, GitRunner
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
from tbd.core.sync.writer import IsolatedCommitWriter
from tbd.utils.fs import atomic_write_text
from tbd.utils.timeutil import now_utc
from tbd.utils.yaml_io import dump_yaml

logger = logging.getLogger(__name__)

META_SCHEMA_VERSION = 1

# stderr markers git prints when a push is rejected for not fast-forwarding
_NON_FAST_FORWARD_MARKERS = ("non-fast-forward", "fetch first", "[rejected]")


def classify_push_failure(stderr: str) -> PushAttemptStatus:
    """Tell a recoverable non-fast-forward rejection from any other failure."""
    lowered = stderr.lower()
    if "[remote rejected]" in lowered:
        return PushAttemptStatus.FAILED
    if any(marker in lowered for marker in _NON_FAST_FORWARD_MARKERS):
        return PushAttemptStatus.NON_FAST_FORWARD
    return PushAttemptStatus.FAILED


class SyncService:
    """
    Service for syncing records through a git branch.

    Example:
        >>> sync = SyncService(project_dir=Path("."))
        >>> if not sync.is_initialized():
        ...     sync.initialize()
        >>> summary = sync.sync()
        >>> print(summary.describe())
    """

    def __init__(
        self,
        project_dir: Path | None = None,
        config: TbdConfig | None = None,
        stop_on_conflicts: bool = False,
    ) -> None:
        """
        Initialize the sync service.

        Args:
            project_dir: Root of the git working tree (defaults to cwd)
            config: Configuration (loaded from the project if None)
            stop_on_conflicts: Stop the push loop after a reconcile that
                produced conflicts instead of retrying
        """
        self.project_dir = (project_dir or Path.cwd()).resolve()
        self.config = config or load_config(self.project_dir)
        self.branch_name = self.config.sync.branch
        self.remote_name = self.config.sync.remote
        self.stop_on_conflicts = stop_on_conflicts

        self.git = GitRunner(self.project_dir)
        self.writer = IsolatedCommitWriter(self.git, self.project_dir)
        self.data_dir = self.project_dir / DATA_SYNC_DIR
        self.store = RecordStore(self.data_dir)
        self.mapping = IdMappingStore(
            self.project_dir / ID_MAPPING_FILE, prefix=self.config.display.id_prefix
        )
        self.archiver = ConflictArchiver(self.project_dir / ATTIC_DIR)
        # Conflicts are archived by the service once the whole merge is planned
        self.merger = ThreeWayMerger()

    @property
    def branch_ref(self) -> str:
        """Full git ref for the sync branch."""
        return f"refs/heads/{self.branch_name}"

    @property
    def remote_ref(self) -> str:
        """Remote-tracking ref for the sync branch."""
        return f"refs/remotes/{self.remote_name}/{self.branch_name}"

    def is_git_repo(self) -> bool:
        """Check if the project directory is inside a git repository."""
        return self.git.run_result(["rev-parse", "--git-dir"]).ok

    def _local_tip(self) -> str | None:
        return self.git.rev_parse(self.branch_ref)

    def _remote_tip(self) -> str | None:
        return self.git.rev_parse(self.remote_ref)

    def is_initialized(self) -> bool:
        """
        Check if the sync branch exists.

        Returns:
            True if the sync branch has been created, False otherwise.
        """
        if not self.is_git_repo():
            return False
        return self._local_tip() is not None

    def initialize(self) -> str:
        """
        Initialize the sync branch.

        Adopts the remote sync branch if one exists. Otherwise creates an
        orphan commit holding the local data directory and ``meta.yml``.

        Returns:
            Sha of the sync branch tip

        Raises:
            RuntimeError: If not in a git repository
            GitError: If git operations fail
        """
        if not self.is_git_repo():
            raise RuntimeError(f"Not a git repository: {self.project_dir}")

        gitignore = self.project_dir / GITIGNORE_FILE
        if not gitignore.exists():
            atomic_write_text(gitignore, GITIGNORE_CONTENT)

        tip = self._local_tip()
        if tip is not None:
            logger.info("Sync branch %s already exists", self.branch_name)
            return tip

        try:
            remote_tip = self.fetch()
        except GitError as e:
            # No usable remote yet; start a fresh branch that can be pushed later
            logger.warning("Could not fetch %s: %s", self.remote_name, e)
            remote_tip = None
        if remote_tip is not None:
            logger.info("Adopting %s/%s (%s)", self.remote_name, self.branch_name, remote_tip[:8])
            self._adopt(remote_tip)
            return remote_tip

        logger.info("Initializing sync branch: %s", self.branch_name)
        meta = self.project_dir / META_FILE
        if not meta.exists():
            atomic_write_text(
                meta,
                dump_yaml(
                    {"schema_version": META_SCHEMA_VERSION, "created_at": now_utc().isoformat()}
                ),
            )
        return self.writer.commit(
            self.branch_name, "tbd: initialize sync branch", self._data_files()
        )

    def _adopt(self, remote_tip: str) -> None:
        # Files that exist locally stay; they are committed as local edits
        for path in self.git.ls_tree(remote_tip, DATA_SYNC_DIR):
            if not (self.project_dir / path).exists():
                self._apply_paths(remote_tip, [path])
        self.git.run(
            ["update-ref", "-m", "tbd: adopt remote", self.branch_ref, remote_tip, ZERO_SHA]
        )
        self.mapping.reload()

    # Local data

    def _data_files(self) -> list[str]:
        """Repository-relative paths of every data file on disk."""
        if not self.data_dir.exists():
            return []
        files = []
        for path in sorted(self.data_dir.rglob("*")):
            # Skip temp files left by interrupted writes
            if path.is_file() and not path.name.startswith("."):
                files.append(f"{DATA_SYNC_DIR}/{path.relative_to(self.data_dir).as_posix()}")
        return files

    def local_changes(self) -> list[str]:
        """
        Data files whose content differs from the sync branch tip.

        Includes files deleted locally that still exist on the branch.
        """
        tip = self._local_tip()
        committed = self.git.ls_tree(tip, DATA_SYNC_DIR) if tip else {}
        on_disk = self._data_files()

        hashes: list[str] = []
        if on_disk:
            output = self.git.run(["hash-object", "--stdin-paths"], input_data="\n".join(on_disk))
            hashes = output.splitlines()

        changed = [path for path, blob in zip(on_disk, hashes) if committed.get(path) != blob]
        disk_set = set(on_disk)
        changed.extend(path for path in committed if path not in disk_set)
        return sorted(changed)

    def commit_local_changes(self, message: str | None = None) -> str | None:
        """
        Commit local data changes to the sync branch.

        Returns:
            Sha of the branch tip after committing

        Raises:
            RuntimeError: If the sync branch is not initialized
            GitError: If the commit fails
        """
        if not self.is_initialized():
            raise RuntimeError(
                f"Sync branch '{self.branch_name}' not initialized. Call initialize() first."
            )

        changes = self.local_changes()
        if not changes:
            return self._local_tip()

        records = sum(1 for path in changes if is_record_path(path))
        message = message or f"tbd: update {records} record(s)"
        return self.writer.commit(self.branch_name, message, changes)

    def _apply_paths(self, ref: str, paths: list[str]) -> None:
        """Make the data files at ``paths`` match their content at ``ref``."""
        for path in paths:
            target = self.project_dir / path
            content = self.git.show_file(ref, path)
            if content is None:
                target.unlink(missing_ok=True)
            else:
                atomic_write_text(target, content)

    # Remote

    def fetch(self) -> str | None:
        """
        Fetch the sync branch into its remote-tracking ref.

        Returns:
            Remote tip sha, or None if the remote has no sync branch

        Raises:
            GitError: If the fetch fails for any other reason
        """
        refspec = f"+{self.branch_ref}:{self.remote_ref}"
        result = self.git.run_result(["fetch", "--no-tags", self.remote_name, refspec])
        if result.ok:
            return self._remote_tip()

        if "couldn't find remote ref" in result.stderr.lower():
            logger.debug("Remote %s has no %s branch", self.remote_name, self.branch_name)
            return None
        raise GitError(
            f"Failed to fetch {self.remote_name}/{self.branch_name}",
            command=result.command,
            stderr=result.stderr.strip(),
        )

    def reconcile(self) -> ReconcileResult:
        """
        Bring remote changes into the local sync branch.

        Local edits are committed first. Then the remote branch is fetched
        and, depending on how the branches relate, nothing happens, the
        local branch is fast-forwarded, or the two are merged record by
        record into a commit whose second parent is the remote tip.

        Raises:
            GitError: If git operations fail
            MergeArchiveError: If merge conflicts could not be archived
        """
        self.commit_local_changes()
        local_tip = self._local_tip()
        remote_tip = self.fetch()

        if remote_tip is None:
            return ReconcileResult(
                action=ReconcileAction.NOTHING,
                local_tip_before=local_tip,
                local_tip_after=local_tip,
            )

        if local_tip is None or local_tip == remote_tip or self.git.is_ancestor(remote_tip, local_tip):
            return ReconcileResult(
                action=ReconcileAction.NOTHING,
                local_tip_before=local_tip,
                local_tip_after=local_tip,
                remote_tip=remote_tip,
            )

        if self.git.is_ancestor(local_tip, remote_tip):
            changes = self.git.diff_names(local_tip, remote_tip, DATA_SYNC_DIR)
            self._apply_paths(remote_tip, [path for _, path in changes])
            self.git.run(
                ["update-ref", "-m", "tbd: fast-forward", self.branch_ref, remote_tip, local_tip]
            )
            self.mapping.reload()
            logger.info("Fast-forwarded %s to %s", self.branch_name, remote_tip[:8])
            return ReconcileResult(
                action=ReconcileAction.FAST_FORWARD,
                local_tip_before=local_tip,
                local_tip_after=remote_tip,
                remote_tip=remote_tip,
            )

        return self._merge_diverged(local_tip, remote_tip)

    def _read_record_at(self, ref: str, path: str) -> Record | None:
        text = self.git.show_file(ref, path)
        if text is None:
            return None
        try:
            return parse_record(text, source=f"{ref[:8]}:{path}")
        except RecordFormatError as e:
            logger.warning("Ignoring malformed record during merge: %s", e)
            return None

    def _merge_diverged(self, local_tip: str, remote_tip: str) -> ReconcileResult:
        """
        Merge two diverged branch tips into a commit on the sync branch.

        Runs in three steps so a failure leaves nothing half-applied:
        every file change is worked out in memory, then all conflicts are
        archived, then the files are written and committed. If archiving,
        writing or committing fails, attic files from this merge are removed
        and the data directory is put back to the local tip.
        """
        base = self.git.merge_base(local_tip, remote_tip)
        logger.info(
            "Merging %s/%s into %s (base %s)",
            self.remote_name,
            self.branch_name,
            self.branch_name,
            base[:8] if base else "none",
        )

        self.mapping.reload()
        try:
            writes, merged_records, conflicts, reassigned = self._plan_merge(
                base, local_tip, remote_tip
            )
        except (GitError, IdMappingError):
            self.mapping.reload()
            raise

        try:
            archived = self.archiver.archive_all(conflicts)
        except ArchiveError as e:
            self.mapping.reload()
            raise MergeArchiveError(f"Merge not applied; could not archive conflicts: {e}") from e

        try:
            self._write_contents(writes)
            commit = self.writer.commit(
                self.branch_name,
                f"tbd: merge {self.remote_name}/{self.branch_name}",
                self.local_changes(),
                merge_parents=[remote_tip],
            )
        except (GitError, OSError):
            logger.warning("Merge failed; restoring data files to %s", local_tip[:8])
            self.archiver.discard(archived)
            self._apply_paths(local_tip, sorted(writes))
            self.mapping.reload()
            raise

        return ReconcileResult(
            action=ReconcileAction.MERGED,
            local_tip_before=local_tip,
            local_tip_after=commit,
            remote_tip=remote_tip,
            merged_records=merged_records,
            conflicts=conflicts,
            reassigned_ids=reassigned,
        )

    def _plan_merge(
        self, base: str | None, local_tip: str, remote_tip: str
    ) -> tuple[dict[str, str | None], list[str], list[ConflictEntry], dict[str, str]]:
        """
        Work out the merged data directory without touching disk.

        Returns:
            (writes, merged record ids, conflicts, reassigned short ids), where
            ``writes`` maps each changed path to its new content (None to delete)
        """
        local_files = self.git.ls_tree(local_tip, DATA_SYNC_DIR)
        remote_files = self.git.ls_tree(remote_tip, DATA_SYNC_DIR)
        base_files = self.git.ls_tree(base, DATA_SYNC_DIR) if base else {}

        writes: dict[str, str | None] = {}
        conflicts: list[ConflictEntry] = []
        merged_records: list[str] = []

        for path in sorted(set(local_files) | set(remote_files)):
            if path == ID_MAPPING_FILE:
                continue
            local_blob = local_files.get(path)
            remote_blob = remote_files.get(path)
            base_blob = base_files.get(path)

            if remote_blob == local_blob or remote_blob == base_blob:
                continue
            if local_blob == base_blob or local_blob is None:
                # Only the remote changed it, or the local side deleted what
                # the remote edited: take the remote copy
                writes[path] = self.git.show_file(remote_tip, path)
                continue
            if remote_blob is None:
                # Deleted remotely, edited locally: keep the local copy
                continue

            if is_record_path(path):
                local_record = self._read_record_at(local_tip, path)
                remote_record = self._read_record_at(remote_tip, path)
                if remote_record is None:
                    continue
                if local_record is None:
                    writes[path] = self.git.show_file(remote_tip, path)
                    continue
                base_record = self._read_record_at(base, path) if base and base_blob else None
                result = self.merger.merge(base_record, local_record, remote_record)
                writes[path] = serialize_record(result.merged)
                conflicts.extend(result.conflicts)
                merged_records.append(result.merged.id)
                continue

            logger.warning("Both sides changed %s; keeping the local copy", path)

        # Short ids: union both mappings, then cover records that arrived
        # without an entry
        reassigned: dict[str, str] = {}
        if remote_files.get(ID_MAPPING_FILE) not in (None, local_files.get(ID_MAPPING_FILE)):
            remote_text = self.git.show_file(remote_tip, ID_MAPPING_FILE) or ""
            reassigned = self.mapping.merge_from(
                remote_text, source=f"{self.remote_name}/{self.branch_name}"
            )

        merged_paths = (set(local_files) | {p for p, c in writes.items() if c is not None}) - {
            p for p, c in writes.items() if c is None
        }
        record_ids = sorted(record_id_from_path(p) for p in merged_paths if is_record_path(p))
        self.mapping.reconcile(record_ids, historical=self._mapping_at(base))

        current = self.git.show_file(local_tip, ID_MAPPING_FILE)
        mapping_text = self.mapping.to_yaml()
        if mapping_text != current and (current is not None or self.mapping.entries):
            writes[ID_MAPPING_FILE] = mapping_text

        return writes, merged_records, conflicts, reassigned

    def _mapping_at(self, ref: str | None) -> dict[str, str]:
        if ref is None:
            return {}
        text = self.git.show_file(ref, ID_MAPPING_FILE)
        if text is None:
            return {}
        try:
            return parse_mapping(text, source=f"{ref[:8]}:{ID_MAPPING_FILE}")
        except IdMappingError as e:
            logger.warning("Ignoring unreadable historical id mapping: %s", e)
            return {}

    def _write_contents(self, writes: dict[str, str | None]) -> None:
        for path, content in sorted(writes.items()):
            target = self.project_dir / path
            if content is None:
                target.unlink(missing_ok=True)
            else:
                atomic_write_text(target, content)

    # Push

    def _tally_outgoing(self) -> SyncTallies:
        local_tip = self._local_tip()
        if local_tip is None:
            return SyncTallies()
        remote_tip = self._remote_tip()
        if remote_tip is None:
            return SyncTallies.from_changes(
                [("A", path) for path in self.git.ls_tree(local_tip, DATA_SYNC_DIR)]
            )
        return SyncTallies.from_changes(self.git.diff_names(remote_tip, local_tip, DATA_SYNC_DIR))

    def _push_once(self) -> PushAttempt:
        local_tip = self._local_tip()
        result = self.git.run_result(
            ["push", self.remote_name, f"{self.branch_ref}:{self.branch_ref}"]
        )
        if result.ok:
            return PushAttempt(status=PushAttemptStatus.ACCEPTED, pushed_sha=local_tip)

        stderr = result.stderr.strip()
        return PushAttempt(
            status=classify_push_failure(stderr),
            error=stderr or f"git push exited with {result.returncode}",
            pushed_sha=local_tip,
        )

    def _verify_push(self, pushed_sha: str | None) -> bool:
        """Confirm the remote branch now equals or contains ``pushed_sha``."""
        if pushed_sha is None:
            return False
        result = self.git.run_result(["ls-remote", self.remote_name, self.branch_ref])
        if not result.ok:
            logger.warning("Could not verify push: %s", result.stderr.strip())
            return False

        remote_sha = result.stdout.split()[0] if result.stdout.strip() else None
        if remote_sha == pushed_sha:
            self.git.run(["update-ref", self.remote_ref, pushed_sha])
            return True
        if remote_sha is None:
            return False

        # Someone may have pushed on top of us already
        fetched = self.fetch()
        return fetched is not None and self.git.is_ancestor(pushed_sha, fetched)

    def _run_push(self) -> tuple[PushResult, SyncTallies]:
        sent = SyncTallies()

        def push() -> PushAttempt:
            nonlocal sent
            sent = self._tally_outgoing()
            return self._push_once()

        coordinator = PushRetryCoordinator(
            push=push,
            reconcile=lambda: self.reconcile().conflicts,
            verify=self._verify_push,
            max_retries=self.config.sync.max_push_retries,
            stop_on_conflicts=self.stop_on_conflicts,
        )
        result = coordinator.run()
        if not result.success:
            sent = SyncTallies()
        return result, sent

    def push(self) -> PushResult:
        """
        Push the sync branch, reconciling and retrying on rejection.

        Returns:
            PushResult; check ``success`` (or ``outcome``) before reporting

        Raises:
            RuntimeError: If sync branch not initialized
        """
        if not self.is_initialized():
            raise RuntimeError(
                f"Sync branch '{self.branch_name}' not initialized. Call initialize() first."
            )

        local_tip = self._local_tip()
        if local_tip is not None and local_tip == self._remote_tip():
            return PushResult(outcome=PushOutcome.UP_TO_DATE, pushed_sha=local_tip)
        return self._run_push()[0]

    # Full sync

    def sync(self, pull: bool = True, push: bool = True) -> SyncSummary:
        """
        Commit, reconcile and push.

        Never raises for git, merge or storage failures; they are reported
        as a FAILED summary so callers must branch on ``status``.

        Args:
            pull: Fetch and merge remote changes before pushing
            push: Push the result; a rejected push still reconciles and
                retries, so push-only mode never discards remote changes

        Raises:
            ValueError: If both pull and push are disabled
        """
        if not (pull or push):
            raise ValueError("sync needs pull, push, or both")
        if not self.is_initialized():
            return SyncSummary(
                status=SyncStatus.FAILED,
                error=f"Sync branch '{self.branch_name}' not initialized; run 'tbd sync init'",
            )

        try:
            self.commit_local_changes()
            tip_before = self._local_tip()
            conflicts: list[ConflictEntry] = []
            if pull:
                conflicts.extend(self.reconcile().conflicts)

            local_tip = self._local_tip()
            in_sync = local_tip is not None and local_tip == self._remote_tip()
            if not push or (pull and in_sync):
                received = self._tally_received(tip_before, local_tip)
                unchanged = in_sync and tip_before == local_tip
                status = SyncStatus.UP_TO_DATE if unchanged else SyncStatus.SYNCED
                return SyncSummary(status=status, received=received, conflicts=conflicts)

            push_result, sent = self._run_push()
            conflicts.extend(push_result.conflicts)
            received = self._tally_received(tip_before, self._local_tip())
        except (GitError, MergeArchiveError, RecordStoreError, IdMappingError, OSError) as e:
            logger.warning("Sync failed: %s", e)
            return SyncSummary(status=SyncStatus.FAILED, error=str(e))

        if not push_result.success:
            return SyncSummary(
                status=SyncStatus.FAILED,
                received=received,
                conflicts=conflicts,
                push=push_result,
                error=push_result.error,
            )
        return SyncSummary(
            status=SyncStatus.SYNCED,
            sent=sent,
            received=received,
            conflicts=conflicts,
            push=push_result,
        )

    def _tally_received(self, before: str | None, after: str | None) -> SyncTallies:
        if before is None or after is None or before == after:
            return SyncTallies()
        return SyncTallies.from_changes(self.git.diff_names(before, after, DATA_SYNC_DIR))

    # Status

    def get_status(self) -> BranchStatus:
        """
        Get sync status comparing local and remote branches.

        Returns:
            BranchStatus indicating the relationship between local and remote.
        """
        if not self.is_initialized():
            return BranchStatus.UNINITIALIZED

        try:
            remote_tip = self.fetch()
        except GitError as e:
            logger.warning("Failed to fetch remote: %s", e.stderr or str(e))
            return BranchStatus.NO_REMOTE

        local_tip = self._local_tip()
        if remote_tip is None or local_tip is None:
            return BranchStatus.NO_REMOTE
        if local_tip == remote_tip:
            return BranchStatus.UP_TO_DATE

        merge_base = self.git.merge_base(local_tip, remote_tip)
        if merge_base == local_tip:
            return BranchStatus.BEHIND
        if merge_base == remote_tip:
            return BranchStatus.AHEAD
        return BranchStatus.DIVERGED

    def get_state(self) -> SyncState:
        """
        Get a snapshot of the sync branch, its remote, and pending changes.

        Fetches from the remote to compute ahead/behind counts.
        """
        status = self.get_status()
        local_tip = self._local_tip()
        remote_tip = self._remote_tip()

        ahead = behind = 0
        if local_tip and remote_tip and status != BranchStatus.NO_REMOTE:
            counts = self.git.run(
                ["rev-list", "--left-right", "--count", f"{local_tip}...{remote_tip}"]
            ).split()
            ahead, behind = int(counts[0]), int(counts[1])

        pending = len(self.local_changes()) if local_tip else 0
        return SyncState(
            branch_name=self.branch_name,
            remote_name=self.remote_name,
            status=status,
            local_tip=local_tip,
            remote_tip=remote_tip,
            ahead=ahead,
            behind=behind,
            pending_changes=pending,
            checked_at=now_utc(),
        )
