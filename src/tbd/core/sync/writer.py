"""
Commits to the sync branch without touching the user's checkout.

The writer builds commits with git plumbing against a private index file,
so whatever the user has staged or modified on their own branch is left
exactly as it was. The branch ref is only moved by a final compare-and-swap
``update-ref``; any earlier failure leaves it where it was.
"""

import logging
import os
import secrets
from collections.abc import Iterable, Sequence
from pathlib import Path

from tbd.core.sync.git import ZERO_SHA, GitRunner

logger = logging.getLogger(__name__)

# Mode for every file tbd writes
FILE_MODE = "100644"


class IsolatedCommitWriter:
    """
    Builds commits on a branch from files in the working tree.

    Example:
        >>> writer = IsolatedCommitWriter(GitRunner(root), root)
        >>> writer.commit("tbd-sync", "tbd sync", [".tbd/data-sync/issues/is-01hx....md"])
        'a1b2c3...'
    """

    def __init__(self, git: GitRunner, worktree_root: Path):
        """
        Initialize the writer.

        Args:
            git: Runner for the repository (its own index is never used)
            worktree_root: Directory that changed file paths are relative to
        """
        self.git = git
        self.worktree_root = Path(worktree_root)

    def _private_index_path(self) -> Path:
        token = secrets.token_hex(4)
        return self.git.git_dir() / f"tbd-index-{os.getpid()}-{token}"

    def commit(
        self,
        branch: str,
        message: str,
        changed_files: Iterable[str],
        merge_parents: Sequence[str] = (),
    ) -> str:
        """
        Commit changed files on top of the branch tip.

        Files in ``changed_files`` that exist are staged with their current
        content; files that no longer exist are removed from the tree. All
        other files keep their content from the branch tip.

        Args:
            branch: Branch name (without refs/heads/)
            message: Commit message
            changed_files: Paths relative to the worktree root
            merge_parents: Extra parent commits (e.g. the remote tip when
                committing a merge)

        Returns:
            Sha of the new commit, or the unchanged tip if there was nothing
            to commit

        Raises:
            GitError: If any step fails; the branch ref is not moved
        """
        ref = f"refs/heads/{branch}"
        tip = self.git.rev_parse(ref)
        index_file = self._private_index_path()
        private = self.git.with_index(index_file)

        try:
            if tip:
                private.run(["read-tree", tip])
            else:
                private.run(["read-tree", "--empty"])

            for path in sorted(set(changed_files)):
                full_path = self.worktree_root / path
                if full_path.is_file():
                    blob = private.run(["hash-object", "-w", "--", str(full_path)])
                    private.run(
                        ["update-index", "--add", "--cacheinfo", f"{FILE_MODE},{blob},{path}"]
                    )
                else:
                    private.run(["update-index", "--force-remove", "--", path])

            tree = private.run(["write-tree"])

            if tip and not merge_parents:
                tip_tree = self.git.run(["rev-parse", f"{tip}^{{tree}}"])
                if tree == tip_tree:
                    logger.debug("Nothing to commit on %s", branch)
                    return tip

            parents = [tip] if tip else []
            parents.extend(p for p in merge_parents if p not in parents)

            commit_args = ["commit-tree", tree]
            for parent in parents:
                commit_args.extend(["-p", parent])
            commit_args.extend(["-m", message])
            commit = private.run(commit_args)

            self.git.run(["update-ref", "-m", message, ref, commit, tip or ZERO_SHA])
        finally:
            index_file.unlink(missing_ok=True)

        logger.info("Committed %s on %s (parents: %s)", commit[:8], branch, len(parents))
        return commit
