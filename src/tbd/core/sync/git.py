"""
Git subprocess runner.

Every git call made by tbd goes through GitRunner. A runner is an immutable
value: to stage into a private index, derive a new runner with
``with_index()`` and pass it along. The index file is handed to git through
the child's environment only, so the process environment is never changed
and concurrent or nested operations cannot interfere with each other.
"""

import logging
import os
import subprocess
from dataclasses import dataclass, replace
from pathlib import Path

logger = logging.getLogger(__name__)

GIT_TIMEOUT_SECONDS = 60
ZERO_SHA = "0" * 40


class GitError(Exception):
    """Exception raised when a git operation fails."""

    def __init__(self, message: str, command: list[str] | None = None, stderr: str = ""):
        super().__init__(message)
        self.command = command
        self.stderr = stderr

    def __str__(self) -> str:
        message = super().__str__()
        if self.stderr:
            return f"{message}: {self.stderr}"
        return message


@dataclass(frozen=True)
class GitResult:
    """Outcome of a git command that is allowed to fail."""

    command: list[str]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


@dataclass(frozen=True)
class GitRunner:
    """
    Runs git commands in a repository.

    Example:
        >>> git = GitRunner(Path("."))
        >>> git.run(["rev-parse", "HEAD"])
        '3f2c...'
        >>> private = git.with_index(Path(".git/tbd-index-123"))
        >>> private.run(["read-tree", "--empty"])
        ''
    """

    cwd: Path
    index_file: Path | None = None
    timeout: float = GIT_TIMEOUT_SECONDS

    def with_index(self, index_file: Path) -> "GitRunner":
        """Return a runner that stages into ``index_file``."""
        return replace(self, index_file=index_file)

    def _env(self) -> dict[str, str]:
        env = dict(os.environ)
        # Stable English messages; push rejection is classified from stderr
        env["LC_ALL"] = "C"
        if self.index_file is not None:
            env["GIT_INDEX_FILE"] = str(self.index_file)
        return env

    def run_result(self, args: list[str], *, input_data: str | None = None) -> GitResult:
        """
        Run a git command whose failure is an expected outcome.

        Args:
            args: Git command arguments (without "git" prefix)
            input_data: Optional stdin data

        Returns:
            GitResult with exit code and output (not stripped)

        Raises:
            GitError: If git cannot be started or times out
        """
        cmd = ["git"] + args
        logger.debug("Running git command: %s", " ".join(cmd))

        try:
            result = subprocess.run(
                cmd,
                cwd=self.cwd,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                input=input_data,
                env=self._env(),
            )
        except subprocess.TimeoutExpired as e:
            raise GitError(f"Git command timed out: {' '.join(cmd)}", command=cmd) from e
        except FileNotFoundError as e:
            raise GitError("git not found in PATH", command=cmd) from e

        return GitResult(
            command=cmd,
            returncode=result.returncode,
            stdout=result.stdout or "",
            stderr=result.stderr or "",
        )

    def run(self, args: list[str], *, input_data: str | None = None, strip: bool = True) -> str:
        """
        Run a git command and return its stdout.

        Raises:
            GitError: If the command fails
        """
        result = self.run_result(args, input_data=input_data)
        if not result.ok:
            raise GitError(
                f"Git command failed: {' '.join(result.command)}",
                command=result.command,
                stderr=result.stderr.strip(),
            )
        return result.stdout.strip() if strip else result.stdout

    # Queries

    def git_dir(self) -> Path:
        """Absolute path of the repository's git directory."""
        return Path(self.run(["rev-parse", "--absolute-git-dir"]))

    def toplevel(self) -> Path:
        """Absolute path of the working tree root."""
        return Path(self.run(["rev-parse", "--show-toplevel"]))

    def rev_parse(self, ref: str) -> str | None:
        """Commit sha for ``ref``, or None if it doesn't exist."""
        result = self.run_result(["rev-parse", "--verify", "--quiet", f"{ref}^{{commit}}"])
        if not result.ok:
            return None
        return result.stdout.strip() or None

    def is_ancestor(self, ancestor: str, descendant: str) -> bool:
        """Whether ``ancestor`` is reachable from ``descendant``."""
        result = self.run_result(["merge-base", "--is-ancestor", ancestor, descendant])
        if result.returncode in (0, 1):
            return result.returncode == 0
        raise GitError(
            f"Git command failed: {' '.join(result.command)}",
            command=result.command,
            stderr=result.stderr.strip(),
        )

    def merge_base(self, a: str, b: str) -> str | None:
        """Best common ancestor of two commits, or None if unrelated."""
        result = self.run_result(["merge-base", a, b])
        if not result.ok:
            return None
        return result.stdout.strip() or None

    def show_file(self, ref: str, path: str) -> str | None:
        """Content of ``path`` at ``ref``, or None if it doesn't exist there."""
        result = self.run_result(["show", f"{ref}:{path}"])
        if not result.ok:
            return None
        return result.stdout

    def ls_tree(self, ref: str, prefix: str) -> dict[str, str]:
        """Map of file path -> blob sha under ``prefix`` at ``ref``."""
        output = self.run(["ls-tree", "-r", "--full-tree", ref, "--", prefix])
        files: dict[str, str] = {}
        for line in output.splitlines():
            meta, _, path = line.partition("\t")
            parts = meta.split()
            if len(parts) == 3 and parts[1] == "blob":
                files[path] = parts[2]
        return files

    def diff_names(self, a: str, b: str, prefix: str) -> list[tuple[str, str]]:
        """
        Files that differ between two commits under ``prefix``.

        Returns:
            List of (status, path), status being A, M or D
        """
        output = self.run(["diff", "--name-status", "--no-renames", a, b, "--", prefix])
        changes = []
        for line in output.splitlines():
            status, _, path = line.partition("\t")
            if path:
                changes.append((status[:1], path))
        return changes
