"""
Tests for IsolatedCommitWriter.

Uses real git repositories; the user's index and HEAD must never change.
"""

import os
import subprocess
from pathlib import Path

import pytest

from tbd.core.sync.git import GitError, GitRunner
from tbd.core.sync.writer import IsolatedCommitWriter

DATA_FILE = ".tbd/data-sync/issues/is-01hx5zzkbkactav9wevgemmvrz.md"


def git(cwd: Path, *args: str) -> str:
    result = subprocess.run(["git", *args], cwd=cwd, capture_output=True, text=True, check=True)
    return result.stdout.strip()


@pytest.fixture
def writer(git_repo: Path) -> IsolatedCommitWriter:
    return IsolatedCommitWriter(GitRunner(git_repo), git_repo)


def write_data(repo: Path, path: str, content: str) -> None:
    target = repo / path
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(content)


class TestCommit:
    """Tests for IsolatedCommitWriter.commit()."""

    def test_creates_orphan_branch(self, git_repo: Path, writer: IsolatedCommitWriter) -> None:
        write_data(git_repo, DATA_FILE, "record v1\n")

        sha = writer.commit("tbd-sync", "first", [DATA_FILE])

        assert git(git_repo, "rev-parse", "refs/heads/tbd-sync") == sha
        assert git(git_repo, "rev-list", "--count", sha) == "1"
        assert git(git_repo, "show", f"{sha}:{DATA_FILE}") == "record v1"
        # Only the data file is in the tree, not the user's files
        assert git(git_repo, "ls-tree", "-r", "--name-only", sha) == DATA_FILE

    def test_user_index_and_head_untouched(
        self, git_repo: Path, writer: IsolatedCommitWriter
    ) -> None:
        """A file the user staged is still staged after a sync commit."""
        head = git(git_repo, "rev-parse", "HEAD")
        (git_repo / "feature.py").write_text("print('wip')\n")
        git(git_repo, "add", "feature.py")
        write_data(git_repo, DATA_FILE, "record\n")

        writer.commit("tbd-sync", "sync", [DATA_FILE])

        assert git(git_repo, "diff", "--cached", "--name-only") == "feature.py"
        assert git(git_repo, "rev-parse", "HEAD") == head
        assert git(git_repo, "symbolic-ref", "--short", "HEAD") != "tbd-sync"

    def test_commits_on_top_of_tip(self, git_repo: Path, writer: IsolatedCommitWriter) -> None:
        other = ".tbd/data-sync/meta.yml"
        write_data(git_repo, DATA_FILE, "v1\n")
        write_data(git_repo, other, "schema_version: 1\n")
        first = writer.commit("tbd-sync", "first", [DATA_FILE, other])

        write_data(git_repo, DATA_FILE, "v2\n")
        second = writer.commit("tbd-sync", "second", [DATA_FILE])

        assert git(git_repo, "rev-parse", f"{second}^") == first
        assert git(git_repo, "show", f"{second}:{DATA_FILE}") == "v2"
        # Files not listed keep their content from the tip
        assert git(git_repo, "show", f"{second}:{other}") == "schema_version: 1"

    def test_missing_file_is_removed(self, git_repo: Path, writer: IsolatedCommitWriter) -> None:
        write_data(git_repo, DATA_FILE, "v1\n")
        writer.commit("tbd-sync", "first", [DATA_FILE])
        (git_repo / DATA_FILE).unlink()

        sha = writer.commit("tbd-sync", "delete", [DATA_FILE])

        assert git(git_repo, "ls-tree", "-r", "--name-only", sha) == ""

    def test_no_change_returns_tip(self, git_repo: Path, writer: IsolatedCommitWriter) -> None:
        write_data(git_repo, DATA_FILE, "v1\n")
        tip = writer.commit("tbd-sync", "first", [DATA_FILE])

        assert writer.commit("tbd-sync", "again", [DATA_FILE]) == tip

    def test_merge_parents(self, git_repo: Path, writer: IsolatedCommitWriter) -> None:
        write_data(git_repo, DATA_FILE, "v1\n")
        tip = writer.commit("tbd-sync", "first", [DATA_FILE])
        other = git(git_repo, "rev-parse", "HEAD")

        merge = writer.commit("tbd-sync", "merge", [], merge_parents=[other])

        parents = git(git_repo, "rev-list", "--parents", "-n", "1", merge).split()[1:]
        assert parents == [tip, other]

    def test_failure_leaves_ref_and_cleans_index(
        self, git_repo: Path, writer: IsolatedCommitWriter
    ) -> None:
        write_data(git_repo, DATA_FILE, "v1\n")
        tip = writer.commit("tbd-sync", "first", [DATA_FILE])
        write_data(git_repo, DATA_FILE, "v2\n")

        with pytest.raises(GitError):
            writer.commit("tbd-sync", "bad", [DATA_FILE], merge_parents=["f" * 40])

        assert git(git_repo, "rev-parse", "refs/heads/tbd-sync") == tip
        git_dir = Path(git(git_repo, "rev-parse", "--absolute-git-dir"))
        assert list(git_dir.glob("tbd-index-*")) == []

    def test_ref_moved_underneath_is_refused(
        self, git_repo: Path, writer: IsolatedCommitWriter, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """The final update-ref is a compare-and-swap against the tip read at start."""
        write_data(git_repo, DATA_FILE, "v1\n")
        writer.commit("tbd-sync", "first", [DATA_FILE])
        write_data(git_repo, DATA_FILE, "v2\n")
        head = git(git_repo, "rev-parse", "HEAD")

        original_run = GitRunner.run

        def racing_run(self, args, **kwargs):
            if args[0] == "commit-tree":
                # Another process moves the branch while we build our commit
                git(git_repo, "update-ref", "refs/heads/tbd-sync", head)
            return original_run(self, args, **kwargs)

        monkeypatch.setattr(GitRunner, "run", racing_run)
        with pytest.raises(GitError):
            writer.commit("tbd-sync", "second", [DATA_FILE])

        assert git(git_repo, "rev-parse", "refs/heads/tbd-sync") == head


class TestGitRunner:
    """Tests for GitRunner queries used by the writer and service."""

    def test_rev_parse_missing(self, git_repo: Path) -> None:
        assert GitRunner(git_repo).rev_parse("refs/heads/nope") is None

    def test_private_index_only_in_child_env(self, git_repo: Path) -> None:
        runner = GitRunner(git_repo).with_index(git_repo / "private-index")
        runner.run(["read-tree", "--empty"])

        assert (git_repo / "private-index").exists()
        assert "GIT_INDEX_FILE" not in os.environ

    def test_run_raises_with_stderr(self, git_repo: Path) -> None:
        with pytest.raises(GitError) as exc_info:
            GitRunner(git_repo).run(["rev-parse", "--verify", "nope"])
        assert exc_info.value.stderr
        assert exc_info.value.command[:2] == ["git", "rev-parse"]
