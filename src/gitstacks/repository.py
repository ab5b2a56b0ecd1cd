"""Git access for branch listing and garbage collection.

GitRepository is the only place that talks to git. Everything else works
with the plain records defined here, so tests (or other backends) can pass
any object with the same methods.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Literal

from git import Repo
from git.exc import (
    BadName,
    BadObject,
    GitCommandError,
    InvalidGitRepositoryError,
    NoSuchPathError,
)
from git.objects import Commit

from .errors import RepositoryError
from .models import Author
from .refs import LOCAL_PREFIX, REMOTE_PREFIX, given_name

logger = logging.getLogger(__name__)

STATE_DIR_NAME = "gitstacks"


@dataclass(frozen=True)
class ReferenceBranch:
    """A native local or remote-tracking branch."""

    kind: Literal["local", "remote"]
    refname: str  # full name, e.g. refs/remotes/origin/feature
    head: str | None  # None when the ref cannot be peeled to a commit
    upstream_remote: str | None = None  # local branches with tracking set up

    def given_name(self, remotes: list[str]) -> str | None:
        return given_name(self.refname, remotes)


@dataclass(frozen=True)
class CommitInfo:
    sha: str
    time_ms: int  # committer time
    author: Author


@dataclass(frozen=True)
class DiffStats:
    insertions: int = 0
    deletions: int = 0
    files_changed: int = 0


def _author_of(commit: Commit) -> Author:
    actor = commit.author
    return Author(name=actor.name or None, email=actor.email or None)


def _commit_info(commit: Commit) -> CommitInfo:
    return CommitInfo(
        sha=commit.hexsha,
        time_ms=commit.committed_date * 1000,
        author=_author_of(commit),
    )


class GitRepository:
    """Read-only view of a git repository.

    All methods are free of side effects on the repository and safe to call
    from several threads, each GitPython call spawning its own git process.
    """

    def __init__(self, path: Path, search_parent_directories: bool = False):
        self.path = Path(path)
        try:
            self._repo = Repo(self.path, search_parent_directories=search_parent_directories)
        except (InvalidGitRepositoryError, NoSuchPathError):
            raise RepositoryError(f"Not a git repository: {self.path}")

    @classmethod
    def discover(cls, path: Path) -> "GitRepository":
        """Open the repository containing path, searching parent directories."""
        return cls(path, search_parent_directories=True)

    @property
    def repo(self) -> Repo:
        return self._repo

    def state_dir(self) -> Path:
        """Directory holding gitstacks state, inside the git dir."""
        return Path(self._repo.git_dir) / STATE_DIR_NAME

    # ─────────────────────────────────────────────────────────────────────────
    # References
    # ─────────────────────────────────────────────────────────────────────────

    def remote_names(self) -> list[str]:
        return [remote.name for remote in self._repo.remotes]

    def remote_url(self, name: str) -> str:
        try:
            return self._repo.remote(name).url
        except ValueError as e:
            raise RepositoryError(f"Unknown remote '{name}'") from e

    def branches(self) -> list[ReferenceBranch]:
        """Enumerate local and remote-tracking branches."""
        remotes = set(self.remote_names())
        result = []
        for ref in self._repo.references:
            path = ref.path
            if path.startswith(LOCAL_PREFIX):
                result.append(
                    ReferenceBranch(
                        kind="local",
                        refname=path,
                        head=self._peel(ref),
                        upstream_remote=self._upstream_remote(ref, remotes),
                    )
                )
            elif path.startswith(REMOTE_PREFIX):
                result.append(ReferenceBranch(kind="remote", refname=path, head=self._peel(ref)))
        return result

    def _peel(self, ref) -> str | None:
        try:
            return ref.commit.hexsha
        except (ValueError, TypeError, BadName, BadObject) as e:
            logger.debug(f"Cannot resolve {ref.path} to a commit: {e}")
            return None

    def _upstream_remote(self, head, remotes: set[str]) -> str | None:
        """Remote a local branch tracks, or None.

        A branch tracking another local branch has remote ".", and stale
        config may still name a removed remote; both give None.
        """
        try:
            tracking = head.tracking_branch()
        except (ValueError, GitCommandError) as e:
            logger.debug(f"Cannot read tracking config of {head.path}: {e}")
            return None
        if tracking is None or tracking.remote_name not in remotes:
            return None
        return tracking.remote_name

    def resolve(self, rev: str) -> str | None:
        """Resolve a revision (ref name, short sha, ...) to a commit sha."""
        try:
            return self._repo.commit(rev).hexsha
        except (ValueError, BadName, BadObject, GitCommandError):
            return None

    # ─────────────────────────────────────────────────────────────────────────
    # Commits
    # ─────────────────────────────────────────────────────────────────────────

    def find_commit(self, sha: str) -> CommitInfo:
        """Look up a commit.

        Raises:
            RepositoryError: If sha does not name a commit in this repository
        """
        try:
            commit = self._repo.commit(sha)
        except (ValueError, BadName, BadObject, GitCommandError) as e:
            raise RepositoryError(f"Commit not found: {sha}") from e
        return _commit_info(commit)

    def has_commit(self, sha: str) -> bool:
        try:
            self.find_commit(sha)
        except RepositoryError:
            return False
        return True

    def merge_base(self, a: str, b: str) -> str | None:
        """Best common ancestor of two commits, or None if there is none."""
        try:
            bases = self._repo.merge_base(a, b)
        except GitCommandError as e:
            logger.debug(f"merge-base {a} {b} failed: {e}")
            return None
        return bases[0].hexsha if bases else None

    def diff_stats(self, base: str, head: str) -> DiffStats:
        """Line and file counts of the tree diff base..head (no rename detection)."""
        try:
            output = self._repo.git.diff("--numstat", "--no-renames", base, head)
        except GitCommandError as e:
            raise RepositoryError(f"Cannot diff {base}..{head}") from e

        insertions = deletions = files = 0
        for line in output.splitlines():
            parts = line.split("\t", 2)
            if len(parts) != 3:
                continue
            added, removed, _ = parts
            files += 1
            # Binary files report "-" for both counts
            if added.isdigit():
                insertions += int(added)
            if removed.isdigit():
                deletions += int(removed)
        return DiffStats(insertions=insertions, deletions=deletions, files_changed=files)

    def walk(self, head: str, hide: str | None = None) -> Iterator[CommitInfo]:
        """Commits reachable from head but not from hide."""
        rev = f"{hide}..{head}" if hide else head
        try:
            for commit in self._repo.iter_commits(rev):
                yield _commit_info(commit)
        except GitCommandError as e:
            raise RepositoryError(f"Cannot walk {rev}") from e
