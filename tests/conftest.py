"""Shared test fixtures and helpers for gitstacks tests."""

import tempfile
from dataclasses import dataclass, field
from pathlib import Path

import pytest
from git import Actor, Repo

from gitstacks.errors import RepositoryError
from gitstacks.models import Author
from gitstacks.repository import CommitInfo, DiffStats, ReferenceBranch
from gitstacks.store import VirtualBranchesHandle

ALICE = Actor("Alice", "alice@example.com")
BOB = Actor("Bob", "bob@example.com")
CAROL = Actor("Carol", "carol@example.com")


# --- In-memory reference source ---


@dataclass
class FakeCommit:
    sha: str
    parents: list[str] = field(default_factory=list)
    time_ms: int = 0
    author: Author = field(default_factory=lambda: Author(name="Alice", email="alice@example.com"))


class FakeRepository:
    """In-memory stand-in for GitRepository.

    Commits form a DAG through their parents; merge_base and walk follow it.
    Diff stats are whatever the test registers for a (base, head) pair.
    """

    def __init__(self, remotes: tuple[str, ...] = ("origin",)):
        self.remotes = list(remotes)
        self.refs: list[ReferenceBranch] = []
        self.commits: dict[str, FakeCommit] = {}
        self.stats: dict[tuple[str, str], DiffStats] = {}

    # Test setup helpers

    def add_commit(self, sha, parents=(), time_ms=0, author=None) -> str:
        commit = FakeCommit(sha=sha, parents=list(parents), time_ms=time_ms)
        if author is not None:
            commit.author = author
        self.commits[sha] = commit
        return sha

    def add_local(self, branch, head, upstream_remote=None) -> ReferenceBranch:
        ref = ReferenceBranch(
            kind="local",
            refname=f"refs/heads/{branch}",
            head=head,
            upstream_remote=upstream_remote,
        )
        self.refs.append(ref)
        return ref

    def add_remote(self, remote_branch, head) -> ReferenceBranch:
        ref = ReferenceBranch(kind="remote", refname=f"refs/remotes/{remote_branch}", head=head)
        self.refs.append(ref)
        return ref

    # Reference source API

    def remote_names(self) -> list[str]:
        return list(self.remotes)

    def branches(self) -> list[ReferenceBranch]:
        return list(self.refs)

    def find_commit(self, sha: str) -> CommitInfo:
        commit = self.commits.get(sha)
        if commit is None:
            raise RepositoryError(f"Commit not found: {sha}")
        return CommitInfo(sha=commit.sha, time_ms=commit.time_ms, author=commit.author)

    def has_commit(self, sha: str) -> bool:
        return sha in self.commits

    def _ancestors(self, sha: str) -> list[str]:
        """Breadth-first ancestry including sha itself."""
        seen, order, queue = set(), [], [sha]
        while queue:
            current = queue.pop(0)
            if current in seen or current not in self.commits:
                continue
            seen.add(current)
            order.append(current)
            queue.extend(self.commits[current].parents)
        return order

    def merge_base(self, a: str, b: str) -> str | None:
        ancestors_a = set(self._ancestors(a))
        for candidate in self._ancestors(b):
            if candidate in ancestors_a:
                return candidate
        return None

    def diff_stats(self, base: str, head: str) -> DiffStats:
        return self.stats.get((base, head), DiffStats())

    def walk(self, head: str, hide: str | None = None):
        hidden = set(self._ancestors(hide)) if hide else set()
        for sha in self._ancestors(head):
            if sha not in hidden:
                yield self.find_commit(sha)


# --- Fixtures ---


@pytest.fixture
def temp_dir():
    """Provide a temporary directory that's cleaned up after the test."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def handle(temp_dir):
    """Provide a VirtualBranchesHandle over an empty state directory."""
    return VirtualBranchesHandle(temp_dir / "gitstacks")


@pytest.fixture
def fake_repo():
    """Provide an empty FakeRepository with an 'origin' remote."""
    return FakeRepository()


@pytest.fixture
def git_repo(temp_dir):
    """Provide a real repository with a target and one feature branch.

    History:
        base      main, origin/main     (Alice: README)
        f1        feature               (Bob: adds a.txt with 2 lines)
        f2        feature, origin/feature (Carol: appends to README)

    feature tracks origin/feature. Returns (repo, shas) where shas maps
    "base", "f1", "f2" to commit ids.
    """
    path = temp_dir / "repo"
    path.mkdir()
    repo = Repo.init(path)

    base = commit_file(repo, "README", "hello\n", "Initial commit", ALICE)
    repo.git.branch("-M", "main")

    repo.create_remote("origin", "https://example.com/project.git")
    repo.git.update_ref("refs/remotes/origin/main", base)

    repo.create_head("feature", base).checkout()
    f1 = commit_file(repo, "a.txt", "one\ntwo\n", "Add a", BOB)
    f2 = commit_file(repo, "README", "hello\nworld\n", "Extend README", CAROL)
    repo.heads.main.checkout()

    repo.git.update_ref("refs/remotes/origin/feature", f2)
    repo.git.config("branch.feature.remote", "origin")
    repo.git.config("branch.feature.merge", "refs/heads/feature")

    yield repo, {"base": base, "f1": f1, "f2": f2}
    repo.close()


# --- Helper Functions (not fixtures) ---


def commit_file(repo: Repo, name: str, content: str, message: str, author: Actor) -> str:
    """Write a file, stage it and commit on the current branch."""
    (Path(repo.working_tree_dir) / name).write_text(content)
    repo.index.add([name])
    return repo.index.commit(message, author=author, committer=author).hexsha
