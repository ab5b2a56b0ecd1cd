"""Core data models for virtual branches and the branch listing.

Uses Pydantic v2 for validation, ULID for sortable unique IDs.
"""

import time

from pydantic import BaseModel, ConfigDict, Field
from ulid import ULID

from .refs import Refname


def generate_id() -> str:
    """Generate a ULID (sortable, unique identifier)."""
    return str(ULID())


def now_ms() -> int:
    """Current wall-clock time in milliseconds since the epoch."""
    return time.time_ns() // 1_000_000


# ─────────────────────────────────────────────────────────────────────────────
# Persisted state
# ─────────────────────────────────────────────────────────────────────────────


class Target(BaseModel):
    """The integration base that virtual branches are compared against."""

    branch_name: str  # e.g. "main"
    remote_name: str  # e.g. "origin"
    remote_url: str = ""
    sha: str
    push_remote_name: str | None = None

    def refname(self) -> Refname:
        """Remote-tracking ref of the target, e.g. refs/remotes/origin/main."""
        return Refname.remote_branch(self.remote_name, self.branch_name)

    def to_dict(self) -> dict:
        data = {
            "branchName": self.branch_name,
            "remoteName": self.remote_name,
            "remoteUrl": self.remote_url,
            "sha": self.sha,
        }
        if self.push_remote_name is not None:
            data["pushRemoteName"] = self.push_remote_name
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Target":
        return cls(
            branch_name=data["branchName"],
            remote_name=data["remoteName"],
            remote_url=data.get("remoteUrl", ""),
            sha=data["sha"],
            push_remote_name=data.get("pushRemoteName"),
        )


class Stack(BaseModel):
    """A virtual branch: in-progress work tracked by gitstacks, not by git.

    A stack is not necessarily backed by a native reference. It remembers
    where it came from (source_refname), where it pushes (upstream) and
    whether it is currently applied to the workspace.
    """

    id: str = Field(default_factory=generate_id)
    name: str
    head: str  # hex commit id
    upstream: str | None = None  # e.g. refs/remotes/origin/feature
    source_refname: str | None = None  # e.g. refs/heads/feature
    order: int = 0
    in_workspace: bool = True
    updated_timestamp_ms: int = Field(default_factory=now_ms)

    # Set when uncommitted work was parked while the stack left the
    # workspace; such a stack must survive garbage collection.
    not_in_workspace_wip_change_id: str | None = None

    @classmethod
    def new(
        cls,
        name: str,
        head: str,
        *,
        order: int = 0,
        upstream: str | None = None,
        source_refname: str | None = None,
        in_workspace: bool = True,
    ) -> "Stack":
        """Create a stack with a fresh id and the current timestamp."""
        return cls(
            name=name,
            head=head,
            order=order,
            upstream=upstream,
            source_refname=source_refname,
            in_workspace=in_workspace,
        )

    def to_dict(self) -> dict:
        """Serialize for TOML storage. Unset optional fields are omitted."""
        data = {
            "id": self.id,
            "name": self.name,
            "head": self.head,
            "order": self.order,
            "in_workspace": self.in_workspace,
            "updated_timestamp_ms": self.updated_timestamp_ms,
        }
        for key in ("upstream", "source_refname", "not_in_workspace_wip_change_id"):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Stack":
        """Deserialize from TOML. Unknown keys are ignored."""
        return cls(
            id=data["id"],
            name=data["name"],
            head=data["head"],
            upstream=data.get("upstream"),
            source_refname=data.get("source_refname"),
            order=data.get("order", 0),
            in_workspace=data.get("in_workspace", True),
            updated_timestamp_ms=data.get("updated_timestamp_ms", 0),
            not_in_workspace_wip_change_id=data.get("not_in_workspace_wip_change_id"),
        )


class VirtualBranches(BaseModel):
    """The whole persisted document.

    branch_targets is a legacy per-stack target map. Nothing reads or
    writes it; it is carried through load/save so the file keeps its shape.
    """

    default_target: Target | None = None
    branch_targets: dict[str, Target] = Field(default_factory=dict)
    branches: dict[str, Stack] = Field(default_factory=dict)

    def in_workspace(self) -> list[Stack]:
        return [s for s in self.branches.values() if s.in_workspace]

    def to_dict(self) -> dict:
        data: dict = {}
        if self.default_target is not None:
            data["default_target"] = self.default_target.to_dict()
        data["branch_targets"] = {
            sid: target.to_dict() for sid, target in sorted(self.branch_targets.items())
        }
        # Sorted for deterministic output
        data["branches"] = {
            sid: stack.to_dict() for sid, stack in sorted(self.branches.items())
        }
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "VirtualBranches":
        default_target = data.get("default_target")
        return cls(
            default_target=Target.from_dict(default_target) if default_target else None,
            branch_targets={
                sid: Target.from_dict(t) for sid, t in data.get("branch_targets", {}).items()
            },
            branches={
                sid: Stack.from_dict(s) for sid, s in data.get("branches", {}).items()
            },
        )


# ─────────────────────────────────────────────────────────────────────────────
# Branch listing (derived, never persisted)
# ─────────────────────────────────────────────────────────────────────────────


class Author(BaseModel):
    """A commit author as recorded in git. Either field may be missing."""

    model_config = ConfigDict(frozen=True)

    name: str | None = None
    email: str | None = None

    def to_dict(self) -> dict:
        return {"name": self.name, "email": self.email}

    def __str__(self) -> str:
        if self.name and self.email:
            return f"{self.name} <{self.email}>"
        return self.name or self.email or "unknown"


class VirtualBranchReference(BaseModel):
    """Pointer from a listing entry to its stack."""

    given_name: str  # non-normalized name, as the user typed it
    id: str
    in_workspace: bool

    def to_dict(self) -> dict:
        return {"givenName": self.given_name, "id": self.id, "inWorkspace": self.in_workspace}


class BranchListing(BaseModel):
    """One entry of the unified branch list.

    Local, remote and virtual branches that share an identity collapse into a
    single entry. This is a summary that is cheap to compute; per-branch
    statistics live in BranchListingDetails.
    """

    name: str  # identity, e.g. "feature/login", no remote prefix
    remotes: list[str] = Field(default_factory=list)
    virtual_branch: VirtualBranchReference | None = None
    updated_at: int  # ms since epoch
    last_commiter: Author
    has_local: bool
    # Head of interest used for statistics: stack head, else first local
    # branch head, else first remote branch head. Not part of to_dict().
    head: str

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "remotes": list(self.remotes),
            "virtualBranch": self.virtual_branch.to_dict() if self.virtual_branch else None,
            "updatedAt": self.updated_at,
            "lastCommiter": self.last_commiter.to_dict(),
            "hasLocal": self.has_local,
        }


class BranchListingDetails(BaseModel):
    """Statistics of a branch relative to the default target."""

    name: str
    lines_added: int
    lines_removed: int
    number_of_files: int
    number_of_commits: int
    authors: list[Author] = Field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "linesAdded": self.lines_added,
            "linesRemoved": self.lines_removed,
            "numberOfFiles": self.number_of_files,
            "numberOfCommits": self.number_of_commits,
            "authors": [a.to_dict() for a in self.authors],
        }


class BranchListingFilter(BaseModel):
    """Optional constraints for list_branches. Unset fields match anything."""

    # True: only entries with a local branch or a stack. False: only entries
    # with neither.
    local: bool | None = None
    # True: only entries whose stack is applied. False: entries without a
    # stack or with an unapplied one.
    applied: bool | None = None
