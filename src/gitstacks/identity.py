"""Canonical identity of branch-like things.

Local branches, remote-tracking branches and stacks that share an identity
describe the same line of work and are listed as one entry.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Literal

from .errors import InvalidBranchNameError
from .models import Stack
from .refs import Refname, given_name, normalize_branch_name
from .repository import ReferenceBranch

logger = logging.getLogger(__name__)

# Technical branches maintained by the workspace manager itself
TECHNICAL_BRANCHES = frozenset({
    "gitbutler/integration",
    "gitbutler/target",
    "gitbutler/oplog",
    "HEAD",
})


def should_list_git_branch(identity: str) -> bool:
    """False for the workspace manager's own technical branches."""
    return identity not in TECHNICAL_BRANCHES


@dataclass(frozen=True)
class GroupBranch:
    """One of the three branch representations, tagged by kind.

    Exactly one of `reference` (local/remote) or `stack` (virtual) is set.
    """

    kind: Literal["local", "remote", "virtual"]
    reference: ReferenceBranch | None = None
    stack: Stack | None = None

    @classmethod
    def from_reference(cls, reference: ReferenceBranch) -> "GroupBranch":
        return cls(kind=reference.kind, reference=reference)

    @classmethod
    def virtual(cls, stack: Stack) -> "GroupBranch":
        return cls(kind="virtual", stack=stack)

    def identity(self, remotes: list[str]) -> str | None:
        """Name under which this branch is grouped.

        None means no identity could be derived; such a branch is odd
        enough to leave out of the listing altogether.
        """
        if self.kind == "virtual":
            return _stack_identity(self.stack, remotes)
        return self.reference.given_name(remotes)


def _stack_identity(stack: Stack, remotes: list[str]) -> str | None:
    # Source ref first, then upstream, then the display name. Refs are named
    # the same way as the native branches they group with; a remote ref of an
    # unknown remote falls back to splitting at the first slash.
    for refname in (stack.source_refname, stack.upstream):
        if refname:
            branch = given_name(refname, remotes) or Refname.parse(refname).branch()
            if branch:
                return branch
    try:
        return normalize_branch_name(stack.name)
    except InvalidBranchNameError:
        logger.debug(f"Stack {stack.id} has no usable name: {stack.name!r}")
        return None
