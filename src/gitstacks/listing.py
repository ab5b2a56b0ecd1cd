"""Unified branch listing.

Local branches, remote-tracking branches and stacks are grouped by identity
(see identity.py) into BranchListing entries. Listing favours partial
results: a branch that cannot be read is logged and left out, it never
fails the whole call.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import TYPE_CHECKING

from .errors import GitStacksError
from .identity import GroupBranch, should_list_git_branch
from .models import (
    Author,
    BranchListing,
    BranchListingDetails,
    BranchListingFilter,
    Stack,
    Target,
    VirtualBranchReference,
)
from .refs import remote_of

if TYPE_CHECKING:
    from .repository import GitRepository
    from .store import VirtualBranchesHandle

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────────────────────────
# Grouping
# ─────────────────────────────────────────────────────────────────────────────


def combine_branches(
    group_branches: list[GroupBranch],
    repo: "GitRepository",
    target: Target,
) -> list[BranchListing]:
    """Group branches by identity and turn each group into a listing entry.

    Groups that cannot be converted are dropped with a warning.
    Result is sorted by name.
    """
    remotes = repo.remote_names()

    groups: dict[str, list[GroupBranch]] = defaultdict(list)
    for branch in group_branches:
        identity = branch.identity(remotes)
        if identity is None:
            continue
        # Skip the technical branches (integration, target, oplog, HEAD)
        if not should_list_git_branch(identity):
            continue
        groups[identity].append(branch)

    listings = []
    for identity, members in groups.items():
        try:
            entry = branch_group_to_branch(identity, members, repo, remotes, target)
        except (GitStacksError, ValueError) as e:
            logger.warning(f"Failed to process branch group '{identity}' to branch entry: {e}")
            continue
        if entry is not None:
            listings.append(entry)

    return sorted(listings, key=lambda b: b.name)


def _pick_stack(members: list[GroupBranch]) -> Stack | None:
    """The stack of a group; the most recently updated if there are several."""
    stacks = [m.stack for m in members if m.kind == "virtual"]
    if not stacks:
        return None
    return max(stacks, key=lambda s: s.updated_timestamp_ms)


def branch_group_to_branch(
    identity: str,
    members: list[GroupBranch],
    repo: "GitRepository",
    remotes: list[str],
    target: Target,
) -> BranchListing | None:
    """Convert a group of same-identity branches into one entry.

    Returns None for the target's own branch (a local branch named like the
    target branch, with no stack attached).

    Raises:
        GitStacksError: If no head can be determined or the head commit
            cannot be read
    """
    stack = _pick_stack(members)
    local_branches = [m.reference for m in members if m.kind == "local"]
    remote_branches = [m.reference for m in members if m.kind == "remote"]

    if stack is None and any(
        b.given_name(remotes) == target.branch_name for b in local_branches
    ):
        return None

    # Head of interest: stack, then first local, then first remote
    if stack is not None:
        head = stack.head
    elif local_branches:
        head = local_branches[0].head
    elif remote_branches:
        head = remote_branches[0].head
    else:
        head = None
    if head is None:
        raise GitStacksError("Could not get any valid reference in order to build branch stats")

    head_commit = repo.find_commit(head)

    found_remotes = set()
    for ref in remote_branches:
        remote = remote_of(ref.refname, remotes)
        if remote is not None:
            found_remotes.add(remote)
    for ref in local_branches:
        if ref.upstream_remote in remotes:
            found_remotes.add(ref.upstream_remote)

    virtual_branch = None
    if stack is not None:
        virtual_branch = VirtualBranchReference(
            given_name=stack.name, id=stack.id, in_workspace=stack.in_workspace
        )

    return BranchListing(
        name=identity,
        remotes=sorted(found_remotes),
        virtual_branch=virtual_branch,
        updated_at=max(head_commit.time_ms, stack.updated_timestamp_ms if stack else 0),
        last_commiter=head_commit.author,
        has_local=bool(local_branches),
        head=head,
    )


# ─────────────────────────────────────────────────────────────────────────────
# Filtering
# ─────────────────────────────────────────────────────────────────────────────


def matches_all(branch: BranchListing, listing_filter: BranchListingFilter) -> bool:
    """True if the entry satisfies every set field of the filter."""
    if listing_filter.applied is not None:
        if branch.virtual_branch is not None:
            if branch.virtual_branch.in_workspace != listing_filter.applied:
                return False
        elif listing_filter.applied:
            return False
    if listing_filter.local is not None:
        is_local = branch.has_local or branch.virtual_branch is not None
        if is_local != listing_filter.local:
            return False
    return True


# ─────────────────────────────────────────────────────────────────────────────
# Service
# ─────────────────────────────────────────────────────────────────────────────


class BranchListingService:
    """Lists branches of a repository together with its stacks."""

    def __init__(self, repo: "GitRepository", handle: "VirtualBranchesHandle"):
        """Initialize the service.

        Args:
            repo: Reference source (GitRepository or compatible)
            handle: Store holding the stacks and the default target
        """
        self.repo = repo
        self.handle = handle

    def list_branches(
        self,
        listing_filter: BranchListingFilter | None = None,
        filter_branch_names: list[str] | None = None,
    ) -> list[BranchListing]:
        """List all branches, one entry per identity.

        Args:
            listing_filter: Optional local/applied constraints
            filter_branch_names: Keep only entries whose name is in this list

        Raises:
            DefaultTargetNotFoundError: If no default target was set
        """
        group_branches = []
        for ref in self.repo.branches():
            # Loose pre-filter to skip obviously unrelated refs early; the
            # exact name check happens after grouping
            if filter_branch_names is not None and not any(
                ref.refname.endswith(name) for name in filter_branch_names
            ):
                continue
            group_branches.append(GroupBranch.from_reference(ref))

        for stack in self.handle.list_all_branches():
            group_branches.append(GroupBranch.virtual(stack))

        branches = combine_branches(group_branches, self.repo, self.handle.get_default_target())

        if listing_filter is not None:
            branches = [b for b in branches if matches_all(b, listing_filter)]

        if filter_branch_names is not None:
            wanted = set(filter_branch_names)
            branches = [b for b in branches if b.name in wanted]

        return branches

    def get_branch_listing_details(self, branch_names: list[str]) -> list[BranchListingDetails]:
        """Statistics of the named branches relative to the default target.

        Branches without a merge base with the target, or whose history
        cannot be read, are skipped.

        Raises:
            DefaultTargetNotFoundError: If no default target was set
        """
        branches = self.list_branches(filter_branch_names=branch_names)
        target = self.handle.get_default_target()

        details = []
        for branch in branches:
            try:
                entry = self._details_for(branch.name, branch.head, target)
            except GitStacksError as e:
                logger.warning(f"Skipping details for '{branch.name}': {e}")
                continue
            if entry is not None:
                details.append(entry)
        return details

    def _details_for(self, name: str, head: str, target: Target) -> BranchListingDetails | None:
        base = self.repo.merge_base(target.sha, head)
        if base is None:
            logger.debug(f"No merge base between target and '{name}'")
            return None

        stats = self.repo.diff_stats(base, head)

        number_of_commits = 0
        authors: set[Author] = set()
        for commit in self.repo.walk(head, hide=base):
            number_of_commits += 1
            authors.add(commit.author)

        return BranchListingDetails(
            name=name,
            lines_added=stats.insertions,
            lines_removed=stats.deletions,
            number_of_files=stats.files_changed,
            number_of_commits=number_of_commits,
            authors=sorted(authors, key=lambda a: (a.name or "", a.email or "")),
        )
