"""Reference name parsing and branch name normalization.

Full reference names look like:
- refs/heads/<branch>            (local branch)
- refs/remotes/<remote>/<branch> (remote-tracking branch)

Anything else (tags, notes, ...) parses as kind "other" and has no branch.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, Literal

from .errors import InvalidBranchNameError

LOCAL_PREFIX = "refs/heads/"
REMOTE_PREFIX = "refs/remotes/"

RefKind = Literal["local", "remote", "other"]

# Characters git refuses in ref names, plus a few that are legal but awkward
_EXCLUDED_CHARS = re.compile(r"[|+^~<>\\:*?\[\]\x00-\x1f\x7f]")
_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True)
class Refname:
    """A parsed full reference name."""

    kind: RefKind
    full: str
    remote: str | None = None
    branch_name: str | None = None

    @classmethod
    def parse(cls, full: str) -> "Refname":
        """Parse a full reference name.

        Remote refs split at the first slash after refs/remotes/, so a
        remote whose name contains a slash needs given_name() with the
        list of configured remotes instead.
        """
        if full.startswith(LOCAL_PREFIX):
            branch = full[len(LOCAL_PREFIX):]
            return cls(kind="local", full=full, branch_name=branch or None)
        if full.startswith(REMOTE_PREFIX):
            rest = full[len(REMOTE_PREFIX):]
            remote, _, branch = rest.partition("/")
            if not remote or not branch:
                return cls(kind="other", full=full)
            return cls(kind="remote", full=full, remote=remote, branch_name=branch)
        return cls(kind="other", full=full)

    @classmethod
    def local(cls, branch: str) -> "Refname":
        return cls(kind="local", full=f"{LOCAL_PREFIX}{branch}", branch_name=branch)

    @classmethod
    def remote_branch(cls, remote: str, branch: str) -> "Refname":
        return cls(
            kind="remote",
            full=f"{REMOTE_PREFIX}{remote}/{branch}",
            remote=remote,
            branch_name=branch,
        )

    def branch(self) -> str | None:
        """Branch part of the name with any remote stripped."""
        return self.branch_name

    def __str__(self) -> str:
        return self.full


def _strip_known_remote(name: str, remotes: Iterable[str]) -> tuple[str | None, str]:
    """Split off the longest configured remote that prefixes name."""
    best = None
    for remote in remotes:
        if name.startswith(f"{remote}/") and (best is None or len(remote) > len(best)):
            best = remote
    if best is None:
        return None, name
    return best, name[len(best) + 1:]


def remote_of(refname: str, remotes: Iterable[str]) -> str | None:
    """Remote name of a remote-tracking ref, matched against known remotes."""
    if not refname.startswith(REMOTE_PREFIX):
        return None
    remote, _ = _strip_known_remote(refname[len(REMOTE_PREFIX):], remotes)
    return remote


def given_name(refname: str, remotes: Iterable[str]) -> str | None:
    """Name of a local or remote ref with the remote-tracking prefix removed.

    refs/heads/feature              -> feature
    refs/remotes/origin/feature     -> feature
    refs/heads/origin/feature       -> feature   (origin is a known remote)

    Returns None when no name can be derived: the ref is neither a local
    nor a remote branch, a remote ref does not start with a known remote,
    or nothing is left after stripping.
    """
    remotes = list(remotes)
    if refname.startswith(LOCAL_PREFIX):
        _, name = _strip_known_remote(refname[len(LOCAL_PREFIX):], remotes)
    elif refname.startswith(REMOTE_PREFIX):
        remote, name = _strip_known_remote(refname[len(REMOTE_PREFIX):], remotes)
        if remote is None:
            return None
    else:
        return None
    return name or None


def is_valid_branch_name(name: str) -> bool:
    """Check a short branch name against git's check-ref-format rules."""
    if not name or name == "@":
        return False
    if "//" in name or ".." in name or "@{" in name:
        return False
    if name.endswith(".") or name.endswith("/"):
        return False
    for component in name.split("/"):
        if not component or component.startswith(".") or component.endswith(".lock"):
            return False
    return not _EXCLUDED_CHARS.search(name) and not _WHITESPACE.search(name)


def normalize_branch_name(name: str) -> str:
    """Turn a free-form display name into a usable branch name.

    Raises:
        InvalidBranchNameError: If nothing valid is left after cleanup.
    """
    result = _EXCLUDED_CHARS.sub("-", name.strip())
    result = _WHITESPACE.sub("-", result)
    result = result.replace("@{", "-")
    result = re.sub(r"\.{2,}", ".", result)
    result = re.sub(r"/{2,}", "/", result)
    result = result.strip("-/")
    # Components may not start with a dot or end with .lock
    components = []
    for component in result.split("/"):
        component = component.lstrip(".")
        while component.endswith(".lock"):
            component = component[: -len(".lock")]
        if component:
            components.append(component)
    result = "/".join(components).rstrip(".").strip("-/")

    if not is_valid_branch_name(result):
        raise InvalidBranchNameError(name)
    return result
