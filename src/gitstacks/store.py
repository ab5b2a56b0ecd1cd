"""Durable store for virtual branch state.

All state lives in one TOML document, virtual_branches.toml. Every operation
loads the whole document, changes it in memory and atomically replaces the
file (temp file in the same directory + rename). There is no locking inside
the store: callers must serialize access, either by using a single handle
from one thread or by passing a lock that the handle holds for the whole of
each operation. Concurrent unsynchronized writers lose updates.
"""

from __future__ import annotations

import logging
import os
import tempfile
from contextlib import AbstractContextManager, nullcontext
from pathlib import Path
from typing import TYPE_CHECKING

import tomlkit
from pydantic import ValidationError
from tomlkit.exceptions import TOMLKitError

from .errors import (
    BranchNotFoundError,
    DefaultTargetNotFoundError,
    OrderingUpdateError,
    StoreIOError,
)
from .models import Stack, Target, VirtualBranches

if TYPE_CHECKING:
    from .repository import GitRepository

logger = logging.getLogger(__name__)

STATE_FILENAME = "virtual_branches.toml"


def _sort_key(stack: Stack) -> tuple[int, str]:
    return (stack.order, stack.id)


def normalize_ordering(document: VirtualBranches) -> bool:
    """Renumber in-workspace stacks to 0..n-1, keeping their relative order.

    Ranks by the previous order value, ties broken by id. Returns True if
    any order changed.
    """
    changed = False
    ranked = sorted(document.in_workspace(), key=_sort_key)
    for index, stack in enumerate(ranked):
        if stack.order != index:
            document.branches[stack.id] = stack.model_copy(update={"order": index})
            changed = True
    return changed


class VirtualBranchesHandle:
    """Handle to the virtual branches document of one repository.

    For all operations, a missing document reads as an empty one; the file
    is created on first write.
    """

    def __init__(self, base_path: Path, lock: AbstractContextManager | None = None):
        """Initialize the handle.

        Args:
            base_path: Directory containing virtual_branches.toml
            lock: Context manager held around each operation (e.g. a
                threading.Lock or a file lock). None means the caller
                serializes access some other way.
        """
        self.base_path = Path(base_path)
        self.file_path = self.base_path / STATE_FILENAME
        self._lock = lock if lock is not None else nullcontext()

    # ─────────────────────────────────────────────────────────────────────────
    # Document I/O
    # ─────────────────────────────────────────────────────────────────────────

    def _read(self) -> VirtualBranches:
        if not self.file_path.exists():
            return VirtualBranches()
        try:
            data = tomlkit.parse(self.file_path.read_text(encoding="utf-8")).unwrap()
            return VirtualBranches.from_dict(data)
        except OSError as e:
            raise StoreIOError(self.file_path, f"cannot read: {e}") from e
        except (TOMLKitError, ValidationError, KeyError, TypeError, AttributeError) as e:
            raise StoreIOError(self.file_path, f"malformed document: {e}") from e

    def _write(self, document: VirtualBranches) -> None:
        try:
            self.base_path.mkdir(parents=True, exist_ok=True)
            content = tomlkit.dumps(document.to_dict())
            fd, tmp_path = tempfile.mkstemp(
                dir=self.base_path, prefix=".tmp_", suffix=".toml"
            )
        except OSError as e:
            raise StoreIOError(self.file_path, f"cannot write: {e}") from e

        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
            os.replace(tmp_path, self.file_path)
        except OSError as e:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise StoreIOError(self.file_path, f"cannot write: {e}") from e

    def read(self) -> VirtualBranches:
        """Load the whole document."""
        with self._lock:
            return self._read()

    # ─────────────────────────────────────────────────────────────────────────
    # Default target
    # ─────────────────────────────────────────────────────────────────────────

    def set_default_target(self, target: Target) -> None:
        with self._lock:
            document = self._read()
            document.default_target = target
            self._write(document)

    def get_default_target(self) -> Target:
        """Get the default target.

        Raises:
            DefaultTargetNotFoundError: If no target was set yet
        """
        target = self.try_default_target()
        if target is None:
            raise DefaultTargetNotFoundError()
        return target

    def try_default_target(self) -> Target | None:
        with self._lock:
            return self._read().default_target

    # ─────────────────────────────────────────────────────────────────────────
    # Branch CRUD
    # ─────────────────────────────────────────────────────────────────────────

    def set_branch(self, stack: Stack) -> None:
        """Insert or replace a stack, keyed by its id."""
        with self._lock:
            document = self._read()
            document.branches[stack.id] = stack
            self._write(document)

    def try_branch(self, branch_id: str) -> Stack | None:
        with self._lock:
            return self._read().branches.get(branch_id)

    def get_branch(self, branch_id: str) -> Stack:
        """Get a stack by id.

        Raises:
            BranchNotFoundError: If no stack has this id
        """
        stack = self.try_branch(branch_id)
        if stack is None:
            raise BranchNotFoundError(branch_id)
        return stack

    def try_branch_in_workspace(self, branch_id: str) -> Stack | None:
        stack = self.try_branch(branch_id)
        return stack if stack is not None and stack.in_workspace else None

    def get_branch_in_workspace(self, branch_id: str) -> Stack:
        stack = self.try_branch_in_workspace(branch_id)
        if stack is None:
            raise BranchNotFoundError(branch_id)
        return stack

    def delete_branch_entry(self, branch_id: str) -> None:
        """Remove a stack. Removing an unknown id is a no-op."""
        with self._lock:
            document = self._read()
            if document.branches.pop(branch_id, None) is not None:
                self._write(document)

    def list_all_branches(self) -> list[Stack]:
        """All stacks, sorted by (order, id)."""
        with self._lock:
            return sorted(self._read().branches.values(), key=_sort_key)

    def list_branches_in_workspace(self) -> list[Stack]:
        """Stacks applied to the workspace, sorted by (order, id)."""
        return [s for s in self.list_all_branches() if s.in_workspace]

    def mark_as_not_in_workspace(self, branch_id: str) -> None:
        """Flip a stack out of the workspace.

        Raises:
            BranchNotFoundError: If no stack has this id
        """
        with self._lock:
            document = self._read()
            stack = document.branches.get(branch_id)
            if stack is None:
                raise BranchNotFoundError(branch_id)
            document.branches[branch_id] = stack.model_copy(update={"in_workspace": False})
            self._write(document)

    def find_by_source_refname_where_not_in_workspace(self, refname: str) -> Stack | None:
        """First unapplied stack created from refname.

        Several stacks may share a source ref; the one with the lowest
        (order, id) wins.
        """
        for stack in self.list_all_branches():
            if stack.in_workspace:
                continue
            if stack.source_refname is not None and str(stack.source_refname) == str(refname):
                return stack
        return None

    def create_stack(
        self,
        name: str,
        head: str,
        *,
        upstream: str | None = None,
        source_refname: str | None = None,
    ) -> Stack:
        """Create an applied stack appended after all existing ones."""
        with self._lock:
            document = self._read()
            normalize_ordering(document)
            stack = Stack.new(
                name,
                head,
                order=self._next_order(document),
                upstream=upstream,
                source_refname=source_refname,
            )
            document.branches[stack.id] = stack
            self._write(document)
        logger.info(f"Created stack {stack.id} '{name}' at order {stack.order}")
        return stack

    # ─────────────────────────────────────────────────────────────────────────
    # Ordering
    # ─────────────────────────────────────────────────────────────────────────

    def update_ordering(self) -> None:
        """Make in-workspace orders dense (0..n-1) and persist them.

        Raises:
            OrderingUpdateError: If the normalized document cannot be written
        """
        with self._lock:
            document = self._read()
            self._persist_ordering(document)

    def _persist_ordering(self, document: VirtualBranches) -> None:
        if not normalize_ordering(document):
            return
        try:
            self._write(document)
        except StoreIOError as e:
            logger.error(f"Ordering update failed: {e}")
            raise OrderingUpdateError() from e

    @staticmethod
    def _next_order(document: VirtualBranches) -> int:
        orders = [s.order for s in document.in_workspace()]
        return max(orders) + 1 if orders else 0

    def next_order_index(self) -> int:
        """Order index for a new stack, after normalizing existing ones."""
        with self._lock:
            document = self._read()
            self._persist_ordering(document)
            return self._next_order(document)

    # ─────────────────────────────────────────────────────────────────────────
    # Garbage collection
    # ─────────────────────────────────────────────────────────────────────────

    def garbage_collect(self, repo: "GitRepository") -> list[str]:
        """Remove unapplied stacks that hold no work.

        A stack outside the workspace is removed when its head commit no
        longer exists, or when its head is its own merge base with the
        target (nothing committed beyond the target). Stacks carrying a
        parked WIP change are always kept. All removals land in a single
        write.

        Args:
            repo: Anything offering has_commit() and merge_base()

        Returns:
            Ids of the removed stacks

        Raises:
            DefaultTargetNotFoundError: If no target was set yet
        """
        with self._lock:
            document = self._read()
            target = document.default_target
            if target is None:
                raise DefaultTargetNotFoundError()

            to_remove = []
            for stack in sorted(document.branches.values(), key=_sort_key):
                if stack.in_workspace or stack.not_in_workspace_wip_change_id is not None:
                    continue
                if not repo.has_commit(stack.head):
                    logger.debug(f"GC: stack {stack.id} head {stack.head} is gone")
                    to_remove.append(stack.id)
                elif repo.merge_base(stack.head, target.sha) == stack.head:
                    logger.debug(f"GC: stack {stack.id} has no commits beyond the target")
                    to_remove.append(stack.id)

            if to_remove:
                for branch_id in to_remove:
                    del document.branches[branch_id]
                # Single write for all removals
                self._write(document)
                logger.info(f"Garbage collected {len(to_remove)} stack(s)")

        return to_remove
