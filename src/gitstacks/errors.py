"""Exception hierarchy for gitstacks.

All gitstacks-specific exceptions inherit from GitStacksError.
"""

from pathlib import Path


class GitStacksError(Exception):
    """Base exception for all gitstacks errors."""


class NotFoundError(GitStacksError):
    """Raised when a requested record does not exist in the store."""


class DefaultTargetNotFoundError(NotFoundError):
    """Raised when the store has no default target yet."""

    def __init__(self) -> None:
        super().__init__("there is no default target")


class BranchNotFoundError(NotFoundError):
    """Raised when a virtual branch id is not present in the store."""

    def __init__(self, branch_id: str) -> None:
        self.branch_id = branch_id
        super().__init__(f"branch with ID {branch_id} not found")


class StoreIOError(GitStacksError):
    """Raised when the virtual branches document cannot be read or written."""

    def __init__(self, path: Path, message: str) -> None:
        self.path = path
        super().__init__(f"{path}: {message}")


class OrderingUpdateError(GitStacksError):
    """Raised when normalized branch ordering could not be persisted.

    Entries written before the failure stay written.
    """

    def __init__(self) -> None:
        super().__init__("Failed to update virtual branches ordering")


class InvalidBranchNameError(GitStacksError, ValueError):
    """Raised when a free-form name cannot be turned into a branch name."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Cannot derive a valid branch name from {name!r}")


class RepositoryError(GitStacksError):
    """Raised when the git repository or one of its objects is unusable."""
