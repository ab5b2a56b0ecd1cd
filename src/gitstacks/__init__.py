"""gitstacks: unified branch listing and virtual branch state for git workspaces."""

from .errors import (
    BranchNotFoundError,
    DefaultTargetNotFoundError,
    GitStacksError,
    NotFoundError,
    OrderingUpdateError,
    StoreIOError,
)
from .listing import BranchListingService
from .models import (
    Author,
    BranchListing,
    BranchListingDetails,
    BranchListingFilter,
    Stack,
    Target,
    VirtualBranches,
)
from .repository import GitRepository
from .store import VirtualBranchesHandle

__version__ = "0.1.0"

__all__ = [
    "Author",
    "BranchListing",
    "BranchListingDetails",
    "BranchListingFilter",
    "BranchListingService",
    "BranchNotFoundError",
    "DefaultTargetNotFoundError",
    "GitRepository",
    "GitStacksError",
    "NotFoundError",
    "OrderingUpdateError",
    "Stack",
    "StoreIOError",
    "Target",
    "VirtualBranches",
    "VirtualBranchesHandle",
]
