"""Canopy: multi-user file storage.

Folder trees, inherited per-user grants, public share links, a trash
with cascading restore, and per-user storage quotas.
"""

__version__ = "0.1.0"

from canopy._canopy import Canopy
from canopy.config import CanopyConfig
from canopy.fs.exceptions import (
    CanopyError,
    ConflictError,
    ForbiddenError,
    GoneError,
    InvalidInputError,
    LinkExpiredError,
    NotFoundError,
    QuotaExceededError,
    StorageError,
    UnauthorizedError,
)
from canopy.fs.types import (
    DeleteResult,
    FileInfo,
    FolderInfo,
    FolderListing,
    GrantInfo,
    LinkInfo,
    PurgeResult,
    RestoreResult,
    SearchHit,
    SharedEntry,
    SharedItem,
    SharedView,
    TargetRef,
    TrashListing,
    UserInfo,
)
from canopy.models import AccessLevel, TargetType, UserRole

__all__ = [
    "AccessLevel",
    "Canopy",
    "CanopyConfig",
    "CanopyError",
    "ConflictError",
    "DeleteResult",
    "FileInfo",
    "FolderInfo",
    "FolderListing",
    "ForbiddenError",
    "GoneError",
    "GrantInfo",
    "InvalidInputError",
    "LinkExpiredError",
    "LinkInfo",
    "NotFoundError",
    "PurgeResult",
    "QuotaExceededError",
    "RestoreResult",
    "SearchHit",
    "SharedEntry",
    "SharedItem",
    "SharedView",
    "StorageError",
    "TargetRef",
    "TargetType",
    "TrashListing",
    "UnauthorizedError",
    "UserInfo",
    "UserRole",
    "__version__",
]
