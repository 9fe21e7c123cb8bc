"""Storage layer — access resolution, tree mutation, sharing, quota, accounts."""

from canopy.fs.access import AccessResolver
from canopy.fs.blobs import BlobStore, LocalDiskBlobStore
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
from canopy.fs.hashing import BcryptHasher, PasswordHasher
from canopy.fs.metadata import MetadataService
from canopy.fs.quota import QuotaTracker
from canopy.fs.sharing import SharingManager
from canopy.fs.tree import TreeMutator
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
from canopy.fs.users import UserDirectory

__all__ = [
    "AccessResolver",
    "BcryptHasher",
    "BlobStore",
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
    "LocalDiskBlobStore",
    "MetadataService",
    "NotFoundError",
    "PasswordHasher",
    "PurgeResult",
    "QuotaExceededError",
    "QuotaTracker",
    "RestoreResult",
    "SearchHit",
    "SharedEntry",
    "SharedItem",
    "SharedView",
    "SharingManager",
    "StorageError",
    "TargetRef",
    "TrashListing",
    "TreeMutator",
    "UnauthorizedError",
    "UserDirectory",
    "UserInfo",
]
