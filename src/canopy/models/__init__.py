"""SQLModel database models for Canopy."""

from canopy.models.files import FileMetadata
from canopy.models.folders import Folder
from canopy.models.links import SharedLink
from canopy.models.permissions import AccessLevel, Permission, TargetType
from canopy.models.users import DEFAULT_STORAGE_LIMIT, User, UserRole

__all__ = [
    "DEFAULT_STORAGE_LIMIT",
    "AccessLevel",
    "FileMetadata",
    "Folder",
    "Permission",
    "SharedLink",
    "TargetType",
    "User",
    "UserRole",
]
