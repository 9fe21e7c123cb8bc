"""Result types: FolderInfo, FileInfo, SearchHit, SharedView, etc."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from canopy.models.permissions import AccessLevel, TargetType

from .utils import ensure_aware

if TYPE_CHECKING:
    from datetime import datetime

    from canopy.models.files import FileMetadata
    from canopy.models.folders import Folder
    from canopy.models.links import SharedLink
    from canopy.models.permissions import Permission
    from canopy.models.users import User, UserRole


@dataclass(frozen=True, slots=True)
class TargetRef:
    """Reference to exactly one file or one folder.

    Build with ``TargetRef.file(id)`` or ``TargetRef.folder(id)``.
    """

    type: TargetType
    id: str

    @classmethod
    def file(cls, file_id: str) -> TargetRef:
        return cls(TargetType.FILE, file_id)

    @classmethod
    def folder(cls, folder_id: str) -> TargetRef:
        return cls(TargetType.FOLDER, folder_id)

    @property
    def is_file(self) -> bool:
        return self.type == TargetType.FILE

    @property
    def is_folder(self) -> bool:
        return self.type == TargetType.FOLDER

    def __str__(self) -> str:
        return f"{self.type.value}:{self.id}"


@dataclass
class UserInfo:
    """Account summary, without the password hash."""

    id: str
    username: str
    role: UserRole
    is_active: bool
    storage_limit: int
    used_storage: int
    root_folder_id: str | None = None
    created_at: datetime | None = None


@dataclass
class FolderInfo:
    """Folder metadata."""

    id: str
    name: str
    owner_id: str
    parent_id: str | None
    created_at: datetime | None = None
    deleted_at: datetime | None = None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


@dataclass
class FileInfo:
    """File metadata (the blob handle is deliberately not exposed)."""

    id: str
    name: str
    extension: str
    size: int
    folder_id: str
    owner_id: str
    upload_date: datetime | None = None
    deleted_at: datetime | None = None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


@dataclass
class FolderListing:
    """Direct, non-deleted children of a folder plus the caller's access level."""

    folder: FolderInfo
    access: AccessLevel
    folders: list[FolderInfo] = field(default_factory=list)
    files: list[FileInfo] = field(default_factory=list)


@dataclass
class TrashListing:
    """Soft-deleted items owned by one user."""

    folders: list[FolderInfo] = field(default_factory=list)
    files: list[FileInfo] = field(default_factory=list)


@dataclass
class SearchHit:
    """A search match annotated with the caller's effective access."""

    target: TargetRef
    name: str
    owner_id: str
    parent_id: str | None
    access: AccessLevel


@dataclass
class DeleteResult:
    """Outcome of a soft delete."""

    target: TargetRef
    deleted_at: datetime
    folders_deleted: int = 0
    files_deleted: int = 0


@dataclass
class RestoreResult:
    """Outcome of a restore."""

    target: TargetRef
    folders_restored: int = 0
    files_restored: int = 0


@dataclass
class PurgeResult:
    """Outcome of a purge.

    ``blob_handles`` lists the bytes to delete once the metadata
    transaction has committed.
    """

    target: TargetRef
    folders_purged: int = 0
    files_purged: int = 0
    bytes_reclaimed: int = 0
    blob_handles: list[str] = field(default_factory=list)


@dataclass
class GrantInfo:
    """A direct permission grant."""

    id: str
    user_id: str
    target: TargetRef
    access_level: AccessLevel
    granted_by: str
    created_at: datetime | None = None


@dataclass
class SharedItem:
    """An item some other user granted the caller direct access to."""

    permission_id: str
    target: TargetRef
    name: str
    owner_id: str
    access_level: AccessLevel
    granted_by: str


@dataclass
class LinkInfo:
    """A public share link as seen by its creator."""

    id: str
    token: str
    target: TargetRef
    creator_id: str
    created_at: datetime | None = None
    expires_at: datetime | None = None
    item_name: str | None = None


@dataclass
class SharedEntry:
    """One child entry in an anonymous folder view."""

    id: str
    name: str
    is_folder: bool
    extension: str | None = None
    size: int | None = None


@dataclass
class SharedView:
    """Read-only projection returned when a share link is resolved.

    File links fill the file fields; folder links fill ``entries`` with
    one level of non-deleted children.
    """

    target: TargetRef
    name: str
    extension: str | None = None
    size: int | None = None
    upload_date: datetime | None = None
    entries: list[SharedEntry] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Row conversion
# ---------------------------------------------------------------------------


def user_to_info(u: User) -> UserInfo:
    return UserInfo(
        id=u.id,
        username=u.username,
        role=u.role,
        is_active=u.is_active,
        storage_limit=u.storage_limit,
        used_storage=u.used_storage,
        root_folder_id=u.root_folder_id,
        created_at=ensure_aware(u.created_at),
    )


def folder_to_info(f: Folder) -> FolderInfo:
    return FolderInfo(
        id=f.id,
        name=f.name,
        owner_id=f.owner_id,
        parent_id=f.parent_id,
        created_at=ensure_aware(f.created_at),
        deleted_at=ensure_aware(f.deleted_at),
    )


def file_to_info(f: FileMetadata) -> FileInfo:
    return FileInfo(
        id=f.id,
        name=f.name,
        extension=f.extension,
        size=f.size,
        folder_id=f.folder_id,
        owner_id=f.owner_id,
        upload_date=ensure_aware(f.upload_date),
        deleted_at=ensure_aware(f.deleted_at),
    )


def permission_to_info(p: Permission) -> GrantInfo:
    return GrantInfo(
        id=p.id,
        user_id=p.user_id,
        target=TargetRef(TargetType(p.target_type), p.target_id),
        access_level=AccessLevel(p.access_level),
        granted_by=p.granted_by,
        created_at=ensure_aware(p.created_at),
    )


def link_to_info(link: SharedLink, item_name: str | None = None) -> LinkInfo:
    return LinkInfo(
        id=link.id,
        token=link.token,
        target=TargetRef(TargetType(link.target_type), link.target_id),
        creator_id=link.creator_id,
        created_at=ensure_aware(link.created_at),
        expires_at=ensure_aware(link.expires_at),
        item_name=item_name,
    )
