"""TreeMutator — structural changes to the folder/file tree.

All walks over the tree are iterative worklists over id-indexed rows,
each guarded by a visited set so corrupt parent pointers cannot make
them loop.  Every method only flushes; the caller's session decides
whether the whole operation commits.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy import delete
from sqlmodel import select

from canopy.models.files import FileMetadata
from canopy.models.folders import Folder
from canopy.models.permissions import AccessLevel, Permission, TargetType

from .exceptions import ConflictError, ForbiddenError, InvalidInputError
from .types import (
    DeleteResult,
    FileInfo,
    FolderInfo,
    FolderListing,
    PurgeResult,
    RestoreResult,
    SearchHit,
    TargetRef,
    TrashListing,
    file_to_info,
    folder_to_info,
)
from .utils import clean_name, ensure_aware, split_extension, utcnow

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from .access import AccessResolver
    from .metadata import MetadataService
    from .quota import QuotaTracker

logger = logging.getLogger(__name__)


class TreeMutator:
    """Create, rename, move, soft-delete, restore, and purge folders and files.

    Edit access (direct, inherited, or by ownership) is enough for
    structural edits and soft deletes.  Restore and purge are reserved
    for the item's owner.
    """

    def __init__(
        self,
        access: AccessResolver,
        quota: QuotaTracker,
        metadata: MetadataService,
    ) -> None:
        self._access = access
        self._quota = quota
        self._metadata = metadata

    async def _resolve_parent(
        self, session: AsyncSession, user_id: str, folder_id: str | None
    ) -> Folder:
        """Load *folder_id* (or the caller's root) as a live, editable destination."""
        if folder_id is None:
            folder_id = await self._metadata.root_folder_id(session, user_id)
        folder = await self._metadata.require_folder(session, folder_id)
        await self._access.require(session, user_id, TargetRef.folder(folder.id), AccessLevel.EDIT)
        return folder

    # ------------------------------------------------------------------
    # Create / rename
    # ------------------------------------------------------------------

    async def create_folder(
        self,
        session: AsyncSession,
        user_id: str,
        name: str,
        parent_id: str | None = None,
    ) -> FolderInfo:
        """Create a folder owned by *user_id* under *parent_id* (default: root)."""
        name = clean_name(name, "Folder name")
        parent = await self._resolve_parent(session, user_id, parent_id)
        folder = Folder(name=name, owner_id=user_id, parent_id=parent.id)
        session.add(folder)
        await session.flush()
        logger.info("Created folder %s (%r) under %s for %s", folder.id, name, parent.id, user_id)
        return folder_to_info(folder)

    async def rename_folder(
        self, session: AsyncSession, user_id: str, folder_id: str, new_name: str
    ) -> FolderInfo:
        new_name = clean_name(new_name, "Folder name")
        folder = await self._metadata.require_folder(session, folder_id)
        await self._access.require(session, user_id, TargetRef.folder(folder.id), AccessLevel.EDIT)
        folder.name = new_name
        session.add(folder)
        await session.flush()
        return folder_to_info(folder)

    async def rename_file(
        self, session: AsyncSession, user_id: str, file_id: str, new_name: str
    ) -> FileInfo:
        new_name = clean_name(new_name, "File name")
        file = await self._metadata.require_file(session, file_id)
        await self._access.require(session, user_id, TargetRef.file(file.id), AccessLevel.EDIT)
        file.name = new_name
        file.extension = split_extension(new_name)
        session.add(file)
        await session.flush()
        return file_to_info(file)

    async def add_file(
        self,
        session: AsyncSession,
        user_id: str,
        folder_id: str | None,
        name: str,
        size: int,
        physical_path: str,
    ) -> FileInfo:
        """Record an uploaded blob and charge its size to the uploader's quota."""
        name = clean_name(name, "File name")
        folder = await self._resolve_parent(session, user_id, folder_id)
        await self._quota.reserve(session, user_id, size)
        file = FileMetadata(
            name=name,
            extension=split_extension(name),
            size=size,
            physical_path=physical_path,
            folder_id=folder.id,
            owner_id=user_id,
        )
        session.add(file)
        await session.flush()
        logger.info("Stored file %s (%r, %d bytes) in %s", file.id, name, size, folder.id)
        return file_to_info(file)

    async def check_upload(
        self,
        session: AsyncSession,
        user_id: str,
        folder_id: str | None,
        size: int,
    ) -> str:
        """Validate an upload before its bytes are written; returns the folder id."""
        folder = await self._resolve_parent(session, user_id, folder_id)
        await self._quota.check(session, user_id, size)
        return folder.id

    # ------------------------------------------------------------------
    # Move
    # ------------------------------------------------------------------

    async def move_folder(
        self,
        session: AsyncSession,
        user_id: str,
        folder_id: str,
        target_id: str | None = None,
    ) -> FolderInfo:
        """Re-parent *folder_id* under *target_id* (default: caller's root).

        Rejects moves that would put a folder inside itself or one of its
        own descendants, so the parent pointers always form a forest.
        """
        folder = await self._metadata.require_folder(session, folder_id)
        if folder.is_root:
            raise InvalidInputError("Cannot move a root folder")
        await self._access.require(session, user_id, TargetRef.folder(folder.id), AccessLevel.EDIT)

        if target_id is None:
            target_id = await self._metadata.root_folder_id(session, user_id)
        if target_id == folder.id:
            raise InvalidInputError("Cannot move a folder into itself")

        target = await self._resolve_parent(session, user_id, target_id)
        await self._ensure_not_descendant(session, folder.id, target.id)

        old_parent = folder.parent_id
        folder.parent_id = target.id
        session.add(folder)
        await session.flush()
        logger.info("Moved folder %s from %s to %s", folder.id, old_parent, target.id)
        return folder_to_info(folder)

    async def _ensure_not_descendant(
        self, session: AsyncSession, source_id: str, target_id: str
    ) -> None:
        """Walk up from *target_id*; meeting *source_id* means a cycle."""
        visited: set[str] = set()
        current: str | None = target_id
        while current is not None:
            if current == source_id:
                raise InvalidInputError("Cannot move a folder into its own subfolder")
            if current in visited:
                logger.warning("Cycle in folder ancestry at %s; refusing move", current)
                raise InvalidInputError("Destination folder has a corrupt ancestry")
            visited.add(current)
            current = await self._metadata.parent_id(session, current)

    async def move_file(
        self,
        session: AsyncSession,
        user_id: str,
        file_id: str,
        target_id: str | None = None,
    ) -> FileInfo:
        """Move *file_id* into *target_id* (default: caller's root)."""
        file = await self._metadata.require_file(session, file_id)
        await self._access.require(session, user_id, TargetRef.file(file.id), AccessLevel.EDIT)
        target = await self._resolve_parent(session, user_id, target_id)
        old_folder = file.folder_id
        file.folder_id = target.id
        session.add(file)
        await session.flush()
        logger.info("Moved file %s from %s to %s", file.id, old_folder, target.id)
        return file_to_info(file)

    # ------------------------------------------------------------------
    # Soft delete / restore
    # ------------------------------------------------------------------

    async def delete_folder(
        self, session: AsyncSession, user_id: str, folder_id: str
    ) -> DeleteResult:
        """Soft-delete a folder and every live descendant with one timestamp."""
        folder = await self._metadata.require_folder(session, folder_id)
        if folder.is_root:
            raise InvalidInputError("Cannot delete a root folder")
        await self._access.require(session, user_id, TargetRef.folder(folder.id), AccessLevel.EDIT)

        now = utcnow()
        result = DeleteResult(target=TargetRef.folder(folder.id), deleted_at=now)
        folder.deleted_at = now
        session.add(folder)
        result.folders_deleted += 1

        worklist = [folder.id]
        visited: set[str] = set()
        while worklist:
            current = worklist.pop()
            if current in visited:
                continue
            visited.add(current)

            for file in await self._metadata.child_files(session, current):
                file.deleted_at = now
                session.add(file)
                result.files_deleted += 1
            for child in await self._metadata.child_folders(session, current):
                child.deleted_at = now
                session.add(child)
                result.folders_deleted += 1
                worklist.append(child.id)

        await session.flush()
        logger.info(
            "Soft-deleted folder %s (%d folders, %d files)",
            folder.id,
            result.folders_deleted,
            result.files_deleted,
        )
        return result

    async def delete_file(
        self, session: AsyncSession, user_id: str, file_id: str
    ) -> DeleteResult:
        file = await self._metadata.require_file(session, file_id)
        await self._access.require(session, user_id, TargetRef.file(file.id), AccessLevel.EDIT)
        file.deleted_at = utcnow()
        session.add(file)
        await session.flush()
        return DeleteResult(
            target=TargetRef.file(file.id), deleted_at=file.deleted_at, files_deleted=1
        )

    @staticmethod
    def _ensure_owner(row: Folder | FileMetadata, user_id: str, action: str) -> None:
        if row.owner_id != user_id:
            raise ForbiddenError(f"Only the owner may {action} this item")

    async def _ensure_parent_live(self, session: AsyncSession, parent_id: str | None) -> None:
        if parent_id is None:
            return
        parent = await self._metadata.get_folder(session, parent_id, include_deleted=True)
        if parent is not None and parent.is_deleted:
            raise ConflictError(f"Parent folder is in the trash: {parent_id}")

    async def restore_folder(
        self, session: AsyncSession, user_id: str, folder_id: str
    ) -> RestoreResult:
        """Undo a folder delete, including everything deleted in the same cascade.

        Descendants that were deleted on their own, earlier or later, keep
        their own timestamp and stay in the trash.
        """
        folder = await self._metadata.require_folder(session, folder_id, include_deleted=True)
        self._ensure_owner(folder, user_id, "restore")
        if not folder.is_deleted:
            raise InvalidInputError(f"Folder is not in the trash: {folder_id}")
        await self._ensure_parent_live(session, folder.parent_id)

        stamp = ensure_aware(folder.deleted_at)
        result = RestoreResult(target=TargetRef.folder(folder.id))
        folder.deleted_at = None
        session.add(folder)
        result.folders_restored += 1

        worklist = [folder.id]
        visited: set[str] = set()
        while worklist:
            current = worklist.pop()
            if current in visited:
                continue
            visited.add(current)

            for file in await self._metadata.child_files(session, current, include_deleted=True):
                if file.is_deleted and ensure_aware(file.deleted_at) == stamp:
                    file.deleted_at = None
                    session.add(file)
                    result.files_restored += 1
            for child in await self._metadata.child_folders(
                session, current, include_deleted=True
            ):
                if child.is_deleted and ensure_aware(child.deleted_at) == stamp:
                    child.deleted_at = None
                    session.add(child)
                    result.folders_restored += 1
                    worklist.append(child.id)

        await session.flush()
        logger.info(
            "Restored folder %s (%d folders, %d files)",
            folder.id,
            result.folders_restored,
            result.files_restored,
        )
        return result

    async def restore_file(
        self, session: AsyncSession, user_id: str, file_id: str
    ) -> RestoreResult:
        file = await self._metadata.require_file(session, file_id, include_deleted=True)
        self._ensure_owner(file, user_id, "restore")
        if not file.is_deleted:
            raise InvalidInputError(f"File is not in the trash: {file_id}")
        await self._ensure_parent_live(session, file.folder_id)
        file.deleted_at = None
        session.add(file)
        await session.flush()
        return RestoreResult(target=TargetRef.file(file.id), files_restored=1)

    # ------------------------------------------------------------------
    # Purge
    # ------------------------------------------------------------------

    async def purge_folder(
        self, session: AsyncSession, user_id: str, folder_id: str
    ) -> PurgeResult:
        """Permanently remove a folder, its whole subtree, and grants on them."""
        folder = await self._metadata.require_folder(session, folder_id, include_deleted=True)
        self._ensure_owner(folder, user_id, "purge")
        if folder.is_root:
            raise InvalidInputError("Cannot purge a root folder")

        result = PurgeResult(target=TargetRef.folder(folder.id))
        folders: list[Folder] = [folder]
        files: list[FileMetadata] = []

        worklist = [folder.id]
        visited: set[str] = set()
        while worklist:
            current = worklist.pop()
            if current in visited:
                continue
            visited.add(current)
            files.extend(await self._metadata.child_files(session, current, include_deleted=True))
            for child in await self._metadata.child_folders(
                session, current, include_deleted=True
            ):
                if child.id not in visited:
                    folders.append(child)
                    worklist.append(child.id)

        for file in files:
            await self._purge_file_row(session, file, result)
        await self._drop_grants(session, TargetType.FOLDER, [f.id for f in folders])
        for f in folders:
            await session.delete(f)
        result.folders_purged = len(folders)

        await session.flush()
        logger.info(
            "Purged folder %s (%d folders, %d files, %d bytes)",
            folder.id,
            result.folders_purged,
            result.files_purged,
            result.bytes_reclaimed,
        )
        return result

    async def purge_file(
        self, session: AsyncSession, user_id: str, file_id: str
    ) -> PurgeResult:
        file = await self._metadata.require_file(session, file_id, include_deleted=True)
        self._ensure_owner(file, user_id, "purge")
        result = PurgeResult(target=TargetRef.file(file.id))
        await self._purge_file_row(session, file, result)
        await session.flush()
        logger.info("Purged file %s (%d bytes)", file.id, file.size)
        return result

    async def _purge_file_row(
        self, session: AsyncSession, file: FileMetadata, result: PurgeResult
    ) -> None:
        await self._quota.release(session, file.owner_id, file.size)
        await self._drop_grants(session, TargetType.FILE, [file.id])
        if file.physical_path:
            result.blob_handles.append(file.physical_path)
        result.files_purged += 1
        result.bytes_reclaimed += file.size
        await session.delete(file)

    @staticmethod
    async def _drop_grants(
        session: AsyncSession, target_type: TargetType, target_ids: list[str]
    ) -> None:
        if not target_ids:
            return
        await session.execute(
            delete(Permission).where(
                Permission.target_type == target_type,
                Permission.target_id.in_(target_ids),  # type: ignore[union-attr]
            )
        )

    # ------------------------------------------------------------------
    # Read paths
    # ------------------------------------------------------------------

    async def list_folder(
        self, session: AsyncSession, user_id: str, folder_id: str | None = None
    ) -> FolderListing:
        """Direct live children of *folder_id* (default: caller's root)."""
        if folder_id is None:
            folder_id = await self._metadata.root_folder_id(session, user_id)
        folder = await self._metadata.require_folder(session, folder_id)
        level = await self._access.require(
            session, user_id, TargetRef.folder(folder.id), AccessLevel.READ
        )
        return FolderListing(
            folder=folder_to_info(folder),
            access=level,
            folders=[folder_to_info(f) for f in await self._metadata.child_folders(session, folder.id)],
            files=[file_to_info(f) for f in await self._metadata.child_files(session, folder.id)],
        )

    async def get_file(
        self, session: AsyncSession, user_id: str, file_id: str
    ) -> FileMetadata:
        """Return a live file row the caller may read (for downloads)."""
        file = await self._metadata.require_file(session, file_id)
        await self._access.require(session, user_id, TargetRef.file(file.id), AccessLevel.READ)
        return file

    async def list_trash(self, session: AsyncSession, user_id: str) -> TrashListing:
        folders = await session.execute(
            select(Folder)
            .where(Folder.owner_id == user_id, Folder.deleted_at.is_not(None))  # type: ignore[union-attr]
            .order_by(Folder.name)
        )
        files = await session.execute(
            select(FileMetadata)
            .where(FileMetadata.owner_id == user_id, FileMetadata.deleted_at.is_not(None))  # type: ignore[union-attr]
            .order_by(FileMetadata.name)
        )
        return TrashListing(
            folders=[folder_to_info(f) for f in folders.scalars().all()],
            files=[file_to_info(f) for f in files.scalars().all()],
        )

    async def search(
        self, session: AsyncSession, user_id: str, query: str
    ) -> list[SearchHit]:
        """Case-insensitive name search over live items the caller can access.

        Names are compared with Unicode case folding in Python; SQLite's
        ``lower()`` and ``LIKE`` only fold ASCII letters.
        """
        needle = (query or "").strip().casefold()
        if not needle:
            raise InvalidInputError("Search query cannot be empty")

        folder_rows = await session.execute(
            select(Folder).where(Folder.deleted_at.is_(None))  # type: ignore[union-attr]
        )
        file_rows = await session.execute(
            select(FileMetadata).where(FileMetadata.deleted_at.is_(None))  # type: ignore[union-attr]
        )

        hits: list[SearchHit] = []
        for folder in folder_rows.scalars().all():
            if needle not in folder.name.casefold():
                continue
            target = TargetRef.folder(folder.id)
            level = await self._access.effective_access(session, user_id, target)
            if level is not None:
                hits.append(SearchHit(target, folder.name, folder.owner_id, folder.parent_id, level))
        for file in file_rows.scalars().all():
            if needle not in file.name.casefold():
                continue
            target = TargetRef.file(file.id)
            level = await self._access.effective_access(session, user_id, target)
            if level is not None:
                hits.append(SearchHit(target, file.name, file.owner_id, file.folder_id, level))

        hits.sort(key=lambda h: (h.name.casefold(), h.target.type.value))
        logger.debug("Search %r for %s: %d hit(s)", query, user_id, len(hits))
        return hits
