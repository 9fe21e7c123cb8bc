"""MetadataService — row lookup for folders, files, and their owners."""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlmodel import select

from canopy.models.files import FileMetadata
from canopy.models.folders import Folder
from canopy.models.users import User

from .exceptions import NotFoundError

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from .types import TargetRef


class MetadataService:
    """Stateless helpers shared by the access, tree, and sharing services.

    ``get_*`` methods return ``None`` for missing rows; ``require_*``
    methods raise ``NotFoundError`` instead.  Soft-deleted rows count as
    missing unless *include_deleted* is set.
    """

    async def get_folder(
        self,
        session: AsyncSession,
        folder_id: str,
        include_deleted: bool = False,
    ) -> Folder | None:
        folder = await session.get(Folder, folder_id)
        if folder is None or (folder.is_deleted and not include_deleted):
            return None
        return folder

    async def get_file(
        self,
        session: AsyncSession,
        file_id: str,
        include_deleted: bool = False,
    ) -> FileMetadata | None:
        file = await session.get(FileMetadata, file_id)
        if file is None or (file.is_deleted and not include_deleted):
            return None
        return file

    async def get_target(
        self,
        session: AsyncSession,
        target: TargetRef,
        include_deleted: bool = False,
    ) -> Folder | FileMetadata | None:
        if target.is_file:
            return await self.get_file(session, target.id, include_deleted)
        return await self.get_folder(session, target.id, include_deleted)

    async def require_folder(
        self,
        session: AsyncSession,
        folder_id: str,
        include_deleted: bool = False,
    ) -> Folder:
        folder = await self.get_folder(session, folder_id, include_deleted)
        if folder is None:
            raise NotFoundError(f"Folder not found: {folder_id}")
        return folder

    async def require_file(
        self,
        session: AsyncSession,
        file_id: str,
        include_deleted: bool = False,
    ) -> FileMetadata:
        file = await self.get_file(session, file_id, include_deleted)
        if file is None:
            raise NotFoundError(f"File not found: {file_id}")
        return file

    async def require_target(
        self,
        session: AsyncSession,
        target: TargetRef,
        include_deleted: bool = False,
    ) -> Folder | FileMetadata:
        if target.is_file:
            return await self.require_file(session, target.id, include_deleted)
        return await self.require_folder(session, target.id, include_deleted)

    async def require_user(self, session: AsyncSession, user_id: str) -> User:
        user = await session.get(User, user_id)
        if user is None:
            raise NotFoundError(f"User not found: {user_id}")
        return user

    async def root_folder_id(self, session: AsyncSession, user_id: str) -> str:
        """Id of *user_id*'s root folder, used wherever "no parent" is given."""
        user = await self.require_user(session, user_id)
        if user.root_folder_id is None:
            raise NotFoundError(f"User has no root folder: {user_id}")
        return user.root_folder_id

    async def parent_id(self, session: AsyncSession, folder_id: str) -> str | None:
        """Parent of *folder_id* regardless of deletion state, ``None`` at the top."""
        result = await session.execute(
            select(Folder.parent_id).where(Folder.id == folder_id)
        )
        row = result.first()
        return row[0] if row else None

    async def child_folders(
        self,
        session: AsyncSession,
        folder_id: str,
        include_deleted: bool = False,
    ) -> list[Folder]:
        query = select(Folder).where(Folder.parent_id == folder_id)
        if not include_deleted:
            query = query.where(Folder.deleted_at.is_(None))  # type: ignore[union-attr]
        result = await session.execute(query.order_by(Folder.name))
        return list(result.scalars().all())

    async def child_files(
        self,
        session: AsyncSession,
        folder_id: str,
        include_deleted: bool = False,
    ) -> list[FileMetadata]:
        query = select(FileMetadata).where(FileMetadata.folder_id == folder_id)
        if not include_deleted:
            query = query.where(FileMetadata.deleted_at.is_(None))  # type: ignore[union-attr]
        result = await session.execute(query.order_by(FileMetadata.name))
        return list(result.scalars().all())
