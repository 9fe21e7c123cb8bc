"""Canopy — async facade wiring the storage services to a database engine."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import SQLModel

from canopy.config import CanopyConfig
from canopy.fs.access import AccessResolver
from canopy.fs.blobs import LocalDiskBlobStore
from canopy.fs.exceptions import InvalidInputError, StorageError
from canopy.fs.hashing import BcryptHasher
from canopy.fs.metadata import MetadataService
from canopy.fs.quota import QuotaTracker
from canopy.fs.sharing import SharingManager
from canopy.fs.tree import TreeMutator
from canopy.fs.types import file_to_info
from canopy.fs.users import UserDirectory
from canopy.models import FileMetadata, Folder, Permission, SharedLink, User

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncEngine

    from canopy.fs.blobs import BlobStore
    from canopy.fs.hashing import PasswordHasher
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
        SharedItem,
        SharedView,
        TargetRef,
        TrashListing,
        UserInfo,
    )
    from canopy.models.permissions import AccessLevel

logger = logging.getLogger(__name__)

_TABLES = (User, Folder, FileMetadata, Permission, SharedLink)


class Canopy:
    """Multi-user file storage with shared folders and public links.

    Every public method runs in its own session: it commits when the
    method returns and rolls back if it raises, so a failed cascade,
    move, or upload never leaves partial state behind::

        engine = create_async_engine("sqlite+aiosqlite:///canopy.db")
        canopy = Canopy(engine)
        await canopy.open()
        admin = await canopy.register("root", "hunter2")
        docs = await canopy.create_folder(admin.id, "Docs")

    Methods taking ``user_id`` act on behalf of an authenticated user;
    that user must exist and be active.
    """

    def __init__(
        self,
        engine: AsyncEngine,
        *,
        config: CanopyConfig | None = None,
        blob_store: BlobStore | None = None,
        hasher: PasswordHasher | None = None,
    ) -> None:
        self.config = config or CanopyConfig()
        self._engine = engine
        self._session_factory = async_sessionmaker(
            engine, class_=AsyncSession, expire_on_commit=False
        )
        self._blobs: BlobStore | None = blob_store

        # Composed services
        self.metadata = MetadataService()
        self.access = AccessResolver(self.metadata, max_depth=self.config.max_ancestor_depth)
        self.quota = QuotaTracker()
        self.tree = TreeMutator(self.access, self.quota, self.metadata)
        self.sharing = SharingManager(
            self.access,
            self.metadata,
            token_bytes=self.config.share_token_bytes,
            token_attempts=self.config.share_token_attempts,
        )
        self.users = UserDirectory(
            hasher or BcryptHasher(self.config.bcrypt_rounds),
            default_storage_limit=self.config.default_storage_limit,
            min_password_length=self.config.min_password_length,
        )

    @property
    def blob_store(self) -> BlobStore:
        """The configured store, or a local disk store under ``data_dir`` built on first use."""
        if self._blobs is None:
            self._blobs = LocalDiskBlobStore(self.config.blob_dir)
        return self._blobs

    async def open(self) -> None:
        """Create any missing tables and the blob directory."""
        _ = self.blob_store
        async with self._engine.begin() as conn:
            await conn.run_sync(
                lambda c: SQLModel.metadata.create_all(
                    c, tables=[t.__table__ for t in _TABLES], checkfirst=True  # type: ignore[attr-defined]
                )
            )

    # ------------------------------------------------------------------
    # Session management (per-operation only)
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _session(self) -> AsyncGenerator[AsyncSession]:
        session = self._session_factory()
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    async def _discard_blobs(self, handles: list[str]) -> None:
        """Delete bytes after their metadata is gone; failures are only logged."""
        for handle in handles:
            try:
                removed = await self.blob_store.delete(handle)
            except StorageError:
                logger.warning("Could not delete blob %s", handle, exc_info=True)
                continue
            if not removed:
                logger.debug("Blob %s was already absent", handle)

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    async def register(self, username: str, password: str) -> UserInfo:
        async with self._session() as session:
            return await self.users.register(session, username, password)

    async def authenticate(self, username: str, password: str) -> UserInfo:
        async with self._session() as session:
            return await self.users.authenticate(session, username, password)

    async def get_user(self, user_id: str) -> UserInfo:
        async with self._session() as session:
            await self.users.require_active(session, user_id)
            return await self.users.get_user(session, user_id)

    async def list_users(self, admin_id: str) -> list[UserInfo]:
        async with self._session() as session:
            await self.users.require_admin(session, admin_id)
            return await self.users.list_users(session)

    async def activate_user(self, admin_id: str, user_id: str) -> UserInfo:
        async with self._session() as session:
            await self.users.require_admin(session, admin_id)
            return await self.users.activate_user(session, user_id)

    async def lock_user(self, admin_id: str, user_id: str) -> UserInfo:
        async with self._session() as session:
            await self.users.require_admin(session, admin_id)
            return await self.users.lock_user(session, user_id)

    async def reset_password(self, admin_id: str, user_id: str, new_password: str) -> None:
        async with self._session() as session:
            await self.users.require_admin(session, admin_id)
            await self.users.reset_password(session, user_id, new_password)

    async def set_storage_limit(self, admin_id: str, user_id: str, limit: int) -> UserInfo:
        async with self._session() as session:
            await self.users.require_admin(session, admin_id)
            return await self.users.set_storage_limit(session, user_id, limit)

    async def recalculate_storage(self, admin_id: str, user_id: str) -> int:
        async with self._session() as session:
            await self.users.require_admin(session, admin_id)
            await self.metadata.require_user(session, user_id)
            return await self.quota.recalculate(session, user_id)

    # ------------------------------------------------------------------
    # Access
    # ------------------------------------------------------------------

    async def effective_access(self, user_id: str, target: TargetRef) -> AccessLevel | None:
        async with self._session() as session:
            return await self.access.effective_access(session, user_id, target)

    async def has_permission(
        self, user_id: str, target: TargetRef, min_level: AccessLevel
    ) -> bool:
        async with self._session() as session:
            return await self.access.has_permission(session, user_id, target, min_level)

    # ------------------------------------------------------------------
    # Tree
    # ------------------------------------------------------------------

    async def create_folder(
        self, user_id: str, name: str, parent_id: str | None = None
    ) -> FolderInfo:
        async with self._session() as session:
            await self.users.require_active(session, user_id)
            return await self.tree.create_folder(session, user_id, name, parent_id)

    async def rename_folder(self, user_id: str, folder_id: str, new_name: str) -> FolderInfo:
        async with self._session() as session:
            await self.users.require_active(session, user_id)
            return await self.tree.rename_folder(session, user_id, folder_id, new_name)

    async def rename_file(self, user_id: str, file_id: str, new_name: str) -> FileInfo:
        async with self._session() as session:
            await self.users.require_active(session, user_id)
            return await self.tree.rename_file(session, user_id, file_id, new_name)

    async def move_folder(
        self, user_id: str, folder_id: str, target_id: str | None = None
    ) -> FolderInfo:
        async with self._session() as session:
            await self.users.require_active(session, user_id)
            return await self.tree.move_folder(session, user_id, folder_id, target_id)

    async def move_file(
        self, user_id: str, file_id: str, target_id: str | None = None
    ) -> FileInfo:
        async with self._session() as session:
            await self.users.require_active(session, user_id)
            return await self.tree.move_file(session, user_id, file_id, target_id)

    async def delete_folder(self, user_id: str, folder_id: str) -> DeleteResult:
        async with self._session() as session:
            await self.users.require_active(session, user_id)
            return await self.tree.delete_folder(session, user_id, folder_id)

    async def delete_file(self, user_id: str, file_id: str) -> DeleteResult:
        async with self._session() as session:
            await self.users.require_active(session, user_id)
            return await self.tree.delete_file(session, user_id, file_id)

    async def restore_folder(self, user_id: str, folder_id: str) -> RestoreResult:
        async with self._session() as session:
            await self.users.require_active(session, user_id)
            return await self.tree.restore_folder(session, user_id, folder_id)

    async def restore_file(self, user_id: str, file_id: str) -> RestoreResult:
        async with self._session() as session:
            await self.users.require_active(session, user_id)
            return await self.tree.restore_file(session, user_id, file_id)

    async def purge_folder(self, user_id: str, folder_id: str) -> PurgeResult:
        async with self._session() as session:
            await self.users.require_active(session, user_id)
            result = await self.tree.purge_folder(session, user_id, folder_id)
        await self._discard_blobs(result.blob_handles)
        return result

    async def purge_file(self, user_id: str, file_id: str) -> PurgeResult:
        async with self._session() as session:
            await self.users.require_active(session, user_id)
            result = await self.tree.purge_file(session, user_id, file_id)
        await self._discard_blobs(result.blob_handles)
        return result

    async def list_folder(self, user_id: str, folder_id: str | None = None) -> FolderListing:
        async with self._session() as session:
            await self.users.require_active(session, user_id)
            return await self.tree.list_folder(session, user_id, folder_id)

    async def list_trash(self, user_id: str) -> TrashListing:
        async with self._session() as session:
            await self.users.require_active(session, user_id)
            return await self.tree.list_trash(session, user_id)

    async def search(self, user_id: str, query: str) -> list[SearchHit]:
        async with self._session() as session:
            await self.users.require_active(session, user_id)
            return await self.tree.search(session, user_id, query)

    # ------------------------------------------------------------------
    # File content
    # ------------------------------------------------------------------

    async def upload_file(
        self,
        user_id: str,
        filename: str,
        data: bytes,
        folder_id: str | None = None,
    ) -> FileInfo:
        """Store *data* as *filename* in *folder_id* (default: the user's root).

        Access and quota are checked before any bytes are written, then
        re-checked in the transaction that records the file and charges
        the quota.  If that transaction fails the written bytes are removed.
        """
        if not data:
            raise InvalidInputError("No file content uploaded")
        size = len(data)

        async with self._session() as session:
            await self.users.require_active(session, user_id)
            folder_id = await self.tree.check_upload(session, user_id, folder_id, size)

        handle = await self.blob_store.save(data, filename)
        try:
            async with self._session() as session:
                return await self.tree.add_file(session, user_id, folder_id, filename, size, handle)
        except Exception:
            await self._discard_blobs([handle])
            raise

    async def download_file(self, user_id: str, file_id: str) -> tuple[FileInfo, bytes]:
        async with self._session() as session:
            await self.users.require_active(session, user_id)
            file = await self.tree.get_file(session, user_id, file_id)
        return file_to_info(file), await self.blob_store.read(file.physical_path)

    # ------------------------------------------------------------------
    # Sharing
    # ------------------------------------------------------------------

    async def grant_permission(
        self,
        granter_id: str,
        grantee_id: str,
        target: TargetRef,
        level: AccessLevel | int | str,
    ) -> GrantInfo:
        async with self._session() as session:
            await self.users.require_active(session, granter_id)
            return await self.sharing.grant_permission(
                session, granter_id, grantee_id, target, level
            )

    async def revoke_permission(self, user_id: str, permission_id: str) -> None:
        async with self._session() as session:
            await self.users.require_active(session, user_id)
            await self.sharing.revoke_permission(session, user_id, permission_id)

    async def list_permissions(self, user_id: str, target: TargetRef) -> list[GrantInfo]:
        async with self._session() as session:
            await self.users.require_active(session, user_id)
            return await self.sharing.list_permissions(session, user_id, target)

    async def list_shared_with_me(self, user_id: str) -> list[SharedItem]:
        async with self._session() as session:
            await self.users.require_active(session, user_id)
            return await self.sharing.list_shared_with_me(session, user_id)

    async def create_share_link(
        self,
        user_id: str,
        target: TargetRef,
        expires_at: datetime | None = None,
    ) -> LinkInfo:
        async with self._session() as session:
            await self.users.require_active(session, user_id)
            return await self.sharing.create_share_link(session, user_id, target, expires_at)

    async def resolve_share_link(self, token: str) -> SharedView:
        """Anonymous: no acting user is required."""
        async with self._session() as session:
            return await self.sharing.resolve_share_link(session, token)

    async def download_shared_file(self, token: str) -> tuple[FileInfo, bytes]:
        async with self._session() as session:
            file = await self.sharing.open_shared_file(session, token)
        return file_to_info(file), await self.blob_store.read(file.physical_path)

    async def revoke_share_link(self, user_id: str, link_id: str) -> None:
        async with self._session() as session:
            await self.users.require_active(session, user_id)
            await self.sharing.revoke_share_link(session, user_id, link_id)

    async def list_my_links(self, user_id: str) -> list[LinkInfo]:
        async with self._session() as session:
            await self.users.require_active(session, user_id)
            return await self.sharing.list_my_links(session, user_id)
