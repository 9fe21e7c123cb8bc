"""SharingManager — per-user grants and public share links.

Stateless service that receives a session at call time, following the
MetadataService pattern.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy.exc import IntegrityError
from sqlmodel import select

from canopy.models.links import SharedLink
from canopy.models.permissions import AccessLevel, Permission, TargetType

from .exceptions import (
    ConflictError,
    ForbiddenError,
    GoneError,
    InvalidInputError,
    LinkExpiredError,
    NotFoundError,
)
from .types import (
    GrantInfo,
    LinkInfo,
    SharedEntry,
    SharedItem,
    SharedView,
    TargetRef,
    link_to_info,
    permission_to_info,
)
from .utils import ensure_aware, generate_token, utcnow

if TYPE_CHECKING:
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncSession

    from canopy.models.files import FileMetadata
    from canopy.models.folders import Folder

    from .access import AccessResolver
    from .metadata import MetadataService

logger = logging.getLogger(__name__)

SHARE_TOKEN_BYTES = 9
SHARE_TOKEN_ATTEMPTS = 5


def _coerce_level(level: AccessLevel | int | str) -> AccessLevel:
    try:
        if isinstance(level, str):
            return AccessLevel[level.upper()]
        return AccessLevel(level)
    except (KeyError, ValueError):
        raise InvalidInputError(
            f"Invalid access level: {level!r}. Must be 'read', 'edit' or 'delete'."
        ) from None


async def _find_grant(
    session: AsyncSession, user_id: str, target: TargetRef
) -> Permission | None:
    result = await session.execute(
        select(Permission).where(
            Permission.user_id == user_id,
            Permission.target_type == target.type,
            Permission.target_id == target.id,
        )
    )
    return result.scalar_one_or_none()


class SharingManager:
    """Grants between users and anonymous share links.

    Granting requires ``DELETE`` on the target, which in practice means
    the owner.  Revoking grants, listing grants, and creating links are
    owner-only; revoking a link is reserved for its creator.
    """

    def __init__(
        self,
        access: AccessResolver,
        metadata: MetadataService,
        *,
        token_bytes: int = SHARE_TOKEN_BYTES,
        token_attempts: int = SHARE_TOKEN_ATTEMPTS,
    ) -> None:
        self._access = access
        self._metadata = metadata
        self._token_bytes = token_bytes
        self._token_attempts = token_attempts

    # ------------------------------------------------------------------
    # Grants
    # ------------------------------------------------------------------

    async def grant_permission(
        self,
        session: AsyncSession,
        granter_id: str,
        grantee_id: str,
        target: TargetRef,
        level: AccessLevel | int | str,
    ) -> GrantInfo:
        """Grant *grantee_id* *level* on *target*, replacing any earlier grant."""
        access_level = _coerce_level(level)
        row = await self._metadata.require_target(session, target)
        await self._access.require(session, granter_id, target, AccessLevel.DELETE)
        await self._metadata.require_user(session, grantee_id)
        if grantee_id == row.owner_id:
            raise InvalidInputError("Cannot grant access to the item's owner")

        perm = await _find_grant(session, grantee_id, target)
        if perm is None:
            perm = Permission(
                user_id=grantee_id,
                target_type=target.type,
                target_id=target.id,
                access_level=access_level,
                granted_by=granter_id,
            )
            try:
                async with session.begin_nested():
                    session.add(perm)
                    await session.flush()
            except IntegrityError:
                # A concurrent grant for the same target won the insert.
                logger.debug("Grant for %s on %s raced an insert; updating", grantee_id, target)
                perm = await _find_grant(session, grantee_id, target)
                if perm is None:
                    raise ConflictError(f"Could not record grant on {target}") from None
                perm.access_level = access_level
                perm.granted_by = granter_id
                perm.created_at = utcnow()
        else:
            perm.access_level = access_level
            perm.granted_by = granter_id
            perm.created_at = utcnow()
        session.add(perm)
        await session.flush()
        logger.info(
            "Granted %s on %s to %s (by %s)",
            access_level.name.lower(),
            target,
            grantee_id,
            granter_id,
        )
        return permission_to_info(perm)

    async def revoke_permission(
        self, session: AsyncSession, requester_id: str, permission_id: str
    ) -> None:
        perm = await session.get(Permission, permission_id)
        if perm is None:
            raise NotFoundError(f"Permission not found: {permission_id}")
        target = TargetRef(TargetType(perm.target_type), perm.target_id)
        row = await self._metadata.get_target(session, target, include_deleted=True)
        if row is None or row.owner_id != requester_id:
            raise ForbiddenError("Only the owner may revoke access to this item")
        await session.delete(perm)
        await session.flush()
        logger.info("Revoked permission %s on %s", permission_id, target)

    async def list_permissions(
        self, session: AsyncSession, user_id: str, target: TargetRef
    ) -> list[GrantInfo]:
        """All direct grants on *target*; owner only."""
        row = await self._metadata.require_target(session, target, include_deleted=True)
        if row.owner_id != user_id:
            raise ForbiddenError("Only the owner may list access to this item")
        result = await session.execute(
            select(Permission)
            .where(Permission.target_type == target.type, Permission.target_id == target.id)
            .order_by(Permission.created_at)
        )
        return [permission_to_info(p) for p in result.scalars().all()]

    async def list_shared_with_me(
        self, session: AsyncSession, user_id: str
    ) -> list[SharedItem]:
        """Items with a direct grant naming *user_id* (not inherited access)."""
        result = await session.execute(
            select(Permission)
            .where(Permission.user_id == user_id)
            .order_by(Permission.created_at)
        )
        items: list[SharedItem] = []
        for perm in result.scalars().all():
            target = TargetRef(TargetType(perm.target_type), perm.target_id)
            row = await self._metadata.get_target(session, target)
            if row is None:
                continue
            items.append(
                SharedItem(
                    permission_id=perm.id,
                    target=target,
                    name=row.name,
                    owner_id=row.owner_id,
                    access_level=AccessLevel(perm.access_level),
                    granted_by=perm.granted_by,
                )
            )
        return items

    # ------------------------------------------------------------------
    # Share links
    # ------------------------------------------------------------------

    async def create_share_link(
        self,
        session: AsyncSession,
        creator_id: str,
        target: TargetRef,
        expires_at: datetime | None = None,
    ) -> LinkInfo:
        row = await self._metadata.require_target(session, target)
        if row.owner_id != creator_id:
            raise ForbiddenError("Only the owner may create a share link")
        token = await self._unique_token(session)
        link = SharedLink(
            token=token,
            target_type=target.type,
            target_id=target.id,
            creator_id=creator_id,
            expires_at=ensure_aware(expires_at),
        )
        session.add(link)
        await session.flush()
        logger.info("Created share link %s for %s", link.id, target)
        return link_to_info(link, row.name)

    async def _unique_token(self, session: AsyncSession) -> str:
        for _ in range(self._token_attempts):
            token = generate_token(self._token_bytes)
            result = await session.execute(
                select(SharedLink.id).where(SharedLink.token == token)
            )
            if result.first() is None:
                return token
            logger.debug("Share token collision, regenerating")
        raise ConflictError("Could not generate a unique share token")

    async def _live_link(self, session: AsyncSession, token: str) -> SharedLink:
        result = await session.execute(select(SharedLink).where(SharedLink.token == token))
        link = result.scalar_one_or_none()
        if link is None:
            raise NotFoundError("Share link not found")
        expires_at = ensure_aware(link.expires_at)
        if expires_at is not None and expires_at < utcnow():
            raise LinkExpiredError("This share link has expired")
        return link

    async def resolve_share_link(self, session: AsyncSession, token: str) -> SharedView:
        """Anonymous read-only view of a link's file, or one level of its folder."""
        link = await self._live_link(session, token)
        target = TargetRef(TargetType(link.target_type), link.target_id)
        row = await self._metadata.get_target(session, target)
        if row is None:
            raise GoneError(f"The shared {target.type.value} is no longer available")

        if target.is_file:
            return SharedView(
                target=target,
                name=row.name,
                extension=row.extension,  # type: ignore[union-attr]
                size=row.size,  # type: ignore[union-attr]
                upload_date=ensure_aware(row.upload_date),  # type: ignore[union-attr]
            )

        entries = [
            SharedEntry(id=f.id, name=f.name, is_folder=True)
            for f in await self._metadata.child_folders(session, row.id)
        ]
        entries.extend(
            SharedEntry(id=f.id, name=f.name, is_folder=False, extension=f.extension, size=f.size)
            for f in await self._metadata.child_files(session, row.id)
        )
        return SharedView(target=target, name=row.name, entries=entries)

    async def open_shared_file(self, session: AsyncSession, token: str) -> FileMetadata:
        """File row behind a file link, after the same checks as resolution."""
        link = await self._live_link(session, token)
        if link.target_type != TargetType.FILE:
            raise NotFoundError("Share link does not point at a file")
        file = await self._metadata.get_file(session, link.target_id)
        if file is None:
            raise GoneError("The shared file is no longer available")
        return file

    async def revoke_share_link(
        self, session: AsyncSession, requester_id: str, link_id: str
    ) -> None:
        link = await session.get(SharedLink, link_id)
        if link is None:
            raise NotFoundError(f"Share link not found: {link_id}")
        if link.creator_id != requester_id:
            raise ForbiddenError("Only the link's creator may revoke it")
        await session.delete(link)
        await session.flush()
        logger.info("Revoked share link %s", link_id)

    async def list_my_links(self, session: AsyncSession, user_id: str) -> list[LinkInfo]:
        """Links created by *user_id*, newest first."""
        result = await session.execute(
            select(SharedLink)
            .where(SharedLink.creator_id == user_id)
            .order_by(SharedLink.created_at.desc())  # type: ignore[union-attr]
        )
        infos: list[LinkInfo] = []
        for link in result.scalars().all():
            target = TargetRef(TargetType(link.target_type), link.target_id)
            row: Folder | FileMetadata | None = await self._metadata.get_target(
                session, target, include_deleted=True
            )
            infos.append(link_to_info(link, row.name if row is not None else None))
        return infos
