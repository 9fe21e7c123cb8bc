"""AccessResolver — effective access from ownership, grants, and ancestors.

Resolution order for a (user, target) pair:

1. Owning the target gives ``DELETE``.
2. A direct grant on the target is the first candidate.
3. Walking up the parent chain (from the file's folder, or from the
   folder's parent), any higher folder grant replaces the candidate.
   The walk stops at ``DELETE``, at the top of the tree, at a revisited
   folder, or after ``max_depth`` folders.
4. With nothing found, an active admin still gets ``READ``.

Lookup failures are logged and resolve to ``None``; the resolver never
raises out of ``effective_access``.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import select

from canopy.models.permissions import AccessLevel, Permission, TargetType
from canopy.models.users import User

from .exceptions import ForbiddenError
from .metadata import MetadataService

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from .types import TargetRef

logger = logging.getLogger(__name__)

MAX_ANCESTOR_DEPTH = 50


class AccessResolver:
    """Computes effective access levels.  Stateless; sessions are per call."""

    def __init__(
        self,
        metadata: MetadataService | None = None,
        *,
        max_depth: int = MAX_ANCESTOR_DEPTH,
    ) -> None:
        self._metadata = metadata or MetadataService()
        self.max_depth = max_depth

    async def effective_access(
        self,
        session: AsyncSession,
        user_id: str,
        target: TargetRef,
    ) -> AccessLevel | None:
        """Highest level *user_id* holds on *target*, or ``None``."""
        try:
            return await self._resolve(session, user_id, target)
        except SQLAlchemyError:
            logger.warning(
                "Access lookup failed for user %s on %s; denying",
                user_id,
                target,
                exc_info=True,
            )
            return None

    async def has_permission(
        self,
        session: AsyncSession,
        user_id: str,
        target: TargetRef,
        min_level: AccessLevel,
    ) -> bool:
        level = await self.effective_access(session, user_id, target)
        return level is not None and level >= min_level

    async def require(
        self,
        session: AsyncSession,
        user_id: str,
        target: TargetRef,
        min_level: AccessLevel,
    ) -> AccessLevel:
        """Return the effective level, raising ``ForbiddenError`` below *min_level*."""
        level = await self.effective_access(session, user_id, target)
        if level is None or level < min_level:
            raise ForbiddenError(
                f"Access denied: {min_level.name.lower()} access required on {target}"
            )
        return level

    # ------------------------------------------------------------------
    # Resolution steps
    # ------------------------------------------------------------------

    async def _resolve(
        self,
        session: AsyncSession,
        user_id: str,
        target: TargetRef,
    ) -> AccessLevel | None:
        row = await self._metadata.get_target(session, target, include_deleted=True)
        if row is None:
            return None
        if row.owner_id == user_id:
            return AccessLevel.DELETE

        grants = await self._grants_for(session, user_id, target)
        candidate = grants.pop((target.type, target.id), None)

        if candidate is not AccessLevel.DELETE:
            start = row.folder_id if target.is_file else row.parent_id  # type: ignore[union-attr]
            candidate = await self._walk_ancestors(session, start, grants, candidate)

        if candidate is None and await self._is_active_admin(session, user_id):
            logger.debug("Admin %s granted read visibility on %s", user_id, target)
            return AccessLevel.READ
        return candidate

    async def _grants_for(
        self,
        session: AsyncSession,
        user_id: str,
        target: TargetRef,
    ) -> dict[tuple[TargetType, str], AccessLevel]:
        """All folder grants for *user_id*, plus the grant on *target* itself."""
        result = await session.execute(
            select(Permission).where(
                Permission.user_id == user_id,
                or_(
                    Permission.target_type == TargetType.FOLDER,
                    Permission.target_id == target.id,
                ),
            )
        )
        grants: dict[tuple[TargetType, str], AccessLevel] = {}
        for perm in result.scalars().all():
            key = (TargetType(perm.target_type), perm.target_id)
            grants[key] = AccessLevel(perm.access_level)
        return grants

    async def _walk_ancestors(
        self,
        session: AsyncSession,
        start: str | None,
        folder_grants: dict[tuple[TargetType, str], AccessLevel],
        candidate: AccessLevel | None,
    ) -> AccessLevel | None:
        visited: set[str] = set()
        current = start
        while current is not None:
            if len(visited) >= self.max_depth:
                logger.warning("Ancestor walk hit depth cap %d at folder %s", self.max_depth, current)
                break
            if current in visited:
                logger.warning("Cycle in folder ancestry at %s", current)
                break
            visited.add(current)

            level = folder_grants.get((TargetType.FOLDER, current))
            if level is not None and (candidate is None or level > candidate):
                candidate = level
            if candidate is AccessLevel.DELETE:
                break
            current = await self._metadata.parent_id(session, current)
        return candidate

    async def _is_active_admin(self, session: AsyncSession, user_id: str) -> bool:
        user = await session.get(User, user_id)
        return user is not None and user.is_active and user.is_admin
