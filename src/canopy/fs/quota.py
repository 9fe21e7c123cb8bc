"""QuotaTracker — per-user storage counters."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy import func
from sqlmodel import select

from canopy.models.files import FileMetadata
from canopy.models.users import User

from .exceptions import InvalidInputError, NotFoundError, QuotaExceededError

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


class QuotaTracker:
    """Reads and adjusts ``User.used_storage``.

    Every change happens in the caller's session, so the counter commits
    or rolls back together with the upload or purge that caused it.
    """

    async def _lock_user(self, session: AsyncSession, user_id: str) -> User:
        user = await session.get(User, user_id, with_for_update=True, populate_existing=True)
        if user is None:
            raise NotFoundError(f"User not found: {user_id}")
        return user

    async def check(self, session: AsyncSession, user_id: str, size: int) -> None:
        """Raise ``QuotaExceededError`` if *size* more bytes would not fit."""
        if size < 0:
            raise InvalidInputError(f"Size cannot be negative: {size}")
        user = await session.get(User, user_id)
        if user is None:
            raise NotFoundError(f"User not found: {user_id}")
        self._ensure_fits(user, size)

    async def reserve(self, session: AsyncSession, user_id: str, size: int) -> int:
        """Add *size* to the user's usage and return the new total."""
        if size < 0:
            raise InvalidInputError(f"Size cannot be negative: {size}")
        user = await self._lock_user(session, user_id)
        self._ensure_fits(user, size)
        user.used_storage += size
        session.add(user)
        await session.flush()
        logger.debug("Reserved %d bytes for %s (used %d)", size, user_id, user.used_storage)
        return user.used_storage

    async def release(self, session: AsyncSession, user_id: str, size: int) -> int:
        """Subtract *size* from the user's usage, never going below zero."""
        user = await self._lock_user(session, user_id)
        user.used_storage = max(0, user.used_storage - max(0, size))
        session.add(user)
        await session.flush()
        return user.used_storage

    async def recalculate(self, session: AsyncSession, user_id: str) -> int:
        """Reset usage to the total size of every file row the user owns."""
        user = await self._lock_user(session, user_id)
        result = await session.execute(
            select(func.coalesce(func.sum(FileMetadata.size), 0)).where(
                FileMetadata.owner_id == user_id
            )
        )
        total = int(result.scalar_one())
        if total != user.used_storage:
            logger.info(
                "Reconciled storage for %s: %d -> %d", user_id, user.used_storage, total
            )
        user.used_storage = total
        session.add(user)
        await session.flush()
        return total

    @staticmethod
    def _ensure_fits(user: User, size: int) -> None:
        if user.used_storage + size > user.storage_limit:
            raise QuotaExceededError(
                f"Storage quota exceeded: {user.used_storage} + {size} > {user.storage_limit} bytes"
            )
