"""UserDirectory — registration, credential checks, and admin account edits."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlmodel import select

from canopy.models.folders import Folder
from canopy.models.users import DEFAULT_STORAGE_LIMIT, User, UserRole

from .exceptions import (
    ConflictError,
    ForbiddenError,
    InvalidInputError,
    NotFoundError,
    UnauthorizedError,
)
from .hashing import MAX_PASSWORD_BYTES
from .types import UserInfo, user_to_info
from .utils import clean_name

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from .hashing import PasswordHasher

logger = logging.getLogger(__name__)

ROOT_FOLDER_NAME = "Root"
MIN_PASSWORD_LENGTH = 4


class UserDirectory:
    """Accounts and their lifecycle.

    The first account ever registered becomes an active admin; every
    later account starts inactive until an admin activates it.  Each
    registration also creates the user's root folder.
    """

    def __init__(
        self,
        hasher: PasswordHasher,
        *,
        default_storage_limit: int = DEFAULT_STORAGE_LIMIT,
        min_password_length: int = MIN_PASSWORD_LENGTH,
    ) -> None:
        self._hasher = hasher
        self.default_storage_limit = default_storage_limit
        self.min_password_length = min_password_length

    def _check_password(self, password: str) -> None:
        if not password or len(password) < self.min_password_length:
            raise InvalidInputError(
                f"Password must be at least {self.min_password_length} characters"
            )
        if len(password.encode()) > MAX_PASSWORD_BYTES:
            raise InvalidInputError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes")

    async def _hash(self, password: str) -> str:
        return await asyncio.to_thread(self._hasher.hash, password)

    # ------------------------------------------------------------------
    # Registration / authentication
    # ------------------------------------------------------------------

    async def register(self, session: AsyncSession, username: str, password: str) -> UserInfo:
        username = clean_name(username, "Username")
        self._check_password(password)

        existing = await session.execute(select(User.id).where(User.username == username))
        if existing.first() is not None:
            raise ConflictError(f"Username already exists: {username}")

        count = await session.execute(select(func.count()).select_from(User))
        first = count.scalar_one() == 0

        user = User(
            username=username,
            password_hash=await self._hash(password),
            role=UserRole.ADMIN if first else UserRole.USER,
            is_active=first,
            storage_limit=self.default_storage_limit,
        )
        session.add(user)
        try:
            await session.flush()
        except IntegrityError:
            raise ConflictError(f"Username already exists: {username}") from None

        root = Folder(name=ROOT_FOLDER_NAME, owner_id=user.id, parent_id=None)
        session.add(root)
        await session.flush()
        user.root_folder_id = root.id
        session.add(user)
        await session.flush()

        logger.info(
            "Registered %s as %s (%s)",
            username,
            user.role.value,
            "active" if user.is_active else "pending activation",
        )
        return user_to_info(user)

    async def authenticate(self, session: AsyncSession, username: str, password: str) -> UserInfo:
        """Check credentials; raises ``UnauthorizedError`` on any failure."""
        result = await session.execute(select(User).where(User.username == (username or "").strip()))
        user = result.scalar_one_or_none()
        if user is None:
            raise UnauthorizedError("Invalid credentials")
        valid = await asyncio.to_thread(self._hasher.verify, password or "", user.password_hash)
        if not valid:
            raise UnauthorizedError("Invalid credentials")
        if not user.is_active:
            raise UnauthorizedError("Account is not active")
        return user_to_info(user)

    async def require_active(self, session: AsyncSession, user_id: str) -> User:
        """The acting user, if it exists and may still use the service."""
        user = await session.get(User, user_id)
        if user is None:
            raise UnauthorizedError(f"Unknown user: {user_id}")
        if not user.is_active:
            raise UnauthorizedError("Account is not active")
        return user

    async def require_admin(self, session: AsyncSession, user_id: str) -> User:
        user = await self.require_active(session, user_id)
        if not user.is_admin:
            raise ForbiddenError("Administrator role required")
        return user

    async def get_user(self, session: AsyncSession, user_id: str) -> UserInfo:
        user = await session.get(User, user_id)
        if user is None:
            raise NotFoundError(f"User not found: {user_id}")
        return user_to_info(user)

    # ------------------------------------------------------------------
    # Admin operations (callers check the admin role first)
    # ------------------------------------------------------------------

    async def _load(self, session: AsyncSession, user_id: str) -> User:
        user = await session.get(User, user_id)
        if user is None:
            raise NotFoundError(f"User not found: {user_id}")
        return user

    async def list_users(self, session: AsyncSession) -> list[UserInfo]:
        result = await session.execute(select(User).order_by(User.username))
        return [user_to_info(u) for u in result.scalars().all()]

    async def activate_user(self, session: AsyncSession, user_id: str) -> UserInfo:
        user = await self._load(session, user_id)
        user.is_active = True
        session.add(user)
        await session.flush()
        logger.info("Activated %s", user.username)
        return user_to_info(user)

    async def lock_user(self, session: AsyncSession, user_id: str) -> UserInfo:
        user = await self._load(session, user_id)
        if user.is_admin:
            raise InvalidInputError("Cannot lock an administrator account")
        user.is_active = False
        session.add(user)
        await session.flush()
        logger.info("Locked %s", user.username)
        return user_to_info(user)

    async def reset_password(self, session: AsyncSession, user_id: str, new_password: str) -> None:
        self._check_password(new_password)
        user = await self._load(session, user_id)
        user.password_hash = await self._hash(new_password)
        session.add(user)
        await session.flush()
        logger.info("Reset password for %s", user.username)

    async def set_storage_limit(self, session: AsyncSession, user_id: str, limit: int) -> UserInfo:
        if limit < 0:
            raise InvalidInputError("Storage limit cannot be negative")
        user = await self._load(session, user_id)
        user.storage_limit = limit
        session.add(user)
        await session.flush()
        logger.info("Storage limit for %s set to %d bytes", user.username, limit)
        return user_to_info(user)
