"""User model — account, role, and storage quota."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import Enum

from sqlalchemy import BigInteger, DateTime
from sqlmodel import Field, SQLModel

DEFAULT_STORAGE_LIMIT: int = 5 * 1024 * 1024 * 1024
"""5 GiB per user unless an admin changes it."""


class UserRole(str, Enum):
    """Account role. Admins may manage other accounts."""

    USER = "user"
    ADMIN = "admin"


class User(SQLModel, table=True):
    """A registered account.

    ``used_storage`` is only changed by the quota tracker, inside the same
    transaction as the upload or purge that caused the change.
    """

    __tablename__ = "canopy_users"

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    username: str = Field(index=True, unique=True)
    password_hash: str = Field(default="")
    role: UserRole = Field(default=UserRole.USER)
    is_active: bool = Field(default=False)
    storage_limit: int = Field(default=DEFAULT_STORAGE_LIMIT, sa_type=BigInteger)
    used_storage: int = Field(default=0, sa_type=BigInteger)
    root_folder_id: str | None = Field(default=None)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),
    )

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN
