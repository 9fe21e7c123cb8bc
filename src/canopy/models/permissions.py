"""Permission model, access levels, and target kinds."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import Enum, IntEnum

from sqlalchemy import DateTime, UniqueConstraint
from sqlmodel import Field, SQLModel


class AccessLevel(IntEnum):
    """Ordered access levels: ``READ < EDIT < DELETE``."""

    READ = 1
    EDIT = 2
    DELETE = 3


class TargetType(str, Enum):
    """Kind of item a grant or share link points at."""

    FILE = "file"
    FOLDER = "folder"


class Permission(SQLModel, table=True):
    """A direct grant of *access_level* on one file or folder to one user.

    Folder grants cover the whole subtree when access is resolved, but
    are never copied onto descendants.
    """

    __tablename__ = "canopy_permissions"
    __table_args__ = (
        UniqueConstraint("user_id", "target_type", "target_id", name="uq_permission_target"),
    )

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    user_id: str = Field(index=True)
    target_type: TargetType = Field(default=TargetType.FOLDER)
    target_id: str = Field(index=True)
    access_level: AccessLevel = Field(default=AccessLevel.READ)
    granted_by: str = Field(default="")
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),
    )
