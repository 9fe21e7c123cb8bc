"""SharedLink model — anonymous read-only links to one file or folder."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel

from canopy.models.permissions import TargetType


class SharedLink(SQLModel, table=True):
    """A public link.  Expiry is checked when the token is resolved."""

    __tablename__ = "canopy_shared_links"

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    token: str = Field(index=True, unique=True)
    target_type: TargetType = Field(default=TargetType.FILE)
    target_id: str = Field(index=True)
    creator_id: str = Field(index=True)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),
    )
    expires_at: datetime | None = Field(
        default=None,
        sa_type=DateTime(timezone=True),
    )
