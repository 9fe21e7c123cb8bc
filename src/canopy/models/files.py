"""FileMetadata model — everything about a stored file except its bytes."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import BigInteger, DateTime
from sqlmodel import Field, SQLModel


class FileMetadata(SQLModel, table=True):
    """A file row.

    ``physical_path`` is an opaque handle issued by the blob store; it is
    never interpreted here.
    """

    __tablename__ = "canopy_files"

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    name: str = Field(default="")
    extension: str = Field(default="")
    size: int = Field(default=0, sa_type=BigInteger)
    physical_path: str = Field(default="")
    folder_id: str = Field(index=True)
    owner_id: str = Field(index=True)
    upload_date: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),
    )
    deleted_at: datetime | None = Field(
        default=None,
        sa_type=DateTime(timezone=True),
    )

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None
