"""BlobStore protocol and LocalDiskBlobStore — raw bytes for file contents."""

from __future__ import annotations

import asyncio
import logging
import uuid
from pathlib import Path, PurePosixPath
from typing import Protocol, runtime_checkable

from .exceptions import StorageError

logger = logging.getLogger(__name__)


@runtime_checkable
class BlobStore(Protocol):
    """Byte storage collaborator.  Handles are opaque to the rest of Canopy."""

    async def save(self, data: bytes, suggested_name: str) -> str: ...

    async def read(self, handle: str) -> bytes: ...

    async def delete(self, handle: str) -> bool: ...


class LocalDiskBlobStore:
    """Stores each blob as ``<uuid>_<basename>`` in one directory.

    Security: ``_resolve()`` rejects handles that would land outside
    ``root``, so a tampered handle cannot reach other host files.
    """

    def __init__(self, root: Path | str, *, create: bool = True) -> None:
        self.root = Path(root).resolve()
        if not self.root.exists():
            if not create:
                raise FileNotFoundError(f"Blob directory does not exist: {self.root}")
            self.root.mkdir(parents=True, exist_ok=True)
        if not self.root.is_dir():
            raise NotADirectoryError(f"Blob path is not a directory: {self.root}")

    def _resolve(self, handle: str) -> Path:
        if not handle or "\0" in handle:
            raise StorageError(f"Invalid blob handle: {handle!r}")
        candidate = (self.root / handle).resolve()
        try:
            candidate.relative_to(self.root)
        except ValueError:
            raise StorageError(f"Blob handle escapes storage root: {handle!r}") from None
        return candidate

    async def save(self, data: bytes, suggested_name: str) -> str:
        base = PurePosixPath(suggested_name.replace("\\", "/")).name or "blob"
        handle = f"{uuid.uuid4().hex}_{base}"
        path = self._resolve(handle)
        try:
            await asyncio.to_thread(path.write_bytes, data)
        except OSError as e:
            raise StorageError(f"Cannot write blob {handle}: {e}") from e
        logger.debug("Saved blob %s (%d bytes)", handle, len(data))
        return handle

    async def read(self, handle: str) -> bytes:
        path = self._resolve(handle)
        if not path.is_file():
            raise StorageError(f"Blob not found: {handle}")
        try:
            return await asyncio.to_thread(path.read_bytes)
        except OSError as e:
            raise StorageError(f"Cannot read blob {handle}: {e}") from e

    async def delete(self, handle: str) -> bool:
        """Delete a blob.  Returns ``False`` when it was already gone."""
        path = self._resolve(handle)
        if not path.is_file():
            return False
        try:
            await asyncio.to_thread(path.unlink, True)
        except OSError as e:
            raise StorageError(f"Cannot delete blob {handle}: {e}") from e
        return True
