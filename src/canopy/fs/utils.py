"""Name validation, timestamp and token helpers."""

from __future__ import annotations

import secrets
from datetime import UTC, datetime
from pathlib import PurePosixPath

from .exceptions import InvalidInputError

MAX_NAME_LENGTH = 255


def clean_name(name: str | None, what: str = "Name") -> str:
    """Trim *name* and reject empty, oversized, or NUL-containing values."""
    cleaned = (name or "").strip()
    if not cleaned:
        raise InvalidInputError(f"{what} cannot be empty")
    if len(cleaned) > MAX_NAME_LENGTH:
        raise InvalidInputError(f"{what} too long ({len(cleaned)} > {MAX_NAME_LENGTH})")
    if "\0" in cleaned:
        raise InvalidInputError(f"{what} contains null bytes")
    return cleaned


def split_extension(filename: str) -> str:
    """Return the extension of *filename* including the dot, or ``""``."""
    return PurePosixPath(filename.replace("\\", "/")).suffix


def utcnow() -> datetime:
    return datetime.now(UTC)


def ensure_aware(value: datetime | None) -> datetime | None:
    """Treat naive datetimes (as returned by SQLite) as UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


def generate_token(nbytes: int) -> str:
    """URL-safe random token; 9 bytes yields 12 characters."""
    return secrets.token_urlsafe(nbytes)
