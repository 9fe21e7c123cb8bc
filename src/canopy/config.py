"""CanopyConfig — tunables for a Canopy instance."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from canopy.fs.access import MAX_ANCESTOR_DEPTH
from canopy.fs.hashing import DEFAULT_BCRYPT_ROUNDS
from canopy.fs.sharing import SHARE_TOKEN_ATTEMPTS, SHARE_TOKEN_BYTES
from canopy.fs.users import MIN_PASSWORD_LENGTH
from canopy.models.users import DEFAULT_STORAGE_LIMIT

DEFAULT_DATA_DIR = Path.home() / ".canopy"


@dataclass
class CanopyConfig:
    """Configuration for a ``Canopy`` facade."""

    data_dir: Path | str = DEFAULT_DATA_DIR
    """Base directory; blobs live in ``<data_dir>/blobs`` unless a store is passed."""

    default_storage_limit: int = DEFAULT_STORAGE_LIMIT
    """Quota given to newly registered users, in bytes."""

    max_ancestor_depth: int = MAX_ANCESTOR_DEPTH
    """How many folders the access resolver walks up before giving up."""

    share_token_bytes: int = SHARE_TOKEN_BYTES
    """Random bytes per share token (9 bytes -> 12 URL-safe characters)."""

    share_token_attempts: int = SHARE_TOKEN_ATTEMPTS
    """Regeneration attempts on token collision before failing."""

    min_password_length: int = MIN_PASSWORD_LENGTH

    bcrypt_rounds: int = DEFAULT_BCRYPT_ROUNDS

    def __post_init__(self) -> None:
        self.data_dir = Path(self.data_dir)
        if self.default_storage_limit < 0:
            raise ValueError("default_storage_limit cannot be negative")
        if self.max_ancestor_depth < 1:
            raise ValueError("max_ancestor_depth must be at least 1")
        if self.share_token_bytes < 6:
            raise ValueError("share_token_bytes must be at least 6")
        if self.share_token_attempts < 1:
            raise ValueError("share_token_attempts must be at least 1")

    @property
    def blob_dir(self) -> Path:
        return Path(self.data_dir) / "blobs"
