"""Custom exception hierarchy for the Canopy storage layer."""


class CanopyError(Exception):
    """Base exception for all Canopy errors."""


class NotFoundError(CanopyError):
    """Raised when an id does not resolve, or resolves to a deleted item."""


class ForbiddenError(CanopyError, PermissionError):
    """Raised when the acting user's access level is insufficient."""


class InvalidInputError(CanopyError, ValueError):
    """Raised on empty names, negative quotas, self-referential moves, etc."""


class QuotaExceededError(CanopyError):
    """Raised when an upload would push a user past their storage limit."""


class ConflictError(CanopyError):
    """Raised when a write collides with existing state (duplicate username, ...)."""


class LinkExpiredError(CanopyError):
    """Raised when a share link is resolved after its expiration date."""


class GoneError(CanopyError):
    """Raised when a share link points at an item that is deleted or purged."""


class UnauthorizedError(CanopyError):
    """Raised on bad credentials, unknown acting users, or inactive accounts."""


class StorageError(CanopyError):
    """Raised on blob storage failures (missing bytes, disk I/O, bad handles)."""
