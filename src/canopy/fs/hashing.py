"""PasswordHasher protocol and the bcrypt-backed default."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

import bcrypt

DEFAULT_BCRYPT_ROUNDS = 12
MAX_PASSWORD_BYTES = 72
"""bcrypt only looks at the first 72 bytes; longer passwords are rejected."""


@runtime_checkable
class PasswordHasher(Protocol):
    """Credential hashing collaborator."""

    def hash(self, password: str) -> str: ...

    def verify(self, password: str, password_hash: str) -> bool: ...


class BcryptHasher:
    """Salted bcrypt hashes, stored as their ``$2b$...`` text form."""

    def __init__(self, rounds: int = DEFAULT_BCRYPT_ROUNDS) -> None:
        if not 4 <= rounds <= 31:
            raise ValueError(f"bcrypt rounds must be between 4 and 31, got {rounds}")
        self.rounds = rounds

    def hash(self, password: str) -> str:
        return bcrypt.hashpw(password.encode(), bcrypt.gensalt(rounds=self.rounds)).decode()

    def verify(self, password: str, password_hash: str) -> bool:
        if not password_hash:
            return False
        try:
            return bcrypt.checkpw(password.encode(), password_hash.encode())
        except ValueError:
            return False
