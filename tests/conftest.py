"""Shared fixtures for Canopy tests."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel

import canopy.models  # noqa: F401  (registers tables)
from canopy.fs.access import AccessResolver
from canopy.fs.hashing import BcryptHasher
from canopy.fs.metadata import MetadataService
from canopy.fs.quota import QuotaTracker
from canopy.fs.sharing import SharingManager
from canopy.fs.tree import TreeMutator
from canopy.fs.users import UserDirectory

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from sqlalchemy.ext.asyncio import AsyncEngine

    from canopy.fs.types import UserInfo


@pytest.fixture
async def async_engine() -> AsyncIterator[AsyncEngine]:
    """Async in-memory SQLite engine with all tables created."""
    eng = create_async_engine("sqlite+aiosqlite://", echo=False)
    async with eng.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
async def async_session(async_engine: AsyncEngine) -> AsyncIterator[AsyncSession]:
    """Async SQLModel session, rolled back after each test."""
    factory = async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    async with factory() as session:
        yield session


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------


@pytest.fixture
def metadata() -> MetadataService:
    return MetadataService()


@pytest.fixture
def access(metadata: MetadataService) -> AccessResolver:
    return AccessResolver(metadata)


@pytest.fixture
def quota() -> QuotaTracker:
    return QuotaTracker()


@pytest.fixture
def tree(access: AccessResolver, quota: QuotaTracker, metadata: MetadataService) -> TreeMutator:
    return TreeMutator(access, quota, metadata)


@pytest.fixture
def sharing(access: AccessResolver, metadata: MetadataService) -> SharingManager:
    return SharingManager(access, metadata)


@pytest.fixture
def directory() -> UserDirectory:
    # Minimum bcrypt cost keeps the suite fast.
    return UserDirectory(BcryptHasher(rounds=4))


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------


@dataclass
class People:
    admin: UserInfo
    alice: UserInfo
    bob: UserInfo
    carol: UserInfo


@pytest.fixture
async def people(directory: UserDirectory, async_session: AsyncSession) -> People:
    """An admin (first registration) plus three activated regular users."""
    admin = await directory.register(async_session, "admin", "admin-pass")
    users = {}
    for name in ("alice", "bob", "carol"):
        info = await directory.register(async_session, name, f"{name}-pass")
        users[name] = await directory.activate_user(async_session, info.id)
    return People(admin=admin, **users)
