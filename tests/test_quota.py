"""Tests for QuotaTracker — check, reserve, release, recalculate."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from canopy.fs.exceptions import InvalidInputError, NotFoundError, QuotaExceededError
from canopy.fs.types import TargetRef
from canopy.models import User

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from canopy.fs.quota import QuotaTracker
    from canopy.fs.sharing import SharingManager
    from canopy.fs.tree import TreeMutator
    from canopy.fs.users import UserDirectory

    from .conftest import People


async def _used(session: AsyncSession, user_id: str) -> int:
    user = await session.get(User, user_id, populate_existing=True)
    assert user is not None
    return user.used_storage


class TestReserve:
    async def test_reserve_within_limit(
        self,
        quota: QuotaTracker,
        directory: UserDirectory,
        async_session: AsyncSession,
        people: People,
    ):
        await directory.set_storage_limit(async_session, people.alice.id, 100)
        assert await quota.reserve(async_session, people.alice.id, 60) == 60
        assert await quota.reserve(async_session, people.alice.id, 40) == 100

    async def test_reserve_over_limit_leaves_usage(
        self,
        quota: QuotaTracker,
        directory: UserDirectory,
        async_session: AsyncSession,
        people: People,
    ):
        await directory.set_storage_limit(async_session, people.alice.id, 100)
        await quota.reserve(async_session, people.alice.id, 60)
        with pytest.raises(QuotaExceededError):
            await quota.reserve(async_session, people.alice.id, 50)
        assert await _used(async_session, people.alice.id) == 60

    async def test_negative_size(
        self, quota: QuotaTracker, async_session: AsyncSession, people: People
    ):
        with pytest.raises(InvalidInputError):
            await quota.reserve(async_session, people.alice.id, -1)
        with pytest.raises(InvalidInputError):
            await quota.check(async_session, people.alice.id, -1)

    async def test_unknown_user(self, quota: QuotaTracker, async_session: AsyncSession):
        with pytest.raises(NotFoundError):
            await quota.reserve(async_session, "ghost", 1)

    async def test_check_does_not_charge(
        self,
        quota: QuotaTracker,
        directory: UserDirectory,
        async_session: AsyncSession,
        people: People,
    ):
        await directory.set_storage_limit(async_session, people.alice.id, 10)
        await quota.check(async_session, people.alice.id, 10)
        assert await _used(async_session, people.alice.id) == 0
        with pytest.raises(QuotaExceededError):
            await quota.check(async_session, people.alice.id, 11)


class TestReleaseAndRecalculate:
    async def test_release_floors_at_zero(
        self, quota: QuotaTracker, async_session: AsyncSession, people: People
    ):
        await quota.reserve(async_session, people.alice.id, 5)
        assert await quota.release(async_session, people.alice.id, 3) == 2
        assert await quota.release(async_session, people.alice.id, 10) == 0

    async def test_recalculate_counts_all_owned_rows(
        self,
        quota: QuotaTracker,
        tree: TreeMutator,
        async_session: AsyncSession,
        people: People,
    ):
        await tree.add_file(async_session, people.alice.id, None, "a", 10, "h1")
        trashed = await tree.add_file(async_session, people.alice.id, None, "b", 5, "h2")
        await tree.delete_file(async_session, people.alice.id, trashed.id)

        user = await async_session.get(User, people.alice.id)
        assert user is not None
        user.used_storage = 999
        async_session.add(user)
        await async_session.flush()

        # Trashed files still occupy space until purged.
        assert await quota.recalculate(async_session, people.alice.id) == 15
        assert await quota.recalculate(async_session, people.bob.id) == 0


class TestUploadScenario:
    async def test_sixty_then_fifty(
        self,
        tree: TreeMutator,
        directory: UserDirectory,
        async_session: AsyncSession,
        people: People,
    ):
        await directory.set_storage_limit(async_session, people.alice.id, 100)
        await tree.add_file(async_session, people.alice.id, None, "big.bin", 60, "h1")
        assert await _used(async_session, people.alice.id) == 60

        with pytest.raises(QuotaExceededError):
            await tree.add_file(async_session, people.alice.id, None, "more.bin", 50, "h2")
        assert await _used(async_session, people.alice.id) == 60

    async def test_uploader_is_charged(
        self,
        tree: TreeMutator,
        sharing: SharingManager,
        async_session: AsyncSession,
        people: People,
    ):
        docs = await tree.create_folder(async_session, people.alice.id, "Docs")
        await sharing.grant_permission(
            async_session, people.alice.id, people.bob.id, TargetRef.folder(docs.id), "edit"
        )
        f = await tree.add_file(async_session, people.bob.id, docs.id, "bob.txt", 7, "h")
        assert f.owner_id == people.bob.id
        assert await _used(async_session, people.bob.id) == 7
        assert await _used(async_session, people.alice.id) == 0
