"""End-to-end tests for the Canopy facade."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import pytest
from sqlalchemy.ext.asyncio import create_async_engine

from canopy import (
    AccessLevel,
    Canopy,
    CanopyConfig,
    ConflictError,
    ForbiddenError,
    GoneError,
    InvalidInputError,
    LinkExpiredError,
    NotFoundError,
    QuotaExceededError,
    TargetRef,
    UnauthorizedError,
    UserRole,
)
from canopy.fs.blobs import LocalDiskBlobStore
from canopy.models import Folder

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path

    from canopy import UserInfo


@pytest.fixture
async def canopy(tmp_path: Path) -> AsyncIterator[Canopy]:
    engine = create_async_engine("sqlite+aiosqlite://", echo=False)
    c = Canopy(engine, config=CanopyConfig(data_dir=tmp_path, bcrypt_rounds=4))
    await c.open()
    yield c
    await engine.dispose()


@pytest.fixture
async def admin(canopy: Canopy) -> UserInfo:
    return await canopy.register("admin", "admin-pass")


async def _member(canopy: Canopy, admin: UserInfo, name: str) -> UserInfo:
    pending = await canopy.register(name, f"{name}-pass")
    return await canopy.activate_user(admin.id, pending.id)


@pytest.fixture
async def alice(canopy: Canopy, admin: UserInfo) -> UserInfo:
    return await _member(canopy, admin, "alice")


@pytest.fixture
async def bob(canopy: Canopy, admin: UserInfo) -> UserInfo:
    return await _member(canopy, admin, "bob")


def _blob_count(canopy: Canopy) -> int:
    return sum(1 for p in canopy.config.blob_dir.iterdir() if p.is_file())


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------


class TestConstruction:
    async def test_default_blob_store_under_data_dir(self, canopy: Canopy, tmp_path: Path):
        assert isinstance(canopy.blob_store, LocalDiskBlobStore)
        assert canopy.config.blob_dir == tmp_path / "blobs"
        assert canopy.config.blob_dir.is_dir()

    async def test_blob_dir_created_on_open(self, tmp_path: Path):
        engine = create_async_engine("sqlite+aiosqlite://", echo=False)
        data_dir = tmp_path / "lazy"
        c = Canopy(engine, config=CanopyConfig(data_dir=data_dir, bcrypt_rounds=4))
        assert not data_dir.exists()
        await c.open()
        assert (data_dir / "blobs").is_dir()
        await engine.dispose()

    async def test_open_is_repeatable(self, canopy: Canopy):
        await canopy.open()

    def test_config_validation(self):
        with pytest.raises(ValueError):
            CanopyConfig(max_ancestor_depth=0)
        with pytest.raises(ValueError):
            CanopyConfig(default_storage_limit=-1)


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------


class TestAccounts:
    async def test_registration_flow(self, canopy: Canopy, admin: UserInfo):
        assert admin.role == UserRole.ADMIN
        pending = await canopy.register("dora", "dora-pass")
        assert not pending.is_active
        with pytest.raises(UnauthorizedError):
            await canopy.authenticate("dora", "dora-pass")
        with pytest.raises(UnauthorizedError):
            await canopy.create_folder(pending.id, "Early")

        await canopy.activate_user(admin.id, pending.id)
        me = await canopy.authenticate("dora", "dora-pass")
        assert me.is_active

    async def test_admin_only(self, canopy: Canopy, alice: UserInfo, bob: UserInfo):
        with pytest.raises(ForbiddenError):
            await canopy.list_users(alice.id)
        with pytest.raises(ForbiddenError):
            await canopy.lock_user(alice.id, bob.id)

    async def test_locked_user_is_shut_out(
        self, canopy: Canopy, admin: UserInfo, alice: UserInfo
    ):
        await canopy.lock_user(admin.id, alice.id)
        with pytest.raises(UnauthorizedError):
            await canopy.list_folder(alice.id)
        with pytest.raises(UnauthorizedError):
            await canopy.get_user(alice.id)

    async def test_reset_password(self, canopy: Canopy, admin: UserInfo, alice: UserInfo):
        await canopy.reset_password(admin.id, alice.id, "new-pass")
        assert (await canopy.authenticate("alice", "new-pass")).id == alice.id


# ---------------------------------------------------------------------------
# Upload / download / quota
# ---------------------------------------------------------------------------


class TestFiles:
    async def test_upload_and_download(self, canopy: Canopy, alice: UserInfo):
        info = await canopy.upload_file(alice.id, "hello.txt", b"hello world")
        assert info.size == 11
        assert info.extension == ".txt"
        assert info.folder_id == alice.root_folder_id

        meta, data = await canopy.download_file(alice.id, info.id)
        assert meta.id == info.id
        assert data == b"hello world"
        assert (await canopy.get_user(alice.id)).used_storage == 11

    async def test_empty_upload(self, canopy: Canopy, alice: UserInfo):
        with pytest.raises(InvalidInputError):
            await canopy.upload_file(alice.id, "empty.txt", b"")

    async def test_quota_scenario(self, canopy: Canopy, admin: UserInfo, alice: UserInfo):
        await canopy.set_storage_limit(admin.id, alice.id, 100)
        await canopy.upload_file(alice.id, "a.bin", b"x" * 60)
        assert (await canopy.get_user(alice.id)).used_storage == 60

        with pytest.raises(QuotaExceededError):
            await canopy.upload_file(alice.id, "b.bin", b"y" * 50)
        assert (await canopy.get_user(alice.id)).used_storage == 60
        assert _blob_count(canopy) == 1

    async def test_failed_record_removes_bytes(
        self, canopy: Canopy, alice: UserInfo, monkeypatch: pytest.MonkeyPatch
    ):
        async def boom(*args, **kwargs):
            raise ConflictError("simulated failure")

        monkeypatch.setattr(canopy.tree, "add_file", boom)
        with pytest.raises(ConflictError):
            await canopy.upload_file(alice.id, "a.bin", b"data")
        assert _blob_count(canopy) == 0
        assert (await canopy.get_user(alice.id)).used_storage == 0

    async def test_download_needs_read(self, canopy: Canopy, alice: UserInfo, bob: UserInfo):
        info = await canopy.upload_file(alice.id, "secret.txt", b"s")
        with pytest.raises(ForbiddenError):
            await canopy.download_file(bob.id, info.id)
        await canopy.grant_permission(alice.id, bob.id, TargetRef.file(info.id), "read")
        _, data = await canopy.download_file(bob.id, info.id)
        assert data == b"s"

    async def test_purge_removes_bytes_and_quota(self, canopy: Canopy, alice: UserInfo):
        docs = await canopy.create_folder(alice.id, "Docs")
        await canopy.upload_file(alice.id, "a.txt", b"aaaa", docs.id)
        await canopy.upload_file(alice.id, "b.txt", b"bb", docs.id)
        assert _blob_count(canopy) == 2

        await canopy.delete_folder(alice.id, docs.id)
        assert [f.name for f in (await canopy.list_trash(alice.id)).folders] == ["Docs"]

        result = await canopy.purge_folder(alice.id, docs.id)
        assert result.files_purged == 2
        assert result.bytes_reclaimed == 6
        assert _blob_count(canopy) == 0
        assert (await canopy.get_user(alice.id)).used_storage == 0

    async def test_recalculate_storage(
        self, canopy: Canopy, admin: UserInfo, alice: UserInfo
    ):
        await canopy.upload_file(alice.id, "a.txt", b"abc")
        assert await canopy.recalculate_storage(admin.id, alice.id) == 3
        with pytest.raises(NotFoundError):
            await canopy.recalculate_storage(admin.id, "ghost")


# ---------------------------------------------------------------------------
# Scenarios
# ---------------------------------------------------------------------------


class TestScenarios:
    async def test_inherited_read_then_edit(
        self, canopy: Canopy, alice: UserInfo, bob: UserInfo
    ):
        f1 = await canopy.create_folder(alice.id, "F1")
        child = await canopy.create_folder(alice.id, "child", f1.id)
        await canopy.grant_permission(alice.id, bob.id, TargetRef.folder(f1.id), AccessLevel.READ)
        assert await canopy.effective_access(bob.id, TargetRef.folder(child.id)) is AccessLevel.READ

        await canopy.grant_permission(alice.id, bob.id, TargetRef.folder(f1.id), AccessLevel.EDIT)
        assert await canopy.effective_access(bob.id, TargetRef.folder(child.id)) is AccessLevel.EDIT
        assert await canopy.has_permission(bob.id, TargetRef.folder(child.id), AccessLevel.EDIT)
        assert not await canopy.has_permission(
            bob.id, TargetRef.folder(child.id), AccessLevel.DELETE
        )

        shared = await canopy.list_shared_with_me(bob.id)
        assert [(s.name, s.access_level) for s in shared] == [("F1", AccessLevel.EDIT)]
        grants = await canopy.list_permissions(alice.id, TargetRef.folder(f1.id))
        await canopy.revoke_permission(alice.id, grants[0].id)
        assert await canopy.effective_access(bob.id, TargetRef.folder(child.id)) is None

    async def test_expired_link(self, canopy: Canopy, alice: UserInfo):
        info = await canopy.upload_file(alice.id, "x.txt", b"x")
        yesterday = datetime.now(UTC) - timedelta(days=1)
        link = await canopy.create_share_link(alice.id, TargetRef.file(info.id), yesterday)
        with pytest.raises(LinkExpiredError):
            await canopy.resolve_share_link(link.token)
        with pytest.raises(LinkExpiredError):
            await canopy.download_shared_file(link.token)

    async def test_move_into_own_descendant(self, canopy: Canopy, alice: UserInfo):
        f2 = await canopy.create_folder(alice.id, "F2")
        f3 = await canopy.create_folder(alice.id, "F3", f2.id)
        with pytest.raises(InvalidInputError):
            await canopy.move_folder(alice.id, f2.id, f3.id)

        root = await canopy.list_folder(alice.id)
        assert [f.id for f in root.folders] == [f2.id]
        inner = await canopy.list_folder(alice.id, f2.id)
        assert [f.id for f in inner.folders] == [f3.id]


# ---------------------------------------------------------------------------
# Share links
# ---------------------------------------------------------------------------


class TestLinks:
    async def test_anonymous_download(self, canopy: Canopy, alice: UserInfo):
        info = await canopy.upload_file(alice.id, "pic.png", b"\x89PNG")
        link = await canopy.create_share_link(alice.id, TargetRef.file(info.id))
        view = await canopy.resolve_share_link(link.token)
        assert view.name == "pic.png"
        meta, data = await canopy.download_shared_file(link.token)
        assert meta.id == info.id
        assert data == b"\x89PNG"

        assert [x.token for x in await canopy.list_my_links(alice.id)] == [link.token]
        await canopy.revoke_share_link(alice.id, link.id)
        with pytest.raises(NotFoundError):
            await canopy.resolve_share_link(link.token)

    async def test_link_to_purged_item_is_gone(self, canopy: Canopy, alice: UserInfo):
        docs = await canopy.create_folder(alice.id, "Docs")
        link = await canopy.create_share_link(alice.id, TargetRef.folder(docs.id))
        await canopy.purge_folder(alice.id, docs.id)
        with pytest.raises(GoneError):
            await canopy.resolve_share_link(link.token)


# ---------------------------------------------------------------------------
# Tree through the facade
# ---------------------------------------------------------------------------


class TestTree:
    async def test_rename_move_restore(self, canopy: Canopy, alice: UserInfo):
        a = await canopy.create_folder(alice.id, "A")
        b = await canopy.create_folder(alice.id, "B")
        info = await canopy.upload_file(alice.id, "note.txt", b"n", a.id)

        await canopy.rename_folder(alice.id, a.id, "Alpha")
        renamed = await canopy.rename_file(alice.id, info.id, "note.md")
        assert renamed.extension == ".md"
        moved = await canopy.move_file(alice.id, info.id, b.id)
        assert moved.folder_id == b.id
        await canopy.move_folder(alice.id, b.id, a.id)

        deleted = await canopy.delete_folder(alice.id, a.id)
        assert deleted.folders_deleted == 2
        assert deleted.files_deleted == 1
        restored = await canopy.restore_folder(alice.id, a.id)
        assert restored.folders_restored == 2
        assert restored.files_restored == 1

        await canopy.delete_file(alice.id, info.id)
        await canopy.restore_file(alice.id, info.id)
        hits = await canopy.search(alice.id, "note")
        assert [h.name for h in hits] == ["note.md"]

        result = await canopy.purge_file(alice.id, info.id)
        assert result.files_purged == 1
        assert _blob_count(canopy) == 0


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------


class TestTransactions:
    async def test_failed_operation_rolls_back(self, canopy: Canopy, alice: UserInfo):
        with pytest.raises(RuntimeError):
            async with canopy._session() as session:
                await canopy.tree.create_folder(session, alice.id, "Half")
                raise RuntimeError("abort")

        listing = await canopy.list_folder(alice.id)
        assert listing.folders == []

    async def test_delete_cascade_is_all_or_nothing(
        self, canopy: Canopy, alice: UserInfo, monkeypatch: pytest.MonkeyPatch
    ):
        top = await canopy.create_folder(alice.id, "top")
        await canopy.create_folder(alice.id, "a", top.id)
        await canopy.create_folder(alice.id, "b", top.id)

        original = canopy.metadata.child_files
        calls = 0

        async def flaky(session, folder_id, include_deleted=False):
            nonlocal calls
            calls += 1
            if calls == 3:
                raise ConflictError("simulated failure mid-cascade")
            return await original(session, folder_id, include_deleted)

        monkeypatch.setattr(canopy.metadata, "child_files", flaky)
        with pytest.raises(ConflictError):
            await canopy.delete_folder(alice.id, top.id)
        monkeypatch.undo()

        async with canopy._session() as session:
            folders = [await session.get(Folder, top.id)]
            folders += await canopy.metadata.child_folders(session, top.id, include_deleted=True)
        assert len(folders) == 3
        assert all(f is not None and f.deleted_at is None for f in folders)
