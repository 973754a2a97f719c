"""Tests for the drive: add/get/stat/list/remove, snapshots and access."""

import asyncio
import io
import os
import subprocess
import sys
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from drive.access import LocalAccessController
from drive.drive import Drive
from drive.errors import (AccessControlError, ContentStoreError, CorruptRecord, InvalidArgument,
                          MetadataIndexError, NotFound)
from drive.opener import open_drive
from drive.options import OpenDriveOptions
from drive.record import parse_timestamp


class TestAddAndGet:
    """Round trips through the content store and the index."""

    @pytest.mark.anyio
    async def test_add_then_get_returns_same_bytes(self, drive):
        payload = bytes(range(256)) * 10
        f = await drive.add("blob", io.BytesIO(payload))
        assert f.size == len(payload)
        assert f.owner == "alice"
        assert (await drive.get("blob")).read() == payload

    @pytest.mark.anyio
    async def test_add_file(self, drive, tmp_path):
        source = tmp_path / "notes.txt"
        source.write_bytes(b"some notes")
        f = await drive.add_file("notes", str(source))

        assert await drive.stat("notes") == f
        assert f.size == 10
        assert parse_timestamp(f.timestamp) is not None
        assert (await drive.get("notes")).read() == b"some notes"

    @pytest.mark.anyio
    async def test_add_file_missing_source(self, drive, tmp_path):
        with pytest.raises(FileNotFoundError):
            await drive.add_file("k", str(tmp_path / "absent"))

    @pytest.mark.anyio
    async def test_second_add_replaces_record(self, drive, store):
        first = await drive.add("k", io.BytesIO(b"one"))
        second = await drive.add("k", io.BytesIO(b"two"))
        assert (await drive.stat("k")).cid == second.cid
        # The superseded content stays pinned until collected out of band
        assert await store.is_pinned(first.cid)

    @pytest.mark.anyio
    async def test_missing_key(self, drive):
        with pytest.raises(NotFound):
            await drive.get("nope")
        with pytest.raises(NotFound):
            await drive.stat("nope")


class TestEmptyKeys:
    """Empty keys are rejected before anything is stored."""

    @pytest.mark.anyio
    async def test_empty_key_rejected_without_side_effects(self, drive, store, tmp_path):
        source = tmp_path / "f"
        source.write_bytes(b"x")
        pins = set(store.pins)

        with pytest.raises(InvalidArgument):
            await drive.add("", io.BytesIO(b"x"))
        with pytest.raises(InvalidArgument):
            await drive.add_file("", str(source))
        with pytest.raises(InvalidArgument):
            await drive.add_file("k", "")
        with pytest.raises(InvalidArgument):
            await drive.get("")
        with pytest.raises(InvalidArgument):
            await drive.stat("")
        with pytest.raises(InvalidArgument):
            await drive.add("k", None)

        assert store.pins == pins
        assert await drive.index.all() == {}


class TestRemove:

    @pytest.mark.anyio
    async def test_remove_twice(self, drive, store):
        f = await drive.add("k", io.BytesIO(b"content"))
        assert await store.is_pinned(f.cid)

        await drive.remove("k")
        assert not await store.is_pinned(f.cid)
        with pytest.raises(NotFound):
            await drive.stat("k")
        with pytest.raises(NotFound):
            await drive.remove("k")

    @pytest.mark.anyio
    async def test_remove_after_content_already_unpinned(self, drive, store):
        f = await drive.add("k", io.BytesIO(b"content"))
        await store.unpin(f.cid)
        await drive.remove("k")
        with pytest.raises(NotFound):
            await drive.stat("k")

    @pytest.mark.anyio
    async def test_shared_content_stays_pinned(self, drive, store):
        a = await drive.add("a", io.BytesIO(b"shared"))
        b = await drive.add("b", io.BytesIO(b"shared"))
        assert a.cid == b.cid

        await drive.remove("a")
        assert await store.is_pinned(b.cid)
        assert (await drive.get("b")).read() == b"shared"

    @pytest.mark.anyio
    async def test_release_keeps_referenced_content(self, drive, store):
        f = await drive.add("k", io.BytesIO(b"kept"))
        assert not await drive.release(f.cid)
        assert await store.is_pinned(f.cid)

        await drive.add("k", io.BytesIO(b"replacement"))
        assert await drive.release(f.cid)
        assert not await store.is_pinned(f.cid)

    @pytest.mark.anyio
    async def test_release_failure_keeps_content_pinned(self, drive, store):
        f = await drive.add("k", io.BytesIO(b"old"))
        await drive.add("k", io.BytesIO(b"new"))
        with patch.object(store, "unpin", AsyncMock(side_effect=ContentStoreError("down"))):
            assert not await drive.release(f.cid)
        assert await store.is_pinned(f.cid)

    @pytest.mark.anyio
    async def test_remove_empty_key(self, drive):
        with pytest.raises(InvalidArgument):
            await drive.remove("")


class TestList:

    @pytest.mark.anyio
    async def test_substring_filter(self, drive):
        for key in ("xyz", "abcd", "abc"):
            await drive.add(key, io.BytesIO(key.encode()))
        assert (await drive.list("ab")).keys() == ["abc", "abcd"]
        assert (await drive.list("")).keys() == ["abc", "abcd", "xyz"]
        assert (await drive.list("bc")).keys() == ["abc", "abcd"]

    @pytest.mark.anyio
    async def test_corrupt_record(self, drive):
        await drive.add("good", io.BytesIO(b"fine"))
        await drive.index.put("bad", b"\xc1")

        with pytest.raises(CorruptRecord):
            await drive.stat("bad")
        assert (await drive.list()).keys() == ["good"]

        await drive.remove("bad")
        with pytest.raises(NotFound):
            await drive.stat("bad")


@pytest.mark.anyio
async def test_concurrent_adds_on_distinct_keys(drive):
    keys = [f"k{i}" for i in range(25)]
    await asyncio.gather(*(drive.add(k, io.BytesIO(k.encode() * 3)) for k in keys))
    assert len(await drive.list()) == len(keys)
    for k in keys:
        assert (await drive.get(k)).read() == k.encode() * 3


class TestSnapshots:

    @pytest.mark.anyio
    async def test_reopen_from_snapshot_only(self, store, options):
        d = await open_drive(store, "test", options)
        for i in range(5):
            await d.add(f"file{i}", io.BytesIO(f"content {i}".encode()))
        await d.close()
        os.remove(os.path.join(d.index.path, "log.json"))

        reopened = await open_drive(store, "test", options, OpenDriveOptions(replay=0))
        assert reopened.address == d.address
        assert (await reopened.list()).keys() == [f"file{i}" for i in range(5)]
        assert (await reopened.get("file3")).read() == b"content 3"

        # New writes win over restored entries
        await reopened.add("file0", io.BytesIO(b"rewritten"))
        assert (await reopened.get("file0")).read() == b"rewritten"
        await reopened.close()

    @pytest.mark.anyio
    async def test_reopen_by_log_replay(self, store, options):
        d = await open_drive(store, "test", options)
        await d.add("a", io.BytesIO(b"1"))
        await d.remove("a")
        await d.add("b", io.BytesIO(b"2"))
        await d.close()
        os.remove(os.path.join(d.index.path, "snapshot"))

        reopened = await open_drive(store, d.address, options)
        assert (await reopened.list()).keys() == ["b"]
        await reopened.close()

    @pytest.mark.anyio
    async def test_close_is_idempotent(self, store, options):
        d = await open_drive(store, "test", options)
        await d.close()
        await d.close()
        with pytest.raises(MetadataIndexError):
            await d.stat("a")

    @pytest.mark.anyio
    async def test_failed_snapshot_does_not_block_close(self, store):
        index = AsyncMock()
        index.save_snapshot.side_effect = ContentStoreError("store is down")
        d = Drive(store, index)
        await d.close()
        index.close.assert_awaited_once()

    @pytest.mark.anyio
    async def test_borrowed_index_is_left_open(self, store):
        index = AsyncMock()
        d = Drive(store, index, owns_index=False)
        await d.close()
        index.save_snapshot.assert_awaited_once()
        index.close.assert_not_awaited()
        index.fsync.assert_awaited_once()


@pytest.mark.anyio
async def test_canceled_add_releases_content(store):
    started = asyncio.Event()

    async def stalled_put(key, value):
        started.set()
        await asyncio.Event().wait()

    index = AsyncMock()
    index.put.side_effect = stalled_put
    index.all.return_value = {}
    d = Drive(store, index)

    task = asyncio.create_task(d.add("k", io.BytesIO(b"orphan")))
    await started.wait()
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert store.pins == set()


class TestOpen:

    @pytest.mark.anyio
    async def test_invalid_arguments(self, store, options):
        with pytest.raises(InvalidArgument):
            await open_drive(store, "", options)
        with pytest.raises(InvalidArgument):
            await open_drive(None, "test", options)
        with pytest.raises(InvalidArgument):
            Drive(store, None)

    @pytest.mark.anyio
    async def test_unknown_name_without_create(self, store, drive_dir):
        with pytest.raises(MetadataIndexError):
            await open_drive(store, "test", OpenDriveOptions(directory=drive_dir))

    @pytest.mark.anyio
    async def test_local_identity_is_kept(self, store, drive_dir):
        first = await open_drive(store, "test", OpenDriveOptions(create=True, directory=drive_dir))
        await first.close()
        second = await open_drive(store, "test", OpenDriveOptions(directory=drive_dir))
        await second.close()
        assert first.identity
        assert first.identity == second.identity

    @pytest.mark.anyio
    async def test_properties(self, drive):
        assert drive.name == "test"
        assert drive.address.endswith("/test")
        assert drive.identity == "alice"


class TestAccess:

    @pytest.mark.anyio
    async def test_opener_can_write(self, drive):
        assert drive.access_controller.can("write", "alice")

    @pytest.mark.anyio
    async def test_grant_and_revoke(self, drive):
        await drive.grant("bob", "write")
        assert drive.access_controller.can("write", "bob")
        await drive.revoke("bob", "write")
        assert not drive.access_controller.can("write", "bob")

    @pytest.mark.anyio
    async def test_supplied_controller_is_used(self, store, options):
        ac = LocalAccessController()
        d = await open_drive(store, "test", options, OpenDriveOptions(access_controller=ac))
        await d.grant("carol", "admin")
        assert ac.members("admin") == ["carol"]
        # A supplied controller is not seeded
        assert ac.members("write") == []
        await d.close()

    @pytest.mark.anyio
    async def test_controller_failures_are_wrapped(self, store):
        ac = MagicMock()
        ac.grant = AsyncMock(side_effect=RuntimeError("backend unavailable"))
        d = Drive(store, AsyncMock(), ac)
        with pytest.raises(AccessControlError, match="backend unavailable"):
            await d.grant("bob", "write")

    @pytest.mark.anyio
    async def test_no_controller(self, store):
        d = Drive(store, AsyncMock())
        with pytest.raises(AccessControlError):
            await d.revoke("bob", "write")


@pytest.mark.parametrize("modules", [
    "metadata, drive.opener",
    "drive, metadata.keyvalue_index",
    "drive.opener",
])
def test_packages_import_in_any_order(modules):
    src = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "src")
    result = subprocess.run([sys.executable, "-c", f"import {modules}"],
                            env={**os.environ, "PYTHONPATH": src}, capture_output=True, text=True)
    assert result.returncode == 0, result.stderr
