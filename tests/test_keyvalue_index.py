"""Tests for the key-value metadata index and its addresses."""

import os

import pytest

from content_store.data_store import DataStore
from drive.errors import InvalidArgument, MetadataIndexError
from metadata.address import Address, create_address
from metadata.keyvalue_index import KeyValueIndex


def test_address_parsing():
    address = Address.parse("/crdt/bafyroot/files")
    assert address == Address("bafyroot", "files")
    assert str(address) == "/crdt/bafyroot/files"
    assert not Address.is_valid("files")
    with pytest.raises(MetadataIndexError):
        Address.parse("/ipfs/bafyroot/files")


@pytest.mark.anyio
async def test_addresses_are_deterministic():
    store = DataStore()
    assert await create_address(store, "files") == await create_address(store, "files")
    with pytest.raises(InvalidArgument):
        await create_address(store, "a/b")


@pytest.mark.anyio
async def test_open_by_name_and_address(tmp_path):
    store = DataStore()
    directory = str(tmp_path)
    with pytest.raises(MetadataIndexError):
        await KeyValueIndex.open(store, "files", directory, "alice")

    created = await KeyValueIndex.open(store, "files", directory, "alice", create=True)
    assert created.name == "files"
    assert created.address.startswith("/crdt/")
    assert os.path.exists(os.path.join(directory, "names.json"))

    by_name = await KeyValueIndex.open(store, "files", directory, "alice")
    by_address = await KeyValueIndex.open(store, created.address, str(tmp_path / "elsewhere"), "alice")
    assert by_name.address == by_address.address == created.address


@pytest.mark.anyio
async def test_put_get_delete(tmp_path):
    index = await KeyValueIndex.open(DataStore(), "files", str(tmp_path), "alice", create=True)
    await index.put("a", b"1")
    await index.put("b", b"2")
    await index.delete("a")
    assert await index.get("a") is None
    assert await index.all() == {"b": b"2"}


@pytest.mark.anyio
async def test_snapshot_replaces_previous(tmp_path):
    store = DataStore()
    index = await KeyValueIndex.open(store, "files", str(tmp_path), "alice", create=True)
    assert not await index.load_snapshot()

    await index.put("a", b"1")
    first = await index.save_snapshot()
    await index.put("b", b"2")
    second = await index.save_snapshot()

    assert first != second
    assert not await store.is_pinned(first)
    assert await store.is_pinned(second)

    fresh = KeyValueIndex(Address.parse(index.address), str(tmp_path), "alice", store)
    assert await fresh.load_snapshot()
    assert await fresh.all() == {"a": b"1", "b": b"2"}


@pytest.mark.anyio
async def test_snapshot_of_another_index_is_rejected(tmp_path):
    store = DataStore()
    files = await KeyValueIndex.open(store, "files", str(tmp_path), "alice", create=True)
    other = await KeyValueIndex.open(store, "other", str(tmp_path), "alice", create=True)
    cid = await files.save_snapshot()
    with open(os.path.join(other.path, "snapshot"), "w") as f:
        f.write(cid)

    with pytest.raises(MetadataIndexError):
        await other.load_snapshot()


@pytest.mark.anyio
async def test_closed_index(tmp_path):
    index = await KeyValueIndex.open(DataStore(), "files", str(tmp_path), "alice", create=True)
    await index.put("a", b"1")
    await index.close()
    await index.close()

    assert os.path.exists(os.path.join(index.path, "log.json"))
    with pytest.raises(MetadataIndexError):
        await index.get("a")
    with pytest.raises(MetadataIndexError):
        await index.save_snapshot()
