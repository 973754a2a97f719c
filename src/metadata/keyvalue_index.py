"""
Replicated key-value index backed by a Merkle-CRDT map.

Layout under the index directory:

    <directory>/<manifest-cid>/<name>/log.json   operation DAG
    <directory>/<manifest-cid>/<name>/snapshot   content id of the latest snapshot
"""
import hashlib
import io
import logging
import os
from typing import Optional

from serde import serde, SerdeError
from serde.json import from_json, to_json

from drive.errors import MetadataIndexError
from drive.interfaces import ContentStore
from merkle_crdt.merkle_lww_map import MapSnapshot, MerkleLWWMap
from metadata.address import Address, resolve_address

logger = logging.getLogger(__name__)

LOG_FILE = "log.json"
SNAPSHOT_FILE = "snapshot"


@serde
class IndexSnapshot:
    address: str
    state: MapSnapshot


def replica_for(identity: str) -> int:
    digest = hashlib.sha1(identity.encode()).digest()
    return int.from_bytes(digest[:4], "big") or 1


class KeyValueIndex:
    content_store: Optional[ContentStore]
    map: MerkleLWWMap
    closed: bool

    def __init__(self, address: Address, directory: str, identity: str,
                 content_store: Optional[ContentStore] = None):
        self._address = address
        self.identity = identity
        self.content_store = content_store
        self.path = os.path.join(directory, address.root, address.name)
        os.makedirs(self.path, exist_ok=True)
        self.map = MerkleLWWMap(os.path.join(self.path, LOG_FILE), replica_for(identity))
        self.closed = False

    @classmethod
    async def open(cls, content_store: ContentStore, resolve: str, directory: str, identity: str,
                   create: bool = False) -> 'KeyValueIndex':
        address = await resolve_address(content_store, resolve, directory, create)
        return cls(address, directory, identity, content_store)

    @property
    def name(self) -> str:
        return self._address.name

    @property
    def address(self) -> str:
        return str(self._address)

    def _check_open(self):
        if self.closed:
            raise MetadataIndexError(f"index {self.address} is closed")

    async def put(self, key: str, value: bytes) -> None:
        self._check_open()
        await self.map.put(key, value)

    async def get(self, key: str) -> Optional[bytes]:
        self._check_open()
        return self.map.get(key)

    async def delete(self, key: str) -> None:
        self._check_open()
        await self.map.delete(key)

    async def all(self) -> dict[str, bytes]:
        self._check_open()
        return dict(self.map.items())

    async def load(self, amount: int = -1) -> None:
        self._check_open()
        applied = await self.map.fload(amount)
        logger.debug("replayed %d operations for %s", applied, self.address)

    async def load_snapshot(self) -> bool:
        self._check_open()
        pointer = os.path.join(self.path, SNAPSHOT_FILE)
        try:
            with open(pointer, "r") as f:
                cid = f.read().strip()
        except FileNotFoundError:
            return False
        if not cid:
            return False
        if self.content_store is None:
            raise MetadataIndexError("cannot load a snapshot without a content store")
        stream = await self.content_store.get(cid)
        try:
            snapshot = from_json(IndexSnapshot, stream.read().decode())
        except (UnicodeDecodeError, ValueError, SerdeError) as e:
            raise MetadataIndexError(f"unreadable snapshot {cid}: {e}") from e
        finally:
            stream.close()
        if snapshot.address != self.address:
            raise MetadataIndexError(f"snapshot {cid} belongs to {snapshot.address}")
        await self.map.restore(snapshot.state)
        logger.info("restored %s from snapshot %s (%d keys)", self.address, cid, len(snapshot.state.entries))
        return True

    async def save_snapshot(self) -> str:
        self._check_open()
        if self.content_store is None:
            raise MetadataIndexError("cannot save a snapshot without a content store")
        async with self.map.lock:
            data = to_json(IndexSnapshot(self.address, self.map.snapshot()))
        cid = await self.content_store.add(io.BytesIO(data.encode()))

        pointer = os.path.join(self.path, SNAPSHOT_FILE)
        previous = None
        try:
            with open(pointer, "r") as f:
                previous = f.read().strip()
        except FileNotFoundError:
            pass
        with open(pointer + ".tmp", "w") as f:
            f.write(cid)
        os.replace(pointer + ".tmp", pointer)
        if previous and previous != cid:
            await self.content_store.unpin(previous)
        return cid

    async def fsync(self) -> None:
        if not self.closed:
            await self.map.fsync()

    async def close(self) -> None:
        if self.closed:
            return
        await self.map.fsync()
        self.closed = True
