import base64
from typing import Optional, override

from serde import serde
from sortedcontainers import SortedDict

from merkle_crdt.merkle_crdt import MerkleCRDT

PUT = "put"
DELETE = "del"


@serde
class MapEntry:
    height: int
    replica: int
    value: Optional[str]  # base64; None marks a deleted key


@serde
class MapSnapshot:
    clock: int
    entries: dict[str, MapEntry]


class MerkleLWWMap(MerkleCRDT):
    """
    Map of string keys to bytes; concurrent writes to a key resolve by
    (height, replica), deletes leave tombstones so they merge the same way.
    """
    entries: SortedDict  # key -> MapEntry
    clock: int

    def __init__(self, path: Optional[str], replica: int):
        super().__init__(path, replica)
        self.entries = SortedDict()
        self.clock = 0

    @override
    def apply_operation(self, op: list[str]):
        if len(op) == 0:
            return
        height = int(op[0])
        replica = int(op[1])
        kind = op[2]
        key = op[3]
        value = op[4] if kind == PUT else None

        self.clock = max(self.clock, height)
        current = self.entries.get(key)
        if current is None or (height, replica) > (current.height, current.replica):
            self.entries[key] = MapEntry(height, replica, value)

    def _write(self, kind: str, key: str, value: str):
        # Caller holds the lock
        root = self.tree.nodes[self.tree.root]
        height = max(root.height, self.clock) + 1
        op = [str(height), str(self.replica), kind, key, value]
        self.apply_operation(op)
        self.append(op)

    async def put(self, key: str, value: bytes):
        async with self.lock:
            self._write(PUT, key, base64.b64encode(value).decode())

    async def delete(self, key: str) -> bool:
        async with self.lock:
            entry = self.entries.get(key)
            if entry is None or entry.value is None:
                return False
            self._write(DELETE, key, "")
            return True

    def get(self, key: str) -> Optional[bytes]:
        entry = self.entries.get(key)
        if entry is None or entry.value is None:
            return None
        return base64.b64decode(entry.value)

    def items(self) -> list[tuple[str, bytes]]:
        return [(k, base64.b64decode(e.value)) for (k, e) in self.entries.items() if e.value is not None]

    def snapshot(self) -> MapSnapshot:
        return MapSnapshot(self.clock, dict(self.entries))

    async def restore(self, snapshot: MapSnapshot):
        async with self.lock:
            self.clock = max(self.clock, snapshot.clock)
            for key, entry in snapshot.entries.items():
                current = self.entries.get(key)
                if current is None or (entry.height, entry.replica) > (current.height, current.replica):
                    self.entries[key] = entry
