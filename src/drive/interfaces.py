"""
Collaborators a drive is composed of.

Any object with these coroutines can stand in for the content store, the
metadata index or the access controller, which is how the tests run a drive
without a network or a blob backend.
"""
from typing import BinaryIO, Optional, Protocol


class ContentStore(Protocol):
    async def add(self, stream: BinaryIO) -> str:
        """Store the stream's bytes, pin them and return their content id."""
        ...

    async def get(self, cid: str) -> BinaryIO:
        ...

    async def pin(self, cid: str) -> None:
        ...

    async def unpin(self, cid: str) -> None:
        ...

    async def is_pinned(self, cid: str) -> bool:
        ...


class MetadataIndex(Protocol):
    @property
    def name(self) -> str:
        ...

    @property
    def address(self) -> str:
        ...

    async def put(self, key: str, value: bytes) -> None:
        ...

    async def get(self, key: str) -> Optional[bytes]:
        ...

    async def delete(self, key: str) -> None:
        ...

    async def all(self) -> dict[str, bytes]:
        """Copy of the full mapping at call time."""
        ...

    async def load_snapshot(self) -> bool:
        """Restore the latest snapshot; False when there is none."""
        ...

    async def load(self, amount: int = -1) -> None:
        """Replay at most amount logged operations, all of them if negative."""
        ...

    async def save_snapshot(self) -> str:
        ...

    async def fsync(self) -> None:
        """Persist the operation log."""
        ...

    async def close(self) -> None:
        ...


class AccessController(Protocol):
    async def grant(self, permission: str, identity: str) -> None:
        ...

    async def revoke(self, permission: str, identity: str) -> None:
        ...
