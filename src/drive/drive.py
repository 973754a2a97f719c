"""
A drive: named files whose metadata lives in a replicated index and whose
contents live in a content-addressed store.

Adding pins the content before the metadata is written, so a record never
points at content that may be collected. Removing unpins before deleting the
metadata and only unpins what is still pinned, so a retried remove succeeds.
"""
import asyncio
import logging
import os
from typing import BinaryIO, Optional

from drive.errors import (AccessControlError, CorruptRecord, DriveError,
                          InvalidArgument, NotFound)
from drive.interfaces import AccessController, ContentStore, MetadataIndex
from drive.listing import ListResult
from drive.record import File, decode_file, encode_file, now_timestamp
from drive.stream import ContentStream

logger = logging.getLogger(__name__)


class Drive:
    content_store: ContentStore
    index: MetadataIndex
    access_controller: Optional[AccessController]

    def __init__(self, content_store: ContentStore, index: MetadataIndex,
                 access_controller: Optional[AccessController] = None, identity: str = "",
                 owns_index: bool = True):
        if content_store is None or index is None:
            raise InvalidArgument("a drive needs both a content store and a metadata index")
        self.content_store = content_store
        self.index = index
        self.access_controller = access_controller
        self._identity = identity
        self.owns_index = owns_index
        self.closed = False

    @property
    def name(self) -> str:
        return self.index.name

    @property
    def address(self) -> str:
        return self.index.address

    @property
    def identity(self) -> str:
        return self._identity

    async def add_file(self, key: str, path: str) -> File:
        """
        Add a local file under key.

        Raises:
            InvalidArgument: if key or path is empty
            OSError: if the file cannot be read
            ContentStoreError: if storing or pinning the content fails
        """
        if not key or not path:
            raise InvalidArgument("either key or path cannot be empty")
        with open(path, "rb") as f:
            return await self._add(key, f, name=os.path.basename(path))

    async def add(self, key: str, stream: BinaryIO) -> File:
        """Add the bytes read from stream under key."""
        if not key:
            raise InvalidArgument("key cannot be empty")
        if stream is None:
            raise InvalidArgument("stream cannot be None")
        return await self._add(key, stream, name=key)

    async def _add(self, key: str, source: BinaryIO, name: str) -> File:
        counted = ContentStream(source, name)
        cid = await self.content_store.add(counted)
        f = File(key=key, cid=cid, size=counted.bytes_read, timestamp=now_timestamp(), owner=self.identity)
        try:
            await self.index.put(key, encode_file(f))
        except asyncio.CancelledError:
            await self.release(cid)
            raise
        logger.debug("added %s as %s (%d bytes)", key, cid, f.size)
        return f

    async def release(self, cid: str) -> bool:
        """
        Unpin content that no record references.
        Best effort; a failure is logged and leaves the content pinned.

        Returns:
            True if the content was unpinned
        """
        try:
            if await self._referenced(cid):
                return False
            await self.content_store.unpin(cid)
        except DriveError as e:
            logger.warning("could not release content %s: %s", cid, e)
            return False
        logger.debug("released %s", cid)
        return True

    async def get(self, key: str) -> BinaryIO:
        """
        Open the content stored under key.

        Raises:
            NotFound: if there is no record for key
            CorruptRecord: if the record cannot be decoded
        """
        f = await self.stat(key)
        return await self.content_store.get(f.cid)

    async def stat(self, key: str) -> File:
        if not key:
            raise InvalidArgument("cannot use empty key")
        data = await self.index.get(key)
        if data is None:
            raise NotFound(key)
        return decode_file(key, data)

    async def list(self, prefix: str = "") -> ListResult:
        """
        List every record whose key contains prefix.
        The match is a plain substring test, not a path prefix.
        """
        files = []
        for k, v in (await self.index.all()).items():
            if prefix not in k:
                continue
            try:
                files.append(decode_file(k, v))
            except CorruptRecord as e:
                logger.warning("skipping %s in listing: %s", k, e)
        return ListResult(files)

    async def remove(self, key: str) -> None:
        """
        Remove the record under key and unpin its content.

        Content another record references stays pinned. The check and the
        unpin are not atomic: an add of the same bytes under another key that
        lands between them leaves that record pointing at unpinned content.

        Raises:
            NotFound: if there is no record for key
        """
        if not key:
            raise InvalidArgument("cannot use empty key")
        data = await self.index.get(key)
        if data is None:
            raise NotFound(key)
        try:
            f = decode_file(key, data)
        except CorruptRecord as e:
            logger.warning("removing undecodable record %s without unpinning: %s", key, e)
            await self.index.delete(key)
            return

        if await self.content_store.is_pinned(f.cid) and not await self._referenced(f.cid, skip=key):
            await self.content_store.unpin(f.cid)
        await self.index.delete(key)
        logger.debug("removed %s (%s)", key, f.cid)

    async def _referenced(self, cid: str, skip: str = "") -> bool:
        for k, v in (await self.index.all()).items():
            if k == skip:
                continue
            try:
                if decode_file(k, v).cid == cid:
                    return True
            except CorruptRecord:
                continue
        return False

    async def grant(self, identity: str, permission: str) -> None:
        ac = self._access()
        try:
            await ac.grant(permission, identity)
        except DriveError:
            raise
        except Exception as e:
            raise AccessControlError(f"cannot grant {permission} to {identity}: {e}") from e

    async def revoke(self, identity: str, permission: str) -> None:
        ac = self._access()
        try:
            await ac.revoke(permission, identity)
        except DriveError:
            raise
        except Exception as e:
            raise AccessControlError(f"cannot revoke {permission} from {identity}: {e}") from e

    def _access(self) -> AccessController:
        if self.access_controller is None:
            raise AccessControlError("drive has no access controller")
        return self.access_controller

    async def close(self) -> None:
        """
        Save a snapshot of the index, then close it.
        A failed snapshot is logged; it only makes the next open replay more of the log.
        An index the drive does not own is synced to disk but left open.
        """
        if self.closed:
            return
        self.closed = True
        try:
            cid = await self.index.save_snapshot()
            logger.info("saved snapshot of %s as %s", self.address, cid)
        except Exception as e:
            logger.warning("could not save snapshot of %s: %s", self.address, e)
        if self.owns_index:
            await self.index.close()
        else:
            await self.index.fsync()
