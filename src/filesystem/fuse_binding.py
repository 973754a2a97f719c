import errno
import io
import logging
import os
import stat
from typing import Optional, Tuple

import pyfuse3

from drive.drive import Drive
from drive.errors import DriveError, NotFound
from drive.record import File, parse_timestamp
from drive.stream import ContentStream
from filesystem.nodes import (Directory, EntryKind, ExistingFile, Handle, Node, OpenDescriptor,
                              PendingFile, WriteBuffer)

logger = logging.getLogger(__name__)

ROOT_ID = pyfuse3.ROOT_INODE


def decode_name(name: bytes, error: int) -> str:
    """Names are UTF-8 keys; anything else fails with error."""
    try:
        return name.decode()
    except UnicodeDecodeError:
        logger.warning("rejecting name that is not UTF-8: %r", name)
        raise pyfuse3.FUSEError(error)


class DriveOperations(pyfuse3.Operations):
    """
    Presents a drive as a single flat directory.

    Names that have no record look up as pending files, so that opening them
    for write creates the record. Written bytes are buffered per handle and
    committed to the drive on flush or release.
    """
    drive: Drive
    nodes: dict[int, Node]
    itable: dict[str, int]
    handles: dict[int, Handle]
    inode_ind: int
    fhind: int

    def __init__(self, drive: Drive, *args):
        super().__init__(*args)
        self.drive = drive
        self.nodes = {ROOT_ID: Directory(ROOT_ID)}
        self.itable = {}
        self.handles = {}
        self.inode_ind = ROOT_ID + 1
        self.fhind = 1

    def inode(self, key: str) -> int:
        if key not in self.itable:
            self.itable[key] = self.inode_ind
            self.inode_ind += 1
        return self.itable[key]

    def node(self, inode: int) -> Node:
        try:
            return self.nodes[inode]
        except KeyError:
            raise pyfuse3.FUSEError(errno.ENOENT)

    def handle(self, fh: int) -> Handle:
        try:
            return self.handles[fh]
        except KeyError:
            raise pyfuse3.FUSEError(errno.EBADF)

    def track(self, key: str, f: Optional[File]) -> Node:
        inode = self.inode(key)
        node = ExistingFile(inode, f) if f is not None else PendingFile(inode, key)
        self.nodes[inode] = node
        return node

    def open_handle(self, handle: Handle) -> int:
        fh = self.fhind
        self.fhind += 1
        self.handles[fh] = handle
        return fh

    async def lookup(self, parent_inode: int, name: bytes, ctx: pyfuse3.RequestContext = None) -> pyfuse3.EntryAttributes:
        if self.node(parent_inode).kind != EntryKind.DIRECTORY:
            raise pyfuse3.FUSEError(errno.ENOTDIR)
        key = decode_name(name, errno.ENOENT)
        if key in (".", ".."):
            return await self.getattr(ROOT_ID)
        try:
            f = await self.drive.stat(key)
        except NotFound:
            f = None
        except DriveError as e:
            logger.error("lookup of %s failed: %s", key, e)
            raise pyfuse3.FUSEError(errno.EIO)
        node = self.track(key, f)
        return await self.getattr(node.inode)

    async def getattr(self, inode: int, ctx: pyfuse3.RequestContext = None) -> pyfuse3.EntryAttributes:
        node = self.node(inode)
        attr = pyfuse3.EntryAttributes()
        attr.st_ino = inode
        stamp = 0
        match node.kind:
            case EntryKind.DIRECTORY:
                attr.st_mode = stat.S_IFDIR | 0o755
                attr.st_nlink = 2
                attr.st_size = 0
            case EntryKind.EXISTING_FILE:
                attr.st_mode = stat.S_IFREG | 0o444
                attr.st_nlink = 1
                attr.st_size = node.file.size
                parsed = parse_timestamp(node.file.timestamp)
                if parsed is not None:
                    stamp = int(parsed.timestamp() * 1e9)
            case EntryKind.PENDING_FILE:
                attr.st_mode = stat.S_IFREG | 0o666
                attr.st_nlink = 1
                attr.st_size = max([len(h.buffer) for h in self.handles.values()
                                    if h.kind == EntryKind.WRITING and h.inode == inode] or [0])
                attr.entry_timeout = 0
                attr.attr_timeout = 0
        attr.st_atime_ns = stamp
        attr.st_ctime_ns = stamp
        attr.st_mtime_ns = stamp
        attr.st_gid = os.getgid()
        attr.st_uid = os.getuid()
        return attr

    async def setattr(self, inode: int, attr: pyfuse3.EntryAttributes, fields: pyfuse3.SetattrFields,
                      fh: Optional[int], ctx: pyfuse3.RequestContext) -> pyfuse3.EntryAttributes:
        node = self.node(inode)
        if fields.update_size:
            if node.kind != EntryKind.PENDING_FILE:
                raise pyfuse3.FUSEError(errno.EACCES)
            for h in self.handles.values():
                if h.kind == EntryKind.WRITING and h.inode == inode:
                    h.truncate(attr.st_size)
        return await self.getattr(inode, ctx)

    async def opendir(self, inode: int, ctx: pyfuse3.RequestContext) -> int:
        """Open the directory with inode."""
        if self.node(inode).kind != EntryKind.DIRECTORY:
            raise pyfuse3.FUSEError(errno.ENOTDIR)
        return inode

    async def readdir(self, fh: int, start_id: int, token: pyfuse3.ReaddirToken) -> None:
        """Read entries in open directory fh."""
        try:
            listing = await self.drive.list("")
        except DriveError as e:
            logger.error("listing failed: %s", e)
            raise pyfuse3.FUSEError(errno.EIO)
        files = [f for f in listing if "/" not in f.key]
        for i in range(start_id, len(files)):
            f = files[i]
            node = self.track(f.key, f)
            if not pyfuse3.readdir_reply(token, f.key.encode(), await self.getattr(node.inode), i + 1):
                return

    async def releasedir(self, fh: int) -> None:
        pass

    async def open(self, inode: int, flags: int, ctx: pyfuse3.RequestContext) -> pyfuse3.FileInfo:
        node = self.node(inode)
        writing = (flags & os.O_ACCMODE) in (os.O_WRONLY, os.O_RDWR)
        match node.kind:
            case EntryKind.DIRECTORY:
                raise pyfuse3.FUSEError(errno.EISDIR)
            case EntryKind.EXISTING_FILE:
                if writing:
                    raise pyfuse3.FUSEError(errno.EACCES)
                try:
                    stream = await self.drive.get(node.key)
                except NotFound:
                    raise pyfuse3.FUSEError(errno.ENOENT)
                except DriveError as e:
                    logger.error("open of %s failed: %s", node.key, e)
                    raise pyfuse3.FUSEError(errno.EIO)
                fh = self.open_handle(OpenDescriptor(inode, node.key, ContentStream(stream, node.key)))
            case EntryKind.PENDING_FILE:
                if not writing:
                    raise pyfuse3.FUSEError(errno.ENOENT)
                fh = self.open_handle(WriteBuffer(inode, node.key))
        return pyfuse3.FileInfo(fh=fh)

    async def create(self, parent_inode: int, name: bytes, mode: int, flags: int,
                     ctx: pyfuse3.RequestContext) -> Tuple[pyfuse3.FileInfo, pyfuse3.EntryAttributes]:
        """Create a file with permissions mode and open it with flags."""
        if self.node(parent_inode).kind != EntryKind.DIRECTORY:
            raise pyfuse3.FUSEError(errno.ENOTDIR)
        node = self.track(decode_name(name, errno.EINVAL), None)
        fh = self.open_handle(WriteBuffer(node.inode, node.key))
        return (pyfuse3.FileInfo(fh=fh), await self.getattr(node.inode, ctx))

    async def read(self, fh: int, off: int, size: int) -> bytes:
        """Read size bytes from fh at position off."""
        handle = self.handle(fh)
        if handle.kind != EntryKind.DESCRIPTOR:
            raise pyfuse3.FUSEError(errno.EBADF)
        try:
            return handle.stream.read_at(off, size)
        except (DriveError, OSError) as e:
            logger.error("read of %s at %d failed: %s", handle.key, off, e)
            raise pyfuse3.FUSEError(errno.EIO)

    async def write(self, fh: int, off: int, buf: bytes) -> int:
        """Write buf into fh at off."""
        handle = self.handle(fh)
        if handle.kind != EntryKind.WRITING:
            raise pyfuse3.FUSEError(errno.EBADF)
        return handle.write(off, buf)

    async def flush(self, fh: int) -> None:
        handle = self.handle(fh)
        if handle.kind == EntryKind.WRITING:
            await self.commit(handle)

    async def fsync(self, fh: int, datasync: bool) -> None:
        """Flush buffers for open file fh."""
        await self.flush(fh)

    async def release(self, fh: int) -> None:
        handle = self.handles.pop(fh, None)
        if handle is None:
            return
        match handle.kind:
            case EntryKind.WRITING:
                await self.commit(handle)
            case EntryKind.DESCRIPTOR:
                handle.stream.close()

    async def commit(self, handle: WriteBuffer):
        if not handle.dirty:
            return
        handle.dirty = False
        if not handle.buffer:
            # Nothing written; no empty record is created
            logger.debug("discarding empty write to %s", handle.key)
            return
        try:
            f = await self.drive.add(handle.key, io.BytesIO(bytes(handle.buffer)))
        except DriveError as e:
            handle.dirty = True
            logger.error("commit of %s failed: %s", handle.key, e)
            raise pyfuse3.FUSEError(errno.EIO)
        self.nodes[handle.inode] = ExistingFile(handle.inode, f)
        # Content this handle committed before is superseded by its own later write
        previous, handle.committed = handle.committed, f.cid
        if previous is not None and previous != f.cid:
            await self.drive.release(previous)

    async def unlink(self, parent_inode: int, name: bytes, ctx: pyfuse3.RequestContext) -> None:
        """Remove a file."""
        key = decode_name(name, errno.ENOENT)
        try:
            await self.drive.remove(key)
        except NotFound:
            raise pyfuse3.FUSEError(errno.ENOENT)
        except DriveError as e:
            logger.error("remove of %s failed: %s", key, e)
            raise pyfuse3.FUSEError(errno.EIO)
        self.track(key, None)

    async def forget(self, inode_list: list[tuple[int, int]]) -> None:
        busy = {h.inode for h in self.handles.values()}
        for (inode, _) in inode_list:
            if inode != ROOT_ID and inode not in busy:
                self.nodes.pop(inode, None)

    async def statfs(self, ctx: pyfuse3.RequestContext) -> pyfuse3.StatvfsData:
        stats = pyfuse3.StatvfsData()
        stats.f_bsize = 4096
        stats.f_frsize = 4096
        stats.f_namemax = 255
        try:
            stats.f_files = len(await self.drive.list(""))
        except DriveError as e:
            logger.error("listing failed: %s", e)
            raise pyfuse3.FUSEError(errno.EIO)
        return stats
