"""
State carried by the filesystem for each inode and each open file handle.

Nodes are Directory, ExistingFile and PendingFile; handles are OpenDescriptor
(read) and WriteBuffer (write). The adapter dispatches on `kind`.
"""
import enum
from dataclasses import dataclass, field
from typing import ClassVar, Optional

from drive.record import File
from drive.stream import ContentStream


class EntryKind(enum.Enum):
    DIRECTORY = "directory"
    EXISTING_FILE = "existing"
    PENDING_FILE = "pending"
    DESCRIPTOR = "descriptor"
    WRITING = "writing"


@dataclass
class Directory:
    inode: int
    kind: ClassVar[EntryKind] = EntryKind.DIRECTORY


@dataclass
class ExistingFile:
    """A committed record; read only."""
    inode: int
    file: File
    kind: ClassVar[EntryKind] = EntryKind.EXISTING_FILE

    @property
    def key(self) -> str:
        return self.file.key


@dataclass
class PendingFile:
    """A name with no record yet; becomes an ExistingFile once a write is committed."""
    inode: int
    key: str
    kind: ClassVar[EntryKind] = EntryKind.PENDING_FILE


@dataclass
class OpenDescriptor:
    inode: int
    key: str
    stream: ContentStream
    kind: ClassVar[EntryKind] = EntryKind.DESCRIPTOR


@dataclass
class WriteBuffer:
    inode: int
    key: str
    buffer: bytearray = field(default_factory=bytearray)
    dirty: bool = False
    committed: Optional[str] = None  # content id of the last commit from this handle
    kind: ClassVar[EntryKind] = EntryKind.WRITING

    def write(self, off: int, buf: bytes) -> int:
        end = off + len(buf)
        if off > len(self.buffer):
            self.buffer.extend(bytes(off - len(self.buffer)))
        self.buffer[off:end] = buf
        self.dirty = True
        return len(buf)

    def truncate(self, size: int):
        if size < len(self.buffer):
            del self.buffer[size:]
        else:
            self.buffer.extend(bytes(size - len(self.buffer)))
        self.dirty = True


Node = Directory | ExistingFile | PendingFile
Handle = OpenDescriptor | WriteBuffer
