"""
Stream wrapper used on both sides of the content store.

On the way in it counts the bytes the store consumes, which gives the size of
a record without buffering the whole payload. On the way out it lets the
filesystem adapter seek a content stream, failing with InvalidSeek when the
source cannot seek.
"""
import io
from typing import BinaryIO

from drive.errors import InvalidSeek


class ContentStream(io.RawIOBase):
    def __init__(self, source: BinaryIO, name: str = ""):
        self.source = source
        self.name = name
        self.offset = 0
        self.bytes_read = 0

    def readable(self) -> bool:
        return True

    def seekable(self) -> bool:
        seekable = getattr(self.source, "seekable", None)
        return bool(seekable and seekable())

    def readinto(self, b) -> int:
        data = self.source.read(len(b))
        if not data:
            return 0
        n = len(data)
        b[:n] = data
        self.offset += n
        self.bytes_read += n
        return n

    def read(self, size: int = -1) -> bytes:
        data = self.source.read(size)
        if data:
            self.offset += len(data)
            self.bytes_read += len(data)
        return data or b""

    def seek(self, offset: int, whence: int = io.SEEK_SET) -> int:
        if not self.seekable():
            raise InvalidSeek(f"stream {self.name!r} does not support seeking")
        self.offset = self.source.seek(offset, whence)
        return self.offset

    def tell(self) -> int:
        return self.offset

    def read_at(self, offset: int, size: int) -> bytes:
        """Seek to offset and read at most size bytes."""
        self.seek(offset)
        parts = []
        remaining = size
        while remaining > 0:
            data = self.read(remaining)
            if not data:
                break
            parts.append(data)
            remaining -= len(data)
        return b"".join(parts)

    def close(self) -> None:
        try:
            close = getattr(self.source, "close", None)
            if close is not None:
                close()
        finally:
            super().close()
