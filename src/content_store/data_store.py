"""
Implementation of the data store for file contents.
This uses content-addressed storage with Merkle trees for integrity verification.
"""
import asyncio
import hashlib
import io
import json
import logging
import os
from typing import BinaryIO, Dict, List, Optional, Set, Tuple

from drive.errors import ContentStoreError

logger = logging.getLogger(__name__)


class BlockReader(io.RawIOBase):
    """
    Seekable reader over the chunks of one stored blob.
    Each chunk is verified against its hash when it is loaded.
    """
    def __init__(self, store: 'DataStore', cid: str, links: List[Tuple[str, int]]):
        self.store = store
        self.cid = cid
        self.links = links
        self.size = sum(size for (_, size) in links)
        self.pos = 0
        self._chunk_index = -1
        self._chunk = b""

    def readable(self) -> bool:
        return True

    def seekable(self) -> bool:
        return True

    def seek(self, offset: int, whence: int = io.SEEK_SET) -> int:
        if whence == io.SEEK_SET:
            pos = offset
        elif whence == io.SEEK_CUR:
            pos = self.pos + offset
        elif whence == io.SEEK_END:
            pos = self.size + offset
        else:
            raise ValueError(f"invalid whence {whence}")
        if pos < 0:
            raise ValueError("negative seek position")
        self.pos = pos
        return pos

    def tell(self) -> int:
        return self.pos

    def readinto(self, b) -> int:
        if self.pos >= self.size:
            return 0
        # Locate the chunk holding pos
        start = 0
        for index, (chunk_hash, size) in enumerate(self.links):
            if self.pos < start + size:
                break
            start += size
        if index != self._chunk_index:
            self._chunk = self.store.verified_chunk(chunk_hash)
            self._chunk_index = index
        inner = self.pos - start
        data = self._chunk[inner:inner + len(b)]
        b[:len(data)] = data
        self.pos += len(data)
        return len(data)


class DataStore:
    """
    Store for file contents using content-addressed storage.
    Each file's content is stored as chunks, addressed by their cryptographic hashes.
    Without a path everything is kept in memory.
    """
    path: Optional[str]
    chunk_size: int
    pins: Set[str]
    lock: asyncio.Lock

    def __init__(self, path: Optional[str] = None, chunk_size: int = 1024 * 1024):
        self.path = path
        self.chunk_size = chunk_size
        self.chunks: Dict[str, bytes] = {}  # Hash -> Content mapping, in memory only
        self.links: Dict[str, List[Tuple[str, int]]] = {}  # Root -> [(chunk hash, size)]
        self.pins = set()
        self.lock = asyncio.Lock()
        if path is not None:
            os.makedirs(os.path.join(path, "blocks"), exist_ok=True)
            os.makedirs(os.path.join(path, "links"), exist_ok=True)
            self._load_pins()

    async def add(self, stream: BinaryIO) -> str:
        """
        Write data to the store and pin it.

        Args:
            stream: Readable source of the data

        Returns:
            The root hash of the data's Merkle tree
        """
        if stream is None:
            raise ContentStoreError("cannot add from a missing stream")
        links: List[Tuple[str, int]] = []
        try:
            while True:
                chunk = stream.read(self.chunk_size)
                if not chunk:
                    break
                chunk_hash = hashlib.sha256(chunk).hexdigest()
                self._put_chunk(chunk_hash, chunk)
                links.append((chunk_hash, len(chunk)))
        except OSError as e:
            raise ContentStoreError(f"cannot read source stream: {e}") from e

        # Build Merkle tree of chunks
        level = [chunk_hash for (chunk_hash, _) in links]
        while len(level) > 1:
            new_level = []
            for i in range(0, len(level), 2):
                left = level[i]
                right = level[i + 1] if i + 1 < len(level) else left
                combined = left + right
                parent_hash = hashlib.sha256(combined.encode()).hexdigest()
                new_level.append(parent_hash)
            level = new_level
        root = level[0] if level else hashlib.sha256(b"").hexdigest()

        async with self.lock:
            self._put_links(root, links)
            self.pins.add(root)
            self._save_pins()
        logger.debug("added %s (%d chunks)", root, len(links))
        return root

    async def get(self, cid: str) -> BinaryIO:
        """
        Read data from the store.

        Raises:
            ContentStoreError: if the root is unknown
        """
        links = self._get_links(cid)
        if links is None:
            raise ContentStoreError(f"no content for {cid}")
        return BlockReader(self, cid, links)

    async def pin(self, cid: str) -> None:
        if self._get_links(cid) is None:
            raise ContentStoreError(f"cannot pin unknown content {cid}")
        async with self.lock:
            if cid not in self.pins:
                self.pins.add(cid)
                self._save_pins()

    async def unpin(self, cid: str) -> None:
        async with self.lock:
            if cid in self.pins:
                self.pins.remove(cid)
                self._save_pins()

    async def is_pinned(self, cid: str) -> bool:
        return cid in self.pins

    async def collect_garbage(self) -> int:
        """
        Delete content that is not reachable from a pinned root.

        Returns:
            Number of roots removed
        """
        async with self.lock:
            roots = self._all_roots()
            live_chunks = set()
            for root in self.pins:
                for (chunk_hash, _) in self._get_links(root) or []:
                    live_chunks.add(chunk_hash)
            removed = 0
            for root in roots:
                if root in self.pins:
                    continue
                for (chunk_hash, _) in self._get_links(root) or []:
                    if chunk_hash not in live_chunks:
                        self._delete_chunk(chunk_hash)
                self._delete_links(root)
                removed += 1
        if removed:
            logger.info("garbage collected %d unpinned roots", removed)
        return removed

    def verified_chunk(self, chunk_hash: str) -> bytes:
        chunk = self._get_chunk(chunk_hash)
        if chunk is None:
            raise ContentStoreError(f"missing chunk {chunk_hash}")
        computed_hash = hashlib.sha256(chunk).hexdigest()
        if computed_hash != chunk_hash:
            raise ContentStoreError(f"chunk {chunk_hash} failed verification")
        return chunk

    # Storage backends: memory when path is None, files otherwise

    def _put_chunk(self, chunk_hash: str, chunk: bytes):
        if self.path is None:
            self.chunks[chunk_hash] = chunk
            return
        fname = os.path.join(self.path, "blocks", chunk_hash)
        if os.path.exists(fname):
            return
        try:
            with open(fname + ".tmp", "wb") as f:
                f.write(chunk)
            os.replace(fname + ".tmp", fname)
        except OSError as e:
            raise ContentStoreError(f"cannot write chunk {chunk_hash}: {e}") from e

    def _get_chunk(self, chunk_hash: str) -> Optional[bytes]:
        if self.path is None:
            return self.chunks.get(chunk_hash)
        try:
            with open(os.path.join(self.path, "blocks", chunk_hash), "rb") as f:
                return f.read()
        except FileNotFoundError:
            return None

    def _delete_chunk(self, chunk_hash: str):
        if self.path is None:
            self.chunks.pop(chunk_hash, None)
            return
        try:
            os.remove(os.path.join(self.path, "blocks", chunk_hash))
        except FileNotFoundError:
            pass

    def _put_links(self, root: str, links: List[Tuple[str, int]]):
        self.links[root] = links
        if self.path is None:
            return
        try:
            with open(os.path.join(self.path, "links", root), "w") as f:
                json.dump(links, f)
        except OSError as e:
            raise ContentStoreError(f"cannot write links for {root}: {e}") from e

    def _get_links(self, root: str) -> Optional[List[Tuple[str, int]]]:
        if root in self.links:
            return self.links[root]
        if self.path is None or not root or os.sep in root:
            return None
        try:
            with open(os.path.join(self.path, "links", root), "r") as f:
                links = [(h, int(size)) for (h, size) in json.load(f)]
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            raise ContentStoreError(f"cannot read links for {root}: {e}") from e
        self.links[root] = links
        return links

    def _delete_links(self, root: str):
        self.links.pop(root, None)
        if self.path is None:
            return
        try:
            os.remove(os.path.join(self.path, "links", root))
        except FileNotFoundError:
            pass

    def _all_roots(self) -> Set[str]:
        roots = set(self.links.keys())
        if self.path is not None:
            roots.update(os.listdir(os.path.join(self.path, "links")))
        return roots

    def _load_pins(self):
        try:
            with open(os.path.join(self.path, "pins.json"), "r") as f:
                self.pins = set(json.load(f))
        except FileNotFoundError:
            self.pins = set()
        except (OSError, ValueError) as e:
            raise ContentStoreError(f"cannot read pins: {e}") from e

    def _save_pins(self):
        if self.path is None:
            return
        try:
            with open(os.path.join(self.path, "pins.json"), "w") as f:
                json.dump(sorted(self.pins), f)
                f.flush()
        except OSError as e:
            raise ContentStoreError(f"cannot write pins: {e}") from e
