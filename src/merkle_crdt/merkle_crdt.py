"""
Core implementation of the Merkle-CRDT that combines CRDT operations with a Merkle tree structure.
"""
import asyncio
import hashlib
import logging
import os
from typing import Optional, Set

from serde import serde, SerdeError
from serde.json import to_json, from_json

logger = logging.getLogger(__name__)


@serde
class MerkleNode:
    hash_value: str # str of hex; serialization needs this to avoid collisions since we're using 128+bit hashes
    replica: int
    height: int
    value: list[str] # 0th item: operation, 1+th item: args; don't want to fight generics
    children: Set[str]


@serde
class MerkleTree:
    root: str
    nodes: dict[str, MerkleNode]


class MerkleCRDT:
    """
    Requires subclassing to form any given crdt.
    """
    tree: MerkleTree
    applied_ops: Set[str]
    lock: asyncio.Lock
    fname: Optional[str]
    replica: int # Randomly generated, i64 (or hash of hostname or smth)

    def __init__(self, path: Optional[str], replica: int):
        self.applied_ops = set()  # Set of applied operation hashes
        self.lock = asyncio.Lock()
        self.fname = path
        self.replica = replica
        self.tree = MerkleTree("", {})
        new_node = self.new_node([], set())
        self.tree.nodes[new_node.hash_value] = new_node
        self.tree.root = new_node.hash_value
        self.applied_ops.add(new_node.hash_value)

    async def fsync(self):
        # Serializes the CRDT to disk; takes a lock so no operations happen concurrently
        if self.fname is None:
            return
        async with self.lock:
            with open(self.fname + ".tmp", "w") as f:
                f.write(to_json(self.tree))
                f.flush()
            os.replace(self.fname + ".tmp", self.fname)

    async def fload(self, amount: int = -1) -> int:
        """
        Load the CRDT from disk and replay its operations.

        Args:
            amount: Replay only the newest amount operations; negative replays all

        Returns:
            Number of operations applied
        """
        if self.fname is None:
            return 0
        async with self.lock:
            try:
                with open(self.fname, "r") as f:
                    tree = from_json(MerkleTree, f.read())
            except FileNotFoundError:
                return 0 # Nothing logged yet
            except (ValueError, SerdeError) as e:
                logger.warning("ignoring unreadable log %s: %s", self.fname, e)
                return 0
            self.tree = tree
            self.applied_ops = set()
            l = self.topo(self.tree.root)
            l.sort(key=lambda x: (x.height, x.replica))
            if amount >= 0:
                l = l[max(0, len(l) - amount):] if amount else []
            self.apply_operations([i.value for i in l])
            return len(l)

    def get_node(self, hash: str) -> MerkleNode | None:
        return self.tree.nodes.get(hash, None)

    def put_node(self, node: MerkleNode):
        self.tree.nodes[node.hash_value] = node

    def new_node(self, value: list[str], children: set[str]) -> MerkleNode:
        hasher = hashlib.sha1()
        for item in value:
            hasher.update(item.encode('utf-8'))
        for item in sorted(children):
            hasher.update(item.encode('utf-8'))
        val = hasher.hexdigest()
        height = max([self.tree.nodes[child].height for child in children] or [0]) + 1
        new_node = MerkleNode(val, self.replica, height, value, children)
        return new_node

    def append(self, value: list[str]) -> MerkleNode:
        # Caller holds the lock
        new_node = self.new_node(value, {self.tree.root})
        self.put_node(new_node)
        self.tree.root = new_node.hash_value
        self.applied_ops.add(new_node.hash_value)
        return new_node

    def topo(self, root: str) -> list[MerkleNode]:
        """Unapplied nodes reachable from root, children before parents."""
        l: list[MerkleNode] = []
        stack = [(root, False)]
        while stack:
            h, expanded = stack.pop()
            if h in self.applied_ops:
                continue
            node = self.tree.nodes[h]
            if expanded:
                self.applied_ops.add(h)
                l.append(node)
                continue
            stack.append((h, True))
            for child in node.children:
                if child not in self.applied_ops:
                    stack.append((child, False))
        return l

    def reaches(self, start: str, target: str) -> bool:
        seen = set()
        stack = [start]
        while stack:
            h = stack.pop()
            if h == target:
                return True
            if h in seen or h not in self.tree.nodes:
                continue
            seen.add(h)
            stack.extend(self.tree.nodes[h].children)
        return False

    async def add_root(self, root: str):
        # IMPORTANT PRECONDITION: ALL CHILDREN OF THE ROOT MUST BE ADDED
        async with self.lock:
            # If new root is a subtree of us
            if root in self.applied_ops:
                return
            # If we are a subtree of new root
            should_use_old_root = self.reaches(root, self.tree.root)

            l = self.topo(root)
            l.sort(key=lambda x: (x.height, x.replica))
            self.apply_operations([i.value for i in l])

            if should_use_old_root:
                self.tree.root = root
                return

            # Otherwise, merge both
            new_node = self.new_node([], {root, self.tree.root})
            self.put_node(new_node)
            self.tree.root = new_node.hash_value
            self.applied_ops.add(new_node.hash_value)

    async def merge_from(self, other: 'MerkleCRDT'):
        """Copy every node of another replica and merge its root."""
        for node in list(other.tree.nodes.values()):
            if node.hash_value not in self.tree.nodes:
                self.put_node(node)
        await self.add_root(other.tree.root)

    def apply_operation(self, op: list[str]):
        # Meant to be implemented in a subclass
        pass

    def apply_operations(self, ops: list[list[str]]):
        # Meant to be implemented in a subclass
        for op in ops:
            self.apply_operation(op)
