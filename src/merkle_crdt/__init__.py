"""
Merkle-CRDT implementation for the replicated metadata index.
This module provides the core Merkle-CRDT functionality that combines CRDTs with Merkle trees
for causal consistency and efficient synchronization.
"""

from .merkle_crdt import MerkleCRDT, MerkleNode, MerkleTree
from .merkle_lww_map import MerkleLWWMap, MapEntry, MapSnapshot

__all__ = ['MerkleCRDT', 'MerkleNode', 'MerkleTree', 'MerkleLWWMap', 'MapEntry', 'MapSnapshot']
