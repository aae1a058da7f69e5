"""
Merkle commitment primitives.

- hashing: domain-separated leaf/node hashes
- tree: MerkleTree (root + proofs) and pure `verify`
"""

from stakeproof.core.merkle.hashing import leaf_hash, node_hash, hashv
from stakeproof.core.merkle.tree import MerkleTree, verify, merkle_root

__all__ = [
    "leaf_hash",
    "node_hash",
    "hashv",
    "MerkleTree",
    "verify",
    "merkle_root",
]
