"""
Bottom-up binary Merkle tree.

Construction rules:
1. Each leaf content is hashed with `leaf_hash`.
2. Adjacent nodes are paired level by level with `node_hash`.
3. A trailing unpaired node is promoted unchanged to the next level.
   It is not re-hashed and contributes no element to proofs.

`proof()` and `verify()` follow the same promotion rule, so for any index i:

    verify(leaves[i], tree.proof(i), tree.root) is True
"""

import logging
from typing import List, Sequence

from stakeproof.core.merkle.hashing import leaf_hash, node_hash

logger = logging.getLogger(__name__)


class MerkleTree:
    """
    Merkle tree over an ordered list of leaf contents.

    Leaf contents are typically 32-byte digests of structured leaves
    (see StakeLeaf.hash / MetaLeaf.hash). Order is preserved; callers are
    responsible for sorting leaves deterministically beforehand.

    Usage:
        tree = MerkleTree([leaf.hash() for leaf in leaves])
        proof = tree.proof(3)
        assert verify(leaves[3].hash(), proof, tree.root)
    """

    def __init__(self, leaf_contents: Sequence[bytes]):
        if not leaf_contents:
            raise ValueError("MerkleTree requires at least one leaf")

        self._levels: List[List[bytes]] = [[leaf_hash(c) for c in leaf_contents]]

        level = self._levels[0]
        while len(level) > 1:
            parents = [
                node_hash(level[i], level[i + 1])
                for i in range(0, len(level) - 1, 2)
            ]
            if len(level) % 2 == 1:
                parents.append(level[-1])
            self._levels.append(parents)
            level = parents

    @property
    def root(self) -> bytes:
        return self._levels[-1][0]

    @property
    def leaf_count(self) -> int:
        return len(self._levels[0])

    @property
    def depth(self) -> int:
        return len(self._levels) - 1

    def leaf_node(self, index: int) -> bytes:
        """Hashed leaf node at `index`."""
        return self._levels[0][index]

    def proof(self, index: int) -> List[bytes]:
        """Sibling hashes met while climbing from leaf `index` to the root."""
        if index < 0 or index >= self.leaf_count:
            raise IndexError(f"leaf index {index} out of range (0..{self.leaf_count - 1})")

        siblings = []
        for level in self._levels[:-1]:
            sibling = index ^ 1
            if sibling < len(level):
                siblings.append(level[sibling])
            index //= 2
        return siblings


def verify(leaf_content: bytes, proof: Sequence[bytes], root: bytes) -> bool:
    """Fold `proof` over `leaf_hash(leaf_content)` and compare with `root`."""
    node = leaf_hash(leaf_content)
    for sibling in proof:
        node = node_hash(node, sibling)
    if node != root:
        logger.debug(f"Root mismatch: expected {root.hex()}, got {node.hex()}")
        return False
    return True


def merkle_root(leaf_contents: Sequence[bytes]) -> bytes:
    """Root of the tree over `leaf_contents`."""
    return MerkleTree(leaf_contents).root
