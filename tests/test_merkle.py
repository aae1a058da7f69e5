"""
Tests for domain-separated hashing and the Merkle tree.

Covers:
- leaf/node prefix separation and sorted pairing
- proof round-trip for every leaf across a range of tree sizes
- odd-node promotion
- tamper detection
"""
import hashlib

import pytest

from stakeproof.core.merkle import MerkleTree, leaf_hash, merkle_root, node_hash, verify
from stakeproof.core.merkle.hashing import hashv, require_hash, short, u64_le


def contents(n):
    return [hashlib.sha256(f"leaf-{i}".encode()).digest() for i in range(n)]


class TestHashing:

    def test_leaf_hash_uses_zero_prefix(self):
        data = b"payload"
        assert leaf_hash(data) == hashlib.sha256(b"\x00" + data).digest()

    def test_node_hash_uses_one_prefix_and_sorted_children(self):
        a, b = contents(2)
        lo, hi = sorted((a, b))
        assert node_hash(a, b) == hashlib.sha256(b"\x01" + lo + hi).digest()

    def test_sibling_order_does_not_matter(self):
        a, b = contents(2)
        assert node_hash(a, b) == node_hash(b, a)

    def test_leaf_and_node_domains_differ(self):
        """Same bytes hashed as a leaf and as a node never collide."""
        a, b = sorted(contents(2))
        assert leaf_hash(a + b) != node_hash(a, b)

    def test_hashv_concatenates(self):
        assert hashv([b"ab", b"cd"]) == hashlib.sha256(b"abcd").digest()

    def test_u64_le(self):
        assert u64_le(1) == b"\x01" + bytes(7)
        assert u64_le(2**64 - 1) == b"\xff" * 8

    def test_require_hash(self):
        assert require_hash(bytearray(32)) == bytes(32)
        with pytest.raises(ValueError):
            require_hash(b"short", "key")

    def test_short(self):
        assert short(bytes(32)) == "0" * 16 + "..."


class TestMerkleTree:

    @pytest.mark.parametrize("n", [1, 2, 3, 4, 5, 7, 8, 9, 16, 17])
    def test_every_proof_verifies(self, n):
        leaves = contents(n)
        tree = MerkleTree(leaves)
        for i, leaf in enumerate(leaves):
            assert verify(leaf, tree.proof(i), tree.root)

    def test_single_leaf(self):
        leaf = contents(1)[0]
        tree = MerkleTree([leaf])
        assert tree.root == leaf_hash(leaf)
        assert tree.proof(0) == []
        assert tree.depth == 0

    def test_two_leaves(self):
        a, b = contents(2)
        tree = MerkleTree([a, b])
        assert tree.root == node_hash(leaf_hash(a), leaf_hash(b))
        assert tree.proof(0) == [leaf_hash(b)]
        assert tree.proof(1) == [leaf_hash(a)]

    def test_odd_node_is_promoted_unchanged(self):
        """With 3 leaves the last one climbs a level without being re-hashed."""
        a, b, c = contents(3)
        tree = MerkleTree([a, b, c])
        left = node_hash(leaf_hash(a), leaf_hash(b))
        assert tree.root == node_hash(left, leaf_hash(c))
        # promoted leaf contributes no sibling at the level it was unpaired
        assert tree.proof(2) == [left]
        assert len(tree.proof(0)) == 2

    def test_five_leaves_promotion_across_levels(self):
        leaves = contents(5)
        h = [leaf_hash(x) for x in leaves]
        tree = MerkleTree(leaves)
        level1 = [node_hash(h[0], h[1]), node_hash(h[2], h[3]), h[4]]
        level2 = [node_hash(level1[0], level1[1]), h[4]]
        assert tree.root == node_hash(level2[0], h[4])
        assert tree.proof(4) == [level2[0]]

    def test_pairing_matters_for_root(self):
        a, b, c, d = contents(4)
        assert MerkleTree([a, b, c, d]).root != MerkleTree([a, c, b, d]).root

    def test_swapping_siblings_keeps_root(self):
        a, b, c, d = contents(4)
        root = MerkleTree([a, b, c, d]).root
        assert MerkleTree([b, a, c, d]).root == root
        assert MerkleTree([d, c, b, a]).root == root

    def test_merkle_root_helper(self):
        leaves = contents(6)
        assert merkle_root(leaves) == MerkleTree(leaves).root

    def test_empty_tree_rejected(self):
        with pytest.raises(ValueError):
            MerkleTree([])

    def test_proof_index_out_of_range(self):
        tree = MerkleTree(contents(3))
        with pytest.raises(IndexError):
            tree.proof(3)
        with pytest.raises(IndexError):
            tree.proof(-1)

    def test_leaf_count_and_leaf_node(self):
        leaves = contents(6)
        tree = MerkleTree(leaves)
        assert tree.leaf_count == 6
        assert tree.leaf_node(2) == leaf_hash(leaves[2])
        assert tree.depth == 3


class TestTamperDetection:

    def test_modified_leaf_fails(self):
        leaves = contents(8)
        tree = MerkleTree(leaves)
        forged = hashlib.sha256(b"forged").digest()
        assert not verify(forged, tree.proof(3), tree.root)

    def test_modified_proof_element_fails(self):
        leaves = contents(8)
        tree = MerkleTree(leaves)
        proof = tree.proof(3)
        proof[1] = bytes(32)
        assert not verify(leaves[3], proof, tree.root)

    def test_wrong_root_fails(self):
        leaves = contents(8)
        tree = MerkleTree(leaves)
        other = MerkleTree(contents(9))
        assert not verify(leaves[0], tree.proof(0), other.root)

    def test_proof_for_other_index_fails(self):
        leaves = contents(8)
        tree = MerkleTree(leaves)
        assert not verify(leaves[0], tree.proof(5), tree.root)

    def test_internal_node_cannot_pose_as_leaf(self):
        """Second-preimage attempt: present an internal node as leaf content."""
        leaves = contents(4)
        tree = MerkleTree(leaves)
        h = [leaf_hash(x) for x in leaves]
        internal = node_hash(h[0], h[1])
        sibling = node_hash(h[2], h[3])
        assert tree.root == node_hash(internal, sibling)
        assert not verify(internal, [sibling], tree.root)
