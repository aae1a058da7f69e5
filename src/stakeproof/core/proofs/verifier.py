"""
Snapshot & Proof Verifier - audit checks returning (is_valid, reason).

Two layers of checks:

1. Universal constraints (this class)
   - Proof shape: every element is a 32-byte hash, depth within bounds
   - Leaf bundle consistency: stake leaves sorted and unique, summed stake
     equals the MetaLeaf total, stake sub-root recomputes from the leaves
2. Hash-chain checks, delegated to merkle.verify

Unlike `verify_proof` (which raises on the consensus path), these helpers
are meant for third parties auditing a downloaded snapshot or a single
proof, where a readable reason matters more than an exception type.
"""

import logging
from typing import Optional, Sequence, Tuple

from stakeproof.core.constants import HASH_SIZE
from stakeproof.core.merkle.hashing import short
from stakeproof.core.merkle.tree import MerkleTree, verify
from stakeproof.core.snapshot.leaves import LeafBundle, MetaLeaf, Snapshot, StakeLeaf

logger = logging.getLogger(__name__)


# Trees over at most 2^64 leaves; anything deeper is malformed
MAX_PROOF_DEPTH = 64


class ProofVerifier:
    """
    Verifies snapshot contents and individual proofs.

    Usage:
        verifier = ProofVerifier()
        is_valid, reason = verifier.verify_snapshot(snapshot)
        is_valid, reason = verifier.verify_two_hop(meta_leaf, meta_proof, root,
                                                   stake_leaf, stake_proof)
    """

    def check_proof_shape(self, proof: Optional[Sequence[bytes]]) -> Tuple[bool, str]:
        if proof is None:
            return False, "Missing proof"
        if len(proof) > MAX_PROOF_DEPTH:
            return False, f"Proof depth {len(proof)} exceeds {MAX_PROOF_DEPTH}"
        for i, node in enumerate(proof):
            if not isinstance(node, (bytes, bytearray)) or len(node) != HASH_SIZE:
                return False, f"Proof element {i} is not a {HASH_SIZE}-byte hash"
        return True, "OK"

    def verify_meta(self, meta_leaf: MetaLeaf, proof: Sequence[bytes], root: bytes) -> Tuple[bool, str]:
        ok, reason = self.check_proof_shape(proof)
        if not ok:
            return False, reason
        if not verify(meta_leaf.hash(), proof, root):
            return False, f"Meta proof for validator {short(meta_leaf.validator_id)} does not reach root"
        return True, "OK"

    def verify_stake(self, stake_leaf: StakeLeaf, proof: Sequence[bytes], sub_root: bytes) -> Tuple[bool, str]:
        ok, reason = self.check_proof_shape(proof)
        if not ok:
            return False, reason
        if not verify(stake_leaf.hash(), proof, sub_root):
            return False, f"Stake proof for {short(stake_leaf.stake_account_id)} does not reach sub-root"
        return True, "OK"

    def verify_two_hop(
        self,
        meta_leaf: MetaLeaf,
        meta_proof: Sequence[bytes],
        root: bytes,
        stake_leaf: StakeLeaf,
        stake_proof: Sequence[bytes],
    ) -> Tuple[bool, str]:
        ok, reason = self.verify_meta(meta_leaf, meta_proof, root)
        if not ok:
            return False, reason
        return self.verify_stake(stake_leaf, stake_proof, meta_leaf.stake_sub_root)

    def verify_bundle(self, bundle: LeafBundle, root: bytes) -> Tuple[bool, str]:
        meta = bundle.meta_leaf
        leaves = bundle.stake_leaves
        if not leaves:
            return False, f"Validator {short(meta.validator_id)} has no stake leaves"

        keys = [leaf.stake_account_id for leaf in leaves]
        if any(a >= b for a, b in zip(keys, keys[1:])):
            return False, f"Stake leaves of {short(meta.validator_id)} not strictly sorted"

        total = sum(leaf.active_stake for leaf in leaves)
        if total != meta.total_active_stake:
            return False, (f"Validator {short(meta.validator_id)} stake mismatch: "
                           f"leaves sum to {total}, meta leaf says {meta.total_active_stake}")

        if bundle.stake_tree().root != meta.stake_sub_root:
            return False, f"Stake sub-root of {short(meta.validator_id)} does not match its leaves"

        return self.verify_meta(meta, bundle.proof, root)

    def verify_snapshot(self, snapshot: Snapshot) -> Tuple[bool, str]:
        """Every bundle consistent and proven, validators strictly sorted, root recomputes."""
        bundles = snapshot.leaf_bundles
        if not bundles:
            return False, "Snapshot has no leaf bundles"

        ids = [b.meta_leaf.validator_id for b in bundles]
        if any(a >= b for a, b in zip(ids, ids[1:])):
            return False, "Validators not strictly sorted"

        accounts = [leaf.stake_account_id for b in bundles for leaf in b.stake_leaves]
        if len(set(accounts)) != len(accounts):
            return False, "Stake account appears under more than one validator"

        for bundle in bundles:
            ok, reason = self.verify_bundle(bundle, snapshot.root)
            if not ok:
                logger.warning(f"Snapshot for slot {snapshot.slot} rejected: {reason}")
                return False, reason

        if MerkleTree([b.meta_leaf.hash() for b in bundles]).root != snapshot.root:
            return False, "Root does not recompute from meta leaves"

        return True, "OK"
