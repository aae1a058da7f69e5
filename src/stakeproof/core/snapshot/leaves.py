"""
Snapshot data model.

Two leaf layers make up a snapshot:

    StakeLeaf  - one per active delegation, grouped under its validator and
                 committed into a per-validator stake tree
    MetaLeaf   - one per validator, embedding the stake tree root, committed
                 into the global tree whose root is voted on

A LeafBundle carries a MetaLeaf, its sorted StakeLeaves and the MetaLeaf's
inclusion proof, so any single validator's data can be proven without the
rest of the snapshot.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from stakeproof.core.constants import DEFAULT_KEY, MAX_STAKE
from stakeproof.core.merkle.hashing import hashv, u64_le, require_hash
from stakeproof.core.merkle.tree import MerkleTree


@dataclass(frozen=True)
class DelegationRecord:
    """Raw per-account delegation as extracted from ledger state."""
    validator_id: bytes
    stake_account_id: bytes
    staker_id: bytes
    withdrawer_id: bytes
    active_stake: int

    def __post_init__(self):
        for name in ("validator_id", "stake_account_id", "staker_id", "withdrawer_id"):
            require_hash(getattr(self, name), name)
        if not isinstance(self.active_stake, int) or not 0 <= self.active_stake <= MAX_STAKE:
            raise ValueError("active_stake must be an integer in [0, 2^64)")


@dataclass(frozen=True)
class StakeLeaf:
    delegate_wallet: bytes
    stake_account_id: bytes
    active_stake: int

    def hash(self) -> bytes:
        """Leaf content committed into the stake tree."""
        return hashv((
            self.delegate_wallet,
            self.stake_account_id,
            u64_le(self.active_stake),
        ))

    def to_dict(self) -> dict:
        return {
            "delegate_wallet": self.delegate_wallet.hex(),
            "stake_account_id": self.stake_account_id.hex(),
            "active_stake": self.active_stake,
        }


@dataclass(frozen=True)
class MetaLeaf:
    delegate_wallet: bytes
    validator_id: bytes
    stake_sub_root: bytes
    total_active_stake: int

    def hash(self) -> bytes:
        """Leaf content committed into the global tree."""
        return hashv((
            self.delegate_wallet,
            self.validator_id,
            self.stake_sub_root,
            u64_le(self.total_active_stake),
        ))

    @property
    def has_delegate(self) -> bool:
        """False for placeholders whose withdraw authority was unresolved."""
        return self.delegate_wallet != DEFAULT_KEY

    def to_dict(self) -> dict:
        return {
            "delegate_wallet": self.delegate_wallet.hex(),
            "validator_id": self.validator_id.hex(),
            "stake_sub_root": self.stake_sub_root.hex(),
            "total_active_stake": self.total_active_stake,
        }


@dataclass(frozen=True)
class LeafBundle:
    meta_leaf: MetaLeaf
    stake_leaves: Tuple[StakeLeaf, ...]
    proof: Optional[Tuple[bytes, ...]] = None

    def stake_tree(self) -> MerkleTree:
        return MerkleTree([leaf.hash() for leaf in self.stake_leaves])

    def stake_index(self, stake_account_id: bytes) -> int:
        for i, leaf in enumerate(self.stake_leaves):
            if leaf.stake_account_id == stake_account_id:
                return i
        raise KeyError(stake_account_id.hex())

    def stake_proof(self, index: int) -> List[bytes]:
        """Proof of stake leaf `index` against `meta_leaf.stake_sub_root`."""
        return self.stake_tree().proof(index)


@dataclass(frozen=True)
class Snapshot:
    root: bytes
    leaf_bundles: Tuple[LeafBundle, ...]
    slot: int
    _by_validator: dict = field(default=None, init=False, repr=False, compare=False)

    def __post_init__(self):
        object.__setattr__(
            self,
            "_by_validator",
            {b.meta_leaf.validator_id: b for b in self.leaf_bundles},
        )

    @property
    def validator_count(self) -> int:
        return len(self.leaf_bundles)

    @property
    def stake_account_count(self) -> int:
        return sum(len(b.stake_leaves) for b in self.leaf_bundles)

    @property
    def total_active_stake(self) -> int:
        return sum(b.meta_leaf.total_active_stake for b in self.leaf_bundles)

    def bundle_for(self, validator_id: bytes) -> Optional[LeafBundle]:
        return self._by_validator.get(validator_id)

    def find_stake(self, stake_account_id: bytes) -> Optional[Tuple[LeafBundle, int]]:
        """Locate a stake account: (owning bundle, index within it)."""
        for bundle in self.leaf_bundles:
            for i, leaf in enumerate(bundle.stake_leaves):
                if leaf.stake_account_id == stake_account_id:
                    return bundle, i
        return None

    def to_ballot(self, content_hash: bytes):
        """Ballot committing to this snapshot's root and serialized bytes."""
        from stakeproof.core.consensus.ballot import Ballot
        return Ballot(merkle_root=self.root, content_hash=content_hash)


def stake_proof(bundle: LeafBundle, stake_account_id: bytes) -> Tuple[StakeLeaf, List[bytes]]:
    """The bundle's leaf for `stake_account_id` and its path to the stake sub-root."""
    i = bundle.stake_index(stake_account_id)
    return bundle.stake_leaves[i], bundle.stake_proof(i)
