"""
Snapshot Index - the proof query surface.

Holds verified snapshots per network and answers the lookups a downstream
party needs to prove membership without the full snapshot:

    voter_summary(wallet)      -> validator and stake entries delegated to a wallet
    meta_proof(validator)      -> (meta_leaf, meta_proof)
    stake_proof(stake_account) -> (stake_leaf, stake_proof, validator_id)

Every query is scoped by network and slot; slot=None means the latest
indexed slot for that network. The index has no link to consensus results,
so "latest" is the highest slot ingested, not the latest finalized round;
callers that need the finalized root pass its slot explicitly. Storage is
in-memory only.
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from stakeproof.core.constants import SUPPORTED_NETWORKS
from stakeproof.core.errors import ErrorCode, SnapshotError, StateError, ValidationError
from stakeproof.core.merkle.hashing import short
from stakeproof.core.proofs.attestation import find_signer
from stakeproof.core.proofs.verifier import ProofVerifier
from stakeproof.core.snapshot import codec
from stakeproof.core.snapshot.leaves import MetaLeaf, Snapshot, StakeLeaf

logger = logging.getLogger(__name__)


def validate_network(network: str):
    """Case-sensitive check against SUPPORTED_NETWORKS."""
    if network not in SUPPORTED_NETWORKS:
        logger.info(f"Invalid network '{network}'. Must be one of: {', '.join(SUPPORTED_NETWORKS)}")
        raise ValidationError(ErrorCode.INVALID_NETWORK, network)


@dataclass(frozen=True)
class SnapshotMeta:
    network: str
    slot: int
    merkle_root: bytes
    content_hash: bytes
    uploader: Optional[bytes] = None

    def to_dict(self) -> dict:
        return {
            "network": self.network,
            "slot": self.slot,
            "merkle_root": self.merkle_root.hex(),
            "content_hash": self.content_hash.hex(),
            "uploader": self.uploader.hex() if self.uploader else None,
        }


@dataclass
class VoterSummary:
    delegate_wallet: bytes
    validators: List[MetaLeaf] = field(default_factory=list)
    stake_accounts: List[Tuple[StakeLeaf, bytes]] = field(default_factory=list)

    @property
    def total_active_stake(self) -> int:
        return (sum(m.total_active_stake for m in self.validators)
                + sum(s.active_stake for s, _ in self.stake_accounts))


class _IndexedSnapshot:
    """One snapshot plus lookup tables; stake trees are built on first use."""

    def __init__(self, snapshot: Snapshot, meta: SnapshotMeta):
        self.snapshot = snapshot
        self.meta = meta
        self.stake_locations: Dict[bytes, Tuple[bytes, int]] = {}
        for bundle in snapshot.leaf_bundles:
            for i, leaf in enumerate(bundle.stake_leaves):
                self.stake_locations[leaf.stake_account_id] = (bundle.meta_leaf.validator_id, i)
        self._stake_trees = {}
        self._lock = threading.Lock()

    def stake_tree(self, validator_id: bytes):
        with self._lock:
            tree = self._stake_trees.get(validator_id)
            if tree is None:
                tree = self.snapshot.bundle_for(validator_id).stake_tree()
                self._stake_trees[validator_id] = tree
            return tree


class SnapshotIndex:
    """
    Usage:
        index = SnapshotIndex(trusted_operators=[op_id, ...])
        index.ingest("mainnet", file_bytes, merkle_root, slot, signature)
        leaf, proof, validator = index.stake_proof("mainnet", stake_account)
    """

    def __init__(
        self,
        trusted_operators: Optional[Iterable[bytes]] = None,
        verifier: Optional[ProofVerifier] = None,
    ):
        self.trusted_operators = tuple(trusted_operators) if trusted_operators is not None else None
        self.verifier = verifier or ProofVerifier()
        self._snapshots: Dict[str, Dict[int, _IndexedSnapshot]] = {}
        self._lock = threading.Lock()

    # =========================================================================
    # INGEST
    # =========================================================================

    def ingest(
        self,
        network: str,
        data: bytes,
        merkle_root: bytes,
        slot: int,
        signature: Optional[bytes] = None,
    ) -> SnapshotMeta:
        """
        Decode, authenticate and index a published snapshot file.

        When trusted operators are configured, `signature` must be a valid
        upload attestation from one of them over (slot, merkle_root).
        """
        validate_network(network)

        uploader = None
        if self.trusted_operators is not None:
            if signature is None:
                raise ValidationError(ErrorCode.UNAUTHORIZED, "missing upload attestation")
            uploader = find_signer(self.trusted_operators, slot, merkle_root, signature)
            if uploader is None:
                raise ValidationError(ErrorCode.UNAUTHORIZED, "attestation matches no trusted operator")

        snapshot = codec.read_from_bytes(data, compressed=data[:2] == codec.GZIP_MAGIC)
        if snapshot.root != merkle_root or snapshot.slot != slot:
            raise SnapshotError(
                ErrorCode.SNAPSHOT_CORRUPT,
                f"file holds root {short(snapshot.root)} at slot {snapshot.slot}, "
                f"attested {short(merkle_root)} at slot {slot}",
            )

        return self.add_snapshot(network, snapshot, codec.content_hash(data), uploader)

    def add_snapshot(
        self,
        network: str,
        snapshot: Snapshot,
        content_hash: bytes,
        uploader: Optional[bytes] = None,
    ) -> SnapshotMeta:
        """Index an already-decoded snapshot after checking it is self-consistent."""
        validate_network(network)
        ok, reason = self.verifier.verify_snapshot(snapshot)
        if not ok:
            raise SnapshotError(ErrorCode.SNAPSHOT_CORRUPT, reason)

        meta = SnapshotMeta(
            network=network,
            slot=snapshot.slot,
            merkle_root=snapshot.root,
            content_hash=content_hash,
            uploader=uploader,
        )
        with self._lock:
            by_slot = self._snapshots.setdefault(network, {})
            if snapshot.slot in by_slot:
                raise StateError(ErrorCode.ACCOUNT_ALREADY_EXISTS, f"{network} slot {snapshot.slot}")
            by_slot[snapshot.slot] = _IndexedSnapshot(snapshot, meta)

        logger.info(f"Indexed {network} snapshot for slot {snapshot.slot} with "
                    f"{snapshot.validator_count} vote accounts, "
                    f"{snapshot.stake_account_count} stake accounts")
        return meta

    # =========================================================================
    # QUERIES
    # =========================================================================

    def latest_slot(self, network: str) -> Optional[int]:
        validate_network(network)
        with self._lock:
            slots = self._snapshots.get(network)
            return max(slots) if slots else None

    def _select(self, network: str, slot: Optional[int]) -> _IndexedSnapshot:
        validate_network(network)
        with self._lock:
            slots = self._snapshots.get(network) or {}
            if slot is None:
                if not slots:
                    raise StateError(ErrorCode.ACCOUNT_NOT_FOUND, f"no snapshots for {network}")
                slot = max(slots)
            indexed = slots.get(slot)
        if indexed is None:
            raise StateError(ErrorCode.ACCOUNT_NOT_FOUND, f"{network} slot {slot}")
        return indexed

    def meta(self, network: str, slot: Optional[int] = None) -> SnapshotMeta:
        return self._select(network, slot).meta

    def voter_summary(self, network: str, delegate_wallet: bytes, slot: Optional[int] = None) -> VoterSummary:
        indexed = self._select(network, slot)
        summary = VoterSummary(delegate_wallet=delegate_wallet)
        for bundle in indexed.snapshot.leaf_bundles:
            if bundle.meta_leaf.delegate_wallet == delegate_wallet:
                summary.validators.append(bundle.meta_leaf)
            for leaf in bundle.stake_leaves:
                if leaf.delegate_wallet == delegate_wallet:
                    summary.stake_accounts.append((leaf, bundle.meta_leaf.validator_id))
        return summary

    def meta_proof(
        self,
        network: str,
        validator_id: bytes,
        slot: Optional[int] = None,
    ) -> Tuple[MetaLeaf, Tuple[bytes, ...]]:
        indexed = self._select(network, slot)
        bundle = indexed.snapshot.bundle_for(validator_id)
        if bundle is None:
            raise StateError(ErrorCode.ACCOUNT_NOT_FOUND, f"vote account {short(validator_id)}")
        return bundle.meta_leaf, bundle.proof

    def stake_proof(
        self,
        network: str,
        stake_account_id: bytes,
        slot: Optional[int] = None,
    ) -> Tuple[StakeLeaf, List[bytes], bytes]:
        indexed = self._select(network, slot)
        location = indexed.stake_locations.get(stake_account_id)
        if location is None:
            raise StateError(ErrorCode.ACCOUNT_NOT_FOUND, f"stake account {short(stake_account_id)}")
        validator_id, i = location
        leaf = indexed.snapshot.bundle_for(validator_id).stake_leaves[i]
        return leaf, indexed.stake_tree(validator_id).proof(i), validator_id
