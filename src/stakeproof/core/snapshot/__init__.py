"""
Stake snapshot construction and persistence.

- leaves: DelegationRecord, StakeLeaf, MetaLeaf, LeafBundle, Snapshot
- builder: SnapshotBuilder (records -> two-level commitment)
- codec: binary encoding, gzip, content hash
"""

from stakeproof.core.snapshot.leaves import (
    DelegationRecord,
    StakeLeaf,
    MetaLeaf,
    LeafBundle,
    Snapshot,
    stake_proof,
)
from stakeproof.core.snapshot.builder import SnapshotBuilder, BuildStats, build_snapshot

__all__ = [
    "DelegationRecord",
    "StakeLeaf",
    "MetaLeaf",
    "LeafBundle",
    "Snapshot",
    "stake_proof",
    "SnapshotBuilder",
    "BuildStats",
    "build_snapshot",
]
