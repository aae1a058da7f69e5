"""
Membership proofs against finalized snapshot roots.

- record: ProofRecord and two-hop `verify_proof`
- registry: funded, reclaimable proof record storage
- verifier: (is_valid, reason) audits of snapshots and single proofs
- attestation: Ed25519 upload signatures from operators
- index: in-memory per-network snapshot index answering proof queries
"""

from stakeproof.core.proofs.record import ProofRecord, Reclaim, required_allowance, verify_proof
from stakeproof.core.proofs.registry import ProofRegistry
from stakeproof.core.proofs.verifier import ProofVerifier
from stakeproof.core.proofs.index import SnapshotIndex, SnapshotMeta, VoterSummary, validate_network

__all__ = [
    "ProofRecord",
    "Reclaim",
    "required_allowance",
    "verify_proof",
    "ProofRegistry",
    "ProofVerifier",
    "SnapshotIndex",
    "SnapshotMeta",
    "VoterSummary",
    "validate_network",
]
