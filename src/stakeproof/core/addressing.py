"""
Deterministic per-entity addressing.

Every stored entity lives at `derive_address(label, *seeds)`, so anyone can
locate a round's ballot box, its consensus result or a proof record without
an index. Integer seeds are encoded as u64 little-endian.
"""

from typing import Union

from stakeproof.core.constants import (
    BALLOT_BOX_LABEL,
    CONSENSUS_RESULT_LABEL,
    PROOF_RECORD_LABEL,
)
from stakeproof.core.merkle.hashing import hashv, u64_le

Seed = Union[bytes, int]


def derive_address(label: bytes, *seeds: Seed) -> bytes:
    parts = [label]
    for seed in seeds:
        parts.append(u64_le(seed) if isinstance(seed, int) else seed)
    return hashv(parts)


def ballot_box_address(round_id: int) -> bytes:
    return derive_address(BALLOT_BOX_LABEL, round_id)


def consensus_result_address(round_id: int) -> bytes:
    return derive_address(CONSENSUS_RESULT_LABEL, round_id)


def proof_record_address(consensus_result: bytes, validator_id: bytes) -> bytes:
    return derive_address(PROOF_RECORD_LABEL, consensus_result, validator_id)
