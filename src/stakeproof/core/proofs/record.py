"""
Proof records and two-hop verification.

A ProofRecord binds one validator's MetaLeaf and its inclusion proof to a
finalized ConsensusResult. Verification is separate and repeatable:

    hop 1: MetaLeaf   in global tree     (root = winning_ballot.merkle_root)
    hop 2: StakeLeaf  in validator tree  (root = meta_leaf.stake_sub_root)

The ballot's content_hash is an opaque audit value that sits outside both
trees; it plays no part in either hop.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

from stakeproof.core.constants import proof_record_size, storage_allowance
from stakeproof.core.consensus.ballot_box import ConsensusResult
from stakeproof.core.errors import ErrorCode, ProofError
from stakeproof.core.merkle.hashing import short
from stakeproof.core.merkle.tree import verify
from stakeproof.core.snapshot.leaves import MetaLeaf, StakeLeaf

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProofRecord:
    payer: bytes
    consensus_result: bytes           # address of the ConsensusResult
    meta_leaf: MetaLeaf
    meta_proof: Tuple[bytes, ...]
    reclaim_deadline: int             # unix timestamp; closable by anyone from here on
    allowance: int = 0                # storage allowance funded by the payer

    @property
    def size(self) -> int:
        return proof_record_size(len(self.meta_proof))

    def to_dict(self) -> dict:
        return {
            "payer": self.payer.hex(),
            "consensus_result": self.consensus_result.hex(),
            "meta_leaf": self.meta_leaf.to_dict(),
            "meta_proof": [p.hex() for p in self.meta_proof],
            "reclaim_deadline": self.reclaim_deadline,
            "allowance": self.allowance,
        }


@dataclass(frozen=True)
class Reclaim:
    """Allowance returned to the payer when a record is closed."""
    payer: bytes
    amount: int


def required_allowance(meta_proof: Sequence[bytes]) -> int:
    return storage_allowance(proof_record_size(len(meta_proof)))


def verify_proof(
    record: ProofRecord,
    result: ConsensusResult,
    stake_leaf: Optional[StakeLeaf] = None,
    stake_proof: Optional[Sequence[bytes]] = None,
):
    """
    Check `record` against the winning root of `result`, and optionally a
    stake leaf against the record's stake sub-root.

    Raises:
        ProofError(INVALID_MERKLE_INPUTS): only one of stake_leaf / stake_proof given
        ProofError(INVALID_MERKLE_PROOF):  either hop fails to reconstruct its root
    """
    if (stake_leaf is None) != (stake_proof is None):
        raise ProofError(ErrorCode.INVALID_MERKLE_INPUTS, "stake_leaf and stake_proof go together")

    meta_leaf = record.meta_leaf
    root = result.winning_ballot.merkle_root
    if not verify(meta_leaf.hash(), record.meta_proof, root):
        logger.debug(f"Meta proof failed for validator {short(meta_leaf.validator_id)} "
                     f"against round {result.round_id}")
        raise ProofError(ErrorCode.INVALID_MERKLE_PROOF, f"meta leaf {short(meta_leaf.validator_id)}")

    if stake_leaf is not None:
        if not verify(stake_leaf.hash(), stake_proof, meta_leaf.stake_sub_root):
            logger.debug(f"Stake proof failed for {short(stake_leaf.stake_account_id)} "
                         f"under validator {short(meta_leaf.validator_id)}")
            raise ProofError(ErrorCode.INVALID_MERKLE_PROOF, f"stake leaf {short(stake_leaf.stake_account_id)}")
