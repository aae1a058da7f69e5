"""
Proof record storage with funded, reclaimable allowances.

Records are keyed by (consensus result, validator), so there is at most one
record per validator per finalized round. The payer funds the record's
storage allowance and gets it back on close. The payer may close at any
time; anyone else may close once the reclaim deadline has passed.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional, Sequence

from stakeproof.core.addressing import proof_record_address
from stakeproof.core.consensus.clock import Clock
from stakeproof.core.errors import ErrorCode, StateError, ValidationError
from stakeproof.core.merkle.hashing import require_hash, short
from stakeproof.core.proofs.record import ProofRecord, Reclaim, required_allowance
from stakeproof.core.snapshot.leaves import MetaLeaf

logger = logging.getLogger(__name__)


class ProofRegistry:
    def __init__(self):
        self._records: Dict[bytes, ProofRecord] = {}
        self._lock = threading.Lock()
        self.total_allowance = 0

    def create(
        self,
        payer: bytes,
        consensus_result: bytes,
        meta_leaf: MetaLeaf,
        meta_proof: Sequence[bytes],
        reclaim_deadline: int,
    ) -> bytes:
        """Store a record without verifying it. Returns the record address."""
        require_hash(payer, "payer")
        proof = tuple(require_hash(p, "proof element") for p in meta_proof)
        address = proof_record_address(consensus_result, meta_leaf.validator_id)
        allowance = required_allowance(proof)

        with self._lock:
            if address in self._records:
                raise StateError(ErrorCode.ACCOUNT_ALREADY_EXISTS, f"proof record {short(address)}")
            self._records[address] = ProofRecord(
                payer=payer,
                consensus_result=consensus_result,
                meta_leaf=meta_leaf,
                meta_proof=proof,
                reclaim_deadline=reclaim_deadline,
                allowance=allowance,
            )
            self.total_allowance += allowance

        logger.info(f"Proof record {short(address)} created for validator "
                    f"{short(meta_leaf.validator_id)} (allowance={allowance})")
        return address

    def get(self, address: bytes) -> Optional[ProofRecord]:
        with self._lock:
            return self._records.get(address)

    def require(self, address: bytes) -> ProofRecord:
        record = self.get(address)
        if record is None:
            raise StateError(ErrorCode.ACCOUNT_NOT_FOUND, f"proof record {short(address)}")
        return record

    def close(self, address: bytes, caller: bytes, clock: Clock) -> Reclaim:
        """Remove the record and return its allowance to the payer."""
        with self._lock:
            record = self._records.get(address)
            if record is None:
                raise StateError(ErrorCode.ACCOUNT_NOT_FOUND, f"proof record {short(address)}")
            if caller != record.payer and clock.unix_timestamp < record.reclaim_deadline:
                raise ValidationError(
                    ErrorCode.CLOSE_DEADLINE_NOT_REACHED,
                    f"{clock.unix_timestamp} < {record.reclaim_deadline}",
                )
            del self._records[address]
            self.total_allowance -= record.allowance

        logger.info(f"Proof record {short(address)} closed by {short(caller)}, "
                    f"{record.allowance} returned to {short(record.payer)}")
        return Reclaim(payer=record.payer, amount=record.allowance)

    @contextmanager
    def scoped(
        self,
        payer: bytes,
        consensus_result: bytes,
        meta_leaf: MetaLeaf,
        meta_proof: Sequence[bytes],
        reclaim_deadline: int,
        clock,
    ) -> Iterator[bytes]:
        """
        Create a record for the duration of a block, closing it on exit.

        `clock` is a Clock provider; the payer closes, so the deadline never
        blocks release.
        """
        address = self.create(payer, consensus_result, meta_leaf, meta_proof, reclaim_deadline)
        try:
            yield address
        finally:
            if self.get(address) is not None:
                self.close(address, payer, clock())

    def records_for(self, consensus_result: bytes) -> List[ProofRecord]:
        with self._lock:
            return [r for r in self._records.values() if r.consensus_result == consensus_result]

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
