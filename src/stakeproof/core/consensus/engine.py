"""
Snapshot Consensus Engine

Hosts the operator consensus on which stake snapshot is canonical for a
ledger point, and the proof records that lean on the result.

CONSENSUS FLOW:
===============
1. Each operator builds the snapshot independently and publishes it
2. A whitelisted operator opens a round (BallotBox), freezing the current
   whitelist and threshold into it
3. Operators cast Ballot{merkle_root, content_hash}
4. If one ballot's share of eligible operators reaches threshold_bps, the
   round is decided on the spot
5. If the round expires undecided, the tie-breaker picks any tallied ballot
6. Anyone finalizes a decided round into a write-once ConsensusResult
7. Anyone may register ProofRecords against the result and verify stake or
   validator membership with two-hop proofs

EXECUTION MODEL:
================
Operations are applied one at a time under a single lock, mirroring a host
ledger that totally orders submitted instructions. Each operation reads the
clock once. There are no timers: expiry only matters when an operation runs.
A failed operation leaves every piece of state untouched.
"""

import logging
import threading
from typing import Callable, Dict, List, Optional, Sequence

from stakeproof.core.addressing import ballot_box_address, consensus_result_address
from stakeproof.core.constants import DEFAULT_THRESHOLD_BPS, DEFAULT_VOTE_DURATION
from stakeproof.core.consensus.ballot import Ballot, BallotTally
from stakeproof.core.consensus.ballot_box import BallotBox, BallotBoxState, ConsensusResult
from stakeproof.core.consensus.clock import Clock, SystemClock
from stakeproof.core.consensus.config import ConsensusConfig
from stakeproof.core.errors import ErrorCode, StateError
from stakeproof.core.merkle.hashing import short
from stakeproof.core.proofs.record import Reclaim, verify_proof
from stakeproof.core.proofs.registry import ProofRegistry
from stakeproof.core.snapshot.leaves import MetaLeaf, StakeLeaf

logger = logging.getLogger(__name__)


class ConsensusEngine:
    """
    Owns the config, every round, every result and the proof registry.

    Usage:
        engine = ConsensusEngine(clock=ManualClock())
        engine.init_config(authority)
        engine.update_operator_whitelist(authority, operators_to_add=ops)

        round_id = engine.init_ballot_box(ops[0])
        engine.cast_vote(ops[0], round_id, snapshot.to_ballot(content_hash))
        ...
        result = engine.finalize_ballot(round_id)
    """

    def __init__(self, clock: Optional[Callable[[], Clock]] = None):
        """
        Args:
            clock: Callable returning the current Clock. Defaults to
                   SystemClock (wall time, synthetic slots).
        """
        self._clock = clock or SystemClock()
        self.config: Optional[ConsensusConfig] = None

        self._ballot_boxes: Dict[int, BallotBox] = {}
        self._results: Dict[int, ConsensusResult] = {}
        self._results_by_address: Dict[bytes, ConsensusResult] = {}
        self.proofs = ProofRegistry()

        # One lock: operations are totally ordered, as on the host ledger
        self._lock = threading.RLock()

        self._on_consensus_reached: Optional[Callable[[BallotBox], None]] = None

    # =========================================================================
    # CONFIG
    # =========================================================================

    def init_config(
        self,
        authority: bytes,
        threshold_bps: int = DEFAULT_THRESHOLD_BPS,
        tie_breaker_authority: Optional[bytes] = None,
        vote_duration: int = DEFAULT_VOTE_DURATION,
    ) -> ConsensusConfig:
        with self._lock:
            if self.config is not None:
                raise StateError(ErrorCode.ACCOUNT_ALREADY_EXISTS, "consensus config")
            self.config = ConsensusConfig(
                authority=authority,
                tie_breaker_authority=tie_breaker_authority,
                threshold_bps=threshold_bps,
                vote_duration=vote_duration,
            )
        logger.info(f"Consensus config initialized: authority={short(authority)}, "
                    f"threshold={threshold_bps}bps, vote_duration={vote_duration}s")
        return self.config

    def _require_config(self) -> ConsensusConfig:
        if self.config is None:
            raise StateError(ErrorCode.ACCOUNT_NOT_FOUND, "consensus config")
        return self.config

    def update_operator_whitelist(
        self,
        caller: bytes,
        operators_to_add: Optional[Sequence[bytes]] = None,
        operators_to_remove: Optional[Sequence[bytes]] = None,
    ):
        with self._lock:
            self._require_config().update_operator_whitelist(caller, operators_to_add, operators_to_remove)

    def update_config(
        self,
        caller: bytes,
        proposed_authority: Optional[bytes] = None,
        threshold_bps: Optional[int] = None,
        tie_breaker_authority: Optional[bytes] = None,
        vote_duration: Optional[int] = None,
    ):
        with self._lock:
            self._require_config().update(
                caller,
                proposed_authority=proposed_authority,
                threshold_bps=threshold_bps,
                tie_breaker_authority=tie_breaker_authority,
                vote_duration=vote_duration,
            )

    def finalize_proposed_authority(self, caller: bytes):
        with self._lock:
            self._require_config().finalize_proposed_authority(caller)

    # =========================================================================
    # ROUNDS
    # =========================================================================

    def init_ballot_box(self, operator: bytes) -> int:
        """Open the next round. Returns its round id."""
        with self._lock:
            config = self._require_config()
            config.require_operator(operator)
            clock = self._clock()

            round_id = config.next_round_id
            box = BallotBox.open(
                round_id=round_id,
                clock=clock,
                threshold_bps=config.threshold_bps,
                eligible_voters=config.eligible_voters(),
                vote_duration=config.vote_duration,
            )
            config.allocate_round_id()
            self._ballot_boxes[round_id] = box

        logger.info(f"Round {round_id} opened by {short(operator)} at slot {clock.slot}: "
                    f"{box.eligible_voter_count} eligible operators, "
                    f"threshold={box.threshold_bps}bps, expires at {box.expiry_timestamp}")
        return round_id

    def _require_box(self, round_id: int) -> BallotBox:
        box = self._ballot_boxes.get(round_id)
        if box is None:
            raise StateError(ErrorCode.ACCOUNT_NOT_FOUND, f"round {round_id}")
        return box

    def cast_vote(self, operator: bytes, round_id: int, ballot: Ballot) -> BallotTally:
        with self._lock:
            box = self._require_box(round_id)
            was_decided = box.has_consensus
            tally = box.cast_vote(operator, ballot, self._clock())
            newly_decided = box.has_consensus and not was_decided

        if newly_decided:
            self._notify(box)
        return tally

    def remove_vote(self, operator: bytes, round_id: int) -> BallotTally:
        with self._lock:
            return self._require_box(round_id).remove_vote(operator, self._clock())

    def set_tie_breaker(self, caller: bytes, round_id: int, tally_index: int) -> Ballot:
        with self._lock:
            self._require_config().require_tie_breaker(caller)
            box = self._require_box(round_id)
            ballot = box.set_tie_breaker(tally_index, self._clock())

        self._notify(box)
        return ballot

    def reset_ballot_box(self, caller: bytes, round_id: int):
        with self._lock:
            self._require_config().require_tie_breaker(caller)
            self._require_box(round_id).reset(self._clock())

    def finalize_ballot(self, round_id: int) -> ConsensusResult:
        with self._lock:
            box = self._require_box(round_id)
            if round_id in self._results:
                raise StateError(ErrorCode.ACCOUNT_ALREADY_EXISTS, f"consensus result {round_id}")
            result = box.finalize()
            self._results[round_id] = result
            self._results_by_address[consensus_result_address(round_id)] = result
        return result

    def _notify(self, box: BallotBox):
        if self._on_consensus_reached:
            try:
                self._on_consensus_reached(box)
            except Exception as e:
                logger.error(f"Consensus callback error: {e}")

    # =========================================================================
    # PROOF RECORDS
    # =========================================================================

    def init_proof_record(
        self,
        payer: bytes,
        round_id: int,
        meta_leaf: MetaLeaf,
        meta_proof: Sequence[bytes],
        reclaim_deadline: int,
    ) -> bytes:
        """Register (meta_leaf, meta_proof) against a finalized round. Not verified here."""
        with self._lock:
            if round_id not in self._results:
                raise StateError(ErrorCode.ACCOUNT_NOT_FOUND, f"consensus result {round_id}")
            return self.proofs.create(
                payer,
                consensus_result_address(round_id),
                meta_leaf,
                meta_proof,
                reclaim_deadline,
            )

    def verify_proof(
        self,
        record_address: bytes,
        stake_leaf: Optional[StakeLeaf] = None,
        stake_proof: Optional[Sequence[bytes]] = None,
    ):
        """Raises ProofError unless the record (and optional stake leaf) verify."""
        with self._lock:
            record = self.proofs.require(record_address)
            result = self._results_by_address.get(record.consensus_result)
            if result is None:
                raise StateError(ErrorCode.ACCOUNT_NOT_FOUND,
                                 f"consensus result {short(record.consensus_result)}")
        verify_proof(record, result, stake_leaf, stake_proof)

    def close_proof_record(self, record_address: bytes, caller: bytes) -> Reclaim:
        with self._lock:
            return self.proofs.close(record_address, caller, self._clock())

    def proof_record_scope(
        self,
        payer: bytes,
        round_id: int,
        meta_leaf: MetaLeaf,
        meta_proof: Sequence[bytes],
        reclaim_deadline: int,
    ):
        """Context manager: record exists inside the block, allowance returned after."""
        with self._lock:
            if round_id not in self._results:
                raise StateError(ErrorCode.ACCOUNT_NOT_FOUND, f"consensus result {round_id}")
        return self.proofs.scoped(
            payer,
            consensus_result_address(round_id),
            meta_leaf,
            meta_proof,
            reclaim_deadline,
            self._clock,
        )

    # =========================================================================
    # QUERIES
    # =========================================================================

    def get_ballot_box(self, round_id: int) -> Optional[BallotBox]:
        with self._lock:
            return self._ballot_boxes.get(round_id)

    def get_consensus_result(self, round_id: int) -> Optional[ConsensusResult]:
        with self._lock:
            return self._results.get(round_id)

    def latest_result(self) -> Optional[ConsensusResult]:
        """Result of the highest finalized round."""
        with self._lock:
            if not self._results:
                return None
            return self._results[max(self._results)]

    @staticmethod
    def ballot_box_address(round_id: int) -> bytes:
        return ballot_box_address(round_id)

    @staticmethod
    def consensus_result_address(round_id: int) -> bytes:
        return consensus_result_address(round_id)

    def rounds_in_state(self, state: BallotBoxState) -> List[int]:
        with self._lock:
            return sorted(r for r, box in self._ballot_boxes.items() if box.state == state)

    def set_consensus_callback(self, callback: Callable[[BallotBox], None]):
        """
        Set callback for when a round becomes decided (threshold or tie-breaker).

        The callback receives the BallotBox.
        """
        self._on_consensus_reached = callback

    def get_stats(self) -> dict:
        with self._lock:
            config = self.config
            return {
                "operators": len(config.whitelisted_operators) if config else 0,
                "threshold_bps": config.threshold_bps if config else None,
                "next_round_id": config.next_round_id if config else 0,
                "rounds_open": sum(1 for b in self._ballot_boxes.values() if b.state == BallotBoxState.OPEN),
                "rounds_decided": sum(1 for b in self._ballot_boxes.values() if b.state == BallotBoxState.DECIDED),
                "rounds_finalized": len(self._results),
                "tie_breaks": sum(1 for b in self._ballot_boxes.values() if b.tie_breaker_used),
                "proof_records": len(self.proofs),
                "allowance_held": self.proofs.total_allowance,
            }
