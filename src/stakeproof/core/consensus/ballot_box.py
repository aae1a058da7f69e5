"""
Ballot Box - one voting round over competing snapshot roots.

ROUND LIFECYCLE:
================
    OPEN      decided_slot == 0. Operators cast and remove votes.
    DECIDED   decided_slot != 0. Set either when a ballot's share of the
              eligible voters reaches the threshold, or by the tie-breaker
              after expiry. The winner never changes afterwards.
    FINALIZED Winner copied into a ConsensusResult. Terminal.

QUORUM RULE:
============
    tally_bps = vote_count * 10000 // eligible_voter_count
    decided when tally_bps >= threshold_bps

Both the eligible-voter set and threshold_bps are copied from the config when
the box is created; config edits do not reach a running round.

TALLY INDICES:
==============
Tallies are never compacted. A tally whose votes were all removed stays at
its index with vote_count 0, so an index quoted to the tie-breaker always
names the same ballot.

Every method checks all preconditions before mutating anything. A raised
error leaves the box exactly as it was.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import FrozenSet, Optional

from stakeproof.core.constants import (
    BPS_DENOMINATOR,
    MAX_BALLOT_TALLIES,
    MAX_OPERATOR_VOTES,
)
from stakeproof.core.consensus.ballot import Ballot, BallotTally, BoundedVec, OperatorVote
from stakeproof.core.consensus.clock import Clock
from stakeproof.core.errors import CapacityError, ErrorCode, StateError, ValidationError
from stakeproof.core.merkle.hashing import short

logger = logging.getLogger(__name__)


class BallotBoxState(Enum):
    OPEN = "open"
    DECIDED = "decided"
    FINALIZED = "finalized"


@dataclass(frozen=True)
class ConsensusResult:
    """Write-once record of a finalized round's winner."""
    round_id: int
    winning_ballot: Ballot

    def to_dict(self) -> dict:
        return {
            "round_id": self.round_id,
            "winning_ballot": self.winning_ballot.to_dict(),
        }


@dataclass
class BallotBox:
    round_id: int
    created_slot: int
    threshold_bps: int
    eligible_voters: FrozenSet[bytes]
    expiry_timestamp: int
    winning_ballot: Ballot = field(default_factory=Ballot)
    decided_slot: int = 0
    tie_breaker_used: bool = False
    finalized: bool = False
    operator_votes: BoundedVec = field(
        default_factory=lambda: BoundedVec(MAX_OPERATOR_VOTES, "operator votes")
    )
    ballot_tallies: BoundedVec = field(
        default_factory=lambda: BoundedVec(MAX_BALLOT_TALLIES, "ballot tallies")
    )

    @classmethod
    def open(
        cls,
        round_id: int,
        clock: Clock,
        threshold_bps: int,
        eligible_voters,
        vote_duration: int,
    ) -> "BallotBox":
        """New round with threshold and voter set frozen from the caller's copy."""
        if not eligible_voters:
            raise ValueError("a round needs at least one eligible voter")
        return cls(
            round_id=round_id,
            created_slot=clock.slot,
            threshold_bps=threshold_bps,
            eligible_voters=frozenset(eligible_voters),
            expiry_timestamp=clock.unix_timestamp + vote_duration,
        )

    # =========================================================================
    # STATE
    # =========================================================================

    @property
    def state(self) -> BallotBoxState:
        if self.finalized:
            return BallotBoxState.FINALIZED
        if self.decided_slot != 0:
            return BallotBoxState.DECIDED
        return BallotBoxState.OPEN

    @property
    def has_consensus(self) -> bool:
        return self.decided_slot != 0

    @property
    def eligible_voter_count(self) -> int:
        return len(self.eligible_voters)

    def has_expired(self, clock: Clock) -> bool:
        return clock.unix_timestamp >= self.expiry_timestamp

    def find_vote(self, operator: bytes) -> Optional[int]:
        for i, vote in enumerate(self.operator_votes):
            if vote.operator_id == operator:
                return i
        return None

    def find_tally(self, ballot: Ballot) -> Optional[BallotTally]:
        for tally in self.ballot_tallies:
            if tally.ballot == ballot:
                return tally
        return None

    def tally_bps(self, vote_count: int) -> int:
        return vote_count * BPS_DENOMINATOR // self.eligible_voter_count

    def _require_not_finalized(self):
        if self.finalized:
            raise StateError(ErrorCode.ROUND_FINALIZED, f"round {self.round_id}")

    def _require_open(self):
        self._require_not_finalized()
        if self.has_consensus:
            raise StateError(ErrorCode.CONSENSUS_REACHED, f"round {self.round_id}")

    # =========================================================================
    # OPERATIONS
    # =========================================================================

    def cast_vote(self, operator: bytes, ballot: Ballot, clock: Clock) -> BallotTally:
        """
        Record `operator`'s vote for `ballot`.

        Votes are accepted after a decision (until expiry) and counted, but
        never move `winning_ballot` or `decided_slot`.

        Returns the tally the vote landed in.
        """
        self._require_not_finalized()
        if operator not in self.eligible_voters:
            raise ValidationError(ErrorCode.OPERATOR_NOT_WHITELISTED, short(operator))
        if self.has_expired(clock):
            raise StateError(ErrorCode.VOTING_EXPIRED, f"round {self.round_id}")
        if not ballot.is_valid:
            raise ValidationError(ErrorCode.INVALID_BALLOT, "zero merkle root")
        if self.find_vote(operator) is not None:
            raise StateError(ErrorCode.OPERATOR_HAS_VOTED, short(operator))

        tally = self.find_tally(ballot)
        if tally is None and self.ballot_tallies.is_full:
            raise CapacityError(f"round {self.round_id} has {MAX_BALLOT_TALLIES} distinct ballots")
        if self.operator_votes.is_full:
            raise CapacityError(f"round {self.round_id} has {MAX_OPERATOR_VOTES} operator votes")

        if tally is None:
            tally = BallotTally(index=len(self.ballot_tallies), ballot=ballot)
            self.ballot_tallies.push(tally)
        tally.vote_count += 1

        self.operator_votes.push(OperatorVote(
            operator_id=operator,
            round_slot=clock.slot,
            tally_index=tally.index,
        ))

        logger.info(f"Vote recorded: {short(operator)} voted root "
                    f"{short(ballot.merkle_root)} in round {self.round_id} "
                    f"(tally {tally.index}: {tally.vote_count}/{self.eligible_voter_count})")

        if not self.has_consensus:
            share = self.tally_bps(tally.vote_count)
            if share >= self.threshold_bps:
                self.decided_slot = clock.slot
                self.winning_ballot = ballot
                logger.info(f"Consensus REACHED in round {self.round_id}: root "
                            f"{ballot.merkle_root.hex()} ({share} bps >= {self.threshold_bps} bps)")

        return tally

    def remove_vote(self, operator: bytes, clock: Clock) -> BallotTally:
        """Withdraw `operator`'s live vote. Only while undecided and unexpired."""
        self._require_open()
        if operator not in self.eligible_voters:
            raise ValidationError(ErrorCode.OPERATOR_NOT_WHITELISTED, short(operator))
        if self.has_expired(clock):
            raise StateError(ErrorCode.VOTING_EXPIRED, f"round {self.round_id}")
        position = self.find_vote(operator)
        if position is None:
            raise StateError(ErrorCode.OPERATOR_HAS_NOT_VOTED, short(operator))

        vote = self.operator_votes.remove_at(position)
        tally = self.ballot_tallies[vote.tally_index]
        tally.vote_count = max(0, tally.vote_count - 1)

        logger.info(f"Vote removed: {short(operator)} in round {self.round_id} "
                    f"(tally {tally.index}: {tally.vote_count})")
        return tally

    def set_tie_breaker(self, tally_index: int, clock: Clock) -> Ballot:
        """
        Decide an expired, undecided round by fiat.

        Any tallied ballot may be chosen, including one whose votes were all
        removed.
        """
        self._require_open()
        if not self.has_expired(clock):
            raise StateError(ErrorCode.VOTING_NOT_EXPIRED, f"round {self.round_id}")
        if tally_index < 0 or tally_index >= len(self.ballot_tallies):
            raise ValidationError(
                ErrorCode.INVALID_BALLOT_INDEX,
                f"{tally_index} (round {self.round_id} has {len(self.ballot_tallies)} tallies)",
            )

        ballot = self.ballot_tallies[tally_index].ballot
        self.winning_ballot = ballot
        self.decided_slot = clock.slot
        self.tie_breaker_used = True

        logger.info(f"Tie-breaker decided round {self.round_id}: tally {tally_index}, "
                    f"root {ballot.merkle_root.hex()}")
        return ballot

    def reset(self, clock: Clock):
        """Clear votes and tallies of a live round whose tally buffer is exhausted."""
        self._require_open()
        if self.has_expired(clock):
            raise StateError(ErrorCode.VOTING_EXPIRED, f"round {self.round_id}")
        if not self.ballot_tallies.is_full:
            raise StateError(
                ErrorCode.BALLOT_TALLIES_NOT_MAX_LENGTH,
                f"{len(self.ballot_tallies)}/{self.ballot_tallies.capacity}",
            )

        self.operator_votes.clear()
        self.ballot_tallies.clear()
        logger.warning(f"Round {self.round_id} reset: all votes and tallies cleared")

    def finalize(self) -> ConsensusResult:
        """Consume a decided round into its ConsensusResult."""
        self._require_not_finalized()
        if not self.has_consensus:
            raise StateError(ErrorCode.CONSENSUS_NOT_REACHED, f"round {self.round_id}")

        self.finalized = True
        logger.info(f"Round {self.round_id} finalized: root {self.winning_ballot.merkle_root.hex()}"
                    f"{' (tie-breaker)' if self.tie_breaker_used else ''}")
        return ConsensusResult(round_id=self.round_id, winning_ballot=self.winning_ballot)

    def to_dict(self) -> dict:
        return {
            "round_id": self.round_id,
            "state": self.state.value,
            "created_slot": self.created_slot,
            "threshold_bps": self.threshold_bps,
            "eligible_voter_count": self.eligible_voter_count,
            "expiry_timestamp": self.expiry_timestamp,
            "winning_ballot": self.winning_ballot.to_dict(),
            "decided_slot": self.decided_slot,
            "tie_breaker_used": self.tie_breaker_used,
            "operator_votes": [v.to_dict() for v in self.operator_votes],
            "ballot_tallies": [t.to_dict() for t in self.ballot_tallies],
        }
