"""
Operator Ballot Consensus

Whitelisted operators vote on which snapshot root is canonical:

1. **ConsensusConfig**: whitelist, quorum threshold, tie-breaker, authority transfer
2. **BallotBox**: one round, OPEN -> DECIDED -> FINALIZED

ConsensusEngine (stakeproof.core.consensus.engine) runs every operation in
order and also hosts the proof records.

Quorum:
=======
- A round freezes the whitelist and threshold when it opens
- tally_bps = votes * 10000 // eligible operators
- The first ballot reaching threshold_bps wins; the winner never changes
- Expired, undecided rounds are settled by the tie-breaker authority
"""

from stakeproof.core.consensus.ballot import Ballot, BallotTally, OperatorVote, BoundedVec
from stakeproof.core.consensus.ballot_box import BallotBox, BallotBoxState, ConsensusResult
from stakeproof.core.consensus.clock import Clock, SystemClock, ManualClock
from stakeproof.core.consensus.config import ConsensusConfig

__all__ = [
    "Ballot",
    "BallotTally",
    "OperatorVote",
    "BoundedVec",
    "BallotBox",
    "BallotBoxState",
    "ConsensusResult",
    "Clock",
    "SystemClock",
    "ManualClock",
    "ConsensusConfig",
]
