"""
Error taxonomy for snapshot, consensus and proof operations.

Every failure carries an ErrorCode. The exception class tells the caller which
family it belongs to:

- ValidationError: bad input (ineligible voter, zero ballot, bad index, ...)
- StateError:      operation not allowed in the current lifecycle state
- CapacityError:   a bounded collection is full
- ProofError:      a hash chain does not reconstruct the expected root,
                   or the proof inputs are malformed
- SnapshotError:   snapshot build/decode failed as a whole

Nothing here is retried internally; callers decide whether to resubmit.
"""

from enum import Enum


class ErrorCode(Enum):
    """Stable error identifiers with human-readable messages."""
    OPERATOR_NOT_WHITELISTED = "Operator not whitelisted"
    OPERATOR_HAS_VOTED = "Operator has voted"
    OPERATOR_HAS_NOT_VOTED = "Operator has not voted"
    VOTING_EXPIRED = "Voting has expired"
    VOTING_NOT_EXPIRED = "Voting not expired"
    CONSENSUS_REACHED = "Consensus has reached"
    CONSENSUS_NOT_REACHED = "Consensus not reached"
    ROUND_FINALIZED = "Round already finalized"
    INVALID_BALLOT = "Invalid ballot"
    INVALID_BALLOT_INDEX = "Invalid ballot index"
    INVALID_MERKLE_INPUTS = "Invalid merkle inputs"
    INVALID_MERKLE_PROOF = "Invalid merkle proof"
    VEC_FULL = "Vector size exceeded"
    OVERLAPPING_WHITELIST_ENTRIES = "Overlapping operators in add and remove lists"
    BALLOT_TALLIES_NOT_MAX_LENGTH = "Ballot tallies not at max length"
    UNAUTHORIZED = "Signer is not authorized"
    INVALID_THRESHOLD = "Threshold must be in (0, 10000] bps"
    INVALID_VOTE_DURATION = "Vote duration must be positive"
    ACCOUNT_ALREADY_EXISTS = "Account already exists"
    ACCOUNT_NOT_FOUND = "Account not found"
    INVALID_NETWORK = "Unsupported network"
    INVALID_KEY = "Key must be 32 bytes"
    CLOSE_DEADLINE_NOT_REACHED = "Reclaim deadline not reached"
    SNAPSHOT_INCOMPLETE = "Delegation data incomplete"
    SNAPSHOT_EMPTY = "No active delegations"
    SNAPSHOT_CORRUPT = "Snapshot data corrupt"
    SNAPSHOT_TOO_LARGE = "Decompressed size limit exceeded"


class GovernanceError(Exception):
    """Base class; `code` identifies the failure."""

    def __init__(self, code: ErrorCode, detail: str = ""):
        self.code = code
        self.detail = detail
        message = code.value if not detail else f"{code.value}: {detail}"
        super().__init__(message)


class ValidationError(GovernanceError):
    pass


class StateError(GovernanceError):
    pass


class CapacityError(GovernanceError):
    def __init__(self, detail: str = ""):
        super().__init__(ErrorCode.VEC_FULL, detail)


class ProofError(GovernanceError):
    pass


class SnapshotError(GovernanceError):
    pass
