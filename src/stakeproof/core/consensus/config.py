"""
Consensus configuration: who may vote, how much agreement wins, who breaks ties.

Only the authority mutates the config. Authority transfer is two-phase: the
current authority proposes a successor, and the successor finalizes.
BallotBoxes copy what they need at creation, so edits here never reach a
round that is already running.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional, Tuple

from stakeproof.core.constants import (
    DEFAULT_THRESHOLD_BPS,
    DEFAULT_VOTE_DURATION,
    MAX_OPERATORS,
    is_valid_threshold_bps,
    is_valid_vote_duration,
)
from stakeproof.core.consensus.ballot import BoundedVec
from stakeproof.core.errors import CapacityError, ErrorCode, ValidationError
from stakeproof.core.merkle.hashing import require_hash, short

logger = logging.getLogger(__name__)


def require_key(value: bytes, name: str) -> bytes:
    try:
        return require_hash(value, name)
    except ValueError as e:
        raise ValidationError(ErrorCode.INVALID_KEY, str(e)) from e


@dataclass
class ConsensusConfig:
    authority: bytes
    tie_breaker_authority: Optional[bytes] = None
    threshold_bps: int = DEFAULT_THRESHOLD_BPS
    vote_duration: int = DEFAULT_VOTE_DURATION
    proposed_authority: Optional[bytes] = None
    next_round_id: int = 0
    whitelisted_operators: BoundedVec = field(
        default_factory=lambda: BoundedVec(MAX_OPERATORS, "operator whitelist")
    )

    def __post_init__(self):
        require_key(self.authority, "authority")
        if self.tie_breaker_authority is None:
            self.tie_breaker_authority = self.authority
        if not is_valid_threshold_bps(self.threshold_bps):
            raise ValidationError(ErrorCode.INVALID_THRESHOLD, str(self.threshold_bps))
        if not is_valid_vote_duration(self.vote_duration):
            raise ValidationError(ErrorCode.INVALID_VOTE_DURATION, str(self.vote_duration))

    # =========================================================================
    # CHECKS
    # =========================================================================

    def contains_operator(self, operator: bytes) -> bool:
        return operator in self.whitelisted_operators

    def require_operator(self, operator: bytes):
        if not self.contains_operator(operator):
            raise ValidationError(ErrorCode.OPERATOR_NOT_WHITELISTED, short(operator))

    def require_authority(self, caller: bytes):
        if caller != self.authority:
            raise ValidationError(ErrorCode.UNAUTHORIZED, f"{short(caller)} is not the authority")

    def require_tie_breaker(self, caller: bytes):
        if caller != self.tie_breaker_authority:
            raise ValidationError(ErrorCode.UNAUTHORIZED, f"{short(caller)} is not the tie-breaker")

    def eligible_voters(self) -> Tuple[bytes, ...]:
        """Copy of the current whitelist, for freezing into a new round."""
        return tuple(self.whitelisted_operators)

    # =========================================================================
    # MUTATIONS
    # =========================================================================

    def update_operator_whitelist(
        self,
        caller: bytes,
        operators_to_add: Optional[Iterable[bytes]] = None,
        operators_to_remove: Optional[Iterable[bytes]] = None,
    ):
        """Remove, then add. Rejects any key named in both lists."""
        self.require_authority(caller)
        to_add = [require_key(op, "operator") for op in (operators_to_add or [])]
        to_remove = set(require_key(op, "operator") for op in (operators_to_remove or []))

        overlap = to_remove.intersection(to_add)
        if overlap:
            raise ValidationError(
                ErrorCode.OVERLAPPING_WHITELIST_ENTRIES,
                ", ".join(short(op) for op in sorted(overlap)),
            )

        remaining = [op for op in self.whitelisted_operators if op not in to_remove]
        for op in to_add:
            if op not in remaining:
                remaining.append(op)
        if len(remaining) > self.whitelisted_operators.capacity:
            raise CapacityError(
                f"whitelist would hold {len(remaining)} operators "
                f"(max {self.whitelisted_operators.capacity})"
            )

        self.whitelisted_operators.clear()
        for op in remaining:
            self.whitelisted_operators.push(op)

        logger.info(f"Operator whitelist updated: +{len(to_add)} -{len(to_remove)} "
                    f"(now {len(self.whitelisted_operators)})")

    def update(
        self,
        caller: bytes,
        proposed_authority: Optional[bytes] = None,
        threshold_bps: Optional[int] = None,
        tie_breaker_authority: Optional[bytes] = None,
        vote_duration: Optional[int] = None,
    ):
        """Apply any subset of settings; nothing changes unless all are valid."""
        self.require_authority(caller)
        if proposed_authority is not None:
            require_key(proposed_authority, "proposed_authority")
        if tie_breaker_authority is not None:
            require_key(tie_breaker_authority, "tie_breaker_authority")
        if threshold_bps is not None and not is_valid_threshold_bps(threshold_bps):
            raise ValidationError(ErrorCode.INVALID_THRESHOLD, str(threshold_bps))
        if vote_duration is not None and not is_valid_vote_duration(vote_duration):
            raise ValidationError(ErrorCode.INVALID_VOTE_DURATION, str(vote_duration))

        if proposed_authority is not None:
            self.proposed_authority = proposed_authority
            logger.info(f"Authority transfer proposed to {short(proposed_authority)}")
        if threshold_bps is not None:
            self.threshold_bps = threshold_bps
        if tie_breaker_authority is not None:
            self.tie_breaker_authority = tie_breaker_authority
        if vote_duration is not None:
            self.vote_duration = vote_duration

    def finalize_proposed_authority(self, caller: bytes):
        """Second phase of authority transfer, signed by the proposed party."""
        if self.proposed_authority is None or caller != self.proposed_authority:
            raise ValidationError(ErrorCode.UNAUTHORIZED, f"{short(caller)} is not the proposed authority")
        self.authority = caller
        self.proposed_authority = None
        logger.info(f"Authority transferred to {short(caller)}")

    def allocate_round_id(self) -> int:
        round_id = self.next_round_id
        self.next_round_id += 1
        return round_id

    def to_dict(self) -> dict:
        return {
            "authority": self.authority.hex(),
            "proposed_authority": self.proposed_authority.hex() if self.proposed_authority else None,
            "whitelisted_operators": [op.hex() for op in self.whitelisted_operators],
            "threshold_bps": self.threshold_bps,
            "tie_breaker_authority": self.tie_breaker_authority.hex(),
            "vote_duration": self.vote_duration,
            "next_round_id": self.next_round_id,
        }
