"""
Ballot value types and the fixed-capacity collection that holds them.
"""

from dataclasses import dataclass
from typing import Generic, Iterator, List, Optional, TypeVar

from stakeproof.core.constants import HASH_SIZE, ZERO_HASH
from stakeproof.core.errors import CapacityError
from stakeproof.core.merkle.hashing import require_hash

T = TypeVar("T")


@dataclass(frozen=True)
class Ballot:
    """
    A candidate snapshot: its Merkle root plus the hash of its published bytes.

    The all-zero root is reserved and can never be cast.
    """
    merkle_root: bytes = ZERO_HASH
    content_hash: bytes = ZERO_HASH

    def __post_init__(self):
        require_hash(self.merkle_root, "merkle_root")
        require_hash(self.content_hash, "content_hash")

    @property
    def is_valid(self) -> bool:
        return self.merkle_root != ZERO_HASH

    @classmethod
    def from_hex(cls, merkle_root: str, content_hash: str) -> "Ballot":
        return cls(bytes.fromhex(merkle_root), bytes.fromhex(content_hash))

    def to_bytes(self) -> bytes:
        """Submission payload: merkle_root[32] | content_hash[32]."""
        return self.merkle_root + self.content_hash

    @classmethod
    def from_bytes(cls, payload: bytes) -> "Ballot":
        if len(payload) != 2 * HASH_SIZE:
            raise ValueError(f"ballot payload must be {2 * HASH_SIZE} bytes")
        return cls(payload[:HASH_SIZE], payload[HASH_SIZE:])

    def to_dict(self) -> dict:
        return {
            "merkle_root": self.merkle_root.hex(),
            "content_hash": self.content_hash.hex(),
        }


@dataclass
class BallotTally:
    """Votes for one distinct ballot. `index` never changes once assigned."""
    index: int
    ballot: Ballot
    vote_count: int = 0

    def to_dict(self) -> dict:
        return {
            "index": self.index,
            "ballot": self.ballot.to_dict(),
            "vote_count": self.vote_count,
        }


@dataclass(frozen=True)
class OperatorVote:
    operator_id: bytes
    round_slot: int
    tally_index: int

    def to_dict(self) -> dict:
        return {
            "operator_id": self.operator_id.hex(),
            "round_slot": self.round_slot,
            "tally_index": self.tally_index,
        }


class BoundedVec(Generic[T]):
    """
    Fixed-size buffer plus a length counter.

    Never grows past `capacity`: `push` on a full buffer raises CapacityError
    and leaves contents untouched. Callers that must stay atomic check
    `is_full` before mutating anything else.
    """

    def __init__(self, capacity: int, name: str = "vector"):
        self._slots: List[Optional[T]] = [None] * capacity
        self._len = 0
        self.name = name

    @property
    def capacity(self) -> int:
        return len(self._slots)

    @property
    def is_full(self) -> bool:
        return self._len == len(self._slots)

    def push(self, item: T) -> int:
        """Append `item`; returns its index."""
        if self.is_full:
            raise CapacityError(f"{self.name} holds at most {self.capacity} entries")
        self._slots[self._len] = item
        self._len += 1
        return self._len - 1

    def remove_at(self, index: int) -> T:
        """Remove entry `index`, shifting later entries down."""
        self._check_index(index)
        item = self._slots[index]
        for i in range(index, self._len - 1):
            self._slots[i] = self._slots[i + 1]
        self._len -= 1
        self._slots[self._len] = None
        return item

    def clear(self):
        self._slots = [None] * len(self._slots)
        self._len = 0

    def _check_index(self, index: int):
        if index < 0 or index >= self._len:
            raise IndexError(f"{self.name} index {index} out of range")

    def __getitem__(self, index: int) -> T:
        self._check_index(index)
        return self._slots[index]

    def __len__(self) -> int:
        return self._len

    def __iter__(self) -> Iterator[T]:
        for i in range(self._len):
            yield self._slots[i]

    def __contains__(self, item) -> bool:
        return any(existing == item for existing in self)

    def to_list(self) -> List[T]:
        return list(self)
