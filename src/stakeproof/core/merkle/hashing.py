"""
Domain-separated hash commitments.

Leaves and internal nodes are hashed under different one-byte prefixes so an
internal node can never be passed off as a leaf (second-preimage forgery).
Internal nodes hash their children in sorted order, which makes proofs
direction-free: a proof is just the list of sibling hashes.
"""

import hashlib
import struct
from typing import Iterable

from stakeproof.core.constants import LEAF_PREFIX, NODE_PREFIX, HASH_SIZE


def hashv(parts: Iterable[bytes]) -> bytes:
    """SHA-256 over the concatenation of `parts`."""
    h = hashlib.sha256()
    for part in parts:
        h.update(part)
    return h.digest()


def leaf_hash(content: bytes) -> bytes:
    """H(0x00 || content)"""
    return hashv((LEAF_PREFIX, content))


def node_hash(a: bytes, b: bytes) -> bytes:
    """H(0x01 || min(a, b) || max(a, b)); symmetric in its arguments."""
    if a <= b:
        return hashv((NODE_PREFIX, a, b))
    return hashv((NODE_PREFIX, b, a))


def u64_le(value: int) -> bytes:
    return struct.pack("<Q", value)


def require_hash(value: bytes, name: str = "hash") -> bytes:
    """Check that `value` is a 32-byte digest or key."""
    if not isinstance(value, (bytes, bytearray)) or len(value) != HASH_SIZE:
        raise ValueError(f"{name} must be {HASH_SIZE} bytes")
    return bytes(value)


def short(key: bytes) -> str:
    """Log-friendly key prefix."""
    return key.hex()[:16] + "..."
