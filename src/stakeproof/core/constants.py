"""
StakeProof - Centralized Configuration

This module defines ALL tunable constants for snapshot commitments, operator
ballot consensus and proof records. Values are referenced from here, never
hardcoded elsewhere.

=============================================================================
DESIGN PRINCIPLES
=============================================================================

1. DETERMINISM: Every operator must derive byte-identical roots from the same
   delegation data, so hashing prefixes and encodings live in one place.

2. BOUNDED STATE: Operator votes, ballot tallies and the operator whitelist
   have fixed capacities. Exceeding one is an error, never a truncation.

3. FROZEN ROUNDS: A ballot box copies its threshold and voter set at creation.
   Later config edits only affect rounds created afterwards.

=============================================================================
"""

import os

# =============================================================================
# HASHING
# =============================================================================

# Domain separation between leaf and internal-node inputs (second-preimage guard)
LEAF_PREFIX = b"\x00"
NODE_PREFIX = b"\x01"

HASH_SIZE = 32                       # SHA-256 digest / key width in bytes
ZERO_HASH = bytes(HASH_SIZE)         # Reserved "invalid" root and default key
DEFAULT_KEY = ZERO_HASH

MAX_STAKE = 2 ** 64 - 1              # Stake amounts are committed as u64

# =============================================================================
# CONSENSUS
# =============================================================================

BPS_DENOMINATOR = 10_000             # 100% in basis points
DEFAULT_THRESHOLD_BPS = 6666         # 2/3 quorum
DEFAULT_VOTE_DURATION = 24 * 60 * 60 # Seconds a round stays open for votes

# Fixed collection capacities
MAX_OPERATORS = 64                   # Whitelist size
MAX_OPERATOR_VOTES = 64              # Live operator votes per round
MAX_BALLOT_TALLIES = 64              # Distinct ballots per round

# Deterministic address labels
BALLOT_BOX_LABEL = b"BallotBox"
CONSENSUS_RESULT_LABEL = b"ConsensusResult"
PROOF_RECORD_LABEL = b"MetaMerkleProof"

# =============================================================================
# PROOF RECORDS (storage allowance)
# =============================================================================

# Record layout: payer(32) + consensus_result(32) + close_timestamp(8)
PROOF_RECORD_BASE_SIZE = 72
META_LEAF_SIZE = 32 + 32 + 32 + 8    # wallet + validator + sub-root + stake
PROOF_VEC_PREFIX_SIZE = 4            # u32 length prefix of the proof vector
RENT_PER_BYTE = 6960                 # Storage allowance units per byte held


def proof_record_size(proof_len: int) -> int:
    """Bytes held by a proof record carrying `proof_len` sibling hashes."""
    return PROOF_RECORD_BASE_SIZE + META_LEAF_SIZE + PROOF_VEC_PREFIX_SIZE + HASH_SIZE * proof_len


def storage_allowance(size: int) -> int:
    """Allowance a payer must fund to hold `size` bytes."""
    return size * RENT_PER_BYTE

# =============================================================================
# SNAPSHOTS & QUERY SURFACE
# =============================================================================

SUPPORTED_NETWORKS = ("devnet", "testnet", "mainnet")

# Zip-bomb guard for compressed snapshot payloads
DEFAULT_MAX_DECOMPRESSED_SNAPSHOT_BYTES = 256 * 1024 * 1024  # 256 MiB

DEFAULT_SNAPSHOT_WORKERS = 4


def env_parse(key: str, default, cast=int):
    """Parse an environment variable with `cast`, falling back to `default`."""
    raw = os.getenv(key)
    if raw is None:
        return default
    try:
        return cast(raw)
    except (TypeError, ValueError):
        return default


def get_max_snapshot_bytes() -> int:
    """Decompression cap, overridable via STAKEPROOF_MAX_SNAPSHOT_MB."""
    mb = env_parse("STAKEPROOF_MAX_SNAPSHOT_MB", None)
    if mb is None or mb < 0:
        return DEFAULT_MAX_DECOMPRESSED_SNAPSHOT_BYTES
    return mb * 1024 * 1024


def get_default_network() -> str:
    """Network used by the query surface when the caller names none."""
    return os.getenv("STAKEPROOF_DEFAULT_NETWORK", "mainnet")


def get_snapshot_workers() -> int:
    """Worker count for per-validator tree building."""
    workers = env_parse("STAKEPROOF_SNAPSHOT_WORKERS", DEFAULT_SNAPSHOT_WORKERS)
    return max(1, workers)


def is_valid_threshold_bps(threshold_bps: int) -> bool:
    """Threshold must lie in (0, 10000]."""
    return 0 < threshold_bps <= BPS_DENOMINATOR


def is_valid_vote_duration(duration: int) -> bool:
    """Vote duration must be positive."""
    return duration > 0
