"""
Shared pytest fixtures for test suite.

Provides:
- Deterministic 32-byte keys and Ed25519 operator keys
- Sample delegation data (pooled stake, unresolved validator, inactive stake)
- Manual clock and a configured consensus engine
"""

import pytest
import os
import sys
import hashlib
from typing import Dict, List, Tuple

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from stakeproof.core.consensus.clock import ManualClock
from stakeproof.core.consensus.engine import ConsensusEngine
from stakeproof.core.proofs.attestation import load_operator_key, operator_id
from stakeproof.core.snapshot import DelegationRecord, SnapshotBuilder


NUM_OPERATORS = 8


def make_key(label: str) -> bytes:
    """Deterministic 32-byte key for a label."""
    return hashlib.sha256(label.encode()).digest()


# =============================================================================
# SAMPLE DELEGATIONS
# =============================================================================

# validator label -> [(stake account label, withdrawer label, active stake)]
SAMPLE_DELEGATIONS = {
    "vote-a": [
        ("stake-a1", "alice", 5_000),
        ("stake-a2", "bob", 12_000),
        ("stake-a3", "pool-authority", 40_000),
    ],
    "vote-b": [
        ("stake-b1", "alice", 7_500),
        ("stake-b2", "carol", 0),          # deactivated
        ("stake-b3", "dave", 1_000),
    ],
    "vote-c": [
        ("stake-c1", "erin", 2_500),        # validator withdrawer unknown
    ],
    "vote-d": [
        ("stake-d1", "frank", 0),           # only inactive stake
    ],
}

VALIDATOR_WITHDRAWERS = {
    "vote-a": "vote-a-owner",
    "vote-b": "vote-b-owner",
    "vote-d": "vote-d-owner",
}

POOL_OVERRIDES = {
    "pool-authority": "pool-operator",
}


def make_records(delegations: Dict[str, List[Tuple[str, str, int]]] = None) -> List[DelegationRecord]:
    delegations = SAMPLE_DELEGATIONS if delegations is None else delegations
    records = []
    for validator, entries in delegations.items():
        for stake_account, withdrawer, stake in entries:
            records.append(DelegationRecord(
                validator_id=make_key(validator),
                stake_account_id=make_key(stake_account),
                staker_id=make_key(withdrawer + "-staker"),
                withdrawer_id=make_key(withdrawer),
                active_stake=stake,
            ))
    return records


def make_builder(max_workers: int = 1) -> SnapshotBuilder:
    return SnapshotBuilder(
        validator_withdrawers={make_key(v): make_key(w) for v, w in VALIDATOR_WITHDRAWERS.items()},
        delegate_overrides={make_key(a): make_key(w) for a, w in POOL_OVERRIDES.items()},
        max_workers=max_workers,
    )


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def records():
    return make_records()


@pytest.fixture
def snapshot(records):
    """Snapshot of the sample delegations at slot 100."""
    return make_builder().build(records, slot=100)


@pytest.fixture
def clock():
    return ManualClock(slot=10, unix_timestamp=1_700_000_000)


@pytest.fixture
def operator_keys():
    """(private_key, operator_id) pairs, stable across runs."""
    keys = []
    for i in range(NUM_OPERATORS):
        private_key = load_operator_key(make_key(f"operator-{i}"))
        keys.append((private_key, operator_id(private_key)))
    return keys


@pytest.fixture
def operators(operator_keys):
    return [op for _, op in operator_keys]


@pytest.fixture
def authority():
    return make_key("authority")


@pytest.fixture
def tie_breaker():
    return make_key("tie-breaker")


@pytest.fixture
def engine(clock, authority, tie_breaker, operators):
    """Engine with 8 whitelisted operators, 6666 bps threshold, 1h rounds."""
    engine = ConsensusEngine(clock=clock)
    engine.init_config(
        authority,
        threshold_bps=6666,
        tie_breaker_authority=tie_breaker,
        vote_duration=3600,
    )
    engine.update_operator_whitelist(authority, operators_to_add=operators)
    return engine
