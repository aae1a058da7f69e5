"""
Snapshot Builder

Turns raw delegation records into a two-level Merkle commitment.

BUILD FLOW:
===========
1. Drop delegations with zero active stake
2. Group the rest by validator
3. Per validator: map delegations to StakeLeaves (resolving the delegate
   wallet through the pooled-stake override map), sort by stake account,
   build the stake tree
4. Per validator: emit a MetaLeaf with the validator's own withdraw
   authority and summed stake (placeholder wallet if unresolved)
5. Sort MetaLeaves by validator id
6. Build the global tree
7. Package each MetaLeaf with its stake leaves and inclusion proof

DETERMINISM:
============
Only the declared sort keys order the output. Input order and the order in
which workers finish never matter, so independent operators processing the
same data converge on the same root.

Any failure while reading delegation records aborts the whole build; a
partial snapshot is never returned.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from stakeproof.core.constants import DEFAULT_KEY, MAX_STAKE, get_snapshot_workers
from stakeproof.core.errors import ErrorCode, SnapshotError
from stakeproof.core.merkle.hashing import short
from stakeproof.core.merkle.tree import MerkleTree
from stakeproof.core.snapshot.leaves import (
    DelegationRecord,
    LeafBundle,
    MetaLeaf,
    Snapshot,
    StakeLeaf,
)

logger = logging.getLogger(__name__)

WithdrawerLookup = Union[Mapping[bytes, bytes], Callable[[bytes], Optional[bytes]]]


@dataclass
class BuildStats:
    """Counters from the last build."""
    records_seen: int = 0
    records_inactive: int = 0
    validators: int = 0
    stake_accounts: int = 0
    unresolved_validators: int = 0
    overridden_wallets: int = 0

    def to_dict(self) -> dict:
        return {
            "records_seen": self.records_seen,
            "records_inactive": self.records_inactive,
            "validators": self.validators,
            "stake_accounts": self.stake_accounts,
            "unresolved_validators": self.unresolved_validators,
            "overridden_wallets": self.overridden_wallets,
        }


class SnapshotBuilder:
    """
    Builds Snapshots from delegation records.

    Usage:
        builder = SnapshotBuilder(
            validator_withdrawers={vote_id: withdrawer, ...},
            delegate_overrides={pool_withdraw_authority: operator_wallet},
        )
        snapshot = builder.build(records, slot=bank_slot)
    """

    def __init__(
        self,
        validator_withdrawers: Optional[WithdrawerLookup] = None,
        delegate_overrides: Optional[Mapping[bytes, bytes]] = None,
        max_workers: Optional[int] = None,
    ):
        """
        Args:
            validator_withdrawers: validator_id -> withdraw authority, as a
                mapping or a lookup callable returning None when unknown.
            delegate_overrides: withdraw authority -> delegate wallet for
                registered pooled-stake programs.
            max_workers: threads used for per-validator tree building
                (default from STAKEPROOF_SNAPSHOT_WORKERS). 1 = sequential.
        """
        self._validator_withdrawers = validator_withdrawers or {}
        # Resolved once per snapshot; later edits to the caller's map do not leak in
        self._delegate_overrides: Dict[bytes, bytes] = dict(delegate_overrides or {})
        self.max_workers = max_workers or get_snapshot_workers()
        self.stats = BuildStats()
        self._stats_lock = threading.Lock()

    # =========================================================================
    # RESOLUTION
    # =========================================================================

    def resolve_delegate_wallet(self, withdrawer_id: bytes) -> bytes:
        """Pooled-stake operator wallet if registered, else the withdrawer."""
        return self._delegate_overrides.get(withdrawer_id, withdrawer_id)

    def resolve_validator_wallet(self, validator_id: bytes) -> Optional[bytes]:
        lookup = self._validator_withdrawers
        if callable(lookup):
            return lookup(validator_id)
        return lookup.get(validator_id)

    # =========================================================================
    # BUILD
    # =========================================================================

    def build(self, records: Iterable[DelegationRecord], slot: int) -> Snapshot:
        """Build a snapshot; raises SnapshotError rather than return a partial one."""
        self.stats = BuildStats()
        grouped = self._group_active(records)
        if not grouped:
            raise SnapshotError(ErrorCode.SNAPSHOT_EMPTY, f"slot {slot}")

        validator_ids = sorted(grouped)
        entries = self._build_validator_entries(validator_ids, grouped)

        # Sort key is validator_id; worker completion order is irrelevant
        entries.sort(key=lambda entry: entry[0].validator_id)

        meta_tree = MerkleTree([meta.hash() for meta, _ in entries])
        bundles = tuple(
            LeafBundle(
                meta_leaf=meta,
                stake_leaves=stake_leaves,
                proof=tuple(meta_tree.proof(i)),
            )
            for i, (meta, stake_leaves) in enumerate(entries)
        )

        self.stats.validators = len(bundles)
        logger.info(f"Snapshot built for slot {slot}: root={meta_tree.root.hex()}, "
                    f"validators={self.stats.validators}, "
                    f"stake_accounts={self.stats.stake_accounts}")

        return Snapshot(root=meta_tree.root, leaf_bundles=bundles, slot=slot)

    def _group_active(
        self,
        records: Iterable[DelegationRecord],
    ) -> Dict[bytes, List[DelegationRecord]]:
        grouped: Dict[bytes, List[DelegationRecord]] = {}
        seen_accounts = set()

        try:
            for record in records:
                self.stats.records_seen += 1
                if not isinstance(record, DelegationRecord):
                    raise SnapshotError(
                        ErrorCode.SNAPSHOT_CORRUPT,
                        f"unexpected record type {type(record).__name__}",
                    )
                if record.stake_account_id in seen_accounts:
                    raise SnapshotError(
                        ErrorCode.SNAPSHOT_CORRUPT,
                        f"duplicate stake account {record.stake_account_id.hex()}",
                    )
                seen_accounts.add(record.stake_account_id)

                if record.active_stake == 0:
                    self.stats.records_inactive += 1
                    continue
                grouped.setdefault(record.validator_id, []).append(record)
        except SnapshotError:
            raise
        except Exception as e:
            logger.error(f"Failed reading delegation records after "
                         f"{self.stats.records_seen} entries: {e}")
            raise SnapshotError(ErrorCode.SNAPSHOT_INCOMPLETE, str(e)) from e

        return grouped

    def _build_validator_entries(
        self,
        validator_ids: List[bytes],
        grouped: Dict[bytes, List[DelegationRecord]],
    ) -> List[Tuple[MetaLeaf, Tuple[StakeLeaf, ...]]]:
        if self.max_workers <= 1 or len(validator_ids) <= 1:
            return [self._build_validator(v, grouped[v]) for v in validator_ids]

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = [
                executor.submit(self._build_validator, v, grouped[v])
                for v in validator_ids
            ]
            entries = []
            for future in futures:
                try:
                    entries.append(future.result())
                except SnapshotError:
                    raise
                except Exception as e:
                    logger.error(f"Validator tree build failed: {e}")
                    raise SnapshotError(ErrorCode.SNAPSHOT_INCOMPLETE, str(e)) from e
            return entries

    def _build_validator(
        self,
        validator_id: bytes,
        delegations: List[DelegationRecord],
    ) -> Tuple[MetaLeaf, Tuple[StakeLeaf, ...]]:
        """Stake tree and MetaLeaf for one validator."""
        stake_leaves = []
        total = 0
        overridden = 0
        for delegation in delegations:
            wallet = self.resolve_delegate_wallet(delegation.withdrawer_id)
            if wallet != delegation.withdrawer_id:
                overridden += 1
            stake_leaves.append(StakeLeaf(
                delegate_wallet=wallet,
                stake_account_id=delegation.stake_account_id,
                active_stake=delegation.active_stake,
            ))
            total += delegation.active_stake

        if total > MAX_STAKE:
            raise SnapshotError(
                ErrorCode.SNAPSHOT_CORRUPT,
                f"active stake of validator {validator_id.hex()} overflows u64",
            )

        stake_leaves.sort(key=lambda leaf: leaf.stake_account_id)
        stake_tree = MerkleTree([leaf.hash() for leaf in stake_leaves])

        wallet = self.resolve_validator_wallet(validator_id)
        if wallet is None:
            logger.warning(f"Missing withdraw authority for validator {short(validator_id)}, "
                           f"using default delegate wallet")
            wallet = DEFAULT_KEY
            with self._stats_lock:
                self.stats.unresolved_validators += 1

        with self._stats_lock:
            self.stats.stake_accounts += len(stake_leaves)
            self.stats.overridden_wallets += overridden

        logger.debug(f"Validator {short(validator_id)}: {len(stake_leaves)} stake accounts, "
                     f"active_stake={total}")

        meta = MetaLeaf(
            delegate_wallet=wallet,
            validator_id=validator_id,
            stake_sub_root=stake_tree.root,
            total_active_stake=total,
        )
        return meta, tuple(stake_leaves)


def build_snapshot(
    records: Iterable[DelegationRecord],
    slot: int,
    validator_withdrawers: Optional[WithdrawerLookup] = None,
    delegate_overrides: Optional[Mapping[bytes, bytes]] = None,
    max_workers: Optional[int] = None,
) -> Snapshot:
    """One-shot convenience wrapper around SnapshotBuilder."""
    builder = SnapshotBuilder(
        validator_withdrawers=validator_withdrawers,
        delegate_overrides=delegate_overrides,
        max_workers=max_workers,
    )
    return builder.build(records, slot)
