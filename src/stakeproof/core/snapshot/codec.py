"""
Snapshot persistence.

Wire layout (little-endian, length-prefixed vectors):

    Snapshot   = root[32] | u32 n | LeafBundle * n | u64 slot
    LeafBundle = MetaLeaf | u32 m | StakeLeaf * m | u8 has_proof [| u32 k | hash[32] * k]
    MetaLeaf   = wallet[32] | validator[32] | sub_root[32] | u64 stake
    StakeLeaf  = wallet[32] | stake_account[32] | u64 stake

The content hash operators put in a Ballot is SHA-256 over the exact bytes
of the published file (compressed or not).
"""

import gzip
import hashlib
import io
import logging
import struct
from typing import List, Optional

from stakeproof.core.constants import HASH_SIZE, get_max_snapshot_bytes
from stakeproof.core.errors import ErrorCode, SnapshotError
from stakeproof.core.snapshot.leaves import LeafBundle, MetaLeaf, Snapshot, StakeLeaf

logger = logging.getLogger(__name__)

_U8 = struct.Struct("<B")
_U32 = struct.Struct("<I")
_U64 = struct.Struct("<Q")

GZIP_MAGIC = b"\x1f\x8b"


# =============================================================================
# ENCODING
# =============================================================================

def serialize(snapshot: Snapshot) -> bytes:
    out = io.BytesIO()
    out.write(snapshot.root)
    out.write(_U32.pack(len(snapshot.leaf_bundles)))
    for bundle in snapshot.leaf_bundles:
        meta = bundle.meta_leaf
        out.write(meta.delegate_wallet)
        out.write(meta.validator_id)
        out.write(meta.stake_sub_root)
        out.write(_U64.pack(meta.total_active_stake))

        out.write(_U32.pack(len(bundle.stake_leaves)))
        for leaf in bundle.stake_leaves:
            out.write(leaf.delegate_wallet)
            out.write(leaf.stake_account_id)
            out.write(_U64.pack(leaf.active_stake))

        if bundle.proof is None:
            out.write(_U8.pack(0))
        else:
            out.write(_U8.pack(1))
            out.write(_U32.pack(len(bundle.proof)))
            for node in bundle.proof:
                out.write(node)
    out.write(_U64.pack(snapshot.slot))
    return out.getvalue()


def compress(data: bytes) -> bytes:
    # mtime=0 keeps compressed bytes (and so the content hash) reproducible
    return gzip.compress(data, mtime=0)


def content_hash(data: bytes) -> bytes:
    """SHA-256 of published snapshot bytes."""
    return hashlib.sha256(data).digest()


def save(snapshot: Snapshot, path: str) -> bytes:
    """Write the raw encoding to `path`; returns its content hash."""
    data = serialize(snapshot)
    with open(path, "wb") as f:
        f.write(data)
    logger.info(f"Snapshot for slot {snapshot.slot} saved to {path} ({len(data)} bytes)")
    return content_hash(data)


def save_compressed(snapshot: Snapshot, path: str) -> bytes:
    """Write the gzip-compressed encoding to `path`; returns its content hash."""
    data = compress(serialize(snapshot))
    with open(path, "wb") as f:
        f.write(data)
    logger.info(f"Compressed snapshot for slot {snapshot.slot} saved to {path} ({len(data)} bytes)")
    return content_hash(data)


# =============================================================================
# DECODING
# =============================================================================

class _Reader:
    def __init__(self, data: bytes):
        self._data = data
        self._pos = 0

    def take(self, n: int) -> bytes:
        end = self._pos + n
        if end > len(self._data):
            raise SnapshotError(ErrorCode.SNAPSHOT_CORRUPT, "unexpected end of data")
        chunk = self._data[self._pos:end]
        self._pos = end
        return chunk

    def unpack(self, fmt: struct.Struct) -> int:
        return fmt.unpack(self.take(fmt.size))[0]

    def hash(self) -> bytes:
        return self.take(HASH_SIZE)

    @property
    def remaining(self) -> int:
        return len(self._data) - self._pos


def deserialize(data: bytes) -> Snapshot:
    reader = _Reader(data)
    root = reader.hash()

    bundles: List[LeafBundle] = []
    for _ in range(reader.unpack(_U32)):
        meta = MetaLeaf(
            delegate_wallet=reader.hash(),
            validator_id=reader.hash(),
            stake_sub_root=reader.hash(),
            total_active_stake=reader.unpack(_U64),
        )
        stake_leaves = tuple(
            StakeLeaf(
                delegate_wallet=reader.hash(),
                stake_account_id=reader.hash(),
                active_stake=reader.unpack(_U64),
            )
            for _ in range(reader.unpack(_U32))
        )
        proof: Optional[tuple] = None
        flag = reader.unpack(_U8)
        if flag == 1:
            proof = tuple(reader.hash() for _ in range(reader.unpack(_U32)))
        elif flag != 0:
            raise SnapshotError(ErrorCode.SNAPSHOT_CORRUPT, f"bad option tag {flag}")
        bundles.append(LeafBundle(meta_leaf=meta, stake_leaves=stake_leaves, proof=proof))

    slot = reader.unpack(_U64)
    if reader.remaining:
        raise SnapshotError(ErrorCode.SNAPSHOT_CORRUPT, f"{reader.remaining} trailing bytes")
    return Snapshot(root=root, leaf_bundles=tuple(bundles), slot=slot)


def decompress_with_limit(data: bytes, max_size: Optional[int] = None) -> bytes:
    """Gunzip `data`, refusing output larger than `max_size` bytes."""
    max_size = get_max_snapshot_bytes() if max_size is None else max_size
    out = io.BytesIO()
    total = 0
    try:
        with gzip.GzipFile(fileobj=io.BytesIO(data)) as decoder:
            while True:
                chunk = decoder.read(8192)
                if not chunk:
                    break
                total += len(chunk)
                if total > max_size:
                    raise SnapshotError(ErrorCode.SNAPSHOT_TOO_LARGE, f"limit {max_size} bytes")
                out.write(chunk)
    except (OSError, EOFError) as e:
        raise SnapshotError(ErrorCode.SNAPSHOT_CORRUPT, f"gzip: {e}") from e
    return out.getvalue()


def read_from_bytes(data: bytes, compressed: bool, max_size: Optional[int] = None) -> Snapshot:
    if compressed:
        data = decompress_with_limit(data, max_size)
    return deserialize(data)


def load(path: str, max_size: Optional[int] = None) -> Snapshot:
    """Read a snapshot file, detecting gzip by its magic bytes."""
    with open(path, "rb") as f:
        data = f.read()
    return read_from_bytes(data, compressed=data[:2] == GZIP_MAGIC, max_size=max_size)
