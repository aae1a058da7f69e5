"""
Operator upload attestations.

Before a snapshot is published for indexing, the operator signs

    message = u64_le(slot) || merkle_root.hex().encode()

with its Ed25519 key. Operator ids are raw 32-byte Ed25519 public keys, so
the same id that votes in a BallotBox verifies the attestation.
"""

import logging
from typing import Iterable, Tuple

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)

from stakeproof.core.merkle.hashing import u64_le, short

logger = logging.getLogger(__name__)


def upload_message(slot: int, merkle_root: bytes) -> bytes:
    return u64_le(slot) + merkle_root.hex().encode()


def operator_id(private_key: Ed25519PrivateKey) -> bytes:
    """Raw public key bytes used as the operator's id."""
    return private_key.public_key().public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )


def generate_operator_key() -> Tuple[Ed25519PrivateKey, bytes]:
    private_key = Ed25519PrivateKey.generate()
    return private_key, operator_id(private_key)


def load_operator_key(seed: bytes) -> Ed25519PrivateKey:
    """Deterministic key from a 32-byte seed."""
    return Ed25519PrivateKey.from_private_bytes(seed)


def sign_upload(private_key: Ed25519PrivateKey, slot: int, merkle_root: bytes) -> bytes:
    return private_key.sign(upload_message(slot, merkle_root))


def verify_upload_attestation(
    operator: bytes,
    slot: int,
    merkle_root: bytes,
    signature: bytes,
) -> bool:
    try:
        public_key = Ed25519PublicKey.from_public_bytes(operator)
        public_key.verify(signature, upload_message(slot, merkle_root))
        return True
    except (InvalidSignature, ValueError):
        logger.warning(f"Rejected upload attestation from {short(operator)} for slot {slot}")
        return False


def find_signer(
    operators: Iterable[bytes],
    slot: int,
    merkle_root: bytes,
    signature: bytes,
):
    """First operator whose key verifies the attestation, or None."""
    for operator in operators:
        try:
            public_key = Ed25519PublicKey.from_public_bytes(operator)
            public_key.verify(signature, upload_message(slot, merkle_root))
            return operator
        except (InvalidSignature, ValueError):
            continue
    return None
