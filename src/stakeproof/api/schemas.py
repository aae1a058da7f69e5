from pydantic import BaseModel, Field, field_validator
from typing import Optional, List


def _hex32(value: str) -> str:
    try:
        raw = bytes.fromhex(value)
    except ValueError:
        raise ValueError("must be hex")
    if len(raw) != 32:
        raise ValueError("must encode 32 bytes")
    return value.lower()


# =============================================================================
# BALLOT SCHEMAS
# =============================================================================

class BallotPayload(BaseModel):
    """Operator vote submission"""
    merkle_root: str = Field(..., description="Hex snapshot root (64 chars)")
    content_hash: str = Field(..., description="Hex SHA-256 of the published file")

    @field_validator("merkle_root", "content_hash")
    @classmethod
    def check_hex(cls, v: str) -> str:
        return _hex32(v)

    def to_bytes(self) -> bytes:
        return bytes.fromhex(self.merkle_root) + bytes.fromhex(self.content_hash)


# =============================================================================
# SNAPSHOT SCHEMAS
# =============================================================================

class SnapshotMetaResponse(BaseModel):
    network: str
    slot: int
    merkle_root: str
    content_hash: str
    uploader: Optional[str] = None  # Attesting operator, when known


class MetaLeafResponse(BaseModel):
    delegate_wallet: str
    validator_id: str
    stake_sub_root: str
    total_active_stake: int


class StakeLeafResponse(BaseModel):
    delegate_wallet: str
    stake_account_id: str
    active_stake: int


class StakeEntryResponse(StakeLeafResponse):
    validator_id: str  # Vote account the stake is delegated to


class VoterSummaryResponse(BaseModel):
    """Everything a delegate wallet can vote with at one slot"""
    network: str
    slot: int
    delegate_wallet: str
    validators: List[MetaLeafResponse] = []
    stake_accounts: List[StakeEntryResponse] = []
    total_active_stake: int = 0


# =============================================================================
# PROOF SCHEMAS
# =============================================================================

class VoteAccountProofResponse(BaseModel):
    """MetaLeaf and its path to the snapshot root"""
    network: str
    slot: int
    merkle_root: str
    meta_leaf: MetaLeafResponse
    meta_proof: List[str]


class StakeAccountProofResponse(BaseModel):
    """StakeLeaf, its path to the stake sub-root, and the owning vote account"""
    network: str
    slot: int
    merkle_root: str
    validator_id: str
    stake_leaf: StakeLeafResponse
    stake_proof: List[str]
