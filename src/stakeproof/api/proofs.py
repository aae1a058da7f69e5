"""
Proof Query API Endpoints
Serves stake snapshot metadata and Merkle proofs from an in-memory SnapshotIndex
"""
from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query
from typing import Optional
import logging

from stakeproof.api.schemas import (
    MetaLeafResponse,
    SnapshotMetaResponse,
    StakeAccountProofResponse,
    StakeEntryResponse,
    StakeLeafResponse,
    VoteAccountProofResponse,
    VoterSummaryResponse,
)
from stakeproof.core.constants import get_default_network
from stakeproof.core.errors import ErrorCode, GovernanceError
from stakeproof.core.proofs.index import SnapshotIndex
from stakeproof.version import __version__

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/proofs", tags=["proofs"])

_index: Optional[SnapshotIndex] = None


def set_index(index: SnapshotIndex):
    """Install the index the router reads from."""
    global _index
    _index = index


def get_index() -> SnapshotIndex:
    if _index is None:
        raise HTTPException(status_code=503, detail="Snapshot index not available")
    return _index


def _parse_key(value: str, name: str) -> bytes:
    try:
        raw = bytes.fromhex(value)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"{name} must be hex")
    if len(raw) != 32:
        raise HTTPException(status_code=400, detail=f"{name} must encode 32 bytes")
    return raw


def _http_error(e: GovernanceError) -> HTTPException:
    if e.code == ErrorCode.INVALID_NETWORK:
        return HTTPException(status_code=400, detail=f"Invalid network: {e.detail}")
    if e.code == ErrorCode.ACCOUNT_NOT_FOUND:
        return HTTPException(status_code=404, detail=f"Not found: {e.detail}")
    logger.error(f"Proof query failed: {e}")
    return HTTPException(status_code=500, detail=str(e))


@router.get("/meta", response_model=SnapshotMetaResponse)
async def get_meta(
    network: Optional[str] = Query(None, description="devnet, testnet or mainnet"),
    slot: Optional[int] = Query(None, ge=0, description="Snapshot slot (default: latest)"),
    index: SnapshotIndex = Depends(get_index),
):
    """Metadata of the selected snapshot"""
    network = network or get_default_network()
    try:
        meta = index.meta(network, slot)
    except GovernanceError as e:
        raise _http_error(e)
    return SnapshotMetaResponse(**meta.to_dict())


@router.get("/voter/{wallet}", response_model=VoterSummaryResponse)
async def get_voter(
    wallet: str,
    network: Optional[str] = Query(None),
    slot: Optional[int] = Query(None, ge=0),
    index: SnapshotIndex = Depends(get_index),
):
    """Vote accounts and stake accounts delegated to a wallet"""
    network = network or get_default_network()
    delegate_wallet = _parse_key(wallet, "wallet")
    try:
        meta = index.meta(network, slot)
        summary = index.voter_summary(network, delegate_wallet, meta.slot)
    except GovernanceError as e:
        raise _http_error(e)

    return VoterSummaryResponse(
        network=network,
        slot=meta.slot,
        delegate_wallet=wallet.lower(),
        validators=[MetaLeafResponse(**m.to_dict()) for m in summary.validators],
        stake_accounts=[
            StakeEntryResponse(validator_id=validator_id.hex(), **leaf.to_dict())
            for leaf, validator_id in summary.stake_accounts
        ],
        total_active_stake=summary.total_active_stake,
    )


@router.get("/proof/vote_account/{vote_account}", response_model=VoteAccountProofResponse)
async def get_vote_account_proof(
    vote_account: str,
    network: Optional[str] = Query(None),
    slot: Optional[int] = Query(None, ge=0),
    index: SnapshotIndex = Depends(get_index),
):
    """MetaLeaf and proof against the snapshot root"""
    network = network or get_default_network()
    validator_id = _parse_key(vote_account, "vote_account")
    try:
        meta = index.meta(network, slot)
        meta_leaf, proof = index.meta_proof(network, validator_id, meta.slot)
    except GovernanceError as e:
        raise _http_error(e)

    return VoteAccountProofResponse(
        network=network,
        slot=meta.slot,
        merkle_root=meta.merkle_root.hex(),
        meta_leaf=MetaLeafResponse(**meta_leaf.to_dict()),
        meta_proof=[p.hex() for p in proof],
    )


@router.get("/proof/stake_account/{stake_account}", response_model=StakeAccountProofResponse)
async def get_stake_account_proof(
    stake_account: str,
    network: Optional[str] = Query(None),
    slot: Optional[int] = Query(None, ge=0),
    index: SnapshotIndex = Depends(get_index),
):
    """StakeLeaf and proof against its vote account's stake sub-root"""
    network = network or get_default_network()
    stake_account_id = _parse_key(stake_account, "stake_account")
    try:
        meta = index.meta(network, slot)
        leaf, proof, validator_id = index.stake_proof(network, stake_account_id, meta.slot)
    except GovernanceError as e:
        raise _http_error(e)

    return StakeAccountProofResponse(
        network=network,
        slot=meta.slot,
        merkle_root=meta.merkle_root.hex(),
        validator_id=validator_id.hex(),
        stake_leaf=StakeLeafResponse(**leaf.to_dict()),
        stake_proof=[p.hex() for p in proof],
    )


def create_app(index: SnapshotIndex) -> FastAPI:
    """Standalone app serving `index`."""
    set_index(index)
    app = FastAPI(title="StakeProof", version=__version__)
    app.include_router(router)

    @app.get("/health")
    async def health():
        return {"status": "ok", "version": __version__}

    return app
