"""
Tests for the snapshot index and the read-only proof API.
"""
import pytest
from fastapi.testclient import TestClient

from conftest import make_builder, make_key, make_records
from stakeproof.api.proofs import create_app
from stakeproof.core.errors import ErrorCode, SnapshotError, StateError, ValidationError
from stakeproof.core.merkle import verify
from stakeproof.core.proofs import SnapshotIndex
from stakeproof.core.proofs.attestation import generate_operator_key, sign_upload
from stakeproof.core.snapshot import MetaLeaf, Snapshot, codec


@pytest.fixture
def published(snapshot):
    """(file bytes, snapshot) as an operator would upload it."""
    return codec.compress(codec.serialize(snapshot)), snapshot


@pytest.fixture
def index(operator_keys, operators, published):
    data, snapshot = published
    index = SnapshotIndex(trusted_operators=operators)
    signature = sign_upload(operator_keys[0][0], snapshot.slot, snapshot.root)
    index.ingest("mainnet", data, snapshot.root, snapshot.slot, signature)
    return index


@pytest.fixture
def later_snapshot():
    """Smaller snapshot at slot 200: vote-a only."""
    records = make_records({"vote-a": [("stake-a1", "alice", 9_000)]})
    return make_builder().build(records, slot=200)


class TestIngest:

    def test_meta(self, index, published, operators):
        data, snapshot = published
        meta = index.meta("mainnet")
        assert meta.slot == snapshot.slot
        assert meta.merkle_root == snapshot.root
        assert meta.content_hash == codec.content_hash(data)
        assert meta.uploader == operators[0]

    def test_missing_attestation(self, operators, published):
        data, snapshot = published
        with pytest.raises(ValidationError) as exc:
            SnapshotIndex(trusted_operators=operators).ingest("mainnet", data, snapshot.root, snapshot.slot)
        assert exc.value.code == ErrorCode.UNAUTHORIZED

    def test_untrusted_signer(self, operators, published):
        data, snapshot = published
        stranger, _ = generate_operator_key()
        signature = sign_upload(stranger, snapshot.slot, snapshot.root)
        with pytest.raises(ValidationError) as exc:
            SnapshotIndex(trusted_operators=operators).ingest(
                "mainnet", data, snapshot.root, snapshot.slot, signature)
        assert exc.value.code == ErrorCode.UNAUTHORIZED

    def test_root_mismatch(self, published):
        data, snapshot = published
        with pytest.raises(SnapshotError) as exc:
            SnapshotIndex().ingest("mainnet", data, make_key("other-root"), snapshot.slot)
        assert exc.value.code == ErrorCode.SNAPSHOT_CORRUPT

    def test_slot_mismatch(self, published):
        data, snapshot = published
        with pytest.raises(SnapshotError):
            SnapshotIndex().ingest("mainnet", data, snapshot.root, snapshot.slot + 1)

    def test_uncompressed_upload(self, snapshot):
        index = SnapshotIndex()
        meta = index.ingest("devnet", codec.serialize(snapshot), snapshot.root, snapshot.slot)
        assert meta.uploader is None
        assert index.latest_slot("devnet") == snapshot.slot

    @pytest.mark.parametrize("network", ["Mainnet", "localnet", ""])
    def test_network_is_case_sensitive(self, network, published):
        data, snapshot = published
        with pytest.raises(ValidationError) as exc:
            SnapshotIndex().ingest(network, data, snapshot.root, snapshot.slot)
        assert exc.value.code == ErrorCode.INVALID_NETWORK

    def test_duplicate_slot(self, index, snapshot):
        with pytest.raises(StateError) as exc:
            index.add_snapshot("mainnet", snapshot, make_key("content"))
        assert exc.value.code == ErrorCode.ACCOUNT_ALREADY_EXISTS

    def test_networks_are_separate(self, index):
        assert index.latest_slot("testnet") is None
        with pytest.raises(StateError):
            index.meta("testnet")


class TestQueries:

    def test_latest_slot_by_default(self, index, later_snapshot, snapshot):
        index.add_snapshot("mainnet", later_snapshot, make_key("content"))
        assert index.meta("mainnet").slot == 200
        assert index.meta("mainnet", slot=snapshot.slot).slot == snapshot.slot

    def test_unknown_slot(self, index):
        with pytest.raises(StateError) as exc:
            index.meta("mainnet", slot=12345)
        assert exc.value.code == ErrorCode.ACCOUNT_NOT_FOUND

    def test_voter_summary(self, index):
        summary = index.voter_summary("mainnet", make_key("alice"))
        assert sorted(leaf.stake_account_id for leaf, _ in summary.stake_accounts) == sorted(
            [make_key("stake-a1"), make_key("stake-b1")])
        assert summary.validators == []
        assert summary.total_active_stake == 5_000 + 7_500

    def test_voter_summary_validator_owner(self, index):
        summary = index.voter_summary("mainnet", make_key("vote-a-owner"))
        assert [m.validator_id for m in summary.validators] == [make_key("vote-a")]
        assert summary.stake_accounts == []

    def test_meta_proof(self, index, snapshot):
        meta_leaf, proof = index.meta_proof("mainnet", make_key("vote-b"))
        assert verify(meta_leaf.hash(), proof, snapshot.root)

    def test_stake_proof(self, index, snapshot):
        leaf, proof, validator_id = index.stake_proof("mainnet", make_key("stake-a3"))
        assert validator_id == make_key("vote-a")
        assert leaf.delegate_wallet == make_key("pool-operator")
        meta_leaf, meta_proof = index.meta_proof("mainnet", validator_id)
        assert verify(leaf.hash(), proof, meta_leaf.stake_sub_root)
        assert verify(meta_leaf.hash(), meta_proof, snapshot.root)

    def test_unknown_accounts(self, index):
        with pytest.raises(StateError):
            index.meta_proof("mainnet", make_key("vote-zzz"))
        with pytest.raises(StateError):
            index.stake_proof("mainnet", make_key("stake-b2"))

    def test_rejects_inconsistent_snapshot(self, snapshot, later_snapshot):
        broken = Snapshot(root=later_snapshot.root, leaf_bundles=snapshot.leaf_bundles, slot=5)
        with pytest.raises(SnapshotError):
            SnapshotIndex().add_snapshot("mainnet", broken, make_key("content"))


class TestProofAPI:

    @pytest.fixture
    def client(self, index, monkeypatch):
        monkeypatch.delenv("STAKEPROOF_DEFAULT_NETWORK", raising=False)
        return TestClient(create_app(index))

    def test_health(self, client):
        assert client.get("/health").json()["status"] == "ok"

    def test_meta(self, client, snapshot):
        resp = client.get("/api/proofs/meta")
        assert resp.status_code == 200
        body = resp.json()
        assert body["network"] == "mainnet"
        assert body["slot"] == snapshot.slot
        assert body["merkle_root"] == snapshot.root.hex()

    def test_invalid_network(self, client):
        resp = client.get("/api/proofs/meta", params={"network": "MAINNET"})
        assert resp.status_code == 400

    def test_unknown_slot(self, client):
        resp = client.get("/api/proofs/meta", params={"slot": 999})
        assert resp.status_code == 404

    def test_default_network_from_env(self, client, monkeypatch):
        monkeypatch.setenv("STAKEPROOF_DEFAULT_NETWORK", "devnet")
        assert client.get("/api/proofs/meta").status_code == 404

    def test_voter(self, client):
        resp = client.get(f"/api/proofs/voter/{make_key('alice').hex()}")
        assert resp.status_code == 200
        body = resp.json()
        assert body["total_active_stake"] == 12_500
        assert {s["stake_account_id"] for s in body["stake_accounts"]} == {
            make_key("stake-a1").hex(), make_key("stake-b1").hex()}

    def test_bad_wallet_hex(self, client):
        assert client.get("/api/proofs/voter/not-hex").status_code == 400
        assert client.get("/api/proofs/voter/abcd").status_code == 400

    def test_vote_account_proof(self, client, snapshot):
        resp = client.get(f"/api/proofs/proof/vote_account/{make_key('vote-c').hex()}")
        assert resp.status_code == 200
        body = resp.json()
        assert body["meta_leaf"]["delegate_wallet"] == bytes(32).hex()
        meta = MetaLeaf(
            delegate_wallet=bytes.fromhex(body["meta_leaf"]["delegate_wallet"]),
            validator_id=bytes.fromhex(body["meta_leaf"]["validator_id"]),
            stake_sub_root=bytes.fromhex(body["meta_leaf"]["stake_sub_root"]),
            total_active_stake=body["meta_leaf"]["total_active_stake"],
        )
        proof = [bytes.fromhex(p) for p in body["meta_proof"]]
        assert verify(meta.hash(), proof, snapshot.root)

    def test_stake_account_proof(self, client):
        resp = client.get(f"/api/proofs/proof/stake_account/{make_key('stake-b3').hex()}")
        assert resp.status_code == 200
        body = resp.json()
        assert body["validator_id"] == make_key("vote-b").hex()
        assert body["stake_leaf"]["active_stake"] == 1_000

    def test_unknown_stake_account(self, client):
        resp = client.get(f"/api/proofs/proof/stake_account/{make_key('nobody').hex()}")
        assert resp.status_code == 404


class TestSchemas:

    def test_ballot_payload(self, snapshot):
        from pydantic import ValidationError as PydanticValidationError
        from stakeproof.api.schemas import BallotPayload
        from stakeproof.core.consensus import Ballot

        payload = BallotPayload(merkle_root=snapshot.root.hex().upper(), content_hash=make_key("c").hex())
        assert payload.merkle_root == snapshot.root.hex()
        assert Ballot.from_bytes(payload.to_bytes()) == snapshot.to_ballot(make_key("c"))

        with pytest.raises(PydanticValidationError):
            BallotPayload(merkle_root="zz", content_hash=make_key("c").hex())
        with pytest.raises(PydanticValidationError):
            BallotPayload(merkle_root="ab" * 31, content_hash=make_key("c").hex())
