"""Unit tests for MintingOrchestrator: collection, association, mint."""

from __future__ import annotations

import json

import pytest

from artproof.bridge.anchor import LocalAnchor
from artproof.core.errors import (
    InvalidInput,
    MetadataTooLarge,
    MirrorTimeout,
    TransactionFailed,
)
from artproof.core.minting import MintingOrchestrator
from artproof.models.ledger import SignerResponse, TransactionKind
from artproof.models.minting import CollectionOptions

OWNER_KEY = "aa" * 32


@pytest.fixture
def make_minter(ledger, anchor, poller, config):
    def _factory(signer, mirror=None, anchor_=None):
        return MintingOrchestrator(
            signer, mirror or ledger, anchor_ or anchor, poller=poller, config=config
        )

    return _factory


@pytest.fixture
def scripted(fake_signer, fake_mirror):
    """FakeSigner/FakeMirror pair where the owner account exists on the Mirror."""
    fake_mirror.accounts[fake_signer.account_id] = {
        "account": fake_signer.account_id,
        "key": {"_type": "ED25519", "key": OWNER_KEY},
    }
    return fake_signer, fake_mirror


class TestCreateCollection:

    def test_keys_come_from_the_ledger(self, make_minter, scripted):
        signer, mirror = scripted
        mirror.add_transaction("0.0.1001@1700000001", entity_id="0.0.7000")

        result = make_minter(signer, mirror).create_collection(
            "0.0.1001", CollectionOptions(name="Ravens", symbol="RVN")
        )
        assert result.collection_id == "0.0.7000"
        body = signer.submitted[0].body
        for key in ("admin_key", "supply_key", "pause_key", "freeze_key", "wipe_key"):
            assert body[key] == OWNER_KEY
        assert body["token_type"] == "NON_FUNGIBLE_UNIQUE"
        assert body["supply_type"] == "FINITE"
        assert body["max_supply"] == 1
        assert body["treasury_account_id"] == "0.0.1001"
        assert signer.submitted[0].memo == "AI Art NFT Collection"

    def test_collection_id_only_from_mirror(self, make_minter, scripted):
        signer, mirror = scripted
        mirror.add_transaction("0.0.1001@1700000001")  # indexed without entity
        with pytest.raises(TransactionFailed):
            make_minter(signer, mirror).create_collection("0.0.1001")

    def test_owner_must_exist(self, make_minter, fake_signer, fake_mirror):
        with pytest.raises(InvalidInput):
            make_minter(fake_signer, fake_mirror).create_collection("0.0.1001")
        assert fake_signer.submitted == []

    def test_signer_must_be_owner(self, make_minter, scripted):
        signer, mirror = scripted
        with pytest.raises(InvalidInput):
            make_minter(signer, mirror).create_collection("0.0.2002")

    def test_on_simulated_ledger(self, make_minter, creator_signer, creator, ledger):
        result = make_minter(creator_signer).create_collection(creator)
        assert ledger.submitted(TransactionKind.TOKEN_CREATE)[0]["entity_id"] == result.collection_id

    def test_max_supply_must_be_positive(self):
        with pytest.raises(ValueError):
            CollectionOptions(max_supply=0)


class TestAssociate:

    def test_treasury_is_already_associated(self, make_minter, creator_signer, creator):
        minter = make_minter(creator_signer)
        collection = minter.create_collection(creator)
        result = minter.associate(collection.collection_id, creator)
        assert result.associated
        assert result.already_associated
        assert result.transaction_id is None

    def test_fresh_account_associates(self, make_minter, creator_signer, creator, ledger):
        collection = make_minter(creator_signer).create_collection(creator)
        other = ledger.create_account()
        result = make_minter(ledger.signer_for(other)).associate(collection.collection_id, other)
        assert result.associated
        assert not result.already_associated
        assert result.transaction_id.startswith(other)


class TestMint:

    def test_mint_anchors_metadata(self, make_minter, creator_signer, creator, anchor, metadata):
        minter = make_minter(creator_signer)
        collection = minter.create_collection(creator)
        asset = minter.mint(collection.collection_id, metadata, name="raven")

        assert asset.serial_number == 1
        assert asset.serial_source == "signer"
        assert asset.nft_id == f"{collection.collection_id}:1"
        assert len(asset.on_chain_metadata_pointer.encode()) <= 100
        assert json.loads(anchor.retrieve(asset.on_chain_metadata_pointer)) == metadata

    def test_pointer_over_limit_fails_before_submit(
        self, make_minter, fake_signer, fake_mirror, tmp_dir, metadata
    ):
        long_anchor = LocalAnchor(tmp_dir / "long", base_url="https://gateway.example/" + "x" * 40 + "/")
        with pytest.raises(MetadataTooLarge) as info:
            make_minter(fake_signer, fake_mirror, long_anchor).mint("0.0.7000", metadata)
        assert info.value.context["size"] > 100
        assert fake_signer.submitted == []

    def test_serial_from_mirror_for_opaque_wallet(self, make_minter, ledger, creator, metadata):
        signer = ledger.signer_for(creator, opaque=True)
        minter = make_minter(signer)
        collection = minter.create_collection(creator)
        asset = minter.mint(collection.collection_id, metadata)
        assert asset.serial_number == 1
        assert asset.serial_source == "mirror"

    def test_default_serial_when_mirror_never_indexes(
        self, make_minter, fake_signer, fake_mirror, metadata
    ):
        asset = make_minter(fake_signer, fake_mirror).mint("0.0.7000", metadata)
        assert asset.serial_number == 1
        assert asset.serial_source == "default"

    def test_unknown_outcome_and_no_mirror_record_raises(
        self, make_minter, fake_signer, fake_mirror, metadata
    ):
        fake_signer.responses.append(SignerResponse())
        with pytest.raises(MirrorTimeout):
            make_minter(fake_signer, fake_mirror).mint("0.0.7000", metadata)

    def test_max_supply_enforced_by_ledger(self, make_minter, creator_signer, creator, metadata):
        minter = make_minter(creator_signer)
        collection = minter.create_collection(creator)
        minter.mint(collection.collection_id, metadata)
        with pytest.raises(TransactionFailed):
            minter.mint(collection.collection_id, metadata)

    def test_empty_metadata_rejected(self, make_minter, fake_signer, fake_mirror):
        with pytest.raises(InvalidInput):
            make_minter(fake_signer, fake_mirror).mint("0.0.7000", {})


class TestRunWorkflow:

    def test_progress_reported_in_order(self, make_minter, creator_signer, creator, metadata):
        events: list[tuple[str, str]] = []
        result = make_minter(creator_signer).run_workflow(
            creator, metadata, on_progress=lambda step, msg: events.append((step, msg))
        )
        assert [step for step, _ in events] == [
            "collection", "collection", "association", "association", "mint", "mint",
        ]
        assert result.mint.collection_id == result.collection.collection_id
        assert result.association.already_associated

    def test_failing_callback_does_not_stop_workflow(
        self, make_minter, creator_signer, creator, metadata
    ):
        def _explode(step, message):
            raise RuntimeError("ui went away")

        result = make_minter(creator_signer).run_workflow(creator, metadata, on_progress=_explode)
        assert result.mint.serial_number == 1
