"""Unit tests for IdentityResolver: lookup, creation, resume, single flight."""

from __future__ import annotations

import base64
import json
import threading

import nacl.signing
import pytest

from artproof.bridge.signer import sign_and_submit
from artproof.bridge.simulated import SimulatedLedger
from artproof.core.errors import InvalidInput, MirrorTimeout, MirrorUnavailable, SignerRejected
from artproof.core.identity_resolver import IdentityResolver
from artproof.core.record_cache import IDENTITY, IDENTITY_PROGRESS, RecordCache
from artproof.models.identity import IdentityProfile, parse_did
from artproof.models.ledger import LedgerTransaction, TransactionKind
from artproof.models.minting import MintedAsset


def _b64(text: str) -> str:
    return base64.b64encode(text.encode()).decode()


@pytest.fixture
def make_resolver(ledger, poller, cache, config):
    """Factory fixture: an IdentityResolver on the simulated ledger."""

    def _factory(signer, **overrides):
        kwargs = {"poller": poller, "cache": cache, "config": config}
        kwargs.update(overrides)
        return IdentityResolver(signer, ledger, **kwargs)

    return _factory


def _kinds(ledger, kind):
    return ledger.submitted(kind)


class TestLookup:

    def test_unknown_account_has_no_identity(self, make_resolver, creator_signer, creator):
        found = make_resolver(creator_signer).lookup(creator)
        assert found.record is None
        assert found.degraded is False

    def test_rejects_malformed_account(self, make_resolver, creator_signer):
        with pytest.raises(InvalidInput):
            make_resolver(creator_signer).lookup("alice")

    def test_not_found_clears_stale_cache(self, make_resolver, creator_signer, creator, cache):
        cache.put(IDENTITY, creator, {"did": "did:hedera:testnet:0.0.1"})
        make_resolver(creator_signer).lookup(creator)
        assert cache.get(IDENTITY, creator) is None

    def test_degraded_lookup_serves_cache(self, make_resolver, creator_signer, creator, ledger):
        resolver = make_resolver(creator_signer)
        created = resolver.ensure_before_use(creator)

        ledger.mirror_available = False
        found = resolver.lookup(creator)
        assert found.degraded is True
        assert found.record.did == created.did

    def test_degraded_lookup_without_cache(self, make_resolver, creator_signer, creator, ledger):
        ledger.mirror_available = False
        found = make_resolver(creator_signer).lookup(creator)
        assert found.degraded is True
        assert found.record is None

    def test_topic_without_create_message_is_unresolved(
        self, fake_signer, fake_mirror, poller, config
    ):
        fake_mirror.account_transactions.append({
            "name": "CONSENSUSCREATETOPIC",
            "result": "SUCCESS",
            "entity_id": "0.0.5000",
            "memo_base64": _b64("DID for 0.0.1001"),
        })
        resolver = IdentityResolver(fake_signer, fake_mirror, poller=poller, config=config)
        with pytest.raises(MirrorTimeout):
            resolver.check_existing("0.0.1001")
        assert fake_mirror.calls.count("get_topic_messages") == 1 + config.poll_max_attempts

    def test_own_unfinished_topic_is_left_for_resume(
        self, fake_signer, fake_mirror, poller, cache, config
    ):
        fake_mirror.account_transactions.append({
            "name": "CONSENSUSCREATETOPIC",
            "result": "SUCCESS",
            "entity_id": "0.0.5000",
            "memo_base64": _b64("DID for 0.0.1001"),
        })
        cache.put(IDENTITY_PROGRESS, "0.0.1001", {
            "account_id": "0.0.1001", "public_key": "ab" * 32, "topic_id": "0.0.5000",
        })
        resolver = IdentityResolver(
            fake_signer, fake_mirror, poller=poller, cache=cache, config=config
        )
        assert resolver.check_existing("0.0.1001") is None
        assert fake_mirror.calls.count("get_topic_messages") == 1

    def test_create_message_indexed_late_is_found(
        self, fake_signer, fake_mirror, poller, config
    ):
        fake_mirror.account_transactions.append({
            "name": "CONSENSUSCREATETOPIC",
            "result": "SUCCESS",
            "entity_id": "0.0.5000",
            "memo_base64": _b64("DID for 0.0.1001"),
        })
        create = {
            "sequence_number": 1,
            "message": _b64(json.dumps({"operation": "create", "controller": "0.0.1001"})),
        }
        original = fake_mirror.get_topic_messages
        reads = []

        def _lagging(topic_id, **kwargs):
            reads.append(topic_id)
            return [create] if len(reads) >= 3 else original(topic_id, **kwargs)

        fake_mirror.get_topic_messages = _lagging
        resolver = IdentityResolver(fake_signer, fake_mirror, poller=poller, config=config)
        record = resolver.check_existing("0.0.1001")
        assert record.did == "did:hedera:testnet:0.0.5000"
        assert len(reads) == 3

    def test_foreign_controller_is_ignored(self, fake_signer, fake_mirror, poller, config):
        fake_mirror.account_transactions.append({
            "name": "CONSENSUSCREATETOPIC",
            "result": "SUCCESS",
            "entity_id": "0.0.5000",
            "memo_base64": _b64("DID for 0.0.1001"),
        })
        fake_mirror.topic_messages["0.0.5000"] = [{
            "sequence_number": 1,
            "message": _b64(json.dumps({"operation": "create", "controller": "0.0.9999"})),
        }]
        resolver = IdentityResolver(fake_signer, fake_mirror, poller=poller, config=config)
        assert resolver.check_existing("0.0.1001") is None

    def test_found_on_mirror(self, fake_signer, fake_mirror, poller, config):
        fake_mirror.account_transactions.append({
            "name": "CONSENSUSCREATETOPIC",
            "result": "SUCCESS",
            "entity_id": "0.0.5000",
            "memo_base64": _b64("DID for 0.0.1001"),
        })
        fake_mirror.topic_messages["0.0.5000"] = [{
            "sequence_number": 1,
            "consensus_timestamp": "1700000000.000000000",
            "message": _b64(json.dumps({
                "operation": "create",
                "did": "did:hedera:testnet:0.0.5000",
                "controller": "0.0.1001",
                "did_document_file_id": "0.0.5001",
            })),
        }]
        record = IdentityResolver(
            fake_signer, fake_mirror, poller=poller, config=config
        ).check_existing("0.0.1001")
        assert record.did == "did:hedera:testnet:0.0.5000"
        assert record.document_location_id == "0.0.5001"
        assert record.created_at.year == 2023


class TestCreation:
    """create_and_register: topic, DID document, create message."""

    def test_creates_topic_document_and_message(self, make_resolver, creator_signer, creator, ledger):
        record = make_resolver(creator_signer).create_and_register(
            creator, IdentityProfile(name="Ada", bio="paints ravens")
        )

        assert record.did == f"did:hedera:testnet:{record.topic_id}"
        assert ledger.topic_memo(record.topic_id) == f"DID for {creator}"

        document = json.loads(ledger.file_contents(record.document_location_id))
        assert document["id"] == record.did
        assert document["@context"] == "https://www.w3.org/ns/did/v1"
        assert document["verificationMethod"][0]["id"] == f"{record.did}#key-1"
        assert document["service"][0]["serviceEndpoint"]["name"] == "Ada"

        assert len(_kinds(ledger, TransactionKind.TOPIC_CREATE)) == 1
        assert len(_kinds(ledger, TransactionKind.FILE_CREATE)) == 1
        assert len(_kinds(ledger, TransactionKind.TOPIC_MESSAGE_SUBMIT)) == 1

    def test_created_identity_is_found_afterwards(self, make_resolver, creator_signer, creator):
        resolver = make_resolver(creator_signer)
        created = resolver.create_and_register(creator)
        found = resolver.lookup(creator)
        assert found.record.did == created.did
        assert found.record.document_location_id == created.document_location_id

    def test_key_store_receives_matching_private_key(
        self, make_resolver, creator_signer, creator, ledger
    ):
        stored: dict[str, str] = {}
        resolver = make_resolver(creator_signer, key_store=stored.__setitem__)
        record = resolver.create_and_register(creator)

        document = json.loads(ledger.file_contents(record.document_location_id))
        derived = nacl.signing.SigningKey(bytes.fromhex(stored[creator])).verify_key.encode().hex()
        assert document["verificationMethod"][0]["publicKey"] == derived

    def test_signer_must_be_controller(self, make_resolver, creator_signer, ledger):
        other = ledger.create_account()
        with pytest.raises(InvalidInput):
            make_resolver(creator_signer).create_and_register(other)
        assert ledger.submitted() == []

    def test_read_only_resolver_cannot_create(self, make_resolver, creator):
        with pytest.raises(InvalidInput):
            make_resolver(None).create_and_register(creator)

    def test_opaque_wallet_confirms_through_mirror(self, make_resolver, ledger, creator):
        record = make_resolver(ledger.signer_for(creator, opaque=True)).create_and_register(creator)
        assert record.topic_id
        assert record.document_location_id

    def test_resume_after_rejected_document(self, make_resolver, ledger, creator, cache):
        signer = ledger.signer_for(creator, reject=(TransactionKind.FILE_CREATE,))
        resolver = make_resolver(signer)

        with pytest.raises(SignerRejected) as info:
            resolver.ensure_before_use(creator)
        assert info.value.context["step"] == "document"
        progress = info.value.context["identity_progress"]
        assert progress["topic_id"]
        assert cache.get(IDENTITY_PROGRESS, creator)["topic_id"] == progress["topic_id"]

        signer.reject.clear()
        record = resolver.ensure_before_use(creator)
        assert record.topic_id == progress["topic_id"]
        assert len(_kinds(ledger, TransactionKind.TOPIC_CREATE)) == 1
        assert len(_kinds(ledger, TransactionKind.FILE_CREATE)) == 1
        assert cache.get(IDENTITY_PROGRESS, creator) is None


class TestLaggingMirror:
    """Identity creation while the Mirror indexes a few reads behind."""

    @pytest.fixture
    def lagging(self):
        return SimulatedLedger("testnet", index_lag=3)

    def test_sequential_calls_share_one_identity(self, lagging, poller, config):
        creator = lagging.create_account()
        resolver = IdentityResolver(
            lagging.signer_for(creator), lagging, poller=poller, cache=RecordCache(), config=config
        )
        first = resolver.ensure_before_use(creator)
        second = resolver.ensure_before_use(creator)

        assert second.did == first.did
        assert len(_kinds(lagging, TransactionKind.TOPIC_CREATE)) == 1
        assert len(_kinds(lagging, TransactionKind.TOPIC_MESSAGE_SUBMIT)) == 1

    def test_new_resolver_finds_fresh_identity(self, lagging, poller, config):
        creator = lagging.create_account()
        created = IdentityResolver(
            lagging.signer_for(creator), lagging, poller=poller, cache=RecordCache(), config=config
        ).ensure_before_use(creator)

        fresh = IdentityResolver(
            lagging.signer_for(creator), lagging, poller=poller, cache=RecordCache(), config=config
        )
        assert fresh.ensure_before_use(creator).did == created.did
        assert len(_kinds(lagging, TransactionKind.TOPIC_CREATE)) == 1

    def test_opaque_wallet_under_lag(self, lagging, poller, config):
        creator = lagging.create_account()
        resolver = IdentityResolver(
            lagging.signer_for(creator, opaque=True), lagging,
            poller=poller, cache=RecordCache(), config=config,
        )
        record = resolver.ensure_before_use(creator)
        assert resolver.lookup(creator).record.did == record.did


class TestResolveDid:
    """DID string -> topic -> create record -> DID document."""

    def test_resolves_created_identity(self, make_resolver, creator_signer, creator, ledger):
        created = make_resolver(creator_signer).ensure_before_use(creator)

        resolved = make_resolver(None, document_reader=ledger.file_contents).resolve(created.did)

        assert resolved.record.topic_id == created.topic_id
        assert resolved.record.controller_account == creator
        assert resolved.document.id == created.did
        assert resolved.document.controller == creator
        assert resolved.document_matches

    def test_without_reader_document_is_skipped(self, make_resolver, creator_signer, creator):
        created = make_resolver(creator_signer).ensure_before_use(creator)
        resolved = make_resolver(None).resolve(created.did)
        assert resolved.record.did == created.did
        assert resolved.document is None

    def test_topic_without_create_record(self, make_resolver, creator_signer, ledger):
        tx_id, _ = sign_and_submit(creator_signer, LedgerTransaction(
            kind=TransactionKind.TOPIC_CREATE, body={"topic_memo": "scratch"},
        ))
        topic_id = ledger.get_transaction(tx_id)["entity_id"]
        assert make_resolver(None).resolve(f"did:hedera:testnet:{topic_id}") is None

    @pytest.mark.parametrize("did", ["", "did:web:example.com", "did:hedera:testnet:topic"])
    def test_malformed_did(self, make_resolver, did):
        with pytest.raises(InvalidInput):
            make_resolver(None).resolve(did)

    def test_other_network(self, make_resolver):
        with pytest.raises(InvalidInput, match="another network"):
            make_resolver(None).resolve("did:hedera:mainnet:0.0.5000")

    def test_malformed_document(self, make_resolver, creator_signer, creator):
        created = make_resolver(creator_signer).ensure_before_use(creator)
        resolver = make_resolver(None, document_reader=lambda file_id: "{not json")
        with pytest.raises(InvalidInput, match="malformed"):
            resolver.resolve(created.did)

    def test_verify_did(self, make_resolver, creator_signer, creator, ledger):
        created = make_resolver(creator_signer).ensure_before_use(creator)
        resolver = make_resolver(None, document_reader=ledger.file_contents)

        assert resolver.verify_did(created.did) is True
        assert resolver.verify_did("did:hedera:testnet:0.0.99999") is False
        assert resolver.verify_did("did:hedera:mainnet:0.0.5000") is False
        assert resolver.verify_did("not-a-did") is False

    def test_verify_did_document_for_someone_else(self, make_resolver, creator_signer, creator, ledger):
        created = make_resolver(creator_signer).ensure_before_use(creator)
        stored = json.loads(ledger.file_contents(created.document_location_id))
        stored["id"] = "did:hedera:testnet:0.0.1"
        resolver = make_resolver(None, document_reader=lambda file_id: json.dumps(stored))

        assert resolver.resolve(created.did).document_matches is False
        assert resolver.verify_did(created.did) is False

    def test_parse_did(self):
        assert parse_did("did:hedera:testnet:0.0.5000") == ("testnet", "0.0.5000")
        with pytest.raises(InvalidInput):
            parse_did("did:hedera:testnet")


class TestEnsureBeforeUse:

    def test_existing_identity_is_reused(self, make_resolver, creator_signer, creator, ledger):
        resolver = make_resolver(creator_signer)
        first = resolver.ensure_before_use(creator)
        count = len(ledger.submitted())
        second = resolver.ensure_before_use(creator)
        assert second.did == first.did
        assert len(ledger.submitted()) == count

    def test_mirror_down_without_cache_refuses_to_create(
        self, make_resolver, creator_signer, creator, ledger
    ):
        ledger.mirror_available = False
        with pytest.raises(MirrorUnavailable):
            make_resolver(creator_signer).ensure_before_use(creator)
        assert ledger.submitted() == []

    def test_declined_prompt(self, make_resolver, creator_signer, creator, ledger):
        resolver = make_resolver(creator_signer, creation_prompt=lambda account: None)
        with pytest.raises(SignerRejected):
            resolver.ensure_before_use(creator)
        assert ledger.submitted() == []
        assert not resolver.is_pending(creator)

    def test_prompt_profile_is_used(self, make_resolver, creator_signer, creator, ledger):
        resolver = make_resolver(
            creator_signer, creation_prompt=lambda account: IdentityProfile(name="Prompted")
        )
        record = resolver.ensure_before_use(creator)
        document = json.loads(ledger.file_contents(record.document_location_id))
        assert document["service"][0]["serviceEndpoint"]["name"] == "Prompted"

    def test_concurrent_calls_create_once(self, make_resolver, creator_signer, creator, ledger):
        started = threading.Event()
        release = threading.Event()

        def _prompt(account):
            started.set()
            release.wait(5)
            return IdentityProfile(name="Once")

        resolver = make_resolver(creator_signer, creation_prompt=_prompt)
        results: list = []
        errors: list = []

        def _ensure():
            try:
                results.append(resolver.ensure_before_use(creator))
            except Exception as exc:  # surfaced by the assertions below
                errors.append(exc)

        first = threading.Thread(target=_ensure)
        first.start()
        assert started.wait(5)
        assert resolver.is_pending(creator)

        second = threading.Thread(target=_ensure)
        second.start()
        release.set()
        first.join(5)
        second.join(5)

        assert errors == []
        assert len(results) == 2
        assert results[0].did == results[1].did
        assert len(_kinds(ledger, TransactionKind.TOPIC_CREATE)) == 1
        assert not resolver.is_pending(creator)


class TestCreationHistory:

    def test_record_and_list_created_assets(self, make_resolver, creator_signer, creator):
        resolver = make_resolver(creator_signer)
        identity = resolver.ensure_before_use(creator)
        asset = MintedAsset(
            collection_id="0.0.7000",
            serial_number=1,
            transaction_id="0.0.1@1.0",
            on_chain_metadata_pointer="ipfs://abc",
        )

        tx_id = resolver.record_creation(
            identity, asset, name="Raven", details={"content_hash": "ab" * 32, "unused": None}
        )
        assert tx_id.startswith(creator)

        created = resolver.list_created_assets(identity)
        assert len(created) == 1
        assert created[0]["nft_token_id"] == "0.0.7000"
        assert created[0]["metadata"] == {"content_hash": "ab" * 32}
        assert created[0]["sequence_number"] == 2
