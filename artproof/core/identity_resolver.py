"""Identity (DID) resolution and creation.

States: Unresolved -> Checking -> {Found | NotFound} -> Creating -> Created.

An account's identity is a consensus topic whose creation memo is
``DID for <account>`` and whose first message is a ``create`` record
naming the DID and the ledger file holding the DID document.  The Mirror
is authoritative; the local cache only answers when the Mirror cannot.

Creation is resumable: every step's result is kept as ``IdentityProgress``
so a retry after a failure continues with the topic (and document) that
already exist instead of creating new ones.
"""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Callable
from concurrent.futures import Future
from datetime import datetime, timezone
from typing import Any

from pydantic import ValidationError

from artproof.bridge.crypto_bridge import generate_keypair, key_fingerprint
from artproof.bridge.mirror import (
    Mirror,
    consensus_to_datetime,
    decode_base64_text,
    decode_message,
)
from artproof.bridge.signer import Signer, require_signer, sign_and_submit
from artproof.config import ArtproofConfig
from artproof.core.errors import (
    InvalidInput,
    MirrorUnavailable,
    ProvenanceError,
    SignerRejected,
)
from artproof.core.hasher import canonical_json
from artproof.core.poller import MirrorPoller, PollPolicy
from artproof.core.record_cache import IDENTITY, IDENTITY_PROGRESS, RecordCache
from artproof.models.identity import (
    DIDDocument,
    DIDResolution,
    IdentityLookup,
    IdentityProfile,
    IdentityProgress,
    IdentityRecord,
    did_for_topic,
    did_topic_memo,
    parse_did,
)
from artproof.models.ledger import (
    LedgerTransaction,
    TransactionKind,
    is_entity_id,
    require_entity_id,
)
from artproof.models.minting import MintedAsset

logger = logging.getLogger(__name__)

CREATE_OPERATION = "create"
NFT_CREATED_OPERATION = "nft_created"

# Returns a profile to proceed with creation, or None if the user declined.
CreationPrompt = Callable[[str], IdentityProfile | None]


def _is_create_message(record: dict[str, Any] | None) -> bool:
    body = decode_message(record) if record else None
    return bool(body) and body.get("operation") == CREATE_OPERATION


class IdentityResolver:
    """Looks up, creates and single-flights DIDs for ledger accounts.

    Parameters
    ----------
    signer:
        Connected wallet session; creation requires it to belong to the
        account being registered.  None gives a lookup-only resolver.
    mirror:
        Read-only ledger query surface.
    poller:
        Shared ``MirrorPoller``.  Built from config when omitted.
    cache:
        Local record cache for degraded-mode reads and creation progress.
    creation_prompt:
        Interactive gate asked before creating an identity.  Returning
        None aborts with ``SignerRejected``.
    key_store:
        Receives ``(account_id, private_key_hex)`` for each generated
        identity key.  The key is otherwise not retained.
    document_reader:
        Reads a ledger file's contents by id.  DID documents live in the
        file service, which the Mirror does not serve; without a reader
        ``resolve`` returns records but no documents.
    """

    def __init__(
        self,
        signer: Signer | None,
        mirror: Mirror,
        *,
        poller: MirrorPoller | None = None,
        cache: RecordCache | None = None,
        config: ArtproofConfig | None = None,
        creation_prompt: CreationPrompt | None = None,
        key_store: Callable[[str, str], None] | None = None,
        document_reader: Callable[[str], str | None] | None = None,
    ) -> None:
        self._config = config or ArtproofConfig()
        self._signer = signer
        self._mirror = mirror
        self._poller = poller or MirrorPoller(PollPolicy.from_config(self._config))
        self._cache = cache or RecordCache()
        self._creation_prompt = creation_prompt
        self._key_store = key_store
        self._document_reader = document_reader
        self.network = self._config.network

        self._lock = threading.Lock()
        self._inflight: dict[str, Future[IdentityRecord]] = {}

    @property
    def signer(self) -> Signer:
        return require_signer(self._signer)

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def lookup(self, account_id: str) -> IdentityLookup:
        """Look up an account's identity, reporting whether the cache answered."""
        require_entity_id(account_id, "account_id")
        try:
            record = self._query_mirror(account_id)
        except MirrorUnavailable as exc:
            cached = self._cache.get(IDENTITY, account_id)
            logger.warning(
                "Mirror unavailable for %s; serving %s identity from cache (degraded): %s",
                account_id, "cached" if cached else "no", exc,
            )
            return IdentityLookup(
                record=IdentityRecord(**cached) if cached else None, degraded=True
            )

        if record is None:
            self._cache.invalidate(IDENTITY, account_id)
            return IdentityLookup(record=None)

        self._cache.put(IDENTITY, account_id, record.model_dump(mode="json"))
        return IdentityLookup(record=record)

    def check_existing(self, account_id: str) -> IdentityRecord | None:
        """Return the account's identity, or None if it has none."""
        return self.lookup(account_id).record

    def _query_mirror(self, account_id: str) -> IdentityRecord | None:
        marker = did_topic_memo(account_id)
        transactions = self._mirror.get_account_transactions(
            account_id, transaction_type="CONSENSUSCREATETOPIC", limit=100, order="desc"
        )
        for tx in transactions:
            if tx.get("result", "SUCCESS") != "SUCCESS":
                continue
            if decode_base64_text(tx.get("memo_base64")) != marker:
                continue
            topic_id = tx.get("entity_id")
            if not topic_id:
                continue

            first = self._first_message(topic_id)
            if not _is_create_message(first):
                progress = self.pending_progress(account_id)
                if progress is not None and progress.topic_id == topic_id:
                    # Our own unfinished creation; create_and_register resumes it
                    logger.info("Topic %s is an unfinished identity creation", topic_id)
                    continue
                # Either the create message is still being indexed or the
                # creation was abandoned elsewhere; absence is not proven
                first = self._poller.poll_until(
                    lambda: self._first_message(topic_id),
                    _is_create_message,
                    description=f"identity create message on {topic_id}",
                )
            body = decode_message(first) or {}
            if body.get("controller", account_id) != account_id:
                continue

            return IdentityRecord(
                did=body.get("did") or did_for_topic(self.network, topic_id),
                topic_id=topic_id,
                document_location_id=body.get("did_document_file_id"),
                controller_account=account_id,
                network=self.network,
                created_at=consensus_to_datetime(first.get("consensus_timestamp"))
                or datetime.now(timezone.utc),
            )
        return None

    def _first_message(self, topic_id: str) -> dict[str, Any] | None:
        messages = self._mirror.get_topic_messages(topic_id, limit=1, order="asc")
        return messages[0] if messages else None

    # ------------------------------------------------------------------
    # DID resolution
    # ------------------------------------------------------------------

    def resolve(self, did: str) -> DIDResolution | None:
        """Resolve a DID string to its identity record and DID document.

        The DID names its topic; the topic's first message must be the
        ``create`` record for this DID.  Returns None when it is not.

        Raises
        ------
        InvalidInput
            Malformed DID, a DID for another network, or a stored document
            that is not a valid DID document.
        MirrorUnavailable
            The topic could not be read.
        """
        network, topic_id = parse_did(did)
        if network != self.network:
            raise InvalidInput(
                "DID belongs to another network", did=did, network=self.network
            )

        first = self._first_message(topic_id)
        if not _is_create_message(first):
            logger.info("No create record on %s; %s does not resolve", topic_id, did)
            return None
        body = decode_message(first) or {}
        if body.get("did", did) != did or not is_entity_id(body.get("controller")):
            logger.warning("Create record on %s does not describe %s", topic_id, did)
            return None

        record = IdentityRecord(
            did=did,
            topic_id=topic_id,
            document_location_id=body.get("did_document_file_id"),
            controller_account=body["controller"],
            network=self.network,
            created_at=consensus_to_datetime(first.get("consensus_timestamp"))  # type: ignore[union-attr]
            or datetime.now(timezone.utc),
        )
        return DIDResolution(record=record, document=self._read_document(record))

    def _read_document(self, record: IdentityRecord) -> DIDDocument | None:
        if self._document_reader is None or not record.document_location_id:
            return None
        contents = self._document_reader(record.document_location_id)
        if contents is None:
            return None
        try:
            return DIDDocument.model_validate(json.loads(contents))
        except (ValueError, ValidationError) as exc:
            raise InvalidInput(
                "stored DID document is malformed",
                did=record.did,
                file_id=record.document_location_id,
            ) from exc

    def verify_did(self, did: str) -> bool:
        """Whether *did* resolves (and, with a reader, its document names it)."""
        try:
            resolution = self.resolve(did)
        except InvalidInput as exc:
            logger.info("DID %s failed verification: %s", did, exc)
            return False
        if resolution is None:
            return False
        if self._document_reader is None:
            return True
        return resolution.document_matches

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def pending_progress(self, account_id: str) -> IdentityProgress | None:
        """Partial creation state left behind by a failed attempt, if any."""
        cached = self._cache.get(IDENTITY_PROGRESS, account_id)
        return IdentityProgress(**cached) if cached else None

    def _save_progress(self, progress: IdentityProgress) -> IdentityProgress:
        self._cache.put(IDENTITY_PROGRESS, progress.account_id, progress.model_dump(mode="json"))
        return progress

    def create_and_register(
        self, account_id: str, profile: IdentityProfile | None = None
    ) -> IdentityRecord:
        """Create the identity topic, DID document and create message.

        Resumes from ``pending_progress`` when a previous attempt failed
        partway.  On failure the error's context carries ``step`` and
        ``identity_progress``.
        """
        require_entity_id(account_id, "account_id")
        if self.signer.account_id != account_id:
            raise InvalidInput(
                "signer account does not match the identity controller",
                signer_account=self.signer.account_id,
                account_id=account_id,
            )

        progress = self.pending_progress(account_id)
        if progress is None:
            private_key, public_key = generate_keypair()
            if self._key_store is not None:
                self._key_store(account_id, private_key)
            progress = self._save_progress(
                IdentityProgress(account_id=account_id, public_key=public_key)
            )
            logger.info(
                "Creating identity for %s (key %s)", account_id, key_fingerprint(public_key)
            )
        else:
            logger.info(
                "Resuming identity creation for %s (topic=%s, document=%s)",
                account_id, progress.topic_id, progress.document_location_id,
            )

        step = "topic"
        try:
            progress = self._ensure_topic(progress)
            did = did_for_topic(self.network, progress.topic_id)  # type: ignore[arg-type]

            step = "document"
            progress = self._ensure_document(progress, did, profile)

            step = "create_message"
            progress = self._publish_create_message(progress, did)
        except ProvenanceError as exc:
            exc.context.setdefault("step", step)
            exc.context["identity_progress"] = progress.model_dump(mode="json")
            logger.error("Identity creation for %s failed at %s: %s", account_id, step, exc)
            raise

        record = IdentityRecord(
            did=did,
            topic_id=progress.topic_id,  # type: ignore[arg-type]
            document_location_id=progress.document_location_id,
            controller_account=account_id,
            network=self.network,
        )
        self._cache.invalidate(IDENTITY_PROGRESS, account_id)
        self._cache.put(IDENTITY, account_id, record.model_dump(mode="json"))
        logger.info("Identity created for %s: %s", account_id, did)
        return record

    def _ensure_topic(self, progress: IdentityProgress) -> IdentityProgress:
        if progress.topic_id:
            return progress
        if progress.topic_transaction_id is None:
            tx = LedgerTransaction(
                kind=TransactionKind.TOPIC_CREATE,
                memo=did_topic_memo(progress.account_id),
                body={"topic_memo": did_topic_memo(progress.account_id)},
                max_fee_tinybars=self._config.topic_max_fee,
            )
            tx_id, _ = sign_and_submit(self.signer, tx)
            progress = self._save_progress(
                progress.model_copy(update={"topic_transaction_id": tx_id})
            )
        record = self._poller.wait_for_transaction(
            self._mirror,
            progress.topic_transaction_id,  # type: ignore[arg-type]
            require_entity=True,
            description="identity topic creation",
        )
        return self._save_progress(progress.model_copy(update={"topic_id": record["entity_id"]}))

    def _ensure_document(
        self, progress: IdentityProgress, did: str, profile: IdentityProfile | None
    ) -> IdentityProgress:
        if progress.document_location_id:
            return progress
        if progress.document_transaction_id is None:
            document = DIDDocument.build(
                did,
                progress.account_id,
                progress.public_key,
                profile,
                platform=self._config.platform_name,
            )
            tx = LedgerTransaction(
                kind=TransactionKind.FILE_CREATE,
                memo=f"DID Document {did}",
                body={"contents": canonical_json(document.to_json_dict())},
                max_fee_tinybars=self._config.topic_max_fee,
            )
            tx_id, _ = sign_and_submit(self.signer, tx)
            progress = self._save_progress(
                progress.model_copy(update={"document_transaction_id": tx_id})
            )
        record = self._poller.wait_for_transaction(
            self._mirror,
            progress.document_transaction_id,  # type: ignore[arg-type]
            require_entity=True,
            description="DID document storage",
        )
        return self._save_progress(
            progress.model_copy(update={"document_location_id": record["entity_id"]})
        )

    def _publish_create_message(self, progress: IdentityProgress, did: str) -> IdentityProgress:
        if not progress.create_message_published:
            message = {
                "operation": CREATE_OPERATION,
                "did": did,
                "controller": progress.account_id,
                "did_document_file_id": progress.document_location_id,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }
            self._submit_topic_message(progress.topic_id, message)  # type: ignore[arg-type]
            progress = self._save_progress(
                progress.model_copy(update={"create_message_published": True})
            )
        # The identity only exists for lookups once the create message is indexed
        self._poller.poll_until(
            lambda: self._first_message(progress.topic_id),  # type: ignore[arg-type]
            _is_create_message,
            description=f"identity create message on {progress.topic_id}",
        )
        return progress

    def _submit_topic_message(self, topic_id: str, message: dict[str, Any]) -> str:
        tx = LedgerTransaction(
            kind=TransactionKind.TOPIC_MESSAGE_SUBMIT,
            body={"topic_id": topic_id, "message": canonical_json(message)},
            max_fee_tinybars=self._config.topic_max_fee,
        )
        tx_id, response = sign_and_submit(self.signer, tx)
        if response.is_unknown:
            self._poller.wait_for_transaction(
                self._mirror, tx_id, description=f"message to {topic_id}"
            )
        return tx_id

    # ------------------------------------------------------------------
    # Ensure-before-use (single flight per account)
    # ------------------------------------------------------------------

    def is_pending(self, account_id: str) -> bool:
        """Whether an ``ensure_before_use`` for this account is in flight."""
        with self._lock:
            return account_id in self._inflight

    def ensure_before_use(
        self, account_id: str, profile: IdentityProfile | None = None
    ) -> IdentityRecord:
        """Return the account's identity, creating it if absent.

        Concurrent calls for the same account attach to the one in-flight
        attempt and receive its result (or its error).
        """
        with self._lock:
            future = self._inflight.get(account_id)
            owner = future is None
            if owner:
                future = Future()
                self._inflight[account_id] = future

        if not owner:
            logger.info("Attaching to in-flight identity resolution for %s", account_id)
            return future.result()  # type: ignore[union-attr]

        try:
            record = self._resolve_or_create(account_id, profile)
        except BaseException as exc:
            future.set_exception(exc)  # type: ignore[union-attr]
            raise
        else:
            future.set_result(record)  # type: ignore[union-attr]
            return record
        finally:
            with self._lock:
                self._inflight.pop(account_id, None)

    def _resolve_or_create(
        self, account_id: str, profile: IdentityProfile | None
    ) -> IdentityRecord:
        found = self.lookup(account_id)
        if found.record is not None:
            return found.record
        if found.degraded:
            # Absence cannot be confirmed while the Mirror is down
            raise MirrorUnavailable(
                "cannot confirm that no identity exists", account_id=account_id
            )

        if self._creation_prompt is not None:
            profile = self._creation_prompt(account_id)
            if profile is None:
                raise SignerRejected("identity creation declined", account_id=account_id)
        return self.create_and_register(account_id, profile)

    # ------------------------------------------------------------------
    # Creation history on the DID topic
    # ------------------------------------------------------------------

    def record_creation(
        self,
        identity: IdentityRecord,
        asset: MintedAsset,
        *,
        name: str,
        details: dict[str, Any] | None = None,
    ) -> str:
        """Publish an ``nft_created`` message on the DID topic; returns the tx id."""
        message = {
            "operation": NFT_CREATED_OPERATION,
            "did": identity.did,
            "nft_token_id": asset.collection_id,
            "serial_number": asset.serial_number,
            "name": name,
            "metadata": {k: v for k, v in (details or {}).items() if v is not None},
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        tx_id = self._submit_topic_message(identity.topic_id, message)
        logger.info("Recorded %s on %s", asset.nft_id, identity.did)
        return tx_id

    def list_created_assets(self, identity: IdentityRecord) -> list[dict[str, Any]]:
        """Return the ``nft_created`` messages on the DID topic, oldest first."""
        messages = self._mirror.get_topic_messages(identity.topic_id, limit=100, order="asc")
        created: list[dict[str, Any]] = []
        for record in messages:
            body = decode_message(record)
            if body and body.get("operation") == NFT_CREATED_OPERATION:
                created.append({**body, "sequence_number": record.get("sequence_number")})
        return created
