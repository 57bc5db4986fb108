"""Attestation publishing: bind a DID to a content hash on the ledger.

An attestation is a consensus message on the creator's attestation topic
(or a configured global topic).  The transaction id is what makes it
published, once its success is known from the receipt or the Mirror.
The sequence number is looked up afterwards and reported as ``"pending"``
if the Mirror has not indexed it within the poll budget.

Control of the DID, proven by signing with the DID's controller account,
is the authorship proof.  There is no detached signature.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Any

from artproof.bridge.mirror import (
    Mirror,
    consensus_to_datetime,
    decode_base64_text,
    decode_message,
)
from artproof.bridge.signer import Signer, require_signer, sign_and_submit
from artproof.config import ArtproofConfig
from artproof.core.errors import InvalidInput, MirrorTimeout, MirrorUnavailable
from artproof.core.hasher import canonical_json, sha256_hex
from artproof.core.poller import MirrorPoller, PollPolicy
from artproof.core.record_cache import ATTESTATION_TOPIC, RecordCache
from artproof.models.attestation import (
    ATTESTATION_VERSION,
    PENDING,
    AttestationPayload,
    AttestationProof,
    AttestationRecord,
    AttestationVerification,
    attestation_topic_memo,
)
from artproof.models.identity import DID_PREFIX
from artproof.models.ledger import LedgerTransaction, TransactionKind, require_entity_id

logger = logging.getLogger(__name__)

_HEX64 = re.compile(r"^[0-9a-f]{64}$")
_RESERVED_FIELDS = frozenset(AttestationPayload.model_fields)


def hash_payload(payload: AttestationPayload | dict[str, Any]) -> str:
    """Canonical JSON + SHA-256 over the attestation payload."""
    data = payload.model_dump(mode="json") if isinstance(payload, AttestationPayload) else payload
    return sha256_hex(canonical_json(data))


class AttestationPublisher:
    """Builds, publishes and verifies attestations.

    Parameters
    ----------
    signer:
        Wallet session of the creator; None for verification only.
    mirror:
        Read-only ledger query surface.
    poller:
        Shared ``MirrorPoller``.
    cache:
        Record cache holding per-creator topic ids.
    """

    def __init__(
        self,
        signer: Signer | None,
        mirror: Mirror,
        *,
        poller: MirrorPoller | None = None,
        cache: RecordCache | None = None,
        config: ArtproofConfig | None = None,
    ) -> None:
        self._config = config or ArtproofConfig()
        self._signer = signer
        self._mirror = mirror
        self._poller = poller or MirrorPoller(PollPolicy.from_config(self._config))
        self._cache = cache or RecordCache()
        self._topics: dict[str, str] = {}
        self.network = self._config.network

    @property
    def signer(self) -> Signer:
        return require_signer(self._signer)

    # ------------------------------------------------------------------
    # Payload
    # ------------------------------------------------------------------

    def build_payload(
        self,
        did: str,
        content_hash: str,
        extra: dict[str, Any] | None = None,
        *,
        timestamp: datetime | None = None,
    ) -> AttestationPayload:
        """Build the attestation payload.  Extra fields with None values are dropped."""
        self._validate(did, content_hash)
        extra = {k: v for k, v in (extra or {}).items() if v is not None}
        clash = _RESERVED_FIELDS.intersection(extra)
        if clash:
            raise InvalidInput("extra fields may not override payload fields", fields=sorted(clash))

        ts = timestamp or datetime.now(timezone.utc)
        return AttestationPayload(
            creator_did=did,
            content_hash=content_hash,
            timestamp=int(ts.timestamp() * 1000),
            timestamp_iso=ts.isoformat(),
            network=self.network,
            platform=self._config.platform_name,
            **extra,
        )

    @staticmethod
    def _validate(did: str, content_hash: str) -> None:
        if not isinstance(did, str) or not did.startswith(DID_PREFIX):
            raise InvalidInput("creator DID must be a did:hedera: identifier", did=did)
        if not isinstance(content_hash, str) or not _HEX64.match(content_hash):
            raise InvalidInput("content hash must be 64 lowercase hex chars", content_hash=content_hash)

    hash_payload = staticmethod(hash_payload)

    # ------------------------------------------------------------------
    # Topic resolution
    # ------------------------------------------------------------------

    def resolve_topic(self, creator_account: str) -> str:
        """Return the attestation topic for *creator_account*, creating it lazily.

        Order: configured global topic, in-process memo, Mirror search for
        a topic this account created with the attestation memo, cache (only
        if the Mirror is down), then creation.
        """
        if self._config.attestation_topic_id:
            return self._config.attestation_topic_id
        if creator_account in self._topics:
            return self._topics[creator_account]

        try:
            topic_id = self._find_topic_on_mirror(creator_account)
        except MirrorUnavailable as exc:
            cached = self._cache.get(ATTESTATION_TOPIC, creator_account)
            if cached is None:
                raise
            logger.warning(
                "Mirror unavailable; using cached attestation topic for %s: %s",
                creator_account, exc,
            )
            topic_id = cached["topic_id"]

        if topic_id is None:
            topic_id = self._create_topic(creator_account)

        self._topics[creator_account] = topic_id
        self._cache.put(ATTESTATION_TOPIC, creator_account, {"topic_id": topic_id})
        return topic_id

    def _find_topic_on_mirror(self, creator_account: str) -> str | None:
        marker = attestation_topic_memo(creator_account)
        for tx in self._mirror.get_account_transactions(
            creator_account, transaction_type="CONSENSUSCREATETOPIC", limit=100, order="desc"
        ):
            if tx.get("result", "SUCCESS") != "SUCCESS" or not tx.get("entity_id"):
                continue
            if decode_base64_text(tx.get("memo_base64")) == marker:
                return tx["entity_id"]
        return None

    def _create_topic(self, creator_account: str) -> str:
        memo = attestation_topic_memo(creator_account)
        tx_id, _ = sign_and_submit(
            self.signer,
            LedgerTransaction(
                kind=TransactionKind.TOPIC_CREATE,
                memo=memo,
                body={"topic_memo": memo},
                max_fee_tinybars=self._config.topic_max_fee,
            ),
        )
        record = self._poller.wait_for_transaction(
            self._mirror, tx_id, require_entity=True, description="attestation topic creation"
        )
        logger.info("Created attestation topic %s for %s", record["entity_id"], creator_account)
        return record["entity_id"]

    # ------------------------------------------------------------------
    # Publish
    # ------------------------------------------------------------------

    def publish(
        self,
        did: str,
        content_hash: str,
        *,
        creator_account: str | None = None,
        **extra: Any,
    ) -> AttestationRecord:
        """Publish an attestation and try to resolve its sequence number.

        Raises
        ------
        InvalidInput
            Bad DID or hash, or the message exceeds ``max_message_bytes``.
        SignerRejected, TransactionFailed, MirrorTimeout
            From topic creation or submission.  An empty wallet result is
            confirmed on the Mirror first, so a failed or never-indexed
            submission raises here.  A timeout while looking up the
            sequence number of a confirmed submission is *not* raised.
        """
        account = creator_account or self.signer.account_id
        require_entity_id(account, "creator_account")

        payload = self.build_payload(did, content_hash, extra)
        payload_hash = hash_payload(payload)
        topic_id = self.resolve_topic(account)
        proof = AttestationProof(proof=payload_hash, signed_by=account)
        published_at = datetime.now(timezone.utc)

        message = canonical_json({
            "payload": payload.model_dump(mode="json"),
            "proof": proof.model_dump(mode="json"),
            "payload_hash": payload_hash,
            "topic_id": topic_id,
            "published_at": published_at.isoformat(),
            "network": self.network,
            "version": ATTESTATION_VERSION,
        })
        size = len(message.encode("utf-8"))
        if size > self._config.max_message_bytes:
            raise InvalidInput(
                "attestation message exceeds the topic message limit",
                size=size,
                limit=self._config.max_message_bytes,
            )

        tx_id, response = sign_and_submit(
            self.signer,
            LedgerTransaction(
                kind=TransactionKind.TOPIC_MESSAGE_SUBMIT,
                body={"topic_id": topic_id, "message": message},
                max_fee_tinybars=self._config.topic_max_fee,
            ),
        )
        if response.is_unknown:
            self._poller.wait_for_transaction(
                self._mirror, tx_id, description=f"attestation message to {topic_id}"
            )
        logger.info("Attestation for %s submitted to %s (%s)", content_hash[:16], topic_id, tx_id)

        sequence_number = self._resolve_sequence(topic_id, payload_hash, tx_id)
        return AttestationRecord(
            transaction_id=tx_id,
            topic_id=topic_id,
            sequence_number=sequence_number,
            payload_hash=payload_hash,
            creator_did=did,
            content_hash=content_hash,
            network=self.network,
            published_at=published_at,
            payload=payload,
            proof=proof,
        )

    def _resolve_sequence(self, topic_id: str, payload_hash: str, tx_id: str) -> int | str:
        def _find() -> dict[str, Any] | None:
            for record in self._mirror.get_topic_messages(topic_id, limit=25, order="desc"):
                body = decode_message(record)
                if body and body.get("payload_hash") == payload_hash:
                    return record
            return None

        try:
            record = self._poller.poll_until(
                _find, lambda r: r is not None, description=f"attestation sequence on {topic_id}"
            )
        except MirrorTimeout as exc:
            logger.warning(
                "Sequence number for %s not visible after %d attempts; reporting pending",
                tx_id, exc.attempts,
            )
            return PENDING
        return int(record["sequence_number"])

    # ------------------------------------------------------------------
    # Verify
    # ------------------------------------------------------------------

    def verify(
        self,
        topic_id: str,
        sequence_number: int,
        *,
        expected_content_hash: str | None = None,
    ) -> AttestationVerification:
        """Re-read an attestation and recompute its payload hash.

        With ``expected_content_hash`` the payload must also attest to that
        content for ``hash_valid`` to be True.
        """
        require_entity_id(topic_id, "topic_id")
        record = self._mirror.get_topic_message(topic_id, sequence_number)
        body = decode_message(record)
        if not body or not isinstance(body.get("payload"), dict):
            return AttestationVerification(
                topic_id=topic_id, sequence_number=sequence_number, found=False
            )

        payload = body["payload"]
        recomputed = hash_payload(payload)
        stored = body.get("payload_hash", "")
        valid = recomputed == stored
        if expected_content_hash is not None:
            valid = valid and payload.get("content_hash") == expected_content_hash
        consensus = consensus_to_datetime(record.get("consensus_timestamp"))  # type: ignore[union-attr]

        logger.info(
            "Attestation %s:%s verification: %s", topic_id, sequence_number,
            "valid" if valid else "INVALID",
        )
        return AttestationVerification(
            topic_id=topic_id,
            sequence_number=sequence_number,
            found=True,
            hash_valid=valid,
            payload_hash=stored,
            recomputed_hash=recomputed,
            consensus_timestamp=consensus.isoformat() if consensus else None,
            payload=payload,
        )
