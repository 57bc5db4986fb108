"""Attestation models: payload, proof, published record, verification."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

ATTESTATION_TYPE = "NFTCreation"
ATTESTATION_VERSION = "1.0"
PENDING = "pending"


def attestation_topic_memo(account_id: str) -> str:
    """Memo that marks a creator's attestation topic."""
    return f"ANFT Attestations - Creator: {account_id}"


def explorer_topic_url(network: str, topic_id: str) -> str:
    return f"https://hashscan.io/{network}/topic/{topic_id}"


class AttestationPayload(BaseModel):
    """The claim binding a DID to a content hash.

    Caller-supplied descriptive fields (``nft_name``, ``image_cid`` ...)
    are kept as extra fields so they are part of the hashed payload.
    """

    model_config = ConfigDict(frozen=True, extra="allow")

    type: str = ATTESTATION_TYPE
    version: str = ATTESTATION_VERSION
    creator_did: str
    content_hash: str
    timestamp: int  # milliseconds since epoch
    timestamp_iso: str
    network: str
    platform: str


class AttestationProof(BaseModel):
    """Authorship proof: control of the DID, not a detached signature."""

    model_config = ConfigDict(frozen=True)

    proof: str  # the payload hash
    proof_type: str = "DID-Authentication"
    signed_by: str
    signed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class AttestationRecord(BaseModel):
    """A published attestation.

    ``transaction_id`` is the authoritative identifier; ``sequence_number``
    is an enrichment and may be ``"pending"``.
    """

    model_config = ConfigDict(frozen=True)

    transaction_id: str
    topic_id: str
    sequence_number: int | Literal["pending"] = PENDING
    payload_hash: str
    creator_did: str
    content_hash: str
    network: str
    published_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    payload: AttestationPayload
    proof: AttestationProof

    @property
    def is_sequence_pending(self) -> bool:
        return self.sequence_number == PENDING

    @property
    def attestation_id(self) -> str:
        return f"{self.topic_id}:{self.sequence_number}"

    @property
    def explorer_url(self) -> str:
        return explorer_topic_url(self.network, self.topic_id)


class AttestationVerification(BaseModel):
    """Outcome of re-reading an attestation message and re-hashing it."""

    model_config = ConfigDict(frozen=True)

    topic_id: str
    sequence_number: int
    found: bool
    hash_valid: bool = False
    payload_hash: str = ""
    recomputed_hash: str = ""
    consensus_timestamp: str | None = None
    payload: dict[str, Any] = Field(default_factory=dict)
