"""Decentralized identity (DID) models."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from artproof.core.errors import InvalidInput
from artproof.models.ledger import is_entity_id

DID_CONTEXT = "https://www.w3.org/ns/did/v1"
DID_PREFIX = "did:hedera:"


def did_for_topic(network: str, topic_id: str) -> str:
    """Derive the DID string from network and identity topic id."""
    return f"{DID_PREFIX}{network}:{topic_id}"


def did_topic_memo(account_id: str) -> str:
    """Memo that marks an account's identity topic on the ledger."""
    return f"DID for {account_id}"


def parse_did(did: str) -> tuple[str, str]:
    """Split ``did:hedera:<network>:<topic>`` into ``(network, topic_id)``."""
    if isinstance(did, str) and did.startswith(DID_PREFIX):
        network, _, topic_id = did[len(DID_PREFIX):].partition(":")
        if network and is_entity_id(topic_id):
            return network, topic_id
    raise InvalidInput("not a did:hedera:<network>:<topic> identifier", did=did)


class IdentityProfile(BaseModel):
    """Optional public profile attached to a DID document as a service."""

    model_config = ConfigDict(frozen=True)

    name: str = ""
    bio: str = ""


class IdentityRecord(BaseModel):
    """An identity as observed on the Mirror.  Never mutated."""

    model_config = ConfigDict(frozen=True)

    did: str
    topic_id: str
    document_location_id: str | None = None
    controller_account: str
    network: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class IdentityLookup(BaseModel):
    """Result of ``IdentityResolver.lookup``; ``degraded`` means cache-served."""

    model_config = ConfigDict(frozen=True)

    record: IdentityRecord | None = None
    degraded: bool = False


class IdentityProgress(BaseModel):
    """Partial creation state kept so a failed creation can be resumed."""

    model_config = ConfigDict(frozen=True)

    account_id: str
    public_key: str
    topic_id: str | None = None
    topic_transaction_id: str | None = None
    document_transaction_id: str | None = None
    document_location_id: str | None = None
    create_message_published: bool = False


class VerificationMethod(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    type: str = "Ed25519VerificationKey2020"
    controller: str
    public_key: str = Field(alias="publicKey")


class DIDDocument(BaseModel):
    """W3C DID document as stored in the ledger file service."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    context: str = Field(default=DID_CONTEXT, alias="@context")
    id: str
    controller: str
    verification_method: list[VerificationMethod] = Field(alias="verificationMethod")
    authentication: list[str]
    assertion_method: list[str] = Field(alias="assertionMethod")
    service: list[dict[str, Any]] = Field(default_factory=list)

    @classmethod
    def build(
        cls,
        did: str,
        controller: str,
        public_key: str,
        profile: IdentityProfile | None = None,
        *,
        platform: str = "artproof",
        created_at: datetime | None = None,
    ) -> DIDDocument:
        key_id = f"{did}#key-1"
        service: list[dict[str, Any]] = []
        if profile is not None:
            service.append({
                "id": f"{did}#profile",
                "type": "ArtistProfile",
                "serviceEndpoint": {
                    "name": profile.name,
                    "bio": profile.bio,
                    "platform": platform,
                    "createdAt": (created_at or datetime.now(timezone.utc)).isoformat(),
                },
            })
        return cls(
            id=did,
            controller=controller,
            verification_method=[
                VerificationMethod(id=key_id, controller=did, public_key=public_key)
            ],
            authentication=[key_id],
            assertion_method=[key_id],
            service=service,
        )

    def to_json_dict(self) -> dict[str, Any]:
        data = self.model_dump(mode="json", by_alias=True)
        if not data["service"]:
            data.pop("service")
        return data


class DIDResolution(BaseModel):
    """A DID resolved from its topic, with the stored document when readable."""

    model_config = ConfigDict(frozen=True)

    record: IdentityRecord
    document: DIDDocument | None = None

    @property
    def document_matches(self) -> bool:
        return self.document is not None and self.document.id == self.record.did
