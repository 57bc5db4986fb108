"""Minting models: collection, association, minted asset."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class CollectionOptions(BaseModel):
    """Caller-tunable parts of a collection.  Keys are never caller-supplied."""

    model_config = ConfigDict(frozen=True)

    name: str = "AI Art Collection"
    symbol: str = "AIART"
    memo: str = "AI Art NFT Collection"
    max_supply: int = Field(default=1, ge=1)


class CollectionResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    collection_id: str
    transaction_id: str
    owner_account: str
    max_supply: int


class AssociationResult(BaseModel):
    """Association outcome; ``already_associated`` still counts as success."""

    model_config = ConfigDict(frozen=True)

    token_id: str
    account_id: str
    associated: bool
    already_associated: bool = False
    transaction_id: str | None = None


class MintedAsset(BaseModel):
    """A minted serial.  ``on_chain_metadata_pointer`` is at most 100 bytes."""

    model_config = ConfigDict(frozen=True)

    collection_id: str
    serial_number: int
    transaction_id: str
    on_chain_metadata_pointer: str
    off_chain_metadata: dict[str, Any] = Field(default_factory=dict)
    serial_source: str = "signer"  # signer | mirror | default

    @property
    def nft_id(self) -> str:
        return f"{self.collection_id}:{self.serial_number}"


class MintWorkflowResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    collection: CollectionResult
    association: AssociationResult
    mint: MintedAsset
