"""Result of a full provenance run."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict

from artproof.models.attestation import AttestationRecord
from artproof.models.content import FinalizedArtwork
from artproof.models.identity import IdentityRecord
from artproof.models.minting import MintWorkflowResult


class ProvenanceResult(BaseModel):
    """Everything a completed run produced, stage by stage."""

    model_config = ConfigDict(frozen=True)

    run_id: str
    artwork: FinalizedArtwork
    identity: IdentityRecord
    attestation: AttestationRecord
    minting: MintWorkflowResult
    creation_record_transaction_id: str | None = None

    @property
    def nft_id(self) -> str:
        return self.minting.mint.nft_id
