"""Artproof data models: all Pydantic v2, all frozen (immutable)."""

from artproof.models.attestation import (
    AttestationPayload,
    AttestationProof,
    AttestationRecord,
    AttestationVerification,
)
from artproof.models.content import ContentFingerprint, FinalizedArtwork
from artproof.models.identity import (
    DIDDocument,
    DIDResolution,
    IdentityLookup,
    IdentityProfile,
    IdentityProgress,
    IdentityRecord,
)
from artproof.models.journal import JournalEntry
from artproof.models.ledger import (
    LedgerTransaction,
    SignerResponse,
    TransactionId,
    TransactionKind,
)
from artproof.models.marketplace import (
    ApprovalStatus,
    ListingRecord,
    PurchaseOutcome,
    PurchaseReceipt,
    TransferVerification,
)
from artproof.models.minting import (
    AssociationResult,
    CollectionOptions,
    CollectionResult,
    MintedAsset,
    MintWorkflowResult,
)
from artproof.models.pipeline import ProvenanceResult
from artproof.models.stages import (
    PIPELINE_STAGES,
    VALID_TRANSITIONS,
    StageDefinition,
    StageState,
)

__all__ = [
    # content
    "ContentFingerprint",
    "FinalizedArtwork",
    # identity
    "DIDDocument",
    "DIDResolution",
    "IdentityLookup",
    "IdentityProfile",
    "IdentityProgress",
    "IdentityRecord",
    # attestation
    "AttestationPayload",
    "AttestationProof",
    "AttestationRecord",
    "AttestationVerification",
    # ledger
    "LedgerTransaction",
    "SignerResponse",
    "TransactionId",
    "TransactionKind",
    # minting
    "AssociationResult",
    "CollectionOptions",
    "CollectionResult",
    "MintedAsset",
    "MintWorkflowResult",
    "ProvenanceResult",
    # marketplace
    "ApprovalStatus",
    "ListingRecord",
    "PurchaseOutcome",
    "PurchaseReceipt",
    "TransferVerification",
    # journal / stages
    "JournalEntry",
    "PIPELINE_STAGES",
    "VALID_TRANSITIONS",
    "StageDefinition",
    "StageState",
]
