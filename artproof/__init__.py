"""Artproof: provenance pipeline for artwork NFTs on a Hedera-style ledger.

v0.1.0:
  - Deterministic content fingerprints (canonical metadata + SHA-256)
  - Bounded Mirror polling shared by every confirmation step
  - DID lookup and creation with single-flight ``ensure_before_use``
  - Per-creator attestation topics with payload-hash verification
  - Collection create -> associate -> mint with the 100-byte pointer limit
  - Marketplace pre-approval and ownership-transfer verification
  - Append-only, hash-chained run journal for every pipeline stage
"""

__version__ = "0.1.0"
__description__ = "Provenance pipeline for artwork NFTs"

from artproof.core.orchestrator import ProvenancePipeline
from artproof.cli.app import app as cli

__all__ = ["ProvenancePipeline", "cli", "__version__"]
