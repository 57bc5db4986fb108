"""Marketplace purchase flow: pre-approval, association, payment, transfer.

Payment and transfer are independent outcomes; see ``transfer_verifier``.
"""

from artproof.marketplace.transfer_verifier import ListingBook, MarketplaceTransferVerifier

__all__ = ["ListingBook", "MarketplaceTransferVerifier"]
