"""Marketplace models: listings, approvals, purchase and transfer outcomes."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ListingRecord(BaseModel):
    """A marketplace listing.

    ``is_approved_for_transfer`` is whatever an earlier step claimed; it is
    informational only and re-checked against the Mirror before payment.
    """

    model_config = ConfigDict(frozen=True)

    listing_id: int
    token_id: str
    serial_number: int
    seller_account: str
    expected_price: int  # tinybars
    is_approved_for_transfer: bool = False


class ApprovalStatus(BaseModel):
    model_config = ConfigDict(frozen=True)

    approved: bool
    token_id: str
    seller_account: str
    operator_id: str
    details: dict[str, Any] = Field(default_factory=dict)


class PurchaseReceipt(BaseModel):
    """The payment leg only.  Says nothing about where the NFT is."""

    model_config = ConfigDict(frozen=True)

    listing_id: int
    transaction_id: str
    buyer_account: str
    price: int


class TransferVerification(BaseModel):
    model_config = ConfigDict(frozen=True)

    transferred: bool
    current_owner: str | None = None
    expected_owner: str
    token_id: str
    serial_number: int
    attempts: int = 0


class PurchaseOutcome(BaseModel):
    """Payment and transfer are reported as independent booleans."""

    model_config = ConfigDict(frozen=True)

    listing: ListingRecord
    buyer_account: str
    payment_success: bool
    transfer_success: bool
    payment_transaction_id: str | None = None
    current_owner: str | None = None
    message: str = ""

    @property
    def fully_successful(self) -> bool:
        return self.payment_success and self.transfer_success
