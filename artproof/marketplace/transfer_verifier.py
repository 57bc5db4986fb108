"""Marketplace purchase and ownership-transfer verification.

Transfer mechanism
------------------
The seller grants the marketplace operator an "all serials" NFT
allowance when listing.  At purchase time the buyer pays the contract,
and the contract moves the NFT using that allowance; there is no second
seller signature.  Hence:

- the allowance is checked on the Mirror *before* any payment,
- payment success and transfer success are separate outcomes, and
- ownership is confirmed by polling the Mirror for the buyer as owner.

Approval flags and prices handed in from an earlier UI step are never
trusted; both are re-derived at the point of use.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any, Protocol, runtime_checkable

from artproof.bridge.mirror import Mirror
from artproof.bridge.signer import Signer, require_signer, sign_and_submit
from artproof.config import ArtproofConfig
from artproof.core.errors import (
    AllowanceNotGranted,
    AlreadyAssociated,
    InvalidInput,
    MirrorTimeout,
    MirrorUnavailable,
    PartialTransferFailure,
)
from artproof.core.poller import MirrorPoller, PollPolicy
from artproof.models.ledger import (
    LedgerTransaction,
    TransactionKind,
    evm_to_entity_id,
    is_entity_id,
    is_evm_address,
    require_entity_id,
)
from artproof.models.marketplace import (
    ApprovalStatus,
    ListingRecord,
    PurchaseOutcome,
    PurchaseReceipt,
    TransferVerification,
)
from artproof.models.minting import AssociationResult

logger = logging.getLogger(__name__)

PURCHASE_FUNCTION = "purchaseNFT"


@runtime_checkable
class ListingBook(Protocol):
    """Authoritative listing state (the marketplace contract)."""

    def get_listing(self, listing_id: int) -> ListingRecord | None: ...


class MarketplaceTransferVerifier:
    """Checks pre-approval, pays, and confirms the NFT actually moved.

    Parameters
    ----------
    signer:
        Wallet session of the buyer; None for the read-only checks.
    mirror:
        Read-only ledger query surface.
    operator_id:
        The marketplace operator (contract) that must hold the seller's
        allowance.  Defaults to ``config.marketplace_operator_id``.
    listings:
        Optional authoritative listing source used by ``complete_purchase``
        to re-read seller and price.
    sleep:
        Injected sleep for the association settle delay.
    """

    def __init__(
        self,
        signer: Signer | None,
        mirror: Mirror,
        *,
        operator_id: str | None = None,
        listings: ListingBook | None = None,
        poller: MirrorPoller | None = None,
        config: ArtproofConfig | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._config = config or ArtproofConfig()
        self._signer = signer
        self._mirror = mirror
        self._listings = listings
        self._poller = poller or MirrorPoller(PollPolicy.from_config(self._config), sleep=sleep)
        self._sleep = sleep
        self.operator_id = operator_id or self._config.marketplace_operator_id

    @property
    def signer(self) -> Signer:
        return require_signer(self._signer)

    # ------------------------------------------------------------------
    # Account id normalization
    # ------------------------------------------------------------------

    def normalize_account(self, value: str | None) -> str | None:
        """Map triplet ids, long-zero and alias EVM addresses to a triplet id."""
        if not value:
            return None
        if is_entity_id(value):
            return value
        if is_evm_address(value):
            converted = evm_to_entity_id(value)
            if converted is not None:
                return converted
            address = value if value.startswith("0x") else f"0x{value}"
            account = self._mirror.get_account(address)
            return account.get("account") if account else None
        return None

    # ------------------------------------------------------------------
    # Pre-approval
    # ------------------------------------------------------------------

    def check_seller_pre_approval(self, token_id: str, seller_account: str) -> ApprovalStatus:
        """Whether the operator holds an all-serials allowance on *token_id*.

        Never raises for Mirror trouble: an unreadable allowance is simply
        not approved, with the reason in ``details``.
        """
        require_entity_id(token_id, "token_id")
        require_entity_id(seller_account, "seller_account")

        def _status(approved: bool, **details: Any) -> ApprovalStatus:
            return ApprovalStatus(
                approved=approved,
                token_id=token_id,
                seller_account=seller_account,
                operator_id=self.operator_id,
                details=details,
            )

        if not self.operator_id:
            return _status(False, error="marketplace operator is not configured")

        try:
            allowances = self._mirror.get_nft_allowances(seller_account)
            for allowance in allowances:
                if allowance.get("token_id") != token_id:
                    continue
                spender = self.normalize_account(allowance.get("spender"))
                if spender == self.operator_id and allowance.get("approved_for_all") is True:
                    return _status(True, allowance_count=len(allowances), allowance=allowance)
        except MirrorUnavailable as exc:
            logger.warning("Allowance check for %s on %s failed: %s", seller_account, token_id, exc)
            return _status(False, error=str(exc))

        return _status(
            False,
            allowance_count=len(allowances),
            reason="no all-serials allowance for the marketplace operator",
        )

    def require_pre_approval(self, token_id: str, seller_account: str) -> ApprovalStatus:
        """``check_seller_pre_approval`` that raises ``AllowanceNotGranted``."""
        status = self.check_seller_pre_approval(token_id, seller_account)
        if not status.approved:
            raise AllowanceNotGranted(
                "seller has not approved the marketplace for this token",
                token_id=token_id,
                seller=seller_account,
                operator=self.operator_id,
                **status.details,
            )
        return status

    def grant_pre_approval(self, token_id: str, seller_account: str) -> ApprovalStatus:
        """Grant the operator an all-serials allowance on *token_id*.

        Signed by the seller.  Nothing is submitted when the allowance is
        already visible on the Mirror; otherwise the transaction is
        confirmed on the Mirror and the allowance polled until it shows.

        Raises
        ------
        InvalidInput
            No operator configured, or the signer is not the seller.
        SignerRejected, TransactionFailed, MirrorTimeout
            From submission or confirmation.
        """
        require_entity_id(token_id, "token_id")
        require_entity_id(seller_account, "seller_account")
        if not self.operator_id:
            raise InvalidInput("marketplace operator is not configured")
        if self.signer.account_id != seller_account:
            raise InvalidInput(
                "signer account does not match the seller",
                signer_account=self.signer.account_id,
                seller=seller_account,
            )

        status = self.check_seller_pre_approval(token_id, seller_account)
        if status.approved:
            logger.info("%s already approved %s for %s", seller_account, self.operator_id, token_id)
            return status

        tx = LedgerTransaction(
            kind=TransactionKind.NFT_ALLOWANCE_APPROVE,
            body={
                "owner_account_id": seller_account,
                "token_id": token_id,
                "spender_account_id": self.operator_id,
                "approved_for_all": True,
            },
            max_fee_tinybars=self._config.allowance_max_fee,
        )
        tx_id, _ = sign_and_submit(self.signer, tx)
        self._poller.wait_for_transaction(self._mirror, tx_id, description="allowance approval")
        status = self._poller.poll_until(
            lambda: self.check_seller_pre_approval(token_id, seller_account),
            lambda s: s.approved,
            description=f"allowance on {token_id} for {self.operator_id}",
        )
        logger.info("%s approved %s for %s (%s)", seller_account, self.operator_id, token_id, tx_id)
        return status

    # ------------------------------------------------------------------
    # Buyer association
    # ------------------------------------------------------------------

    def is_associated(self, token_id: str, account_id: str) -> bool:
        tokens = self._mirror.get_account_tokens(account_id, token_id)
        return any(t.get("token_id") == token_id for t in tokens)

    def _is_associated_or_unknown(self, token_id: str, account_id: str) -> bool:
        try:
            return self.is_associated(token_id, account_id)
        except MirrorUnavailable as exc:
            logger.warning("Association check for %s failed: %s", account_id, exc)
            return False

    def ensure_association(self, token_id: str, buyer_account: str) -> AssociationResult:
        """Associate the buyer with *token_id* only if it genuinely is not yet."""
        require_entity_id(token_id, "token_id")
        require_entity_id(buyer_account, "buyer_account")

        already = AssociationResult(
            token_id=token_id,
            account_id=buyer_account,
            associated=True,
            already_associated=True,
        )
        if self._is_associated_or_unknown(token_id, buyer_account):
            return already

        # The Mirror may lag a recent association; settle and look again
        self._sleep(self._config.association_settle_delay)
        if self._is_associated_or_unknown(token_id, buyer_account):
            return already

        tx = LedgerTransaction(
            kind=TransactionKind.TOKEN_ASSOCIATE,
            body={"account_id": buyer_account, "token_ids": [token_id]},
            max_fee_tinybars=self._config.token_associate_max_fee,
        )
        try:
            tx_id, response = sign_and_submit(self.signer, tx)
            if response.is_unknown:
                self._poller.wait_for_transaction(
                    self._mirror, tx_id, description="buyer association"
                )
        except AlreadyAssociated:
            logger.info("%s was already associated with %s", buyer_account, token_id)
            return already

        logger.info("Associated %s with %s (%s)", buyer_account, token_id, tx_id)
        return AssociationResult(
            token_id=token_id, account_id=buyer_account, associated=True, transaction_id=tx_id
        )

    # ------------------------------------------------------------------
    # Payment
    # ------------------------------------------------------------------

    def purchase(self, listing_id: int, price: int, buyer_account: str) -> PurchaseReceipt:
        """Submit the payment leg.  Does not move the NFT itself."""
        require_entity_id(buyer_account, "buyer_account")
        if not self.operator_id:
            raise InvalidInput("marketplace operator is not configured")
        if not isinstance(price, int) or price <= 0:
            raise InvalidInput("price must be a positive number of tinybars", price=price)
        if self.signer.account_id != buyer_account:
            raise InvalidInput(
                "signer account does not match the buyer",
                signer_account=self.signer.account_id,
                buyer=buyer_account,
            )

        tx = LedgerTransaction(
            kind=TransactionKind.CONTRACT_CALL,
            body={
                "contract_id": self.operator_id,
                "function": PURCHASE_FUNCTION,
                "params": [listing_id],
                "payable_amount": price,
                "gas": self._config.purchase_gas,
            },
        )
        tx_id, response = sign_and_submit(self.signer, tx)
        if response.is_unknown:
            self._poller.wait_for_transaction(self._mirror, tx_id, description="purchase")
        logger.info("Purchase of listing %s paid by %s (%s)", listing_id, buyer_account, tx_id)
        return PurchaseReceipt(
            listing_id=listing_id, transaction_id=tx_id, buyer_account=buyer_account, price=price
        )

    # ------------------------------------------------------------------
    # Ownership confirmation
    # ------------------------------------------------------------------

    def current_owner(self, token_id: str, serial_number: int) -> str | None:
        nft = self._mirror.get_nft(token_id, serial_number)
        return self.normalize_account(nft.get("account_id")) if nft else None

    def verify_transfer(
        self,
        token_id: str,
        serial_number: int,
        expected_owner: str,
        *,
        max_retries: int | None = None,
        retry_delay: float | None = None,
    ) -> TransferVerification:
        """Poll the Mirror until *expected_owner* holds the serial.

        The first wait is ``2 * retry_delay``, later waits ``retry_delay``.
        Exhaustion is reported as ``transferred=False``, not raised.
        """
        require_entity_id(token_id, "token_id")
        if max_retries is None:
            max_retries = self._config.transfer_max_retries
        if max_retries < 1:
            raise InvalidInput("max_retries must be at least 1", max_retries=max_retries)
        delay = self._config.transfer_retry_delay if retry_delay is None else retry_delay
        policy = PollPolicy(initial_delay=delay * 2, max_attempts=max_retries, timeout=None)

        def _result(transferred: bool, owner: str | None, attempts: int) -> TransferVerification:
            return TransferVerification(
                transferred=transferred,
                current_owner=owner,
                expected_owner=expected_owner,
                token_id=token_id,
                serial_number=serial_number,
                attempts=attempts,
            )

        attempts = 0

        def _query() -> str | None:
            nonlocal attempts
            attempts += 1
            return self.current_owner(token_id, serial_number)

        try:
            owner = self._poller.poll_until(
                _query,
                lambda o: o == expected_owner,
                policy=policy,
                backoff=lambda _attempt: delay,
                description=f"ownership of {token_id}:{serial_number}",
            )
        except MirrorTimeout as exc:
            logger.warning(
                "%s:%s not at %s after %d attempts (last owner %s)",
                token_id, serial_number, expected_owner, attempts, exc.last_result,
            )
            return _result(False, exc.last_result, attempts)
        return _result(True, owner, attempts)

    # ------------------------------------------------------------------
    # Full purchase
    # ------------------------------------------------------------------

    def _authoritative_listing(self, listing: ListingRecord) -> ListingRecord:
        if self._listings is None:
            return listing
        current = self._listings.get_listing(listing.listing_id)
        if current is None:
            raise InvalidInput("listing no longer exists", listing_id=listing.listing_id)
        if current != listing:
            logger.warning(
                "Listing %s differs from the caller's copy; using the marketplace's",
                listing.listing_id,
            )
        return current

    def complete_purchase(self, listing: ListingRecord, buyer_account: str) -> PurchaseOutcome:
        """Verify, associate, pay and confirm the transfer of one listing.

        Raises
        ------
        AllowanceNotGranted
            Before any payment if the seller's allowance is missing.
        PartialTransferFailure
            If payment went through but the NFT was not observed at the buyer.
            The outcome is attached as ``exc.outcome``.
        """
        listing = self._authoritative_listing(listing)
        token_id, serial = listing.token_id, listing.serial_number

        owner = self.current_owner(token_id, serial)
        if owner != listing.seller_account:
            raise InvalidInput(
                "listing seller does not own the NFT",
                seller=listing.seller_account,
                observed_owner=owner,
            )
        self.require_pre_approval(token_id, listing.seller_account)
        self.ensure_association(token_id, buyer_account)

        receipt = self.purchase(listing.listing_id, listing.expected_price, buyer_account)
        verification = self.verify_transfer(token_id, serial, buyer_account)

        if verification.transferred:
            message = f"Purchased {token_id}:{serial}"
        else:
            message = (
                f"Payment succeeded but {token_id}:{serial} has not reached {buyer_account}. "
                f"Contact support with transaction {receipt.transaction_id}."
            )
        outcome = PurchaseOutcome(
            listing=listing,
            buyer_account=buyer_account,
            payment_success=True,
            transfer_success=verification.transferred,
            payment_transaction_id=receipt.transaction_id,
            current_owner=verification.current_owner,
            message=message,
        )
        if not verification.transferred:
            raise PartialTransferFailure(
                message,
                outcome=outcome,
                transaction_id=receipt.transaction_id,
                observed_owner=verification.current_owner,
                attempts=verification.attempts,
            )
        return outcome
