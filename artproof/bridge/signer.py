"""Signer capability: the only way the pipeline submits transactions.

A Signer is injected into every orchestrator.  Wallet adapters
translate their native failures with ``classify_signer_error`` so the
pipeline only ever sees the typed taxonomy.
"""

from __future__ import annotations

import logging
from typing import Protocol, runtime_checkable

from artproof.core.errors import InvalidInput, TransactionFailed, classify_signer_error
from artproof.models.ledger import LedgerTransaction, SignerResponse

logger = logging.getLogger(__name__)

SUCCESS = "SUCCESS"


@runtime_checkable
class Signer(Protocol):
    """A connected wallet session for one account.

    ``submit`` blocks until the user approves or rejects; rejection is
    raised as ``SignerRejected``.
    """

    @property
    def account_id(self) -> str: ...

    def populate(self, transaction: LedgerTransaction) -> LedgerTransaction:
        """Fill in transaction id, network and fee fields."""
        ...

    def submit(self, transaction: LedgerTransaction) -> SignerResponse:
        """Sign and submit; return the narrow typed response."""
        ...


def sign_and_submit(
    signer: Signer, transaction: LedgerTransaction
) -> tuple[str, SignerResponse]:
    """Populate, submit and check the receipt of *transaction*.

    Returns ``(transaction_id, response)``.  An empty response is treated as
    "outcome unknown": the populated transaction id is returned so the
    caller can confirm against the Mirror.  A non-success receipt is
    raised as a typed error.
    """
    populated = signer.populate(transaction)
    response = signer.submit(populated)

    transaction_id = response.transaction_id or populated.transaction_id
    if transaction_id is None:
        raise TransactionFailed(
            f"{transaction.kind.value}: signer returned no transaction id; outcome unknown",
            account=signer.account_id,
        )

    status = response.receipt_status
    if status is not None and status.upper() != SUCCESS:
        raise classify_signer_error(
            status, transaction_id=transaction_id, kind=transaction.kind.value
        )

    if response.is_unknown:
        logger.info(
            "%s %s: signer result empty, confirmation deferred to mirror",
            transaction.kind.value, transaction_id,
        )
    else:
        logger.info("%s submitted: %s", transaction.kind.value, transaction_id)
    return transaction_id, response


def require_signer(signer: Signer | None) -> Signer:
    """Return *signer*, or raise if the component was built read-only."""
    if signer is None:
        raise InvalidInput("no signer connected; this operation submits transactions")
    return signer
