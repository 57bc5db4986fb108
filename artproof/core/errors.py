"""Typed error taxonomy for the provenance pipeline.

Every error carries a ``context`` dict with whatever the raising stage
knew at the time (last transaction id, observed owner, attempt count)
so a failed run can be diagnosed by hand.  Ledger transactions cannot
be reversed; nothing here implies compensation.
"""

from __future__ import annotations

from typing import Any


class ProvenanceError(RuntimeError):
    """Base class for all pipeline failures."""

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.context: dict[str, Any] = {k: v for k, v in context.items() if v is not None}

    def __str__(self) -> str:
        base = super().__str__()
        if not self.context:
            return base
        details = ", ".join(f"{k}={v!r}" for k, v in sorted(self.context.items()))
        return f"{base} ({details})"


class InvalidInput(ProvenanceError, ValueError):
    """Bad hashing or canonicalization input, rejected before any network call."""


class SignerRejected(ProvenanceError):
    """The user declined the transaction in their wallet.  Terminal."""


class InsufficientBalance(ProvenanceError):
    """The paying account cannot cover the transaction fee or amount."""


class AlreadyAssociated(ProvenanceError):
    """The account is already associated with the token.

    Callers normalize this to success.
    """


class TransactionFailed(ProvenanceError):
    """The ledger (or signer) reported a non-success status."""


class MirrorUnavailable(ProvenanceError):
    """The Mirror could not be reached or answered with a server error."""


class MirrorTimeout(ProvenanceError, TimeoutError):
    """Bounded polling exhausted without the predicate holding."""

    def __init__(
        self,
        message: str,
        *,
        last_result: Any = None,
        attempts: int = 0,
        last_error: BaseException | None = None,
        **context: Any,
    ) -> None:
        super().__init__(message, attempts=attempts, **context)
        self.last_result = last_result
        self.attempts = attempts
        self.last_error = last_error


class MetadataTooLarge(ProvenanceError):
    """The on-chain metadata pointer exceeds the ledger's byte ceiling."""


class AllowanceNotGranted(ProvenanceError):
    """The seller has not approved the marketplace operator for the token."""


class PartialTransferFailure(ProvenanceError):
    """Payment succeeded but the NFT was not observed at the buyer."""

    def __init__(self, message: str, *, outcome: Any = None, **context: Any) -> None:
        super().__init__(message, **context)
        self.outcome = outcome


# ---------------------------------------------------------------------------
# Signer failure classification
# ---------------------------------------------------------------------------

_STATUS_MAP: list[tuple[tuple[str, ...], type[ProvenanceError]]] = [
    (("USER_REJECT", "REJECTED BY USER", "USER REJECTED", "USER_DECLINED"), SignerRejected),
    (("INSUFFICIENT_PAYER_BALANCE", "INSUFFICIENT_ACCOUNT_BALANCE", "INSUFFICIENT_BALANCE"),
     InsufficientBalance),
    (("TOKEN_ALREADY_ASSOCIATED_TO_ACCOUNT", "ALREADY_ASSOCIATED"), AlreadyAssociated),
]


def classify_signer_error(message: str, **context: Any) -> ProvenanceError:
    """Map a wallet/ledger failure message onto the typed taxonomy.

    Anything unrecognized (including ``INVALID_SIGNATURE``) becomes
    ``TransactionFailed``.
    """
    upper = (message or "").upper()
    for markers, error_type in _STATUS_MAP:
        if any(marker in upper for marker in markers):
            return error_type(message, **context)
    return TransactionFailed(message, **context)
