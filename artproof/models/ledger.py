"""Ledger-facing models: identifiers, transaction requests, signer responses.

Identifier formats
------------------
- Entity ids use the ``shard.realm.num`` triplet (``0.0.4821``).
- Transaction ids are ``<account>@<seconds>.<nanos>``; the Mirror wants
  them hyphenated as ``<account>-<seconds>-<nanos>`` with nanos padded to
  nine digits.  Conversion happens here, at the boundary, and nowhere else.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from artproof.core.errors import InvalidInput

ENTITY_ID_PATTERN = re.compile(r"^(\d+)\.(\d+)\.(\d+)$")
EVM_ADDRESS_PATTERN = re.compile(r"^(0x)?([0-9a-fA-F]{40})$")


def is_entity_id(value: str | None) -> bool:
    """Return True if *value* is a ``shard.realm.num`` triplet."""
    return bool(value) and ENTITY_ID_PATTERN.match(value) is not None


def require_entity_id(value: str | None, field: str = "entity_id") -> str:
    """Validate a triplet id, raising ``InvalidInput`` otherwise."""
    if not is_entity_id(value):
        raise InvalidInput(f"{field} must be a shard.realm.num id", value=value)
    return value  # type: ignore[return-value]


def is_evm_address(value: str | None) -> bool:
    return bool(value) and EVM_ADDRESS_PATTERN.match(value) is not None


def evm_to_entity_id(address: str) -> str | None:
    """Convert a long-zero EVM address to its entity id.

    Long-zero addresses encode shard (4 bytes), realm (8 bytes) and num
    (8 bytes) directly.  Alias addresses (derived from a public key) are
    not decodable locally and yield None; the caller must ask the Mirror.
    """
    match = EVM_ADDRESS_PATTERN.match(address or "")
    if match is None:
        return None
    hexstr = match.group(2).lower()
    shard = int(hexstr[0:8], 16)
    realm = int(hexstr[8:24], 16)
    num = int(hexstr[24:40], 16)
    if shard != 0 or realm != 0:
        return None
    return f"{shard}.{realm}.{num}"


class TransactionId(BaseModel):
    """A transaction id: paying account plus valid-start timestamp."""

    model_config = ConfigDict(frozen=True)

    account_id: str
    seconds: int
    nanos: int = 0

    @classmethod
    def parse(cls, value: str) -> TransactionId:
        """Parse either the ``acct@s.n`` form or the Mirror's ``acct-s-n`` form."""
        text = (value or "").strip()
        if "@" in text:
            account, _, stamp = text.partition("@")
            seconds, _, frac = stamp.partition(".")
            # "5" after the dot means half a second, so pad on the right
            nanos = (frac or "0").ljust(9, "0")[:9]
        else:
            parts = text.split("-")
            if len(parts) != 3:
                raise InvalidInput("unrecognized transaction id", value=value)
            account, seconds, nanos = parts
        if not is_entity_id(account) or not seconds.isdigit() or not nanos.isdigit():
            raise InvalidInput("unrecognized transaction id", value=value)
        return cls(account_id=account, seconds=int(seconds), nanos=int(nanos))

    def to_mirror_format(self) -> str:
        return f"{self.account_id}-{self.seconds}-{str(self.nanos).zfill(9)}"

    def __str__(self) -> str:
        return f"{self.account_id}@{self.seconds}.{str(self.nanos).zfill(9)}"


def to_mirror_transaction_id(value: str) -> str:
    """Shortcut: any accepted transaction id form -> Mirror query form."""
    return TransactionId.parse(value).to_mirror_format()


# ---------------------------------------------------------------------------
# Transaction requests and signer responses
# ---------------------------------------------------------------------------


class TransactionKind(str, Enum):
    """The ledger transactions the pipeline submits."""

    TOPIC_CREATE = "topic_create"
    TOPIC_MESSAGE_SUBMIT = "topic_message_submit"
    FILE_CREATE = "file_create"
    TOKEN_CREATE = "token_create"
    TOKEN_ASSOCIATE = "token_associate"
    TOKEN_MINT = "token_mint"
    CONTRACT_CALL = "contract_call"
    NFT_ALLOWANCE_APPROVE = "nft_allowance_approve"


class LedgerTransaction(BaseModel):
    """A ledger-agnostic transaction request handed to a Signer.

    ``transaction_id`` and ``network`` are empty until ``Signer.populate``
    fills them in.
    """

    model_config = ConfigDict(frozen=True)

    kind: TransactionKind
    body: dict[str, Any] = Field(default_factory=dict)
    memo: str = ""
    max_fee_tinybars: int = 0
    transaction_id: str | None = None
    network: str | None = None


class SignerResponse(BaseModel):
    """What a Signer is allowed to report back after submission.

    Created entity ids are deliberately absent: the Mirror is the only
    source of truth for them.  ``transaction_id`` may be None when an
    interactive wallet returns nothing usable; that means "unknown", not
    success.
    """

    model_config = ConfigDict(frozen=True)

    transaction_id: str | None = None
    receipt_status: str | None = None
    serials: list[int] = Field(default_factory=list)
    raw_result: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_unknown(self) -> bool:
        return self.transaction_id is None and self.receipt_status is None
