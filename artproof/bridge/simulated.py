"""In-process simulated ledger for demos and tests.

``SimulatedLedger`` plays three roles at once:

- the consensus network, executing ``LedgerTransaction`` requests signed
  by ``SimulatedSigner`` sessions (Ed25519, checked against the payer's
  account key),
- a ``Mirror``, serving records in the public REST shapes with a
  configurable indexing lag and an on/off switch for outages,
- the marketplace contract and its ``ListingBook``.

Indexing lag is counted in Mirror reads: a record written while
``index_lag`` is N becomes visible on the N-th Mirror call after it.
"""

from __future__ import annotations

import base64
import hashlib
import logging
import threading
from typing import Any

from artproof.bridge.crypto_bridge import generate_keypair, sign_data, verify_data
from artproof.core.errors import MirrorUnavailable, SignerRejected
from artproof.core.hasher import canonical_json_bytes
from artproof.models.ledger import (
    LedgerTransaction,
    SignerResponse,
    TransactionId,
    TransactionKind,
)
from artproof.models.marketplace import ListingRecord

logger = logging.getLogger(__name__)

TINYBARS_PER_HBAR = 100_000_000
NETWORK_FEE = 1_000_000  # flat per-transaction fee in tinybars
METADATA_LIMIT = 100

_MIRROR_NAMES = {
    TransactionKind.TOPIC_CREATE: "CONSENSUSCREATETOPIC",
    TransactionKind.TOPIC_MESSAGE_SUBMIT: "CONSENSUSSUBMITMESSAGE",
    TransactionKind.FILE_CREATE: "FILECREATE",
    TransactionKind.TOKEN_CREATE: "TOKENCREATION",
    TransactionKind.TOKEN_ASSOCIATE: "TOKENASSOCIATE",
    TransactionKind.TOKEN_MINT: "TOKENMINT",
    TransactionKind.CONTRACT_CALL: "CONTRACTCALL",
    TransactionKind.NFT_ALLOWANCE_APPROVE: "CRYPTOAPPROVEALLOWANCE",
}


def signing_bytes(transaction: LedgerTransaction) -> bytes:
    """The bytes a SimulatedSigner signs: everything but the signature."""
    return canonical_json_bytes(transaction.model_dump(mode="json"))


class _Outcome:
    __slots__ = ("status", "entity_id", "serials", "nft_transfers")

    def __init__(self, status: str = "SUCCESS", entity_id: str | None = None) -> None:
        self.status = status
        self.entity_id = entity_id
        self.serials: list[int] = []
        self.nft_transfers: list[dict[str, Any]] = []


class SimulatedLedger:
    """A single-process ledger, Mirror and marketplace contract.

    Parameters
    ----------
    network:
        Network name reported in populated transactions.
    index_lag:
        Mirror reads before a new record becomes visible.
    """

    def __init__(self, network: str = "testnet", *, index_lag: int = 0) -> None:
        self.network = network
        self.index_lag = index_lag
        self.mirror_available = True
        self.drop_nft_transfers = False  # contract takes payment but keeps the NFT

        self._lock = threading.RLock()
        self._next_num = 1000
        self._clock = 1_700_000_000
        self._reads = 0

        self._accounts: dict[str, dict[str, Any]] = {}
        self._transactions: dict[str, dict[str, Any]] = {}
        self._topics: dict[str, dict[str, Any]] = {}
        self._files: dict[str, str] = {}
        self._tokens: dict[str, dict[str, Any]] = {}
        self._allowances: dict[str, list[dict[str, Any]]] = {}
        self._listings: dict[int, dict[str, Any]] = {}
        self._next_listing = 1
        self.marketplace_id: str | None = None

    # ------------------------------------------------------------------
    # Setup helpers
    # ------------------------------------------------------------------

    def _new_entity(self) -> str:
        self._next_num += 1
        return f"0.0.{self._next_num}"

    def _tick(self) -> str:
        self._clock += 1
        return f"{self._clock}.000000000"

    def create_account(self, balance_hbar: int = 100) -> str:
        """Open an account with a fresh Ed25519 key; returns its id."""
        private_key, public_key = generate_keypair()
        with self._lock:
            account_id = self._new_entity()
            self._accounts[account_id] = {
                "private_key": private_key,
                "public_key": public_key,
                "balance": balance_hbar * TINYBARS_PER_HBAR,
                "evm_address": "0x" + hashlib.sha256(public_key.encode()).hexdigest()[-40:],
                "tokens": set(),
            }
        return account_id

    def signer_for(self, account_id: str, **options: Any) -> SimulatedSigner:
        """A wallet session for *account_id*; options go to ``SimulatedSigner``."""
        account = self._accounts[account_id]
        return SimulatedSigner(self, account_id, account["private_key"], **options)

    def balance(self, account_id: str) -> int:
        return self._accounts[account_id]["balance"]

    def evm_address(self, account_id: str) -> str:
        return self._accounts[account_id]["evm_address"]

    def deploy_marketplace(self) -> str:
        with self._lock:
            self.marketplace_id = self._new_entity()
        return self.marketplace_id

    def approve_all_serials(self, owner: str, token_id: str, spender: str) -> None:
        """Record an all-serials NFT allowance without a signed transaction."""
        with self._lock:
            self._record_allowance(owner, token_id, spender)

    def _record_allowance(self, owner: str, token_id: str, spender: str) -> None:
        self._allowances.setdefault(owner, []).append({
            "owner": owner,
            "spender": spender,
            "token_id": token_id,
            "approved_for_all": True,
            "timestamp": {"from": self._tick()},
            "_visible_at": self._reads + self.index_lag,
        })

    def revoke_allowances(self, owner: str) -> None:
        with self._lock:
            self._allowances.pop(owner, None)

    def list_nft(self, seller: str, token_id: str, serial_number: int, price: int) -> ListingRecord:
        """Create a marketplace listing and return the seller's view of it."""
        with self._lock:
            listing_id = self._next_listing
            self._next_listing += 1
            self._listings[listing_id] = {
                "token_id": token_id,
                "serial_number": serial_number,
                "seller": seller,
                "price": price,
                "active": True,
            }
        return self.get_listing(listing_id)  # type: ignore[return-value]

    # ------------------------------------------------------------------
    # ListingBook
    # ------------------------------------------------------------------

    def get_listing(self, listing_id: int) -> ListingRecord | None:
        listing = self._listings.get(listing_id)
        if listing is None or not listing["active"]:
            return None
        approved = any(
            a["token_id"] == listing["token_id"] and a["spender"] == self.marketplace_id
            for a in self._allowances.get(listing["seller"], [])
        )
        return ListingRecord(
            listing_id=listing_id,
            token_id=listing["token_id"],
            serial_number=listing["serial_number"],
            seller_account=listing["seller"],
            expected_price=listing["price"],
            is_approved_for_transfer=approved,
        )

    # ------------------------------------------------------------------
    # Consensus side
    # ------------------------------------------------------------------

    def populate(self, account_id: str, transaction: LedgerTransaction) -> LedgerTransaction:
        with self._lock:
            self._clock += 1
            tx_id = TransactionId(account_id=account_id, seconds=self._clock)
        return transaction.model_copy(
            update={"transaction_id": str(tx_id), "network": self.network}
        )

    def execute(
        self, payer: str, transaction: LedgerTransaction, signature: str
    ) -> tuple[str, _Outcome]:
        """Validate, apply and record *transaction*; failures are recorded too."""
        with self._lock:
            tx_id = transaction.transaction_id or str(self.populate(payer, transaction).transaction_id)
            account = self._accounts.get(payer)

            if account is None:
                outcome = _Outcome("INVALID_ACCOUNT_ID")
            elif not verify_data(signing_bytes(transaction), signature, account["public_key"]):
                outcome = _Outcome("INVALID_SIGNATURE")
            elif account["balance"] < NETWORK_FEE + int(transaction.body.get("payable_amount", 0)):
                outcome = _Outcome("INSUFFICIENT_PAYER_BALANCE")
            else:
                account["balance"] -= NETWORK_FEE
                outcome = self._apply(payer, transaction)

            consensus = self._tick()
            self._transactions[TransactionId.parse(tx_id).to_mirror_format()] = {
                "transaction_id": TransactionId.parse(tx_id).to_mirror_format(),
                "name": _MIRROR_NAMES[transaction.kind],
                "result": outcome.status,
                "entity_id": outcome.entity_id,
                "memo_base64": base64.b64encode(transaction.memo.encode()).decode("ascii"),
                "consensus_timestamp": consensus,
                "charged_tx_fee": NETWORK_FEE,
                "nft_transfers": outcome.nft_transfers,
                "_payer": payer,
                "_visible_at": self._reads + self.index_lag,
            }
            logger.debug("%s %s -> %s", transaction.kind.value, tx_id, outcome.status)
            return tx_id, outcome

    def _apply(self, payer: str, tx: LedgerTransaction) -> _Outcome:
        body = tx.body
        if tx.kind is TransactionKind.TOPIC_CREATE:
            topic_id = self._new_entity()
            self._topics[topic_id] = {"memo": body.get("topic_memo", tx.memo), "messages": []}
            return _Outcome(entity_id=topic_id)

        if tx.kind is TransactionKind.TOPIC_MESSAGE_SUBMIT:
            topic = self._topics.get(body.get("topic_id", ""))
            if topic is None:
                return _Outcome("INVALID_TOPIC_ID")
            topic["messages"].append({
                "topic_id": body["topic_id"],
                "sequence_number": len(topic["messages"]) + 1,
                "message": base64.b64encode(body["message"].encode("utf-8")).decode("ascii"),
                "payer_account_id": payer,
                "consensus_timestamp": self._tick(),
                "_visible_at": self._reads + self.index_lag,
            })
            return _Outcome()

        if tx.kind is TransactionKind.FILE_CREATE:
            file_id = self._new_entity()
            self._files[file_id] = body.get("contents", "")
            return _Outcome(entity_id=file_id)

        if tx.kind is TransactionKind.TOKEN_CREATE:
            if body.get("supply_key") != self._accounts[payer]["public_key"]:
                return _Outcome("INVALID_SUPPLY_KEY")
            token_id = self._new_entity()
            treasury = body.get("treasury_account_id", payer)
            self._tokens[token_id] = {
                "name": body.get("name"),
                "symbol": body.get("symbol"),
                "treasury": treasury,
                "max_supply": int(body.get("max_supply", 1)),
                "nfts": {},
            }
            # the treasury is associated automatically
            self._accounts[treasury]["tokens"].add(token_id)
            return _Outcome(entity_id=token_id)

        if tx.kind is TransactionKind.TOKEN_ASSOCIATE:
            account_id = body.get("account_id", payer)
            if account_id != payer:
                return _Outcome("INVALID_SIGNATURE")
            tokens = self._accounts[account_id]["tokens"]
            for token_id in body.get("token_ids", []):
                if token_id not in self._tokens:
                    return _Outcome("INVALID_TOKEN_ID")
                if token_id in tokens:
                    return _Outcome("TOKEN_ALREADY_ASSOCIATED_TO_ACCOUNT")
            tokens.update(body.get("token_ids", []))
            return _Outcome()

        if tx.kind is TransactionKind.TOKEN_MINT:
            return self._mint(payer, body)

        if tx.kind is TransactionKind.CONTRACT_CALL:
            return self._contract_call(payer, body)

        if tx.kind is TransactionKind.NFT_ALLOWANCE_APPROVE:
            return self._approve_allowance(payer, body)

        return _Outcome("NOT_SUPPORTED")

    def _mint(self, payer: str, body: dict[str, Any]) -> _Outcome:
        token = self._tokens.get(body.get("token_id", ""))
        if token is None:
            return _Outcome("INVALID_TOKEN_ID")
        if token["treasury"] != payer:
            return _Outcome("INVALID_SIGNATURE")
        metadata = list(body.get("metadata", []))
        if any(len(m.encode("utf-8")) > METADATA_LIMIT for m in metadata):
            return _Outcome("METADATA_TOO_LONG")
        if len(token["nfts"]) + len(metadata) > token["max_supply"]:
            return _Outcome("TOKEN_MAX_SUPPLY_REACHED")

        outcome = _Outcome()
        for pointer in metadata:
            serial = len(token["nfts"]) + 1
            token["nfts"][serial] = {"account_id": payer, "metadata": pointer}
            outcome.serials.append(serial)
            outcome.nft_transfers.append({
                "token_id": body["token_id"],
                "serial_number": serial,
                "sender_account_id": None,
                "receiver_account_id": payer,
            })
        return outcome

    def _approve_allowance(self, payer: str, body: dict[str, Any]) -> _Outcome:
        owner = body.get("owner_account_id", payer)
        if owner != payer:
            return _Outcome("INVALID_ALLOWANCE_OWNER_ID")
        token_id = body.get("token_id", "")
        if token_id not in self._tokens:
            return _Outcome("INVALID_TOKEN_ID")
        spender = body.get("spender_account_id")
        if spender not in self._accounts and spender != self.marketplace_id:
            return _Outcome("INVALID_ALLOWANCE_SPENDER_ID")
        if not body.get("approved_for_all"):
            return _Outcome("NOT_SUPPORTED")
        self._record_allowance(owner, token_id, spender)
        return _Outcome()

    def _contract_call(self, payer: str, body: dict[str, Any]) -> _Outcome:
        if body.get("contract_id") != self.marketplace_id or body.get("function") != "purchaseNFT":
            return _Outcome("CONTRACT_REVERT_EXECUTED")
        params = body.get("params") or [None]
        listing = self._listings.get(params[0])
        amount = int(body.get("payable_amount", 0))
        if listing is None or not listing["active"] or amount != listing["price"]:
            return _Outcome("CONTRACT_REVERT_EXECUTED")

        self._accounts[payer]["balance"] -= amount
        self._accounts[listing["seller"]]["balance"] += amount

        outcome = _Outcome()
        token_id, serial = listing["token_id"], listing["serial_number"]
        nft = self._tokens[token_id]["nfts"].get(serial)
        allowed = any(
            a["token_id"] == token_id and a["spender"] == self.marketplace_id
            for a in self._allowances.get(listing["seller"], [])
        )
        can_move = (
            nft is not None
            and nft["account_id"] == listing["seller"]
            and allowed
            and token_id in self._accounts[payer]["tokens"]
            and not self.drop_nft_transfers
        )
        if can_move:
            nft["account_id"] = payer
            listing["active"] = False
            outcome.nft_transfers.append({
                "token_id": token_id,
                "serial_number": serial,
                "sender_account_id": listing["seller"],
                "receiver_account_id": payer,
            })
        else:
            logger.warning("Listing %s paid but NFT not moved", params[0])
        return outcome

    # ------------------------------------------------------------------
    # Mirror
    # ------------------------------------------------------------------

    def _read(self) -> None:
        if not self.mirror_available:
            raise MirrorUnavailable("simulated mirror outage")
        self._reads += 1

    def _visible(self, record: dict[str, Any]) -> bool:
        return record.get("_visible_at", 0) <= self._reads

    @staticmethod
    def _public(record: dict[str, Any]) -> dict[str, Any]:
        return {k: v for k, v in record.items() if not k.startswith("_")}

    def get_transaction(self, transaction_id: str) -> dict[str, Any] | None:
        with self._lock:
            self._read()
            record = self._transactions.get(TransactionId.parse(transaction_id).to_mirror_format())
            return self._public(record) if record and self._visible(record) else None

    def get_account_transactions(
        self,
        account_id: str,
        *,
        transaction_type: str | None = None,
        limit: int = 100,
        order: str = "desc",
    ) -> list[dict[str, Any]]:
        with self._lock:
            self._read()
            records = [
                r for r in self._transactions.values()
                if r["_payer"] == account_id
                and self._visible(r)
                and (transaction_type is None or r["name"] == transaction_type)
            ]
            records.sort(key=lambda r: float(r["consensus_timestamp"]), reverse=order == "desc")
            return [self._public(r) for r in records[:limit]]

    def get_topic_messages(
        self, topic_id: str, *, limit: int = 100, order: str = "asc"
    ) -> list[dict[str, Any]]:
        with self._lock:
            self._read()
            topic = self._topics.get(topic_id)
            if topic is None:
                return []
            messages = [m for m in topic["messages"] if self._visible(m)]
            if order == "desc":
                messages = list(reversed(messages))
            return [self._public(m) for m in messages[:limit]]

    def get_topic_message(self, topic_id: str, sequence_number: int) -> dict[str, Any] | None:
        with self._lock:
            self._read()
            topic = self._topics.get(topic_id)
            if topic is None or not 1 <= sequence_number <= len(topic["messages"]):
                return None
            message = topic["messages"][sequence_number - 1]
            return self._public(message) if self._visible(message) else None

    def get_account(self, account_id: str) -> dict[str, Any] | None:
        with self._lock:
            self._read()
            for acct_id, account in self._accounts.items():
                if account_id in (acct_id, account["evm_address"]):
                    return {
                        "account": acct_id,
                        "evm_address": account["evm_address"],
                        "balance": {"balance": account["balance"]},
                        "key": {"_type": "ED25519", "key": account["public_key"]},
                    }
            return None

    def get_nft_allowances(self, account_id: str) -> list[dict[str, Any]]:
        with self._lock:
            self._read()
            return [
                self._public(a) for a in self._allowances.get(account_id, [])
                if self._visible(a)
            ]

    def get_nft(self, token_id: str, serial_number: int) -> dict[str, Any] | None:
        with self._lock:
            self._read()
            token = self._tokens.get(token_id)
            nft = token["nfts"].get(serial_number) if token else None
            if nft is None:
                return None
            return {
                "account_id": nft["account_id"],
                "token_id": token_id,
                "serial_number": serial_number,
                "metadata": base64.b64encode(nft["metadata"].encode()).decode("ascii"),
                "deleted": False,
            }

    def get_account_tokens(
        self, account_id: str, token_id: str | None = None
    ) -> list[dict[str, Any]]:
        with self._lock:
            self._read()
            account = self._accounts.get(account_id)
            if account is None:
                return []
            return [
                {
                    "token_id": tid,
                    "balance": sum(
                        1 for nft in self._tokens[tid]["nfts"].values()
                        if nft["account_id"] == account_id
                    ),
                }
                for tid in sorted(account["tokens"])
                if token_id is None or tid == token_id
            ]

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    def file_contents(self, file_id: str) -> str | None:
        return self._files.get(file_id)

    def topic_memo(self, topic_id: str) -> str | None:
        topic = self._topics.get(topic_id)
        return topic["memo"] if topic else None

    def submitted(self, kind: TransactionKind | None = None) -> list[dict[str, Any]]:
        """Every executed transaction record, oldest first (ignores lag)."""
        name = _MIRROR_NAMES[kind] if kind else None
        return [
            self._public(r) for r in self._transactions.values()
            if name is None or r["name"] == name
        ]


class SimulatedSigner:
    """Wallet session against a ``SimulatedLedger``.

    Parameters
    ----------
    reject:
        Transaction kinds the "user" declines.
    opaque:
        Return an empty ``SignerResponse`` (as some wallets do), leaving the
        outcome to be confirmed on the Mirror.
    """

    def __init__(
        self,
        ledger: SimulatedLedger,
        account_id: str,
        private_key: str,
        *,
        reject: tuple[TransactionKind, ...] = (),
        opaque: bool = False,
    ) -> None:
        self._ledger = ledger
        self._account_id = account_id
        self._private_key = private_key
        self.reject = set(reject)
        self.opaque = opaque

    @property
    def account_id(self) -> str:
        return self._account_id

    def populate(self, transaction: LedgerTransaction) -> LedgerTransaction:
        return self._ledger.populate(self._account_id, transaction)

    def submit(self, transaction: LedgerTransaction) -> SignerResponse:
        if transaction.kind in self.reject:
            raise SignerRejected("USER_REJECT", kind=transaction.kind.value)
        signature = sign_data(signing_bytes(transaction), self._private_key)
        tx_id, outcome = self._ledger.execute(self._account_id, transaction, signature)
        if self.opaque:
            return SignerResponse()
        return SignerResponse(
            transaction_id=tx_id,
            receipt_status=outcome.status,
            serials=outcome.serials,
            raw_result={"status": outcome.status},
        )
