"""Shared test fixtures for Artproof."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from artproof.bridge.anchor import LocalAnchor
from artproof.bridge.simulated import SimulatedLedger, SimulatedSigner
from artproof.config import ArtproofConfig
from artproof.core.errors import MirrorUnavailable
from artproof.core.poller import MirrorPoller, PollPolicy
from artproof.core.record_cache import RecordCache
from artproof.core.run_journal import RunJournal
from artproof.core.stage_machine import StageMachine
from artproof.models.ledger import LedgerTransaction, SignerResponse, TransactionId


@pytest.fixture
def tmp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test artifacts."""
    return tmp_path


@pytest.fixture
def config(tmp_dir: Path) -> ArtproofConfig:
    """Test configuration: temp paths, no real delays, a marketplace operator."""
    return ArtproofConfig(
        environment="test",
        network="testnet",
        journal_path=tmp_dir / "journal.db",
        cache_path=tmp_dir / "records.db",
        anchor_path=tmp_dir / "anchor",
        marketplace_operator_id="0.0.9000",
        poll_initial_delay=0.0,
        poll_step=0.0,
        poll_max_delay=0.0,
        poll_max_attempts=5,
        transfer_retry_delay=0.0,
        association_settle_delay=0.0,
    )


@pytest.fixture
def sleeps() -> list[float]:
    """Records every sleep requested by pollers built from the fixtures."""
    return []


@pytest.fixture
def poller(sleeps: list[float]) -> MirrorPoller:
    """A MirrorPoller that never really sleeps."""
    return MirrorPoller(
        PollPolicy(initial_delay=0, step=0, max_delay=0, max_attempts=5, timeout=None),
        sleep=sleeps.append,
    )


@pytest.fixture
def cache() -> RecordCache:
    return RecordCache()


@pytest.fixture
def journal(tmp_dir: Path) -> RunJournal:
    """Provide a fresh RunJournal backed by a temp SQLite database."""
    return RunJournal(tmp_dir / "test_journal.db")


@pytest.fixture
def stage_machine(journal: RunJournal) -> StageMachine:
    return StageMachine(journal)


@pytest.fixture
def run_id() -> str:
    return "ap-test-0001"


@pytest.fixture
def anchor(tmp_dir: Path) -> LocalAnchor:
    return LocalAnchor(tmp_dir / "anchor")


@pytest.fixture
def ledger() -> SimulatedLedger:
    """A simulated ledger with no indexing lag."""
    return SimulatedLedger("testnet")


@pytest.fixture
def creator(ledger: SimulatedLedger) -> str:
    return ledger.create_account(balance_hbar=100)


@pytest.fixture
def creator_signer(ledger: SimulatedLedger, creator: str) -> SimulatedSigner:
    return ledger.signer_for(creator)


@pytest.fixture
def image_bytes() -> bytes:
    return b"\x89PNG\r\n\x1a\n" + bytes(range(256)) * 4


@pytest.fixture
def make_metadata() -> Callable[..., dict[str, Any]]:
    """Factory fixture: NFT metadata with sensible defaults."""

    def _factory(**overrides: Any) -> dict[str, Any]:
        defaults: dict[str, Any] = {
            "name": "Raven Over the Forge",
            "description": "Test artwork",
            "attributes": [
                {"trait_type": "palette", "value": "ember"},
                {"trait_type": "medium", "value": "generative"},
            ],
        }
        defaults.update(overrides)
        return defaults

    return _factory


@pytest.fixture
def metadata(make_metadata: Callable[..., dict[str, Any]]) -> dict[str, Any]:
    return make_metadata()


# ---------------------------------------------------------------------------
# Scripted fakes for tests that need exact control
# ---------------------------------------------------------------------------


class FakeSigner:
    """Signer that records submissions and replays scripted responses.

    ``responses`` is consumed in order; when it runs out every submission
    succeeds with the populated transaction id.
    """

    def __init__(self, account_id: str = "0.0.1001") -> None:
        self._account_id = account_id
        self.submitted: list[LedgerTransaction] = []
        self.responses: list[SignerResponse | Exception] = []
        self._counter = 0

    @property
    def account_id(self) -> str:
        return self._account_id

    def populate(self, transaction: LedgerTransaction) -> LedgerTransaction:
        self._counter += 1
        tx_id = TransactionId(account_id=self._account_id, seconds=1_700_000_000 + self._counter)
        return transaction.model_copy(update={"transaction_id": str(tx_id), "network": "testnet"})

    def submit(self, transaction: LedgerTransaction) -> SignerResponse:
        self.submitted.append(transaction)
        if self.responses:
            response = self.responses.pop(0)
            if isinstance(response, Exception):
                raise response
            return response
        return SignerResponse(transaction_id=transaction.transaction_id, receipt_status="SUCCESS")


class FakeMirror:
    """Mirror backed by plain dicts; ``fail_next`` raises MirrorUnavailable N times."""

    def __init__(self) -> None:
        self.transactions: dict[str, dict[str, Any]] = {}
        self.account_transactions: list[dict[str, Any]] = []
        self.topic_messages: dict[str, list[dict[str, Any]]] = {}
        self.accounts: dict[str, dict[str, Any]] = {}
        self.allowances: dict[str, list[dict[str, Any]]] = {}
        self.owners: dict[tuple[str, int], list[str | None]] = {}
        self.account_tokens: dict[str, list[dict[str, Any]]] = {}
        self.fail_next = 0
        self.down = False
        self.calls: list[str] = []

    def _check(self, name: str) -> None:
        self.calls.append(name)
        if self.down:
            raise MirrorUnavailable("mirror down")
        if self.fail_next:
            self.fail_next -= 1
            raise MirrorUnavailable("transient mirror failure")

    def get_transaction(self, transaction_id):
        self._check("get_transaction")
        return self.transactions.get(TransactionId.parse(transaction_id).to_mirror_format())

    def get_account_transactions(self, account_id, *, transaction_type=None, limit=100, order="desc"):
        self._check("get_account_transactions")
        return [
            t for t in self.account_transactions
            if transaction_type is None or t.get("name") == transaction_type
        ][:limit]

    def get_topic_messages(self, topic_id, *, limit=100, order="asc"):
        self._check("get_topic_messages")
        messages = list(self.topic_messages.get(topic_id, []))
        if order == "desc":
            messages.reverse()
        return messages[:limit]

    def get_topic_message(self, topic_id, sequence_number):
        self._check("get_topic_message")
        for message in self.topic_messages.get(topic_id, []):
            if message["sequence_number"] == sequence_number:
                return message
        return None

    def get_account(self, account_id):
        self._check("get_account")
        return self.accounts.get(account_id)

    def get_nft_allowances(self, account_id):
        self._check("get_nft_allowances")
        return list(self.allowances.get(account_id, []))

    def get_nft(self, token_id, serial_number):
        self._check("get_nft")
        owners = self.owners.get((token_id, serial_number))
        if not owners:
            return None
        owner = owners.pop(0) if len(owners) > 1 else owners[0]
        return {"account_id": owner, "token_id": token_id, "serial_number": serial_number}

    def get_account_tokens(self, account_id, token_id=None):
        self._check("get_account_tokens")
        return [
            t for t in self.account_tokens.get(account_id, [])
            if token_id is None or t["token_id"] == token_id
        ]

    # helpers

    def add_transaction(self, tx_id: str, result: str = "SUCCESS", **fields: Any) -> None:
        mirror_id = TransactionId.parse(tx_id).to_mirror_format()
        self.transactions[mirror_id] = {"transaction_id": mirror_id, "result": result, **fields}


@pytest.fixture
def fake_signer() -> FakeSigner:
    return FakeSigner()


@pytest.fixture
def fake_mirror() -> FakeMirror:
    return FakeMirror()
