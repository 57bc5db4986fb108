"""Unit tests for ledger identifiers and transaction id conversion."""

from __future__ import annotations

import pytest

from artproof.core.errors import InvalidInput
from artproof.models.ledger import (
    SignerResponse,
    TransactionId,
    evm_to_entity_id,
    is_entity_id,
    is_evm_address,
    require_entity_id,
    to_mirror_transaction_id,
)


class TestEntityIds:

    @pytest.mark.parametrize("value", ["0.0.1", "0.0.4821", "1.2.3"])
    def test_valid(self, value):
        assert is_entity_id(value)
        assert require_entity_id(value) == value

    @pytest.mark.parametrize("value", ["", None, "0.0", "0.0.x", "0.0.1.2", "account"])
    def test_invalid(self, value):
        assert not is_entity_id(value)
        with pytest.raises(InvalidInput):
            require_entity_id(value, "account_id")


class TestEvmAddresses:

    def test_long_zero_address_converts(self):
        address = "0x" + "0" * 32 + format(4821, "08x")
        assert evm_to_entity_id(address) == "0.0.4821"

    def test_without_prefix(self):
        assert evm_to_entity_id("0" * 32 + format(1001, "08x")) == "0.0.1001"

    def test_alias_address_is_not_decodable(self):
        assert evm_to_entity_id("0x" + "ab" * 20) is None

    def test_non_address(self):
        assert not is_evm_address("0.0.1")
        assert evm_to_entity_id("0.0.1") is None


class TestTransactionId:
    """Conversion between the SDK form and the Mirror form."""

    def test_to_mirror_pads_nanos(self):
        assert to_mirror_transaction_id("0.0.1001@1700000000.5") == "0.0.1001-1700000000-500000000"

    def test_full_nanos(self):
        tx = TransactionId.parse("0.0.1001@1700000000.000000042")
        assert tx.nanos == 42
        assert tx.to_mirror_format() == "0.0.1001-1700000000-000000042"

    def test_mirror_form_round_trip(self):
        tx = TransactionId.parse("0.0.1001-1700000000-000000042")
        assert str(tx) == "0.0.1001@1700000000.000000042"

    def test_missing_fraction(self):
        assert TransactionId.parse("0.0.7@1700000000").nanos == 0

    @pytest.mark.parametrize("bad", ["", "garbage", "0.0.1@abc.1", "x@1.2", "0.0.1-1"])
    def test_rejects_malformed(self, bad):
        with pytest.raises(InvalidInput):
            TransactionId.parse(bad)


class TestSignerResponse:

    def test_empty_response_is_unknown(self):
        assert SignerResponse().is_unknown

    def test_populated_response_is_known(self):
        assert not SignerResponse(transaction_id="0.0.1@1.0", receipt_status="SUCCESS").is_unknown
