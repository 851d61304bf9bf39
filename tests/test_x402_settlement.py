# tests/test_x402_settlement.py
"""
Unit tests for payment settlement and confirmation tracking.
"""
import asyncio

import pytest

from stackspay.services.chain import BroadcastResult
from stackspay.x402.builder import PaymentBuilder
from stackspay.x402.errors import NetworkUnavailable
from stackspay.x402.settlement import (
    await_confirmation,
    check_transaction_status,
    expected_txid,
    settle_payment,
    verify_payment_on_chain,
)
from stackspay.x402.types import TransactionStatus

from conftest import MAINNET, TESTNET, FakeChainClient


@pytest.fixture
def payload(chain, payer_wallet, requirement):
    return PaymentBuilder(chain).build(requirement, payer_wallet, nonce=0)


class TestSettlePayment:
    """Test broadcasting."""

    def test_success(self, chain, payload):
        result = settle_payment(payload, chain)
        assert result.success is True
        assert len(chain.broadcasts) == 1
        assert result.tx_id == chain.broadcasts[0].txid()
        assert chain.broadcasts[0].hex() == payload.serialized_tx

    def test_missing_transaction(self, chain, payload):
        result = settle_payment(payload.model_copy(update={"serialized_tx": None}), chain)
        assert result.success is False
        assert result.code == "missing_transaction"
        assert chain.broadcasts == []

    def test_undecodable_transaction(self, chain, payload):
        result = settle_payment(payload.model_copy(update={"serialized_tx": "00"}), chain)
        assert result.success is False
        assert result.code == "settlement_failure"
        assert "Cannot decode transaction" in result.error

    def test_chain_rejection_reported(self, chain, payload):
        chain.reject_with = BroadcastResult(error="transaction rejected", reason="BadNonce")
        result = settle_payment(payload, chain)
        assert result.success is False
        assert result.code == "settlement_failure"
        assert result.error == "transaction rejected: BadNonce"

    def test_rejection_without_reason(self, chain, payload):
        chain.reject_with = BroadcastResult(error="NotEnoughFunds")
        assert settle_payment(payload, chain).error == "NotEnoughFunds"

    def test_network_unavailable_propagates(self, chain, payload):
        """Unreachable chain is not a verdict on the payment."""
        chain.unavailable = True
        with pytest.raises(NetworkUnavailable):
            settle_payment(payload, chain)

    def test_network_override(self, payload):
        seen = []

        class Recorder(FakeChainClient):
            def broadcast(self, transaction, network):
                seen.append(network)
                return super().broadcast(transaction, network)

        settle_payment(payload, Recorder())
        settle_payment(payload, Recorder(), network=MAINNET)
        assert seen[0].type == "testnet"
        assert seen[1] is MAINNET


class TestExpectedTxid:
    """The txid is known before the broadcast returns."""

    def test_matches_broadcast(self, chain, payload):
        tx_id = expected_txid(payload)
        assert settle_payment(payload, chain).tx_id == tx_id

    def test_without_transaction(self, payload):
        assert expected_txid(payload.model_copy(update={"serialized_tx": None})) is None

    def test_undecodable(self, payload):
        assert expected_txid(payload.model_copy(update={"serialized_tx": "00"})) is None


class TestTransactionStatus:
    """Test confirmation lookups."""

    def test_check_status(self, chain):
        chain.statuses["abc"] = TransactionStatus(status="success", block_height=10)
        assert check_transaction_status("abc", chain, TESTNET).status == "success"

    def test_status_propagates_network_errors(self, chain):
        chain.unavailable = True
        with pytest.raises(NetworkUnavailable):
            check_transaction_status("abc", chain, TESTNET)

    def test_verify_on_chain_success(self, chain):
        chain.statuses["abc"] = TransactionStatus(status="success", block_height=10)
        result = verify_payment_on_chain("abc", chain, TESTNET)
        assert result.valid is True
        assert result.details == {"txId": "abc", "blockHeight": 10}

    def test_verify_on_chain_pending(self, chain):
        result = verify_payment_on_chain("abc", chain, TESTNET)
        assert result.valid is False
        assert result.reason == "Transaction status: pending"


class TestAwaitConfirmation:
    """Test polling until a final status."""

    def test_returns_when_confirmed(self, chain):
        chain.statuses["abc"] = TransactionStatus(status="success", block_height=3)
        status = asyncio.run(await_confirmation("abc", chain, TESTNET, timeout=1, interval=0.01))
        assert status.status == "success"

    def test_returns_failed(self, chain):
        chain.statuses["abc"] = TransactionStatus(status="failed")
        status = asyncio.run(await_confirmation("abc", chain, TESTNET, timeout=1, interval=0.01))
        assert status.status == "failed"

    def test_gives_up_after_timeout(self, chain):
        status = asyncio.run(await_confirmation("abc", chain, TESTNET, timeout=0.05, interval=0.01))
        assert status.status == "pending"

    def test_polls_until_confirmed(self, chain):
        calls = []
        original = chain.fetch_tx_status

        def flipping(txid, network):
            calls.append(txid)
            if len(calls) >= 3:
                return TransactionStatus(status="success", block_height=7)
            return original(txid, network)

        chain.fetch_tx_status = flipping
        status = asyncio.run(await_confirmation("abc", chain, TESTNET, timeout=5, interval=0.01))
        assert status.block_height == 7
        assert len(calls) == 3

    def test_poll_failures_count_as_pending(self, chain):
        chain.unavailable = True
        status = asyncio.run(await_confirmation("abc", chain, TESTNET, timeout=0.05, interval=0.01))
        assert status.status == "pending"

    def test_recovers_after_failed_poll(self, chain):
        calls = []

        def flaky(txid, network):
            calls.append(txid)
            if len(calls) == 1:
                raise NetworkUnavailable("Stacks API responded with 503")
            return TransactionStatus(status="success", block_height=9)

        chain.fetch_tx_status = flaky
        status = asyncio.run(await_confirmation("abc", chain, TESTNET, timeout=5, interval=0.01))
        assert status.status == "success"
        assert len(calls) == 2
