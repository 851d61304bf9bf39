# tests/conftest.py
"""
Shared fixtures: an in-memory chain that signs with real keys, so builder,
verifier and gate run against genuine Stacks wire bytes.
"""
import threading
from typing import Dict, List, Optional

import pytest

from stackspay.core.config import settings
from stackspay.services.chain import BroadcastResult, ChainClient
from stackspay.services.transactions import StacksPrivateKey, StacksTransaction, make_token_transfer
from stackspay.x402.errors import NetworkUnavailable
from stackspay.x402.pricing import create_payment_requirement
from stackspay.x402.types import CHAIN_IDS, NetworkConfig, TransactionStatus, WalletConfig

PAYER_KEY = "01" * 32 + "01"
SELLER_KEY = "02" * 32 + "01"

TESTNET = NetworkConfig(type="testnet")
MAINNET = NetworkConfig(type="mainnet")


def address_for(private_key: str, network: str = "testnet") -> str:
    return StacksPrivateKey.from_hex(private_key).address(CHAIN_IDS[network])


class FakeChainClient(ChainClient):
    """ChainClient over dictionaries; failure modes are toggled per test."""

    def __init__(self, nonce: int = 0, fee: int = 180, balance: str = "5000000"):
        self.nonces: Dict[str, int] = {}
        self.default_nonce = nonce
        self.fee = fee
        self.balance = balance
        self.broadcasts: List[StacksTransaction] = []
        self.statuses: Dict[str, TransactionStatus] = {}
        self.nonce_calls = 0
        self.reject_with: Optional[BroadcastResult] = None
        self.unavailable = False
        self.lock = threading.Lock()

    def derive_address(self, private_key: str, network: NetworkConfig) -> str:
        return StacksPrivateKey.from_hex(private_key).address(network.chain_id)

    def fetch_nonce(self, address: str, network: NetworkConfig) -> int:
        with self.lock:
            self.nonce_calls += 1
        if self.unavailable:
            raise NetworkUnavailable("chain offline")
        return self.nonces.get(address, self.default_nonce)

    def sign_transfer(self, recipient, amount, private_key, network, nonce, fee=None):
        return make_token_transfer(
            recipient=recipient,
            amount=amount,
            key=StacksPrivateKey.from_hex(private_key),
            chain_id=network.chain_id,
            nonce=nonce,
            fee=self.fee if fee is None else fee,
        )

    def broadcast(self, transaction: StacksTransaction, network: NetworkConfig) -> BroadcastResult:
        if self.unavailable:
            raise NetworkUnavailable("chain offline")
        if self.reject_with is not None:
            return self.reject_with
        with self.lock:
            self.broadcasts.append(transaction)
        return BroadcastResult(txid=transaction.txid())

    def fetch_tx_status(self, txid: str, network: NetworkConfig) -> TransactionStatus:
        if self.unavailable:
            raise NetworkUnavailable("chain offline")
        return self.statuses.get(txid, TransactionStatus(status="pending"))

    def fetch_balance(self, address: str, network: NetworkConfig) -> Dict[str, str]:
        if self.unavailable:
            raise NetworkUnavailable("chain offline")
        return {"balance": self.balance, "locked": "0"}


@pytest.fixture(autouse=True)
def no_audit_file(monkeypatch, tmp_path):
    """Keep audit events out of the working tree."""
    monkeypatch.setattr(settings, "X402_AUDIT_ENABLED", False)
    monkeypatch.setattr(settings, "X402_AUDIT_LOG_PATH", str(tmp_path / "audit.jsonl"))


@pytest.fixture
def chain():
    return FakeChainClient()


@pytest.fixture
def payer_wallet():
    return WalletConfig(private_key=PAYER_KEY)


@pytest.fixture
def seller_address():
    return address_for(SELLER_KEY)


@pytest.fixture
def requirement(seller_address):
    return create_payment_requirement(
        recipient=seller_address,
        amount="1000",
        description="Summarize text",
        resource="POST /summarize",
    )
