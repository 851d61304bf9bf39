# stackspay/services/chain.py
"""
Ledger access seen by the payment builder and the settlement broadcaster.

The protocol code only talks to this interface; ``StacksApiClient`` in
``stackspay.services.stacks_api`` is the Hiro API implementation, and tests
substitute an in-memory one.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Optional

from stackspay.services.transactions import StacksTransaction
from stackspay.x402.types import NetworkConfig, TransactionStatus


@dataclass(frozen=True)
class BroadcastResult:
    """Outcome of submitting a transaction: a txid, or the node's rejection."""

    txid: Optional[str] = None
    error: Optional[str] = None
    reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.txid is not None and self.error is None


class ChainClient(ABC):
    """
    Operations the x402 flow needs from a Stacks node.

    Implementations raise ``NetworkUnavailable`` when the node cannot be
    reached; a node that answers and refuses a transaction is reported
    through ``BroadcastResult`` instead.
    """

    @abstractmethod
    def derive_address(self, private_key: str, network: NetworkConfig) -> str:
        ...

    @abstractmethod
    def fetch_nonce(self, address: str, network: NetworkConfig) -> int:
        ...

    @abstractmethod
    def sign_transfer(
        self,
        recipient: str,
        amount: int,
        private_key: str,
        network: NetworkConfig,
        nonce: int,
        fee: Optional[int] = None,
    ) -> StacksTransaction:
        ...

    @abstractmethod
    def broadcast(self, transaction: StacksTransaction, network: NetworkConfig) -> BroadcastResult:
        ...

    @abstractmethod
    def fetch_tx_status(self, txid: str, network: NetworkConfig) -> TransactionStatus:
        ...

    @abstractmethod
    def fetch_balance(self, address: str, network: NetworkConfig) -> Dict[str, str]:
        ...
