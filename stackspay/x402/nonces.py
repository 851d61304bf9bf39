# stackspay/x402/nonces.py
"""
Per-sender nonce sequencing for payment issuance.

Reading the account nonce from the chain for every payment races when one
sender builds several payments at once: all of them see the same nonce. A
NonceSequencer serialises issuance per ``(address, network)``: the first
lease reads the chain, later leases hand out the following numbers locally.
"""
import logging
import threading
from typing import Callable, Dict, Tuple

logger = logging.getLogger(__name__)

SenderKey = Tuple[str, str]


class NonceSequencer:
    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[SenderKey, threading.Lock] = {}
        self._next: Dict[SenderKey, int] = {}

    def _lock_for(self, key: SenderKey) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault(key, threading.Lock())

    def lease(self, address: str, network: str, fetch: Callable[[], int]) -> int:
        """
        Return the next nonce for ``address`` on ``network``.

        ``fetch`` is called (under the sender's lock) only when no local
        counter exists yet; whatever it raises propagates and nothing is
        recorded.
        """
        key = (address, network)
        with self._lock_for(key):
            if key not in self._next:
                self._next[key] = fetch()
                logger.debug(f"Nonce counter for {address} on {network} starts at {self._next[key]}")
            nonce = self._next[key]
            self._next[key] = nonce + 1
            return nonce

    def reset(self, address: str, network: str) -> None:
        """Forget the local counter; the next lease re-reads the chain."""
        key = (address, network)
        with self._lock_for(key):
            if self._next.pop(key, None) is not None:
                logger.info(f"Nonce counter for {address} on {network} reset")

    def peek(self, address: str, network: str) -> int:
        """Next nonce that would be leased, or -1 if unknown."""
        with self._lock_for((address, network)):
            return self._next.get((address, network), -1)
