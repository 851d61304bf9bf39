# stackspay/services/stacks_api.py
"""
Hiro Stacks API implementation of the chain client.

Reads (nonces, balances, transaction status, fee rates) and broadcasts go to
the REST API of the configured network; keys and signatures never leave the
process.
"""
import logging
from typing import Any, Dict, Optional

import requests
from requests.exceptions import RequestException

from stackspay.core.config import settings
from stackspay.services.chain import BroadcastResult, ChainClient
from stackspay.services.transactions import (
    StacksPrivateKey,
    StacksTransaction,
    estimate_transfer_length,
    make_token_transfer,
)
from stackspay.x402.errors import NetworkUnavailable
from stackspay.x402.types import NetworkConfig, TransactionStatus

logger = logging.getLogger(__name__)

# Floor used by stacks.js when estimating transfer fees
MIN_TRANSFER_FEE = 180


def network_from_settings() -> NetworkConfig:
    """NetworkConfig for the network named in settings."""
    api_url = str(settings.X402_API_URL) if settings.X402_API_URL else None
    return NetworkConfig(type=settings.X402_NETWORK, api_url=api_url)


class StacksApiClient(ChainClient):
    """
    ChainClient backed by the Hiro Stacks API.

    Args:
        session: Optional requests session (shared connection pool).
        timeout: Per-request timeout in seconds. Defaults to
            X402_REQUEST_TIMEOUT_SECONDS.
    """

    def __init__(self, session: Optional[requests.Session] = None, timeout: Optional[float] = None):
        self.session = session or requests.Session()
        self.timeout = timeout if timeout is not None else settings.X402_REQUEST_TIMEOUT_SECONDS

    def _request(self, method: str, network: NetworkConfig, path: str, **kwargs: Any) -> requests.Response:
        url = f"{network.base_url}{path}"
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except RequestException as e:
            logger.error(f"Stacks API request failed ({method} {url}): {e}")
            raise NetworkUnavailable(f"Stacks API unreachable: {e}") from e

        if response.status_code >= 500 or response.status_code == 429:
            logger.error(f"Stacks API unavailable ({method} {url}): {response.status_code}")
            raise NetworkUnavailable(f"Stacks API responded with {response.status_code}")
        return response

    def _get_json(self, network: NetworkConfig, path: str) -> Any:
        response = self._request("GET", network, path)
        response.raise_for_status()
        try:
            return response.json()
        except ValueError as e:
            raise NetworkUnavailable(f"Invalid JSON from Stacks API at {path}") from e

    def derive_address(self, private_key: str, network: NetworkConfig) -> str:
        return StacksPrivateKey.from_hex(private_key).address(network.chain_id)

    def fetch_nonce(self, address: str, network: NetworkConfig) -> int:
        data = self._get_json(network, f"/extended/v1/address/{address}/nonces")
        if "possible_next_nonce" not in data:
            raise NetworkUnavailable(f"Nonce response for {address} is missing 'possible_next_nonce'")
        nonce = int(data["possible_next_nonce"])
        logger.debug(f"Next nonce for {address}: {nonce}")
        return nonce

    def estimate_fee(self, recipient: str, network: NetworkConfig) -> int:
        """Fee in microSTX for a transfer: fee rate per byte times size."""
        rate = int(self._get_json(network, "/v2/fees/transfer"))
        return max(rate * estimate_transfer_length(recipient), MIN_TRANSFER_FEE)

    def sign_transfer(
        self,
        recipient: str,
        amount: int,
        private_key: str,
        network: NetworkConfig,
        nonce: int,
        fee: Optional[int] = None,
    ) -> StacksTransaction:
        key = StacksPrivateKey.from_hex(private_key)
        if fee is None:
            fee = self.estimate_fee(recipient, network)
        return make_token_transfer(
            recipient=recipient,
            amount=amount,
            key=key,
            chain_id=network.chain_id,
            nonce=nonce,
            fee=fee,
        )

    def broadcast(self, transaction: StacksTransaction, network: NetworkConfig) -> BroadcastResult:
        response = self._request(
            "POST",
            network,
            "/v2/transactions",
            data=transaction.serialize(),
            headers={"Content-Type": "application/octet-stream"},
        )

        try:
            body = response.json()
        except ValueError:
            body = response.text

        if response.ok:
            txid = body if isinstance(body, str) else body.get("txid")
            txid = txid.strip().strip('"') if txid else transaction.txid()
            logger.info(f"Broadcast accepted by {network.type}: {txid}")
            return BroadcastResult(txid=txid)

        if isinstance(body, dict):
            error = body.get("error") or f"Broadcast rejected ({response.status_code})"
            reason = body.get("reason")
        else:
            error = body or f"Broadcast rejected ({response.status_code})"
            reason = None
        logger.warning(f"Broadcast rejected by {network.type}: {error} ({reason})")
        return BroadcastResult(error=error, reason=reason)

    def fetch_tx_status(self, txid: str, network: NetworkConfig) -> TransactionStatus:
        txid = txid if txid.startswith("0x") else f"0x{txid}"
        response = self._request("GET", network, f"/extended/v1/tx/{txid}")
        if response.status_code == 404:
            return TransactionStatus(status="not_found")
        if not response.ok:
            raise NetworkUnavailable(f"Status lookup for {txid} failed with {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            raise NetworkUnavailable(f"Invalid JSON in status of {txid}") from e
        tx_status = data.get("tx_status")
        if tx_status == "success":
            return TransactionStatus(status="success", block_height=data.get("block_height"))
        if tx_status == "pending":
            return TransactionStatus(status="pending")
        return TransactionStatus(status="failed", block_height=data.get("block_height"))

    def fetch_balance(self, address: str, network: NetworkConfig) -> Dict[str, str]:
        data = self._get_json(network, f"/extended/v1/address/{address}/stx")
        return {
            "balance": str(data.get("balance", "0")),
            "locked": str(data.get("locked", "0")),
        }
