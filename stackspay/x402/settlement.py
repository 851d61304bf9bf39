# stackspay/x402/settlement.py
"""
Settlement: broadcasting a verified payment's transaction.

Settling means "submitted to the mempool", not "confirmed". Confirmation is a
separate, slower concern served by ``check_transaction_status`` and
``await_confirmation``; the gate only waits for it when explicitly
configured to.
"""
import asyncio
import logging
import time
from typing import Optional

from starlette.concurrency import run_in_threadpool

from stackspay.services.chain import ChainClient
from stackspay.services.transactions import TransactionDecodeError, deserialize_transaction
from stackspay.x402.errors import MissingTransaction, NetworkUnavailable, SettlementFailure
from stackspay.x402.types import (
    NetworkConfig,
    PaymentPayload,
    SettlementResult,
    TransactionStatus,
    VerificationResult,
    network_from_chain_id,
)

logger = logging.getLogger(__name__)


def settle_payment(
    payload: PaymentPayload,
    chain_client: ChainClient,
    network: Optional[NetworkConfig] = None,
) -> SettlementResult:
    """
    Broadcast the payload's serialized transaction.

    Args:
        payload: A payload that already passed verification.
        chain_client: Ledger access used for the broadcast.
        network: Explicit target network; defaults to the one implied by
            ``payload.chain_id``.

    Returns:
        SettlementResult with the txid, or ``success=False`` with the chain's
        rejection text. A rejection is reported, never raised.

    Raises:
        NetworkUnavailable: If the chain API cannot be reached (retryable).
    """
    if not payload.serialized_tx:
        error = MissingTransaction("No serialized transaction in payload")
        logger.warning(f"x402: Settlement skipped: {error}")
        return SettlementResult(success=False, error=str(error), code=error.code)

    target = network or NetworkConfig(type=network_from_chain_id(payload.chain_id))

    try:
        transaction = deserialize_transaction(payload.serialized_tx)
    except TransactionDecodeError as e:
        error = SettlementFailure(f"Cannot decode transaction: {e}")
        logger.warning(f"x402: Settlement failed: {error}")
        return SettlementResult(success=False, error=str(error), code=error.code)

    result = chain_client.broadcast(transaction, target)
    if not result.ok:
        message = result.error or "Broadcast rejected"
        if result.reason:
            message = f"{message}: {result.reason}"
        logger.warning(f"x402: Broadcast rejected on {target.type}: {message}")
        return SettlementResult(success=False, error=message, code=SettlementFailure.code)

    logger.info(f"x402: Payment broadcast on {target.type}: {result.txid}")
    return SettlementResult(success=True, tx_id=result.txid)


def expected_txid(payload: PaymentPayload) -> Optional[str]:
    """Txid the payload's transaction gets once broadcast, or None if it has none."""
    if not payload.serialized_tx:
        return None
    try:
        return deserialize_transaction(payload.serialized_tx).txid()
    except TransactionDecodeError:
        return None


def check_transaction_status(
    tx_id: str,
    chain_client: ChainClient,
    network: NetworkConfig,
) -> TransactionStatus:
    """Poll the chain once for a transaction's confirmation state."""
    status = chain_client.fetch_tx_status(tx_id, network)
    logger.debug(f"Transaction {tx_id} status: {status.status}")
    return status


def verify_payment_on_chain(
    tx_id: str,
    chain_client: ChainClient,
    network: NetworkConfig,
) -> VerificationResult:
    """Valid only once the transaction has succeeded on chain."""
    status = check_transaction_status(tx_id, chain_client, network)
    if status.status != "success":
        return VerificationResult(valid=False, reason=f"Transaction status: {status.status}")
    return VerificationResult(valid=True, details={"txId": tx_id, "blockHeight": status.block_height})


async def await_confirmation(
    tx_id: str,
    chain_client: ChainClient,
    network: NetworkConfig,
    timeout: float,
    interval: float = 5.0,
) -> TransactionStatus:
    """
    Poll until the transaction leaves the ``pending``/``not_found`` states.

    Each poll runs in a worker thread so the event loop keeps serving other
    requests. A poll that cannot reach the chain counts as ``pending``.
    Returns the last status seen when ``timeout`` elapses.
    """
    deadline = time.monotonic() + timeout
    while True:
        try:
            status = await run_in_threadpool(check_transaction_status, tx_id, chain_client, network)
        except NetworkUnavailable as e:
            logger.warning(f"Status poll for {tx_id} failed, still waiting: {e}")
            status = TransactionStatus(status="pending")
        if status.status in ("success", "failed"):
            return status

        remaining = deadline - time.monotonic()
        if remaining <= 0:
            logger.info(f"Gave up waiting for {tx_id} after {timeout}s (last status {status.status})")
            return status
        await asyncio.sleep(min(interval, remaining))
