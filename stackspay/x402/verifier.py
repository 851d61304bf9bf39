# stackspay/x402/verifier.py
"""
Server-side validation of a payment payload against its requirement.

Checks run in a fixed order and stop at the first failure:

1. scheme      2. network     3. chain id    4. recipient
5. amount (payload may overpay, never underpay)
6. asset
7. serialized transaction, if present: decodes, is an STX token transfer,
   pays at least the required amount, to the required recipient, on the
   required chain, signed by the key the payload names with the payload's
   nonce and signature
8. expiry, if present

Verification is pure: the transaction bytes are decoded in-process and
nothing is fetched from the chain.
"""
import logging
import time
from typing import Optional

from stackspay.services.c32 import C32Error, hash160
from stackspay.services.transactions import (
    PayloadType,
    StacksTransaction,
    TokenTransferPayload,
    TransactionDecodeError,
    deserialize_transaction,
    recover_signer_public_key,
)
from stackspay.x402.errors import (
    FieldMismatch,
    InsufficientAmount,
    InvalidTransaction,
    PaymentExpired,
    VerificationError,
)
from stackspay.x402.types import PaymentPayload, PaymentRequirement, VerificationResult

logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


def _check_signer(transaction: StacksTransaction, payment: PaymentPayload) -> None:
    origin = transaction.origin
    try:
        public_key = recover_signer_public_key(transaction)
    except ValueError as e:
        raise InvalidTransaction(f"Transaction signature invalid: {e}") from e

    if hash160(public_key) != origin.signer:
        raise InvalidTransaction("Transaction signer does not match its signature")
    if public_key.hex() != payment.public_key.lower():
        raise InvalidTransaction("Transaction signer does not match payload public key")
    if origin.nonce != payment.nonce:
        raise InvalidTransaction("Transaction nonce does not match payload nonce")
    if origin.signature.hex() != payment.signature.lower():
        raise InvalidTransaction("Transaction signature does not match payload signature")


def _check_transaction(payment: PaymentPayload, requirement: PaymentRequirement, required_amount: int) -> None:
    try:
        transaction = deserialize_transaction(payment.serialized_tx)
    except TransactionDecodeError as e:
        raise InvalidTransaction(f"Malformed transaction: {e}") from e

    payload = transaction.payload
    if payload.payload_type != PayloadType.TOKEN_TRANSFER or not isinstance(payload, TokenTransferPayload):
        raise InvalidTransaction("Transaction is not a token transfer")

    if payload.amount < required_amount:
        raise InsufficientAmount("Transaction amount insufficient")

    try:
        recipient = payload.recipient
    except C32Error as e:
        raise InvalidTransaction(f"Malformed transaction: {e}") from e
    if recipient != requirement.recipient:
        raise FieldMismatch("recipient", "Transaction recipient mismatch")

    if transaction.chain_id != requirement.chain_id:
        raise FieldMismatch("chainId", "Transaction chain ID mismatch")

    _check_signer(transaction, payment)


def check_payment(
    payload: PaymentPayload,
    requirement: PaymentRequirement,
    now: Optional[int] = None,
) -> None:
    """
    Raise the first VerificationError that applies, or return None.

    Args:
        now: Current time in epoch milliseconds (defaults to the clock).
    """
    if payload.scheme != requirement.scheme:
        raise FieldMismatch("scheme", "Scheme mismatch")

    if payload.network != requirement.network:
        raise FieldMismatch("network", "Network mismatch")

    if payload.chain_id != requirement.chain_id:
        raise FieldMismatch("chainId", "Chain ID mismatch")

    if payload.recipient != requirement.recipient:
        raise FieldMismatch("recipient", "Recipient mismatch")

    required_amount = int(requirement.amount)
    if int(payload.amount) < required_amount:
        raise InsufficientAmount(f"Insufficient amount: {payload.amount} < {requirement.amount}")

    if payload.asset != requirement.asset:
        raise FieldMismatch("asset", "Asset mismatch")

    if payload.serialized_tx:
        _check_transaction(payload, requirement, required_amount)

    if payload.expires_at is not None:
        current = _now_ms() if now is None else now
        if current > payload.expires_at:
            raise PaymentExpired("Payment expired")


def verify_payment(
    payload: PaymentPayload,
    requirement: PaymentRequirement,
    now: Optional[int] = None,
) -> VerificationResult:
    """
    Validate ``payload`` against the ``requirement`` it claims to answer.

    Returns:
        VerificationResult with ``valid=True`` and audit details
        (amount, recipient, nonce), or ``valid=False`` with the stable
        reason and code of the first failed check.
    """
    try:
        check_payment(payload, requirement, now=now)
    except VerificationError as e:
        logger.debug(f"Payment rejected ({e.code}): {e}")
        return VerificationResult(valid=False, reason=str(e), code=e.code)

    return VerificationResult(
        valid=True,
        details={
            "amount": payload.amount,
            "recipient": payload.recipient,
            "nonce": payload.nonce,
        },
    )
