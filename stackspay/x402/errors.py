# stackspay/x402/errors.py
"""
Exception taxonomy for the x402 payment flow.

Codec errors mean the client sent unparseable data (HTTP 400). Verification
and settlement errors are protocol negotiation outcomes: the gate answers
them with a fresh 402 so the payer can try again. NetworkUnavailable is kept
apart from SettlementFailure because it says nothing about the payment
itself and the caller may retry.
"""
from typing import List, Optional


class X402Error(Exception):
    """Base class for all payment protocol errors."""

    code = "x402_error"


# Codec

class CodecError(X402Error):
    code = "codec_error"


class MalformedToken(CodecError):
    """The token is not base64-encoded JSON object text."""

    code = "malformed_token"


class SchemaViolation(CodecError):
    """The token decoded but required fields are missing or mistyped."""

    code = "schema_violation"

    def __init__(self, message: str, fields: Optional[List[str]] = None):
        super().__init__(message)
        self.fields = fields or []


# Client policy

class AmountCeilingExceeded(X402Error):
    """The demanded amount is above the payer's auto-pay ceiling."""

    code = "amount_ceiling_exceeded"

    def __init__(self, amount: int, ceiling: int):
        super().__init__(f"Payment amount {amount} exceeds max {ceiling}")
        self.amount = amount
        self.ceiling = ceiling


# Verification

class VerificationError(X402Error):
    code = "verification_failed"


class FieldMismatch(VerificationError):
    code = "field_mismatch"

    def __init__(self, field: str, message: str):
        super().__init__(message)
        self.field = field


class InsufficientAmount(VerificationError):
    code = "insufficient_amount"


class PaymentExpired(VerificationError):
    code = "payment_expired"


class InvalidTransaction(VerificationError):
    """The serialized transaction is undecodable or not an STX transfer."""

    code = "invalid_transaction"


# Settlement

class SettlementError(X402Error):
    code = "settlement_error"


class MissingTransaction(SettlementError):
    code = "missing_transaction"


class SettlementFailure(SettlementError):
    code = "settlement_failure"


class SettlementPending(SettlementError):
    """The broadcast outlived the wait; the transaction may already be in the mempool."""

    code = "settlement_pending"


class NetworkUnavailable(X402Error):
    """The chain API could not be reached; retryable."""

    code = "network_unavailable"


# Payment construction

class PaymentBuildError(X402Error):
    code = "payment_build_error"


class SigningError(PaymentBuildError):
    code = "signing_error"


class NonceUnavailable(PaymentBuildError):
    code = "nonce_unavailable"
