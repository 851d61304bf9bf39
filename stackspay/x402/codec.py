# stackspay/x402/codec.py
"""
Header encoding for x402 requirements and payloads.

Both structures travel as base64 of a canonical JSON document (sorted keys,
compact separators, camelCase field names, absent optionals omitted). This
layer only guarantees structural fidelity; amounts, signatures and
transactions are judged by the verifier.
"""
import json
import logging
from typing import Any, Dict, Optional, Type, TypeVar, Union

from pydantic import ValidationError
from x402.encoding import safe_base64_decode, safe_base64_encode

from stackspay.x402.errors import MalformedToken, SchemaViolation
from stackspay.x402.types import PaymentPayload, PaymentRequirement, X402Model

logger = logging.getLogger(__name__)

# x402 protocol headers
X_PAYMENT_REQUIRED_HEADER = "X-Payment-Required"
X_PAYMENT_HEADER = "X-Payment"
X_PAYMENT_RESPONSE_HEADER = "X-Payment-Response"

ModelT = TypeVar("ModelT", bound=X402Model)


def _canonical_json(data: Dict[str, Any]) -> str:
    return json.dumps(data, sort_keys=True, separators=(",", ":"))


def encode_payment(data: Union[PaymentRequirement, PaymentPayload]) -> str:
    """Encode a requirement or payload as an ASCII header token."""
    document = _canonical_json(data.to_wire())
    return safe_base64_encode(document.encode("utf-8"))


def _decode_document(token: str) -> Dict[str, Any]:
    if not isinstance(token, str) or not token.strip():
        raise MalformedToken("Payment token is empty")

    try:
        # safe_base64_decode returns str, not bytes
        decoded_str = safe_base64_decode(token.strip())
    except UnicodeDecodeError as e:
        raise MalformedToken("Payment token is not UTF-8 text") from e
    except ValueError as e:
        raise MalformedToken(f"Payment token is not valid base64: {e}") from e
    if decoded_str is None:
        raise MalformedToken("Payment token is not valid base64")

    try:
        document = json.loads(decoded_str)
    except json.JSONDecodeError as e:
        raise MalformedToken(f"Payment token is not valid JSON: {e}") from e

    if not isinstance(document, dict):
        raise MalformedToken(f"Payment token must encode a JSON object, got {type(document).__name__}")
    return document


def _decode(token: str, model: Type[ModelT]) -> ModelT:
    document = _decode_document(token)
    try:
        return model.model_validate(document)
    except ValidationError as e:
        fields = [".".join(str(part) for part in error["loc"]) for error in e.errors()]
        raise SchemaViolation(
            f"Invalid {model.__name__}: {', '.join(fields) or 'unknown field'}",
            fields=fields,
        ) from e


def decode_payment_requirement(token: str) -> PaymentRequirement:
    """
    Decode an ``X-Payment-Required`` header value.

    Raises:
        MalformedToken: If the token is not base64 JSON object text.
        SchemaViolation: If required fields are missing or mistyped.
    """
    return _decode(token, PaymentRequirement)


def decode_payment_payload(token: str) -> PaymentPayload:
    """
    Decode an ``X-Payment`` header value.

    Raises:
        MalformedToken: If the token is not base64 JSON object text.
        SchemaViolation: If required fields are missing or mistyped.
    """
    return _decode(token, PaymentPayload)


def encode_payment_response(tx_id: Optional[str], settled: bool) -> str:
    """Value for the ``X-Payment-Response`` header."""
    return _canonical_json({"settled": settled, "txId": tx_id})


def decode_payment_response(value: Optional[str]) -> Optional[Dict[str, Any]]:
    """Parse an ``X-Payment-Response`` header, returning None if unusable."""
    if not value:
        return None
    try:
        data = json.loads(value)
    except json.JSONDecodeError:
        logger.debug(f"Ignoring unparseable payment response header: {value!r}")
        return None
    return data if isinstance(data, dict) else None
