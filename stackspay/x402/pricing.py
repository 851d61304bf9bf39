# stackspay/x402/pricing.py
"""
Prices and payment requirements for gated routes.

Route prices are configured in STX (e.g. ``"0.001"``) and converted to
microSTX, the smallest indivisible unit, for the wire. Conversion uses
Decimal and refuses prices that do not land on a whole microSTX.
"""
import logging
from decimal import Decimal, InvalidOperation
from typing import Optional, Union

from stackspay.x402.types import (
    ASSET_STX,
    CHAIN_IDS,
    NETWORK_STACKS,
    SCHEME_EXACT,
    PaymentRequirement,
)

logger = logging.getLogger(__name__)

# Conversion constant
MICRO_STX_PER_STX = 1_000_000  # 1 STX = 10^6 microSTX


def stx_to_micro_stx(stx: Union[str, int, Decimal]) -> str:
    """
    Convert an STX amount to a microSTX decimal string.

    Raises:
        ValueError: If the amount is negative, not a number, a float, or
            finer than one microSTX.
    """
    if isinstance(stx, float):
        raise ValueError("STX amounts must be given as strings or Decimals, not floats")
    try:
        value = Decimal(str(stx).strip())
    except InvalidOperation as e:
        raise ValueError(f"Invalid STX amount: {stx!r}") from e

    if not value.is_finite() or value < 0:
        raise ValueError(f"Invalid STX amount: {stx!r}")

    micro = value * MICRO_STX_PER_STX
    if micro != micro.to_integral_value():
        raise ValueError(f"STX amount {stx} is finer than one microSTX")
    return str(int(micro))


def micro_stx_to_stx(micro_stx: Union[str, int]) -> str:
    """Convert microSTX to an STX string with six decimals."""
    value = Decimal(int(micro_stx)) / MICRO_STX_PER_STX
    return f"{value:.6f}"


def create_payment_requirement(
    recipient: str,
    amount: str,
    description: Optional[str] = None,
    resource: Optional[str] = None,
    chain_id: int = CHAIN_IDS["testnet"],
    max_age: Optional[int] = None,
) -> PaymentRequirement:
    """Requirement for ``amount`` microSTX paid in STX to ``recipient``."""
    return PaymentRequirement(
        scheme=SCHEME_EXACT,
        network=NETWORK_STACKS,
        chain_id=chain_id,
        recipient=recipient,
        amount=amount,
        asset=ASSET_STX,
        description=description,
        resource=resource,
        max_age=max_age,
    )
