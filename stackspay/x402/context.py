# stackspay/x402/context.py
"""
Settled-payment context handed from the gate to the route handler.

The middleware binds a PaymentContext to a context variable before calling
the handler; handlers read it with ``get_payment_context()`` or depend on
``require_payment_context``. The request object itself is never modified.
"""
from contextvars import ContextVar, Token
from dataclasses import dataclass
from typing import Optional

from fastapi import HTTPException


@dataclass(frozen=True)
class PaymentContext:
    amount: str
    recipient: str
    sender: str  # signer public key, hex
    nonce: int
    tx_id: Optional[str] = None
    settled: bool = False


_payment_context: ContextVar[Optional[PaymentContext]] = ContextVar("x402_payment_context", default=None)


def bind_payment_context(context: PaymentContext) -> Token:
    return _payment_context.set(context)


def reset_payment_context(token: Token) -> None:
    _payment_context.reset(token)


def get_payment_context() -> Optional[PaymentContext]:
    """The payment for the current request, or None on free routes."""
    return _payment_context.get()


async def require_payment_context() -> PaymentContext:
    """FastAPI dependency for handlers that must only run after payment."""
    context = _payment_context.get()
    if context is None:
        raise HTTPException(status_code=402, detail="Payment Required")
    return context


async def current_payment_context() -> Optional[PaymentContext]:
    """FastAPI dependency for handlers that also serve unpaid requests (gate disabled)."""
    return _payment_context.get()
