# stackspay/x402/middleware.py
"""
FastAPI middleware gating routes behind x402 STX payments.

For every request to a priced route the middleware:
1. Returns 402 with an X-Payment-Required requirement if no X-Payment header
2. Returns 400 if the X-Payment header cannot be decoded
3. Verifies the payload against the route's requirement (402 on rejection)
4. Runs the optional custom verification hook
5. Broadcasts the payment transaction (when settling immediately)
6. Optionally waits for on-chain confirmation
7. Calls the handler with a PaymentContext bound and adds X-Payment-Response

Rejections re-issue the same requirement so the client can try again.
When X402_ENABLED=false all requests pass through unchanged.
"""
import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from fastapi import Request, Response
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from stackspay.core.config import settings
from stackspay.services.chain import ChainClient
from stackspay.services.stacks_api import StacksApiClient, network_from_settings
from stackspay.x402 import audit
from stackspay.x402.codec import (
    X_PAYMENT_HEADER,
    X_PAYMENT_REQUIRED_HEADER,
    X_PAYMENT_RESPONSE_HEADER,
    decode_payment_payload,
    encode_payment,
    encode_payment_response,
)
from stackspay.x402.context import PaymentContext, bind_payment_context, reset_payment_context
from stackspay.x402.errors import CodecError, NetworkUnavailable, SettlementPending
from stackspay.x402.pricing import create_payment_requirement, micro_stx_to_stx, stx_to_micro_stx
from stackspay.x402.settlement import await_confirmation, expected_txid, settle_payment
from stackspay.x402.types import NetworkConfig, PaymentPayload, PaymentRequirement
from stackspay.x402.verifier import verify_payment

logger = logging.getLogger(__name__)

RETRY_AFTER_SECONDS = 5

CustomVerify = Callable[[PaymentPayload, PaymentRequirement, Request], Union[bool, Awaitable[bool]]]


@dataclass(frozen=True)
class RouteConfig:
    """
    Price of one route.

    Give ``price`` in STX (e.g. ``"0.001"``) or ``amount`` in microSTX.
    """

    price: Optional[str] = None
    amount: Optional[str] = None
    description: Optional[str] = None
    max_age: Optional[int] = None

    def __post_init__(self):
        if (self.price is None) == (self.amount is None):
            raise ValueError("RouteConfig needs exactly one of price (STX) or amount (microSTX)")

    @property
    def micro_stx(self) -> str:
        if self.amount is not None:
            return str(int(self.amount))
        return stx_to_micro_stx(self.price)


def route_key(method: str, path: str) -> str:
    normalized = path.rstrip("/") or "/"
    return f"{method.upper()} {normalized}"


def get_client_ip(request: Request) -> str:
    """Extract client IP from request, handling proxies."""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    if request.client:
        return request.client.host

    return "unknown"


def create_402_response(requirement: PaymentRequirement, content: Dict[str, Any], headers: Optional[Dict[str, str]] = None) -> JSONResponse:
    """402 carrying ``requirement`` in the X-Payment-Required header."""
    response_headers = {X_PAYMENT_REQUIRED_HEADER: encode_payment(requirement)}
    if headers:
        response_headers.update(headers)
    return JSONResponse(status_code=402, content=content, headers=response_headers)


class PaymentMiddleware(BaseHTTPMiddleware):
    """
    x402 payment gate for FastAPI.

    Args:
        app: The ASGI app to wrap.
        routes: ``{"POST /summarize": RouteConfig(price="0.001"), ...}``.
            Routes not listed are free.
        recipient_address: Address that receives payments.
            Defaults to X402_PAY_TO_ADDRESS.
        network: Network payments must be made on. Defaults to X402_NETWORK.
        settle_immediately: Broadcast each payment before calling the handler.
        chain_client: Ledger access; defaults to the Hiro Stacks API.
        custom_verify: Extra check, sync or async, run after verification.
            Returning False rejects the payment.
        settlement_timeout: Seconds to wait for the broadcast.
        require_confirmation: Wait for the transaction to succeed on chain
            before calling the handler.
        confirmation_timeout: Seconds to wait for confirmation.
    """

    def __init__(
        self,
        app,
        routes: Dict[str, RouteConfig],
        recipient_address: Optional[str] = None,
        network: Optional[NetworkConfig] = None,
        settle_immediately: Optional[bool] = None,
        chain_client: Optional[ChainClient] = None,
        custom_verify: Optional[CustomVerify] = None,
        settlement_timeout: Optional[float] = None,
        require_confirmation: Optional[bool] = None,
        confirmation_timeout: Optional[float] = None,
    ):
        super().__init__(app)
        self.routes = {route_key(*key.split(" ", 1)): config for key, config in routes.items()}
        self.recipient_address = recipient_address or settings.X402_PAY_TO_ADDRESS
        self.network = network or network_from_settings()
        self.settle_immediately = (
            settings.X402_SETTLE_IMMEDIATELY if settle_immediately is None else settle_immediately
        )
        self._chain_client = chain_client
        self.custom_verify = custom_verify
        self.settlement_timeout = (
            settings.X402_SETTLEMENT_TIMEOUT_SECONDS if settlement_timeout is None else settlement_timeout
        )
        self.require_confirmation = (
            settings.X402_REQUIRE_CONFIRMATION if require_confirmation is None else require_confirmation
        )
        self.confirmation_timeout = (
            settings.X402_CONFIRMATION_TIMEOUT_SECONDS if confirmation_timeout is None else confirmation_timeout
        )

    @property
    def chain_client(self) -> ChainClient:
        """Lazy initialization of the chain client."""
        if self._chain_client is None:
            self._chain_client = StacksApiClient()
        return self._chain_client

    def requirement_for(self, key: str, config: RouteConfig) -> PaymentRequirement:
        return create_payment_requirement(
            recipient=self.recipient_address,
            amount=config.micro_stx,
            description=config.description,
            resource=key,
            chain_id=self.network.chain_id,
            max_age=config.max_age,
        )

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        if not settings.X402_ENABLED:
            return await call_next(request)

        key = route_key(request.method, request.url.path)
        config = self.routes.get(key)
        if config is None:
            return await call_next(request)

        client_ip = get_client_ip(request)
        request_id = audit.generate_request_id()
        logger.info(f"x402: Processing paid request from {client_ip}: {key}")

        try:
            outcome = await self._process_payment(request, key, config, client_ip, request_id)
        except Exception as e:
            logger.exception(f"x402: Middleware error on {key}: {e}")
            audit.log_error(
                client_ip=client_ip,
                error_type=type(e).__name__,
                error_message=str(e),
                context={"route": key},
                request_id=request_id,
            )
            return JSONResponse(
                status_code=500,
                content={"error": "Payment processing error", "message": str(e)}
            )

        if isinstance(outcome, Response):
            return outcome

        token = bind_payment_context(outcome)
        try:
            response = await call_next(request)
        finally:
            reset_payment_context(token)

        response.headers[X_PAYMENT_RESPONSE_HEADER] = encode_payment_response(outcome.tx_id, outcome.settled)
        return response

    async def _process_payment(
        self,
        request: Request,
        key: str,
        config: RouteConfig,
        client_ip: str,
        request_id: str,
    ) -> Union[Response, PaymentContext]:
        """Return the PaymentContext to forward with, or the response that ends the request."""
        requirement = self.requirement_for(key, config)

        payment_header = request.headers.get(X_PAYMENT_HEADER)
        if not payment_header:
            logger.info(f"x402: No X-Payment header, returning 402 for {requirement.amount} microSTX")
            audit.log_payment_required_sent(
                client_ip=client_ip,
                amount=requirement.amount,
                recipient=requirement.recipient,
                chain_id=requirement.chain_id,
                resource=requirement.resource,
                request_id=request_id,
            )
            return create_402_response(
                requirement,
                {
                    "error": "Payment Required",
                    "message": config.description or "This endpoint requires payment",
                    "requirement": {
                        "amount": micro_stx_to_stx(requirement.amount),
                        "asset": requirement.asset,
                        "recipient": requirement.recipient,
                    },
                },
            )

        try:
            payload = decode_payment_payload(payment_header)
        except CodecError as e:
            logger.warning(f"x402: Invalid X-Payment header from {client_ip}: {e}")
            audit.log_payment_failed(client_ip=client_ip, reason=str(e), stage="decode", request_id=request_id)
            return JSONResponse(
                status_code=400,
                content={"error": "Invalid payment header format", "detail": str(e), "code": e.code}
            )

        sender = payload.public_key
        audit.log_payment_received(
            client_ip=client_ip,
            sender=sender,
            amount=payload.amount,
            nonce=payload.nonce,
            request_id=request_id,
        )

        verification = verify_payment(payload, requirement)
        audit.log_payment_verified(
            client_ip=client_ip,
            sender=sender,
            is_valid=verification.valid,
            invalid_reason=verification.reason,
            request_id=request_id,
        )
        if not verification.valid:
            logger.warning(f"x402: Payment verification failed: {verification.reason}")
            return self._reject(
                requirement,
                {"error": "Payment Invalid", "reason": verification.reason, "code": verification.code},
                client_ip, request_id, stage="verify", sender=sender,
            )

        if self.custom_verify is not None:
            accepted = self.custom_verify(payload, requirement, request)
            if inspect.isawaitable(accepted):
                accepted = await accepted
            if not accepted:
                logger.warning(f"x402: Payment from {sender} rejected by custom verification")
                return self._reject(
                    requirement,
                    {"error": "Payment rejected by custom verification"},
                    client_ip, request_id, stage="custom_verify", sender=sender,
                )

        logger.info(f"x402: Payment verified for sender {sender} (nonce {payload.nonce})")

        context = PaymentContext(
            amount=payload.amount,
            recipient=payload.recipient,
            sender=sender,
            nonce=payload.nonce,
        )
        if not self.settle_immediately:
            return context

        try:
            settlement = await asyncio.wait_for(
                run_in_threadpool(settle_payment, payload, self.chain_client, self.network),
                timeout=self.settlement_timeout,
            )
        except NetworkUnavailable as e:
            logger.error(f"x402: Chain unavailable during settlement: {e}")
            return self._reject(
                requirement,
                {
                    "error": "Payment Settlement Failed",
                    "reason": str(e),
                    "code": NetworkUnavailable.code,
                    "retryable": True,
                },
                client_ip, request_id, stage="settle", sender=sender,
                headers={"Retry-After": str(RETRY_AFTER_SECONDS)},
            )
        except asyncio.TimeoutError:
            # the broadcast keeps running in its worker thread
            tx_id = expected_txid(payload)
            reason = f"Settlement timed out after {self.settlement_timeout}s"
            logger.error(f"x402: {reason}, transaction {tx_id} may still land")
            return self._reject(
                requirement,
                {
                    "error": "Payment Settlement Pending",
                    "reason": reason,
                    "code": SettlementPending.code,
                    "retryable": False,
                    "txId": tx_id,
                },
                client_ip, request_id, stage="settle", sender=sender,
            )

        audit.log_payment_settled(
            client_ip=client_ip,
            sender=sender,
            tx_id=settlement.tx_id,
            network=self.network.type,
            success=settlement.success,
            error_reason=settlement.error,
            request_id=request_id,
        )
        if not settlement.success:
            logger.warning(f"x402: Payment settlement failed: {settlement.error}")
            return self._reject(
                requirement,
                {"error": "Payment Settlement Failed", "reason": settlement.error, "code": settlement.code},
                client_ip, request_id, stage="settle", sender=sender,
            )

        logger.info(f"x402: Payment settled: {settlement.tx_id}")

        if self.require_confirmation:
            status = await await_confirmation(
                settlement.tx_id,
                self.chain_client,
                self.network,
                timeout=self.confirmation_timeout,
                interval=settings.X402_CONFIRMATION_POLL_SECONDS,
            )
            if status.status != "success":
                logger.warning(f"x402: Transaction {settlement.tx_id} not confirmed ({status.status})")
                return self._reject(
                    requirement,
                    {
                        "error": "Payment Not Confirmed",
                        "reason": f"Transaction status: {status.status}",
                        "code": "settlement_failure" if status.status == "failed" else "confirmation_pending",
                        "txId": settlement.tx_id,
                    },
                    client_ip, request_id, stage="confirm", sender=sender,
                )

        return PaymentContext(
            amount=context.amount,
            recipient=context.recipient,
            sender=context.sender,
            nonce=context.nonce,
            tx_id=settlement.tx_id,
            settled=True,
        )

    def _reject(
        self,
        requirement: PaymentRequirement,
        content: Dict[str, Any],
        client_ip: str,
        request_id: str,
        stage: str,
        sender: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> JSONResponse:
        reason = content.get("reason") or content["error"]
        audit.log_payment_failed(
            client_ip=client_ip,
            reason=reason,
            stage=stage,
            sender=sender,
            request_id=request_id,
        )
        audit.log_payment_required_sent(
            client_ip=client_ip,
            amount=requirement.amount,
            recipient=requirement.recipient,
            chain_id=requirement.chain_id,
            resource=requirement.resource,
            reason=reason,
            request_id=request_id,
        )
        return create_402_response(requirement, content, headers=headers)
