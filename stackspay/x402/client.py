# stackspay/x402/client.py
"""
requests integration that pays x402 demands automatically.

Mount ``PaymentAdapter`` on a ``requests.Session`` (or call
``create_payment_session``) and any 402 answered with an
``X-Payment-Required`` header is paid and retried once:

    session = create_payment_session(WalletConfig(private_key=key))
    response = session.post("http://localhost:8000/summarize", json={...})

Amounts above the configured ceiling are never paid; the 402 is returned
as is.
"""
import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import requests
from requests.adapters import HTTPAdapter

from stackspay.core.config import settings
from stackspay.services.chain import ChainClient
from stackspay.services.stacks_api import StacksApiClient
from stackspay.x402.builder import PaymentBuilder
from stackspay.x402.codec import (
    X_PAYMENT_HEADER,
    X_PAYMENT_REQUIRED_HEADER,
    X_PAYMENT_RESPONSE_HEADER,
    decode_payment_requirement,
    decode_payment_response,
    encode_payment,
)
from stackspay.x402.errors import AmountCeilingExceeded, CodecError
from stackspay.x402.nonces import NonceSequencer
from stackspay.x402.types import NetworkConfig, PaymentRequirement, WalletConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PaymentEvent:
    """A payment that was attached to a retried request."""

    url: str
    amount: str
    recipient: str
    tx_id: Optional[str]
    status_code: int


PaymentListener = Callable[[PaymentEvent], Any]


class PaymentEvents:
    """Fan-out of PaymentEvents to any number of listeners."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._listeners: List[PaymentListener] = []

    def subscribe(self, listener: PaymentListener) -> PaymentListener:
        with self._lock:
            self._listeners.append(listener)
        return listener

    def unsubscribe(self, listener: PaymentListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def emit(self, event: PaymentEvent) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(event)
            except Exception as e:
                logger.error(f"x402: Payment listener {listener!r} failed: {e}")


class PaymentAdapter(HTTPAdapter):
    """
    HTTP adapter that answers 402 Payment Required responses.

    Args:
        wallet: Payer credential.
        builder: PaymentBuilder used to sign payloads.
        max_auto_pay_amount: Ceiling in microSTX above which demands are
            refused. Defaults to X402_MAX_AUTO_PAY_AMOUNT.
        fee: Explicit transaction fee in microSTX (optional).
        events: Hub notified after every paid retry.
        **kwargs: Additional arguments for HTTPAdapter.
    """

    def __init__(
        self,
        wallet: WalletConfig,
        builder: PaymentBuilder,
        max_auto_pay_amount: Optional[int] = None,
        fee: Optional[int] = None,
        events: Optional[PaymentEvents] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self.wallet = wallet
        self.builder = builder
        self.max_auto_pay_amount = (
            settings.X402_MAX_AUTO_PAY_AMOUNT if max_auto_pay_amount is None else int(max_auto_pay_amount)
        )
        self.fee = fee
        self.events = events or PaymentEvents()

    def _requirement_from(self, response: requests.Response) -> Optional[PaymentRequirement]:
        header = response.headers.get(X_PAYMENT_REQUIRED_HEADER)
        if not header:
            logger.debug(f"x402: 402 from {response.url} without {X_PAYMENT_REQUIRED_HEADER}, not paying")
            return None
        try:
            return decode_payment_requirement(header)
        except CodecError as e:
            logger.error(f"x402: Failed to decode payment requirement from {response.url}: {e}")
            return None

    def check_ceiling(self, requirement: PaymentRequirement) -> None:
        amount = int(requirement.amount)
        if amount > self.max_auto_pay_amount:
            raise AmountCeilingExceeded(amount, self.max_auto_pay_amount)

    def send(self, request: requests.PreparedRequest, **kwargs: Any) -> requests.Response:
        """
        Send the request, paying and retrying once on a 402 demand.

        Raises:
            SigningError: If the wallet cannot sign the payment.
            NonceUnavailable: If the sender's nonce cannot be read.
        """
        response = super().send(request, **kwargs)
        if response.status_code != 402:
            return response

        requirement = self._requirement_from(response)
        if requirement is None:
            return response

        try:
            self.check_ceiling(requirement)
        except AmountCeilingExceeded as e:
            logger.warning(f"x402: {e}, not auto-paying")
            return response

        logger.info(f"x402: Paying {requirement.amount} microSTX to {requirement.recipient} for {request.url}")
        payload = self.builder.build(requirement, self.wallet, fee=self.fee)

        retry_request = request.copy()
        retry_request.headers[X_PAYMENT_HEADER] = encode_payment(payload)
        response.close()

        retry_response = super().send(retry_request, **kwargs)

        if retry_response.status_code == 402 and self.builder.sequencer is not None:
            # the seller refused, so the nonce was probably never consumed
            network = self.builder.network_for(requirement)
            sender = self.builder.sender_address(self.wallet, network)
            self.builder.sequencer.reset(sender, network.type)

        receipt = decode_payment_response(retry_response.headers.get(X_PAYMENT_RESPONSE_HEADER)) or {}
        event = PaymentEvent(
            url=request.url,
            amount=requirement.amount,
            recipient=requirement.recipient,
            tx_id=receipt.get("txId"),
            status_code=retry_response.status_code,
        )
        logger.info(f"x402: Paid retry of {request.url} returned {retry_response.status_code} (txid {event.tx_id})")
        self.events.emit(event)
        return retry_response


def create_payment_session(
    wallet: WalletConfig,
    chain_client: Optional[ChainClient] = None,
    max_auto_pay_amount: Optional[int] = None,
    fee: Optional[int] = None,
    events: Optional[PaymentEvents] = None,
    api_url: Optional[str] = None,
    session: Optional[requests.Session] = None,
) -> requests.Session:
    """
    Return a session whose http:// and https:// requests pay 402 demands.

    One NonceSequencer is shared by the session so concurrent payments from
    the same wallet get consecutive nonces.
    """
    builder = PaymentBuilder(
        chain_client or StacksApiClient(),
        sequencer=NonceSequencer(),
        api_url=api_url,
    )
    adapter = PaymentAdapter(
        wallet,
        builder,
        max_auto_pay_amount=max_auto_pay_amount,
        fee=fee,
        events=events,
    )
    session = session or requests.Session()
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    return session


def check_wallet_balance(
    wallet: WalletConfig,
    network: Optional[NetworkConfig] = None,
    chain_client: Optional[ChainClient] = None,
) -> Dict[str, Any]:
    """
    Look up the wallet's STX balance.

    Returns:
        Dict with ``address``, ``balance`` (microSTX string) and
        ``sufficient`` (balance above zero).

    Raises:
        NetworkUnavailable: If the chain API cannot be reached.
    """
    network = network or NetworkConfig()
    chain_client = chain_client or StacksApiClient()
    address = wallet.address or chain_client.derive_address(wallet.private_key, network)
    balance = chain_client.fetch_balance(address, network)["balance"]
    return {
        "address": address,
        "balance": balance,
        "sufficient": int(balance) > 0,
    }
