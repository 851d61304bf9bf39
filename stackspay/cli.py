# stackspay/cli.py
"""
Demo buyer: discovers the seller's services and pays for each of them.

    stackspay-buyer --seller-url http://localhost:8000

The payer key is read from X402_PAYER_PRIVATE_KEY.
"""
import argparse
import logging
import sys
from typing import List, Optional, Sequence

import requests

from stackspay.core.config import settings
from stackspay.services.stacks_api import StacksApiClient
from stackspay.x402.client import PaymentEvent, PaymentEvents, check_wallet_balance, create_payment_session
from stackspay.x402.errors import NetworkUnavailable, PaymentBuildError
from stackspay.x402.pricing import micro_stx_to_stx
from stackspay.x402.types import NetworkConfig, WalletConfig

logger = logging.getLogger("stackspay.buyer")

EXPLORER_URL = "https://explorer.stacks.co/txid/{tx_id}"

DEMO_CALLS = [
    (
        "/summarize",
        {
            "text": "The x402 protocol enables seamless machine-to-machine payments using HTTP 402 "
                    "status codes. Agents can pay each other for services without accounts, API keys, "
                    "or subscriptions."
        },
    ),
    ("/translate", {"text": "Hello World Agent Payment", "targetLanguage": "Spanish"}),
    ("/sentiment", {"text": "I love this amazing new protocol! It is great and excellent!"}),
]


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(message)s",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="stackspay-buyer",
        description="Call a seller's paid endpoints, paying x402 demands in STX",
    )
    parser.add_argument(
        "--seller-url",
        default=settings.X402_SELLER_URL,
        help=f"Base URL of the seller (default: {settings.X402_SELLER_URL})",
    )
    parser.add_argument(
        "--network",
        choices=["mainnet", "testnet"],
        default=settings.X402_NETWORK,
        help="Stacks network to pay on",
    )
    parser.add_argument(
        "--max-auto-pay",
        type=int,
        default=settings.X402_MAX_AUTO_PAY_AMOUNT,
        help="Largest demand in microSTX that is paid automatically",
    )
    parser.add_argument(
        "--skip-balance-check",
        action="store_true",
        help="Do not look up the wallet balance before paying",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Python logging level (default: INFO)",
    )
    return parser


def explorer_link(tx_id: str, network: str) -> str:
    link = EXPLORER_URL.format(tx_id=tx_id)
    return link if network == "mainnet" else f"{link}?chain=testnet"


def run_cli(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.log_level)

    if not settings.X402_PAYER_PRIVATE_KEY:
        logger.error("X402_PAYER_PRIVATE_KEY not set in environment")
        return 1

    api_url = str(settings.X402_API_URL) if settings.X402_API_URL else None
    network = NetworkConfig(type=args.network, api_url=api_url)
    wallet = WalletConfig(private_key=settings.X402_PAYER_PRIVATE_KEY)
    chain_client = StacksApiClient()

    try:
        address = chain_client.derive_address(wallet.private_key, network)
    except ValueError as e:
        logger.error(f"Invalid payer private key: {e}")
        return 1
    logger.info(f"Buyer address: {address} on {network.type}, seller {args.seller_url}")

    if not args.skip_balance_check:
        try:
            balance = check_wallet_balance(wallet, network, chain_client)
        except NetworkUnavailable as e:
            logger.warning(f"Could not check balance, proceeding anyway: {e}")
        else:
            logger.info(f"Balance: {micro_stx_to_stx(balance['balance'])} STX")
            if not balance["sufficient"]:
                logger.error("Insufficient balance; get testnet STX from the faucet")
                return 1

    payments: List[PaymentEvent] = []
    events = PaymentEvents()
    events.subscribe(payments.append)
    events.subscribe(
        lambda event: logger.info(
            f"Paid {micro_stx_to_stx(event.amount)} STX to {event.recipient} (txid {event.tx_id})"
        )
    )

    session = create_payment_session(
        wallet,
        chain_client=chain_client,
        max_auto_pay_amount=args.max_auto_pay,
        events=events,
        api_url=api_url,
    )
    base_url = args.seller_url.rstrip("/")

    try:
        listing = requests.get(f"{base_url}/services", timeout=settings.X402_REQUEST_TIMEOUT_SECONDS)
        listing.raise_for_status()
    except requests.exceptions.RequestException as e:
        logger.error(f"Could not reach seller: {e}")
        return 1

    catalogue = listing.json()
    logger.info(f"Found agent {catalogue.get('agent')} with {len(catalogue.get('services', []))} services")
    for service in catalogue.get("services", []):
        logger.info(f"  {service['endpoint']}: {service['price']} - {service['description']}")

    failures = 0
    for path, body in DEMO_CALLS:
        try:
            response = session.post(f"{base_url}{path}", json=body, timeout=settings.X402_REQUEST_TIMEOUT_SECONDS)
        except PaymentBuildError as e:
            logger.error(f"{path}: could not build payment: {e}")
            failures += 1
            continue
        except requests.exceptions.RequestException as e:
            logger.error(f"{path}: request failed: {e}")
            failures += 1
            continue

        if response.ok:
            logger.info(f"{path}: {response.json()}")
        else:
            logger.error(f"{path}: failed with {response.status_code}: {response.text}")
            failures += 1

    total = sum(int(event.amount) for event in payments)
    logger.info(f"Payments made: {len(payments)}, total spent: {micro_stx_to_stx(total)} STX")
    for event in payments:
        if event.tx_id:
            logger.info(f"  {event.url}: {explorer_link(event.tx_id, network.type)}")

    return 1 if failures else 0


def main() -> None:
    sys.exit(run_cli())


if __name__ == "__main__":
    main()
