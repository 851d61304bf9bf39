# stackspay/x402/builder.py
"""
Client-side construction of signed x402 payment payloads.

A payload is an STX token transfer for exactly the requirement's amount to
the requirement's recipient, signed by the payer and serialized so the
seller can broadcast it. The requirement's scheme, network, chain id,
recipient, amount and asset are echoed verbatim.
"""
import logging
import time
from typing import Optional

from requests.exceptions import RequestException

from stackspay.services.chain import ChainClient
from stackspay.services.transactions import (
    SingleSigSpendingCondition,
    recover_signer_public_key,
)
from stackspay.x402.errors import NetworkUnavailable, NonceUnavailable, SigningError
from stackspay.x402.nonces import NonceSequencer
from stackspay.x402.types import (
    NetworkConfig,
    PaymentPayload,
    PaymentRequirement,
    WalletConfig,
    network_from_chain_id,
)

logger = logging.getLogger(__name__)


class PaymentBuilder:
    """
    Turns PaymentRequirements into signed PaymentPayloads.

    Args:
        chain_client: Source of nonces and the transaction signer.
        sequencer: Optional per-sender nonce sequencer. Without one every
            build without an explicit nonce reads the chain.
        api_url: Optional custom API URL for the network implied by each
            requirement's chain id.
    """

    def __init__(
        self,
        chain_client: ChainClient,
        sequencer: Optional[NonceSequencer] = None,
        api_url: Optional[str] = None,
    ):
        self.chain_client = chain_client
        self.sequencer = sequencer
        self.api_url = api_url

    def network_for(self, requirement: PaymentRequirement) -> NetworkConfig:
        return NetworkConfig(type=network_from_chain_id(requirement.chain_id), api_url=self.api_url)

    def sender_address(self, wallet: WalletConfig, network: NetworkConfig) -> str:
        if wallet.address:
            return wallet.address
        try:
            return self.chain_client.derive_address(wallet.private_key, network)
        except ValueError as e:
            raise SigningError(f"Cannot derive address from private key: {e}") from e

    def _fetch_nonce(self, address: str, network: NetworkConfig) -> int:
        try:
            return self.chain_client.fetch_nonce(address, network)
        except (NetworkUnavailable, RequestException) as e:
            raise NonceUnavailable(f"Could not fetch nonce for {address}: {e}") from e

    def build(
        self,
        requirement: PaymentRequirement,
        wallet: WalletConfig,
        nonce: Optional[int] = None,
        fee: Optional[int] = None,
        now: Optional[float] = None,
    ) -> PaymentPayload:
        """
        Build and sign a payload answering ``requirement``.

        Args:
            requirement: The advertised requirement.
            wallet: Payer credential.
            nonce: Explicit nonce; skips the sequencer and the chain lookup.
            fee: Explicit fee in microSTX; otherwise the chain client estimates.
            now: Current time in seconds (for ``expiresAt`` when the
                requirement carries ``maxAge``).

        Raises:
            SigningError: If the credential cannot produce a signature.
            NonceUnavailable: If no nonce was given and the chain is unreachable.
        """
        network = self.network_for(requirement)
        address = self.sender_address(wallet, network)

        leased = False
        if nonce is None:
            if self.sequencer is not None:
                nonce = self.sequencer.lease(address, network.type, lambda: self._fetch_nonce(address, network))
                leased = True
            else:
                nonce = self._fetch_nonce(address, network)

        try:
            transaction = self.chain_client.sign_transfer(
                recipient=requirement.recipient,
                amount=int(requirement.amount),
                private_key=wallet.private_key,
                network=network,
                nonce=nonce,
                fee=fee,
            )
            origin = transaction.origin
            if not isinstance(origin, SingleSigSpendingCondition):
                raise SigningError("Signed transaction has no single-sig authorization")
            public_key = recover_signer_public_key(transaction)
        except SigningError:
            self._release(leased, address, network)
            raise
        except (NetworkUnavailable, RequestException) as e:
            # fee estimation needs the chain
            self._release(leased, address, network)
            raise NonceUnavailable(f"Chain unavailable while signing: {e}") from e
        except ValueError as e:
            self._release(leased, address, network)
            raise SigningError(f"Failed to sign transfer: {e}") from e

        expires_at = None
        if requirement.max_age is not None:
            now = time.time() if now is None else now
            expires_at = int((now + requirement.max_age) * 1000)

        logger.info(
            f"x402: Built payment of {requirement.amount} microSTX to {requirement.recipient} "
            f"(nonce {nonce}, txid {transaction.txid()})"
        )

        return PaymentPayload(
            scheme=requirement.scheme,
            network=requirement.network,
            chain_id=requirement.chain_id,
            recipient=requirement.recipient,
            amount=requirement.amount,
            asset=requirement.asset,
            nonce=nonce,
            signature=origin.signature.hex(),
            public_key=public_key.hex(),
            serialized_tx=transaction.hex(),
            expires_at=expires_at,
        )

    def _release(self, leased: bool, address: str, network: NetworkConfig) -> None:
        if leased and self.sequencer is not None:
            self.sequencer.reset(address, network.type)


def create_payment_payload(
    requirement: PaymentRequirement,
    wallet: WalletConfig,
    chain_client: ChainClient,
    nonce: Optional[int] = None,
    fee: Optional[int] = None,
) -> PaymentPayload:
    """One-shot helper around PaymentBuilder without nonce sequencing."""
    return PaymentBuilder(chain_client).build(requirement, wallet, nonce=nonce, fee=fee)
