# stackspay/x402/types.py
"""
Wire and result models for the Stacks x402 "exact" scheme.

Field names are snake_case in Python and camelCase on the wire
(``chain_id`` <-> ``chainId``). Amounts are always decimal strings of
microSTX so no float ever touches a balance.
"""
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

# Stacks chain ids
CHAIN_IDS = {
    "mainnet": 1,
    "testnet": 2147483648,  # 0x80000000
}

API_URLS = {
    "mainnet": "https://api.mainnet.hiro.so",
    "testnet": "https://api.testnet.hiro.so",
}

SCHEME_EXACT = "exact"
NETWORK_STACKS = "stacks"
ASSET_STX = "STX"

NetworkType = Literal["mainnet", "testnet"]


def _normalize_amount(value: Any) -> Any:
    if isinstance(value, bool) or isinstance(value, float):
        raise ValueError("amount must be an integer string, not a float or boolean")
    if isinstance(value, int):
        if value < 0:
            raise ValueError("amount must not be negative")
        return str(value)
    if isinstance(value, str):
        if not value.isascii() or not value.isdigit():
            raise ValueError("amount must contain only decimal digits")
        return value
    return value


class X402Model(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class PaymentRequirement(X402Model):
    """What a resource owner demands before serving a route."""

    scheme: Literal["exact"] = SCHEME_EXACT
    network: str = NETWORK_STACKS
    chain_id: int
    recipient: str
    amount: str
    asset: str = ASSET_STX
    description: Optional[str] = None
    resource: Optional[str] = None
    max_age: Optional[int] = Field(default=None, ge=0)

    @field_validator("amount", mode="before")
    @classmethod
    def check_amount(cls, value: Any) -> Any:
        return _normalize_amount(value)


class PaymentPayload(X402Model):
    """A signed payment answering one PaymentRequirement."""

    scheme: str = SCHEME_EXACT
    network: str = NETWORK_STACKS
    chain_id: int
    recipient: str
    amount: str
    asset: str = ASSET_STX
    nonce: int = Field(ge=0)
    signature: str
    public_key: str
    serialized_tx: Optional[str] = None
    # epoch milliseconds
    expires_at: Optional[int] = None

    @field_validator("amount", mode="before")
    @classmethod
    def check_amount(cls, value: Any) -> Any:
        return _normalize_amount(value)


class VerificationResult(X402Model):
    valid: bool
    reason: Optional[str] = None
    code: Optional[str] = None
    details: Optional[Dict[str, Any]] = None


class SettlementResult(X402Model):
    success: bool
    tx_id: Optional[str] = None
    error: Optional[str] = None
    code: Optional[str] = None
    block_height: Optional[int] = None


class TransactionStatus(X402Model):
    status: Literal["pending", "success", "failed", "not_found"]
    block_height: Optional[int] = None


class NetworkConfig(X402Model):
    type: NetworkType = "testnet"
    api_url: Optional[str] = None

    @property
    def chain_id(self) -> int:
        return CHAIN_IDS[self.type]

    @property
    def base_url(self) -> str:
        return (self.api_url or API_URLS[self.type]).rstrip("/")


class WalletConfig(X402Model):
    private_key: str = Field(repr=False)
    address: Optional[str] = None


def network_from_chain_id(chain_id: int) -> NetworkType:
    return "mainnet" if chain_id == CHAIN_IDS["mainnet"] else "testnet"


def get_chain_id(network: NetworkType) -> int:
    return CHAIN_IDS[network]
