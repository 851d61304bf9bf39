# stackspay/core/config.py
from functools import lru_cache
from typing import Literal, Optional

from dotenv import load_dotenv
from pydantic import AnyHttpUrl  # AnyHttpUrl stays in pydantic core
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load .env file if it exists
load_dotenv()


class Settings(BaseSettings):
    PROJECT_NAME: str = "Stacks x402 Seller"

    # Gate (server side)
    X402_ENABLED: bool = True
    X402_NETWORK: Literal["mainnet", "testnet"] = "testnet"
    X402_API_URL: Optional[AnyHttpUrl] = None  # defaults to the Hiro API for X402_NETWORK
    X402_PAY_TO_ADDRESS: str = "ST1PQHQKV0RJXZFY1DGX8MNSNYVE3VGZJSRTPGZGM"
    X402_SETTLE_IMMEDIATELY: bool = True
    X402_SETTLEMENT_TIMEOUT_SECONDS: float = 30.0

    # Waiting for on-chain confirmation before releasing the resource trades
    # latency for finality; off means "submitted" is enough.
    X402_REQUIRE_CONFIRMATION: bool = False
    X402_CONFIRMATION_TIMEOUT_SECONDS: float = 120.0
    X402_CONFIRMATION_POLL_SECONDS: float = 5.0

    X402_REQUEST_TIMEOUT_SECONDS: float = 10.0
    X402_AUDIT_ENABLED: bool = True
    X402_AUDIT_LOG_PATH: str = "logs/x402_audit.jsonl"

    # Payer (client side)
    X402_PAYER_PRIVATE_KEY: Optional[str] = None
    X402_MAX_AUTO_PAY_AMOUNT: int = 10_000_000  # microSTX, 10 STX
    X402_SELLER_URL: str = "http://localhost:8000"

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",  # Ignore extra fields from .env
    )


@lru_cache()  # Cache the settings object for performance
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
