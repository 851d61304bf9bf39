# tests/test_x402_pricing.py
"""
Unit tests for STX pricing and requirement models.
"""
from decimal import Decimal

import pytest
from pydantic import ValidationError

from stackspay.x402.pricing import (
    MICRO_STX_PER_STX,
    create_payment_requirement,
    micro_stx_to_stx,
    stx_to_micro_stx,
)
from stackspay.x402.types import (
    CHAIN_IDS,
    NetworkConfig,
    PaymentRequirement,
    WalletConfig,
    get_chain_id,
    network_from_chain_id,
)


class TestStxConversion:
    """Test STX <-> microSTX conversion."""

    def test_constant(self):
        assert MICRO_STX_PER_STX == 1_000_000

    def test_demo_prices(self):
        assert stx_to_micro_stx("0.001") == "1000"
        assert stx_to_micro_stx("0.0005") == "500"

    def test_whole_stx(self):
        assert stx_to_micro_stx("10") == "10000000"
        assert stx_to_micro_stx(2) == "2000000"
        assert stx_to_micro_stx(Decimal("1.5")) == "1500000"

    def test_zero(self):
        assert stx_to_micro_stx("0") == "0"

    def test_float_rejected(self):
        with pytest.raises(ValueError, match="floats"):
            stx_to_micro_stx(0.001)

    def test_sub_micro_precision_rejected(self):
        with pytest.raises(ValueError, match="finer than one microSTX"):
            stx_to_micro_stx("0.0000001")

    def test_negative_rejected(self):
        with pytest.raises(ValueError):
            stx_to_micro_stx("-1")

    def test_garbage_rejected(self):
        with pytest.raises(ValueError):
            stx_to_micro_stx("one STX")

    def test_micro_to_stx(self):
        assert micro_stx_to_stx("1000") == "0.001000"
        assert micro_stx_to_stx(2_500_000) == "2.500000"


class TestCreatePaymentRequirement:
    """Test requirement construction."""

    def test_defaults(self, seller_address):
        requirement = create_payment_requirement(seller_address, "1000")
        assert requirement.scheme == "exact"
        assert requirement.network == "stacks"
        assert requirement.asset == "STX"
        assert requirement.chain_id == CHAIN_IDS["testnet"]
        assert requirement.max_age is None

    def test_options(self, seller_address):
        requirement = create_payment_requirement(
            seller_address, "1000", description="Translate", resource="POST /translate",
            chain_id=CHAIN_IDS["mainnet"], max_age=60,
        )
        assert requirement.description == "Translate"
        assert requirement.resource == "POST /translate"
        assert requirement.chain_id == 1
        assert requirement.max_age == 60


class TestModels:
    """Test model validation rules."""

    def test_amount_must_be_digits(self, seller_address):
        for bad in ("1.5", "-1", "1e3", "", " 10"):
            with pytest.raises(ValidationError):
                PaymentRequirement(chain_id=1, recipient=seller_address, amount=bad)

    def test_negative_int_amount(self, seller_address):
        with pytest.raises(ValidationError):
            PaymentRequirement(chain_id=1, recipient=seller_address, amount=-5)

    def test_bool_amount(self, seller_address):
        with pytest.raises(ValidationError):
            PaymentRequirement(chain_id=1, recipient=seller_address, amount=True)

    def test_negative_max_age(self, seller_address):
        with pytest.raises(ValidationError):
            PaymentRequirement(chain_id=1, recipient=seller_address, amount="1", max_age=-1)

    def test_models_are_frozen(self, requirement):
        with pytest.raises(ValidationError):
            requirement.amount = "1"

    def test_snake_case_and_camel_case_input(self, seller_address):
        by_name = PaymentRequirement(chain_id=1, recipient=seller_address, amount="1", max_age=5)
        by_alias = PaymentRequirement.model_validate({"chainId": 1, "recipient": seller_address, "amount": "1", "maxAge": 5})
        assert by_name == by_alias

    def test_wallet_key_hidden_from_repr(self):
        wallet = WalletConfig(private_key="secret-key-material")
        assert "secret-key-material" not in repr(wallet)


class TestNetworks:
    """Test network helpers."""

    def test_chain_ids(self):
        assert CHAIN_IDS == {"mainnet": 1, "testnet": 0x80000000}
        assert get_chain_id("mainnet") == 1
        assert get_chain_id("testnet") == 0x80000000

    def test_network_from_chain_id(self):
        assert network_from_chain_id(1) == "mainnet"
        assert network_from_chain_id(0x80000000) == "testnet"

    def test_default_api_urls(self):
        assert NetworkConfig(type="mainnet").base_url == "https://api.mainnet.hiro.so"
        assert NetworkConfig().base_url == "https://api.testnet.hiro.so"

    def test_custom_api_url(self):
        network = NetworkConfig(type="testnet", api_url="http://localhost:3999/")
        assert network.base_url == "http://localhost:3999"
        assert network.chain_id == 0x80000000
