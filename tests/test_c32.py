# tests/test_c32.py
"""
Unit tests for c32check Stacks address encoding.
"""
import pytest

from stackspay.services.c32 import (
    C32Error,
    MAINNET_SINGLE_SIG,
    TESTNET_SINGLE_SIG,
    c32_decode,
    c32_encode,
    c32check_decode,
    c32check_encode,
    decode_address,
    encode_address,
    hash160,
    is_valid_address,
)

KNOWN_HASH = bytes.fromhex("a46ff88886c2ef9762d970b4d2c63678835bd39d")


class TestC32Encoding:
    """Test raw c32 encoding."""

    def test_empty(self):
        assert c32_encode(b"") == ""
        assert c32_decode("") == b""

    def test_leading_zero_bytes_preserved(self):
        """Each leading zero byte becomes one leading '0'."""
        data = b"\x00\x00\x01\x02"
        encoded = c32_encode(data)
        assert encoded.startswith("00")
        assert c32_decode(encoded) == data

    def test_decode_is_case_insensitive(self):
        encoded = c32_encode(b"hello world")
        assert c32_decode(encoded.lower()) == b"hello world"

    def test_decode_maps_lookalike_characters(self):
        """O decodes as 0, L and I as 1."""
        assert c32_decode("O1") == c32_decode("01")
        assert c32_decode("L") == c32_decode("1")
        assert c32_decode("I") == c32_decode("1")

    def test_decode_rejects_invalid_character(self):
        with pytest.raises(C32Error):
            c32_decode("U")


class TestC32Check:
    """Test versioned, checksummed encoding."""

    def test_encode_decode(self):
        encoded = c32check_encode(MAINNET_SINGLE_SIG, KNOWN_HASH)
        assert c32check_decode(encoded) == (MAINNET_SINGLE_SIG, KNOWN_HASH)

    def test_invalid_version(self):
        with pytest.raises(C32Error):
            c32check_encode(32, KNOWN_HASH)

    def test_checksum_mismatch(self):
        encoded = c32check_encode(MAINNET_SINGLE_SIG, KNOWN_HASH)
        tampered = encoded[:-1] + ("0" if encoded[-1] != "0" else "1")
        with pytest.raises(C32Error, match="checksum"):
            c32check_decode(tampered)

    def test_too_short(self):
        with pytest.raises(C32Error):
            c32check_decode("P")


class TestAddresses:
    """Test Stacks address encoding against known addresses."""

    def test_mainnet_address(self):
        assert encode_address(MAINNET_SINGLE_SIG, KNOWN_HASH) == "SP2J6ZY48GV1EZ5V2V5RB9MP66SW86PYKKNRV9EJ7"

    def test_testnet_address(self):
        assert encode_address(TESTNET_SINGLE_SIG, KNOWN_HASH) == "ST2J6ZY48GV1EZ5V2V5RB9MP66SW86PYKKQ9H6DPR"

    def test_decode_address(self):
        assert decode_address("ST2J6ZY48GV1EZ5V2V5RB9MP66SW86PYKKQ9H6DPR") == (TESTNET_SINGLE_SIG, KNOWN_HASH)

    def test_encode_requires_20_bytes(self):
        with pytest.raises(C32Error):
            encode_address(MAINNET_SINGLE_SIG, b"\x01" * 19)

    def test_decode_requires_s_prefix(self):
        with pytest.raises(C32Error, match="must start with 'S'"):
            decode_address("XP2J6ZY48GV1EZ5V2V5RB9MP66SW86PYKKNRV9EJ7")

    def test_is_valid_address(self):
        assert is_valid_address("SP2J6ZY48GV1EZ5V2V5RB9MP66SW86PYKKNRV9EJ7") is True
        assert is_valid_address("SP2J6ZY48GV1EZ5V2V5RB9MP66SW86PYKKNRV9EJ8") is False
        assert is_valid_address("") is False
        assert is_valid_address("not an address") is False

    def test_hash160_length(self):
        assert len(hash160(b"\x02" * 33)) == 20
