# stackspay/services/c32.py
"""
c32check encoding for Stacks addresses.

A Stacks address is ``"S"`` followed by the c32 character of the address
version and the c32 encoding of ``hash160 + checksum``, where the checksum is
the first four bytes of a double SHA-256 over ``version || hash160``.
"""
import hashlib
from typing import Tuple

C32_ALPHABET = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"

# Address versions (single-sig P2PKH)
MAINNET_SINGLE_SIG = 22  # "P" -> SP...
TESTNET_SINGLE_SIG = 26  # "T" -> ST...
MAINNET_MULTI_SIG = 20
TESTNET_MULTI_SIG = 21


class C32Error(ValueError):
    """Raised when a c32 string or address cannot be decoded."""


def _normalize(value: str) -> str:
    # c32 is case-insensitive and maps look-alike characters
    return value.upper().replace("O", "0").replace("L", "1").replace("I", "1")


def c32_encode(data: bytes) -> str:
    """Encode bytes as c32, keeping one '0' per leading zero byte."""
    number = int.from_bytes(data, "big")
    chars = []
    while number > 0:
        number, remainder = divmod(number, 32)
        chars.append(C32_ALPHABET[remainder])

    for byte in data:
        if byte != 0:
            break
        chars.append("0")

    return "".join(reversed(chars))


def c32_decode(value: str) -> bytes:
    """Decode a c32 string back to bytes."""
    value = _normalize(value)
    number = 0
    for char in value:
        index = C32_ALPHABET.find(char)
        if index < 0:
            raise C32Error(f"Invalid c32 character: {char!r}")
        number = number * 32 + index

    leading_zeros = len(value) - len(value.lstrip("0"))
    body = number.to_bytes((number.bit_length() + 7) // 8, "big") if number else b""
    return b"\x00" * leading_zeros + body


def _checksum(version: int, data: bytes) -> bytes:
    payload = bytes([version]) + data
    return hashlib.sha256(hashlib.sha256(payload).digest()).digest()[:4]


def c32check_encode(version: int, data: bytes) -> str:
    if not 0 <= version < 32:
        raise C32Error(f"Invalid c32check version: {version}")
    return C32_ALPHABET[version] + c32_encode(data + _checksum(version, data))


def c32check_decode(value: str) -> Tuple[int, bytes]:
    value = _normalize(value)
    if len(value) < 2:
        raise C32Error("c32check string is too short")

    version = C32_ALPHABET.find(value[0])
    if version < 0:
        raise C32Error(f"Invalid c32check version character: {value[0]!r}")

    decoded = c32_decode(value[1:])
    if len(decoded) < 4:
        raise C32Error("c32check string is missing its checksum")

    data, checksum = decoded[:-4], decoded[-4:]
    if _checksum(version, data) != checksum:
        raise C32Error("c32check checksum mismatch")
    return version, data


def hash160(data: bytes) -> bytes:
    """RIPEMD-160 of SHA-256, as used for Stacks signer hashes."""
    return hashlib.new("ripemd160", hashlib.sha256(data).digest()).digest()


def encode_address(version: int, hash_bytes: bytes) -> str:
    """Build an ``S...`` address from a version and a 20-byte hash."""
    if len(hash_bytes) != 20:
        raise C32Error("Address hash must be 20 bytes")
    return "S" + c32check_encode(version, hash_bytes)


def decode_address(address: str) -> Tuple[int, bytes]:
    """
    Split an ``S...`` address into ``(version, hash160)``.

    Raises:
        C32Error: If the address is malformed or its checksum does not match.
    """
    if not address or address[0].upper() != "S":
        raise C32Error(f"Stacks address must start with 'S': {address!r}")

    version, data = c32check_decode(address[1:])
    if len(data) != 20:
        raise C32Error("Stacks address must encode a 20-byte hash")
    return version, data


def is_valid_address(address: str) -> bool:
    try:
        decode_address(address)
    except C32Error:
        return False
    return True
