# stackspay/services/transactions.py
"""
Stacks transaction wire format.

This module decodes and encodes the subset of the Stacks (SIP-005)
transaction format needed for x402 payments:

- standard and sponsored authorizations (single-sig and multi-sig)
- STX and fungible-token post conditions
- STX token-transfer payloads (other payload types are kept as raw bytes)

It also signs standard single-sig token transfers with a secp256k1 key and
recovers the signer's public key from a signed transaction. Everything here
is pure computation: no network access.
"""
import hashlib
from dataclasses import dataclass, field, replace
from enum import IntEnum
from typing import Optional, Tuple, Union

from coincurve import PrivateKey, PublicKey

from stackspay.services.c32 import (
    C32Error,
    MAINNET_SINGLE_SIG,
    TESTNET_SINGLE_SIG,
    decode_address,
    encode_address,
    hash160,
)

MAINNET_CHAIN_ID = 0x00000001
TESTNET_CHAIN_ID = 0x80000000

MEMO_LENGTH = 34
SIGNATURE_LENGTH = 65
EMPTY_SIGNATURE = b"\x00" * SIGNATURE_LENGTH


class TransactionDecodeError(ValueError):
    """Raised when bytes are not a well-formed Stacks transaction."""


class TransactionVersion(IntEnum):
    MAINNET = 0x00
    TESTNET = 0x80


class AuthType(IntEnum):
    STANDARD = 0x04
    SPONSORED = 0x05


class AddressHashMode(IntEnum):
    P2PKH = 0x00
    P2SH = 0x01
    P2WPKH = 0x02
    P2WSH = 0x03
    P2SH_NON_SEQUENTIAL = 0x05
    P2WSH_NON_SEQUENTIAL = 0x07


SINGLE_SIG_HASH_MODES = {AddressHashMode.P2PKH, AddressHashMode.P2WPKH}


class PubKeyEncoding(IntEnum):
    COMPRESSED = 0x00
    UNCOMPRESSED = 0x01


class AnchorMode(IntEnum):
    ON_CHAIN_ONLY = 0x01
    OFF_CHAIN_ONLY = 0x02
    ANY = 0x03


class PostConditionMode(IntEnum):
    ALLOW = 0x01
    DENY = 0x02


class PayloadType(IntEnum):
    TOKEN_TRANSFER = 0x00
    SMART_CONTRACT = 0x01
    CONTRACT_CALL = 0x02
    POISON_MICROBLOCK = 0x03
    COINBASE = 0x04
    COINBASE_TO_ALT_RECIPIENT = 0x05
    VERSIONED_SMART_CONTRACT = 0x06
    TENURE_CHANGE = 0x07
    NAKAMOTO_COINBASE = 0x08


def sha512_256(data: bytes) -> bytes:
    return hashlib.new("sha512_256", data).digest()


def transaction_version_for_chain(chain_id: int) -> TransactionVersion:
    return TransactionVersion.MAINNET if chain_id == MAINNET_CHAIN_ID else TransactionVersion.TESTNET


def address_version_for_chain(chain_id: int) -> int:
    return MAINNET_SINGLE_SIG if chain_id == MAINNET_CHAIN_ID else TESTNET_SINGLE_SIG


# --- Keys -------------------------------------------------------------------


@dataclass(frozen=True)
class StacksPrivateKey:
    """
    A secp256k1 private key in Stacks hex form.

    64 hex characters yield an uncompressed public key; 66 characters ending
    in ``01`` yield a compressed one (the usual wallet export format).
    """

    secret: bytes
    compressed: bool

    @classmethod
    def from_hex(cls, value: str) -> "StacksPrivateKey":
        raw = value.strip()
        if raw.startswith("0x"):
            raw = raw[2:]
        try:
            data = bytes.fromhex(raw)
        except ValueError as e:
            raise ValueError("Private key must be hex encoded") from e

        if len(data) == 33 and data[-1] == 0x01:
            return cls(secret=data[:32], compressed=True)
        if len(data) == 32:
            return cls(secret=data, compressed=False)
        raise ValueError("Private key must be 32 bytes, or 33 bytes ending in 01")

    def public_key(self) -> bytes:
        return PrivateKey(self.secret).public_key.format(compressed=self.compressed)

    def address(self, chain_id: int) -> str:
        return encode_address(address_version_for_chain(chain_id), hash160(self.public_key()))


# --- Structures -------------------------------------------------------------


@dataclass(frozen=True)
class SingleSigSpendingCondition:
    hash_mode: int
    signer: bytes
    nonce: int
    fee: int
    key_encoding: int = PubKeyEncoding.COMPRESSED
    signature: bytes = EMPTY_SIGNATURE


@dataclass(frozen=True)
class MultiSigSpendingCondition:
    hash_mode: int
    signer: bytes
    nonce: int
    fee: int
    # (field type, public key or signature bytes)
    fields: Tuple[Tuple[int, bytes], ...] = ()
    signatures_required: int = 0


SpendingCondition = Union[SingleSigSpendingCondition, MultiSigSpendingCondition]


@dataclass(frozen=True)
class Authorization:
    auth_type: int
    spending_condition: SpendingCondition
    sponsor_spending_condition: Optional[SpendingCondition] = None


@dataclass(frozen=True)
class TokenTransferPayload:
    recipient_version: int
    recipient_hash: bytes
    amount: int
    memo: bytes = b"\x00" * MEMO_LENGTH
    recipient_contract: Optional[str] = None
    payload_type: int = PayloadType.TOKEN_TRANSFER

    @property
    def recipient(self) -> str:
        address = encode_address(self.recipient_version, self.recipient_hash)
        if self.recipient_contract:
            return f"{address}.{self.recipient_contract}"
        return address


@dataclass(frozen=True)
class RawPayload:
    """Any non-transfer payload, kept verbatim."""

    payload_type: int
    body: bytes


Payload = Union[TokenTransferPayload, RawPayload]


@dataclass(frozen=True)
class StacksTransaction:
    version: int
    chain_id: int
    auth: Authorization
    payload: Payload
    anchor_mode: int = AnchorMode.ANY
    post_condition_mode: int = PostConditionMode.DENY
    post_conditions: Tuple[bytes, ...] = field(default_factory=tuple)

    def serialize(self) -> bytes:
        parts = [
            bytes([self.version]),
            self.chain_id.to_bytes(4, "big"),
            _serialize_auth(self.auth),
            bytes([self.anchor_mode, self.post_condition_mode]),
            len(self.post_conditions).to_bytes(4, "big"),
            *self.post_conditions,
            _serialize_payload(self.payload),
        ]
        return b"".join(parts)

    def hex(self) -> str:
        return self.serialize().hex()

    def txid(self) -> str:
        return sha512_256(self.serialize()).hex()

    @property
    def origin(self) -> SpendingCondition:
        return self.auth.spending_condition

    @classmethod
    def deserialize(cls, data: bytes) -> "StacksTransaction":
        return deserialize_transaction(data)


# --- Serialization ----------------------------------------------------------


def _serialize_condition(condition: SpendingCondition) -> bytes:
    head = (
        bytes([condition.hash_mode])
        + condition.signer
        + condition.nonce.to_bytes(8, "big")
        + condition.fee.to_bytes(8, "big")
    )
    if isinstance(condition, SingleSigSpendingCondition):
        return head + bytes([condition.key_encoding]) + condition.signature

    fields = b"".join(bytes([field_type]) + value for field_type, value in condition.fields)
    return (
        head
        + len(condition.fields).to_bytes(4, "big")
        + fields
        + condition.signatures_required.to_bytes(2, "big")
    )


def _serialize_auth(auth: Authorization) -> bytes:
    data = bytes([auth.auth_type]) + _serialize_condition(auth.spending_condition)
    if auth.auth_type == AuthType.SPONSORED:
        if auth.sponsor_spending_condition is None:
            raise ValueError("Sponsored authorization requires a sponsor spending condition")
        data += _serialize_condition(auth.sponsor_spending_condition)
    return data


def _serialize_payload(payload: Payload) -> bytes:
    if isinstance(payload, RawPayload):
        return bytes([payload.payload_type]) + payload.body

    if payload.recipient_contract:
        name = payload.recipient_contract.encode("ascii")
        principal = bytes([0x06, payload.recipient_version]) + payload.recipient_hash
        principal += bytes([len(name)]) + name
    else:
        principal = bytes([0x05, payload.recipient_version]) + payload.recipient_hash

    memo = payload.memo.ljust(MEMO_LENGTH, b"\x00")[:MEMO_LENGTH]
    return bytes([PayloadType.TOKEN_TRANSFER]) + principal + payload.amount.to_bytes(8, "big") + memo


# --- Deserialization --------------------------------------------------------


class _Reader:
    def __init__(self, data: bytes):
        self.data = data
        self.offset = 0

    def read(self, size: int) -> bytes:
        end = self.offset + size
        if end > len(self.data):
            raise TransactionDecodeError(
                f"Unexpected end of transaction at byte {self.offset} (wanted {size} more)"
            )
        chunk = self.data[self.offset:end]
        self.offset = end
        return chunk

    def u8(self) -> int:
        return self.read(1)[0]

    def u16(self) -> int:
        return int.from_bytes(self.read(2), "big")

    def u32(self) -> int:
        return int.from_bytes(self.read(4), "big")

    def u64(self) -> int:
        return int.from_bytes(self.read(8), "big")

    def rest(self) -> bytes:
        chunk = self.data[self.offset:]
        self.offset = len(self.data)
        return chunk

    def lp_string(self) -> bytes:
        return self.read(self.u8())


def _read_public_key(reader: _Reader) -> bytes:
    prefix = reader.data[reader.offset:reader.offset + 1]
    return reader.read(65 if prefix == b"\x04" else 33)


def _read_condition(reader: _Reader) -> SpendingCondition:
    hash_mode = reader.u8()
    signer = reader.read(20)
    nonce = reader.u64()
    fee = reader.u64()

    if hash_mode in SINGLE_SIG_HASH_MODES:
        key_encoding = reader.u8()
        if key_encoding not in (PubKeyEncoding.COMPRESSED, PubKeyEncoding.UNCOMPRESSED):
            raise TransactionDecodeError(f"Unknown public key encoding: {key_encoding:#x}")
        signature = reader.read(SIGNATURE_LENGTH)
        return SingleSigSpendingCondition(hash_mode, signer, nonce, fee, key_encoding, signature)

    if hash_mode not in tuple(AddressHashMode):
        raise TransactionDecodeError(f"Unknown address hash mode: {hash_mode:#x}")

    fields = []
    for _ in range(reader.u32()):
        field_type = reader.u8()
        if field_type in (0x00, 0x01):
            value = _read_public_key(reader)
        elif field_type in (0x02, 0x03):
            value = reader.read(SIGNATURE_LENGTH)
        else:
            raise TransactionDecodeError(f"Unknown auth field type: {field_type:#x}")
        fields.append((field_type, value))
    signatures_required = reader.u16()
    return MultiSigSpendingCondition(hash_mode, signer, nonce, fee, tuple(fields), signatures_required)


def _read_auth(reader: _Reader) -> Authorization:
    auth_type = reader.u8()
    if auth_type == AuthType.STANDARD:
        return Authorization(auth_type, _read_condition(reader))
    if auth_type == AuthType.SPONSORED:
        origin = _read_condition(reader)
        sponsor = _read_condition(reader)
        return Authorization(auth_type, origin, sponsor)
    raise TransactionDecodeError(f"Unknown authorization type: {auth_type:#x}")


def _read_post_condition_principal(reader: _Reader) -> None:
    principal_type = reader.u8()
    if principal_type == 0x01:  # origin
        return
    if principal_type in (0x02, 0x03):
        reader.read(21)
        if principal_type == 0x03:
            reader.lp_string()
        return
    raise TransactionDecodeError(f"Unknown post condition principal: {principal_type:#x}")


def _read_post_condition(reader: _Reader) -> bytes:
    start = reader.offset
    condition_type = reader.u8()
    _read_post_condition_principal(reader)

    if condition_type == 0x00:  # STX
        reader.read(1 + 8)
    elif condition_type == 0x01:  # fungible token
        reader.read(21)
        reader.lp_string()
        reader.lp_string()
        reader.read(1 + 8)
    elif condition_type == 0x02:
        raise TransactionDecodeError("Non-fungible post conditions are not supported")
    else:
        raise TransactionDecodeError(f"Unknown post condition type: {condition_type:#x}")

    return reader.data[start:reader.offset]


def _read_payload(reader: _Reader) -> Payload:
    payload_type = reader.u8()
    if payload_type != PayloadType.TOKEN_TRANSFER:
        return RawPayload(payload_type=payload_type, body=reader.rest())

    principal_type = reader.u8()
    if principal_type not in (0x05, 0x06):
        raise TransactionDecodeError(f"Invalid token transfer recipient type: {principal_type:#x}")
    version = reader.u8()
    recipient_hash = reader.read(20)
    contract = None
    if principal_type == 0x06:
        contract = reader.lp_string().decode("ascii", errors="replace")

    amount = reader.u64()
    memo = reader.read(MEMO_LENGTH)
    return TokenTransferPayload(
        recipient_version=version,
        recipient_hash=recipient_hash,
        amount=amount,
        memo=memo,
        recipient_contract=contract,
    )


def deserialize_transaction(data: Union[bytes, str]) -> StacksTransaction:
    """
    Decode a serialized transaction (raw bytes or a hex string).

    Raises:
        TransactionDecodeError: If the bytes are truncated, carry unknown
            type tags, or have trailing data after a token-transfer payload.
    """
    if isinstance(data, str):
        text = data[2:] if data.startswith("0x") else data
        try:
            data = bytes.fromhex(text)
        except ValueError as e:
            raise TransactionDecodeError("Transaction is not valid hex") from e

    reader = _Reader(data)
    version = reader.u8()
    if version not in (TransactionVersion.MAINNET, TransactionVersion.TESTNET):
        raise TransactionDecodeError(f"Unknown transaction version: {version:#x}")
    chain_id = reader.u32()
    auth = _read_auth(reader)
    anchor_mode = reader.u8()
    post_condition_mode = reader.u8()
    post_conditions = tuple(_read_post_condition(reader) for _ in range(reader.u32()))
    payload = _read_payload(reader)

    if reader.offset != len(data):
        raise TransactionDecodeError(f"{len(data) - reader.offset} trailing bytes after payload")

    return StacksTransaction(
        version=version,
        chain_id=chain_id,
        auth=auth,
        payload=payload,
        anchor_mode=anchor_mode,
        post_condition_mode=post_condition_mode,
        post_conditions=post_conditions,
    )


# --- Signing ----------------------------------------------------------------


def _cleared(condition: SpendingCondition) -> SpendingCondition:
    if isinstance(condition, SingleSigSpendingCondition):
        return replace(condition, nonce=0, fee=0, signature=EMPTY_SIGNATURE)
    return replace(condition, nonce=0, fee=0, fields=())


def initial_sighash(transaction: StacksTransaction) -> bytes:
    """Hash of the transaction with its authorization cleared."""
    auth = transaction.auth
    sponsor = None
    if auth.auth_type == AuthType.SPONSORED:
        sponsor = SingleSigSpendingCondition(
            hash_mode=AddressHashMode.P2PKH, signer=b"\x00" * 20, nonce=0, fee=0
        )
    cleared = Authorization(auth.auth_type, _cleared(auth.spending_condition), sponsor)
    return sha512_256(replace(transaction, auth=cleared).serialize())


def presign_sighash(sighash: bytes, auth_type: int, fee: int, nonce: int) -> bytes:
    return sha512_256(sighash + bytes([auth_type]) + fee.to_bytes(8, "big") + nonce.to_bytes(8, "big"))


def _origin_presign_hash(transaction: StacksTransaction) -> bytes:
    origin = transaction.origin
    return presign_sighash(initial_sighash(transaction), transaction.auth.auth_type, origin.fee, origin.nonce)


def sign_transaction(transaction: StacksTransaction, key: StacksPrivateKey) -> StacksTransaction:
    """Sign the origin of a standard single-sig transaction."""
    origin = transaction.origin
    if not isinstance(origin, SingleSigSpendingCondition):
        raise ValueError("Only single-sig origins can be signed")

    digest = _origin_presign_hash(transaction)
    recoverable = PrivateKey(key.secret).sign_recoverable(digest, hasher=None)
    # coincurve yields r || s || recovery id; Stacks stores recovery id first
    signature = recoverable[64:] + recoverable[:64]
    signed_origin = replace(origin, signature=signature)
    return replace(transaction, auth=replace(transaction.auth, spending_condition=signed_origin))


def recover_signer_public_key(transaction: StacksTransaction) -> bytes:
    """
    Recover the origin signer's public key from a single-sig transaction.

    Raises:
        ValueError: If the origin is not single-sig or the signature is invalid.
    """
    origin = transaction.origin
    if not isinstance(origin, SingleSigSpendingCondition):
        raise ValueError("Only single-sig origins carry a recoverable signature")
    if origin.signature == EMPTY_SIGNATURE:
        raise ValueError("Transaction is not signed")

    signature = origin.signature[1:] + origin.signature[:1]
    public_key = PublicKey.from_signature_and_message(
        signature, _origin_presign_hash(transaction), hasher=None
    )
    return public_key.format(compressed=origin.key_encoding == PubKeyEncoding.COMPRESSED)


def make_token_transfer(
    recipient: str,
    amount: int,
    key: StacksPrivateKey,
    chain_id: int,
    nonce: int,
    fee: int,
    memo: bytes = b"",
) -> StacksTransaction:
    """
    Build and sign an STX token transfer from the key's single-sig address.

    Raises:
        ValueError: If the recipient is not a valid Stacks principal or the
            amounts do not fit in an unsigned 64-bit integer.
    """
    if not 0 <= amount < 2 ** 64:
        raise ValueError(f"Transfer amount out of range: {amount}")
    if not 0 <= fee < 2 ** 64 or not 0 <= nonce < 2 ** 64:
        raise ValueError("Fee and nonce must fit in 64 bits")

    address, _, contract = recipient.partition(".")
    try:
        version, recipient_hash = decode_address(address)
    except C32Error as e:
        raise ValueError(f"Invalid recipient address {recipient!r}: {e}") from e

    public_key = key.public_key()
    condition = SingleSigSpendingCondition(
        hash_mode=AddressHashMode.P2PKH,
        signer=hash160(public_key),
        nonce=nonce,
        fee=fee,
        key_encoding=PubKeyEncoding.COMPRESSED if key.compressed else PubKeyEncoding.UNCOMPRESSED,
    )
    unsigned = StacksTransaction(
        version=transaction_version_for_chain(chain_id),
        chain_id=chain_id,
        auth=Authorization(AuthType.STANDARD, condition),
        payload=TokenTransferPayload(
            recipient_version=version,
            recipient_hash=recipient_hash,
            amount=amount,
            memo=memo.ljust(MEMO_LENGTH, b"\x00")[:MEMO_LENGTH],
            recipient_contract=contract or None,
        ),
    )
    return sign_transaction(unsigned, key)


def estimate_transfer_length(recipient: str) -> int:
    """Serialized size of a single-sig token transfer to ``recipient``."""
    contract = recipient.partition(".")[2]
    principal = 22 + (1 + len(contract) if contract else 0)
    # version, chain id, auth, modes, post condition count, payload
    return 1 + 4 + 1 + (1 + 20 + 8 + 8 + 1 + SIGNATURE_LENGTH) + 2 + 4 + 1 + principal + 8 + MEMO_LENGTH
