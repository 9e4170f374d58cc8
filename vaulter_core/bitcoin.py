"""Bitcoin transaction primitives and the cross-chain ownership proof."""

import hashlib

from Crypto.Hash import RIPEMD160
from eth_account import Account
from eth_account.messages import encode_defunct
from eth_keys import keys
from eth_keys.exceptions import BadSignature
from eth_keys.exceptions import ValidationError as KeyValidationError

from vaulter_core.constants import (
    MIN_SCRIPT_LENGTH,
    PUBKEY_HASH_LENGTH,
    SCRIPT_LOCKTIME_OFFSET,
    SCRIPT_PUBKEY_HASH_OFFSET,
)
from vaulter_core.exceptions import ScriptFormatError, ValidationError


def sha256(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()


def hash160(data: bytes) -> bytes:
    """RIPEMD160(SHA256(data)), the Bitcoin public key hash."""
    return RIPEMD160.new(sha256(data)).digest()


def transaction_id(raw_tx: bytes) -> bytes:
    """
    Double SHA-256 of the raw transaction bytes.

    The digest is returned as produced (internal byte order); this is the identifier the
    deposit registry keys its records by.
    """
    return sha256(sha256(bytes(raw_tx)))


def contains_subsequence(haystack: bytes, needle: bytes) -> bool:
    """Naive byte-wise scan for `needle` inside `haystack`."""
    n, m = len(haystack), len(needle)
    if m == 0:
        return True
    for i in range(n - m + 1):
        j = 0
        while j < m and haystack[i + j] == needle[j]:
            j += 1
        if j == m:
            return True
    return False


def extract_locktime_and_hash(script: bytes) -> tuple[int, bytes]:
    """
    Extract the CLTV locktime and the public key hash from a locktime redeem script.

    Template: 04 <locktime:4 LE> OP_CLTV OP_DROP OP_DUP OP_HASH160 14 <hash:20> OP_EQUALVERIFY OP_CHECKSIG
    """
    if len(script) < MIN_SCRIPT_LENGTH:
        raise ScriptFormatError(f"Redeem script too short: {len(script)} bytes (need {MIN_SCRIPT_LENGTH})")
    locktime_le = script[SCRIPT_LOCKTIME_OFFSET : SCRIPT_LOCKTIME_OFFSET + 4]
    locktime = int.from_bytes(locktime_le, "little")
    pubkey_hash = bytes(script[SCRIPT_PUBKEY_HASH_OFFSET : SCRIPT_PUBKEY_HASH_OFFSET + PUBKEY_HASH_LENGTH])
    return locktime, pubkey_hash


def _raw_public_key(native_pubkey: bytes) -> bytes:
    """Return the 64-byte X||Y form of an uncompressed secp256k1 public key."""
    if len(native_pubkey) == 65 and native_pubkey[0] == 0x04:
        return bytes(native_pubkey[1:])
    if len(native_pubkey) == 64:
        return bytes(native_pubkey)
    raise ValidationError(f"Expected an uncompressed public key (64 or 65 bytes), got {len(native_pubkey)} bytes")


def compress_public_key(native_pubkey: bytes) -> bytes:
    raw = _raw_public_key(native_pubkey)
    prefix = b"\x03" if raw[63] & 1 else b"\x02"
    return prefix + raw[:32]


def derive_external_hash(native_pubkey: bytes) -> bytes:
    """Derive the 20-byte BTC public key hash (P2WPKH program) of a native public key."""
    return hash160(compress_public_key(native_pubkey))


def native_address(native_pubkey: bytes) -> str:
    """Checksum address of the native-chain account controlled by this key."""
    return keys.PublicKey(_raw_public_key(native_pubkey)).to_checksum_address()


def claim_message(message: str, recipient: str) -> str:
    """Message text that must be signed to claim rewards for `recipient`."""
    return f"{message}{recipient.lower()}"


def recover_signer(text: str, signature: bytes) -> str:
    """Recover the signer address of an EIP-191 personal message."""
    return Account.recover_message(encode_defunct(text=text), signature=bytes(signature))


def verify_ownership(message: str, signature: bytes, native_pubkey: bytes, recipient: str) -> bool:
    """True if `signature` over `message + recipient` was produced by `native_pubkey`'s private key."""
    expected = native_address(native_pubkey)
    try:
        signer = recover_signer(claim_message(message, recipient), signature)
    except (BadSignature, KeyValidationError, ValueError):
        return False
    return signer == expected


def _read_varint(data: bytes, pos: int) -> tuple[int, int]:
    if pos >= len(data):
        raise ValidationError("Truncated transaction (varint)")
    first = data[pos]
    if first < 0xFD:
        return first, pos + 1
    width = {0xFD: 2, 0xFE: 4, 0xFF: 8}[first]
    if pos + 1 + width > len(data):
        raise ValidationError("Truncated transaction (varint)")
    return int.from_bytes(data[pos + 1 : pos + 1 + width], "little"), pos + 1 + width


def _encode_varint(value: int) -> bytes:
    if value < 0xFD:
        return bytes([value])
    if value <= 0xFFFF:
        return b"\xfd" + value.to_bytes(2, "little")
    if value <= 0xFFFFFFFF:
        return b"\xfe" + value.to_bytes(4, "little")
    return b"\xff" + value.to_bytes(8, "little")


def _take(data: bytes, pos: int, n: int) -> tuple[bytes, int]:
    if pos + n > len(data):
        raise ValidationError("Truncated transaction")
    return data[pos : pos + n], pos + n


def strip_witness(raw_tx: bytes) -> bytes:
    """
    Re-serialize a transaction in legacy (pre-segwit) format.

    The deposit registry identifies BTC stakes by the double hash of this form, so a
    segwit transaction fetched from a block explorer must pass through here first.
    """
    data = bytes(raw_tx)
    version, pos = _take(data, 0, 4)
    segwit = len(data) > 5 and data[4] == 0 and data[5] != 0
    if segwit:
        pos += 2

    n_in, pos = _read_varint(data, pos)
    inputs: list[tuple[bytes, bytes, bytes]] = []
    for _ in range(n_in):
        prevout, pos = _take(data, pos, 36)
        script_len, pos = _read_varint(data, pos)
        script_sig, pos = _take(data, pos, script_len)
        sequence, pos = _take(data, pos, 4)
        inputs.append((prevout, script_sig, sequence))

    n_out, pos = _read_varint(data, pos)
    outputs_start = pos
    for _ in range(n_out):
        _, pos = _take(data, pos, 8)
        script_len, pos = _read_varint(data, pos)
        _, pos = _take(data, pos, script_len)
    outputs = data[outputs_start:pos]

    if segwit:
        for _ in range(n_in):
            items, pos = _read_varint(data, pos)
            for _ in range(items):
                item_len, pos = _read_varint(data, pos)
                _, pos = _take(data, pos, item_len)

    locktime, pos = _take(data, pos, 4)
    if pos != len(data):
        raise ValidationError(f"Trailing bytes after transaction locktime: {len(data) - pos}")

    out = bytearray(version)
    out += _encode_varint(n_in)
    for prevout, script_sig, sequence in inputs:
        out += prevout + _encode_varint(len(script_sig)) + script_sig + sequence
    out += _encode_varint(n_out)
    out += outputs
    out += locktime
    return bytes(out)
