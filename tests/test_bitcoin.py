import hashlib

import pytest

from conftest import (
    CLAIM_MESSAGE,
    CLAIM_PUBKEY,
    CLAIM_RECIPIENT,
    CLAIM_SIGNATURE,
    SCRIPT_A,
    SCRIPT_A_HASH,
    SCRIPT_A_LOCKTIME,
    SCRIPT_B,
    SCRIPT_B_HASH,
    SCRIPT_B_LOCKTIME,
    SEGWIT_TX_HEX,
)
from vaulter_core.bitcoin import (
    claim_message,
    compress_public_key,
    contains_subsequence,
    derive_external_hash,
    extract_locktime_and_hash,
    native_address,
    strip_witness,
    transaction_id,
    verify_ownership,
)
from vaulter_core.exceptions import ScriptFormatError, ValidationError


def _legacy_hex(segwit_hex: str) -> str:
    witness_start = segwit_hex.index("0248304502")
    return segwit_hex[:8] + segwit_hex[12:witness_start] + segwit_hex[-8:]


def test_transaction_id_is_double_sha256_without_byte_reversal():
    raw = bytes.fromhex(SEGWIT_TX_HEX)
    expected = hashlib.sha256(hashlib.sha256(raw).digest()).digest()
    assert transaction_id(raw) == expected
    assert transaction_id(b"").hex() == "5df6e0e2761359d30a8275058e299fcc0381534545f55cf43e41983f5d4c9456"


@pytest.mark.parametrize(
    ("haystack", "needle", "expected"),
    [
        (b"abcdef", b"cde", True),
        (b"abcdef", b"abcdef", True),
        (b"abcdef", b"", True),
        (b"abcdef", b"abcdefg", False),
        (b"aaab", b"aab", True),
        (b"abcabd", b"abd", True),
        (b"abc", b"ac", False),
    ],
)
def test_contains_subsequence(haystack, needle, expected):
    assert contains_subsequence(haystack, needle) is expected


@pytest.mark.parametrize(
    ("script", "locktime", "pubkey_hash"),
    [
        (SCRIPT_A, SCRIPT_A_LOCKTIME, SCRIPT_A_HASH),
        (SCRIPT_B, SCRIPT_B_LOCKTIME, SCRIPT_B_HASH),
    ],
)
def test_extract_locktime_and_hash(script, locktime, pubkey_hash):
    assert extract_locktime_and_hash(script) == (locktime, pubkey_hash)


def test_extract_locktime_and_hash_rejects_short_script():
    with pytest.raises(ScriptFormatError):
        extract_locktime_and_hash(SCRIPT_A[:31])


def test_compress_public_key_uses_y_parity():
    compressed = compress_public_key(CLAIM_PUBKEY)
    assert compressed == bytes.fromhex("035cea681f98a4e06d2d06678daf45e9e73eca6e3f85383c3bc35401eef2c1fe80")
    # 64-byte form without the 0x04 prefix is accepted too
    assert compress_public_key(CLAIM_PUBKEY[1:]) == compressed


def test_derive_external_hash_matches_p2wpkh_program():
    assert derive_external_hash(CLAIM_PUBKEY) == SCRIPT_B_HASH


def test_derive_external_hash_rejects_compressed_key():
    with pytest.raises(ValidationError):
        derive_external_hash(compress_public_key(CLAIM_PUBKEY))


def test_claim_message_lowercases_recipient():
    assert claim_message("recipient: ", "0x0f21A1d7b8c0927851E8a80d16a473416421f657") == (
        "recipient: 0x0f21a1d7b8c0927851e8a80d16a473416421f657"
    )


def test_native_address_is_checksummed():
    addr = native_address(CLAIM_PUBKEY)
    assert addr.startswith("0x")
    assert len(addr) == 42
    assert addr != addr.lower()


def test_verify_ownership_accepts_signed_recipient():
    assert verify_ownership(CLAIM_MESSAGE, CLAIM_SIGNATURE, CLAIM_PUBKEY, CLAIM_RECIPIENT) is True


def test_verify_ownership_rejects_other_recipient():
    other = "0x0000000000000000000000000000000000000001"
    assert verify_ownership(CLAIM_MESSAGE, CLAIM_SIGNATURE, CLAIM_PUBKEY, other) is False


def test_verify_ownership_rejects_malformed_signature():
    assert verify_ownership(CLAIM_MESSAGE, CLAIM_SIGNATURE[:10], CLAIM_PUBKEY, CLAIM_RECIPIENT) is False


def test_strip_witness_produces_legacy_serialization():
    legacy = strip_witness(bytes.fromhex(SEGWIT_TX_HEX))
    assert legacy.hex() == _legacy_hex(SEGWIT_TX_HEX)
    assert contains_subsequence(legacy, SCRIPT_B)


def test_strip_witness_is_identity_on_legacy_transactions():
    legacy = bytes.fromhex(_legacy_hex(SEGWIT_TX_HEX))
    assert strip_witness(legacy) == legacy


def test_strip_witness_rejects_truncated_and_trailing_bytes():
    raw = bytes.fromhex(SEGWIT_TX_HEX)
    with pytest.raises(ValidationError):
        strip_witness(raw[:-10])
    with pytest.raises(ValidationError):
        strip_witness(raw + b"\x00")
