import pytest

from vaulter_core.simulation import build_vault

VAULT = "0x1111111111111111111111111111111111111111"
OWNER = "0x2222222222222222222222222222222222222222"
ALICE = "0xaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaa"
BOB = "0xbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbb"
VALIDATOR = "0x3333333333333333333333333333333333333333"
CORE = 10**18
BTC = 10**8

# Locktime redeem scripts: (locktime, public key hash)
SCRIPT_A = bytes.fromhex("04178c8667b17576a914332046df873f53e867a3e76f75b2a2f37f013f2f88ac")
SCRIPT_A_LOCKTIME = 1736870935
SCRIPT_A_HASH = bytes.fromhex("332046df873f53e867a3e76f75b2a2f37f013f2f")
SCRIPT_B = bytes.fromhex("04bfc3a067b17576a9143187b3627e6e80c7911ef627a8589ccc51aa8cd888ac")
SCRIPT_B_LOCKTIME = 1738589119
SCRIPT_B_HASH = bytes.fromhex("3187b3627e6e80c7911ef627a8589ccc51aa8cd8")

# Segwit stake transaction whose OP_RETURN carries SCRIPT_B, signed by CLAIM_PUBKEY.
SEGWIT_TX_HEX = (
    "02000000000101b4bc7b1410c36d8e5919280b771ea7143cd33b8f4a7f5aa87ca8bfda06ca8a0d0200000000ffffffff03"
    "1027000000000000220020631c19fc18fc13e12120a83c92dc303c17ce0bc09d93c5c51e1e5e238276973c"
    "0000000000000000536a4c505341542b01045a0f21a1d7b8c0927851e8a80d16a473416421f657de442f5ba55687a24f"
    "04419424e0dc2593cc9f4c0004bfc3a067b17576a9143187b3627e6e80c7911ef627a8589ccc51aa8cd888ac"
    "80a00000000000001600143187b3627e6e80c7911ef627a8589ccc51aa8cd8"
    "02483045022100a6a3b45dcd46ceb466d9a81da485d66f0ccacf9cc5f9f3d1553bb43d5741802002202df9c3dcd1695d"
    "016c68d1c271d620c0df8616b678893efa69f9fd4062e1bd2b0121035cea681f98a4e06d2d06678daf45e9e73eca6e3f"
    "85383c3bc35401eef2c1fe8000000000"
)

CLAIM_PUBKEY = bytes.fromhex(
    "045cea681f98a4e06d2d06678daf45e9e73eca6e3f85383c3bc35401eef2c1fe80"
    "ff05cec2452562123aff9fe8d8e53d863be580403239c8fc2aebbdd1882281a5"
)
CLAIM_SIGNATURE = bytes.fromhex(
    "b762cbd42521deacb8fe3263d0a8eeac2d5005f5b434b4dc2681bbb20e3dfb3a"
    "3044e242013a056862642bcc3e18da02b94590cc592f340ddf476b0e6d4b49cc1c"
)
CLAIM_MESSAGE = "recipient: "
CLAIM_RECIPIENT = "0x0f21a1d7b8c0927851e8a80d16a473416421f657"


def fake_tx(script: bytes, salt: int = 0) -> bytes:
    """Raw bytes that embed `script`; distinct salts give distinct transaction ids."""
    return b"\x02\x00\x00\x00" + bytes([salt]) + script + b"\x00\x00\x00\x00"


def record(vault, script: bytes, sats: int, *, salt: int = 0, raw_tx: bytes | None = None):
    raw_tx = raw_tx if raw_tx is not None else fake_tx(script, salt)
    vault.registry.register(raw_tx, script, sats, target=vault.address)
    return vault.record_stake(OWNER, raw_tx, script)


def settle(vault, reward_wei: int = 0, rounds: int = 1):
    vault.oracle.advance(rounds)
    if reward_wei:
        vault.oracle.add_reward(reward_wei)
    return vault.settle_round(OWNER)


@pytest.fixture
def vault():
    return build_vault(VAULT, OWNER, start_time=SCRIPT_A_LOCKTIME - 1000)
