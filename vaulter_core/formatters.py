"""Formatting and conversion utilities."""

from decimal import Decimal

from vaulter_core.constants import PRICE_SCALE, SATS_PER_BTC, TOTAL_BASIS_POINTS, WEI_PER_CORE


def as_int(value, *, default: int = 0) -> int:
    """Convert value to int, handling various types."""
    if value is None:
        return default
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        v = value.strip()
        if v.startswith("0x"):
            return int(v, 16)
        return int(v)
    return int(value)


def normalize_hex_str(value) -> str:
    """Normalize hex string to 0x-prefixed format."""
    if isinstance(value, (bytes, bytearray)):
        return f"0x{value.hex()}"
    if hasattr(value, "hex") and not isinstance(value, str):
        hex_str = value.hex()
        return hex_str if hex_str.startswith("0x") else f"0x{hex_str}"
    s = str(value).strip()
    if s.lower().startswith("0x"):
        return f"0x{s[2:]}"
    return f"0x{s}"


def hex_to_bytes(value) -> bytes:
    """Parse a hex string (with or without 0x) or pass bytes through."""
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    s = str(value).strip()
    if s.lower().startswith("0x"):
        s = s[2:]
    return bytes.fromhex(s)


def short_hex(value, *, head: int = 10, tail: int = 6) -> str:
    """Abbreviate a long hex value for log lines: 0x12345678...abcdef."""
    s = normalize_hex_str(value)
    if len(s) <= head + tail + 3:
        return s
    return f"{s[:head]}...{s[-tail:]}"


def format_bp(bp: int) -> str:
    """Format basis points as percentage."""
    return f"{(Decimal(bp) / Decimal(100)):.2f}%"


def format_core(value_wei: int, *, decimals: int = 6) -> str:
    """Format wei value as CORE."""
    core = Decimal(value_wei) / WEI_PER_CORE
    s = f"{core:.{decimals}f}".rstrip("0").rstrip(".")
    return f"{s} CORE"


def format_btc(value_sats: int, *, decimals: int = 8) -> str:
    """Format satoshi value as BTC."""
    btc = Decimal(value_sats) / SATS_PER_BTC
    s = f"{btc:.{decimals}f}".rstrip("0").rstrip(".")
    return f"{s} BTC"


def format_shares(value: int, *, decimals: int = 6) -> str:
    """Format vault shares value."""
    shares = Decimal(value) / WEI_PER_CORE
    s = f"{shares:.{decimals}f}".rstrip("0").rstrip(".")
    return f"{s} vltCORE"


def format_price(price: int, *, decimals: int = 9) -> str:
    """Format a PRICE_SCALE fixed-point price per share."""
    p = Decimal(price) / Decimal(PRICE_SCALE)
    return f"{p:.{decimals}f} CORE/share"


def format_ratio_pair(cross_bp: int) -> str:
    """Format the BTC/CORE reward split."""
    return f"BTC {format_bp(cross_bp)} / CORE {format_bp(TOTAL_BASIS_POINTS - cross_bp)}"


def parse_core(value) -> int:
    """Parse a CORE amount ("1.5", 1.5 or an int wei value as "wei:..." string) into wei."""
    if isinstance(value, int) and not isinstance(value, bool):
        return value * 10**18
    s = str(value).strip()
    if s.startswith("wei:"):
        return int(s[4:])
    return int(Decimal(s) * WEI_PER_CORE)


def parse_btc(value) -> int:
    """Parse a BTC amount ("0.1" or "sats:...") into satoshis."""
    if isinstance(value, int) and not isinstance(value, bool):
        return value * 10**8
    s = str(value).strip()
    if s.startswith("sats:"):
        return int(s[5:])
    return int(Decimal(s) * SATS_PER_BTC)
