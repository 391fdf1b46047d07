from __future__ import annotations

import logging
import re

from eth_utils.address import is_address, to_checksum_address

logger = logging.getLogger(__name__)

HEX32_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")
UINT_RE = re.compile(r"^[0-9]+$")

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


def validate_eth_address(addr: str) -> bool:
    try:
        return bool(is_address(addr))
    except Exception:
        logger.debug("validate_eth_address failed for %r", addr, exc_info=True)
        return False


def validate_hex32(s: str) -> bool:
    return isinstance(s, str) and HEX32_RE.fullmatch(s or "") is not None


def normalize_hex32(value: bytes | bytearray | str) -> str:
    """bytes32 (raw or 0x-hex) -> lower-case 0x-hex."""
    if isinstance(value, (bytes, bytearray)):
        if len(value) != 32:
            raise ValueError("bytes32 value must be 32 bytes")
        return "0x" + bytes(value).hex()
    if isinstance(value, str):
        s = value if value.startswith("0x") else "0x" + value
        if not validate_hex32(s):
            raise ValueError(f"not a bytes32 hex string: {value!r}")
        return s.lower()
    raise TypeError("bytes32 value must be bytes or hex string")


def normalize_address(addr: str) -> str:
    if not validate_eth_address(addr):
        raise ValueError(f"not an address: {addr!r}")
    return to_checksum_address(addr)


def as_uint_string(value: int | str, field: str = "value") -> str:
    """Arbitrary precision unsigned integer as decimal string. No float coercion."""
    if isinstance(value, bool):
        raise ValueError(f"{field} must be an integer, got bool")
    if isinstance(value, int):
        if value < 0:
            raise ValueError(f"{field} must be non-negative")
        return str(value)
    if isinstance(value, str) and UINT_RE.fullmatch(value.strip()):
        return value.strip()
    raise ValueError(f"{field} must be a non-negative decimal integer string, got {value!r}")
