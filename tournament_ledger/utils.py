"""
Utility functions for the tournament ledger package.
"""
from decimal import Decimal, InvalidOperation
from typing import Union

from web3 import Web3

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
LOBBY_KEY_WIDTH = 32


def string_to_bytes32(value: str) -> bytes:
    """
    Convert a human-readable lobby id to a fixed-width 32 byte key.

    The UTF-8 bytes are placed at the start of the key and zero filled to the
    right. Strings longer than 32 bytes are truncated, so the conversion is
    lossy past that width. A value that is already a 0x-prefixed 32 byte hex
    key is passed through unchanged.

    Args:
        value: Lobby id string

    Returns:
        32 byte key
    """
    if value.startswith("0x") and len(value) == 2 + LOBBY_KEY_WIDTH * 2:
        try:
            return bytes.fromhex(value[2:])
        except ValueError:
            pass  # Not hex after all, treat as a plain string
    raw = value.encode("utf-8")[:LOBBY_KEY_WIDTH]
    return raw.ljust(LOBBY_KEY_WIDTH, b"\x00")


def bytes32_to_string(value: Union[bytes, str]) -> str:
    """
    Convert a 32 byte key back to the lobby id string.

    Args:
        value: Key as bytes or as a hex string (with or without 0x prefix)

    Returns:
        Decoded lobby id with trailing zero bytes removed
    """
    if isinstance(value, str):
        hex_value = value[2:] if value.startswith("0x") else value
        value = bytes.fromhex(hex_value)
    # A key truncated mid-character decodes without the partial tail
    return bytes(value).rstrip(b"\x00").decode("utf-8", errors="ignore")


def is_zero_address(address: str) -> bool:
    """Check whether an address is missing or the zero-address sentinel."""
    return not address or int(address, 16) == 0


def to_checksum(address: str) -> str:
    """
    Normalize an address to its checksummed form.

    Raises:
        ValueError: If the value is not a valid address
    """
    if not isinstance(address, str) or not Web3.is_address(address):
        raise ValueError(f"Invalid address: {address!r}")
    return Web3.to_checksum_address(address)


def same_address(a: str, b: str) -> bool:
    """Case-insensitive address comparison."""
    return bool(a) and bool(b) and a.lower() == b.lower()


def parse_units(amount: Union[str, int, float, Decimal], decimals: int = 18) -> int:
    """
    Convert a human-readable amount to base units.

    Args:
        amount: Amount such as "1.5"
        decimals: Decimal precision of the asset

    Returns:
        Integer amount in base units

    Raises:
        ValueError: If the amount is not a non-negative number or has more
            precision than the asset supports
    """
    try:
        value = Decimal(str(amount))
    except InvalidOperation:
        raise ValueError(f"Invalid amount: {amount!r}")
    if not value.is_finite() or value < 0:
        raise ValueError(f"Invalid amount: {amount!r}")
    scaled = value.scaleb(decimals)
    if scaled != scaled.to_integral_value():
        raise ValueError(f"Amount {amount} has more than {decimals} decimal places")
    return int(scaled)


def format_units(amount: int, decimals: int = 18) -> str:
    """Convert base units to a human-readable decimal string."""
    value = Decimal(amount).scaleb(-decimals)
    text = format(value.normalize(), "f")
    return text if "." not in text else text.rstrip("0").rstrip(".")


def short_address(address: str) -> str:
    """Shorten an address for logs, e.g. 0x1234…abcd."""
    if not address or len(address) < 12:
        return address
    return f"{address[:6]}…{address[-4:]}"
