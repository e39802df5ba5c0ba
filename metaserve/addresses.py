"""
metaserve/addresses.py - Canonical address form

All address comparison happens on the lower-cased 0x form produced here.
Checksummed (EIP-55) addresses are only produced at the web3 boundary.
"""

import re

from web3 import Web3

from .errors import InvalidAddress

_ADDRESS_RE = re.compile(r"^0x[0-9a-f]{40}$")


def canonicalize(raw: str | None) -> str:
    """Lower-case and validate a 0x-prefixed 20-byte hex address.

    Raises:
        InvalidAddress: raw is empty, not a string, or not 40 hex digits.
    """
    if not isinstance(raw, str) or not raw.strip():
        raise InvalidAddress("address is empty")

    address = raw.strip().lower()
    if not _ADDRESS_RE.match(address):
        raise InvalidAddress(f"invalid address: {raw!r}")
    return address


def same_address(a: str | None, b: str | None) -> bool:
    """True if both sides canonicalize to the same address."""
    try:
        return canonicalize(a) == canonicalize(b)
    except InvalidAddress:
        return False


def to_checksum(address: str) -> str:
    """EIP-55 form, as web3 requires for contract calls."""
    return Web3.to_checksum_address(canonicalize(address))
