"""
Destination validation.
"""

from __future__ import annotations

import re

from eth_utils import is_checksum_address, is_hex_address, to_checksum_address

from arcle.core.exceptions import InvalidDestinationError

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

_TX_HASH_RE = re.compile(r"^0x[a-fA-F0-9]{64}$")


def is_zero_address(address: str) -> bool:
    return address.lower() == ZERO_ADDRESS


def normalize_address(address: str) -> str:
    """
    Validate an EVM address and return its EIP-55 checksummed form.

    All-lowercase and all-uppercase addresses carry no checksum and are
    accepted; mixed-case input must pass its checksum.

    Raises:
        InvalidDestinationError: malformed, bad checksum, or the null address
    """
    candidate = (address or "").strip()
    if not candidate.startswith(("0x", "0X")) or not is_hex_address(candidate):
        raise InvalidDestinationError(
            "Destination is not a valid address", address=address
        )
    body = candidate[2:]
    if body != body.lower() and body != body.upper() and not is_checksum_address(candidate):
        raise InvalidDestinationError(
            "Destination address checksum does not match", address=address
        )
    if is_zero_address(candidate):
        raise InvalidDestinationError(
            "Destination is the null address; funds sent there are unrecoverable",
            address=address,
        )
    return to_checksum_address(candidate)


def is_valid_tx_hash(value: str | None) -> bool:
    """A 32-byte hex digest; provider-internal ids (UUIDs) never pass."""
    return bool(value) and _TX_HASH_RE.match(value) is not None


def explorer_tx_url(explorer_base: str, tx_hash: str | None) -> str | None:
    """Explorer link for ``tx_hash``, or None when it is not a chain hash."""
    if not is_valid_tx_hash(tx_hash):
        return None
    return f"{explorer_base.rstrip('/')}/tx/{tx_hash}"
