"""
Signature extraction from challenge completion payloads.

The provider does not pin down where a typed-data signature lives in the
completion result, so the search is layered: known fields first, then the
nested locations seen in practice, then a bounded scan for any string shaped
like an ECDSA signature.
"""

from __future__ import annotations

import re
from typing import Any

from arcle.core.logging import get_logger

# 65-byte r||s||v signatures are 130 hex chars; longer covers wrapped forms
SIGNATURE_RE = re.compile(r"^0x[0-9a-fA-F]{130,}$")

SIGNATURE_FIELDS = ("signature", "signedData", "signedMessage")
NESTED_LOCATIONS = (
    ("data", "signature"),
    ("result", "signature"),
    ("data", "result", "signature"),
    ("challenge", "result", "signature"),
    ("signedTypedData", "signature"),
)
MAX_SCAN_DEPTH = 4

_logger = get_logger("bridge.signatures")


def looks_like_signature(value: Any) -> bool:
    return isinstance(value, str) and SIGNATURE_RE.match(value) is not None


def _walk(payload: Any, path: tuple[str, ...]) -> Any:
    current = payload
    for part in path:
        if not isinstance(current, dict):
            return None
        current = current.get(part)
    return current


def _scan(payload: Any, depth: int) -> str | None:
    if depth > MAX_SCAN_DEPTH:
        return None
    if looks_like_signature(payload):
        return payload
    if isinstance(payload, dict):
        children = payload.values()
    elif isinstance(payload, (list, tuple)):
        children = payload
    else:
        return None
    for child in children:
        found = _scan(child, depth + 1)
        if found is not None:
            return found
    return None


def extract_signature(payload: dict[str, Any] | None) -> str | None:
    """Locate the signature in a completion payload, or None."""
    if not payload:
        return None
    for name in SIGNATURE_FIELDS:
        if looks_like_signature(payload.get(name)):
            return payload[name]
    for path in NESTED_LOCATIONS:
        value = _walk(payload, path)
        if looks_like_signature(value):
            return value
    found = _scan(payload, 0)
    if found is not None:
        _logger.debug("Signature located by payload scan")
    return found
