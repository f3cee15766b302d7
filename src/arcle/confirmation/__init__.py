"""On-chain confirmation: provider-first hash resolution with an indexer fallback."""

from arcle.confirmation.indexer import ArcScanClient, IndexedTransfer
from arcle.confirmation.resolver import HashContext, HashResolution, HashResolver, HashStatus

__all__ = [
    "ArcScanClient",
    "HashContext",
    "HashResolution",
    "HashResolver",
    "HashStatus",
    "IndexedTransfer",
]
