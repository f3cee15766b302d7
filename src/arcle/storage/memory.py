"""
In-memory storage backend.

Default backend; records live only as long as the process. Suitable for a
single session and for tests.
"""

from __future__ import annotations

import time
from copy import deepcopy
from typing import Any

from arcle.storage.base import StorageBackend, register_storage_backend


class InMemoryStorage(StorageBackend):
    """Stores records in dicts, honoring per-record TTLs lazily on read."""

    def __init__(self) -> None:
        self._data: dict[str, dict[str, dict[str, Any]]] = {}
        self._expiry: dict[tuple[str, str], float] = {}

    def _collection(self, collection: str) -> dict[str, dict[str, Any]]:
        coll = self._data.setdefault(collection, {})
        now = time.monotonic()
        for key in [k for k in coll if self._expiry.get((collection, k), now + 1) <= now]:
            del coll[key]
            self._expiry.pop((collection, key), None)
        return coll

    async def save(
        self,
        collection: str,
        key: str,
        data: dict[str, Any],
        ttl: float | None = None,
    ) -> None:
        self._collection(collection)[key] = deepcopy(data)
        if ttl is not None:
            self._expiry[(collection, key)] = time.monotonic() + ttl
        else:
            self._expiry.pop((collection, key), None)

    async def get(self, collection: str, key: str) -> dict[str, Any] | None:
        data = self._collection(collection).get(key)
        return deepcopy(data) if data is not None else None

    async def delete(self, collection: str, key: str) -> bool:
        coll = self._collection(collection)
        self._expiry.pop((collection, key), None)
        return coll.pop(key, None) is not None

    async def query(
        self,
        collection: str,
        filters: dict[str, Any] | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        results = []
        for key, data in self._collection(collection).items():
            if filters and any(data.get(f) != v for f, v in filters.items()):
                continue
            record = deepcopy(data)
            record["_key"] = key
            results.append(record)
            if limit is not None and len(results) >= limit:
                break
        return results

    async def update(self, collection: str, key: str, data: dict[str, Any]) -> bool:
        coll = self._collection(collection)
        if key not in coll:
            return False
        coll[key].update(deepcopy(data))
        return True

    async def clear(self, collection: str) -> int:
        coll = self._collection(collection)
        count = len(coll)
        for key in coll:
            self._expiry.pop((collection, key), None)
        coll.clear()
        return count


# Register as default backend
register_storage_backend("memory", InMemoryStorage)
