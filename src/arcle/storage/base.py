"""
Abstract storage backend for arcle.

The orchestrator owns no persistence schema of its own; this layer is the
external credential / wallet store it depends on, plus the records that let a
reloaded orchestrator resume a challenge (challenge records, session keys).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class StorageBackend(ABC):
    """
    Abstract base class for storage backends.

    Records are JSON-serializable dicts grouped in named collections.
    """

    @abstractmethod
    async def save(
        self,
        collection: str,
        key: str,
        data: dict[str, Any],
        ttl: float | None = None,
    ) -> None:
        """
        Save a record, replacing any existing one.

        Args:
            collection: Collection name
            key: Unique key for the record
            data: JSON-serializable record
            ttl: Optional lifetime in seconds after which the record disappears
        """
        ...

    @abstractmethod
    async def get(self, collection: str, key: str) -> dict[str, Any] | None:
        """Return the record or None if missing or expired."""
        ...

    @abstractmethod
    async def delete(self, collection: str, key: str) -> bool:
        """Delete a record. Returns False if it did not exist."""
        ...

    @abstractmethod
    async def query(
        self,
        collection: str,
        filters: dict[str, Any] | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """
        Return records whose fields equal every value in ``filters``.

        Each returned record carries its storage key under ``_key``.
        """
        ...

    @abstractmethod
    async def update(self, collection: str, key: str, data: dict[str, Any]) -> bool:
        """Merge ``data`` into an existing record. Returns False if missing."""
        ...

    @abstractmethod
    async def clear(self, collection: str) -> int:
        """Remove every record in a collection and return how many were removed."""
        ...

    async def delete_where(self, collection: str, filters: dict[str, Any]) -> int:
        """Delete every record matching ``filters``."""
        removed = 0
        for record in await self.query(collection, filters):
            if await self.delete(collection, record["_key"]):
                removed += 1
        return removed

    async def health_check(self) -> bool:
        return True

    async def close(self) -> None:
        """Release connections held by the backend."""
        return None


# Storage backend registry for dependency injection
_STORAGE_BACKENDS: dict[str, type[StorageBackend]] = {}


def register_storage_backend(name: str, backend_class: type[StorageBackend]) -> None:
    """Register a storage backend by name."""
    _STORAGE_BACKENDS[name] = backend_class


def get_storage_backend(name: str) -> type[StorageBackend] | None:
    """Get a registered storage backend by name."""
    return _STORAGE_BACKENDS.get(name)


def list_storage_backends() -> list[str]:
    """List all registered storage backend names."""
    return list(_STORAGE_BACKENDS.keys())
