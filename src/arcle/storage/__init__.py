"""
Storage backends for arcle.

Configuration via environment:
    ARCLE_STORAGE_BACKEND=memory  # or 'redis'
    ARCLE_REDIS_URL=redis://localhost:6379/0

Example:
    >>> from arcle.storage import get_storage
    >>> storage = get_storage("redis", redis_url="redis://localhost:6379/0")
"""

from __future__ import annotations

import os
from typing import Any

from arcle.core.exceptions import ConfigurationError
from arcle.storage.base import (
    StorageBackend,
    get_storage_backend,
    list_storage_backends,
    register_storage_backend,
)
from arcle.storage.memory import InMemoryStorage
from arcle.storage.redis import RedisStorage


def get_storage(backend_name: str | None = None, **kwargs: Any) -> StorageBackend:
    """
    Get storage backend by name, or from ARCLE_STORAGE_BACKEND.

    Raises:
        ConfigurationError: If backend name is unknown
    """
    if backend_name is None:
        backend_name = os.environ.get("ARCLE_STORAGE_BACKEND", "memory")

    backend_class = get_storage_backend(backend_name)
    if backend_class is None:
        available = list_storage_backends()
        raise ConfigurationError(
            f"Unknown storage backend: '{backend_name}'. Available: {', '.join(available)}"
        )
    return backend_class(**kwargs)


__all__ = [
    "StorageBackend",
    "InMemoryStorage",
    "RedisStorage",
    "get_storage",
    "get_storage_backend",
    "list_storage_backends",
    "register_storage_backend",
]
