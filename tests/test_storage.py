"""Tests for the storage backends."""

import asyncio

import pytest

from arcle.core.exceptions import ConfigurationError
from arcle.storage import InMemoryStorage, RedisStorage, get_storage, list_storage_backends


@pytest.mark.asyncio
async def test_save_get_delete(storage: InMemoryStorage) -> None:
    await storage.save("challenges", "ch-1", {"wallet_id": "w1", "status": "pending"})

    assert await storage.get("challenges", "ch-1") == {"wallet_id": "w1", "status": "pending"}
    assert await storage.delete("challenges", "ch-1") is True
    assert await storage.delete("challenges", "ch-1") is False
    assert await storage.get("challenges", "ch-1") is None


@pytest.mark.asyncio
async def test_returned_records_are_copies(storage: InMemoryStorage) -> None:
    await storage.save("c", "k", {"nested": {"a": 1}})

    record = await storage.get("c", "k")
    record["nested"]["a"] = 2

    assert (await storage.get("c", "k"))["nested"]["a"] == 1


@pytest.mark.asyncio
async def test_query_filters_and_keys(storage: InMemoryStorage) -> None:
    await storage.save("challenges", "ch-1", {"wallet_id": "w1", "status": "pending"})
    await storage.save("challenges", "ch-2", {"wallet_id": "w1", "status": "complete"})
    await storage.save("challenges", "ch-3", {"wallet_id": "w2", "status": "pending"})

    pending = await storage.query("challenges", {"wallet_id": "w1", "status": "pending"})

    assert [r["_key"] for r in pending] == ["ch-1"]
    assert len(await storage.query("challenges", limit=2)) == 2


@pytest.mark.asyncio
async def test_update_merges(storage: InMemoryStorage) -> None:
    await storage.save("c", "k", {"a": 1, "b": 2})

    assert await storage.update("c", "k", {"b": 3}) is True
    assert await storage.update("c", "missing", {"b": 3}) is False
    assert await storage.get("c", "k") == {"a": 1, "b": 3}


@pytest.mark.asyncio
async def test_delete_where_and_clear(storage: InMemoryStorage) -> None:
    await storage.save("c", "1", {"owner_user_id": "u1"})
    await storage.save("c", "2", {"owner_user_id": "u1"})
    await storage.save("c", "3", {"owner_user_id": "u2"})

    assert await storage.delete_where("c", {"owner_user_id": "u1"}) == 2
    assert await storage.clear("c") == 1
    assert await storage.query("c") == []


@pytest.mark.asyncio
async def test_ttl_expires_records(storage: InMemoryStorage) -> None:
    await storage.save("c", "k", {"a": 1}, ttl=0.01)
    await asyncio.sleep(0.02)

    assert await storage.get("c", "k") is None


def test_get_storage_by_name() -> None:
    assert isinstance(get_storage("memory"), InMemoryStorage)
    assert isinstance(get_storage("redis", redis_url="redis://localhost:6379/1"), RedisStorage)
    assert {"memory", "redis"} <= set(list_storage_backends())


def test_get_storage_unknown_backend() -> None:
    with pytest.raises(ConfigurationError, match="Unknown storage backend"):
        get_storage("sqlite")
