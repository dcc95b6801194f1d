"""
Tests for storage providers and the state port.

The Redis provider runs against fakeredis; those tests are skipped when
fakeredis is not installed.
"""

import asyncio

import pytest

from civicreward.exceptions import StorageError
from civicreward.storage import (
    MemoryStorageProvider,
    RedisStorageProvider,
    StatePort,
    StorageConfig,
    StorageStatePort,
    create_storage_provider,
)


@pytest.fixture
async def memory_provider():
    """Create and connect a memory storage provider."""
    provider = MemoryStorageProvider(StorageConfig(backend="memory"))
    await provider.connect()
    yield provider
    await provider.disconnect()


@pytest.fixture
async def redis_provider():
    """Redis provider backed by fakeredis."""
    fake_aioredis = pytest.importorskip("fakeredis.aioredis")
    provider = RedisStorageProvider(StorageConfig(backend="redis"))
    provider._client = fake_aioredis.FakeRedis(decode_responses=True)
    yield provider
    await provider.disconnect()


class TestMemoryStorageProvider:
    """Test MemoryStorageProvider."""

    async def test_connect_disconnect(self, memory_provider):
        assert await memory_provider.health_check()
        await memory_provider.disconnect()
        assert not await memory_provider.health_check()

    async def test_key_value_operations(self, memory_provider):
        assert await memory_provider.set("state:router", "{}")
        assert await memory_provider.get("state:router") == "{}"
        assert await memory_provider.exists("state:router")
        assert not await memory_provider.exists("missing")

        assert await memory_provider.delete("state:router")
        assert not await memory_provider.delete("state:router")
        assert await memory_provider.get("state:router") is None

    async def test_keys_strip_prefix(self, memory_provider):
        await memory_provider.set("state:router", "1")
        await memory_provider.set("state:observer", "2")
        await memory_provider.set("other", "3")

        assert sorted(await memory_provider.keys("state:*")) == ["state:observer", "state:router"]
        assert len(await memory_provider.keys()) == 3

    async def test_ttl_expiry(self, memory_provider):
        await memory_provider.set("short", "v", ttl_seconds=0)
        await asyncio.sleep(0)
        assert await memory_provider.get("short") is None
        assert not await memory_provider.exists("short")

    async def test_overwrite_clears_ttl(self, memory_provider):
        await memory_provider.set("k", "v", ttl_seconds=0)
        await memory_provider.set("k", "v2")
        assert await memory_provider.get("k") == "v2"


class TestRedisStorageProvider:
    """Test RedisStorageProvider against fakeredis."""

    async def test_key_value_operations(self, redis_provider):
        assert await redis_provider.set("state:router", "{}")
        assert await redis_provider.get("state:router") == "{}"
        assert await redis_provider.exists("state:router")
        assert await redis_provider.delete("state:router")
        assert await redis_provider.get("state:router") is None

    async def test_keys_are_prefixed(self, redis_provider):
        await redis_provider.set("state:router", "1")
        raw = await redis_provider._client.keys("*")
        assert raw == ["civicreward:state:router"]
        assert await redis_provider.keys("state:*") == ["state:router"]

    async def test_health_check(self, redis_provider):
        assert await redis_provider.health_check()

    async def test_not_connected(self):
        provider = RedisStorageProvider(StorageConfig(backend="redis"))
        assert not await provider.health_check()
        with pytest.raises(StorageError):
            await provider.get("anything")


class TestStorageFactory:
    def test_memory_default(self):
        assert isinstance(create_storage_provider(StorageConfig()), MemoryStorageProvider)

    def test_redis(self):
        assert isinstance(create_storage_provider(StorageConfig(backend="redis")), RedisStorageProvider)


class TestStorageStatePort:
    """Test the JSON state port."""

    async def test_round_trip(self, memory_provider):
        port = StorageStatePort(memory_provider, "router")
        assert isinstance(port, StatePort)
        assert await port.load() is None

        await port.save({"version": "v1", "payouts": [{"amount": 10.5}]})
        assert await port.load() == {"version": "v1", "payouts": [{"amount": 10.5}]}
        assert port.key == "state:router"

    async def test_corrupt_state(self, memory_provider):
        await memory_provider.set("state:router", "{not json")
        port = StorageStatePort(memory_provider, "router")
        with pytest.raises(StorageError):
            await port.load()

    async def test_round_trip_on_redis(self, redis_provider):
        port = StorageStatePort(redis_provider, "observer")
        await port.save({"entries": []})
        assert await port.load() == {"entries": []}
