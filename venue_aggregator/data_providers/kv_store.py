"""
Persistent Key-Value Stores

Opaque async byte store used as the cold cache tier and for the
cache index. InMemoryKeyValueStore serves development and tests;
RedisKeyValueStore is used when REDIS_URL is configured.
"""
from abc import ABC, abstractmethod
from typing import Optional

import redis.asyncio as redis
from loguru import logger


class KeyValueStore(ABC):
    """Async get/set/delete/list_keys over opaque bytes."""

    @abstractmethod
    async def get(self, key: str) -> Optional[bytes]:
        pass

    @abstractmethod
    async def set(self, key: str, value: bytes) -> None:
        pass

    @abstractmethod
    async def delete(self, key: str) -> None:
        pass

    @abstractmethod
    async def list_keys(self, prefix: str = "") -> list[str]:
        pass

    async def close(self) -> None:
        """Release resources held by the store."""
        return None


class InMemoryKeyValueStore(KeyValueStore):
    """Dictionary-backed store."""

    def __init__(self):
        self._data: dict[str, bytes] = {}

    async def get(self, key: str) -> Optional[bytes]:
        return self._data.get(key)

    async def set(self, key: str, value: bytes) -> None:
        self._data[key] = bytes(value)

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def list_keys(self, prefix: str = "") -> list[str]:
        return sorted(k for k in self._data if k.startswith(prefix))

    def __len__(self) -> int:
        return len(self._data)


class RedisKeyValueStore(KeyValueStore):
    """Redis-backed store; keys are namespaced to share a database safely."""

    def __init__(self, client: redis.Redis, namespace: str = "venues"):
        self._client = client
        self._namespace = namespace

    @classmethod
    def from_url(cls, url: str, namespace: str = "venues") -> "RedisKeyValueStore":
        client = redis.from_url(url, decode_responses=False)
        logger.info(f"Redis store configured: {url.split('@')[-1] if '@' in url else url}")
        return cls(client, namespace)

    def _key(self, key: str) -> str:
        return f"{self._namespace}:{key}"

    async def get(self, key: str) -> Optional[bytes]:
        return await self._client.get(self._key(key))

    async def set(self, key: str, value: bytes) -> None:
        await self._client.set(self._key(key), value)

    async def delete(self, key: str) -> None:
        await self._client.delete(self._key(key))

    async def list_keys(self, prefix: str = "") -> list[str]:
        strip = len(self._namespace) + 1
        keys = []
        async for key in self._client.scan_iter(match=f"{self._key(prefix)}*"):
            if isinstance(key, bytes):
                key = key.decode("utf-8")
            keys.append(key[strip:])
        return sorted(keys)

    async def close(self) -> None:
        await self._client.aclose()
        logger.info("Redis connection closed")
