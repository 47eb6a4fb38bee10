"""
Key-value storage backends.

The economy only needs three primitives on string keys: get, put with an
optional TTL, and delete. There is no cross-key atomicity and no
compare-and-swap; callers layer retry-and-verify on top (see retry.py).
"""

import time
from abc import ABC, abstractmethod
from typing import Dict, Optional, Tuple

from redis.asyncio import Redis, ConnectionPool
from redis.exceptions import RedisError

from dachstaler.config import StorageConfig
from dachstaler.core.exceptions import StoreError
from dachstaler.core.logger import get_logger

logger = get_logger("storage")


class KeyValueStore(ABC):
    """Abstract async key-value store with per-key TTL."""

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    async def put(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        ...

    async def close(self) -> None:
        pass


class MemoryStore(KeyValueStore):
    """
    Process-local store. TTLs are enforced lazily on read.
    Default backend for development and the test suite.
    """

    def __init__(self):
        self._data: Dict[str, Tuple[str, Optional[float]]] = {}

    async def get(self, key: str) -> Optional[str]:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and time.monotonic() >= expires_at:
            del self._data[key]
            return None
        return value

    async def put(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        expires_at = time.monotonic() + ttl if ttl else None
        self._data[key] = (str(value), expires_at)

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def __len__(self):
        return len(self._data)


class RedisStore(KeyValueStore):
    """
    Redis-backed store using a shared async connection pool.
    Every RedisError is re-raised as StoreError so call sites only
    deal with one failure type.
    """

    def __init__(self, config: StorageConfig):
        self._prefix = config.key_prefix
        self._pool = ConnectionPool.from_url(
            config.redis_url,
            max_connections=config.max_connections,
            decode_responses=True,
            socket_connect_timeout=config.socket_timeout,
            socket_timeout=config.socket_timeout,
        )
        self._client = Redis(connection_pool=self._pool)
        logger.info(f"Redis store configured (max_connections={config.max_connections})")

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    async def get(self, key: str) -> Optional[str]:
        try:
            return await self._client.get(self._key(key))
        except RedisError as e:
            raise StoreError("get", key, e) from e

    async def put(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        try:
            await self._client.set(self._key(key), value, ex=ttl if ttl else None)
        except RedisError as e:
            raise StoreError("put", key, e) from e

    async def delete(self, key: str) -> None:
        try:
            await self._client.delete(self._key(key))
        except RedisError as e:
            raise StoreError("delete", key, e) from e

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except RedisError as e:
            logger.warning(f"Redis ping failed: {e}")
            return False

    async def close(self) -> None:
        try:
            await self._client.aclose()
            await self._pool.aclose()
            logger.info("Redis connection closed")
        except RedisError as e:
            logger.error(f"Error closing Redis connection: {e}")


def create_store(config: StorageConfig) -> KeyValueStore:
    """Build the backend selected by configuration."""
    backend = config.backend.lower()
    if backend == "redis":
        return RedisStore(config)
    if backend != "memory":
        logger.warning(f"Unknown storage backend '{config.backend}', using memory store")
    return MemoryStore()

