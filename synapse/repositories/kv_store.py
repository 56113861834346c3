"""
Key-value store used for all application state.
"""

import json
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from synapse.core.exceptions import StorageError
from synapse.core.logging import get_logger

logger = get_logger(__name__)


class KeyValueStore(ABC):
    """
    Abstract key-value store.
    Values are JSON documents; individual key operations are atomic.
    """

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        """Get a value, or None when absent or expired."""
        ...

    @abstractmethod
    async def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        """Set a value, optionally expiring after ttl_seconds."""
        ...

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete a key."""
        ...

    @abstractmethod
    async def exists(self, key: str) -> bool:
        """Check if a key exists."""
        ...

    @abstractmethod
    async def scan(self, prefix: str) -> list[str]:
        """List keys starting with prefix."""
        ...

    @abstractmethod
    async def increment(self, key: str, amount: int = 1, ttl_seconds: Optional[int] = None) -> int:
        """Increment an integer counter, creating it at zero."""
        ...

    @abstractmethod
    async def ping(self) -> bool:
        """Check the store is reachable."""
        ...

    async def close(self) -> None:
        """Release resources held by the store."""
        return None


class InMemoryKeyValueStore(KeyValueStore):
    """
    In-memory store for development/testing.
    """

    def __init__(self) -> None:
        self._data: dict[str, dict[str, Any]] = {}

    def _expired(self, entry: dict[str, Any]) -> bool:
        expires_at = entry["expires_at"]
        return expires_at is not None and expires_at < datetime.now(timezone.utc)

    def _live(self, key: str) -> Optional[dict[str, Any]]:
        entry = self._data.get(key)
        if entry is None:
            return None
        if self._expired(entry):
            del self._data[key]
            return None
        return entry

    async def get(self, key: str) -> Optional[Any]:
        entry = self._live(key)
        if entry is None:
            return None
        # Stored serialized so callers never share mutable state
        return json.loads(entry["value"])

    async def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        expires_at = (
            datetime.now(timezone.utc) + timedelta(seconds=ttl_seconds) if ttl_seconds else None
        )
        self._data[key] = {"value": json.dumps(value, default=str), "expires_at": expires_at}
        logger.debug("Store set", key=key, ttl=ttl_seconds)

    async def delete(self, key: str) -> bool:
        if key in self._data:
            del self._data[key]
            return True
        return False

    async def exists(self, key: str) -> bool:
        return self._live(key) is not None

    async def scan(self, prefix: str) -> list[str]:
        return sorted(key for key in list(self._data) if key.startswith(prefix) and self._live(key))

    async def increment(self, key: str, amount: int = 1, ttl_seconds: Optional[int] = None) -> int:
        entry = self._live(key)
        current = int(json.loads(entry["value"])) if entry else 0
        value = current + amount
        if entry:
            entry["value"] = json.dumps(value)
        else:
            await self.set(key, value, ttl_seconds)
        return value

    async def ping(self) -> bool:
        return True

    async def clear(self) -> None:
        """Clear all entries."""
        self._data.clear()
        logger.info("Store cleared")


class RedisKeyValueStore(KeyValueStore):
    """
    Redis store for production.
    """

    def __init__(self, redis_client: Any, key_prefix: str = "synapse:") -> None:
        """
        Initialize with a Redis client.

        Args:
            redis_client: redis.asyncio client created with decode_responses=True
            key_prefix: Prefix for all keys
        """
        self.redis = redis_client
        self.key_prefix = key_prefix

    @classmethod
    def from_url(cls, url: str, key_prefix: str = "synapse:") -> "RedisKeyValueStore":
        from redis import asyncio as aioredis

        return cls(aioredis.from_url(url, decode_responses=True), key_prefix=key_prefix)

    def _make_key(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    async def get(self, key: str) -> Optional[Any]:
        try:
            value = await self.redis.get(self._make_key(key))
        except Exception as e:
            raise StorageError(str(e), details={"key": key}) from e

        if value is None:
            return None

        try:
            return json.loads(value)
        except json.JSONDecodeError:
            return value

    async def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        serialized = json.dumps(value, default=str)
        try:
            if ttl_seconds:
                await self.redis.setex(self._make_key(key), ttl_seconds, serialized)
            else:
                await self.redis.set(self._make_key(key), serialized)
        except Exception as e:
            raise StorageError(str(e), details={"key": key}) from e
        logger.debug("Store set", key=key, ttl=ttl_seconds)

    async def delete(self, key: str) -> bool:
        try:
            return await self.redis.delete(self._make_key(key)) > 0
        except Exception as e:
            raise StorageError(str(e), details={"key": key}) from e

    async def exists(self, key: str) -> bool:
        try:
            return await self.redis.exists(self._make_key(key)) > 0
        except Exception as e:
            raise StorageError(str(e), details={"key": key}) from e

    async def scan(self, prefix: str) -> list[str]:
        keys = []
        strip = len(self.key_prefix)
        try:
            async for key in self.redis.scan_iter(match=f"{self._make_key(prefix)}*"):
                keys.append(key[strip:])
        except Exception as e:
            raise StorageError(str(e), details={"prefix": prefix}) from e
        return sorted(keys)

    async def increment(self, key: str, amount: int = 1, ttl_seconds: Optional[int] = None) -> int:
        full_key = self._make_key(key)
        try:
            value = await self.redis.incrby(full_key, amount)
            if ttl_seconds and value == amount:
                await self.redis.expire(full_key, ttl_seconds)
        except Exception as e:
            raise StorageError(str(e), details={"key": key}) from e
        return int(value)

    async def ping(self) -> bool:
        try:
            return bool(await self.redis.ping())
        except Exception as e:
            logger.warning("Redis ping failed", error=str(e))
            return False

    async def close(self) -> None:
        await self.redis.aclose()


class SecretStore:
    """
    Secret values kept apart from their metadata.
    Wraps a dedicated store namespace; values are never listed.
    """

    NAMESPACE = "secret:"

    def __init__(self, store: KeyValueStore) -> None:
        self.store = store

    async def get(self, key: str) -> Optional[str]:
        value = await self.store.get(f"{self.NAMESPACE}{key}")
        return str(value) if value is not None else None

    async def set(self, key: str, value: str) -> None:
        await self.store.set(f"{self.NAMESPACE}{key}", value)

    async def delete(self, key: str) -> bool:
        return await self.store.delete(f"{self.NAMESPACE}{key}")
