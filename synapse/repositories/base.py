"""
Base repository interface.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Generic, Optional, TypeVar

from pydantic import BaseModel

from synapse.repositories.kv_store import KeyValueStore

T = TypeVar("T", bound=BaseModel)


class BaseRepository(ABC, Generic[T]):
    """
    Typed access to pydantic entities kept in the key-value store.
    """

    model: type[T]

    def __init__(self, store: KeyValueStore) -> None:
        self.store = store

    @abstractmethod
    def key_for(self, id: str) -> str:
        """Store key for an entity id."""
        ...

    async def get(self, id: str) -> Optional[T]:
        """Get an entity by ID."""
        data = await self.store.get(self.key_for(id))
        if data is None:
            return None
        return self.model.model_validate(data)

    async def save(self, entity: T, id: str, ttl_seconds: Optional[int] = None) -> T:
        """Save an entity."""
        await self.store.set(self.key_for(id), entity.model_dump(mode="json"), ttl_seconds)
        return entity

    async def delete(self, id: str) -> bool:
        """Delete an entity by ID."""
        return await self.store.delete(self.key_for(id))

    async def exists(self, id: str) -> bool:
        """Check if an entity exists."""
        return await self.store.exists(self.key_for(id))
