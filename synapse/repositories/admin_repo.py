"""
Admin repositories: API keys, audit log and admin settings.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Any, Optional

from synapse.core.constants import (
    ACTIVE_API_KEYS_KEY,
    ADMIN_CONFIG_KEY,
    ADMIN_USERS_KEY,
    API_KEY_META_KEY,
    API_KEY_SECRET_KEY,
    AUDIT_BUCKET_PREFIX,
    AUDIT_KEY,
)
from synapse.core.logging import get_logger
from synapse.domain.admin import APIKeyMetadata, AuditLogEntry
from synapse.repositories.base import BaseRepository
from synapse.repositories.kv_store import KeyValueStore, SecretStore

logger = get_logger(__name__)


class APIKeyRepository(BaseRepository[APIKeyMetadata]):
    """
    API key metadata under claude:api_key:meta:<id>, the list of active ids,
    and the secrets themselves in the secret store.
    """

    model = APIKeyMetadata

    def __init__(self, store: KeyValueStore, secrets: SecretStore) -> None:
        super().__init__(store)
        self.secrets = secrets

    def key_for(self, id: str) -> str:
        return API_KEY_META_KEY.format(key_id=id)

    async def save_key(self, metadata: APIKeyMetadata) -> APIKeyMetadata:
        await self.save(metadata, metadata.id)
        await self._sync_active(metadata)
        return metadata

    async def _sync_active(self, metadata: APIKeyMetadata) -> None:
        active = await self.active_ids()
        if metadata.active and metadata.id not in active:
            active.append(metadata.id)
        elif not metadata.active and metadata.id in active:
            active.remove(metadata.id)
        else:
            return
        await self.store.set(ACTIVE_API_KEYS_KEY, active)

    async def active_ids(self) -> list[str]:
        return await self.store.get(ACTIVE_API_KEYS_KEY) or []

    async def list_keys(self) -> list[APIKeyMetadata]:
        keys = []
        for key in await self.store.scan(API_KEY_META_KEY.format(key_id="")):
            data = await self.store.get(key)
            if data is not None:
                keys.append(APIKeyMetadata.model_validate(data))
        keys.sort(key=lambda k: k.created_at)
        return keys

    async def get_secret(self, key_id: str) -> Optional[str]:
        return await self.secrets.get(API_KEY_SECRET_KEY.format(key_id=key_id))

    async def set_secret(self, key_id: str, secret: str) -> None:
        await self.secrets.set(API_KEY_SECRET_KEY.format(key_id=key_id), secret)

    async def remove(self, key_id: str) -> bool:
        metadata = await self.get(key_id)
        if metadata is None:
            return False
        metadata.active = False
        await self._sync_active(metadata)
        await self.secrets.delete(API_KEY_SECRET_KEY.format(key_id=key_id))
        return await self.delete(key_id)

    async def least_used_active(self) -> Optional[APIKeyMetadata]:
        """Active key with the lowest usage count, or None."""
        candidates = []
        for key_id in await self.active_ids():
            metadata = await self.get(key_id)
            if metadata is not None and metadata.active:
                candidates.append(metadata)
        if not candidates:
            return None
        return min(candidates, key=lambda k: (k.usage_count, k.created_at))

    async def record_usage(self, metadata: APIKeyMetadata) -> None:
        metadata.usage_count += 1
        metadata.last_used_at = datetime.now(timezone.utc)
        await self.save(metadata, metadata.id)


class AuditLogRepository:
    """
    Audit entries bucketed by day under audit:<YYYY-MM-DD>:<event id>.
    """

    def __init__(self, store: KeyValueStore) -> None:
        self.store = store

    async def append(self, entry: AuditLogEntry) -> AuditLogEntry:
        key = AUDIT_KEY.format(date=entry.date, event_id=entry.event_id)
        await self.store.set(key, entry.model_dump(mode="json"))
        return entry

    async def list_for_date(self, day: date) -> list[AuditLogEntry]:
        prefix = AUDIT_BUCKET_PREFIX.format(date=day.isoformat())
        entries = []
        for key in await self.store.scan(prefix):
            data = await self.store.get(key)
            if data is not None:
                entries.append(AuditLogEntry.model_validate(data))
        return entries

    async def list_recent(
        self,
        days: int,
        today: Optional[date] = None,
        severity: Optional[str] = None,
        event_type: Optional[str] = None,
        limit: int = 100,
    ) -> list[AuditLogEntry]:
        """Entries of the last `days` days, newest first."""
        today = today or datetime.now(timezone.utc).date()
        entries: list[AuditLogEntry] = []
        for offset in range(days):
            entries.extend(await self.list_for_date(today - timedelta(days=offset)))

        if severity:
            entries = [e for e in entries if e.severity.value == severity]
        if event_type:
            entries = [e for e in entries if e.type == event_type]

        entries.sort(key=lambda e: e.timestamp, reverse=True)
        return entries[:limit]

    async def delete_before(self, cutoff: date) -> int:
        """Delete every entry in buckets older than cutoff."""
        deleted = 0
        for key in await self.store.scan("audit:"):
            bucket = key.split(":")[1]
            try:
                bucket_date = date.fromisoformat(bucket)
            except ValueError:
                logger.warning("Skipping malformed audit key", key=key)
                continue
            if bucket_date < cutoff:
                await self.store.delete(key)
                deleted += 1
        if deleted:
            logger.info("Cleaned up audit entries", count=deleted, cutoff=cutoff.isoformat())
        return deleted


class AdminSettingsRepository:
    """Free-form admin config and the stored admin user list."""

    def __init__(self, store: KeyValueStore) -> None:
        self.store = store

    async def get_config(self) -> dict[str, Any]:
        return await self.store.get(ADMIN_CONFIG_KEY) or {}

    async def save_config(self, config: dict[str, Any]) -> dict[str, Any]:
        await self.store.set(ADMIN_CONFIG_KEY, config)
        return config

    async def admin_users(self) -> list[str]:
        return await self.store.get(ADMIN_USERS_KEY) or []

    async def set_admin_users(self, user_ids: list[str]) -> None:
        await self.store.set(ADMIN_USERS_KEY, sorted(set(user_ids)))
