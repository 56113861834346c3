"""
Analysis repository: records and per-user history lists.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

from synapse.core.constants import ANALYSIS_KEY, USER_ANALYSES_KEY
from synapse.core.logging import get_logger
from synapse.domain.analysis import AnalysisRecord
from synapse.repositories.base import BaseRepository
from synapse.repositories.kv_store import KeyValueStore

logger = get_logger(__name__)


class AnalysisRepository(BaseRepository[AnalysisRecord]):
    """
    Analysis records under analysis:<id>, plus the newest-first id list
    kept for each user under user:<id>:analyses.
    """

    model = AnalysisRecord

    def __init__(self, store: KeyValueStore, history_limit: int = 50) -> None:
        super().__init__(store)
        self.history_limit = history_limit

    def key_for(self, id: str) -> str:
        return ANALYSIS_KEY.format(analysis_id=id)

    async def save_record(self, record: AnalysisRecord) -> AnalysisRecord:
        return await self.save(record, record.id)

    async def create(self, record: AnalysisRecord) -> AnalysisRecord:
        """Store a new record and prepend it to the owner's history."""
        await self.save_record(record)
        await self.add_to_history(record.user_id, record.id)
        logger.debug("Analysis record created", analysis_id=record.id, user_id=record.user_id)
        return record

    async def add_to_history(self, user_id: str, analysis_id: str) -> list[str]:
        key = USER_ANALYSES_KEY.format(user_id=user_id)
        ids = await self.store.get(key) or []
        ids = [analysis_id, *[i for i in ids if i != analysis_id]][: self.history_limit]
        await self.store.set(key, ids)
        return ids

    async def history_ids(self, user_id: str) -> list[str]:
        return await self.store.get(USER_ANALYSES_KEY.format(user_id=user_id)) or []

    async def list_for_user(
        self, user_id: str, limit: int = 20, offset: int = 0
    ) -> list[AnalysisRecord]:
        """Newest records of a user; ids whose record has gone are skipped."""
        ids = await self.history_ids(user_id)
        records = []
        for analysis_id in ids[offset : offset + limit]:
            record = await self.get(analysis_id)
            if record is not None:
                records.append(record)
        return records

    async def remove_from_history(self, user_id: str, analysis_ids: set[str]) -> None:
        key = USER_ANALYSES_KEY.format(user_id=user_id)
        ids = await self.store.get(key) or []
        remaining = [i for i in ids if i not in analysis_ids]
        if remaining:
            await self.store.set(key, remaining)
        else:
            await self.store.delete(key)

    async def cleanup_older_than(
        self, retention_days: int, now: Optional[datetime] = None
    ) -> int:
        """
        Delete records created before the retention window.

        Returns:
            Number of records deleted
        """
        cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=retention_days)
        removed: dict[str, set[str]] = {}

        for key in await self.store.scan(ANALYSIS_KEY.format(analysis_id="")):
            data = await self.store.get(key)
            if data is None:
                continue
            record = AnalysisRecord.model_validate(data)
            if record.created_at < cutoff:
                await self.store.delete(key)
                removed.setdefault(record.user_id, set()).add(record.id)

        for user_id, ids in removed.items():
            await self.remove_from_history(user_id, ids)

        count = sum(len(ids) for ids in removed.values())
        if count:
            logger.info("Cleaned up old analyses", count=count, retention_days=retention_days)
        return count
