"""
Audit trail for security and admin events.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from synapse.core.constants import Severity
from synapse.core.exceptions import InvalidRequestError
from synapse.core.logging import get_logger
from synapse.core.security import generate_event_id
from synapse.domain.admin import AuditLogEntry
from synapse.repositories.admin_repo import AuditLogRepository

logger = get_logger(__name__)


class AuditService:
    """Records audit events and reads them back by day."""

    def __init__(self, repository: AuditLogRepository, retention_days: int = 365) -> None:
        self.repository = repository
        self.retention_days = retention_days

    async def record(
        self,
        event_type: str,
        user_id: Optional[str],
        severity: Severity = Severity.LOW,
        details: Optional[dict[str, Any]] = None,
    ) -> AuditLogEntry:
        entry = AuditLogEntry(
            event_id=generate_event_id(),
            type=event_type,
            user_id=user_id,
            severity=severity,
            details=details or {},
        )
        await self.repository.append(entry)

        log = logger.warning if severity in (Severity.HIGH, Severity.CRITICAL) else logger.info
        log("Audit event", event_type=event_type, severity=severity.value, user_id=user_id)
        return entry

    async def list_entries(
        self,
        days: int = 7,
        day: Optional[str] = None,
        severity: Optional[str] = None,
        event_type: Optional[str] = None,
        limit: int = 100,
    ) -> list[AuditLogEntry]:
        """Entries for one day (YYYY-MM-DD) or the last `days` days, newest first."""
        if day:
            try:
                start = datetime.strptime(day, "%Y-%m-%d").date()
            except ValueError as e:
                raise InvalidRequestError("Invalid date, expected YYYY-MM-DD", field="date") from e
            return await self.repository.list_recent(
                1, today=start, severity=severity, event_type=event_type, limit=limit
            )
        return await self.repository.list_recent(
            days, severity=severity, event_type=event_type, limit=limit
        )

    async def cleanup(self, now: Optional[datetime] = None) -> int:
        cutoff = (now or datetime.now(timezone.utc)).date() - timedelta(days=self.retention_days)
        return await self.repository.delete_before(cutoff)
