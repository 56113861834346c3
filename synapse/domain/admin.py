"""
Admin domain models: API key metadata and audit log entries.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, Field

from synapse.core.constants import Severity


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class APIKeyMetadata(BaseModel):
    """
    Metadata for one inference API key.
    The secret itself is kept in the secret store under the same id.
    """

    id: str = Field(..., description="Key identifier")
    name: str = Field(..., description="Human readable name")
    active: bool = Field(default=True, description="Whether the key can be selected")
    created_at: datetime = Field(default_factory=utcnow)
    rotated_at: Optional[datetime] = None
    last_used_at: Optional[datetime] = None
    usage_count: int = Field(default=0, ge=0)
    rate_limit: int = Field(default=4000, description="Requests per minute allowed for this key")
    created_by: Optional[str] = None

    def public_view(self) -> dict[str, Any]:
        """Representation safe to return to admins."""
        return {
            "id": self.id,
            "name": self.name,
            "active": self.active,
            "createdAt": self.created_at.isoformat(),
            "rotatedAt": self.rotated_at.isoformat() if self.rotated_at else None,
            "lastUsedAt": self.last_used_at.isoformat() if self.last_used_at else None,
            "usageCount": self.usage_count,
            "rateLimit": self.rate_limit,
        }


class AuditLogEntry(BaseModel):
    """A security or admin event."""

    event_id: str
    type: str
    user_id: Optional[str] = None
    severity: Severity = Severity.LOW
    timestamp: datetime = Field(default_factory=utcnow)
    details: dict[str, Any] = Field(default_factory=dict)

    @property
    def date(self) -> str:
        return self.timestamp.strftime("%Y-%m-%d")

    def to_response(self) -> dict[str, Any]:
        return {
            "eventId": self.event_id,
            "timestamp": self.timestamp.isoformat(),
            "type": self.type,
            "severity": self.severity.value,
            "userId": self.user_id,
            "details": self.details,
        }
