"""
Repository implementations for data access.
"""

from synapse.repositories.admin_repo import (
    AdminSettingsRepository,
    APIKeyRepository,
    AuditLogRepository,
)
from synapse.repositories.analysis_repo import AnalysisRepository
from synapse.repositories.base import BaseRepository
from synapse.repositories.kv_store import (
    InMemoryKeyValueStore,
    KeyValueStore,
    RedisKeyValueStore,
    SecretStore,
)
from synapse.repositories.user_repo import UserConfigRepository

__all__ = [
    "BaseRepository",
    "KeyValueStore",
    "InMemoryKeyValueStore",
    "RedisKeyValueStore",
    "SecretStore",
    "AnalysisRepository",
    "UserConfigRepository",
    "APIKeyRepository",
    "AuditLogRepository",
    "AdminSettingsRepository",
]
