"""
API dependencies for dependency injection.
"""

from typing import Optional

import httpx
from fastapi import Depends, Request

from synapse.clients.anthropic_client import AnthropicClient
from synapse.clients.jira_client import JiraClient
from synapse.core.config import Settings, settings
from synapse.core.constants import (
    HEADER_ACCOUNT_ID,
    HEADER_CLOUD_ID,
    HEADER_LOCALE,
    HEADER_PRINCIPAL_TYPE,
    HEADER_TIMEZONE,
)
from synapse.core.logging import get_logger
from synapse.core.security import RateLimiter
from synapse.domain.user import CallerContext
from synapse.repositories.admin_repo import (
    AdminSettingsRepository,
    APIKeyRepository,
    AuditLogRepository,
)
from synapse.repositories.analysis_repo import AnalysisRepository
from synapse.repositories.kv_store import (
    InMemoryKeyValueStore,
    KeyValueStore,
    RedisKeyValueStore,
    SecretStore,
)
from synapse.repositories.user_repo import UserConfigRepository
from synapse.services.admin_service import AdminService
from synapse.services.analysis_service import AnalysisService
from synapse.services.audit_service import AuditService
from synapse.services.user_service import UserService

logger = get_logger(__name__)


def create_store(config: Settings) -> KeyValueStore:
    """Key-value store selected by STORE_BACKEND."""
    if config.store.backend == "redis":
        logger.info("Using Redis store", key_prefix=config.store.key_prefix)
        return RedisKeyValueStore.from_url(config.store.redis_url, key_prefix=config.store.key_prefix)
    logger.info("Using in-memory store")
    return InMemoryKeyValueStore()


class ServiceContainer:
    """
    Container for all application services.
    Provides singleton instances of services.
    """

    _instance: Optional["ServiceContainer"] = None

    def __init__(
        self,
        config: Optional[Settings] = None,
        store: Optional[KeyValueStore] = None,
        ai_transport: Optional[httpx.AsyncBaseTransport] = None,
        jira_transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """
        Args:
            config: Settings to use instead of the global settings
            store: Store to use instead of the configured backend
            ai_transport: Transport for the AI client (tests)
            jira_transport: Transport for the Jira client (tests)
        """
        self.config = config or settings
        self._store = store
        self._ai_transport = ai_transport
        self._jira_transport = jira_transport
        self._initialized = False

    @classmethod
    def get_instance(cls) -> "ServiceContainer":
        """Get the singleton instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    def initialize(self) -> None:
        """Initialize all services."""
        if self._initialized:
            return

        config = self.config

        # Storage
        self._store = self._store or create_store(config)
        self._secrets = SecretStore(self._store)

        # Repositories
        self._analysis_repository = AnalysisRepository(
            self._store, history_limit=config.analysis.history_limit
        )
        self._user_repository = UserConfigRepository(self._store)
        self._api_key_repository = APIKeyRepository(self._store, self._secrets)
        self._audit_repository = AuditLogRepository(self._store)
        self._admin_settings_repository = AdminSettingsRepository(self._store)

        # Clients
        self._ai_client = AnthropicClient(
            config.anthropic,
            self._store,
            api_keys=self._api_key_repository,
            max_retries=config.retry.max_attempts,
            base_delay=config.retry.base_delay,
            transport=self._ai_transport,
        )
        self._jira_client = JiraClient(
            config.jira,
            self._store,
            max_retries=config.retry.max_attempts,
            base_delay=config.retry.base_delay,
            transport=self._jira_transport,
        )

        # Services
        self._audit_service = AuditService(
            self._audit_repository, retention_days=config.audit.retention_days
        )
        self._analysis_service = AnalysisService(
            settings=config,
            repository=self._analysis_repository,
            rate_limiter=RateLimiter(self._store),
            ai_client=self._ai_client,
            jira_client=self._jira_client,
            audit=self._audit_service,
        )
        self._user_service = UserService(self._user_repository)
        self._admin_service = AdminService(
            settings=config,
            store=self._store,
            admin_settings=self._admin_settings_repository,
            api_keys=self._api_key_repository,
            audit=self._audit_service,
            ai_client=self._ai_client,
            jira_client=self._jira_client,
        )

        self._initialized = True

    async def shutdown(self) -> None:
        """Stop background work and release connections."""
        if not self._initialized:
            return
        await self._analysis_service.shutdown()
        await self._ai_client.close()
        await self._jira_client.close()
        await self._store.close()  # type: ignore[union-attr]
        self._initialized = False

    @property
    def store(self) -> KeyValueStore:
        """Get the key-value store."""
        self.initialize()
        return self._store  # type: ignore[return-value]

    @property
    def analysis_service(self) -> AnalysisService:
        """Get the analysis service."""
        self.initialize()
        return self._analysis_service

    @property
    def user_service(self) -> UserService:
        """Get the user service."""
        self.initialize()
        return self._user_service

    @property
    def admin_service(self) -> AdminService:
        """Get the admin service."""
        self.initialize()
        return self._admin_service

    @property
    def audit_service(self) -> AuditService:
        """Get the audit service."""
        self.initialize()
        return self._audit_service


# Singleton container instance
container = ServiceContainer.get_instance()


# Dependency functions for FastAPI
def get_container() -> ServiceContainer:
    """Get the service container."""
    return container


def get_caller(request: Request) -> CallerContext:
    """Caller identity from the gateway headers."""
    headers = request.headers
    return CallerContext(
        account_id=headers.get(HEADER_ACCOUNT_ID) or None,
        cloud_id=headers.get(HEADER_CLOUD_ID) or None,
        principal_type=headers.get(HEADER_PRINCIPAL_TYPE) or None,
        timezone=headers.get(HEADER_TIMEZONE) or None,
        locale=headers.get(HEADER_LOCALE) or None,
    )


def get_analysis_service(
    services: ServiceContainer = Depends(get_container),
) -> AnalysisService:
    """Get the analysis service instance."""
    return services.analysis_service


def get_admin_service(
    services: ServiceContainer = Depends(get_container),
) -> AdminService:
    """Get the admin service instance."""
    return services.admin_service
