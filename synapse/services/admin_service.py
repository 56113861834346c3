"""
Admin service: permissions, API keys, audit log, system status and metrics.
"""

from __future__ import annotations

import time
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from synapse.clients.anthropic_client import AnthropicClient
from synapse.clients.jira_client import JiraClient
from synapse.core.config import Settings
from synapse.core.constants import APIKeyAction, Severity
from synapse.core.exceptions import (
    APIKeyNotFoundError,
    AuthorizationError,
    InvalidRequestError,
    JiraServiceError,
    RequestTimeoutError,
)
from synapse.core.logging import get_logger
from synapse.core.security import generate_key_id
from synapse.domain.admin import APIKeyMetadata
from synapse.domain.user import CallerContext
from synapse.repositories.admin_repo import AdminSettingsRepository, APIKeyRepository
from synapse.repositories.kv_store import KeyValueStore
from synapse.services.audit_service import AuditService

logger = get_logger(__name__)

MIN_SECRET_LENGTH = 20
MAX_REPORT_DAYS = 90


class AdminService:
    """
    Admin operations.

    Callers are expected to have passed require_admin; the router enforces
    that for every admin-only method.
    """

    def __init__(
        self,
        settings: Settings,
        store: KeyValueStore,
        admin_settings: AdminSettingsRepository,
        api_keys: APIKeyRepository,
        audit: AuditService,
        ai_client: AnthropicClient,
        jira_client: JiraClient,
    ) -> None:
        self.settings = settings
        self.store = store
        self.admin_settings = admin_settings
        self.api_keys = api_keys
        self.audit = audit
        self.ai_client = ai_client
        self.jira_client = jira_client
        self._started = time.monotonic()

    # =========================================================================
    # Permissions
    # =========================================================================

    async def is_admin(self, caller: CallerContext) -> bool:
        if not caller.is_authenticated:
            return False
        if caller.is_admin_principal:
            return True
        if caller.account_id in self.settings.security.admin_user_ids:
            return True
        return caller.account_id in await self.admin_settings.admin_users()

    async def check_admin_permissions(self, caller: CallerContext) -> dict[str, Any]:
        caller.require_account_id()
        is_admin = await self.is_admin(caller)
        return {
            "success": True,
            "isAdmin": is_admin,
            "permissions": {
                "canViewMetrics": is_admin,
                "canManageSettings": is_admin,
                "canViewAuditLog": is_admin,
                "canAccessAdminPanel": is_admin,
            },
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    async def require_admin(self, caller: CallerContext, action: str) -> str:
        """
        Ensure the caller is an admin.

        Raises:
            AuthenticationError: If the caller is anonymous
            AuthorizationError: If the caller is not an admin
        """
        user_id = caller.require_account_id()
        if not await self.is_admin(caller):
            await self.audit.record(
                "unauthorized_admin_access",
                user_id,
                Severity.HIGH,
                {"action": action},
            )
            raise AuthorizationError("Admin access required")
        return user_id

    # =========================================================================
    # API keys
    # =========================================================================

    async def manage_api_keys(
        self,
        caller: CallerContext,
        action: str,
        key_id: Optional[str] = None,
        name: Optional[str] = None,
        secret: Optional[str] = None,
        rate_limit: Optional[int] = None,
    ) -> dict[str, Any]:
        """
        List and mutate inference API keys.

        Secrets are write-only: responses only carry metadata.
        """
        user_id = caller.require_account_id()
        for field, value in (("action", action), ("keyId", key_id), ("name", name), ("secret", secret)):
            if value is not None and not isinstance(value, str):
                raise InvalidRequestError(f"{field} must be a string", field=field)
        try:
            key_action = APIKeyAction(action)
        except ValueError as e:
            raise InvalidRequestError(
                f"Invalid action: {action}. Expected one of {[a.value for a in APIKeyAction]}",
                field="action",
            ) from e

        if key_action == APIKeyAction.LIST:
            keys = await self.api_keys.list_keys()
            return {
                "success": True,
                "keys": [k.public_view() for k in keys],
                "activeCount": sum(1 for k in keys if k.active),
            }

        if key_action == APIKeyAction.CREATE:
            metadata = await self._create_key(user_id, name, secret, rate_limit)
        else:
            if not key_id:
                raise InvalidRequestError("keyId is required", field="keyId")
            metadata = await self._mutate_key(key_action, key_id, name, secret, rate_limit)

        await self.audit.record(
            f"api_key_{key_action.value}",
            user_id,
            Severity.MEDIUM,
            {"keyId": metadata.id, "name": metadata.name},
        )
        logger.info("API key updated", action=key_action.value, key_id=metadata.id, user_id=user_id)

        if key_action == APIKeyAction.DELETE:
            return {"success": True, "deleted": metadata.id}
        return {"success": True, "key": metadata.public_view()}

    async def _create_key(
        self,
        user_id: str,
        name: Optional[str],
        secret: Optional[str],
        rate_limit: Optional[int],
    ) -> APIKeyMetadata:
        if not name or not name.strip():
            raise InvalidRequestError("name is required", field="name")
        _validate_secret(secret)
        _validate_rate_limit(rate_limit)

        metadata = APIKeyMetadata(
            id=generate_key_id(),
            name=name.strip(),
            rate_limit=rate_limit or self.settings.rate_limit.api_requests_per_minute,
            created_by=user_id,
        )
        await self.api_keys.set_secret(metadata.id, secret)  # type: ignore[arg-type]
        await self.api_keys.save_key(metadata)
        return metadata

    async def _mutate_key(
        self,
        action: APIKeyAction,
        key_id: str,
        name: Optional[str],
        secret: Optional[str],
        rate_limit: Optional[int],
    ) -> APIKeyMetadata:
        metadata = await self.api_keys.get(key_id)
        if metadata is None:
            raise APIKeyNotFoundError(key_id)

        if action == APIKeyAction.DELETE:
            await self.api_keys.remove(key_id)
            return metadata

        if action == APIKeyAction.ROTATE:
            _validate_secret(secret)
            await self.api_keys.set_secret(key_id, secret)  # type: ignore[arg-type]
            metadata.rotated_at = datetime.now(timezone.utc)
            metadata.usage_count = 0
        elif action == APIKeyAction.ACTIVATE:
            metadata.active = True
        elif action == APIKeyAction.DEACTIVATE:
            metadata.active = False
        elif action == APIKeyAction.UPDATE:
            if name is None and rate_limit is None:
                raise InvalidRequestError("Nothing to update", field="name")
            if name is not None:
                if not name.strip():
                    raise InvalidRequestError("name must not be empty", field="name")
                metadata.name = name.strip()
            if rate_limit is not None:
                _validate_rate_limit(rate_limit)
                metadata.rate_limit = rate_limit

        await self.api_keys.save_key(metadata)
        return metadata

    # =========================================================================
    # Audit log
    # =========================================================================

    async def get_audit_log(
        self,
        caller: CallerContext,
        date: Optional[str] = None,
        days: Optional[int] = None,
        severity: Optional[str] = None,
        event_type: Optional[str] = None,
        limit: int = 100,
    ) -> dict[str, Any]:
        caller.require_account_id()
        if severity is not None and severity not in {s.value for s in Severity}:
            raise InvalidRequestError(f"Invalid severity: {severity}", field="severity")
        if limit < 1:
            raise InvalidRequestError("limit must be positive", field="limit")

        days = self.settings.audit.default_days if days is None else days
        _validate_days(days)
        entries = await self.audit.list_entries(
            days=days, day=date, severity=severity, event_type=event_type, limit=limit
        )
        return {
            "success": True,
            "entries": [e.to_response() for e in entries],
            "count": len(entries),
            "days": 1 if date else days,
        }

    async def cleanup_audit_logs(self) -> dict[str, Any]:
        deleted = await self.audit.cleanup()
        return {"cleaned": deleted, "retentionDays": self.audit.retention_days}

    # =========================================================================
    # Status and metrics
    # =========================================================================

    async def get_system_status(self, caller: CallerContext) -> dict[str, Any]:
        caller.require_account_id()
        store_ok = await self.store.ping()
        jira = await self.jira_client.validate_connectivity()
        active_keys = await self.api_keys.active_ids()
        ai_configured = bool(self.settings.anthropic.api_key) or bool(active_keys)

        healthy = store_ok and ai_configured
        return {
            "success": True,
            "status": {
                "health": "good" if healthy else "degraded",
                "version": self.settings.app_version,
                "environment": self.settings.app_env,
                "uptimeSeconds": int(time.monotonic() - self._started),
                "storage": "connected" if store_ok else "error",
                "jira": "connected" if jira.get("connected") else "error",
                "jiraDetails": jira,
                "aiConfigured": ai_configured,
                "activeApiKeys": len(active_keys),
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
        }

    async def get_usage_metrics(self, caller: CallerContext, days: int = 7) -> dict[str, Any]:
        caller.require_account_id()
        _validate_days(days)

        today = datetime.now(timezone.utc).date()
        ai_usage = []
        totals = {"requests": 0, "inputTokens": 0, "outputTokens": 0, "cost": 0.0}
        for offset in range(days):
            day = (today - timedelta(days=offset)).isoformat()
            usage = await self.ai_client.get_daily_usage(day)
            ai_usage.append({"date": day, **usage})
            for key in totals:
                totals[key] += usage.get(key, 0)

        jira_stats = await self.jira_client.get_usage_stats(days)
        return {
            "success": True,
            "days": days,
            "ai": {"daily": ai_usage, "totals": {**totals, "cost": round(totals["cost"], 6)}},
            "jira": {
                "daily": jira_stats,
                "totalIssues": sum(s.get("totalIssues", 0) for s in jira_stats),
            },
        }

    # =========================================================================
    # Settings
    # =========================================================================

    async def get_admin_settings(self, caller: CallerContext) -> dict[str, Any]:
        """
        Stored admin config plus the Jira choices for the project picker.

        Tracker failures leave the choices empty rather than failing the call.
        """
        caller.require_account_id()
        config = await self.admin_settings.get_config()
        projects: list[dict[str, Any]] = []
        issue_types: list[dict[str, Any]] = []

        if self.jira_client.is_configured:
            try:
                projects = await self.jira_client.get_available_projects()
                project_key = config.get("defaultProjectKey") or await self.jira_client.get_default_project()
                if project_key:
                    issue_types = await self.jira_client.get_project_issue_types(project_key)
            except (JiraServiceError, RequestTimeoutError) as e:
                logger.warning("Could not load Jira project choices", error=str(e))

        return {
            "success": True,
            "config": config,
            "adminUsers": await self.admin_settings.admin_users(),
            "availableProjects": projects,
            "issueTypes": issue_types,
        }

    async def save_admin_settings(self, caller: CallerContext, config: Any) -> dict[str, Any]:
        """
        Replace the admin config.

        A defaultProjectKey is validated against the tracker and stored as
        the default project; an adminUsers list replaces the stored admins.
        """
        user_id = caller.require_account_id()
        if not isinstance(config, dict) or not config:
            raise InvalidRequestError("No configuration provided", field="config")

        config = dict(config)
        admin_users = config.pop("adminUsers", None)
        if admin_users is not None:
            if not isinstance(admin_users, list) or not all(isinstance(u, str) for u in admin_users):
                raise InvalidRequestError("adminUsers must be a list of account ids", field="adminUsers")
            await self.admin_settings.set_admin_users(admin_users)

        project_key = config.get("defaultProjectKey")
        if project_key is not None and not isinstance(project_key, str):
            raise InvalidRequestError("defaultProjectKey must be a string", field="defaultProjectKey")
        if project_key and self.jira_client.is_configured:
            await self.jira_client.set_default_project(project_key)

        saved = await self.admin_settings.save_config(
            {
                **config,
                "updatedAt": datetime.now(timezone.utc).isoformat(),
                "updatedBy": user_id,
                "version": self.settings.app_version,
            }
        )
        await self.audit.record(
            "admin_settings_updated",
            user_id,
            Severity.MEDIUM,
            {"keys": sorted(config), "adminUsersChanged": admin_users is not None},
        )
        return {"success": True, "config": saved, "message": "Configuration updated successfully"}


def _validate_secret(secret: Optional[str]) -> None:
    if not secret or len(secret.strip()) < MIN_SECRET_LENGTH:
        raise InvalidRequestError(
            f"secret is required and must be at least {MIN_SECRET_LENGTH} characters",
            field="secret",
        )


def _validate_days(days: int) -> None:
    if days < 1 or days > MAX_REPORT_DAYS:
        raise InvalidRequestError(f"days must be between 1 and {MAX_REPORT_DAYS}", field="days")


def _validate_rate_limit(rate_limit: Optional[int]) -> None:
    if rate_limit is not None and (not isinstance(rate_limit, int) or rate_limit < 1):
        raise InvalidRequestError("rateLimit must be a positive integer", field="rateLimit")
