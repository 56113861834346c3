"""
Tests for the admin service.
"""

import json
from datetime import datetime, timezone
from typing import Callable

import pytest

from synapse.api.deps import ServiceContainer
from synapse.core.constants import JIRA_DEFAULT_PROJECT_KEY, Severity
from synapse.core.exceptions import (
    APIKeyNotFoundError,
    AuthenticationError,
    AuthorizationError,
    InvalidRequestError,
)
from synapse.domain.user import CallerContext
from synapse.services.admin_service import AdminService
from tests.conftest import FakeJira, make_settings

SECRET = "sk-ant-REDACTED"
ROTATED_SECRET = "sk-ant-REDACTED"


@pytest.fixture
def admin(services: ServiceContainer) -> AdminService:
    return services.admin_service


class TestPermissions:
    """Tests for admin detection."""

    @pytest.mark.asyncio
    async def test_configured_admin(self, admin: AdminService, admin_caller: CallerContext):
        result = await admin.check_admin_permissions(admin_caller)

        assert result["isAdmin"] is True
        assert all(result["permissions"].values())

    @pytest.mark.asyncio
    async def test_regular_user(self, admin: AdminService, caller: CallerContext):
        result = await admin.check_admin_permissions(caller)

        assert result["isAdmin"] is False
        assert not any(result["permissions"].values())

    @pytest.mark.asyncio
    @pytest.mark.parametrize("principal_type", ["admin", "app", "APP"])
    async def test_admin_principal_types(self, admin: AdminService, principal_type: str):
        caller = CallerContext(account_id="someone", principal_type=principal_type)

        assert await admin.is_admin(caller) is True

    @pytest.mark.asyncio
    async def test_stored_admin_users(self, admin: AdminService, caller: CallerContext):
        await admin.admin_settings.set_admin_users([caller.account_id])

        assert await admin.is_admin(caller) is True

    @pytest.mark.asyncio
    async def test_anonymous_caller(self, admin: AdminService):
        with pytest.raises(AuthenticationError):
            await admin.check_admin_permissions(CallerContext())

    @pytest.mark.asyncio
    async def test_require_admin_audits_rejection(
        self, services: ServiceContainer, admin: AdminService, caller: CallerContext
    ):
        with pytest.raises(AuthorizationError) as exc_info:
            await admin.require_admin(caller, "manageAPIKeys")

        entries = await services.audit_service.list_entries(days=1)
        assert exc_info.value.message == "Admin access required"
        assert entries[0].type == "unauthorized_admin_access"
        assert entries[0].severity == Severity.HIGH
        assert entries[0].details == {"action": "manageAPIKeys"}


class TestManageAPIKeys:
    """Tests for the API key lifecycle."""

    @pytest.mark.asyncio
    async def test_lifecycle_never_returns_secrets(
        self, services: ServiceContainer, admin: AdminService, admin_caller: CallerContext
    ):
        responses = []

        created = await admin.manage_api_keys(admin_caller, "create", name="Primary", secret=SECRET, rate_limit=1000)
        responses.append(created)
        key_id = created["key"]["id"]
        assert created["key"]["active"] is True
        assert created["key"]["rateLimit"] == 1000
        assert await admin.api_keys.get_secret(key_id) == SECRET

        responses.append(await admin.manage_api_keys(admin_caller, "list"))
        assert responses[-1]["activeCount"] == 1

        rotated = await admin.manage_api_keys(admin_caller, "rotate", key_id=key_id, secret=ROTATED_SECRET)
        responses.append(rotated)
        assert rotated["key"]["rotatedAt"] is not None
        assert await admin.api_keys.get_secret(key_id) == ROTATED_SECRET

        deactivated = await admin.manage_api_keys(admin_caller, "deactivate", key_id=key_id)
        responses.append(deactivated)
        assert deactivated["key"]["active"] is False
        assert await admin.api_keys.active_ids() == []

        updated = await admin.manage_api_keys(admin_caller, "update", key_id=key_id, name="Backup", rate_limit=50)
        responses.append(updated)
        assert updated["key"]["name"] == "Backup"
        assert updated["key"]["rateLimit"] == 50

        responses.append(await admin.manage_api_keys(admin_caller, "activate", key_id=key_id))
        assert await admin.api_keys.active_ids() == [key_id]

        deleted = await admin.manage_api_keys(admin_caller, "delete", key_id=key_id)
        responses.append(deleted)
        assert deleted == {"success": True, "deleted": key_id}
        assert await admin.api_keys.get_secret(key_id) is None

        dumped = json.dumps(responses)
        assert SECRET not in dumped
        assert ROTATED_SECRET not in dumped

        entries = await services.audit_service.list_entries(days=1)
        assert {e.type for e in entries} == {
            "api_key_create",
            "api_key_rotate",
            "api_key_deactivate",
            "api_key_update",
            "api_key_activate",
            "api_key_delete",
        }
        assert SECRET not in json.dumps([e.to_response() for e in entries])

    @pytest.mark.asyncio
    async def test_rotate_resets_usage(self, admin: AdminService, admin_caller: CallerContext):
        created = await admin.manage_api_keys(admin_caller, "create", name="Primary", secret=SECRET)
        key_id = created["key"]["id"]
        metadata = await admin.api_keys.get(key_id)
        assert metadata is not None
        await admin.api_keys.record_usage(metadata)

        rotated = await admin.manage_api_keys(admin_caller, "rotate", key_id=key_id, secret=ROTATED_SECRET)

        assert rotated["key"]["usageCount"] == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "kwargs",
        [
            {"action": "explode"},
            {"action": "create", "name": "", "secret": SECRET},
            {"action": "create", "name": "Short", "secret": "sk-ant-short"},
            {"action": "create", "name": "Zero", "secret": SECRET, "rate_limit": 0},
            {"action": "rotate"},
            {"action": "create", "name": 5, "secret": SECRET},
            {"action": "create", "name": "Typed", "secret": 12345678901234567890},
            {"action": "delete", "key_id": ["key_1"]},
        ],
    )
    async def test_invalid_requests(self, admin: AdminService, admin_caller: CallerContext, kwargs):
        with pytest.raises(InvalidRequestError):
            await admin.manage_api_keys(admin_caller, **kwargs)

    @pytest.mark.asyncio
    async def test_unknown_key(self, admin: AdminService, admin_caller: CallerContext):
        with pytest.raises(APIKeyNotFoundError):
            await admin.manage_api_keys(admin_caller, "activate", key_id="key_missing")


class TestAuditLog:
    """Tests for reading the audit log."""

    @pytest.mark.asyncio
    async def test_filters(self, services: ServiceContainer, admin: AdminService, admin_caller: CallerContext):
        await services.audit_service.record("api_key_create", admin_caller.account_id, Severity.MEDIUM)
        await services.audit_service.record("unauthorized_admin_access", "intruder", Severity.HIGH)

        everything = await admin.get_audit_log(admin_caller)
        high = await admin.get_audit_log(admin_caller, severity="high")
        today = await admin.get_audit_log(admin_caller, date=datetime.now(timezone.utc).strftime("%Y-%m-%d"))

        assert everything["count"] == 2
        assert everything["entries"][0]["type"] == "unauthorized_admin_access"
        assert [e["userId"] for e in high["entries"]] == ["intruder"]
        assert today["days"] == 1
        assert today["count"] == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "kwargs",
        [{"severity": "urgent"}, {"date": "12/03/2026"}, {"limit": 0}, {"days": 0}, {"days": 91}],
    )
    async def test_invalid_filters(self, admin: AdminService, admin_caller: CallerContext, kwargs):
        with pytest.raises(InvalidRequestError):
            await admin.get_audit_log(admin_caller, **kwargs)


class TestStatusAndMetrics:
    """Tests for system status and usage metrics."""

    @pytest.mark.asyncio
    async def test_system_status(self, admin: AdminService, admin_caller: CallerContext):
        result = await admin.get_system_status(admin_caller)

        status = result["status"]
        assert status["health"] == "good"
        assert status["storage"] == "connected"
        assert status["jira"] == "connected"
        assert status["aiConfigured"] is True
        assert status["uptimeSeconds"] >= 0

    @pytest.mark.asyncio
    async def test_usage_metrics(self, services: ServiceContainer, admin: AdminService, admin_caller: CallerContext):
        ai_client = services.admin_service.ai_client
        await ai_client.record_usage({"input_tokens": 1000, "output_tokens": 500})
        await services.admin_service.jira_client.update_usage_stats("SYN", "Task")

        metrics = await admin.get_usage_metrics(admin_caller, days=7)

        assert len(metrics["ai"]["daily"]) == 7
        assert metrics["ai"]["totals"]["requests"] == 1
        assert metrics["ai"]["totals"]["inputTokens"] == 1000
        assert metrics["jira"]["totalIssues"] == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("days", [0, 91])
    async def test_usage_metrics_range(self, admin: AdminService, admin_caller: CallerContext, days: int):
        with pytest.raises(InvalidRequestError):
            await admin.get_usage_metrics(admin_caller, days=days)


class TestAdminSettings:
    """Tests for admin settings."""

    @pytest.mark.asyncio
    async def test_save_and_read(
        self,
        services: ServiceContainer,
        admin: AdminService,
        admin_caller: CallerContext,
        caller: CallerContext,
    ):
        saved = await admin.save_admin_settings(
            admin_caller,
            {"defaultProjectKey": "OPS", "adminUsers": [caller.account_id], "maxIssuesPerAnalysis": 20},
        )

        assert saved["config"]["defaultProjectKey"] == "OPS"
        assert saved["config"]["updatedBy"] == admin_caller.account_id
        assert "adminUsers" not in saved["config"]
        assert await services.store.get(JIRA_DEFAULT_PROJECT_KEY) == "OPS"
        assert await admin.is_admin(caller) is True

        current = await admin.get_admin_settings(admin_caller)
        assert current["config"]["maxIssuesPerAnalysis"] == 20
        assert current["adminUsers"] == [caller.account_id]

        entries = await services.audit_service.list_entries(days=1, event_type="admin_settings_updated")
        assert entries[0].details["adminUsersChanged"] is True

    @pytest.mark.asyncio
    @pytest.mark.parametrize("config", [None, {}, {"adminUsers": "everyone"}, {"defaultProjectKey": 7}])
    async def test_rejects_invalid_config(self, admin: AdminService, admin_caller: CallerContext, config):
        with pytest.raises(InvalidRequestError):
            await admin.save_admin_settings(admin_caller, config)

    @pytest.mark.asyncio
    async def test_lists_project_choices(self, admin: AdminService, admin_caller: CallerContext):
        current = await admin.get_admin_settings(admin_caller)

        assert [p["key"] for p in current["availableProjects"]] == ["SYN"]
        assert [t["name"] for t in current["issueTypes"]] == ["Task", "Bug", "Story"]

    @pytest.mark.asyncio
    async def test_project_choices_survive_tracker_errors(self, admin: AdminService, admin_caller: CallerContext):
        await admin.admin_settings.save_config({"defaultProjectKey": "MISSING"})

        current = await admin.get_admin_settings(admin_caller)

        assert current["success"] is True
        assert current["config"]["defaultProjectKey"] == "MISSING"
        assert current["issueTypes"] == []

    @pytest.mark.asyncio
    async def test_no_project_choices_without_tracker(
        self, make_container: Callable[..., ServiceContainer], admin_caller: CallerContext, fake_jira: FakeJira
    ):
        services = make_container(make_settings(jira_configured=False))

        current = await services.admin_service.get_admin_settings(admin_caller)

        assert current["availableProjects"] == []
        assert current["issueTypes"] == []
        assert fake_jira.requests == []
        await services.shutdown()
