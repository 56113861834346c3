"""
Tests for the invoke endpoint, routing table and error responses.
"""

from unittest.mock import AsyncMock, patch

import pytest
from httpx import AsyncClient

from synapse.api.deps import ServiceContainer
from synapse.api.router import ROUTES, supported_methods
from tests.conftest import ADMIN_ID, USER_ID

USER_HEADERS = {"X-Account-Id": USER_ID, "X-Cloud-Id": "cloud-1"}
ADMIN_HEADERS = {"X-Account-Id": ADMIN_ID}

EXPECTED_METHODS = {
    "validateContent",
    "startAnalysis",
    "analyze",
    "processDirectText",
    "getAnalysisStatus",
    "status",
    "getAnalysisResults",
    "uploadFile",
    "handleFileUpload",
    "upload",
    "getHistory",
    "history",
    "createJiraIssues",
    "getUserContext",
    "getUserConfig",
    "saveUserConfig",
    "checkAdminPermissions",
    "manageAPIKeys",
    "getAuditLog",
    "getSystemStatus",
    "getUsageMetrics",
    "getAdminSettings",
    "saveAdminSettings",
}

ADMIN_METHODS = {
    "manageAPIKeys",
    "getAuditLog",
    "getSystemStatus",
    "getUsageMetrics",
    "getAdminSettings",
    "saveAdminSettings",
}


class TestRoutingTable:
    """Tests for the method table."""

    def test_covers_every_method(self):
        assert set(supported_methods()) == EXPECTED_METHODS

    def test_admin_only_methods(self):
        assert {name for name, route in ROUTES.items() if route.admin_only} == ADMIN_METHODS

    def test_aliases_share_handlers(self):
        assert ROUTES["analyze"].handler is ROUTES["startAnalysis"].handler
        assert ROUTES["status"].handler is ROUTES["getAnalysisStatus"].handler
        assert ROUTES["upload"].handler is ROUTES["uploadFile"].handler
        assert ROUTES["history"].handler is ROUTES["getHistory"].handler

    @pytest.mark.asyncio
    async def test_list_methods(self, async_client: AsyncClient):
        response = await async_client.get("/api/v1/invoke")

        assert response.status_code == 200
        assert set(response.json()["supportedMethods"]) == EXPECTED_METHODS


class TestInvoke:
    """Tests for POST /invoke/{method}."""

    @pytest.mark.asyncio
    async def test_analysis_round_trip(
        self, async_client: AsyncClient, services: ServiceContainer, sample_notes: str
    ):
        response = await async_client.post(
            "/api/v1/invoke/analyze",
            json={"notes": sample_notes, "meetingType": "sprintPlanning", "options": {"createJiraIssues": False}},
            headers=USER_HEADERS,
        )
        assert response.status_code == 200
        analysis_id = response.json()["analysisId"]

        await services.analysis_service.wait_for(analysis_id)

        status = await async_client.post(
            "/api/v1/invoke/status", json={"analysisId": analysis_id}, headers=USER_HEADERS
        )
        results = await async_client.post(
            "/api/v1/invoke/getAnalysisResults", json={"analysisId": analysis_id}, headers=USER_HEADERS
        )
        history = await async_client.post("/api/v1/invoke/history", headers=USER_HEADERS)

        assert status.json()["status"] == "completed"
        assert results.json()["issues"][0]["issueType"] == "Bug"
        assert history.json()["history"][0]["id"] == analysis_id

    @pytest.mark.asyncio
    async def test_user_config_round_trip(self, async_client: AsyncClient):
        saved = await async_client.post(
            "/api/v1/invoke/saveUserConfig",
            json={"config": {"settings": {"theme": "dark"}}},
            headers=USER_HEADERS,
        )
        loaded = await async_client.post("/api/v1/invoke/getUserConfig", headers=USER_HEADERS)

        assert saved.status_code == 200
        assert loaded.json()["config"]["settings"]["theme"] == "dark"

    @pytest.mark.asyncio
    async def test_admin_method(self, async_client: AsyncClient):
        response = await async_client.post(
            "/api/v1/invoke/manageAPIKeys", json={"action": "list"}, headers=ADMIN_HEADERS
        )

        assert response.status_code == 200
        assert response.json() == {"success": True, "keys": [], "activeCount": 0}


class TestErrorResponses:
    """Tests for error mapping."""

    @pytest.mark.asyncio
    async def test_unknown_method(self, async_client: AsyncClient):
        response = await async_client.post("/api/v1/invoke/explode", json={}, headers=USER_HEADERS)

        body = response.json()
        assert response.status_code == 404
        assert body["success"] is False
        assert body["error"] == "Unknown method: explode"
        assert set(body["details"]["supported_methods"]) == EXPECTED_METHODS
        assert response.headers["X-Error-ID"] == body["errorId"]
        assert body["errorId"].startswith("err_")

    @pytest.mark.asyncio
    async def test_missing_account_id(self, async_client: AsyncClient):
        response = await async_client.post("/api/v1/invoke/getUserContext", json={})

        assert response.status_code == 401
        assert response.json()["error"] == "User authentication required"

    @pytest.mark.asyncio
    async def test_non_admin_rejected(self, async_client: AsyncClient, services: ServiceContainer):
        response = await async_client.post(
            "/api/v1/invoke/getSystemStatus", json={}, headers=USER_HEADERS
        )

        entries = await services.audit_service.list_entries(days=1)
        assert response.status_code == 403
        assert response.json()["error"] == "Admin access required"
        assert entries[0].type == "unauthorized_admin_access"

    @pytest.mark.asyncio
    async def test_validation_message_is_returned(self, async_client: AsyncClient):
        response = await async_client.post(
            "/api/v1/invoke/startAnalysis", json={"notes": "too short"}, headers=USER_HEADERS
        )

        body = response.json()
        assert response.status_code == 400
        assert body["error"] == "Content validation failed: Content too short"
        assert body["details"]["type"] == "validation_error"

    @pytest.mark.asyncio
    async def test_payload_must_be_object(self, async_client: AsyncClient):
        response = await async_client.post(
            "/api/v1/invoke/getHistory", json=["page", 1], headers=USER_HEADERS
        )

        assert response.status_code == 400

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "method,payload,headers,field",
        [
            ("startAnalysis", {"notes": "Alice fixes the login bug", "meetingType": 123}, USER_HEADERS, "meetingType"),
            ("startAnalysis", {"notes": "Alice fixes the login bug", "options": {"projectKey": 7}}, USER_HEADERS, "projectKey"),
            ("startAnalysis", {"notes": "Alice fixes the login bug", "options": "fast"}, USER_HEADERS, "options"),
            ("saveUserConfig", {"preferences": "x"}, USER_HEADERS, "preferences"),
            ("saveUserConfig", {"settings": {"theme": 5}}, USER_HEADERS, "settings"),
            ("manageAPIKeys", {"action": "create", "name": 5, "secret": "sk-ant-REDACTED"}, ADMIN_HEADERS, "name"),
            ("getAuditLog", {"days": 365}, ADMIN_HEADERS, "days"),
        ],
    )
    async def test_mistyped_fields_are_client_errors(
        self, async_client: AsyncClient, method: str, payload: dict, headers: dict, field: str
    ):
        response = await async_client.post(f"/api/v1/invoke/{method}", json=payload, headers=headers)

        body = response.json()
        assert response.status_code == 400
        assert body["details"]["type"] == "validation_error"
        assert field in body["error"]

    @pytest.mark.asyncio
    async def test_rejected_payloads_keep_rate_limit_slots(
        self, async_client: AsyncClient, services: ServiceContainer, sample_notes: str
    ):
        bad = {"notes": sample_notes, "meetingType": 123}
        for _ in range(10):
            response = await async_client.post("/api/v1/invoke/startAnalysis", json=bad, headers=USER_HEADERS)
            assert response.status_code == 400

        good = {"notes": sample_notes, "options": {"createJiraIssues": False}}
        response = await async_client.post("/api/v1/invoke/startAnalysis", json=good, headers=USER_HEADERS)

        assert response.status_code == 200
        await services.analysis_service.shutdown()

    @pytest.mark.asyncio
    async def test_rate_limit_sets_retry_after(self, async_client: AsyncClient, services: ServiceContainer, sample_notes: str):
        payload = {"notes": sample_notes, "options": {"createJiraIssues": False}}
        for _ in range(10):
            response = await async_client.post("/api/v1/invoke/startAnalysis", json=payload, headers=USER_HEADERS)
            assert response.status_code == 200

        response = await async_client.post("/api/v1/invoke/startAnalysis", json=payload, headers=USER_HEADERS)

        assert response.status_code == 429
        assert int(response.headers["Retry-After"]) > 0
        assert response.json()["details"]["retryAfter"] > 0
        await services.analysis_service.shutdown()

    @pytest.mark.asyncio
    async def test_unexpected_errors_are_generic(self, async_client: AsyncClient, services: ServiceContainer):
        with patch.object(
            services.user_service, "get_user_context", new_callable=AsyncMock
        ) as mock_context:
            mock_context.side_effect = RuntimeError("database password is hunter2")
            response = await async_client.post("/api/v1/invoke/getUserContext", headers=USER_HEADERS)

        body = response.json()
        assert response.status_code == 500
        assert body["error"] == "An unexpected error occurred. Our team has been notified."
        assert "hunter2" not in response.text
        assert "X-Error-ID" in response.headers

    @pytest.mark.asyncio
    async def test_create_jira_issues(self, async_client: AsyncClient):
        response = await async_client.post(
            "/api/v1/invoke/createJiraIssues",
            json={"issues": [{"summary": "s", "description": "d", "issueType": "Task"}]},
            headers=USER_HEADERS,
        )

        assert response.status_code == 200
        assert response.json()["summary"] == "Created 1/1 issues successfully"


class TestMaintenance:
    """Tests for the cleanup endpoint."""

    @pytest.mark.asyncio
    async def test_requires_admin(self, async_client: AsyncClient):
        response = await async_client.post("/api/v1/maintenance/cleanup", headers=USER_HEADERS)

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_runs_cleanups(self, async_client: AsyncClient):
        response = await async_client.post("/api/v1/maintenance/cleanup", headers=ADMIN_HEADERS)

        body = response.json()
        assert response.status_code == 200
        assert [t["task"] for t in body["tasks"]] == ["analyses", "audit"]
        assert body["tasks"][0]["cleaned"] == 0
