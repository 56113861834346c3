"""
Pytest configuration and fixtures.
"""

import json
from typing import Any, AsyncGenerator, Callable

import httpx
import pytest
from httpx import AsyncClient

from synapse.api.deps import ServiceContainer, get_container
from synapse.core.config import (
    AnthropicSettings,
    JiraSettings,
    RetrySettings,
    SecuritySettings,
    Settings,
)
from synapse.domain.user import CallerContext
from synapse.main import app
from synapse.repositories.kv_store import InMemoryKeyValueStore

USER_ID = "5b10a2844c20165700ede21g"
OTHER_USER_ID = "5b10ac8d82e05b22cc7d4ef5"
ADMIN_ID = "5b10ac8d82e05b22cc7d4ad1"

SAMPLE_NOTES = (
    "Sprint planning, 12 March.\n"
    "Alice will fix the login timeout bug before Friday.\n"
    "Bob owns the new export endpoint; we agreed to ship CSV first.\n"
    "Decision: postpone the dark mode work to next sprint."
)


def claude_tool_response(
    issues: list[dict[str, Any]] | None = None,
    summary: str = "Sprint planning for the export feature",
) -> dict[str, Any]:
    """A Messages API response carrying the analysis tool call."""
    if issues is None:
        issues = [
            {
                "summary": "Fix login timeout",
                "description": "Users are logged out after 5 minutes.",
                "issueType": "Bug",
                "priority": "High",
                "assignee": "alice@example.com",
                "labels": ["auth"],
                "confidence_score": 0.92,
                "reasoning": "Alice committed to fixing it",
            },
            {
                "summary": "Build CSV export endpoint",
                "description": "Expose a CSV export for reports.",
                "issueType": "Task",
                "priority": "Medium",
                "confidence_score": 0.85,
            },
        ]
    return {
        "id": "msg_01",
        "type": "message",
        "role": "assistant",
        "stop_reason": "tool_use",
        "content": [
            {
                "type": "tool_use",
                "id": "toolu_01",
                "name": "record_meeting_analysis",
                "input": {
                    "summary": summary,
                    "action_items": [{"description": "Fix login timeout", "owner": "Alice", "due_date": "Friday"}],
                    "decisions": [{"description": "Postpone dark mode", "rationale": "Capacity"}],
                    "issues": issues,
                },
            }
        ],
        "usage": {"input_tokens": 1200, "output_tokens": 400},
    }


class FakeClaude:
    """Records calls to the Messages API and answers with a canned response."""

    def __init__(self, response: dict[str, Any] | None = None, status_code: int = 200) -> None:
        self.response = response or claude_tool_response()
        self.status_code = status_code
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code, json=self.response)

    @property
    def bodies(self) -> list[dict[str, Any]]:
        return [json.loads(r.content) for r in self.requests]


class FakeJira:
    """Minimal Jira Cloud REST API."""

    def __init__(self) -> None:
        self.created: list[dict[str, Any]] = []
        self.requests: list[httpx.Request] = []
        self.issue_types = [
            {"id": "10001", "name": "Task"},
            {"id": "10002", "name": "Bug"},
            {"id": "10003", "name": "Story"},
        ]
        self.users = [
            {"accountId": "557058:alice", "displayName": "Alice", "emailAddress": "alice@example.com"},
        ]
        self.fail_creates = False

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if request.method == "POST" and path == "/rest/api/3/issue":
            if self.fail_creates:
                return httpx.Response(400, json={"errors": {"summary": "invalid"}})
            fields = json.loads(request.content)["fields"]
            self.created.append(fields)
            number = len(self.created)
            return httpx.Response(
                201,
                json={"id": str(10000 + number), "key": f"SYN-{number}", "self": f"https://jira/{number}"},
            )
        if path == "/rest/api/3/project/search":
            return httpx.Response(200, json={"values": [{"id": "100", "key": "SYN", "name": "Synapse"}]})
        if path.startswith("/rest/api/3/project/"):
            key = path.rsplit("/", 1)[-1]
            if key == "MISSING":
                return httpx.Response(404, json={"errorMessages": ["No project could be found"]})
            return httpx.Response(200, json={"id": "100", "key": key, "name": "Synapse"})
        if path == "/rest/api/3/issuetype/project":
            return httpx.Response(200, json=self.issue_types)
        if path == "/rest/api/3/user/search":
            query = request.url.params.get("query", "").lower()
            matches = [u for u in self.users if query in u["emailAddress"] or query in u["displayName"].lower()]
            return httpx.Response(200, json=matches)
        if path == "/rest/api/3/myself":
            return httpx.Response(200, json={"accountId": "557058:bot", "displayName": "Synapse Bot"})
        return httpx.Response(404, json={"errorMessages": [f"Unknown path {path}"]})


def make_settings(jira_configured: bool = True, **overrides: Any) -> Settings:
    """Settings for tests: no retry delay, fake credentials."""
    jira = (
        JiraSettings(
            base_url="https://example.atlassian.net",
            email="bot@example.com",
            api_token="jira-token",
            default_project_key="SYN",
        )
        if jira_configured
        else JiraSettings(base_url="", email="", api_token="")
    )
    values: dict[str, Any] = {
        "app_env": "test",
        "anthropic": AnthropicSettings(api_key="sk-ant-test-key"),
        "jira": jira,
        "retry": RetrySettings(max_attempts=3, base_delay=0),
        "security": SecuritySettings(admin_user_ids=[ADMIN_ID]),
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def test_settings() -> Settings:
    return make_settings()


@pytest.fixture
def store() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


@pytest.fixture
def fake_claude() -> FakeClaude:
    return FakeClaude()


@pytest.fixture
def fake_jira() -> FakeJira:
    return FakeJira()


@pytest.fixture
def make_container(
    store: InMemoryKeyValueStore, fake_claude: FakeClaude, fake_jira: FakeJira
) -> Callable[..., ServiceContainer]:
    """Factory for containers wired to the fakes."""

    def factory(config: Settings | None = None) -> ServiceContainer:
        services = ServiceContainer(
            config=config or make_settings(),
            store=store,
            ai_transport=httpx.MockTransport(fake_claude),
            jira_transport=httpx.MockTransport(fake_jira),
        )
        services.initialize()
        return services

    return factory


@pytest.fixture
async def services(make_container: Callable[..., ServiceContainer]) -> AsyncGenerator[ServiceContainer, None]:
    container = make_container()
    yield container
    await container.shutdown()


@pytest.fixture
def caller() -> CallerContext:
    return CallerContext(account_id=USER_ID, cloud_id="cloud-1")


@pytest.fixture
def other_caller() -> CallerContext:
    return CallerContext(account_id=OTHER_USER_ID, cloud_id="cloud-1")


@pytest.fixture
def admin_caller() -> CallerContext:
    return CallerContext(account_id=ADMIN_ID, cloud_id="cloud-1")


@pytest.fixture
async def async_client(services: ServiceContainer) -> AsyncGenerator[AsyncClient, None]:
    """Create an async HTTP client for testing."""
    app.dependency_overrides[get_container] = lambda: services
    transport = httpx.ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


@pytest.fixture
def sample_notes() -> str:
    return SAMPLE_NOTES
