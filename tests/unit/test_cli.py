"""
Tests for the command-line client.
"""

import base64
from pathlib import Path
from typing import AsyncGenerator

import httpx
import pytest

from synapse.api.deps import ServiceContainer, get_container
from synapse.cli import CLIError, SynapseClient, build_submission, parse_args, run_analysis
from synapse.core.constants import DOCX_MIME_TYPE
from synapse.main import app
from tests.conftest import USER_ID, FakeClaude, FakeJira


@pytest.fixture
async def app_transport(services: ServiceContainer) -> AsyncGenerator[httpx.ASGITransport, None]:
    app.dependency_overrides[get_container] = lambda: services
    yield httpx.ASGITransport(app=app, raise_app_exceptions=False)
    app.dependency_overrides.clear()


def cli_args(*extra: str) -> list[str]:
    return [
        "--account-id", USER_ID,
        "--server", "http://test",
        "--poll-interval", "0.01",
        "--timeout", "5",
        "--quiet",
        *extra,
    ]


class TestParseArgs:
    """Tests for argument parsing."""

    def test_defaults(self):
        args = parse_args(["--account-id", USER_ID, "--text", "notes"])

        assert args.meeting_type == "general"
        assert args.issue_type == "task"
        assert args.create_issues is False
        assert args.server == "http://localhost:8000"

    def test_input_is_required(self):
        with pytest.raises(SystemExit):
            parse_args(["--account-id", USER_ID])

    def test_text_and_file_are_exclusive(self):
        with pytest.raises(SystemExit):
            parse_args(["--account-id", USER_ID, "--text", "notes", "--file", "notes.txt"])

    def test_rejects_unknown_meeting_type(self):
        with pytest.raises(SystemExit):
            parse_args(["--account-id", USER_ID, "--text", "notes", "--meeting-type", "party"])


class TestBuildSubmission:
    """Tests for choosing the procedure and payload."""

    def test_text(self):
        args = parse_args(["-a", USER_ID, "-t", "Alice will fix the login bug", "-m", "bugTriage"])

        method, payload = build_submission(args)

        assert method == "processDirectText"
        assert payload["textContent"] == "Alice will fix the login bug"
        assert payload["meetingType"] == "bugTriage"
        assert payload["options"] == {"createJiraIssues": False}

    def test_text_file(self, tmp_path: Path, sample_notes: str):
        path = tmp_path / "notes.txt"
        path.write_text(sample_notes, encoding="utf-8")

        method, payload = build_submission(parse_args(["-a", USER_ID, "-f", str(path)]))

        assert method == "uploadFile"
        assert payload["fileContent"] == sample_notes
        assert payload["fileName"] == "notes.txt"
        assert payload["fileType"] == "text/plain"

    def test_docx_is_base64_encoded(self, tmp_path: Path):
        path = tmp_path / "Planning.DOCX"
        path.write_bytes(b"PK\x03\x04fake")

        _, payload = build_submission(parse_args(["-a", USER_ID, "-f", str(path)]))

        assert payload["fileType"] == DOCX_MIME_TYPE
        assert base64.b64decode(payload["fileContent"]) == b"PK\x03\x04fake"

    def test_missing_file(self, tmp_path: Path):
        with pytest.raises(CLIError):
            build_submission(parse_args(["-a", USER_ID, "-f", str(tmp_path / "missing.txt")]))


class TestSynapseClient:
    """Tests for the invoke client."""

    @pytest.mark.asyncio
    async def test_sends_caller_headers(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"success": True, "userContext": {}})

        async with SynapseClient("http://test/", USER_ID, "cloud-1", transport=httpx.MockTransport(handler)) as client:
            await client.invoke("getUserContext")

        assert seen[0].url.path == "/api/v1/invoke/getUserContext"
        assert seen[0].headers["X-Account-Id"] == USER_ID
        assert seen[0].headers["X-Cloud-Id"] == "cloud-1"

    @pytest.mark.asyncio
    async def test_error_includes_error_id(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(403, json={"success": False, "error": "Admin access required", "errorId": "err_1"})

        async with SynapseClient("http://test", USER_ID, transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(CLIError) as exc_info:
                await client.invoke("getSystemStatus")

        assert str(exc_info.value) == "Admin access required (err_1)"

    @pytest.mark.asyncio
    async def test_non_json_response(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(502, text="Bad gateway")

        async with SynapseClient("http://test", USER_ID, transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(CLIError) as exc_info:
                await client.invoke("status")

        assert "HTTP 502" in str(exc_info.value)


class TestRunAnalysis:
    """Tests for the full submit, poll and print flow."""

    @pytest.mark.asyncio
    async def test_analyses_text(
        self, app_transport: httpx.ASGITransport, fake_claude: FakeClaude, fake_jira: FakeJira, sample_notes: str
    ):
        args = parse_args(cli_args("--text", sample_notes))

        exit_code = await run_analysis(args, transport=app_transport)

        assert exit_code == 0
        assert len(fake_claude.requests) == 1
        assert fake_jira.created == []

    @pytest.mark.asyncio
    async def test_creates_issues(
        self, app_transport: httpx.ASGITransport, fake_jira: FakeJira, tmp_path: Path, sample_notes: str
    ):
        path = tmp_path / "notes.txt"
        path.write_text(sample_notes, encoding="utf-8")
        args = parse_args(cli_args("--file", str(path), "--create-issues"))

        exit_code = await run_analysis(args, transport=app_transport)

        assert exit_code == 0
        assert len(fake_jira.created) == 2

    @pytest.mark.asyncio
    async def test_server_rejection(self, app_transport: httpx.ASGITransport):
        args = parse_args(cli_args("--text", "too short"))

        assert await run_analysis(args, transport=app_transport) == 1

    @pytest.mark.asyncio
    async def test_failed_analysis(self, app_transport: httpx.ASGITransport, fake_claude: FakeClaude, sample_notes: str):
        fake_claude.status_code = 401
        args = parse_args(cli_args("--text", sample_notes))

        assert await run_analysis(args, transport=app_transport) == 1
