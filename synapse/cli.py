"""
Synapse - Command-line client

Submits meeting notes to a running Synapse server, polls the analysis until
it finishes and prints the summary, action items, decisions and issues.
"""

import argparse
import asyncio
import base64
import sys
from pathlib import Path
from typing import Any, Optional

import httpx
from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from synapse.core.constants import API_PREFIX, DOCX_MIME_TYPE, HEADER_ACCOUNT_ID, HEADER_CLOUD_ID, TEXT_MIME_TYPE
from synapse.core.logging import get_logger

console = Console()
logger = get_logger(__name__)

MEETING_TYPES = ["general", "dailyStandup", "sprintPlanning", "retrospective", "featurePlanning", "bugTriage"]
ISSUE_TYPES = ["task", "story", "bug", "epic", "improvement"]


class CLIError(Exception):
    """A failed call reported by the server."""


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="synapse",
        description="Analyse meeting notes and turn them into Jira issues",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Analyse notes passed inline
  synapse --account-id 5b10a2844c20165700ede21g --text "Alice will fix the login bug by Friday"

  # Analyse a text or Word file as a sprint planning meeting
  synapse --account-id 5b10... --file planning.docx --meeting-type sprintPlanning

  # Create the extracted issues once the analysis completes
  synapse --account-id 5b10... --file notes.txt --create-issues --project-key SYN
        """
    )

    # Input options
    input_group = parser.add_mutually_exclusive_group(required=True)
    input_group.add_argument(
        "--text", "-t",
        type=str,
        help="Meeting notes as a string"
    )
    input_group.add_argument(
        "--file", "-f",
        type=Path,
        help="Path to a .txt or .docx file with the meeting notes"
    )

    # Analysis options
    parser.add_argument(
        "--meeting-type", "-m",
        choices=MEETING_TYPES,
        default="general",
        help="Meeting type (default: general)"
    )
    parser.add_argument(
        "--issue-type", "-i",
        choices=ISSUE_TYPES,
        default="task",
        help="Preferred issue type (default: task)"
    )
    parser.add_argument(
        "--create-issues",
        action="store_true",
        help="Create Jira issues from the extracted issues"
    )
    parser.add_argument(
        "--project-key", "-p",
        type=str,
        help="Jira project key for created issues"
    )

    # Connection options
    parser.add_argument(
        "--server",
        type=str,
        default="http://localhost:8000",
        help="Synapse server URL (default: http://localhost:8000)"
    )
    parser.add_argument(
        "--account-id", "-a",
        type=str,
        required=True,
        help="Account id sent as the caller identity"
    )
    parser.add_argument(
        "--cloud-id",
        type=str,
        help="Site id sent with each request"
    )
    parser.add_argument(
        "--poll-interval",
        type=float,
        default=2.0,
        help="Seconds between status checks (default: 2)"
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=300.0,
        help="Give up waiting after this many seconds (default: 300)"
    )

    parser.add_argument(
        "--quiet", "-q",
        action="store_true",
        help="Only print the results"
    )

    return parser.parse_args(argv)


class SynapseClient:
    """Thin client for the invoke endpoint."""

    def __init__(
        self,
        server: str,
        account_id: str,
        cloud_id: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        headers = {HEADER_ACCOUNT_ID: account_id}
        if cloud_id:
            headers[HEADER_CLOUD_ID] = cloud_id
        self._client = httpx.AsyncClient(
            base_url=server.rstrip("/"),
            headers=headers,
            timeout=60.0,
            transport=transport,
        )

    async def invoke(self, method: str, payload: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        """
        Call a remote procedure.

        Raises:
            CLIError: If the server answers with an error
        """
        response = await self._client.post(f"{API_PREFIX}/invoke/{method}", json=payload or {})
        try:
            body = response.json()
        except ValueError as e:
            raise CLIError(f"{method} returned HTTP {response.status_code}") from e

        if response.is_error or body.get("success") is False:
            error_id = body.get("errorId")
            message = body.get("error") or f"HTTP {response.status_code}"
            raise CLIError(f"{message} ({error_id})" if error_id else message)
        return body

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "SynapseClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()


def build_submission(args: argparse.Namespace) -> tuple[str, dict[str, Any]]:
    """Pick the procedure and payload for the given input."""
    common: dict[str, Any] = {
        "meetingType": args.meeting_type,
        "issueType": args.issue_type,
        # Issues are created by the client after reviewing the results
        "options": {"createJiraIssues": False},
    }

    if args.text is not None:
        return "processDirectText", {"textContent": args.text, **common}

    path: Path = args.file
    if not path.exists():
        raise CLIError(f"File not found: {path}")

    if path.suffix.lower() == ".docx":
        content = base64.b64encode(path.read_bytes()).decode()
        file_type = DOCX_MIME_TYPE
    else:
        content = path.read_text(encoding="utf-8")
        file_type = TEXT_MIME_TYPE

    return "uploadFile", {
        "fileContent": content,
        "fileName": path.name,
        "fileType": file_type,
        **common,
    }


async def wait_for_completion(
    client: SynapseClient,
    analysis_id: str,
    poll_interval: float,
    timeout: float,
    progress: Optional[Progress] = None,
) -> dict[str, Any]:
    """Poll the analysis status at a fixed interval until it is terminal."""
    task = progress.add_task("Analysing...", total=None) if progress else None
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout

    while True:
        status = await client.invoke("getAnalysisStatus", {"analysisId": analysis_id})
        if progress is not None and task is not None:
            progress.update(task, description=f"Analysing... {status['progress']}%")

        if status["status"] in ("completed", "error"):
            return status
        if loop.time() >= deadline:
            raise CLIError(f"Analysis {analysis_id} did not finish within {timeout:.0f}s")

        await asyncio.sleep(poll_interval)


def print_results(results: dict[str, Any]) -> None:
    """Render an analysis result."""
    console.print(Panel(results.get("summary") or "(no summary)", title="Summary", border_style="blue"))

    action_items = results.get("actionItems") or []
    if action_items:
        table = Table(title="Action Items")
        table.add_column("Description")
        table.add_column("Owner")
        table.add_column("Due")
        for item in action_items:
            table.add_row(item["description"], item.get("owner") or "-", item.get("due_date") or "-")
        console.print(table)

    decisions = results.get("decisions") or []
    if decisions:
        table = Table(title="Decisions")
        table.add_column("Decision")
        table.add_column("Rationale")
        for decision in decisions:
            table.add_row(decision["description"], decision.get("rationale") or "-")
        console.print(table)

    issues = results.get("issues") or []
    table = Table(title=f"Issues ({len(issues)})")
    table.add_column("Type")
    table.add_column("Priority")
    table.add_column("Summary")
    table.add_column("Confidence", justify="right")
    for issue in issues:
        table.add_row(
            issue.get("issueType", "Task"),
            issue.get("priority", "Medium"),
            issue["summary"],
            f"{issue.get('confidence_score', 0):.0%}",
        )
    console.print(table)


def print_created(created: dict[str, Any]) -> None:
    results = created["results"]
    for item in results["success"]:
        console.print(f"[green]✓[/green] {item['jiraKey']}: {item['originalIssue'].get('summary')}")
    for item in results["failed"]:
        summary = item["originalIssue"].get("summary") if isinstance(item["originalIssue"], dict) else "?"
        console.print(f"[red]✗[/red] {summary}: {item['error']}")
    console.print(created["summary"])


async def run_analysis(args: argparse.Namespace, transport: Optional[httpx.AsyncBaseTransport] = None) -> int:
    """Submit, poll and print one analysis."""
    try:
        method, payload = build_submission(args)
    except (CLIError, OSError, UnicodeDecodeError) as e:
        console.print(f"[red]Error:[/red] {e}")
        return 1

    async with SynapseClient(args.server, args.account_id, args.cloud_id, transport=transport) as client:
        try:
            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                console=console,
                disable=args.quiet,
            ) as progress:
                submitted = await client.invoke(method, payload)
                started = submitted.get("analysisResult", submitted)
                analysis_id = started["analysisId"]
                logger.debug("Analysis submitted", analysis_id=analysis_id, method=method)

                status = await wait_for_completion(
                    client, analysis_id, args.poll_interval, args.timeout, progress
                )

            if status["status"] == "error":
                console.print(f"[red]Analysis failed:[/red] {status.get('error')}")
                return 1

            results = await client.invoke("getAnalysisResults", {"analysisId": analysis_id})
            print_results(results)

            if args.create_issues and results.get("issues"):
                created = await client.invoke(
                    "createJiraIssues",
                    {"issues": results["issues"], "projectKey": args.project_key},
                )
                print_created(created)

            return 0

        except CLIError as e:
            console.print(f"[red]Error:[/red] {e}")
            return 1
        except httpx.HTTPError as e:
            console.print(f"[red]Error:[/red] Could not reach {args.server}: {e}")
            return 1


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    try:
        return asyncio.run(run_analysis(args))
    except KeyboardInterrupt:
        console.print("\n[yellow]Cancelled by user[/yellow]")
        return 130


if __name__ == "__main__":
    sys.exit(main())
