"""
Jira Cloud REST client for issue creation.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import httpx

from synapse.clients.base_client import BaseAPIClient
from synapse.core.config import JiraSettings
from synapse.core.constants import (
    DEFAULT_PROJECT_CACHE_TTL,
    JIRA_DEFAULT_PROJECT_KEY,
    JIRA_MAX_LABELS,
    JIRA_STATS_KEY,
    JIRA_SUMMARY_MAX_LENGTH,
    USAGE_RETENTION_SECONDS,
    Priority,
)
from synapse.core.exceptions import (
    ExternalServiceError,
    JiraServiceError,
    RequestTimeoutError,
    StorageError,
    ValidationError,
)
from synapse.core.logging import get_logger
from synapse.core.retry import is_safe_to_resend
from synapse.repositories.kv_store import KeyValueStore

logger = get_logger(__name__)

ACCOUNT_ID_PREFIX = "557058:"
ACCOUNT_ID_LENGTH = 28


def truncate_text(text: str, max_length: int) -> str:
    """Cut text to max_length, marking the cut with '...'."""
    if not text or len(text) <= max_length:
        return text
    return text[: max_length - 3] + "..."


def to_adf(text: str) -> dict[str, Any]:
    """
    Wrap plain text in an Atlassian Document Format document.
    Blank-line separated blocks become paragraphs.
    """
    paragraphs = [p for p in text.split("\n\n") if p.strip()] or [text]
    return {
        "type": "doc",
        "version": 1,
        "content": [
            {"type": "paragraph", "content": [{"type": "text", "text": paragraph}]}
            for paragraph in paragraphs
        ],
    }


def looks_like_account_id(identifier: str) -> bool:
    return identifier.startswith(ACCOUNT_ID_PREFIX) or len(identifier) == ACCOUNT_ID_LENGTH


class JiraClient(BaseAPIClient):
    """
    Thin wrapper over the Jira Cloud REST API v3.
    """

    def __init__(
        self,
        settings: JiraSettings,
        store: KeyValueStore,
        max_retries: int = 3,
        base_delay: float = 1.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        super().__init__(
            base_url=settings.base_url,
            timeout=settings.timeout,
            max_retries=max_retries,
            base_delay=base_delay,
            transport=transport,
        )
        self.settings = settings
        self.store = store

    @property
    def service_name(self) -> str:
        return "Jira"

    @property
    def is_configured(self) -> bool:
        return self.settings.is_configured

    def _service_error(
        self, message: str, details: Optional[dict[str, Any]] = None
    ) -> ExternalServiceError:
        return JiraServiceError(message, details=details)

    def _auth(self) -> Optional[httpx.Auth]:
        return httpx.BasicAuth(self.settings.email, self.settings.api_token)

    async def create_issue(
        self,
        summary: str,
        description: str,
        issue_type: str,
        priority: str = Priority.MEDIUM.value,
        assignee: Optional[str] = None,
        labels: Optional[list[str]] = None,
        project_key: Optional[str] = None,
    ) -> dict[str, Any]:
        """
        Create one issue.

        Args:
            summary: Issue summary, truncated to 255 characters
            description: Plain text description, sent as ADF
            issue_type: Issue type name, matched case-insensitively
            priority: Priority name
            assignee: Account id, e-mail or display name
            labels: Labels, at most 10 are sent
            project_key: Target project; the default project when omitted

        Returns:
            Created issue key, id, self link and project

        Raises:
            ValidationError: If required fields are missing
            JiraServiceError: If no project is available or the API call fails
        """
        if not summary or not description or not issue_type:
            raise ValidationError("Missing required fields: summary, description, issueType")

        resolved_project = project_key or await self.get_default_project()
        if not resolved_project:
            raise JiraServiceError("No project specified and no default project configured")

        project = await self.get_project(resolved_project)
        valid_type = await self.match_issue_type(project["id"], issue_type)

        fields: dict[str, Any] = {
            "project": {"key": resolved_project},
            "summary": truncate_text(summary, JIRA_SUMMARY_MAX_LENGTH),
            "description": to_adf(description),
            "issuetype": {"id": valid_type["id"]},
            "priority": {"name": priority or Priority.MEDIUM.value},
        }

        if assignee:
            account_id = await self.resolve_user(assignee)
            if account_id:
                fields["assignee"] = {"accountId": account_id}

        if labels:
            fields["labels"] = labels[:JIRA_MAX_LABELS]

        # Only undelivered creates are resent
        created = await self._post(
            "/rest/api/3/issue", data={"fields": fields}, retry_on=is_safe_to_resend
        )

        logger.info(
            "Jira issue created",
            issue_key=created.get("key"),
            project_key=resolved_project,
            issue_type=valid_type.get("name"),
            summary=summary[:100],
        )

        await self.update_usage_stats(resolved_project, issue_type)

        return {
            "key": created.get("key"),
            "id": created.get("id"),
            "self": created.get("self"),
            "projectKey": resolved_project,
            "issueType": valid_type.get("name", issue_type),
            "summary": summary,
            "created": True,
        }

    async def get_project(self, project_key: str) -> dict[str, Any]:
        return await self._get(f"/rest/api/3/project/{project_key}")

    async def match_issue_type(self, project_id: str, issue_type: str) -> dict[str, Any]:
        """Project issue type matching the name, or the first one available."""
        issue_types = await self._get(
            "/rest/api/3/issuetype/project", params={"projectId": project_id}
        )
        if not issue_types:
            raise JiraServiceError(f"No issue types available for project {project_id}")

        for candidate in issue_types:
            if candidate.get("name", "").lower() == issue_type.lower():
                return candidate

        fallback = issue_types[0]
        logger.warning(
            "Issue type not found, using fallback",
            requested=issue_type,
            fallback=fallback.get("name"),
            available=[t.get("name") for t in issue_types],
        )
        return fallback

    async def get_project_issue_types(self, project_key: str) -> list[dict[str, Any]]:
        project = await self.get_project(project_key)
        issue_types = await self._get(
            "/rest/api/3/issuetype/project", params={"projectId": project["id"]}
        )
        return [
            {
                "id": t.get("id"),
                "name": t.get("name"),
                "description": t.get("description"),
                "iconUrl": t.get("iconUrl"),
                "subtask": t.get("subtask", False),
            }
            for t in issue_types
        ]

    async def get_available_projects(self, max_results: int = 50) -> list[dict[str, Any]]:
        result = await self._get(
            "/rest/api/3/project/search",
            params={"maxResults": max_results, "orderBy": "name"},
        )
        return [
            {
                "key": p.get("key"),
                "name": p.get("name"),
                "id": p.get("id"),
                "projectTypeKey": p.get("projectTypeKey"),
                "simplified": p.get("simplified", False),
            }
            for p in result.get("values", [])
        ]

    async def resolve_user(self, identifier: str) -> Optional[str]:
        """
        Resolve an e-mail address or display name to an account id.

        Values that already look like account ids are returned unchanged.
        An exact e-mail match is preferred over the first search result.
        Returns None when nobody matches or the search fails.
        """
        if looks_like_account_id(identifier):
            return identifier

        try:
            users = await self._get(
                "/rest/api/3/user/search", params={"query": identifier, "maxResults": 5}
            )
        except JiraServiceError as e:
            logger.warning("User search failed", identifier=identifier, error=str(e))
            return None

        if not users:
            logger.warning("User not found", identifier=identifier)
            return None

        wanted = identifier.lower()
        selected = next(
            (u for u in users if (u.get("emailAddress") or "").lower() == wanted),
            users[0],
        )
        logger.info(
            "User resolved",
            identifier=identifier,
            resolved=selected.get("displayName"),
            account_id=selected.get("accountId"),
        )
        return selected.get("accountId")

    async def get_default_project(self) -> Optional[str]:
        """
        Default project key.

        Order: stored default, configured default, first accessible project
        (which is then cached for 24 hours).
        """
        stored = await self.store.get(JIRA_DEFAULT_PROJECT_KEY)
        if stored:
            return stored

        if self.settings.default_project_key:
            return self.settings.default_project_key

        result = await self._get("/rest/api/3/project/search", params={"maxResults": 1})
        values = result.get("values") or []
        if not values:
            logger.error("No accessible projects found")
            return None

        first = values[0]
        await self.store.set(JIRA_DEFAULT_PROJECT_KEY, first["key"], ttl_seconds=DEFAULT_PROJECT_CACHE_TTL)
        logger.info("Auto-selected default project", project_key=first["key"], project_name=first.get("name"))
        return first["key"]

    async def set_default_project(self, project_key: str) -> None:
        """Validate and store the default project."""
        await self.get_project(project_key)
        await self.store.set(JIRA_DEFAULT_PROJECT_KEY, project_key)
        logger.info("Default project updated", project_key=project_key)

    async def update_usage_stats(
        self, project_key: str, issue_type: str, now: Optional[datetime] = None
    ) -> None:
        now = now or datetime.now(timezone.utc)
        key = JIRA_STATS_KEY.format(date=now.strftime("%Y-%m-%d"))
        try:
            stats = await self.store.get(key) or {
                "totalIssues": 0,
                "byProject": {},
                "byIssueType": {},
            }
            stats["totalIssues"] += 1
            stats["byProject"][project_key] = stats["byProject"].get(project_key, 0) + 1
            stats["byIssueType"][issue_type] = stats["byIssueType"].get(issue_type, 0) + 1
            stats["lastUpdated"] = now.isoformat()
            await self.store.set(key, stats, ttl_seconds=USAGE_RETENTION_SECONDS)
        except StorageError as e:
            logger.warning("Failed to update usage stats", project_key=project_key, error=str(e))

    async def get_usage_stats(self, days: int = 7, now: Optional[datetime] = None) -> list[dict[str, Any]]:
        """Daily issue creation stats, newest first; days without activity are skipped."""
        today = (now or datetime.now(timezone.utc)).date()
        stats = []
        for offset in range(days):
            day = (today - timedelta(days=offset)).isoformat()
            day_stats = await self.store.get(JIRA_STATS_KEY.format(date=day))
            if day_stats:
                stats.append({"date": day, **day_stats})
        return stats

    async def validate_connectivity(self) -> dict[str, Any]:
        """Check the credentials against /rest/api/3/myself."""
        if not self.is_configured:
            return {"connected": False, "error": "Jira is not configured"}

        try:
            user = await self._get("/rest/api/3/myself")
        except (JiraServiceError, RequestTimeoutError) as e:
            logger.error("Jira connectivity validation failed", error=str(e))
            return {"connected": False, "error": str(e)}

        return {
            "connected": True,
            "user": {
                "displayName": user.get("displayName"),
                "accountId": user.get("accountId"),
                "emailAddress": user.get("emailAddress"),
            },
        }
