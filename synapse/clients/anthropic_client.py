"""
Anthropic Messages API client for meeting analysis.
Builds the prompt, calls the model once per analysis and parses the result.
"""

import json
import re
from datetime import datetime, timezone
from typing import Any, Optional

import httpx
from pydantic import ValidationError as PydanticValidationError

from synapse.clients.base_client import BaseAPIClient
from synapse.core.config import AnthropicSettings
from synapse.core.constants import (
    DAILY_USAGE_KEY,
    TOKEN_PRICE_INPUT,
    TOKEN_PRICE_OUTPUT,
    USAGE_RETENTION_SECONDS,
    IssueType,
    MeetingType,
    Priority,
)
from synapse.core.exceptions import (
    AIServiceError,
    ConfigurationError,
    ExternalServiceError,
    StorageError,
)
from synapse.core.logging import get_logger
from synapse.domain.analysis import ActionItem, AnalysisResult, Decision, ExtractedIssue
from synapse.repositories.admin_repo import APIKeyRepository
from synapse.repositories.kv_store import KeyValueStore

logger = get_logger(__name__)

TOOL_NAME = "record_meeting_analysis"
TEXT_PARSING_CONFIDENCE = 0.6

BASE_PROMPT = (
    "You are an expert meeting analyst specialized in extracting actionable Jira issues "
    "from meeting notes. You have deep knowledge of agile methodologies, project "
    "management, and issue tracking."
)

MEETING_PROMPTS: dict[str, str] = {
    MeetingType.DAILY_STANDUP.value: (
        "Focus on completed work, blockers, and next steps. Look for impediments that "
        "need resolution and tasks that are ready for handoff."
    ),
    MeetingType.SPRINT_PLANNING.value: (
        "Identify user stories, tasks, and epics. Break down large items into manageable "
        "tasks with clear acceptance criteria."
    ),
    MeetingType.RETROSPECTIVE.value: (
        "Extract improvement actions, process changes, and team decisions. Focus on "
        "actionable items that can be tracked."
    ),
    MeetingType.FEATURE_PLANNING.value: (
        "Identify requirements, technical tasks, and design decisions. Look for "
        "dependencies and prerequisites."
    ),
    MeetingType.BUG_TRIAGE.value: (
        "Focus on bug reports, severity assessment, and assignment decisions. Prioritize "
        "based on impact and urgency."
    ),
    MeetingType.GENERAL.value: (
        "Extract any actionable items, decisions, or follow-up tasks mentioned in the meeting."
    ),
}

ISSUE_PROMPTS: dict[str, str] = {
    IssueType.EPIC.value: "Create high-level epics for large initiatives that span multiple sprints.",
    IssueType.STORY.value: "Create user stories with clear business value and acceptance criteria.",
    IssueType.TASK.value: "Create technical tasks with specific implementation details.",
    IssueType.BUG.value: "Create bug reports with reproduction steps and expected behavior.",
    IssueType.IMPROVEMENT.value: "Create improvement items for process or technical enhancements.",
}

DEFAULT_ISSUE_PROMPT = "Create appropriate issue types based on content."

ANALYSIS_TOOL: dict[str, Any] = {
    "name": TOOL_NAME,
    "description": "Record the summary, action items, decisions and Jira issues of a meeting",
    "input_schema": {
        "type": "object",
        "properties": {
            "summary": {
                "type": "string",
                "description": "Short summary of the meeting",
            },
            "action_items": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "description": {"type": "string"},
                        "owner": {"type": "string"},
                        "due_date": {"type": "string"},
                    },
                    "required": ["description"],
                },
            },
            "decisions": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "description": {"type": "string"},
                        "rationale": {"type": "string"},
                    },
                    "required": ["description"],
                },
            },
            "issues": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "summary": {
                            "type": "string",
                            "description": "Brief, actionable issue summary",
                        },
                        "description": {
                            "type": "string",
                            "description": "Detailed issue description with context",
                        },
                        "issueType": {
                            "type": "string",
                            "enum": [t.value for t in IssueType],
                        },
                        "priority": {
                            "type": "string",
                            "enum": [p.value for p in Priority],
                        },
                        "assignee": {
                            "type": "string",
                            "description": "Suggested assignee name or email",
                        },
                        "labels": {
                            "type": "array",
                            "items": {"type": "string"},
                            "description": "Relevant labels for categorization",
                        },
                        "confidence_score": {
                            "type": "number",
                            "minimum": 0,
                            "maximum": 1,
                            "description": "Confidence in extraction accuracy (0-1)",
                        },
                        "reasoning": {
                            "type": "string",
                            "description": "Explanation for why this issue was extracted",
                        },
                    },
                    "required": ["summary", "description", "issueType", "confidence_score"],
                },
            },
            "metadata": {
                "type": "object",
                "properties": {
                    "analysis_quality": {"type": "string"},
                    "total_confidence": {"type": "number"},
                    "processing_notes": {"type": "string"},
                },
            },
        },
        "required": ["summary", "issues"],
    },
}

_JSON_BLOCK_RE = re.compile(r"\{[\s\S]*\}")


def build_system_prompt(meeting_type: str, issue_type: str) -> str:
    """System prompt specialised for the meeting and issue type."""
    meeting_prompt = MEETING_PROMPTS.get(meeting_type, MEETING_PROMPTS[MeetingType.GENERAL.value])
    issue_prompt = ISSUE_PROMPTS.get(issue_type.capitalize() if issue_type else "", DEFAULT_ISSUE_PROMPT)
    return (
        f"{BASE_PROMPT}\n\n"
        f"Meeting Context: {meeting_prompt}\n"
        f"Issue Focus: {issue_prompt}\n\n"
        "Extract issues with high confidence scores (>0.8) and provide clear reasoning "
        f"for each extraction. Record your analysis with the {TOOL_NAME} tool."
    )


def build_user_prompt(notes: str) -> str:
    return (
        f"Meeting Notes:\n{notes}\n\n"
        "Please analyze the meeting notes: summarize them, list action items and "
        "decisions, and extract actionable Jira issues."
    )


def calculate_cost(usage: dict[str, Any]) -> float:
    """Cost in dollars of one call at $3/$15 per million input/output tokens."""
    input_tokens = usage.get("input_tokens", 0) or 0
    output_tokens = usage.get("output_tokens", 0) or 0
    return (input_tokens / 1_000_000) * TOKEN_PRICE_INPUT + (
        output_tokens / 1_000_000
    ) * TOKEN_PRICE_OUTPUT


class AnthropicClient(BaseAPIClient):
    """
    Thin wrapper over the Anthropic Messages API.

    Supports:
    - Meeting and issue type specific prompts
    - Tool-use structured output with a JSON/text fallback
    - API key selection from settings or the key store
    - Daily usage accounting
    """

    def __init__(
        self,
        settings: AnthropicSettings,
        store: KeyValueStore,
        api_keys: Optional[APIKeyRepository] = None,
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
        self.api_keys = api_keys

    @property
    def service_name(self) -> str:
        return "Claude API"

    def _service_error(
        self, message: str, details: Optional[dict[str, Any]] = None
    ) -> ExternalServiceError:
        return AIServiceError(message, details=details)

    def _default_headers(self) -> dict[str, str]:
        return {
            **super()._default_headers(),
            "anthropic-version": self.settings.api_version,
        }

    async def get_api_key(self) -> str:
        """
        Resolve the API key for the next call.

        The configured key wins; otherwise the least-used active key from the
        key store is picked and its usage recorded.

        Raises:
            ConfigurationError: If no key is configured or stored
        """
        if self.settings.api_key:
            return self.settings.api_key

        if self.api_keys is not None:
            metadata = await self.api_keys.least_used_active()
            if metadata is not None:
                secret = await self.api_keys.get_secret(metadata.id)
                if secret:
                    await self.api_keys.record_usage(metadata)
                    logger.debug("Using stored API key", key_id=metadata.id)
                    return secret
                logger.error("Active API key has no secret", key_id=metadata.id)

        raise ConfigurationError(
            "Claude API key unavailable",
            details={"storedKeys": self.api_keys is not None},
        )

    def build_request(self, notes: str, meeting_type: str, issue_type: str) -> dict[str, Any]:
        return {
            "model": self.settings.model,
            "max_tokens": self.settings.max_tokens,
            "temperature": self.settings.temperature,
            "system": build_system_prompt(meeting_type, issue_type),
            "messages": [{"role": "user", "content": build_user_prompt(notes)}],
            "tools": [ANALYSIS_TOOL],
            "tool_choice": {"type": "auto"},
        }

    async def analyze_meeting(
        self,
        notes: str,
        meeting_type: str = MeetingType.GENERAL.value,
        issue_type: str = IssueType.TASK.value,
        user_id: Optional[str] = None,
    ) -> AnalysisResult:
        """
        Analyze sanitized meeting notes.

        Args:
            notes: Sanitized meeting notes
            meeting_type: Meeting type selecting the prompt focus
            issue_type: Preferred issue type
            user_id: Caller, for logging

        Returns:
            Parsed analysis result

        Raises:
            AIServiceError: If the API call fails
            ConfigurationError: If no key is available
        """
        api_key = await self.get_api_key()
        body = self.build_request(notes, meeting_type, issue_type)

        logger.info(
            "Calling Claude API",
            model=self.settings.model,
            meeting_type=meeting_type,
            issue_type=issue_type,
            notes_length=len(notes),
            user_id=user_id,
        )
        response = await self._post("/v1/messages", data=body, headers={"x-api-key": api_key})

        result = self.parse_response(response, meeting_type, issue_type)
        await self.record_usage(result.usage)

        logger.info(
            "Claude analysis complete",
            issues=len(result.issues),
            source=result.source,
            input_tokens=result.usage.get("input_tokens", 0),
            output_tokens=result.usage.get("output_tokens", 0),
        )
        return result

    def parse_response(
        self, response: dict[str, Any], meeting_type: str, issue_type: str
    ) -> AnalysisResult:
        """
        Turn a Messages API response into an AnalysisResult.

        Order of preference: tool_use input, first JSON object in the text,
        raw text as summary.
        """
        content = response.get("content") or []
        usage = response.get("usage") or {}
        metadata = {
            "meetingType": meeting_type,
            "issueType": issue_type,
            "stopReason": response.get("stop_reason"),
        }

        for block in content:
            if block.get("type") == "tool_use" and block.get("name") == TOOL_NAME:
                return self._build_result(block.get("input") or {}, "tool_use", usage, metadata)

        text = "\n".join(b.get("text", "") for b in content if b.get("type") == "text").strip()
        match = _JSON_BLOCK_RE.search(text)
        if match:
            try:
                parsed = json.loads(match.group(0))
            except json.JSONDecodeError as e:
                logger.warning("Text parsing failed", error=str(e))
            else:
                if isinstance(parsed, dict):
                    return self._build_result(parsed, "text_parsing", usage, metadata)

        logger.warning("No structured data in Claude response", text_length=len(text))
        return AnalysisResult(
            summary=text,
            confidence=0.0,
            model=self.settings.model,
            source="raw_text",
            usage=usage,
            metadata=metadata,
        )

    def _build_result(
        self,
        data: dict[str, Any],
        source: str,
        usage: dict[str, Any],
        metadata: dict[str, Any],
    ) -> AnalysisResult:
        raw_issues = _as_list(data.get("issues"))
        issues = self.filter_issues(raw_issues)
        reported_metadata = data.get("metadata")
        if not isinstance(reported_metadata, dict):
            reported_metadata = {}

        if source == "text_parsing":
            confidence = TEXT_PARSING_CONFIDENCE
        else:
            reported = reported_metadata.get("total_confidence")
            if isinstance(reported, (int, float)) and not isinstance(reported, bool):
                confidence = float(reported)
            elif issues:
                confidence = sum(i.confidence_score for i in issues) / len(issues)
            else:
                confidence = 0.0

        return AnalysisResult(
            summary=str(data.get("summary") or ""),
            action_items=_parse_items(data.get("action_items"), ActionItem),
            decisions=_parse_items(data.get("decisions"), Decision),
            issues=issues,
            confidence=round(min(max(confidence, 0.0), 1.0), 3),
            model=self.settings.model,
            source=source,
            usage=usage,
            metadata={
                **metadata,
                **reported_metadata,
                "originalCount": len(raw_issues),
                "filteredCount": len(issues),
            },
        )

    def filter_issues(self, raw_issues: list[Any]) -> list[ExtractedIssue]:
        """Keep issues that are complete and above the confidence threshold."""
        issues = []
        for raw in raw_issues:
            if not isinstance(raw, dict):
                continue
            if not (raw.get("summary") and raw.get("description") and raw.get("issueType")):
                continue
            try:
                issue = ExtractedIssue.model_validate(raw)
            except PydanticValidationError as e:
                logger.warning("Dropping malformed issue", error=str(e))
                continue
            if issue.confidence_score >= self.settings.min_confidence:
                issues.append(issue)
        return issues

    async def record_usage(self, usage: dict[str, Any], now: Optional[datetime] = None) -> None:
        """Add one call to the daily usage aggregate."""
        day = (now or datetime.now(timezone.utc)).strftime("%Y-%m-%d")
        key = DAILY_USAGE_KEY.format(date=day)
        try:
            daily = await self.store.get(key) or {
                "requests": 0,
                "inputTokens": 0,
                "outputTokens": 0,
                "cost": 0.0,
            }
            daily["requests"] += 1
            daily["inputTokens"] += usage.get("input_tokens", 0) or 0
            daily["outputTokens"] += usage.get("output_tokens", 0) or 0
            daily["cost"] = round(daily["cost"] + calculate_cost(usage), 6)
            await self.store.set(key, daily, ttl_seconds=USAGE_RETENTION_SECONDS)
        except StorageError as e:
            logger.warning("Failed to record usage", error=str(e))

    async def get_daily_usage(self, day: str) -> dict[str, Any]:
        return await self.store.get(DAILY_USAGE_KEY.format(date=day)) or {
            "requests": 0,
            "inputTokens": 0,
            "outputTokens": 0,
            "cost": 0.0,
        }


def _as_list(raw: Any) -> list[Any]:
    """Model output fields that should be arrays; anything else counts as empty."""
    if isinstance(raw, list):
        return raw
    if raw:
        logger.warning("Ignoring non-list field in model output", value_type=type(raw).__name__)
    return []


def _parse_items(raw: Any, model: Any) -> list[Any]:
    items = []
    for entry in _as_list(raw):
        if isinstance(entry, str):
            entry = {"description": entry}
        if not isinstance(entry, dict):
            continue
        try:
            items.append(model.model_validate(entry))
        except PydanticValidationError as e:
            logger.warning("Dropping malformed entry", model=model.__name__, error=str(e))
    return items
