"""
Analysis service: content validation, the analysis pipeline, history and
issue creation.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import io
import zipfile
from datetime import datetime, timedelta, timezone
from typing import Any, Optional
from xml.etree import ElementTree

from synapse.clients.anthropic_client import AnthropicClient
from synapse.clients.jira_client import JiraClient
from synapse.core.config import Settings
from synapse.core.constants import (
    ALLOWED_UPLOAD_TYPES,
    DOCX_MIME_TYPE,
    AnalysisSource,
    AnalysisStatus,
    MeetingType,
    Severity,
)
from synapse.core.exceptions import (
    AuthorizationError,
    FileProcessingError,
    InvalidRequestError,
    InvalidStatusTransitionError,
    JiraServiceError,
    SecurityError,
    SynapseError,
    ValidationError,
)
from synapse.core.logging import get_logger
from synapse.core.security import (
    RateLimiter,
    count_words,
    detect_prompt_injection,
    generate_analysis_id,
    hash_content,
    sanitize_filename,
    sanitize_meeting_notes,
)
from synapse.domain.analysis import AnalysisOptions, AnalysisRecord, AnalysisResult
from synapse.domain.user import CallerContext
from synapse.repositories.analysis_repo import AnalysisRepository
from synapse.services.audit_service import AuditService

logger = get_logger(__name__)

DOCX_BODY = "word/document.xml"
WORD_NS = "{http://schemas.openxmlformats.org/wordprocessingml/2006/main}"


def extract_docx_text(data: bytes) -> str:
    """
    Extract paragraph text from a .docx document.

    Raises:
        FileProcessingError: If the bytes are not a readable .docx file
    """
    try:
        with zipfile.ZipFile(io.BytesIO(data)) as archive:
            xml = archive.read(DOCX_BODY)
    except (zipfile.BadZipFile, KeyError) as e:
        raise FileProcessingError(f"Invalid .docx file: {e}") from e

    try:
        root = ElementTree.fromstring(xml)
    except ElementTree.ParseError as e:
        raise FileProcessingError(f"Invalid .docx document body: {e}") from e

    paragraphs = []
    for paragraph in root.iter(f"{WORD_NS}p"):
        text = "".join(node.text or "" for node in paragraph.iter(f"{WORD_NS}t"))
        if text.strip():
            paragraphs.append(text)
    return "\n".join(paragraphs)


def _issue_fields(issue: dict[str, Any]) -> dict[str, Any]:
    """
    Read the creation fields of a client-supplied issue.

    Raises:
        ValidationError: If a field has the wrong type
    """
    fields = {
        "summary": issue.get("title") or issue.get("summary") or "",
        "description": issue.get("description") or "",
        "issue_type": issue.get("type") or issue.get("issueType") or "Task",
        "priority": issue.get("priority") or "Medium",
        "assignee": issue.get("assignee") or None,
    }
    for name, value in fields.items():
        if value is not None and not isinstance(value, str):
            raise ValidationError(f"Issue field {name} must be a string")

    labels = issue.get("labels") or []
    if not isinstance(labels, list) or not all(isinstance(label, str) for label in labels):
        raise ValidationError("Issue labels must be a list of strings")
    fields["labels"] = labels
    return fields


class AnalysisService:
    """
    Service for analysing meeting notes.

    Submissions are stored as AnalysisRecords and processed by a background
    task per record; callers poll the record for status and results.
    """

    def __init__(
        self,
        settings: Settings,
        repository: AnalysisRepository,
        rate_limiter: RateLimiter,
        ai_client: AnthropicClient,
        jira_client: JiraClient,
        audit: AuditService,
    ) -> None:
        self.settings = settings
        self.repository = repository
        self.rate_limiter = rate_limiter
        self.ai_client = ai_client
        self.jira_client = jira_client
        self.audit = audit

        # Background pipeline tasks by analysis id
        self._tasks: dict[str, asyncio.Task[None]] = {}

    # =========================================================================
    # Validation
    # =========================================================================

    async def validate_content(self, content: Any, caller: CallerContext) -> dict[str, Any]:
        """
        Validate and sanitize meeting notes.

        Returns a result dict rather than raising for content problems, so
        the UI can show the reason inline.
        """
        user_id = caller.require_account_id()
        limits = self.settings.content

        if not content or not isinstance(content, str):
            return {"success": False, "isValid": False, "error": "Invalid content type"}
        if len(content) < limits.min_length:
            return {"success": False, "isValid": False, "error": "Content too short"}
        if len(content) > limits.max_length:
            return {"success": False, "isValid": False, "error": "Content too large (max 100KB)"}

        try:
            detect_prompt_injection(content)
        except SecurityError as e:
            await self.audit.record(
                "prompt_injection_attempt",
                user_id,
                Severity.HIGH,
                {"pattern": e.details.get("pattern"), "contentLength": len(content)},
            )
            return {"success": False, "isValid": False, "error": e.message}

        sanitized = sanitize_meeting_notes(content)
        if len(sanitized.strip()) < limits.min_length:
            return {"success": False, "isValid": False, "error": "Content too short"}
        logger.info("Content validation passed", user_id=user_id, content_length=len(content))

        return {
            "success": True,
            "isValid": True,
            "sanitizedContent": sanitized,
            "metadata": {
                "originalLength": len(content),
                "sanitizedLength": len(sanitized),
                "wordCount": count_words(sanitized),
            },
        }

    # =========================================================================
    # Submission
    # =========================================================================

    async def start_analysis(
        self,
        notes: Any,
        caller: CallerContext,
        meeting_type: str = MeetingType.GENERAL.value,
        issue_type: str = "task",
        options: Optional[AnalysisOptions] = None,
    ) -> dict[str, Any]:
        """
        Submit notes for analysis.

        Raises:
            AuthenticationError: If the caller is anonymous
            RateLimitError: If the caller exceeded the analysis rate limit
            ValidationError: If the content fails validation
        """
        user_id = caller.require_account_id()
        if not notes:
            raise InvalidRequestError("Missing required field: notes", field="notes")

        validation = await self.validate_content(notes, caller)
        if not validation["isValid"]:
            raise ValidationError(f"Content validation failed: {validation['error']}")

        sanitized = validation["sanitizedContent"]
        options = options or AnalysisOptions()
        record = AnalysisRecord(
            id=generate_analysis_id(),
            user_id=user_id,
            site_id=caller.cloud_id,
            notes_length=len(sanitized),
            notes_hash=hash_content(sanitized),
            word_count=validation["metadata"]["wordCount"],
            meeting_type=meeting_type or MeetingType.GENERAL.value,
            issue_type=issue_type or "task",
            options=options,
        )

        # Only well-formed submissions count against the limit
        await self.rate_limiter.check(
            user_id,
            "analysis",
            self.settings.rate_limit.analysis_per_window,
            self.settings.rate_limit.window_seconds,
        )
        await self.repository.create(record)

        task = asyncio.create_task(self._run_pipeline(record.id, sanitized, caller))
        self._tasks[record.id] = task
        task.add_done_callback(lambda _: self._tasks.pop(record.id, None))

        logger.info(
            "Analysis started",
            analysis_id=record.id,
            user_id=user_id,
            meeting_type=record.meeting_type,
            issue_type=record.issue_type,
            word_count=record.word_count,
            source=options.source.value,
        )

        estimated = record.created_at + timedelta(seconds=self.settings.analysis.estimated_seconds)
        return {
            "success": True,
            "analysisId": record.id,
            "status": record.status.value,
            "estimatedCompletion": estimated.isoformat(),
            "message": "Analysis started successfully",
        }

    async def process_direct_text(
        self,
        text_content: Any,
        caller: CallerContext,
        meeting_type: str = MeetingType.GENERAL.value,
        issue_type: str = "task",
        options: Optional[AnalysisOptions] = None,
    ) -> dict[str, Any]:
        """Analyse pasted text."""
        caller.require_account_id()
        if not isinstance(text_content, str) or len(text_content.strip()) < self.settings.content.min_length:
            raise ValidationError("Text content too short. Minimum 10 characters required.")

        options = (options or AnalysisOptions()).model_copy(
            update={"source": AnalysisSource.DIRECT_INPUT}
        )
        return await self.start_analysis(
            text_content, caller, meeting_type=meeting_type, issue_type=issue_type, options=options
        )

    async def handle_file_upload(
        self,
        file_content: Any,
        caller: CallerContext,
        file_name: Optional[str] = None,
        file_type: Optional[str] = None,
        meeting_type: str = MeetingType.GENERAL.value,
        issue_type: str = "task",
        options: Optional[AnalysisOptions] = None,
    ) -> dict[str, Any]:
        """
        Analyse an uploaded .txt or .docx file.

        Plain text arrives as a string; .docx content arrives base64 encoded.
        """
        user_id = caller.require_account_id()
        if not file_content:
            raise FileProcessingError("No file content provided")
        if file_type and file_type not in ALLOWED_UPLOAD_TYPES:
            raise FileProcessingError(
                "Unsupported file type. Please upload .txt or .docx files.", file_name=file_name
            )

        clean_name = sanitize_filename(file_name) if file_name else None
        is_docx = file_type == DOCX_MIME_TYPE or (clean_name or "").lower().endswith(".docx")
        text = self._decode_upload(file_content, is_docx, clean_name)

        validation = await self.validate_content(text, caller)
        if not validation["isValid"]:
            raise ValidationError(f"Content validation failed: {validation['error']}")

        options = (options or AnalysisOptions()).model_copy(
            update={"source": AnalysisSource.FILE_UPLOAD, "file_name": clean_name}
        )
        analysis = await self.start_analysis(
            validation["sanitizedContent"],
            caller,
            meeting_type=meeting_type,
            issue_type=issue_type,
            options=options,
        )

        logger.info(
            "File upload successful",
            user_id=user_id,
            file_name=clean_name,
            content_length=validation["metadata"]["sanitizedLength"],
        )
        return {
            "success": True,
            "fileName": clean_name,
            "contentLength": validation["metadata"]["sanitizedLength"],
            "analysisResult": analysis,
        }

    def _decode_upload(self, file_content: Any, is_docx: bool, file_name: Optional[str]) -> str:
        max_bytes = self.settings.content.max_upload_bytes

        if not is_docx:
            if not isinstance(file_content, str):
                raise FileProcessingError("Text file content must be a string", file_name=file_name)
            if len(file_content.encode()) > max_bytes:
                raise FileProcessingError("Uploaded file is too large", file_name=file_name)
            return file_content

        if not isinstance(file_content, str):
            raise FileProcessingError(".docx file content must be base64 encoded", file_name=file_name)
        try:
            data = base64.b64decode(file_content, validate=True)
        except (binascii.Error, ValueError) as e:
            raise FileProcessingError(f"Invalid base64 file content: {e}", file_name=file_name) from e
        if len(data) > max_bytes:
            raise FileProcessingError("Uploaded file is too large", file_name=file_name)
        return extract_docx_text(data)

    # =========================================================================
    # Pipeline
    # =========================================================================

    async def _run_pipeline(self, analysis_id: str, notes: str, caller: CallerContext) -> None:
        record = await self.repository.get(analysis_id)
        if record is None or record.is_terminal:
            return

        try:
            record.transition(AnalysisStatus.PROCESSING, 25)
            await self.repository.save_record(record)

            result = await self.ai_client.analyze_meeting(
                notes,
                meeting_type=record.meeting_type,
                issue_type=record.issue_type,
                user_id=record.user_id,
            )

            record = await self._reload(analysis_id)
            record.transition(AnalysisStatus.PROCESSING, 75)
            await self.repository.save_record(record)

            record.complete(result)
            await self.repository.save_record(record)

            logger.info(
                "Analysis processing completed",
                analysis_id=analysis_id,
                issues_found=len(result.issues),
                processing_time_ms=record.processing_time_ms,
            )

        except asyncio.CancelledError:
            logger.info("Analysis task cancelled", analysis_id=analysis_id)
            raise

        except InvalidStatusTransitionError as e:
            logger.warning("Analysis record changed underneath pipeline", analysis_id=analysis_id, error=str(e))
            return

        except Exception as e:
            logger.exception("Analysis processing failed", analysis_id=analysis_id, error=str(e))
            await self._mark_failed(analysis_id, str(e))
            return

        if record.options.create_jira_issues and self.jira_client.is_configured and result.issues:
            await self._create_issues_for(record, result, caller)

    async def _reload(self, analysis_id: str) -> AnalysisRecord:
        record = await self.repository.get(analysis_id)
        if record is None:
            raise SynapseError(f"Analysis record {analysis_id} disappeared during processing")
        return record

    async def _mark_failed(self, analysis_id: str, message: str) -> None:
        record = await self.repository.get(analysis_id)
        if record is None or record.is_terminal:
            return
        record.fail(message)
        await self.repository.save_record(record)

    async def _create_issues_for(
        self, record: AnalysisRecord, result: AnalysisResult, caller: CallerContext
    ) -> None:
        assignee = caller.account_id if record.options.assign_to_current_user else None
        issues = [issue.model_dump(by_alias=True) for issue in result.issues]
        try:
            created = await self.create_jira_issues(
                issues, caller, project_key=record.options.project_key, assignee=assignee
            )
        except SynapseError as e:
            logger.error("Automatic issue creation failed", analysis_id=record.id, error=str(e))
            return

        latest = await self.repository.get(record.id)
        if latest is None:
            return
        latest.issues_created = [
            {"jiraKey": r["jiraKey"], "jiraId": r["jiraId"]} for r in created["results"]["success"]
        ]
        await self.repository.save_record(latest)

    async def wait_for(self, analysis_id: str) -> None:
        """Wait until the background pipeline for an analysis has finished."""
        task = self._tasks.get(analysis_id)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel running pipeline tasks."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()

    # =========================================================================
    # Reads
    # =========================================================================

    async def _get_owned(self, analysis_id: Any, caller: CallerContext) -> Optional[AnalysisRecord]:
        user_id = caller.require_account_id()
        if not analysis_id:
            raise InvalidRequestError("Analysis ID required", field="analysisId")

        record = await self.repository.get(str(analysis_id))
        if record is None:
            return None

        if record.user_id != user_id:
            await self.audit.record(
                "unauthorized_analysis_access",
                user_id,
                Severity.HIGH,
                {"analysisId": record.id},
            )
            raise AuthorizationError("Unauthorized access to analysis")
        return record

    async def get_analysis_status(self, analysis_id: Any, caller: CallerContext) -> dict[str, Any]:
        record = await self._get_owned(analysis_id, caller)
        if record is None:
            return {"success": False, "error": "Analysis not found"}

        estimated = None
        if not record.is_terminal:
            estimated = (
                record.created_at + timedelta(seconds=self.settings.analysis.estimated_seconds)
            ).isoformat()

        return {
            "success": True,
            "analysisId": record.id,
            "status": record.status.value,
            "progress": record.progress,
            "createdAt": record.created_at.isoformat(),
            "lastUpdate": record.last_update.isoformat(),
            "error": record.error,
            "estimatedCompletion": estimated,
        }

    async def get_analysis_results(self, analysis_id: Any, caller: CallerContext) -> dict[str, Any]:
        record = await self._get_owned(analysis_id, caller)
        if record is None:
            return {"success": False, "error": "Analysis not found"}

        if record.status != AnalysisStatus.COMPLETED or record.result is None:
            return {
                "success": False,
                "error": "Analysis not completed yet",
                "status": record.status.value,
                "progress": record.progress,
            }

        result = record.result
        return {
            "success": True,
            "analysisId": record.id,
            "summary": result.summary,
            "actionItems": [item.model_dump() for item in result.action_items],
            "decisions": [decision.model_dump() for decision in result.decisions],
            "issues": [issue.model_dump(by_alias=True) for issue in result.issues],
            "confidence": result.confidence,
            "metadata": result.metadata,
            "issuesCreated": record.issues_created,
            "processingTime": record.processing_time_ms,
            "createdAt": record.created_at.isoformat(),
            "completedAt": record.completed_at.isoformat() if record.completed_at else None,
        }

    async def get_history(
        self,
        caller: CallerContext,
        page: int = 1,
        page_size: Optional[int] = None,
    ) -> dict[str, Any]:
        user_id = caller.require_account_id()
        page_size = page_size or self.settings.analysis.history_page_size
        if page < 1 or page_size < 1:
            raise InvalidRequestError("page and pageSize must be positive", field="page")

        ids = await self.repository.history_ids(user_id)
        records = await self.repository.list_for_user(
            user_id, limit=page_size, offset=(page - 1) * page_size
        )
        return {
            "success": True,
            "history": [record.history_view() for record in records],
            "total": len(ids),
            "page": page,
            "pageSize": page_size,
        }

    # =========================================================================
    # Issue creation
    # =========================================================================

    async def create_jira_issues(
        self,
        issues: Any,
        caller: CallerContext,
        project_key: Optional[str] = None,
        assignee: Optional[str] = None,
    ) -> dict[str, Any]:
        """
        Create tracker issues one by one.

        Raises:
            ValidationError: If no issues were given
            JiraServiceError: If the tracker is not configured
        """
        user_id = caller.require_account_id()
        if not issues or not isinstance(issues, list):
            raise ValidationError("No issues provided for creation")
        if not self.jira_client.is_configured:
            raise JiraServiceError("Jira is not configured")

        project_key = project_key or self.settings.jira.default_project_key
        succeeded: list[dict[str, Any]] = []
        failed: list[dict[str, Any]] = []

        for issue in issues:
            if not isinstance(issue, dict):
                failed.append({"originalIssue": issue, "error": "Issue must be an object"})
                continue

            try:
                fields = _issue_fields(issue)
                labels = list(dict.fromkeys([*self.settings.jira.labels, *fields.pop("labels")]))
                if assignee:
                    fields["assignee"] = assignee
                created = await self.jira_client.create_issue(
                    **fields, labels=labels, project_key=project_key
                )
            except SynapseError as e:
                failed.append({"originalIssue": issue, "error": e.message})
                continue

            succeeded.append(
                {"originalIssue": issue, "jiraKey": created["key"], "jiraId": created["id"]}
            )

        logger.info(
            "Jira issues creation completed",
            total=len(issues),
            successful=len(succeeded),
            failed=len(failed),
            user_id=user_id,
        )
        return {
            "success": True,
            "results": {"success": succeeded, "failed": failed, "total": len(issues)},
            "summary": f"Created {len(succeeded)}/{len(issues)} issues successfully",
        }

    # =========================================================================
    # Maintenance
    # =========================================================================

    async def cleanup_old_analyses(self, now: Optional[datetime] = None) -> dict[str, Any]:
        retention = self.settings.analysis.retention_days
        cleaned = await self.repository.cleanup_older_than(
            retention, now=now or datetime.now(timezone.utc)
        )
        return {"cleaned": cleaned, "retentionDays": retention}
