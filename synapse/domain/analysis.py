"""
Analysis domain model.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from synapse.core.constants import AnalysisSource, AnalysisStatus
from synapse.core.exceptions import InvalidStatusTransitionError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


ALLOWED_TRANSITIONS: dict[AnalysisStatus, set[AnalysisStatus]] = {
    AnalysisStatus.QUEUED: {AnalysisStatus.QUEUED, AnalysisStatus.PROCESSING, AnalysisStatus.ERROR},
    AnalysisStatus.PROCESSING: {
        AnalysisStatus.PROCESSING,
        AnalysisStatus.COMPLETED,
        AnalysisStatus.ERROR,
    },
    AnalysisStatus.COMPLETED: set(),
    AnalysisStatus.ERROR: set(),
}


class ActionItem(BaseModel):
    """A follow-up someone agreed to do."""

    description: str
    owner: Optional[str] = None
    due_date: Optional[str] = None


class Decision(BaseModel):
    """A decision recorded in the meeting."""

    description: str
    rationale: Optional[str] = None


class ExtractedIssue(BaseModel):
    """An issue proposed for the tracker."""

    model_config = ConfigDict(populate_by_name=True)

    summary: str
    description: str
    issue_type: str = Field(default="Task", alias="issueType")
    priority: str = Field(default="Medium")
    assignee: Optional[str] = None
    labels: list[str] = Field(default_factory=list)
    confidence_score: float = Field(default=0.0, ge=0.0, le=1.0)
    reasoning: Optional[str] = None


class AnalysisResult(BaseModel):
    """Parsed model output for one analysis."""

    summary: str = ""
    action_items: list[ActionItem] = Field(default_factory=list)
    decisions: list[Decision] = Field(default_factory=list)
    issues: list[ExtractedIssue] = Field(default_factory=list)
    confidence: float = 0.0
    model: Optional[str] = None
    source: str = "tool_use"
    usage: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)


class AnalysisOptions(BaseModel):
    """Submission options."""

    create_jira_issues: bool = True
    assign_to_current_user: bool = False
    project_key: Optional[str] = None
    source: AnalysisSource = AnalysisSource.MANUAL
    file_name: Optional[str] = None


class AnalysisRecord(BaseModel):
    """Per-submission tracking record."""

    id: str = Field(..., description="Unique analysis identifier")
    user_id: str = Field(..., description="Owning account id")
    site_id: Optional[str] = Field(default=None, description="Tenant/site id")

    notes_length: int = 0
    notes_hash: str = ""
    word_count: int = 0
    meeting_type: str = "general"
    issue_type: str = "task"

    status: AnalysisStatus = AnalysisStatus.QUEUED
    progress: int = Field(default=0, ge=0, le=100)

    created_at: datetime = Field(default_factory=utcnow)
    last_update: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None

    options: AnalysisOptions = Field(default_factory=AnalysisOptions)
    result: Optional[AnalysisResult] = None
    processing_time_ms: int = 0
    issues_created: list[dict[str, Any]] = Field(default_factory=list)
    error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def transition(self, status: AnalysisStatus, progress: Optional[int] = None) -> None:
        """
        Move the record along its lifecycle.

        queued -> processing -> completed | error, and queued -> error.
        Terminal records never change status; progress never decreases.

        Raises:
            InvalidStatusTransitionError: On any regression
        """
        if status not in ALLOWED_TRANSITIONS[self.status]:
            raise InvalidStatusTransitionError(self.status.value, status.value)

        if progress is not None:
            if status == self.status and progress < self.progress:
                raise InvalidStatusTransitionError(
                    f"{self.status.value}@{self.progress}", f"{status.value}@{progress}"
                )
            self.progress = progress

        self.status = status
        self.last_update = utcnow()

    def complete(self, result: AnalysisResult) -> None:
        """Store the result and mark the record completed."""
        self.transition(AnalysisStatus.COMPLETED, 100)
        self.result = result
        self.completed_at = self.last_update
        self.processing_time_ms = int((self.completed_at - self.created_at).total_seconds() * 1000)

    def fail(self, message: str) -> None:
        """Mark the record failed with a message for the UI."""
        self.transition(AnalysisStatus.ERROR, 0 if self.status == AnalysisStatus.QUEUED else None)
        self.error = message

    def history_view(self) -> dict[str, Any]:
        """Compact representation for history listings."""
        return {
            "id": self.id,
            "status": self.status.value,
            "progress": self.progress,
            "createdAt": self.created_at.isoformat(),
            "completedAt": self.completed_at.isoformat() if self.completed_at else None,
            "meetingType": self.meeting_type,
            "issueType": self.issue_type,
            "issuesCreated": len(self.issues_created),
            "notesLength": self.notes_length,
            "hasErrors": self.error is not None,
        }
